"""Data models for the Bear notes core."""
