"""Tokenization, scoring and scanning for note search."""
