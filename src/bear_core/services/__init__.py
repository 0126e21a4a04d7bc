"""Core services: search, result cache, concurrency guard and tag sanitizer."""
