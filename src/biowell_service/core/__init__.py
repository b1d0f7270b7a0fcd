"""Core infrastructure: configuration, database, cache, timing and errors."""
