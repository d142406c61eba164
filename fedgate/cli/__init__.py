"""Command-line interface for fedgate."""
