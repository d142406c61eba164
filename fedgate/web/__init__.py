"""Web interface for fedgate."""
