"""Via Nova Tours back office."""
__version__ = "1.0.0"
