"""Incremental backup of a Pocket Casts account into a local database."""

__version__ = "0.1.0"
