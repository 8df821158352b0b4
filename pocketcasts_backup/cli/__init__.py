"""Command line interface for pocketcasts-backup."""

from .backup_commands import create_parser, main

__all__ = ["create_parser", "main"]
