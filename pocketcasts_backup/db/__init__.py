"""Database module for the backup store.

Provides:
- SQLAlchemy ORM models (Podcast, Episode, Bookmark, SyncProgress, PipelineMessage)
- Chunked transactional batch execution
- Repository interface and implementation
- Factory functions for creating repositories
"""

from .batch import BatchExecutionError, BatchExecutor
from .factory import create_repository, create_repository_from_config
from .filters import EpisodeFilter, parse_filters
from .models import (
    Base,
    Bookmark,
    Episode,
    PipelineMessage,
    PlayingStatus,
    Podcast,
    SyncProgress,
)
from .repository import BackupRepositoryInterface, SQLAlchemyBackupRepository

__all__ = [
    "Base",
    "Podcast",
    "Episode",
    "Bookmark",
    "SyncProgress",
    "PipelineMessage",
    "PlayingStatus",
    "EpisodeFilter",
    "parse_filters",
    "BatchExecutor",
    "BatchExecutionError",
    "BackupRepositoryInterface",
    "SQLAlchemyBackupRepository",
    "create_repository",
    "create_repository_from_config",
]
