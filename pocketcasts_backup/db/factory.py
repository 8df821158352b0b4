"""Database factory for creating repository instances.

Automatically detects database type from URL and configures appropriately
for SQLite (local development) or PostgreSQL (production).
"""

import logging
import os
from typing import Optional

from .batch import DEFAULT_CHUNK_SIZE
from .repository import BackupRepositoryInterface, SQLAlchemyBackupRepository

logger = logging.getLogger(__name__)

# Default database URL for local development
DEFAULT_DATABASE_URL = "sqlite:///./pocketcasts_backup.db"


def create_repository(
    database_url: Optional[str] = None,
    pool_size: int = 5,
    max_overflow: int = 10,
    echo: bool = False,
    pool_pre_ping: bool = True,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    create_tables: bool = False,
) -> BackupRepositoryInterface:
    """
    Create a BackupRepositoryInterface configured from the provided or discovered database URL.

    If `database_url` is not provided, it is read from the `DATABASE_URL` environment variable; if that is unset, a local SQLite default is used. Logs the chosen database type and hides credentials when present. Pool settings apply to PostgreSQL and are ignored for SQLite.

    Parameters:
        database_url (Optional[str]): SQLAlchemy database URL to use; if None the environment or default is used.
        pool_size (int): Connection pool size for PostgreSQL; ignored for SQLite.
        max_overflow (int): Maximum overflow connections for PostgreSQL; ignored for SQLite.
        pool_pre_ping (bool): Test pooled connections before use; ignored for SQLite.
        echo (bool): If true, enable SQL statement logging.
        chunk_size (int): Statements per transaction for batched writes.
        create_tables (bool): If true, create missing tables (local use and tests; production uses Alembic).

    Returns:
        BackupRepositoryInterface: A repository instance backed by the resolved database URL.
    """
    if database_url is None:
        database_url = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

    # Log database type (without credentials)
    if "://" in database_url:
        db_type = database_url.split("://")[0]
        if "@" in database_url:
            # Hide credentials in log
            db_location = database_url.split("@")[-1]
            logger.info(f"Creating {db_type} repository: ...@{db_location}")
        else:
            logger.info(f"Creating {db_type} repository: {database_url}")
    else:
        logger.info(f"Creating repository with URL: {database_url}")

    return SQLAlchemyBackupRepository(
        database_url=database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        echo=echo,
        chunk_size=chunk_size,
        create_tables=create_tables,
    )


def create_repository_from_config(config, pipeline_config=None, create_tables: bool = False) -> BackupRepositoryInterface:
    """
    Create a repository using the database settings of a Config object.

    Parameters:
        config: Application Config providing DATABASE_URL and pool settings.
        pipeline_config: Optional PipelineConfig supplying the batch chunk size.
        create_tables (bool): Forwarded to create_repository().
    """
    chunk_size = pipeline_config.batch_chunk_size if pipeline_config else DEFAULT_CHUNK_SIZE
    return create_repository(
        database_url=getattr(config, "DATABASE_URL", None),
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_pre_ping=config.DB_POOL_PRE_PING,
        echo=config.DB_ECHO,
        chunk_size=chunk_size,
        create_tables=create_tables,
    )
