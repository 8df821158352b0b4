"""Repository pattern implementation for the backup store.

Provides an abstract interface and SQLAlchemy implementation for database operations.
Supports both SQLite (local development) and PostgreSQL (production).
"""

import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Type

from sqlalchemy import case, create_engine, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.sql import Executable

from .batch import DEFAULT_CHUNK_SIZE, BatchExecutor, chunked
from .filters import EpisodeFilter, build_filter_clause
from .models import (
    Base,
    Bookmark,
    Episode,
    PlayingStatus,
    Podcast,
    SyncProgress,
    SyncProgressCompletion,
)

logger = logging.getLogger(__name__)

# Primary key of the single progress row
SYNC_PROGRESS_ID = "backup"

# Max bound parameters per IN (...) lookup
_ID_LOOKUP_CHUNK = 500


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the format stored in every table."""
    return datetime.now(UTC).replace(tzinfo=None)


class BackupRepositoryInterface(ABC):
    """Abstract interface for the backup store.

    The write operations are generic over the tombstoned tables (Podcast,
    Bookmark) and the Episode table, so reconciliation logic does not depend
    on a specific backend.
    """

    # --- Generic store operations ---

    @abstractmethod
    def upsert_records(self, model: Type[Base], records: List[Dict[str, Any]]) -> int:
        """
        Insert each record, or fully replace the mutable columns of the existing row with the same id.

        Parameters:
            model: ORM class of the target table.
            records: Column values; every record must contain "id".

        Returns:
            int: Number of rows written.
        """
        pass

    @abstractmethod
    def find_existing_ids(self, model: Type[Base], ids: Iterable[str]) -> Set[str]:
        """
        Return the subset of `ids` already stored in the table for `model`.
        """
        pass

    @abstractmethod
    def mark_tombstoned(self, model: Type[Base], keep_ids: Iterable[str]) -> int:
        """
        Tombstone every active row whose id is not in `keep_ids`.

        Parameters:
            model: Podcast or Bookmark.
            keep_ids: Ids present in the remote snapshot. An empty collection tombstones every active row.

        Returns:
            int: Number of rows newly tombstoned.
        """
        pass

    @abstractmethod
    def clear_tombstones(self, model: Type[Base], ids: Iterable[str]) -> int:
        """
        Clear the tombstone of every tombstoned row whose id is in `ids`.

        Returns:
            int: Number of rows restored.
        """
        pass

    @abstractmethod
    def execute_batch(self, statements: Iterable[Executable]) -> int:
        """
        Apply write statements in sequential transactional chunks.

        Returns:
            int: Total rows affected.
        """
        pass

    @abstractmethod
    def update_podcast_episode_count(self, podcast_id: str, episode_count: int) -> None:
        """Refresh the cached remote episode count of a podcast."""
        pass

    # --- Sync progress ---

    @abstractmethod
    def reset_sync_progress(self, run_id: str, total: int) -> SyncProgress:
        """
        Start a new fan-out: set the progress row to {run_id, total, completed=0}.
        """
        pass

    @abstractmethod
    def record_podcast_completion(
        self, run_id: str, podcast_id: str
    ) -> Optional[Tuple[int, int]]:
        """
        Atomically count one finished podcast towards the current run.

        The completion marker and the counter increment commit together. A
        podcast already counted for this run, or a run that is no longer the
        current one, leaves the counter untouched.

        Returns:
            Optional[Tuple[int, int]]: (completed, total) after the increment, or `None` if nothing was counted.
        """
        pass

    @abstractmethod
    def get_sync_progress(self) -> Optional[SyncProgress]:
        """Return the progress row, or `None` before the first run."""
        pass

    # --- Read accessors ---

    @abstractmethod
    def get_podcast(self, podcast_id: str) -> Optional[Podcast]:
        """Retrieve a podcast by id, tombstoned or not."""
        pass

    @abstractmethod
    def list_podcasts(self, include_deleted: bool = True) -> List[Podcast]:
        """
        List podcasts ordered by sort position.

        Parameters:
            include_deleted (bool): If False, only active podcasts are returned.
        """
        pass

    @abstractmethod
    def list_podcasts_with_stats(self, include_deleted: bool = True) -> List[Dict[str, Any]]:
        """
        List podcasts with counts of their stored episodes.

        Returns:
            List[Dict[str, Any]]: One dict per podcast with keys `podcast`, `stored_episodes` and `played_episodes`.
        """
        pass

    @abstractmethod
    def get_episode(self, episode_id: str) -> Optional[Episode]:
        """Retrieve an episode by id."""
        pass

    @abstractmethod
    def list_episodes(
        self,
        podcast_id: Optional[str] = None,
        filters: Optional[List[EpisodeFilter]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Episode]:
        """
        List episodes, most recently first-played first.

        Episodes without a first-played time come last, ordered by published date (newest first).
        """
        pass

    @abstractmethod
    def count_episodes(
        self,
        podcast_id: Optional[str] = None,
        filters: Optional[List[EpisodeFilter]] = None,
    ) -> int:
        """Count episodes matching the same criteria as list_episodes()."""
        pass

    @abstractmethod
    def list_bookmarks(
        self, podcast_id: Optional[str] = None, include_deleted: bool = True
    ) -> List[Bookmark]:
        """List bookmarks, active ones first, newest first within each group."""
        pass

    @abstractmethod
    def export_history(self, filters: Optional[List[EpisodeFilter]] = None) -> List[Episode]:
        """Return every stored episode matching `filters`, in list_episodes() order."""
        pass

    @abstractmethod
    def get_overall_stats(self) -> Dict[str, Any]:
        """Return aggregate counts across the whole backup."""
        pass

    # --- Connection Management ---

    @abstractmethod
    def close(self) -> None:
        """
        Close and release all database connections and engine resources used by the repository.
        """
        pass


class SQLAlchemyBackupRepository(BackupRepositoryInterface):
    """SQLAlchemy-based implementation of the backup repository.

    Supports SQLite for local development and PostgreSQL for production.
    """

    def __init__(
        self,
        database_url: str,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_pre_ping: bool = True,
        echo: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        create_tables: bool = False,
    ):
        """
        Initialize the repository and configure its SQLAlchemy engine and session factory.

        Parameters:
            database_url (str): SQLAlchemy-compatible database URL.
            pool_size (int): Connection pool size for non-SQLite databases.
            max_overflow (int): Maximum overflow connections for non-SQLite databases.
            pool_pre_ping (bool): Test pooled connections before use (non-SQLite databases).
            echo (bool): If true, enable SQLAlchemy SQL statement logging.
            chunk_size (int): Statements per transaction for batched writes.
            create_tables (bool): If true, create missing tables from the ORM metadata.
        """
        self.database_url = database_url

        # SQLite doesn't support connection pooling
        if database_url.startswith("sqlite"):
            self.engine = create_engine(
                database_url,
                echo=echo,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(
                database_url,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=pool_pre_ping,
                echo=echo,
            )

        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.batch_executor = BatchExecutor(self.SessionLocal, chunk_size=chunk_size)

        if create_tables:
            Base.metadata.create_all(self.engine)

        logger.info(f"Database initialized: {database_url.split('@')[-1] if '@' in database_url else database_url}")

    def _get_session(self) -> Session:
        """
        Obtain a new SQLAlchemy database session from the repository's session factory.
        """
        return self.SessionLocal()

    def _insert(self, model: Type[Base]):
        """Return the dialect's INSERT construct supporting ON CONFLICT."""
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise NotImplementedError(f"Upsert is not supported for dialect: {dialect}")
        return insert(model)

    def _upsert_statement(self, model: Type[Base], record: Dict[str, Any]) -> Executable:
        stmt = self._insert(model).values(**record)
        replace = {
            column: stmt.excluded[column] for column in record if column != "id"
        }
        replace["updated_at"] = utcnow()
        return stmt.on_conflict_do_update(index_elements=["id"], set_=replace)

    # --- Generic store operations ---

    def upsert_records(self, model: Type[Base], records: List[Dict[str, Any]]) -> int:
        if not records:
            return 0
        statements = [self._upsert_statement(model, record) for record in records]
        written = self.batch_executor.execute(statements)
        logger.debug(f"Upserted {len(records)} {model.__tablename__} records")
        return written

    def find_existing_ids(self, model: Type[Base], ids: Iterable[str]) -> Set[str]:
        ids = list(dict.fromkeys(ids))
        if not ids:
            return set()

        found: Set[str] = set()
        with self._get_session() as session:
            for chunk in chunked(ids, _ID_LOOKUP_CHUNK):
                stmt = select(model.id).where(model.id.in_(chunk))
                found.update(session.scalars(stmt).all())
        return found

    def mark_tombstoned(self, model: Type[Base], keep_ids: Iterable[str]) -> int:
        keep_ids = list(keep_ids)
        with self._get_session() as session:
            stmt = (
                update(model)
                .where(model.deleted_at.is_(None), model.id.not_in(keep_ids))
                .values(deleted_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            count = session.execute(stmt).rowcount
            session.commit()
        if count:
            logger.info(f"Tombstoned {count} {model.__tablename__} missing from remote")
        return count

    def clear_tombstones(self, model: Type[Base], ids: Iterable[str]) -> int:
        ids = list(ids)
        if not ids:
            return 0

        restored = 0
        with self._get_session() as session:
            for chunk in chunked(ids, _ID_LOOKUP_CHUNK):
                stmt = (
                    update(model)
                    .where(model.deleted_at.isnot(None), model.id.in_(chunk))
                    .values(deleted_at=None)
                    .execution_options(synchronize_session=False)
                )
                restored += session.execute(stmt).rowcount
            session.commit()
        if restored:
            logger.info(f"Restored {restored} {model.__tablename__} that reappeared remotely")
        return restored

    def execute_batch(self, statements: Iterable[Executable]) -> int:
        return self.batch_executor.execute(statements)

    def update_podcast_episode_count(self, podcast_id: str, episode_count: int) -> None:
        with self._get_session() as session:
            session.execute(
                update(Podcast)
                .where(Podcast.id == podcast_id)
                .values(episode_count=episode_count)
                .execution_options(synchronize_session=False)
            )
            session.commit()

    # --- Sync progress ---

    def reset_sync_progress(self, run_id: str, total: int) -> SyncProgress:
        now = utcnow()
        with self._get_session() as session:
            progress = session.get(SyncProgress, SYNC_PROGRESS_ID)
            if progress is None:
                progress = SyncProgress(id=SYNC_PROGRESS_ID)
                session.add(progress)
            progress.run_id = run_id
            progress.total = total
            progress.completed = 0
            progress.started_at = now
            progress.updated_at = now
            session.commit()
            session.refresh(progress)
            logger.info(f"Sync progress reset for run {run_id}: 0/{total}")
            return progress

    def record_podcast_completion(
        self, run_id: str, podcast_id: str
    ) -> Optional[Tuple[int, int]]:
        with self._get_session() as session:
            session.add(SyncProgressCompletion(run_id=run_id, podcast_id=podcast_id))
            try:
                session.flush()
            except IntegrityError:
                session.rollback()
                logger.warning(
                    f"Podcast {podcast_id} already counted for run {run_id}, not incrementing"
                )
                return None

            # Increment and read back in one statement
            stmt = (
                update(SyncProgress)
                .where(
                    SyncProgress.id == SYNC_PROGRESS_ID,
                    SyncProgress.run_id == run_id,
                )
                .values(completed=SyncProgress.completed + 1, updated_at=utcnow())
                .returning(SyncProgress.completed, SyncProgress.total)
                .execution_options(synchronize_session=False)
            )
            row = session.execute(stmt).first()
            if row is None:
                session.rollback()
                logger.warning(
                    f"Run {run_id} is no longer current, ignoring completion of {podcast_id}"
                )
                return None

            session.commit()
            return row.completed, row.total

    def get_sync_progress(self) -> Optional[SyncProgress]:
        with self._get_session() as session:
            return session.get(SyncProgress, SYNC_PROGRESS_ID)

    # --- Read accessors ---

    def get_podcast(self, podcast_id: str) -> Optional[Podcast]:
        with self._get_session() as session:
            return session.get(Podcast, podcast_id)

    def list_podcasts(self, include_deleted: bool = True) -> List[Podcast]:
        with self._get_session() as session:
            stmt = select(Podcast)
            if not include_deleted:
                stmt = stmt.where(Podcast.deleted_at.is_(None))
            stmt = stmt.order_by(Podcast.sort_position, Podcast.title)
            return list(session.scalars(stmt).all())

    def list_podcasts_with_stats(self, include_deleted: bool = True) -> List[Dict[str, Any]]:
        with self._get_session() as session:
            stats_stmt = select(
                Episode.podcast_id,
                func.count(Episode.id).label("stored"),
                func.sum(
                    case((Episode.playing_status == int(PlayingStatus.PLAYED), 1), else_=0)
                ).label("played"),
            ).group_by(Episode.podcast_id)
            stats = {
                row.podcast_id: (row.stored, row.played or 0)
                for row in session.execute(stats_stmt)
            }

        return [
            {
                "podcast": podcast,
                "stored_episodes": stats.get(podcast.id, (0, 0))[0],
                "played_episodes": stats.get(podcast.id, (0, 0))[1],
            }
            for podcast in self.list_podcasts(include_deleted=include_deleted)
        ]

    def get_episode(self, episode_id: str) -> Optional[Episode]:
        with self._get_session() as session:
            return session.get(Episode, episode_id)

    def _episode_query(self, stmt, podcast_id: Optional[str], filters):
        if podcast_id:
            stmt = stmt.where(Episode.podcast_id == podcast_id)
        clause = build_filter_clause(filters)
        if clause is not None:
            stmt = stmt.where(clause)
        return stmt

    def list_episodes(
        self,
        podcast_id: Optional[str] = None,
        filters: Optional[List[EpisodeFilter]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Episode]:
        with self._get_session() as session:
            stmt = self._episode_query(select(Episode), podcast_id, filters)
            stmt = stmt.order_by(
                Episode.first_played_at.desc().nulls_last(),
                Episode.published_at.desc(),
            )
            stmt = stmt.offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)
            return list(session.scalars(stmt).all())

    def count_episodes(
        self,
        podcast_id: Optional[str] = None,
        filters: Optional[List[EpisodeFilter]] = None,
    ) -> int:
        with self._get_session() as session:
            stmt = self._episode_query(
                select(func.count(Episode.id)), podcast_id, filters
            )
            return session.scalar(stmt) or 0

    def list_bookmarks(
        self, podcast_id: Optional[str] = None, include_deleted: bool = True
    ) -> List[Bookmark]:
        with self._get_session() as session:
            stmt = select(Bookmark)
            if podcast_id:
                stmt = stmt.where(Bookmark.podcast_id == podcast_id)
            if not include_deleted:
                stmt = stmt.where(Bookmark.deleted_at.is_(None))
            stmt = stmt.order_by(
                Bookmark.deleted_at.isnot(None),
                Bookmark.created_at.desc(),
            )
            return list(session.scalars(stmt).all())

    def export_history(self, filters: Optional[List[EpisodeFilter]] = None) -> List[Episode]:
        return self.list_episodes(filters=filters)

    def get_overall_stats(self) -> Dict[str, Any]:
        """
        Compute aggregate counts across episodes, podcasts and bookmarks.

        Returns:
            Dict[str, Any]: Keys `total_episodes`, `played`, `in_progress`, `starred`, `archived`, `with_history`, `podcasts`, `podcasts_removed`, `bookmarks`, `bookmarks_removed`.
        """
        with self._get_session() as session:
            episode_row = session.execute(
                select(
                    func.count(Episode.id),
                    func.sum(case((Episode.playing_status == int(PlayingStatus.PLAYED), 1), else_=0)),
                    func.sum(case((Episode.playing_status == int(PlayingStatus.IN_PROGRESS), 1), else_=0)),
                    func.sum(case((Episode.starred.is_(True), 1), else_=0)),
                    func.sum(case((Episode.is_archived.is_(True), 1), else_=0)),
                    func.count(Episode.first_played_at),
                )
            ).one()
            podcast_row = session.execute(
                select(func.count(Podcast.id), func.count(Podcast.deleted_at))
            ).one()
            bookmark_row = session.execute(
                select(func.count(Bookmark.id), func.count(Bookmark.deleted_at))
            ).one()

        total_podcasts, removed_podcasts = podcast_row
        total_bookmarks, removed_bookmarks = bookmark_row
        return {
            "total_episodes": episode_row[0] or 0,
            "played": episode_row[1] or 0,
            "in_progress": episode_row[2] or 0,
            "starred": episode_row[3] or 0,
            "archived": episode_row[4] or 0,
            "with_history": episode_row[5] or 0,
            "podcasts": (total_podcasts or 0) - (removed_podcasts or 0),
            "podcasts_removed": removed_podcasts or 0,
            "bookmarks": (total_bookmarks or 0) - (removed_bookmarks or 0),
            "bookmarks_removed": removed_bookmarks or 0,
        }

    # --- Connection Management ---

    def close(self) -> None:
        """
        Dispose the SQLAlchemy engine and release database connections and resources.
        """
        self.engine.dispose()
        logger.info("Database connection closed")
