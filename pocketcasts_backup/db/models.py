"""SQLAlchemy ORM models for the mirrored Pocket Casts account."""

import enum
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import JSON


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class PlayingStatus(enum.IntEnum):
    """Playback state as reported by Pocket Casts."""

    NOT_STARTED = 1
    IN_PROGRESS = 2
    PLAYED = 3


class Podcast(Base):
    """Subscribed podcast, mirrored from the remote podcast list.

    Rows are never physically deleted. A podcast that disappears from the
    remote list gets `deleted_at` set and is restored when it reappears.
    """

    __tablename__ = "podcasts"

    # Remote uuid
    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    title: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    author: Mapped[Optional[str]] = mapped_column(String(512))
    description: Mapped[Optional[str]] = mapped_column(Text)
    url: Mapped[Optional[str]] = mapped_column(String(2048))
    slug: Mapped[Optional[str]] = mapped_column(String(512))
    date_added: Mapped[Optional[datetime]] = mapped_column(DateTime)
    folder_id: Mapped[Optional[str]] = mapped_column(String(36))
    sort_position: Mapped[int] = mapped_column(Integer, default=0)

    # Cached from the episode metadata endpoint
    episode_count: Mapped[Optional[int]] = mapped_column(Integer)

    last_episode_id: Mapped[Optional[str]] = mapped_column(String(36))
    last_episode_published_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_podcasts_sort_position", "sort_position"),
        Index("ix_podcasts_deleted_at", "deleted_at"),
    )

    def __repr__(self) -> str:
        """Return a concise representation of the Podcast instance."""
        return f"<Podcast(id={self.id}, title={self.title!r})>"

    @property
    def is_active(self) -> bool:
        """True while the podcast is still in the remote subscription list."""
        return self.deleted_at is None


class Episode(Base):
    """Episode the user has interacted with.

    Sync fields (playing_status, played_up_to, starred, is_archived) are
    overwritten on every backup. `first_played_at` is derived locally from the
    listening history and only ever moves forward.
    """

    __tablename__ = "episodes"

    # Remote uuid
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    # Weak reference; the podcast row may be missing or tombstoned
    podcast_id: Mapped[str] = mapped_column(String(36), nullable=False)
    podcast_title: Mapped[Optional[str]] = mapped_column(String(512))
    podcast_slug: Mapped[Optional[str]] = mapped_column(String(512))
    author: Mapped[Optional[str]] = mapped_column(String(512))

    # Metadata from the podcast cache
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    url: Mapped[Optional[str]] = mapped_column(String(2048))
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    duration: Mapped[int] = mapped_column(Integer, default=0)
    file_type: Mapped[Optional[str]] = mapped_column(String(64))
    file_size: Mapped[Optional[int]] = mapped_column(Integer)
    slug: Mapped[Optional[str]] = mapped_column(String(512))
    episode_type: Mapped[Optional[str]] = mapped_column(String(32))  # full, trailer, bonus
    episode_season: Mapped[int] = mapped_column(Integer, default=0)
    episode_number: Mapped[int] = mapped_column(Integer, default=0)

    # Sync state
    playing_status: Mapped[int] = mapped_column(
        Integer, default=PlayingStatus.NOT_STARTED
    )
    played_up_to: Mapped[int] = mapped_column(Integer, default=0)
    starred: Mapped[bool] = mapped_column(Boolean, default=False)
    # Remote "deleted" flag; unrelated to local tombstones
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)

    # Derived from the listening history
    first_played_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("ix_episodes_podcast_id", "podcast_id"),
        Index("ix_episodes_published_at", "published_at"),
        Index("ix_episodes_playing_status", "playing_status"),
        Index("ix_episodes_first_played_at", "first_played_at"),
    )

    def __repr__(self) -> str:
        """Return a concise representation of the Episode instance."""
        return f"<Episode(id={self.id}, title={self.title!r})>"

    @property
    def progress_percent(self) -> int:
        """Percentage of the episode played, clamped to 0-100."""
        if not self.duration or self.duration <= 0:
            return 0
        return max(0, min(100, round(self.played_up_to * 100 / self.duration)))


class Bookmark(Base):
    """Bookmark inside an episode.

    References to the podcast and episode are weak; the episode may never
    have been backed up if the user did not otherwise interact with it.
    """

    __tablename__ = "bookmarks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    podcast_id: Mapped[str] = mapped_column(String(36), nullable=False)
    episode_id: Mapped[str] = mapped_column(String(36), nullable=False)
    time: Mapped[int] = mapped_column(Integer, default=0)
    title: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    # Remote creation time
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_bookmarks_podcast_id", "podcast_id"),
        Index("ix_bookmarks_episode_id", "episode_id"),
    )

    def __repr__(self) -> str:
        """Return a concise representation of the Bookmark instance."""
        return f"<Bookmark(id={self.id}, title={self.title!r})>"


class SyncProgress(Base):
    """Completion barrier for the per-podcast fan-out of a backup run.

    A single row (id "backup") is reset at the start of every run. Podcast
    handlers increment `completed` with one atomic UPDATE.
    """

    __tablename__ = "sync_progress"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    run_id: Mapped[str] = mapped_column(String(36), nullable=False)
    total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        """Return a concise representation of the SyncProgress instance."""
        return (
            f"<SyncProgress(run_id={self.run_id}, "
            f"completed={self.completed}, total={self.total})>"
        )

    @property
    def is_complete(self) -> bool:
        """True once every fanned-out podcast has reported completion."""
        return self.completed >= self.total


class SyncProgressCompletion(Base):
    """One row per podcast completed within a run.

    The unique constraint makes the progress increment idempotent under
    redelivery of the same podcast message.
    """

    __tablename__ = "sync_progress_completions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(36), nullable=False)
    podcast_id: Mapped[str] = mapped_column(String(36), nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("run_id", "podcast_id", name="uq_completion_run_podcast"),
    )


class PipelineMessage(Base):
    """Durable queue entry for one pipeline stage.

    Messages are deleted on ack. Failed messages are kept with their error
    for inspection.
    """

    __tablename__ = "pipeline_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    # Set for messages that must be enqueued at most once (e.g. per run)
    dedupe_key: Mapped[Optional[str]] = mapped_column(String(128), unique=True)

    status: Mapped[str] = mapped_column(
        String(32), default="pending"
    )  # pending, processing, failed
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (Index("ix_pipeline_messages_status", "status", "id"),)

    def __repr__(self) -> str:
        """Return a concise representation of the PipelineMessage instance."""
        return f"<PipelineMessage(id={self.id}, kind={self.kind!r}, status={self.status!r})>"
