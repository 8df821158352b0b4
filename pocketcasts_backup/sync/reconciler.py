"""Reconciliation of remote account snapshots against the local store.

Podcasts and bookmarks are reconciled from a complete snapshot: every remote
record is upserted, local records missing from the snapshot are tombstoned and
records that reappear have their tombstone cleared.

Episodes are reconciled per podcast and only for episodes the user has
interacted with, so that full episode metadata is fetched only when an
interacted episode is not stored yet.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import update

from ..api.client import PocketCastsClient
from ..api.models import (
    BookmarkSnapshot,
    EpisodeMetadata,
    EpisodeSyncItem,
    PodcastEpisodeMetadata,
    PodcastSnapshot,
)
from ..db.models import Bookmark, Episode, Podcast
from ..db.repository import BackupRepositoryInterface, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of reconciling one snapshot table.

    Attributes:
        upserted: Rows inserted or replaced from the snapshot.
        tombstoned: Active rows newly tombstoned because the snapshot omitted them.
        restored: Tombstoned rows whose tombstone was cleared.
        total: Number of records in the snapshot.
    """

    upserted: int = 0
    tombstoned: int = 0
    restored: int = 0
    total: int = 0


@dataclass
class EpisodeSyncResult:
    """Outcome of reconciling the episodes of one podcast."""

    podcast_id: str
    interacted: int = 0
    updated: int = 0
    inserted: int = 0
    dropped: int = 0


class SnapshotReconciler:
    """Reconciles full remote snapshots of podcasts and bookmarks.

    Example:
        reconciler = SnapshotReconciler(repository)
        result = reconciler.reconcile_podcasts(client.fetch_podcast_list())
        print(f"Removed podcasts: {result.tombstoned}")
    """

    def __init__(self, repository: BackupRepositoryInterface):
        self.repository = repository

    def reconcile_podcasts(self, snapshots: Sequence[PodcastSnapshot]) -> ReconcileResult:
        """Upsert the subscribed podcasts and tombstone the unsubscribed ones."""
        records = [snapshot.to_record() for snapshot in snapshots]
        return self._reconcile(Podcast, records)

    def reconcile_bookmarks(self, snapshots: Sequence[BookmarkSnapshot]) -> ReconcileResult:
        """Upsert the account's bookmarks and tombstone the removed ones."""
        records = [snapshot.to_record() for snapshot in snapshots]
        return self._reconcile(Bookmark, records)

    def _reconcile(self, model, records: List[Dict[str, Any]]) -> ReconcileResult:
        """
        Apply the upsert pass, then the tombstone pass, for one table.

        Parameters:
            model: Podcast or Bookmark.
            records: Column values of every record in the remote snapshot.

        Returns:
            ReconcileResult: Counts for the table.
        """
        snapshot_ids = [record["id"] for record in records]
        result = ReconcileResult(total=len(records))

        result.upserted = self.repository.upsert_records(model, records)
        result.tombstoned = self.repository.mark_tombstoned(model, snapshot_ids)
        result.restored = self.repository.clear_tombstones(model, snapshot_ids)

        logger.info(
            f"Reconciled {model.__tablename__}: {result.total} remote, "
            f"{result.tombstoned} removed, {result.restored} restored"
        )
        return result


class EpisodeReconciler:
    """Reconciles the interacted episodes of one podcast.

    Known episodes only have their sync fields (playing status, played-up-to,
    starred, archived) refreshed. Unknown episodes are inserted from the
    podcast's full episode metadata; sync items whose episode is no longer in
    that metadata are dropped.
    """

    def __init__(
        self,
        repository: BackupRepositoryInterface,
        client: PocketCastsClient,
        prefetch_metadata: bool = False,
    ):
        """Initialize the reconciler.

        Args:
            repository: Backup store.
            client: Authenticated Pocket Casts client.
            prefetch_metadata: If True, fetch episode metadata alongside the
                sync state for every podcast instead of only when needed.
        """
        self.repository = repository
        self.client = client
        self.prefetch_metadata = prefetch_metadata

    def reconcile_podcast(self, podcast: PodcastSnapshot) -> EpisodeSyncResult:
        """
        Reconcile the stored episodes of `podcast` with its remote sync state.

        Parameters:
            podcast (PodcastSnapshot): The podcast being synced; its title, author and slug are denormalized onto new episodes.

        Returns:
            EpisodeSyncResult: Counts of interacted, updated, inserted and dropped episodes.

        Raises:
            PocketCastsAPIError: If a remote read fails. Updates to known episodes are
                committed before episode metadata is fetched and are kept if that
                fetch fails.
        """
        result = EpisodeSyncResult(podcast_id=podcast.id)

        sync_items, metadata = self._fetch(podcast.id)

        interacted = [item for item in sync_items if item.is_interacted]
        result.interacted = len(interacted)
        if not interacted:
            logger.debug(f"[{podcast.title}] No interacted episodes")
            if metadata is not None:
                self.repository.update_podcast_episode_count(podcast.id, metadata.episode_count)
            return result

        known_ids = self.repository.find_existing_ids(
            Episode, [item.id for item in interacted]
        )
        known = [item for item in interacted if item.id in known_ids]
        unknown = [item for item in interacted if item.id not in known_ids]

        if known:
            result.updated = self.repository.execute_batch(
                self._sync_field_update(item) for item in known
            )

        if unknown and metadata is None:
            metadata = self.client.fetch_podcast_episode_metadata(podcast.id)

        if metadata is not None:
            if unknown:
                records, dropped = self._new_episode_records(podcast, unknown, metadata)
                result.inserted = self.repository.upsert_records(Episode, records)
                result.dropped = dropped
            self.repository.update_podcast_episode_count(podcast.id, metadata.episode_count)

        if result.dropped:
            logger.info(
                f"[{podcast.title}] Dropped {result.dropped} episodes missing from metadata"
            )
        logger.info(
            f"[{podcast.title}] {result.interacted} interacted: "
            f"{result.updated} updated, {result.inserted} new"
        )
        return result

    def _fetch(self, podcast_id: str):
        """Read the sync state, plus the metadata when prefetching is enabled."""
        if not self.prefetch_metadata:
            return self.client.fetch_episode_sync_state(podcast_id), None

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="episodes") as executor:
            sync_future = executor.submit(self.client.fetch_episode_sync_state, podcast_id)
            metadata_future = executor.submit(
                self.client.fetch_podcast_episode_metadata, podcast_id
            )
            return sync_future.result(), metadata_future.result()

    @staticmethod
    def _sync_field_update(item: EpisodeSyncItem):
        return (
            update(Episode)
            .where(Episode.id == item.id)
            .values(**item.sync_fields(), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _new_episode_records(
        podcast: PodcastSnapshot,
        items: List[EpisodeSyncItem],
        metadata: PodcastEpisodeMetadata,
    ):
        """Build insert records for unknown episodes found in `metadata`.

        Returns:
            Tuple of (records, number of items not present in the metadata).
        """
        by_id = metadata.by_id()
        records = []
        dropped = 0
        for item in items:
            episode: Optional[EpisodeMetadata] = by_id.get(item.id)
            if episode is None:
                dropped += 1
                continue
            records.append(
                {
                    "id": episode.id,
                    "podcast_id": podcast.id,
                    "podcast_title": podcast.title,
                    "podcast_slug": podcast.slug,
                    "author": podcast.author,
                    "title": episode.title,
                    "url": episode.url,
                    "published_at": episode.published_at,
                    "duration": episode.duration or item.duration,
                    "file_type": episode.file_type,
                    "file_size": episode.file_size,
                    "slug": episode.slug,
                    "episode_type": episode.episode_type,
                    "episode_season": episode.season,
                    "episode_number": episode.number,
                    **item.sync_fields(),
                }
            )
        return records, dropped
