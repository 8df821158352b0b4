"""Tests for snapshot and episode reconciliation."""

from datetime import datetime
from unittest.mock import Mock

import pytest

from pocketcasts_backup.api.client import PocketCastsAPIError
from pocketcasts_backup.api.models import (
    BookmarkSnapshot,
    EpisodeMetadata,
    EpisodeSyncItem,
    PodcastEpisodeMetadata,
    PodcastSnapshot,
)
from pocketcasts_backup.db.factory import create_repository
from pocketcasts_backup.db.models import Episode, PlayingStatus, Podcast
from pocketcasts_backup.db.repository import utcnow
from pocketcasts_backup.sync.reconciler import EpisodeReconciler, SnapshotReconciler


@pytest.fixture
def repository(tmp_path):
    """
    Create a temporary SQLite-backed repository for tests.

    Yields a repository instance configured to use a SQLite file under the provided temporary path and closes the repository when the fixture is torn down.
    """
    db_path = tmp_path / "test.db"
    repo = create_repository(f"sqlite:///{db_path}", create_tables=True)
    yield repo
    repo.close()


class TestSnapshotReconciler:
    """Tests for SnapshotReconciler."""

    def test_restores_and_tombstones(self, repository):
        """Test a reappearing podcast is restored and a missing one tombstoned."""
        repository.upsert_records(Podcast, [{"id": "p1"}, {"id": "p2"}])
        repository.mark_tombstoned(Podcast, ["p2"])
        assert repository.get_podcast("p1").deleted_at is not None

        before = utcnow()
        result = SnapshotReconciler(repository).reconcile_podcasts([PodcastSnapshot(id="p1")])

        assert repository.get_podcast("p1").deleted_at is None
        assert repository.get_podcast("p2").deleted_at >= before
        assert result.restored == 1
        assert result.tombstoned == 1
        assert result.total == 1

    def test_snapshot_fields_written(self, repository):
        """Test remote fields replace stored ones."""
        reconciler = SnapshotReconciler(repository)
        reconciler.reconcile_podcasts([PodcastSnapshot(id="p1", title="Old", sort_position=3)])
        reconciler.reconcile_podcasts([PodcastSnapshot(id="p1", title="New", sort_position=1)])

        podcast = repository.get_podcast("p1")
        assert podcast.title == "New"
        assert podcast.sort_position == 1

    def test_idempotent(self, repository):
        """Test reconciling the same snapshot twice changes no tombstones."""
        reconciler = SnapshotReconciler(repository)
        snapshots = [PodcastSnapshot(id="p1"), PodcastSnapshot(id="p2")]
        reconciler.reconcile_podcasts(snapshots)

        result = reconciler.reconcile_podcasts(snapshots)

        assert result.tombstoned == 0
        assert result.restored == 0
        assert all(p.is_active for p in repository.list_podcasts())

    def test_empty_snapshot_tombstones_all(self, repository):
        """Test an empty remote snapshot tombstones every active podcast."""
        reconciler = SnapshotReconciler(repository)
        reconciler.reconcile_podcasts([PodcastSnapshot(id="p1"), PodcastSnapshot(id="p2")])

        result = reconciler.reconcile_podcasts([])

        assert result.tombstoned == 2
        assert not any(p.is_active for p in repository.list_podcasts())

    def test_bookmarks(self, repository):
        """Test bookmarks follow the same tombstone rules."""
        reconciler = SnapshotReconciler(repository)
        reconciler.reconcile_bookmarks([
            BookmarkSnapshot(id="b1", podcast_id="p1", episode_id="e1", time=90),
            BookmarkSnapshot(id="b2", podcast_id="p1", episode_id="e2"),
        ])

        result = reconciler.reconcile_bookmarks([
            BookmarkSnapshot(id="b1", podcast_id="p1", episode_id="e1", time=120),
        ])

        bookmarks = {b.id: b for b in repository.list_bookmarks()}
        assert result.tombstoned == 1
        assert bookmarks["b1"].time == 120
        assert bookmarks["b1"].deleted_at is None
        assert bookmarks["b2"].deleted_at is not None


class TestEpisodeReconciler:
    """Tests for EpisodeReconciler."""

    @pytest.fixture
    def podcast(self):
        """Podcast being synced."""
        return PodcastSnapshot(id="pod-1", title="Test Podcast", author="Host", slug="test-podcast")

    @pytest.fixture
    def mock_client(self):
        """Create mock API client."""
        client = Mock()
        client.fetch_podcast_episode_metadata.return_value = PodcastEpisodeMetadata(
            episode_count=42,
            episodes=[
                EpisodeMetadata(id="ep-new", title="New Episode", duration=0, url="https://cdn/new.mp3"),
                EpisodeMetadata(id="ep-known", title="Known Episode"),
            ],
        )
        return client

    def _store_known(self, repository):
        repository.upsert_records(Episode, [{
            "id": "ep-known",
            "podcast_id": "pod-1",
            "title": "Known Episode",
            "playing_status": int(PlayingStatus.IN_PROGRESS),
            "played_up_to": 10,
            "first_played_at": datetime(2024, 1, 1),
        }])

    def test_updates_known_and_inserts_unknown(self, repository, mock_client, podcast):
        """Test known episodes get sync fields, unknown ones are inserted from metadata."""
        self._store_known(repository)
        mock_client.fetch_episode_sync_state.return_value = [
            EpisodeSyncItem(id="ep-known", playing_status=PlayingStatus.PLAYED, played_up_to=600, starred=True),
            EpisodeSyncItem(id="ep-new", playing_status=PlayingStatus.IN_PROGRESS, played_up_to=30, duration=900),
            EpisodeSyncItem(id="ep-untouched"),
        ]

        result = EpisodeReconciler(repository, mock_client).reconcile_podcast(podcast)

        assert result.interacted == 2
        assert result.updated == 1
        assert result.inserted == 1
        assert result.dropped == 0

        known = repository.get_episode("ep-known")
        assert known.playing_status == PlayingStatus.PLAYED
        assert known.played_up_to == 600
        assert known.starred is True
        assert known.first_played_at == datetime(2024, 1, 1)

        new = repository.get_episode("ep-new")
        assert new.title == "New Episode"
        assert new.podcast_title == "Test Podcast"
        assert new.author == "Host"
        assert new.duration == 900  # falls back to the sync item duration
        assert new.first_played_at is None

        assert repository.get_episode("ep-untouched") is None
        mock_client.fetch_podcast_episode_metadata.assert_called_once_with("pod-1")

    def test_unknown_missing_from_metadata_dropped(self, repository, mock_client, podcast):
        """Test sync items absent from the metadata are dropped, not inserted."""
        mock_client.fetch_episode_sync_state.return_value = [
            EpisodeSyncItem(id="ep-gone", playing_status=PlayingStatus.PLAYED),
            EpisodeSyncItem(id="ep-new", played_up_to=5),
        ]

        result = EpisodeReconciler(repository, mock_client).reconcile_podcast(podcast)

        assert result.inserted == 1
        assert result.dropped == 1
        assert repository.get_episode("ep-gone") is None

    def test_no_metadata_fetch_when_all_known(self, repository, mock_client, podcast):
        """Test metadata is not fetched when every interacted episode is stored."""
        self._store_known(repository)
        mock_client.fetch_episode_sync_state.return_value = [
            EpisodeSyncItem(id="ep-known", playing_status=PlayingStatus.PLAYED),
        ]

        result = EpisodeReconciler(repository, mock_client).reconcile_podcast(podcast)

        assert result.updated == 1
        mock_client.fetch_podcast_episode_metadata.assert_not_called()

    def test_no_interacted_episodes(self, repository, mock_client, podcast):
        """Test a podcast with no interacted episodes writes nothing."""
        mock_client.fetch_episode_sync_state.return_value = [EpisodeSyncItem(id="ep-new")]

        result = EpisodeReconciler(repository, mock_client).reconcile_podcast(podcast)

        assert result.interacted == 0
        assert repository.count_episodes() == 0
        mock_client.fetch_podcast_episode_metadata.assert_not_called()

    def test_episode_count_refreshed(self, repository, mock_client, podcast):
        """Test the podcast's episode count cache follows the metadata."""
        repository.upsert_records(Podcast, [{"id": "pod-1"}])
        mock_client.fetch_episode_sync_state.return_value = [
            EpisodeSyncItem(id="ep-new", playing_status=PlayingStatus.PLAYED),
        ]

        EpisodeReconciler(repository, mock_client).reconcile_podcast(podcast)

        assert repository.get_podcast("pod-1").episode_count == 42

    def test_prefetch_metadata(self, repository, mock_client, podcast):
        """Test metadata is fetched up front when prefetching is enabled."""
        mock_client.fetch_episode_sync_state.return_value = []

        EpisodeReconciler(repository, mock_client, prefetch_metadata=True).reconcile_podcast(podcast)

        mock_client.fetch_podcast_episode_metadata.assert_called_once_with("pod-1")

    def test_metadata_failure_raises(self, repository, mock_client, podcast):
        """Test a metadata fetch failure aborts the podcast without inserting."""
        mock_client.fetch_episode_sync_state.return_value = [
            EpisodeSyncItem(id="ep-new", playing_status=PlayingStatus.PLAYED),
        ]
        mock_client.fetch_podcast_episode_metadata.side_effect = PocketCastsAPIError(
            "Failed to fetch episode metadata", status_code=500
        )

        with pytest.raises(PocketCastsAPIError):
            EpisodeReconciler(repository, mock_client).reconcile_podcast(podcast)

        assert repository.count_episodes() == 0

    def test_metadata_failure_keeps_known_updates(self, repository, mock_client, podcast):
        """Test known-episode updates written before a failed metadata fetch are kept."""
        self._store_known(repository)
        mock_client.fetch_episode_sync_state.return_value = [
            EpisodeSyncItem(id="ep-known", playing_status=PlayingStatus.PLAYED, played_up_to=600),
            EpisodeSyncItem(id="ep-new", playing_status=PlayingStatus.PLAYED),
        ]
        mock_client.fetch_podcast_episode_metadata.side_effect = PocketCastsAPIError(
            "Failed to fetch episode metadata", status_code=500
        )

        with pytest.raises(PocketCastsAPIError):
            EpisodeReconciler(repository, mock_client).reconcile_podcast(podcast)

        assert repository.get_episode("ep-known").played_up_to == 600
        assert repository.get_episode("ep-new") is None
