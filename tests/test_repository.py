"""Tests for the backup repository."""

from datetime import datetime

import pytest

from pocketcasts_backup.db.factory import create_repository
from pocketcasts_backup.db.filters import EpisodeFilter
from pocketcasts_backup.db.models import Bookmark, Episode, PlayingStatus, Podcast


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


def _episode(episode_id, podcast_id="pod-1", **fields):
    record = {
        "id": episode_id,
        "podcast_id": podcast_id,
        "title": f"Episode {episode_id}",
        "playing_status": int(PlayingStatus.NOT_STARTED),
        "played_up_to": 0,
        "starred": False,
        "is_archived": False,
    }
    record.update(fields)
    return record


class TestUpsert:
    """Tests for upsert_records and find_existing_ids."""

    def test_insert_new_records(self, repository):
        """Test records are inserted when absent."""
        written = repository.upsert_records(
            Podcast,
            [{"id": "pod-1", "title": "One"}, {"id": "pod-2", "title": "Two"}],
        )

        assert written == 2
        assert repository.get_podcast("pod-1").title == "One"

    def test_replace_existing_record(self, repository):
        """Test an existing row has its columns replaced."""
        repository.upsert_records(Podcast, [{"id": "pod-1", "title": "Old", "author": "A"}])
        repository.upsert_records(Podcast, [{"id": "pod-1", "title": "New", "author": "B"}])

        podcast = repository.get_podcast("pod-1")
        assert podcast.title == "New"
        assert podcast.author == "B"
        assert len(repository.list_podcasts()) == 1

    def test_upsert_leaves_unlisted_columns(self, repository):
        """Test columns absent from the record are not touched on conflict."""
        played = datetime(2024, 1, 1, 12, 0)
        repository.upsert_records(Episode, [_episode("ep-1", first_played_at=played)])
        repository.upsert_records(Episode, [_episode("ep-1", title="Retitled")])

        episode = repository.get_episode("ep-1")
        assert episode.title == "Retitled"
        assert episode.first_played_at == played

    def test_upsert_empty(self, repository):
        """Test upserting nothing is a no-op."""
        assert repository.upsert_records(Podcast, []) == 0

    def test_find_existing_ids(self, repository):
        """Test only stored ids are returned."""
        repository.upsert_records(Episode, [_episode("ep-1"), _episode("ep-2")])

        found = repository.find_existing_ids(Episode, ["ep-1", "ep-3", "ep-1"])

        assert found == {"ep-1"}

    def test_find_existing_ids_empty(self, repository):
        """Test an empty id list returns an empty set."""
        assert repository.find_existing_ids(Episode, []) == set()


class TestTombstones:
    """Tests for mark_tombstoned and clear_tombstones."""

    def test_mark_tombstoned(self, repository):
        """Test active rows missing from keep_ids are tombstoned."""
        repository.upsert_records(Podcast, [{"id": "pod-1"}, {"id": "pod-2"}])

        count = repository.mark_tombstoned(Podcast, ["pod-1"])

        assert count == 1
        assert repository.get_podcast("pod-1").deleted_at is None
        assert repository.get_podcast("pod-2").deleted_at is not None

    def test_tombstone_time_is_kept(self, repository):
        """Test an already tombstoned row keeps its original tombstone time."""
        repository.upsert_records(Podcast, [{"id": "pod-1"}])
        repository.mark_tombstoned(Podcast, [])
        first = repository.get_podcast("pod-1").deleted_at

        assert repository.mark_tombstoned(Podcast, []) == 0
        assert repository.get_podcast("pod-1").deleted_at == first

    def test_empty_keep_ids_tombstones_everything(self, repository):
        """Test an empty snapshot tombstones every active row."""
        repository.upsert_records(Bookmark, [
            {"id": "bm-1", "podcast_id": "pod-1", "episode_id": "ep-1"},
            {"id": "bm-2", "podcast_id": "pod-1", "episode_id": "ep-2"},
        ])

        assert repository.mark_tombstoned(Bookmark, []) == 2
        assert all(b.deleted_at is not None for b in repository.list_bookmarks())

    def test_clear_tombstones(self, repository):
        """Test tombstones are cleared only for the given ids."""
        repository.upsert_records(Podcast, [{"id": "pod-1"}, {"id": "pod-2"}])
        repository.mark_tombstoned(Podcast, [])

        restored = repository.clear_tombstones(Podcast, ["pod-1", "pod-3"])

        assert restored == 1
        assert repository.get_podcast("pod-1").is_active
        assert not repository.get_podcast("pod-2").is_active


class TestSyncProgress:
    """Tests for the progress counter used as the fan-out barrier."""

    def test_no_progress_before_first_run(self, repository):
        """Test there is no progress row before any run."""
        assert repository.get_sync_progress() is None

    def test_reset(self, repository):
        """Test reset sets the total and zeroes the counter."""
        progress = repository.reset_sync_progress("run-1", total=3)

        assert progress.run_id == "run-1"
        assert progress.total == 3
        assert progress.completed == 0
        assert not progress.is_complete

    def test_record_completion_increments(self, repository):
        """Test each completion returns the post-increment value."""
        repository.reset_sync_progress("run-1", total=2)

        assert repository.record_podcast_completion("run-1", "pod-1") == (1, 2)
        assert repository.record_podcast_completion("run-1", "pod-2") == (2, 2)
        assert repository.get_sync_progress().is_complete

    def test_duplicate_completion_not_counted(self, repository):
        """Test a podcast completing twice in one run is counted once."""
        repository.reset_sync_progress("run-1", total=2)
        repository.record_podcast_completion("run-1", "pod-1")

        assert repository.record_podcast_completion("run-1", "pod-1") is None
        assert repository.get_sync_progress().completed == 1

    def test_stale_run_not_counted(self, repository):
        """Test completions for a superseded run leave the counter alone."""
        repository.reset_sync_progress("run-1", total=2)
        repository.reset_sync_progress("run-2", total=2)

        assert repository.record_podcast_completion("run-1", "pod-1") is None
        assert repository.get_sync_progress().completed == 0
        # The marker was rolled back, so the current run can still count it
        assert repository.record_podcast_completion("run-2", "pod-1") == (1, 2)

    def test_reset_starts_new_run(self, repository):
        """Test a reset for a new run restarts the counter."""
        repository.reset_sync_progress("run-1", total=1)
        repository.record_podcast_completion("run-1", "pod-1")

        repository.reset_sync_progress("run-2", total=1)

        assert repository.get_sync_progress().completed == 0
        assert repository.record_podcast_completion("run-2", "pod-1") == (1, 1)


class TestReadAccessors:
    """Tests for listing, filtering and statistics."""

    @pytest.fixture
    def populated(self, repository):
        """Store two podcasts, four episodes and two bookmarks."""
        repository.upsert_records(Podcast, [
            {"id": "pod-1", "title": "Second", "sort_position": 2},
            {"id": "pod-2", "title": "First", "sort_position": 1},
        ])
        repository.upsert_records(Episode, [
            _episode(
                "ep-played-old",
                playing_status=int(PlayingStatus.PLAYED),
                first_played_at=datetime(2023, 1, 1),
                published_at=datetime(2022, 12, 1),
            ),
            _episode(
                "ep-played-new",
                playing_status=int(PlayingStatus.PLAYED),
                first_played_at=datetime(2024, 1, 1),
                published_at=datetime(2022, 1, 1),
                starred=True,
            ),
            _episode(
                "ep-progress",
                playing_status=int(PlayingStatus.IN_PROGRESS),
                played_up_to=30,
                duration=60,
                published_at=datetime(2024, 5, 1),
            ),
            _episode(
                "ep-archived",
                podcast_id="pod-2",
                published_at=datetime(2024, 6, 1),
                is_archived=True,
            ),
        ])
        repository.upsert_records(Bookmark, [
            {"id": "bm-old", "podcast_id": "pod-1", "episode_id": "ep-1",
             "created_at": datetime(2023, 1, 1)},
            {"id": "bm-new", "podcast_id": "pod-1", "episode_id": "ep-1",
             "created_at": datetime(2024, 1, 1)},
        ])
        return repository

    def test_list_podcasts_sorted(self, populated):
        """Test podcasts are ordered by sort position."""
        assert [p.id for p in populated.list_podcasts()] == ["pod-2", "pod-1"]

    def test_list_podcasts_excludes_deleted(self, populated):
        """Test tombstoned podcasts can be excluded."""
        populated.mark_tombstoned(Podcast, ["pod-1"])

        assert [p.id for p in populated.list_podcasts(include_deleted=False)] == ["pod-1"]
        assert len(populated.list_podcasts()) == 2

    def test_list_podcasts_with_stats(self, populated):
        """Test stored and played episode counts per podcast."""
        rows = {row["podcast"].id: row for row in populated.list_podcasts_with_stats()}

        assert rows["pod-1"]["stored_episodes"] == 3
        assert rows["pod-1"]["played_episodes"] == 2
        assert rows["pod-2"]["stored_episodes"] == 1
        assert rows["pod-2"]["played_episodes"] == 0

    def test_list_episodes_order(self, populated):
        """Test played episodes come first, newest play first, then by published date."""
        ids = [e.id for e in populated.list_episodes()]

        assert ids == ["ep-played-new", "ep-played-old", "ep-archived", "ep-progress"]

    def test_list_episodes_pagination(self, populated):
        """Test limit and offset."""
        ids = [e.id for e in populated.list_episodes(limit=2, offset=1)]

        assert ids == ["ep-played-old", "ep-archived"]

    def test_list_episodes_zero_limit(self, populated):
        """Test a zero limit returns no rows instead of all of them."""
        assert populated.list_episodes(limit=0) == []

    def test_list_episodes_by_podcast(self, populated):
        """Test filtering by podcast id."""
        assert [e.id for e in populated.list_episodes(podcast_id="pod-2")] == ["ep-archived"]

    def test_status_filters_are_alternatives(self, populated):
        """Test several status filters match any of the statuses."""
        filters = [EpisodeFilter.PLAYED, EpisodeFilter.IN_PROGRESS]

        assert populated.count_episodes(filters=filters) == 3

    def test_flag_filters_narrow(self, populated):
        """Test starred narrows a status filter."""
        filters = [EpisodeFilter.PLAYED, EpisodeFilter.STARRED]

        assert [e.id for e in populated.list_episodes(filters=filters)] == ["ep-played-new"]

    def test_archived_filter(self, populated):
        """Test the archived filter."""
        assert populated.count_episodes(filters=[EpisodeFilter.ARCHIVED]) == 1

    def test_progress_percent(self, populated):
        """Test the progress percentage of an in-progress episode."""
        assert populated.get_episode("ep-progress").progress_percent == 50

    def test_list_bookmarks_order(self, populated):
        """Test active bookmarks come first, newest first."""
        populated.mark_tombstoned(Bookmark, ["bm-old"])
        populated.upsert_records(Bookmark, [
            {"id": "bm-other", "podcast_id": "pod-1", "episode_id": "ep-2",
             "created_at": datetime(2022, 1, 1)},
        ])

        ids = [b.id for b in populated.list_bookmarks()]

        assert ids == ["bm-old", "bm-other", "bm-new"]
        assert [b.id for b in populated.list_bookmarks(include_deleted=False)] == [
            "bm-old",
            "bm-other",
        ]

    def test_export_history(self, populated):
        """Test the history export uses list order and filters."""
        exported = populated.export_history(filters=[EpisodeFilter.PLAYED])

        assert [e.id for e in exported] == ["ep-played-new", "ep-played-old"]

    def test_overall_stats(self, populated):
        """Test aggregate counts."""
        populated.mark_tombstoned(Podcast, ["pod-1"])

        stats = populated.get_overall_stats()

        assert stats["total_episodes"] == 4
        assert stats["played"] == 2
        assert stats["in_progress"] == 1
        assert stats["starred"] == 1
        assert stats["archived"] == 1
        assert stats["with_history"] == 2
        assert stats["podcasts"] == 1
        assert stats["podcasts_removed"] == 1
        assert stats["bookmarks"] == 2
        assert stats["bookmarks_removed"] == 0
