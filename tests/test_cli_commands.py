"""Tests for CLI backup_commands module."""

from datetime import datetime
from unittest.mock import Mock, patch

import pytest

from pocketcasts_backup.cli.backup_commands import create_parser, main
from pocketcasts_backup.db.factory import create_repository
from pocketcasts_backup.db.models import Bookmark, Episode, PlayingStatus, Podcast
from pocketcasts_backup.workflow.runner import WorkerResult


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    """Point DATABASE_URL at a fresh SQLite file with the schema created."""
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    repo = create_repository(url, create_tables=True)
    yield url
    repo.close()


@pytest.fixture
def seeded(db_url):
    """Store two podcasts (one removed), three episodes and a bookmark."""
    repo = create_repository(db_url)
    repo.upsert_records(Podcast, [
        {"id": "pod-1", "title": "Active Podcast", "sort_position": 1},
        {"id": "pod-2", "title": "Removed Podcast", "sort_position": 2},
    ])
    repo.mark_tombstoned(Podcast, ["pod-1"])
    repo.upsert_records(Episode, [
        {
            "id": "ep-1",
            "podcast_id": "pod-1",
            "podcast_title": "Active Podcast",
            "title": "Finished Episode",
            "playing_status": int(PlayingStatus.PLAYED),
            "first_played_at": datetime(2024, 5, 1, 8, 30),
        },
        {
            "id": "ep-2",
            "podcast_id": "pod-1",
            "podcast_title": "Active Podcast",
            "title": "Half Episode",
            "playing_status": int(PlayingStatus.IN_PROGRESS),
            "played_up_to": 300,
            "duration": 600,
        },
        {
            "id": "ep-3",
            "podcast_id": "pod-2",
            "podcast_title": "Removed Podcast",
            "title": "Old Episode",
            "playing_status": int(PlayingStatus.PLAYED),
        },
    ])
    repo.upsert_records(Bookmark, [
        {"id": "bm-1", "podcast_id": "pod-1", "episode_id": "ep-1", "time": 125, "title": "Good bit"},
    ])
    repo.close()
    return db_url


class TestCreateParser:
    """Tests for create_parser function."""

    def test_has_env_file_argument(self):
        """Test that parser has --env-file argument."""
        args = create_parser().parse_args(["--env-file", "/path/.env", "status"])
        assert args.env_file == "/path/.env"

    def test_backup_subcommand(self):
        args = create_parser().parse_args(["--init-db", "backup"])
        assert args.command == "backup"
        assert args.init_db is True

    def test_status_subcommand(self):
        args = create_parser().parse_args(["status", "--failed"])
        assert args.command == "status"
        assert args.failed is True

    def test_episodes_subcommand(self):
        """Test episodes subcommand parsing with repeated filters."""
        args = create_parser().parse_args([
            "episodes", "-f", "played", "-f", "starred", "--podcast-id", "pod-1", "--page", "2",
        ])
        assert args.filters == ["played", "starred"]
        assert args.podcast_id == "pod-1"
        assert args.page == 2
        assert args.limit == 50

    @pytest.mark.parametrize("argv", [
        ["episodes", "--limit", "0"],
        ["episodes", "--limit", "-5"],
        ["episodes", "--page", "0"],
        ["episodes", "--limit", "ten"],
    ])
    def test_episodes_rejects_non_positive_paging(self, argv):
        """Test limits and pages below 1 are rejected by the parser."""
        with pytest.raises(SystemExit) as exc_info:
            create_parser().parse_args(argv)
        assert exc_info.value.code == 2

    def test_bookmarks_subcommand(self):
        args = create_parser().parse_args(["bookmarks", "--all"])
        assert args.command == "bookmarks"
        assert args.all is True
        assert args.podcast_id is None


class TestMain:
    """Tests for main function routing."""

    def test_no_command_prints_help(self):
        """Test that no command exits with error."""
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1

    @patch("pocketcasts_backup.cli.backup_commands.Config")
    @patch("pocketcasts_backup.cli.backup_commands.show_status")
    def test_routes_to_status(self, mock_status, mock_config):
        main(["status"])
        mock_status.assert_called_once()

    @patch("pocketcasts_backup.cli.backup_commands.Config")
    @patch("pocketcasts_backup.cli.backup_commands.run_worker")
    def test_routes_to_worker(self, mock_worker, mock_config):
        main(["worker"])
        mock_worker.assert_called_once()


class TestBackupCommand:
    """Tests for the backup command."""

    @patch("pocketcasts_backup.cli.backup_commands.QueueRunner")
    @patch("pocketcasts_backup.cli.backup_commands.BackupPipeline")
    def test_backup_success(self, mock_pipeline_class, mock_runner_class, db_url, capsys):
        """Test a clean run prints the summary."""
        mock_pipeline_class.return_value.start_backup.return_value = "run-1"
        mock_runner_class.return_value.run_until_empty.return_value = WorkerResult(processed=5)

        main(["backup"])

        captured = capsys.readouterr()
        assert "Started backup run run-1" in captured.out
        assert "Messages processed: 5" in captured.out

    @patch("pocketcasts_backup.cli.backup_commands.QueueRunner")
    @patch("pocketcasts_backup.cli.backup_commands.BackupPipeline")
    def test_backup_failures_exit(self, mock_pipeline_class, mock_runner_class, db_url, capsys):
        """Test failed messages are listed and the exit code is 1."""
        mock_runner_class.return_value.run_until_empty.return_value = WorkerResult(
            processed=4, failed=1, errors=["Message 3 (sync-one-podcast): boom"]
        )

        with pytest.raises(SystemExit) as exc_info:
            main(["backup"])

        assert exc_info.value.code == 1
        assert "boom" in capsys.readouterr().out

    def test_backup_requires_credentials(self, db_url, monkeypatch):
        monkeypatch.setenv("POCKETCASTS_EMAIL", "")

        with pytest.raises(ValueError):
            main(["backup"])


class TestReadCommands:
    """Tests for the status and listing commands against a real database."""

    def test_status_without_runs(self, db_url, capsys):
        main(["status"])

        captured = capsys.readouterr()
        assert "No backup run yet" in captured.out
        assert "Pending: 0" in captured.out

    def test_status_with_data(self, seeded, capsys):
        main(["status"])

        captured = capsys.readouterr()
        assert "Podcasts: 1 (1 removed)" in captured.out
        assert "Episodes: 3" in captured.out
        assert "With play history: 1" in captured.out

    def test_init_db_flag(self, tmp_path, monkeypatch, capsys):
        """Test --init-db creates the schema on an empty database."""
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'new.db'}")

        main(["--init-db", "podcasts"])

        assert "No podcasts found" in capsys.readouterr().out

    def test_podcasts_hides_removed(self, seeded, capsys):
        main(["podcasts"])

        captured = capsys.readouterr()
        assert "Active Podcast" in captured.out
        assert "Removed Podcast" not in captured.out

    def test_podcasts_all(self, seeded, capsys):
        main(["podcasts", "--all"])

        captured = capsys.readouterr()
        assert "Removed Podcast" in captured.out
        assert "Removed 20" in captured.out

    def test_episodes_filtered(self, seeded, capsys):
        main(["episodes", "-f", "in_progress"])

        captured = capsys.readouterr()
        assert "Half Episode" in captured.out
        assert "50%" in captured.out
        assert "Finished Episode" not in captured.out
        assert "Showing 1-1 of 1" in captured.out

    def test_episodes_paged(self, seeded, capsys):
        main(["episodes", "--limit", "2", "--page", "2"])

        assert "Showing 3-3 of 3" in capsys.readouterr().out

    def test_bookmarks(self, seeded, capsys):
        main(["bookmarks"])

        assert "2:05  Good bit  [ep-1]" in capsys.readouterr().out
