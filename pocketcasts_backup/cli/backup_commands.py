"""CLI commands for running and inspecting backups.

Provides commands for:
- Running a backup run to completion
- Running a long-lived queue worker
- Viewing sync progress, queue depth and statistics
- Listing stored podcasts, episodes and bookmarks
"""

import argparse
import logging
import sys

from ..argparse_shared import (
    add_filter_argument,
    add_init_db_argument,
    add_log_level_argument,
    add_podcast_id_argument,
    get_base_parser,
)
from ..config import Config
from ..db.factory import create_repository_from_config
from ..db.filters import parse_filters
from ..workflow.config import PipelineConfig
from ..workflow.pipeline import BackupPipeline
from ..workflow.queue import MessageQueue
from ..workflow.runner import QueueRunner

logger = logging.getLogger(__name__)


def _open_store(args, config: Config, pipeline_config: PipelineConfig):
    """Create the repository and the queue sharing its session factory."""
    repository = create_repository_from_config(
        config, pipeline_config, create_tables=args.init_db
    )
    queue = MessageQueue(
        repository.SessionLocal,
        enqueue_batch_size=pipeline_config.enqueue_batch_size,
        lock_timeout_seconds=pipeline_config.lock_timeout_seconds,
    )
    return repository, queue


def run_backup(args, config: Config):
    """
    Start a backup run and process the queue until the run has drained.

    Exits with status code 1 if any message failed.
    """
    config.validate_credentials()
    pipeline_config = PipelineConfig.from_env()
    repository, queue = _open_store(args, config, pipeline_config)

    try:
        pipeline = BackupPipeline(repository, queue, config, pipeline_config)
        run_id = pipeline.start_backup()
        print(f"Started backup run {run_id}")

        result = QueueRunner(pipeline, queue, pipeline_config).run_until_empty()
        stats = repository.get_overall_stats()

        print(f"\nBackup complete:")
        print(f"  Messages processed: {result.processed}")
        print(f"  Messages failed: {result.failed}")
        print(f"  Episodes: {stats['total_episodes']}")
        print(f"  Podcasts: {stats['podcasts']} ({stats['podcasts_removed']} removed)")
        print(f"  Bookmarks: {stats['bookmarks']} ({stats['bookmarks_removed']} removed)")

        if result.failed:
            print(f"\nFailed messages:")
            for error in result.errors:
                print(f"  - {error}")
            sys.exit(1)

    finally:
        repository.close()


def run_worker(args, config: Config):
    """Consume pipeline messages until interrupted."""
    pipeline_config = PipelineConfig.from_env()
    repository, queue = _open_store(args, config, pipeline_config)

    try:
        pipeline = BackupPipeline(repository, queue, config, pipeline_config)
        QueueRunner(pipeline, queue, pipeline_config).run()
    finally:
        repository.close()


def show_status(args, config: Config):
    """
    Print sync progress of the latest run, queue depth and overall statistics.
    """
    pipeline_config = PipelineConfig.from_env()
    repository, queue = _open_store(args, config, pipeline_config)

    try:
        progress = repository.get_sync_progress()
        if progress is None:
            print("\nNo backup run yet")
        else:
            state = "complete" if progress.is_complete else "in progress"
            print(f"\nLatest run: {progress.run_id} ({state})")
            print(f"  Podcasts synced: {progress.completed}/{progress.total}")
            print(f"  Started: {progress.started_at}")
            print(f"  Last update: {progress.updated_at}")

        counts = queue.status_counts()
        print(f"\nQueue:")
        print(f"  Pending: {counts.get('pending', 0)}")
        print(f"  Processing: {counts.get('processing', 0)}")
        print(f"  Failed: {counts.get('failed', 0)}")

        if args.failed and counts.get("failed"):
            for message in queue.list_failed():
                print(f"    - {message.id} {message.kind}: {message.error}")

        stats = repository.get_overall_stats()
        print(f"\nOverall Statistics:")
        print(f"  Podcasts: {stats['podcasts']} ({stats['podcasts_removed']} removed)")
        print(f"  Episodes: {stats['total_episodes']}")
        print(f"    Played: {stats['played']}")
        print(f"    In progress: {stats['in_progress']}")
        print(f"    Starred: {stats['starred']}")
        print(f"    Archived: {stats['archived']}")
        print(f"    With play history: {stats['with_history']}")
        print(f"  Bookmarks: {stats['bookmarks']} ({stats['bookmarks_removed']} removed)")

    finally:
        repository.close()


def list_podcasts(args, config: Config):
    """Print a table of stored podcasts with their stored episode counts."""
    pipeline_config = PipelineConfig.from_env()
    repository, _ = _open_store(args, config, pipeline_config)

    try:
        rows = repository.list_podcasts_with_stats(include_deleted=args.all)
        if not rows:
            print("No podcasts found")
            return

        print(f"\n{'ID':<36}  {'Title':<40}  {'Stored':<8}  {'Played':<8}  {'Status'}")
        print("-" * 110)
        for row in rows:
            podcast = row["podcast"]
            status = "Subscribed" if podcast.is_active else f"Removed {podcast.deleted_at:%Y-%m-%d}"
            print(
                f"{podcast.id:<36}  "
                f"{(podcast.title or '')[:40]:<40}  "
                f"{row['stored_episodes']:<8}  "
                f"{row['played_episodes']:<8}  "
                f"{status}"
            )

    finally:
        repository.close()


def list_episodes(args, config: Config):
    """Print one page of stored episodes, most recently played first."""
    pipeline_config = PipelineConfig.from_env()
    repository, _ = _open_store(args, config, pipeline_config)

    filters = parse_filters(args.filters)
    offset = (max(args.page, 1) - 1) * args.limit

    try:
        total = repository.count_episodes(podcast_id=args.podcast_id, filters=filters)
        episodes = repository.list_episodes(
            podcast_id=args.podcast_id,
            filters=filters,
            limit=args.limit,
            offset=offset,
        )
        if not episodes:
            print("No episodes found")
            return

        print(f"\n{'Played':<16}  {'Podcast':<30}  {'Title':<50}  {'Progress'}")
        print("-" * 110)
        for episode in episodes:
            played = f"{episode.first_played_at:%Y-%m-%d %H:%M}" if episode.first_played_at else "-"
            print(
                f"{played:<16}  "
                f"{(episode.podcast_title or '')[:30]:<30}  "
                f"{(episode.title or '')[:50]:<50}  "
                f"{episode.progress_percent}%"
            )
        print(f"\nShowing {offset + 1}-{offset + len(episodes)} of {total}")

    finally:
        repository.close()


def list_bookmarks(args, config: Config):
    """Print stored bookmarks, active ones first."""
    pipeline_config = PipelineConfig.from_env()
    repository, _ = _open_store(args, config, pipeline_config)

    try:
        bookmarks = repository.list_bookmarks(
            podcast_id=args.podcast_id, include_deleted=args.all
        )
        if not bookmarks:
            print("No bookmarks found")
            return

        for bookmark in bookmarks:
            removed = " (removed)" if bookmark.deleted_at else ""
            print(
                f"{bookmark.time // 60:>4}:{bookmark.time % 60:02d}  "
                f"{bookmark.title or '(untitled)'}  [{bookmark.episode_id}]{removed}"
            )

    finally:
        repository.close()


def _positive_int(value):
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return number


def create_parser():
    """Create the argument parser."""
    parser = get_base_parser()
    add_log_level_argument(parser)
    add_init_db_argument(parser)

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # backup command
    subparsers.add_parser(
        "backup",
        help="Run a full backup and wait for it to finish",
    )

    # worker command
    subparsers.add_parser(
        "worker",
        help="Process pipeline messages until interrupted",
    )

    # status command
    status_parser = subparsers.add_parser(
        "status",
        help="Show sync progress, queue depth and statistics",
    )
    status_parser.add_argument(
        "--failed",
        action="store_true",
        help="List failed messages with their errors",
    )

    # podcasts command
    podcasts_parser = subparsers.add_parser(
        "podcasts",
        help="List backed-up podcasts",
    )
    podcasts_parser.add_argument(
        "--all",
        action="store_true",
        help="Include podcasts no longer subscribed",
    )

    # episodes command
    episodes_parser = subparsers.add_parser(
        "episodes",
        help="List backed-up episodes",
    )
    add_podcast_id_argument(episodes_parser)
    add_filter_argument(episodes_parser)
    episodes_parser.add_argument(
        "--limit",
        type=_positive_int,
        default=50,
        help="Episodes per page",
    )
    episodes_parser.add_argument(
        "--page",
        type=_positive_int,
        default=1,
        help="Page number (1-based)",
    )

    # bookmarks command
    bookmarks_parser = subparsers.add_parser(
        "bookmarks",
        help="List backed-up bookmarks",
    )
    add_podcast_id_argument(bookmarks_parser)
    bookmarks_parser.add_argument(
        "--all",
        action="store_true",
        help="Include removed bookmarks",
    )

    return parser


def main(argv=None):
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Load configuration
    config = Config(env_file=args.env_file)

    # Route to appropriate command
    commands = {
        "backup": run_backup,
        "worker": run_worker,
        "status": show_status,
        "podcasts": list_podcasts,
        "episodes": list_episodes,
        "bookmarks": list_bookmarks,
    }

    command_func = commands.get(args.command)
    if command_func:
        command_func(args, config)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
