"""Backup pipeline: the stage handlers of one backup run.

A run is three stages connected only through the message queue:

1. start-sync: log in, fetch and reconcile the podcast and bookmark
   snapshots, reset the progress counter and fan out one message per podcast.
2. sync-one-podcast: reconcile one podcast's episodes and count the podcast
   as done. The handler that completes the last podcast enqueues stage 3.
3. sync-history: rebuild first-played times from the listening history.
"""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from ..api.client import PocketCastsClient
from ..api.models import PodcastSnapshot
from ..config import Config
from ..db.repository import BackupRepositoryInterface
from ..sync.history import HistoryDeduplicator, HistoryMerger
from ..sync.reconciler import EpisodeReconciler, SnapshotReconciler
from .config import PipelineConfig
from .messages import (
    Message,
    StartSync,
    SyncHistory,
    SyncOnePodcast,
    history_dedupe_key,
    podcast_dedupe_key,
)
from .queue import MessageQueue

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Optional[str]], PocketCastsClient]


class BackupPipeline:
    """Runs the stages of a backup run in response to queue messages.

    Handlers are safe to run again for the same message: reconciliation is
    upsert-based, a podcast is counted at most once per run and the history
    stage is enqueued at most once per run.

    Example:
        pipeline = BackupPipeline(repository, queue, config, pipeline_config)
        run_id = pipeline.start_backup()
        QueueRunner(pipeline, queue, pipeline_config).run_until_empty()
    """

    def __init__(
        self,
        repository: BackupRepositoryInterface,
        queue: MessageQueue,
        config: Config,
        pipeline_config: Optional[PipelineConfig] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        """Initialize the pipeline.

        Args:
            repository: Backup store.
            queue: Queue connecting the stages.
            config: Application configuration (credentials, API endpoints).
            pipeline_config: Pipeline settings; defaults to PipelineConfig().
            client_factory: Builds an API client for a bearer token (None
                before login). Defaults to PocketCastsClient.
        """
        self.repository = repository
        self.queue = queue
        self.config = config
        self.pipeline_config = pipeline_config or PipelineConfig()
        self.client_factory = client_factory or (
            lambda token=None: PocketCastsClient(config, token=token)
        )

        self._handlers = {
            StartSync: self._handle_start,
            SyncOnePodcast: self._handle_sync_one_podcast,
            SyncHistory: self._handle_sync_history,
        }

    def start_backup(self) -> str:
        """
        Accept a new backup run.

        Returns:
            str: The run id; the work itself happens when the queue is processed.
        """
        run_id = str(uuid.uuid4())
        self.queue.enqueue(StartSync(run_id=run_id))
        logger.info(f"Backup run {run_id} accepted")
        return run_id

    def handle_message(self, message: Message):
        """
        Run the stage for `message`.

        Returns:
            The stage result (counts for logging and tests).

        Raises:
            ValueError: For an unsupported message type.
            Exception: Any remote or store failure propagates so the queue can mark the message failed.
        """
        handler = self._handlers.get(type(message))
        if handler is None:
            raise ValueError(f"Unsupported pipeline message: {message!r}")
        return handler(message)

    # --- Stage 1: snapshot and fan-out ---

    def _handle_start(self, message: StartSync):
        self.config.validate_credentials()
        client = self.client_factory(None)
        try:
            token = client.login(
                self.config.POCKETCASTS_EMAIL, self.config.POCKETCASTS_PASSWORD
            )

            with ThreadPoolExecutor(max_workers=2, thread_name_prefix="snapshot") as executor:
                podcasts_future = executor.submit(client.fetch_podcast_list)
                bookmarks_future = executor.submit(client.fetch_bookmark_list)
                podcasts = podcasts_future.result()
                bookmarks = bookmarks_future.result()
        finally:
            client.close()

        logger.info(
            f"Run {message.run_id}: {len(podcasts)} podcasts, {len(bookmarks)} bookmarks"
        )

        reconciler = SnapshotReconciler(self.repository)
        podcast_result = reconciler.reconcile_podcasts(podcasts)
        bookmark_result = reconciler.reconcile_bookmarks(bookmarks)

        progress = self.repository.get_sync_progress()
        if progress is not None and progress.run_id == message.run_id:
            # Redelivered start message: keep the counter, completions already recorded still count
            logger.warning(f"Run {message.run_id} already started, not resetting progress")
        else:
            self.repository.reset_sync_progress(message.run_id, total=len(podcasts))

        if not podcasts:
            logger.info(f"Run {message.run_id}: no podcasts, going straight to history")
            self._enqueue_history(message.run_id, token)
            return podcast_result, bookmark_result

        self.queue.enqueue_batch(
            [
                (
                    SyncOnePodcast(
                        run_id=message.run_id,
                        podcast_id=podcast.id,
                        token=token,
                        podcast=podcast.to_payload(),
                    ),
                    podcast_dedupe_key(message.run_id, podcast.id),
                )
                for podcast in podcasts
            ]
        )
        return podcast_result, bookmark_result

    # --- Stage 2: one podcast ---

    def _handle_sync_one_podcast(self, message: SyncOnePodcast):
        podcast = PodcastSnapshot.from_payload({"id": message.podcast_id, **message.podcast})

        client = self.client_factory(message.token)
        try:
            reconciler = EpisodeReconciler(
                self.repository,
                client,
                prefetch_metadata=self.pipeline_config.prefetch_metadata,
            )
            result = reconciler.reconcile_podcast(podcast)
        finally:
            client.close()

        counted = self.repository.record_podcast_completion(message.run_id, podcast.id)
        if counted is None:
            # Already counted: a previous delivery may have died before enqueueing history
            progress = self.repository.get_sync_progress()
            if (
                progress is not None
                and progress.run_id == message.run_id
                and progress.is_complete
            ):
                self._enqueue_history(message.run_id, message.token)
            return result

        completed, total = counted
        logger.info(f"[{podcast.title or podcast.id}] Done ({completed}/{total})")
        if completed >= total:
            logger.info(f"Run {message.run_id}: all {total} podcasts synced")
            self._enqueue_history(message.run_id, message.token)
        return result

    # --- Stage 3: history ---

    def _handle_sync_history(self, message: SyncHistory):
        client = self.client_factory(message.token)
        try:
            deduplicator = HistoryDeduplicator(
                client,
                floor_year=self.pipeline_config.history_floor_year,
                stop_at_empty_year=self.pipeline_config.history_stop_at_empty_year,
            )
            entries = deduplicator.collect()
        finally:
            client.close()

        result = HistoryMerger(self.repository).apply(entries)
        logger.info(
            f"Run {message.run_id} finished: history updated={result.updated}, "
            f"skipped={result.skipped}"
        )
        return result

    def _enqueue_history(self, run_id: str, token: str) -> bool:
        return self.queue.enqueue(
            SyncHistory(run_id=run_id, token=token),
            dedupe_key=history_dedupe_key(run_id),
        )
