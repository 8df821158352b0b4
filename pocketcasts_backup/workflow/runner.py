"""Queue consumer for the backup pipeline.

Claims pending messages, runs their handlers on a thread pool and acks or
fails each one. Used both to drain the queue once (the `backup` command) and
as a long-running worker (the `worker` command).
"""

import logging
import signal
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import List, Optional

from .config import PipelineConfig
from .pipeline import BackupPipeline
from .queue import MessageQueue, QueuedMessage

logger = logging.getLogger(__name__)


@dataclass
class WorkerResult:
    """Result of processing queue messages.

    Attributes:
        processed: Number of messages handled and acked.
        failed: Number of messages whose handler raised.
        errors: Error messages for failed messages.
    """

    processed: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        """Total number of messages attempted."""
        return self.processed + self.failed

    def __add__(self, other: "WorkerResult") -> "WorkerResult":
        """Combine two WorkerResults."""
        return WorkerResult(
            processed=self.processed + other.processed,
            failed=self.failed + other.failed,
            errors=self.errors + other.errors,
        )


@dataclass
class RunnerStats:
    """Statistics for a worker loop run."""

    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    stopped_at: Optional[datetime] = None
    result: WorkerResult = field(default_factory=WorkerResult)

    @property
    def duration_seconds(self) -> float:
        """Duration of the run in seconds."""
        end = self.stopped_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()


class QueueRunner:
    """Processes pipeline messages from the queue.

    Example:
        runner = QueueRunner(pipeline, queue, pipeline_config)

        # Drain everything a backup run enqueues
        result = runner.run_until_empty()

        # Or keep consuming until interrupted
        runner.run()
    """

    def __init__(
        self,
        pipeline: BackupPipeline,
        queue: MessageQueue,
        pipeline_config: Optional[PipelineConfig] = None,
    ):
        """Initialize the runner.

        Args:
            pipeline: Pipeline whose handlers process the messages.
            queue: Queue to consume.
            pipeline_config: Worker count and idle wait; defaults to PipelineConfig().
        """
        self.pipeline = pipeline
        self.queue = queue
        self.pipeline_config = pipeline_config or PipelineConfig()
        self._running = False

    @property
    def name(self) -> str:
        return "Queue"

    def process_batch(self, executor: Optional[ThreadPoolExecutor] = None) -> WorkerResult:
        """Claim up to one message per worker and process them.

        Args:
            executor: Thread pool to run handlers on; messages are processed
                in the calling thread when None.

        Returns:
            WorkerResult for the claimed messages.
        """
        self.queue.release_stale()
        claimed = self.queue.claim(limit=self.pipeline_config.workers)
        result = WorkerResult()
        if not claimed:
            return result

        if executor is None:
            outcomes = [self._process_one(queued) for queued in claimed]
        else:
            outcomes = list(executor.map(self._process_one, claimed))

        for error in outcomes:
            if error is None:
                result.processed += 1
            else:
                result.failed += 1
                result.errors.append(error)
        return result

    def _process_one(self, queued: QueuedMessage) -> Optional[str]:
        """Handle one message, then ack it or mark it failed.

        Returns:
            None on success, otherwise the error text.
        """
        try:
            message = queued.decode()
            logger.debug(f"Handling {queued.kind} message {queued.id} (attempt {queued.attempts})")
            self.pipeline.handle_message(message)
        except Exception as e:
            logger.exception(f"Message {queued.id} ({queued.kind}) failed")
            error = f"{type(e).__name__}: {e}"
            self.queue.fail(queued.id, error)
            return f"Message {queued.id} ({queued.kind}): {error}"

        self.queue.ack(queued.id)
        return None

    def run_until_empty(self, max_batches: Optional[int] = None) -> WorkerResult:
        """Process messages until no pending message remains.

        Handlers enqueue follow-up stages, so this drains a whole backup run.

        Args:
            max_batches: Optional safety limit on claim rounds.

        Returns:
            Combined WorkerResult.
        """
        total = WorkerResult()
        batches = 0
        with self._executor() as executor:
            while max_batches is None or batches < max_batches:
                result = self.process_batch(executor)
                if result.total == 0:
                    break
                total += result
                batches += 1

        self.log_result(total)
        return total

    def run(self) -> RunnerStats:
        """Consume the queue until interrupted (SIGINT/SIGTERM).

        Returns:
            RunnerStats with run statistics.
        """
        logger.info(f"Starting queue worker with {self.pipeline_config.workers} workers")
        self._running = True
        stats = RunnerStats()

        # Set up signal handlers for graceful shutdown
        original_sigint = signal.signal(signal.SIGINT, self._handle_signal)
        original_sigterm = signal.signal(signal.SIGTERM, self._handle_signal)

        try:
            with self._executor() as executor:
                while self._running:
                    result = self.process_batch(executor)
                    stats.result += result

                    if result.total == 0:
                        logger.debug(
                            f"Queue empty, sleeping {self.pipeline_config.idle_wait_seconds}s"
                        )
                        time.sleep(self.pipeline_config.idle_wait_seconds)
        finally:
            # Restore signal handlers
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)

            stats.stopped_at = datetime.now(UTC)
            logger.info(
                f"Queue worker stopped. Stats: "
                f"processed={stats.result.processed}, "
                f"failed={stats.result.failed}, "
                f"duration={stats.duration_seconds:.1f}s"
            )

        return stats

    def stop(self) -> None:
        """Signal the worker loop to stop after the current batch."""
        logger.info("Stopping queue worker...")
        self._running = False

    def _handle_signal(self, signum, frame) -> None:
        """Handle interrupt signals gracefully."""
        sig_name = signal.Signals(signum).name
        logger.info(f"Received {sig_name}, initiating graceful shutdown...")
        self.stop()

    def _executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(
            max_workers=self.pipeline_config.workers,
            thread_name_prefix="pipeline",
        )

    def log_result(self, result: WorkerResult) -> None:
        """Log the result of a processing run.

        Args:
            result: The WorkerResult to log.
        """
        if result.total == 0:
            logger.info(f"[{self.name}] No messages to process")
        else:
            logger.info(
                f"[{self.name}] Processed: {result.processed}, Failed: {result.failed}"
            )

        for error in result.errors:
            logger.error(f"[{self.name}] {error}")
