"""Durable at-least-once message queue backed by the pipeline_messages table.

A message is claimed by atomically moving it from "pending" to "processing",
deleted when acked and marked "failed" when its handler raises. Messages left
in "processing" longer than the lock timeout (a crashed worker) are released
back to "pending" and delivered again.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.batch import chunked
from ..db.models import PipelineMessage
from ..db.repository import utcnow
from .messages import Message, from_stored, to_payload

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_FAILED = "failed"

DEFAULT_ENQUEUE_BATCH_SIZE = 100
DEFAULT_LOCK_TIMEOUT_SECONDS = 600

# Stored error text is truncated to this length
_MAX_ERROR_LENGTH = 2000


@dataclass
class QueuedMessage:
    """A claimed queue row."""

    id: int
    kind: str
    payload: Dict[str, Any]
    attempts: int = 0

    def decode(self) -> Message:
        """Rebuild the pipeline message (raises ValueError for malformed rows)."""
        return from_stored(self.kind, self.payload)


class MessageQueue:
    """Queue of pipeline messages stored in the database.

    Example:
        queue = MessageQueue(repository.SessionLocal)
        queue.enqueue(StartSync(run_id=run_id))
        for queued in queue.claim(limit=3):
            ...
            queue.ack(queued.id)
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        enqueue_batch_size: int = DEFAULT_ENQUEUE_BATCH_SIZE,
        lock_timeout_seconds: int = DEFAULT_LOCK_TIMEOUT_SECONDS,
    ):
        """Initialize the queue.

        Args:
            session_factory: Callable returning a new Session.
            enqueue_batch_size: Maximum messages inserted per transaction by enqueue_batch().
            lock_timeout_seconds: Age after which a claimed message is considered abandoned.
        """
        if enqueue_batch_size < 1:
            raise ValueError(f"Enqueue batch size must be >= 1, got {enqueue_batch_size}")
        self.session_factory = session_factory
        self.enqueue_batch_size = enqueue_batch_size
        self.lock_timeout_seconds = lock_timeout_seconds

    @staticmethod
    def _row(message: Message, dedupe_key: Optional[str]) -> PipelineMessage:
        return PipelineMessage(
            kind=message.kind,
            payload=to_payload(message),
            dedupe_key=dedupe_key,
            status=STATUS_PENDING,
            attempts=0,
        )

    def enqueue(self, message: Message, dedupe_key: Optional[str] = None) -> bool:
        """
        Add one message to the queue.

        Parameters:
            message: Pipeline message to deliver.
            dedupe_key (Optional[str]): If set, the message is dropped when a message with the same key was already enqueued and not yet acked.

        Returns:
            bool: True if the message was enqueued, False if it was a duplicate.
        """
        with self.session_factory() as session:
            session.add(self._row(message, dedupe_key))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info(f"Skipping duplicate {message.kind} message ({dedupe_key})")
                return False

        logger.debug(f"Enqueued {message.kind} message for run {message.run_id}")
        return True

    def enqueue_batch(
        self, messages: Sequence[Tuple[Message, Optional[str]]]
    ) -> int:
        """
        Add many messages, at most `enqueue_batch_size` per transaction.

        Parameters:
            messages: (message, dedupe_key) pairs; dedupe_key may be None.

        Returns:
            int: Number of messages enqueued (duplicates excluded).
        """
        enqueued = 0
        for chunk in chunked(list(messages), self.enqueue_batch_size):
            with self.session_factory() as session:
                session.add_all([self._row(message, key) for message, key in chunk])
                try:
                    session.commit()
                    enqueued += len(chunk)
                    continue
                except IntegrityError:
                    session.rollback()

            # A duplicate in the chunk: fall back to one insert per message
            logger.debug("Duplicate in enqueue batch, inserting messages individually")
            for message, key in chunk:
                if self.enqueue(message, dedupe_key=key):
                    enqueued += 1

        logger.info(f"Enqueued {enqueued} of {len(messages)} messages")
        return enqueued

    def claim(self, limit: int) -> List[QueuedMessage]:
        """
        Claim up to `limit` pending messages, oldest first.

        Each message is moved to "processing" with a conditional update, so
        a message is handed to at most one concurrent claimer.
        """
        if limit < 1:
            return []

        now = utcnow()
        claimed: List[QueuedMessage] = []
        with self.session_factory() as session:
            candidate_ids = session.scalars(
                select(PipelineMessage.id)
                .where(PipelineMessage.status == STATUS_PENDING)
                .order_by(PipelineMessage.id)
                .limit(limit)
            ).all()

            for message_id in candidate_ids:
                result = session.execute(
                    update(PipelineMessage)
                    .where(
                        PipelineMessage.id == message_id,
                        PipelineMessage.status == STATUS_PENDING,
                    )
                    .values(
                        status=STATUS_PROCESSING,
                        locked_at=now,
                        attempts=PipelineMessage.attempts + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    row = session.get(PipelineMessage, message_id)
                    claimed.append(
                        QueuedMessage(
                            id=row.id,
                            kind=row.kind,
                            payload=dict(row.payload),
                            attempts=row.attempts,
                        )
                    )
            session.commit()

        return claimed

    def ack(self, message_id: int) -> None:
        """Remove a successfully handled message."""
        with self.session_factory() as session:
            session.execute(delete(PipelineMessage).where(PipelineMessage.id == message_id))
            session.commit()

    def fail(self, message_id: int, error: str) -> None:
        """Mark a message as failed and keep the error for inspection."""
        with self.session_factory() as session:
            session.execute(
                update(PipelineMessage)
                .where(PipelineMessage.id == message_id)
                .values(
                    status=STATUS_FAILED,
                    error=error[:_MAX_ERROR_LENGTH],
                    locked_at=None,
                )
                .execution_options(synchronize_session=False)
            )
            session.commit()

    def release_stale(self) -> int:
        """
        Return abandoned "processing" messages to "pending".

        Returns:
            int: Number of messages released for redelivery.
        """
        cutoff = utcnow() - timedelta(seconds=self.lock_timeout_seconds)
        with self.session_factory() as session:
            count = session.execute(
                update(PipelineMessage)
                .where(
                    PipelineMessage.status == STATUS_PROCESSING,
                    PipelineMessage.locked_at < cutoff,
                )
                .values(status=STATUS_PENDING, locked_at=None)
                .execution_options(synchronize_session=False)
            ).rowcount
            session.commit()

        if count:
            logger.warning(f"Released {count} stale messages for redelivery")
        return count

    def pending_count(self) -> int:
        with self.session_factory() as session:
            return session.scalar(
                select(func.count(PipelineMessage.id)).where(
                    PipelineMessage.status == STATUS_PENDING
                )
            ) or 0

    def status_counts(self) -> Dict[str, int]:
        """Number of queued messages per status."""
        with self.session_factory() as session:
            rows = session.execute(
                select(PipelineMessage.status, func.count(PipelineMessage.id)).group_by(
                    PipelineMessage.status
                )
            ).all()
        return {status: count for status, count in rows}

    def list_failed(self, limit: int = 20) -> List[PipelineMessage]:
        """Most recent failed messages, newest first."""
        with self.session_factory() as session:
            return list(
                session.scalars(
                    select(PipelineMessage)
                    .where(PipelineMessage.status == STATUS_FAILED)
                    .order_by(PipelineMessage.id.desc())
                    .limit(limit)
                ).all()
            )
