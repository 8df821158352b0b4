"""Chunked transactional execution of write statements.

Callers hand over an arbitrarily long list of statements; they are applied
in fixed-size chunks, one transaction per chunk, one chunk at a time.
"""

import logging
from typing import Callable, Iterable, List, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql import Executable

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 50


class BatchExecutionError(Exception):
    """A chunk of statements failed and was rolled back.

    Chunks before `chunk_index` were committed and stay applied.
    """

    def __init__(self, chunk_index: int, applied_rows: int, cause: Exception):
        self.chunk_index = chunk_index
        self.applied_rows = applied_rows
        self.cause = cause
        super().__init__(
            f"Batch chunk {chunk_index} failed after {applied_rows} rows applied: {cause}"
        )


def chunked(items: Sequence, size: int) -> List[Sequence]:
    """Split `items` into contiguous slices of at most `size` elements."""
    if size < 1:
        raise ValueError(f"Chunk size must be >= 1, got {size}")
    return [items[i : i + size] for i in range(0, len(items), size)]


class BatchExecutor:
    """Applies write statements in sequential transactional chunks.

    Example:
        executor = BatchExecutor(session_factory, chunk_size=50)
        affected = executor.execute([update(Episode)..., insert(Episode)...])
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """Initialize the executor.

        Args:
            session_factory: Callable returning a new Session.
            chunk_size: Number of statements per transaction.

        Raises:
            ValueError: If chunk_size is less than 1.
        """
        if chunk_size < 1:
            raise ValueError(f"Chunk size must be >= 1, got {chunk_size}")
        self.session_factory = session_factory
        self.chunk_size = chunk_size

    def execute(self, statements: Iterable[Executable]) -> int:
        """Execute statements in order, one transaction per chunk.

        No statement is retried. A failing chunk is rolled back as a whole
        and raised as BatchExecutionError; earlier chunks remain committed.

        Args:
            statements: Ordered write statements.

        Returns:
            Total number of rows affected across all chunks.
        """
        statements = list(statements)
        if not statements:
            return 0

        chunks = chunked(statements, self.chunk_size)
        affected = 0

        for index, chunk in enumerate(chunks):
            chunk_affected = 0
            try:
                with self.session_factory() as session, session.begin():
                    for statement in chunk:
                        result = session.execute(statement)
                        # rowcount is -1 when the driver can't report it
                        if result.rowcount and result.rowcount > 0:
                            chunk_affected += result.rowcount
            except SQLAlchemyError as e:
                logger.error(
                    f"Batch chunk {index + 1}/{len(chunks)} failed: {e}"
                )
                raise BatchExecutionError(index, affected, e) from e
            affected += chunk_affected

        logger.debug(
            f"Executed {len(statements)} statements in {len(chunks)} chunks "
            f"({affected} rows affected)"
        )
        return affected
