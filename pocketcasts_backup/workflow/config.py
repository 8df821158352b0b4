"""Configuration for the backup pipeline.

Provides environment-based configuration for batch sizes, queue workers,
and history scanning settings.
"""

import os
from dataclasses import dataclass
from typing import Optional


def _get_int_env(
    name: str,
    default: int,
    min_val: Optional[int] = None,
    max_val: Optional[int] = None,
) -> int:
    """Parse an integer from an environment variable with validation.

    Args:
        name: Environment variable name.
        default: Default value if env var is not set.
        min_val: Minimum allowed value (inclusive), or None for no minimum.
        max_val: Maximum allowed value (inclusive), or None for no maximum.

    Returns:
        The parsed and validated integer value.

    Raises:
        ValueError: If the value cannot be parsed as an integer or is out of range.
    """
    raw = os.getenv(name)
    if raw is None:
        return default

    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid value for {name}: '{raw}' is not a valid integer"
        )

    if min_val is not None and value < min_val:
        raise ValueError(
            f"Invalid value for {name}: {value} must be >= {min_val}"
        )

    if max_val is not None and value > max_val:
        raise ValueError(
            f"Invalid value for {name}: {value} must be <= {max_val}"
        )

    return value


def _get_bool_env(name: str, default: bool) -> bool:
    """Parse a boolean flag ("true"/"false") from an environment variable."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class PipelineConfig:
    """Configuration for the backup pipeline.

    All settings can be overridden via environment variables.
    """

    # Store writes
    batch_chunk_size: int = 50  # Statements per transactional chunk

    # Queue consumer
    workers: int = 3  # Concurrent message handlers
    enqueue_batch_size: int = 100  # Max messages per enqueue_batch insert
    idle_wait_seconds: int = 5  # Wait time when the queue is empty
    lock_timeout_seconds: int = 600  # Claimed messages older than this are redelivered

    # Episode reconciliation
    prefetch_metadata: bool = False  # Fetch metadata alongside sync state

    # History scan
    history_floor_year: int = 2010
    history_stop_at_empty_year: bool = True

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Create configuration from environment variables.

        Returns:
            PipelineConfig instance with values from environment or defaults.

        Raises:
            ValueError: If any environment variable has an invalid value.
        """
        return cls(
            batch_chunk_size=_get_int_env(
                "PIPELINE_BATCH_CHUNK_SIZE", 50, min_val=1
            ),
            workers=_get_int_env("PIPELINE_WORKERS", 3, min_val=1),
            enqueue_batch_size=_get_int_env(
                "PIPELINE_ENQUEUE_BATCH_SIZE", 100, min_val=1
            ),
            idle_wait_seconds=_get_int_env(
                "PIPELINE_IDLE_WAIT_SECONDS", 5, min_val=0
            ),
            lock_timeout_seconds=_get_int_env(
                "PIPELINE_LOCK_TIMEOUT_SECONDS", 600, min_val=1
            ),
            prefetch_metadata=_get_bool_env("PIPELINE_PREFETCH_METADATA", False),
            history_floor_year=_get_int_env(
                "HISTORY_FLOOR_YEAR", 2010, min_val=1970, max_val=9999
            ),
            history_stop_at_empty_year=_get_bool_env(
                "HISTORY_STOP_AT_EMPTY_YEAR", True
            ),
        )
