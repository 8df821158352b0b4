"""Listening history reconstruction.

The remote account keeps one change log per calendar year. HistoryDeduplicator
walks those logs from the current year backwards and keeps the most recent
play of every episode; HistoryMerger writes the result onto stored episodes
without ever moving a first-played time backwards.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy import or_, update

from ..api.client import PocketCastsClient
from ..db.models import Episode
from ..db.repository import BackupRepositoryInterface, utcnow

logger = logging.getLogger(__name__)

DEFAULT_FLOOR_YEAR = 2010


@dataclass(frozen=True)
class HistoryEntry:
    """Most recent play of one episode."""

    episode_id: str
    played_at: datetime


@dataclass
class HistoryMergeResult:
    updated: int = 0
    skipped: int = 0


class HistoryDeduplicator:
    """Collects the most recent play per episode from the yearly change logs.

    Years are scanned newest first, so once an episode has a play recorded,
    plays from older years are ignored. Several plays within the same year
    collapse to the latest one.

    Example:
        deduplicator = HistoryDeduplicator(client, floor_year=2010)
        entries = deduplicator.collect()
    """

    def __init__(
        self,
        client: PocketCastsClient,
        floor_year: int = DEFAULT_FLOOR_YEAR,
        stop_at_empty_year: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the deduplicator.

        Args:
            client: Authenticated Pocket Casts client.
            floor_year: Oldest year to scan (inclusive).
            stop_at_empty_year: If True, the first year with no changes ends
                the scan; otherwise empty years are skipped.
            clock: Returns the current time; defaults to UTC now.
        """
        self.client = client
        self.floor_year = floor_year
        self.stop_at_empty_year = stop_at_empty_year
        self.clock = clock or utcnow

    def collect(self) -> List[HistoryEntry]:
        """
        Scan the yearly change logs and return one entry per played episode.

        Returns:
            List[HistoryEntry]: Entries in first-seen order, i.e. most recent year first.

        Raises:
            PocketCastsAPIError: If any yearly request fails; no partial result is returned.
        """
        seen: Dict[str, datetime] = {}
        current_year = self.clock().year

        for year in range(current_year, self.floor_year - 1, -1):
            count = self.client.fetch_year_change_count(year)
            if count == 0:
                if self.stop_at_empty_year:
                    logger.info(f"[History] {year}: no changes, stopping scan")
                    break
                logger.debug(f"[History] {year}: no changes")
                continue

            changes = self.client.fetch_year_changes(year)

            # Newer years win outright; within one year keep the latest play
            year_plays: Dict[str, datetime] = {}
            for change in changes:
                if not change.is_play or not change.episode_id or change.timestamp is None:
                    continue
                if change.episode_id in seen:
                    continue
                previous = year_plays.get(change.episode_id)
                if previous is None or change.timestamp > previous:
                    year_plays[change.episode_id] = change.timestamp
            seen.update(year_plays)

            logger.info(
                f"[History] {year}: {len(changes)} changes "
                f"({len(year_plays)} new, {len(seen)} unique episodes)"
            )

        logger.info(f"[History] Collected {len(seen)} played episodes")
        return [HistoryEntry(episode_id, played_at) for episode_id, played_at in seen.items()]


class HistoryMerger:
    """Applies history entries to stored episodes.

    first_played_at is only written when it is unset or older than the entry,
    so re-running a merge, or merging an older history, never moves it back.
    """

    def __init__(self, repository: BackupRepositoryInterface):
        self.repository = repository

    def apply(self, entries: Sequence[HistoryEntry]) -> HistoryMergeResult:
        """
        Merge `entries` into the episodes table.

        Entries for episodes that are not stored, or whose stored time is
        already equal or newer, count as skipped.

        Returns:
            HistoryMergeResult: Numbers of updated and skipped entries.
        """
        if not entries:
            return HistoryMergeResult()

        statements = [
            update(Episode)
            .where(
                Episode.id == entry.episode_id,
                or_(
                    Episode.first_played_at.is_(None),
                    Episode.first_played_at < entry.played_at,
                ),
            )
            .values(first_played_at=entry.played_at)
            .execution_options(synchronize_session=False)
            for entry in entries
        ]
        updated = self.repository.execute_batch(statements)

        result = HistoryMergeResult(updated=updated, skipped=len(entries) - updated)
        logger.info(f"[History] Merged: {result.updated} updated, {result.skipped} skipped")
        return result
