"""Episode list filters shared by the read accessors and the CLI."""

import enum
from typing import Iterable, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement

from .models import Episode, PlayingStatus


class EpisodeFilter(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    PLAYED = "played"
    NOT_STARTED = "not_started"
    ARCHIVED = "archived"
    STARRED = "starred"


_STATUS_FILTERS = {
    EpisodeFilter.IN_PROGRESS: PlayingStatus.IN_PROGRESS,
    EpisodeFilter.PLAYED: PlayingStatus.PLAYED,
    EpisodeFilter.NOT_STARTED: PlayingStatus.NOT_STARTED,
}


def parse_filters(values: Optional[Iterable[str]]) -> List[EpisodeFilter]:
    """Convert raw filter strings to EpisodeFilter values.

    Unknown values are ignored and duplicates collapsed, keeping first-seen
    order.
    """
    filters: List[EpisodeFilter] = []
    for value in values or []:
        try:
            parsed = EpisodeFilter(value.strip().lower())
        except ValueError:
            continue
        if parsed not in filters:
            filters.append(parsed)
    return filters


def build_filter_clause(filters: Optional[Iterable[EpisodeFilter]]) -> Optional[ColumnElement]:
    """Build a WHERE clause for the given filters.

    Playing-status filters are alternatives (OR); archived and starred
    narrow the result (AND). Returns None when there is nothing to filter.
    """
    filters = list(filters or [])
    clauses = []

    statuses = [_STATUS_FILTERS[f] for f in filters if f in _STATUS_FILTERS]
    if statuses:
        clauses.append(or_(*(Episode.playing_status == int(s) for s in statuses)))
    if EpisodeFilter.ARCHIVED in filters:
        clauses.append(Episode.is_archived.is_(True))
    if EpisodeFilter.STARRED in filters:
        clauses.append(Episode.starred.is_(True))

    if not clauses:
        return None
    return and_(*clauses)
