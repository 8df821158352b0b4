"""Pocket Casts remote API.

Provides:
- PocketCastsClient for the account, episode cache and history endpoints
- Dataclasses for the snapshots those endpoints return
"""

from .client import PocketCastsAPIError, PocketCastsClient
from .models import (
    PLAY_ACTION,
    BookmarkSnapshot,
    EpisodeMetadata,
    EpisodeSyncItem,
    HistoryChange,
    PodcastEpisodeMetadata,
    PodcastSnapshot,
)

__all__ = [
    "PLAY_ACTION",
    "BookmarkSnapshot",
    "EpisodeMetadata",
    "EpisodeSyncItem",
    "HistoryChange",
    "PocketCastsAPIError",
    "PocketCastsClient",
    "PodcastEpisodeMetadata",
    "PodcastSnapshot",
]
