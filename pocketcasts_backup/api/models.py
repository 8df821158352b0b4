"""Data models for Pocket Casts API responses."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional

from ..db.models import PlayingStatus

# Change-log action code for "episode played"
PLAY_ACTION = 1


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an API timestamp into a naive UTC datetime.

    Accepts ISO-8601 strings (with or without a trailing "Z" or offset) and
    epoch milliseconds (as int or numeric string). Empty values yield None.
    """
    if value is None or value == "":
        return None

    if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        return datetime.fromtimestamp(int(value) / 1000, UTC).replace(tzinfo=None)

    text = str(value).strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class PodcastSnapshot:
    """A podcast from the remote subscription list."""

    id: str
    title: str = ""
    author: str = ""
    description: str = ""
    url: str = ""
    slug: str = ""
    date_added: Optional[datetime] = None
    folder_id: Optional[str] = None
    sort_position: int = 0
    last_episode_id: Optional[str] = None
    last_episode_published_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PodcastSnapshot":
        return cls(
            id=data["uuid"],
            title=data.get("title") or "",
            author=data.get("author") or "",
            description=data.get("description") or "",
            url=data.get("url") or "",
            slug=data.get("slug") or "",
            date_added=parse_timestamp(data.get("dateAdded")),
            folder_id=data.get("folderUuid") or None,
            sort_position=_int(data.get("sortPosition")),
            last_episode_id=data.get("lastEpisodeUuid") or None,
            last_episode_published_at=parse_timestamp(data.get("lastEpisodePublished")),
        )

    def to_record(self) -> Dict[str, Any]:
        """Column values for the podcasts table."""
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "description": self.description,
            "url": self.url,
            "slug": self.slug,
            "date_added": self.date_added,
            "folder_id": self.folder_id,
            "sort_position": self.sort_position,
            "last_episode_id": self.last_episode_id,
            "last_episode_published_at": self.last_episode_published_at,
        }

    def to_payload(self) -> Dict[str, Any]:
        """JSON-safe subset carried in pipeline messages."""
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "slug": self.slug,
        }

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "PodcastSnapshot":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            author=data.get("author", ""),
            slug=data.get("slug", ""),
        )


@dataclass
class BookmarkSnapshot:
    """A bookmark from the remote bookmark list."""

    id: str
    podcast_id: str
    episode_id: str
    time: int = 0
    title: str = ""
    created_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "BookmarkSnapshot":
        return cls(
            id=data["bookmarkUuid"],
            podcast_id=data.get("podcastUuid") or "",
            episode_id=data.get("episodeUuid") or "",
            time=_int(data.get("time")),
            title=data.get("title") or "",
            created_at=parse_timestamp(data.get("createdAt")),
        )

    def to_record(self) -> Dict[str, Any]:
        """Column values for the bookmarks table."""
        return {
            "id": self.id,
            "podcast_id": self.podcast_id,
            "episode_id": self.episode_id,
            "time": self.time,
            "title": self.title,
            "created_at": self.created_at,
        }


@dataclass
class EpisodeSyncItem:
    """Per-episode sync state for one podcast."""

    id: str
    playing_status: int = PlayingStatus.NOT_STARTED
    played_up_to: int = 0
    starred: bool = False
    is_archived: bool = False
    duration: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "EpisodeSyncItem":
        return cls(
            id=data["uuid"],
            playing_status=_int(data.get("playingStatus"), PlayingStatus.NOT_STARTED),
            played_up_to=_int(data.get("playedUpTo")),
            starred=bool(data.get("starred")),
            is_archived=bool(data.get("isDeleted")),
            duration=_int(data.get("duration")),
        )

    @property
    def is_interacted(self) -> bool:
        """True if the user has started or finished this episode."""
        return self.playing_status > PlayingStatus.NOT_STARTED or self.played_up_to > 0

    def sync_fields(self) -> Dict[str, Any]:
        """Mutable sync columns overwritten on every backup."""
        return {
            "playing_status": self.playing_status,
            "played_up_to": self.played_up_to,
            "starred": self.starred,
            "is_archived": self.is_archived,
        }


@dataclass
class EpisodeMetadata:
    """Full episode metadata from the public podcast cache."""

    id: str
    title: str = ""
    url: str = ""
    published_at: Optional[datetime] = None
    duration: int = 0
    file_type: str = ""
    file_size: int = 0
    episode_type: str = "full"
    season: int = 0
    number: int = 0
    slug: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "EpisodeMetadata":
        return cls(
            id=data["uuid"],
            title=data.get("title") or "",
            url=data.get("url") or "",
            published_at=parse_timestamp(data.get("published")),
            duration=_int(data.get("duration")),
            file_type=data.get("file_type") or "",
            file_size=_int(data.get("file_size")),
            episode_type=data.get("type") or "full",
            season=_int(data.get("season")),
            number=_int(data.get("number")),
            slug=data.get("slug") or "",
        )


@dataclass
class PodcastEpisodeMetadata:
    """Episode listing for one podcast."""

    episode_count: int
    episodes: List[EpisodeMetadata] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PodcastEpisodeMetadata":
        podcast = data.get("podcast") or {}
        episodes = [EpisodeMetadata.from_api(ep) for ep in podcast.get("episodes") or []]
        return cls(
            episode_count=_int(data.get("episode_count"), len(episodes)),
            episodes=episodes,
        )

    def by_id(self) -> Dict[str, EpisodeMetadata]:
        return {episode.id: episode for episode in self.episodes}


@dataclass
class HistoryChange:
    """One entry of a yearly listening-history change log."""

    action: int
    episode_id: str
    timestamp: Optional[datetime]

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "HistoryChange":
        return cls(
            action=_int(data.get("action")),
            episode_id=data.get("episode") or "",
            timestamp=parse_timestamp(data.get("modifiedAt")),
        )

    @property
    def is_play(self) -> bool:
        return self.action == PLAY_ACTION
