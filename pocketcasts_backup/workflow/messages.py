"""Pipeline messages exchanged between backup stages.

Each stage of a backup run is triggered by exactly one message kind. Messages
are stored in the queue as {"kind": ..., "payload": {...}}.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Union

START_SYNC = "start-sync"
SYNC_ONE_PODCAST = "sync-one-podcast"
SYNC_HISTORY = "sync-history"


@dataclass(frozen=True)
class StartSync:
    """Fetch and reconcile the account snapshot, then fan out per podcast."""

    run_id: str
    kind: str = field(default=START_SYNC, init=False)


@dataclass(frozen=True)
class SyncOnePodcast:
    """Reconcile the episodes of one podcast.

    Attributes:
        run_id: Backup run this message belongs to.
        podcast_id: Remote podcast uuid.
        token: Bearer token obtained by the start stage.
        podcast: Podcast fields denormalized onto new episodes (see PodcastSnapshot.to_payload).
    """

    run_id: str
    podcast_id: str
    token: str
    podcast: Dict[str, Any] = field(default_factory=dict)
    kind: str = field(default=SYNC_ONE_PODCAST, init=False)


@dataclass(frozen=True)
class SyncHistory:
    """Rebuild first-played times from the listening history."""

    run_id: str
    token: str
    kind: str = field(default=SYNC_HISTORY, init=False)


Message = Union[StartSync, SyncOnePodcast, SyncHistory]

_MESSAGE_TYPES = {
    START_SYNC: StartSync,
    SYNC_ONE_PODCAST: SyncOnePodcast,
    SYNC_HISTORY: SyncHistory,
}


def to_payload(message: Message) -> Dict[str, Any]:
    """Message fields without the kind tag."""
    payload = asdict(message)
    payload.pop("kind")
    return payload


def from_stored(kind: str, payload: Dict[str, Any]) -> Message:
    """Rebuild a message from its stored kind and payload.

    Raises:
        ValueError: If the kind is unknown or the payload does not match it.
    """
    message_type = _MESSAGE_TYPES.get(kind)
    if message_type is None:
        raise ValueError(f"Unknown pipeline message kind: {kind}")
    try:
        return message_type(**payload)
    except TypeError as e:
        raise ValueError(f"Invalid payload for {kind}: {e}") from e


def history_dedupe_key(run_id: str) -> str:
    """Queue dedupe key guaranteeing one history stage per run."""
    return f"{SYNC_HISTORY}:{run_id}"


def podcast_dedupe_key(run_id: str, podcast_id: str) -> str:
    return f"{SYNC_ONE_PODCAST}:{run_id}:{podcast_id}"
