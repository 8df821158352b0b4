"""Pocket Casts web API client."""

import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import Config
from .models import (
    BookmarkSnapshot,
    EpisodeSyncItem,
    HistoryChange,
    PodcastEpisodeMetadata,
    PodcastSnapshot,
)

logger = logging.getLogger(__name__)


class PocketCastsAPIError(Exception):
    """The Pocket Casts API returned a non-success response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class PocketCastsClient:
    """Client for the Pocket Casts web API.

    Authenticated calls use a bearer token, either passed in (as carried by
    pipeline messages) or obtained with login().

    Example:
        client = PocketCastsClient(config)
        client.login(config.POCKETCASTS_EMAIL, config.POCKETCASTS_PASSWORD)
        podcasts = client.fetch_podcast_list()
    """

    DEFAULT_USER_AGENT = "PocketCastsBackup/1.0"

    def __init__(
        self,
        config: Config,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the client.

        Args:
            config: Application configuration (endpoints, timeout, retries).
            token: Bearer token for authenticated endpoints.
            session: Optional pre-built requests session (used by tests).
        """
        self.api_url = config.POCKETCASTS_API_URL
        self.cache_url = config.POCKETCASTS_CACHE_URL
        self.timeout = config.POCKETCASTS_TIMEOUT
        self.retry_attempts = config.POCKETCASTS_RETRY_ATTEMPTS
        self.token = token
        self._session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()

        retry_strategy = Retry(
            total=self.retry_attempts,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "POST"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update({"User-Agent": self.DEFAULT_USER_AGENT})

        return session

    def _headers(self) -> Dict[str, str]:
        if not self.token:
            raise PocketCastsAPIError("Not authenticated: call login() first")
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    def _post(self, path: str, body: Dict[str, Any], what: str) -> Dict[str, Any]:
        """POST an authenticated JSON request and return the decoded body."""
        response = self._session.post(
            f"{self.api_url}{path}",
            json=body,
            headers=self._headers(),
            timeout=self.timeout,
        )
        return self._decode(response, what)

    def _decode(self, response: requests.Response, what: str) -> Dict[str, Any]:
        if not response.ok:
            logger.error(f"Pocket Casts API error ({what}): {response.status_code} {response.text[:200]}")
            raise PocketCastsAPIError(
                f"Failed to fetch {what}: {response.status_code}",
                status_code=response.status_code,
            )
        return response.json() or {}

    # --- Authentication ---

    def login(self, email: str, password: str) -> str:
        """Exchange account credentials for a bearer token.

        Returns:
            The token, which is also stored on the client.

        Raises:
            PocketCastsAPIError: If the login request is rejected.
        """
        response = self._session.post(
            f"{self.api_url}/user/login",
            json={"email": email, "password": password, "scope": "webplayer"},
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )
        if not response.ok:
            raise PocketCastsAPIError("Login failed", status_code=response.status_code)

        token = (response.json() or {}).get("token")
        if not token:
            raise PocketCastsAPIError("Login response did not include a token")
        self.token = token
        logger.info("Logged in to Pocket Casts")
        return token

    # --- Account snapshot ---

    def fetch_podcast_list(self) -> List[PodcastSnapshot]:
        """Fetch the podcasts the account is subscribed to."""
        data = self._post("/user/podcast/list", {"v": 1}, "podcast list")
        return [PodcastSnapshot.from_api(item) for item in data.get("podcasts") or []]

    def fetch_bookmark_list(self) -> List[BookmarkSnapshot]:
        """Fetch every bookmark on the account."""
        data = self._post("/user/bookmark/list", {}, "bookmark list")
        return [BookmarkSnapshot.from_api(item) for item in data.get("bookmarks") or []]

    def fetch_episode_sync_state(self, podcast_id: str) -> List[EpisodeSyncItem]:
        """Fetch the per-episode playback state for one podcast."""
        data = self._post(
            "/user/podcast/episodes",
            {"uuid": podcast_id},
            f"episode sync state for {podcast_id}",
        )
        return [EpisodeSyncItem.from_api(item) for item in data.get("episodes") or []]

    def fetch_podcast_episode_metadata(self, podcast_id: str) -> PodcastEpisodeMetadata:
        """Fetch full episode metadata for a podcast from the public cache."""
        response = self._session.get(
            f"{self.cache_url}/podcast/full/{podcast_id}",
            timeout=self.timeout,
        )
        data = self._decode(response, f"episode metadata for {podcast_id}")
        return PodcastEpisodeMetadata.from_api(data)

    # --- Listening history ---

    def _fetch_history_year(self, year: int, count: bool) -> Dict[str, Any]:
        return self._post(
            "/history/year",
            {"version": "1", "count": count, "year": year},
            f"history for {year}",
        )

    def fetch_year_change_count(self, year: int) -> int:
        """Return the number of history changes recorded in `year`."""
        data = self._fetch_history_year(year, count=True)
        return int(data.get("count") or 0)

    def fetch_year_changes(self, year: int) -> List[HistoryChange]:
        """Return the full history change log for `year`."""
        data = self._fetch_history_year(year, count=False)
        changes = (data.get("history") or {}).get("changes") or []
        return [HistoryChange.from_api(change) for change in changes]

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self._session.close()
