import os

from dotenv import load_dotenv


class Config:
    def __init__(self, env_file=None):
        """
        Initialize configuration by loading environment variables and setting default attributes.

        Loads environment variables from the provided .env file path when `env_file` is given; otherwise loads from the default environment. After loading, sets the Pocket Casts account credentials, remote API endpoints and HTTP transport settings, and database connection parameters using environment values with sensible defaults.
        Parameters:
            env_file (str | None): Optional path to a .env file to load environment variables from. If omitted, the default environment or default .env discovery is used.
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        # Pocket Casts account
        self.POCKETCASTS_EMAIL = os.getenv("POCKETCASTS_EMAIL", "")
        self.POCKETCASTS_PASSWORD = os.getenv("POCKETCASTS_PASSWORD", "")

        # Remote API endpoints
        api_url = os.getenv("POCKETCASTS_API_URL", "https://api.pocketcasts.com")
        if not api_url.lower().startswith(("http://", "https://")):
            raise ValueError(
                f"POCKETCASTS_API_URL must start with http:// or https://, got: {api_url}"
            )
        self.POCKETCASTS_API_URL = api_url.rstrip("/")
        # Public episode metadata cache (no auth required)
        self.POCKETCASTS_CACHE_URL = os.getenv(
            "POCKETCASTS_CACHE_URL", "https://podcast-api.pocketcasts.com"
        ).rstrip("/")

        # HTTP transport
        self.POCKETCASTS_TIMEOUT = int(os.getenv("POCKETCASTS_TIMEOUT", "30"))
        self.POCKETCASTS_RETRY_ATTEMPTS = int(
            os.getenv("POCKETCASTS_RETRY_ATTEMPTS", "3")
        )

        # Database configuration
        self.DATABASE_URL = os.getenv(
            "DATABASE_URL", "sqlite:///./pocketcasts_backup.db"
        )
        self.DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "3"))
        self.DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "2"))
        self.DB_POOL_PRE_PING = os.getenv("DB_POOL_PRE_PING", "true").lower() == "true"
        self.DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"

    def validate_credentials(self):
        """
        Ensure the Pocket Casts account credentials are configured.

        Raises:
            ValueError: If either POCKETCASTS_EMAIL or POCKETCASTS_PASSWORD is empty.
        """
        if not self.POCKETCASTS_EMAIL or not self.POCKETCASTS_PASSWORD:
            raise ValueError(
                "POCKETCASTS_EMAIL and POCKETCASTS_PASSWORD environment variables are required"
            )
