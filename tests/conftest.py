"""
Pytest configuration and fixtures for pocketcasts-backup tests.

This module runs before any test imports, setting up the test environment.
Environment variables are explicitly set to ensure deterministic test behavior
regardless of external environment configuration.
"""

import os

# Test account credentials; no test talks to the real API
os.environ["POCKETCASTS_EMAIL"] = "test@example.com"
os.environ["POCKETCASTS_PASSWORD"] = "test-password"

# Pin endpoints and transport settings
os.environ["POCKETCASTS_API_URL"] = "https://api.pocketcasts.test"
os.environ["POCKETCASTS_CACHE_URL"] = "https://cache.pocketcasts.test"
os.environ["POCKETCASTS_RETRY_ATTEMPTS"] = "0"

# Pipeline settings read by PipelineConfig.from_env()
for _name in (
    "PIPELINE_BATCH_CHUNK_SIZE",
    "PIPELINE_WORKERS",
    "PIPELINE_ENQUEUE_BATCH_SIZE",
    "PIPELINE_IDLE_WAIT_SECONDS",
    "PIPELINE_LOCK_TIMEOUT_SECONDS",
    "PIPELINE_PREFETCH_METADATA",
    "HISTORY_FLOOR_YEAR",
    "HISTORY_STOP_AT_EMPTY_YEAR",
):
    os.environ.pop(_name, None)
