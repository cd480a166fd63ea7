"""
Shared pytest fixtures and path setup for unit tests.
"""

import os
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Set required environment variables BEFORE any drivelink imports so Settings
# validation and token encryption work. These are test-only defaults.
os.environ.setdefault("DRIVELINK_ENVIRONMENT", "test")
os.environ.setdefault("DRIVELINK_OAUTH_ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("DRIVELINK_WATCH_REFRESH_ENABLED", "false")
os.environ.setdefault("DRIVELINK_SITE_URL", "https://chat.example.com")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")

# Add backend/src to sys.path so drivelink.* imports work when running pytest from repo root.
PROJECT_SRC = Path(__file__).resolve().parents[2]
if str(PROJECT_SRC) not in sys.path:
    sys.path.insert(0, str(PROJECT_SRC))

import pytest

from drivelink.core.cache_backend import InMemoryCacheBackend
from drivelink.store.kvstore import KVStore

TEST_FERNET_KEY = "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA="


@pytest.fixture
def backend():
    """Fresh in-memory key-value backend."""
    return InMemoryCacheBackend(cleanup_interval_seconds=0)


@pytest.fixture
def kv_store(backend):
    return KVStore(backend)


@pytest.fixture
def chat():
    """Chat platform client double; every user exists and every post succeeds."""
    mock = MagicMock()
    mock.get_user = AsyncMock(return_value={"id": "user1"})
    mock.create_post = AsyncMock(return_value={"id": "post1"})
    mock.create_direct_post = AsyncMock(return_value={"id": "post1"})
    mock.send_ephemeral_post = AsyncMock()
    mock.open_interactive_dialog = AsyncMock()
    return mock


@pytest.fixture
def mock_settings():
    """Provide a mock Settings object for tests that need custom configuration."""
    mock = MagicMock()
    mock.debug = False
    mock.environment = "test"
    mock.log_level = "DEBUG"
    mock.drive_queries_per_minute = 60
    mock.drive_burst_size = 10
    mock.rate_limit_wait_timeout_seconds = 1.0
    mock.rate_limit_flag_ttl_seconds = 10
    mock.watch_refresh_enabled = True
    mock.watch_refresh_interval_seconds = 3600
    mock.watch_refresh_workers = 2
    mock.oauth_encryption_key = TEST_FERNET_KEY
    return mock
