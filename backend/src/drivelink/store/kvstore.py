"""Typed key-value operations used by the notification pipeline.

Key layout:
    drive_change_channels-{user_id}             WatchChannelData JSON
    last_activity-{user_id}-{file_id}           ISO-8601 timestamp
    {user_id}_token                             Fernet-encrypted OAuth token JSON
    user-rate_limited-{service}-{user_id}       cool-down flag (short TTL)
    user-rate_limited-{service}                 project-wide cool-down flag
    oauth2_state-{state}                        pending OAuth redirect (single use)
"""

import logging

from pydantic import ValidationError

from ..core.cache_backend import CacheBackend, CacheOperationError
from ..schemas.watch import WatchChannelData

logger = logging.getLogger(__name__)

WATCH_CHANNEL_PREFIX = "drive_change_channels-"
LAST_ACTIVITY_PREFIX = "last_activity-"
TOKEN_SUFFIX = "_token"
RATE_LIMIT_PREFIX = "user-rate_limited-"
OAUTH_STATE_PREFIX = "oauth2_state-"

FLAG_VALUE = "1"


def watch_channel_key(user_id: str) -> str:
    return f"{WATCH_CHANNEL_PREFIX}{user_id}"


def last_activity_key(user_id: str, file_id: str) -> str:
    return f"{LAST_ACTIVITY_PREFIX}{user_id}-{file_id}"


def token_key(user_id: str) -> str:
    return f"{user_id}{TOKEN_SUFFIX}"


def user_rate_limit_key(service_type: str, user_id: str) -> str:
    return f"{RATE_LIMIT_PREFIX}{service_type}-{user_id}"


def project_rate_limit_key(service_type: str) -> str:
    return f"{RATE_LIMIT_PREFIX}{service_type}"


def oauth_state_key(state: str) -> str:
    return f"{OAUTH_STATE_PREFIX}{state}"


class KVStore:
    """Watch state, cursors, credentials and cool-down flags over a CacheBackend."""

    def __init__(self, backend: CacheBackend):
        self._backend = backend

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    # Watch channels

    async def _load_watch_channel(self, key: str) -> WatchChannelData | None:
        raw = await self._backend.get(key)
        if raw is None:
            return None
        try:
            return WatchChannelData.model_validate_json(raw)
        except ValidationError as e:
            raise CacheOperationError(
                f"Corrupt watch channel record under '{key}'",
                details={"key": key, "error": str(e)},
            ) from e

    async def get_watch_channel(self, user_id: str) -> WatchChannelData | None:
        return await self._load_watch_channel(watch_channel_key(user_id))

    async def get_watch_channel_by_key(self, key: str) -> WatchChannelData | None:
        return await self._load_watch_channel(key)

    async def store_watch_channel(self, user_id: str, data: WatchChannelData) -> None:
        await self._backend.set(watch_channel_key(user_id), data.model_dump_json())

    async def delete_watch_channel(self, user_id: str) -> bool:
        return await self._backend.delete(watch_channel_key(user_id))

    async def list_watch_channel_keys(self, page: int, per_page: int) -> list[str]:
        return await self._backend.list_keys(WATCH_CHANNEL_PREFIX, page=page, per_page=per_page)

    # Per-file activity cursors

    async def get_last_activity(self, user_id: str, file_id: str) -> str:
        """Return the last reported activity time for the file, or "" if none."""
        return await self._backend.get(last_activity_key(user_id, file_id)) or ""

    async def store_last_activity(self, user_id: str, file_id: str, timestamp: str) -> None:
        await self._backend.set(last_activity_key(user_id, file_id), timestamp)

    # Credentials

    async def get_token(self, user_id: str) -> str | None:
        """Return the encrypted token blob, or None if the user never connected."""
        return await self._backend.get(token_key(user_id))

    async def store_token(self, user_id: str, encrypted_token: str) -> None:
        await self._backend.set(token_key(user_id), encrypted_token)

    async def delete_token(self, user_id: str) -> bool:
        return await self._backend.delete(token_key(user_id))

    # Rate-limit cool-down flags

    async def is_rate_limited(self, service_type: str, user_id: str) -> bool:
        if await self._backend.exists(user_rate_limit_key(service_type, user_id)):
            return True
        return await self._backend.exists(project_rate_limit_key(service_type))

    async def set_user_rate_limited(self, service_type: str, user_id: str, ttl_seconds: int) -> None:
        await self._backend.set(user_rate_limit_key(service_type, user_id), FLAG_VALUE, ttl_seconds=ttl_seconds)

    async def set_project_rate_limited(self, service_type: str, ttl_seconds: int) -> None:
        await self._backend.set(project_rate_limit_key(service_type), FLAG_VALUE, ttl_seconds=ttl_seconds)

    # OAuth state nonces

    async def store_oauth_state(self, state: str, ttl_seconds: int) -> None:
        await self._backend.set(oauth_state_key(state), state, ttl_seconds=ttl_seconds)

    async def redeem_oauth_state(self, state: str) -> bool:
        """Consume a pending state. Returns False if unknown, expired or already used."""
        return await self._backend.delete_if_equals(oauth_state_key(state), state)
