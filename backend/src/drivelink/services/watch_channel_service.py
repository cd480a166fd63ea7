"""Drive change-channel lifecycle for connected users.

A user is either unregistered (no valid record), active, or stale (the
channel expires within the renewal window). ``refresh_all`` is the periodic
sweep that moves stale channels back to active with a new channel id.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional
from urllib.parse import urlencode

from ..core.distributed_lock import BaseDistributedLock, InProcessDistributedLock
from ..core.exceptions import WatchChannelError
from ..core.logging import get_logger
from ..schemas.drive import Channel
from ..schemas.watch import WatchChannelData
from .webhook_reconciler import reconcile_lock_key

if TYPE_CHECKING:
    from ..providers.google.client import GoogleClient
    from ..store.kvstore import KVStore

logger = get_logger(__name__)

CHANNEL_TYPE_WEB_HOOK = "web_hook"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RefreshSummary:
    """Outcome of one renewal sweep."""

    scanned: int = 0
    renewed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class WatchChannelManager:
    def __init__(
        self,
        kv_store: KVStore,
        google: GoogleClient,
        webhook_url: str,
        channel_ttl_seconds: int = 604800,
        renewal_window_seconds: int = 86400,
        refresh_workers: int = 5,
        page_size: int = 100,
        lock: BaseDistributedLock | None = None,
        lock_timeout_seconds: float = 60.0,
        clock=_now_ms,
    ):
        self._kv = kv_store
        self._google = google
        self.webhook_url = webhook_url
        self.channel_ttl_seconds = channel_ttl_seconds
        self.renewal_window_seconds = renewal_window_seconds
        self.refresh_workers = refresh_workers
        self.page_size = page_size
        self._lock = lock or InProcessDistributedLock()
        self.lock_timeout_seconds = lock_timeout_seconds
        self._clock = clock

    def _hold(self, user_id: str):
        """The per-user lock reconciliation also takes, so record rewrites never interleave."""
        return self._lock.hold(reconcile_lock_key(user_id), timeout=self.lock_timeout_seconds)

    def _channel_address(self, user_id: str) -> str:
        return f"{self.webhook_url}?{urlencode({'userID': user_id})}"

    async def _register(self, user_id: str) -> WatchChannelData:
        """Open a new Drive change channel starting at the current end of the change log."""
        drive = await self._google.drive(user_id)
        start = await drive.get_start_page_token()

        request = Channel(
            id=str(uuid.uuid4()),
            address=self._channel_address(user_id),
            token=uuid.uuid4().hex,
            type=CHANNEL_TYPE_WEB_HOOK,
            payload=True,
            expiration=self._clock() + self.channel_ttl_seconds * 1000,
            params={"userID": user_id},
        )
        registered = await drive.watch_changes(start.start_page_token, request)

        data = WatchChannelData(
            channel_id=registered.id,
            resource_id=registered.resource_id or "",
            user_id=user_id,
            expiration=registered.expiration or request.expiration,
            token=request.token,
            page_token=start.start_page_token,
        )
        if not data.is_valid():
            raise WatchChannelError(user_id, "provider returned an incomplete channel")

        await self._kv.store_watch_channel(user_id, data)
        logger.info(
            "Registered Drive watch channel",
            extra={"user_id": user_id, "channel_id": data.channel_id, "expiration": data.expiration},
        )
        return data

    async def _stop_remote(self, user_id: str, data: WatchChannelData) -> None:
        """Best-effort channel stop; an orphaned channel expires on its own."""
        try:
            drive = await self._google.drive(user_id)
            await drive.stop_channel(data.channel_id, data.resource_id)
        except Exception as e:
            logger.warning(
                "Failed to stop Drive watch channel",
                extra={"user_id": user_id, "channel_id": data.channel_id, "error": str(e)},
            )

    async def start_watch(self, user_id: str) -> bool:
        """Enable notifications. Returns False when a valid channel already exists."""
        async with self._hold(user_id):
            existing = await self._kv.get_watch_channel(user_id)
            if existing is not None and existing.is_valid():
                return False
            await self._register(user_id)
            return True

    async def stop_watch(self, user_id: str) -> bool:
        """Disable notifications. Returns False when none were enabled.

        The record is deleted before the provider is told, so deliveries on
        the old channel stop authenticating even if the stop call fails.
        """
        async with self._hold(user_id):
            existing = await self._kv.get_watch_channel(user_id)
            if existing is None or not existing.is_valid():
                return False
            await self._kv.delete_watch_channel(user_id)

        await self._stop_remote(user_id, existing)
        logger.info("Stopped Drive watch channel", extra={"user_id": user_id, "channel_id": existing.channel_id})
        return True

    async def renew(self, data: WatchChannelData) -> Optional[WatchChannelData]:
        """Replace a stale channel with a new one.

        Returns None when, once the lock is held, the stored record is no
        longer the stale channel that was scanned (stopped, or renewed by
        another node).
        """
        user_id = data.user_id
        async with self._hold(user_id):
            current = await self._kv.get_watch_channel(user_id)
            if current is None or current.channel_id != data.channel_id or not self.needs_renewal(current):
                logger.info("Skipping renewal of replaced watch channel", extra={"user_id": user_id})
                return None
            await self._stop_remote(user_id, current)
            await self._kv.delete_watch_channel(user_id)
            return await self._register(user_id)

    def needs_renewal(self, data: WatchChannelData, now_ms: int | None = None) -> bool:
        now = self._clock() if now_ms is None else now_ms
        return data.is_valid() and data.expires_within(self.renewal_window_seconds * 1000, now)

    async def refresh_all(self) -> RefreshSummary:
        """Renew every channel close to expiry, a bounded number of users at a time."""
        summary = RefreshSummary()
        semaphore = asyncio.Semaphore(self.refresh_workers)
        now = self._clock()

        async def _renew_one(data: WatchChannelData) -> None:
            async with semaphore:
                try:
                    if await self.renew(data) is not None:
                        summary.renewed.append(data.user_id)
                except Exception as e:
                    summary.failed.append(data.user_id)
                    logger.error(
                        "Failed to renew Drive watch channel",
                        extra={"user_id": data.user_id, "channel_id": data.channel_id, "error": str(e)},
                    )

        page = 0
        while True:
            keys = await self._kv.list_watch_channel_keys(page, self.page_size)
            stale: List[WatchChannelData] = []
            for key in keys:
                summary.scanned += 1
                try:
                    data = await self._kv.get_watch_channel_by_key(key)
                except Exception as e:
                    logger.error("Failed to read watch channel record", extra={"key": key, "error": str(e)})
                    continue
                if data is not None and self.needs_renewal(data, now):
                    stale.append(data)

            if stale:
                await asyncio.gather(*(_renew_one(data) for data in stale))

            if len(keys) < self.page_size:
                break
            page += 1

        logger.info(
            "Watch channel refresh finished",
            extra={"scanned": summary.scanned, "renewed": len(summary.renewed), "failed": len(summary.failed)},
        )
        return summary
