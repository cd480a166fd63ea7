"""Background loop that renews Drive watch channels before they expire."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from ..core.logging import get_logger

if TYPE_CHECKING:
    from ..core.config import Settings
    from .watch_channel_service import WatchChannelManager

logger = get_logger(__name__)


async def start_watch_refresh_scheduler(manager: WatchChannelManager, settings: Settings) -> asyncio.Task:
    """Start the renewal loop; cancel the returned task to stop it."""
    if not settings.watch_refresh_enabled:
        logger.info("Watch channel refresh disabled by configuration")
        return asyncio.create_task(asyncio.sleep(0), name="watch-refresh:disabled")

    interval = max(1, int(settings.watch_refresh_interval_seconds))
    logger.info(
        "Starting watch channel refresh | interval=%ds workers=%d",
        interval,
        settings.watch_refresh_workers,
    )

    async def _runner() -> None:
        while True:
            try:
                await manager.refresh_all()
            except Exception as ex:
                logger.warning("Watch channel refresh failed: %s", ex)
            finally:
                try:
                    await asyncio.sleep(interval)
                except asyncio.CancelledError:
                    logger.info("Watch channel refresh stopped")
                    break

    return asyncio.create_task(_runner(), name="watch-refresh")
