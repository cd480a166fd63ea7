"""
Tests for the background watch channel renewal loop.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from drivelink.services.channel_refresh_scheduler import start_watch_refresh_scheduler


class TestWatchRefreshScheduler:
    @pytest.mark.asyncio
    async def test_disabled_scheduler_does_nothing(self, mock_settings):
        mock_settings.watch_refresh_enabled = False
        manager = MagicMock()
        manager.refresh_all = AsyncMock()

        task = await start_watch_refresh_scheduler(manager, mock_settings)
        await task

        manager.refresh_all.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_runs_sweep_and_survives_failures(self, mock_settings):
        """A failing sweep is logged and the loop keeps running until cancelled."""
        manager = MagicMock()
        manager.refresh_all = AsyncMock(side_effect=RuntimeError("boom"))

        task = await start_watch_refresh_scheduler(manager, mock_settings)
        await asyncio.sleep(0.01)

        assert manager.refresh_all.await_count == 1
        assert not task.done()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        assert task.done()
