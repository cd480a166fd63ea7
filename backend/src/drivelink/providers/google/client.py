"""Entry point to the Google API facade.

``GoogleClient`` builds short-lived, per-user service handles. Building one
resolves (and if needed refreshes) the user's access token, so it fails with
``NotConnectedError`` before any API call when the user has no credential.
"""

from __future__ import annotations

from typing import Awaitable, Callable

import httpx

from ...core.rate_limiting import ProviderRateLimiter
from .auth_adapter import GoogleAuthAdapter
from .services import DocsService, DriveActivityService, DriveService, SheetsService, SlidesService
from .session import GoogleApiSession


class GoogleClient:
    def __init__(
        self,
        auth: GoogleAuthAdapter,
        rate_limiter: ProviderRateLimiter,
        http_client: Callable[[], Awaitable[httpx.AsyncClient]],
    ):
        self.auth = auth
        self.rate_limiter = rate_limiter
        self._http_client = http_client

    async def session(self, user_id: str) -> GoogleApiSession:
        access_token = await self.auth.get_access_token(user_id)
        return GoogleApiSession(user_id, access_token, await self._http_client(), self.rate_limiter)

    async def drive(self, user_id: str) -> DriveService:
        return DriveService(await self.session(user_id))

    async def drive_activity(self, user_id: str) -> DriveActivityService:
        return DriveActivityService(await self.session(user_id))

    async def docs(self, user_id: str) -> DocsService:
        return DocsService(await self.session(user_id))

    async def sheets(self, user_id: str) -> SheetsService:
        return SheetsService(await self.session(user_id))

    async def slides(self, user_id: str) -> SlidesService:
        return SlidesService(await self.session(user_id))
