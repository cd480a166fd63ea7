"""Chat server REST client used by the bot account.

Talks to the Mattermost v4 API with the bot's access token. Every failure is
raised as ``ChatPlatformError``; callers on the notification path log and
drop it.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from ..core.exceptions import ChatPlatformError
from ..core.logging import get_logger

logger = get_logger(__name__)


class ChatPlatformClient:
    def __init__(
        self,
        server_url: str,
        bot_token: Optional[str],
        bot_user_id: Optional[str],
        http_client: Callable[[], Awaitable[httpx.AsyncClient]],
    ):
        self._base = f"{server_url.rstrip('/')}/api/v4"
        self._bot_token = bot_token
        self.bot_user_id = bot_user_id or ""
        self._http_client = http_client

    async def _request(self, operation: str, method: str, path: str, json: Any = None) -> httpx.Response:
        client = await self._http_client()
        try:
            response = await client.request(
                method,
                f"{self._base}{path}",
                json=json,
                headers={"Authorization": f"Bearer {self._bot_token}"} if self._bot_token else None,
            )
        except httpx.HTTPError as e:
            raise ChatPlatformError(operation, details={"operation": operation, "error": str(e)}) from e
        return response

    async def _expect_ok(self, operation: str, method: str, path: str, json: Any = None) -> Dict[str, Any]:
        response = await self._request(operation, method, path, json)
        if response.status_code >= 400:
            raise ChatPlatformError(operation, status=response.status_code)
        return response.json() if response.content else {}

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Return the user record, or None if the server does not know the id."""
        response = await self._request("get_user", "GET", f"/users/{user_id}")
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ChatPlatformError("get_user", status=response.status_code)
        return response.json()

    async def create_post(
        self,
        channel_id: str,
        message: str,
        root_id: str = "",
        props: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        post: Dict[str, Any] = {"channel_id": channel_id, "message": message, "user_id": self.bot_user_id}
        if root_id:
            post["root_id"] = root_id
        if props:
            post["props"] = props
        return await self._expect_ok("create_post", "POST", "/posts", post)

    async def create_direct_post(
        self,
        user_id: str,
        message: str,
        props: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Post from the bot into its direct channel with ``user_id``."""
        channel = await self._expect_ok("get_direct_channel", "POST", "/channels/direct", [self.bot_user_id, user_id])
        return await self.create_post(channel["id"], message, props=props)

    async def send_ephemeral_post(self, user_id: str, channel_id: str, message: str) -> None:
        await self._expect_ok(
            "send_ephemeral_post",
            "POST",
            "/posts/ephemeral",
            {"user_id": user_id, "post": {"channel_id": channel_id, "message": message, "user_id": self.bot_user_id}},
        )

    async def open_interactive_dialog(self, trigger_id: str, url: str, dialog: Dict[str, Any]) -> None:
        await self._expect_ok(
            "open_interactive_dialog",
            "POST",
            "/actions/dialogs/open",
            {"trigger_id": trigger_id, "url": url, "dialog": dialog},
        )
