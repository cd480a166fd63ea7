"""
Tests for the chat server REST client.
"""

import json

import httpx
import pytest

from drivelink.chat.client import ChatPlatformClient
from drivelink.core.exceptions import ChatPlatformError


def make_client(handler) -> ChatPlatformClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    async def http_client():
        return http

    return ChatPlatformClient("https://chat.example.com/", "bot-token", "bot-id", http_client)


class TestChatPlatformClient:
    @pytest.mark.asyncio
    async def test_get_user(self):
        def handler(request):
            assert request.headers["Authorization"] == "Bearer bot-token"
            if request.url.path.endswith("/users/known"):
                return httpx.Response(200, json={"id": "known"})
            return httpx.Response(404, json={"message": "not found"})

        client = make_client(handler)

        assert await client.get_user("known") == {"id": "known"}
        assert await client.get_user("missing") is None

    @pytest.mark.asyncio
    async def test_get_user_server_error(self):
        client = make_client(lambda r: httpx.Response(500))
        with pytest.raises(ChatPlatformError):
            await client.get_user("u")

    @pytest.mark.asyncio
    async def test_direct_post_opens_dm_channel_first(self):
        requests = []

        def handler(request):
            requests.append(request)
            if request.url.path == "/api/v4/channels/direct":
                return httpx.Response(201, json={"id": "dm-channel"})
            return httpx.Response(201, json={"id": "post-1"})

        client = make_client(handler)
        await client.create_direct_post("user1", "hello", {"attachments": []})

        assert json.loads(requests[0].content) == ["bot-id", "user1"]
        post = json.loads(requests[1].content)
        assert requests[1].url.path == "/api/v4/posts"
        assert post == {
            "channel_id": "dm-channel",
            "message": "hello",
            "user_id": "bot-id",
            "props": {"attachments": []},
        }

    @pytest.mark.asyncio
    async def test_threaded_post(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201, json={"id": "post-2"})

        await make_client(handler).create_post("dm-1", "reply", root_id="post-1")
        assert json.loads(requests[0].content)["root_id"] == "post-1"

    @pytest.mark.asyncio
    async def test_failures_raise(self):
        client = make_client(lambda r: httpx.Response(403, json={"message": "forbidden"}))
        with pytest.raises(ChatPlatformError) as exc_info:
            await client.create_post("c", "m")
        assert exc_info.value.status == 403

    @pytest.mark.asyncio
    async def test_transport_errors_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ChatPlatformError):
            await make_client(handler).open_interactive_dialog("t", "https://x", {})
