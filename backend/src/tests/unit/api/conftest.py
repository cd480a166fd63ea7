"""Shared fixtures for HTTP surface tests.

The application context is built for real; Google and the chat server are
served by an ``httpx.MockTransport`` so every layer from the route down to
the wire format is exercised.
"""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from drivelink.core.cache_backend import InMemoryCacheBackend
from drivelink.core.config import get_settings
from drivelink.core.context import DriveLinkContext
from drivelink.main import create_app

USER = "user1"


class FakeServers:
    """Google APIs and the chat server behind one MockTransport."""

    def __init__(self) -> None:
        self.google_requests: list[httpx.Request] = []
        self.posts: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "chat.example.com":
            return self._chat(request)
        self.google_requests.append(request)
        return self._google(request)

    def _chat(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == f"/api/v4/users/{USER}":
            return httpx.Response(200, json={"id": USER})
        if path.startswith("/api/v4/users/"):
            return httpx.Response(404, json={"message": "not found"})
        if path == "/api/v4/channels/direct":
            return httpx.Response(201, json={"id": "dm-1"})
        if path == "/api/v4/posts":
            self.posts.append(json.loads(request.content))
            return httpx.Response(201, json={"id": f"post-{len(self.posts)}"})
        return httpx.Response(404)

    def _google(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/drive/v3/changes":
            return httpx.Response(
                200,
                json={
                    "changes": [
                        {
                            "fileId": "f1",
                            "time": "2024-03-01T10:00:30Z",
                            "file": {
                                "id": "f1",
                                "name": "Roadmap",
                                "webViewLink": "https://docs/f1",
                                "iconLink": "https://drive/icon.png",
                                "modifiedTime": "2024-03-01T10:00:30Z",
                                "viewedByMeTime": "2024-03-01T09:00:00Z",
                            },
                        }
                    ],
                    "newStartPageToken": "p2",
                },
            )
        if path == "/v2/activity:query":
            return httpx.Response(
                200,
                json={
                    "activities": [
                        {
                            "primaryActionDetail": {"comment": {"post": {"subtype": "ADDED"}}},
                            "actors": [{"user": {"knownUser": {"personName": "people/2"}}}],
                            "targets": [{"fileComment": {"legacyDiscussionId": "c1", "linkToDiscussion": "https://d"}}],
                            "timestamp": "2024-03-01T10:00:30Z",
                        }
                    ]
                },
            )
        if path == "/drive/v3/files/f1/comments/c1":
            return httpx.Response(200, json={"id": "c1", "content": "Nice", "author": {"displayName": "Alice"}})
        return httpx.Response(404, json={"error": {"code": 404, "message": "not found"}})


@pytest.fixture
def servers():
    return FakeServers()


@pytest.fixture
def context(servers):
    http = httpx.AsyncClient(transport=httpx.MockTransport(servers))

    async def http_client():
        return http

    return DriveLinkContext.build(get_settings(), InMemoryCacheBackend(cleanup_interval_seconds=0), http_client)


@pytest.fixture
def client(context):
    app = create_app()
    app.state.context = context
    return TestClient(app)

