"""Capability wrappers for the Google API surfaces DriveLink uses.

Each wrapper is a thin, typed view over a ``GoogleApiSession``; rate limiting
and error classification live in the session.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from ...core.rate_limiting import (
    SERVICE_DOCS,
    SERVICE_DRIVE,
    SERVICE_DRIVE_ACTIVITY,
    SERVICE_SHEETS,
    SERVICE_SLIDES,
)
from ...schemas.activity import QueryDriveActivityResponse
from ...schemas.drive import ChangeList, Channel, Comment, DriveFile, Permission, Reply, StartPageToken
from .session import GoogleApiSession

DRIVE_API = "https://www.googleapis.com/drive/v3"
DRIVE_ACTIVITY_API = "https://driveactivity.googleapis.com/v2"
DOCS_API = "https://docs.googleapis.com/v1"
SHEETS_API = "https://sheets.googleapis.com/v4"
SLIDES_API = "https://slides.googleapis.com/v1"

FILE_FIELDS = "id,name,mimeType,iconLink,webViewLink,createdTime,modifiedTime,viewedByMeTime,lastModifyingUser,sharingUser,permissions"


class DriveService:
    """Google Drive v3: files, permissions, changes, channels, comments."""

    service_type = SERVICE_DRIVE

    def __init__(self, session: GoogleApiSession):
        self._session = session

    async def _call(self, method: str, path: str, operation: str, **kwargs: Any) -> Dict[str, Any]:
        return await self._session.request(self.service_type, method, f"{DRIVE_API}{path}", operation=operation, **kwargs)

    async def get_file(self, file_id: str, fields: str = FILE_FIELDS) -> DriveFile:
        body = await self._call(
            "GET", f"/files/{file_id}", "files.get", params={"fields": fields, "supportsAllDrives": "true"}
        )
        return DriveFile.model_validate(body)

    async def create_permission(self, file_id: str, permission: Permission) -> Permission:
        body = await self._call(
            "POST",
            f"/files/{file_id}/permissions",
            "permissions.create",
            params={"supportsAllDrives": "true"},
            json=permission.to_api(),
        )
        return Permission.model_validate(body)

    async def list_changes(self, page_token: str) -> ChangeList:
        body = await self._call("GET", "/changes", "changes.list", params={"pageToken": page_token, "fields": "*"})
        return ChangeList.model_validate(body)

    async def get_start_page_token(self) -> StartPageToken:
        body = await self._call("GET", "/changes/startPageToken", "changes.getStartPageToken")
        return StartPageToken.model_validate(body)

    async def watch_changes(self, start_page_token: str, channel: Channel) -> Channel:
        body = await self._call(
            "POST", "/changes/watch", "changes.watch", params={"pageToken": start_page_token}, json=channel.to_api()
        )
        return Channel.model_validate(body)

    async def stop_channel(self, channel_id: str, resource_id: str) -> None:
        # Cleanup call; not worth holding a bucket token for
        await self._call(
            "POST",
            "/channels/stop",
            "channels.stop",
            json={"id": channel_id, "resourceId": resource_id},
            use_bucket=False,
        )

    async def get_comment(self, file_id: str, comment_id: str) -> Comment:
        body = await self._call(
            "GET",
            f"/files/{file_id}/comments/{comment_id}",
            "comments.get",
            params={"fields": "*", "includeDeleted": "true"},
        )
        return Comment.model_validate(body)

    async def create_reply(self, file_id: str, comment_id: str, content: str) -> Reply:
        body = await self._call(
            "POST",
            f"/files/{file_id}/comments/{comment_id}/replies",
            "replies.create",
            params={"fields": "*"},
            json={"content": content},
        )
        return Reply.model_validate(body)


class DriveActivityService:
    """Google Drive Activity v2."""

    service_type = SERVICE_DRIVE_ACTIVITY

    def __init__(self, session: GoogleApiSession):
        self._session = session

    async def query(
        self,
        item_name: str,
        filter_expr: str = "",
        page_token: str = "",
        page_size: Optional[int] = None,
    ) -> QueryDriveActivityResponse:
        """Query activity for one item, newest first.

        ``page_size`` is advisory; Google may return more or fewer entries.
        """
        request: Dict[str, Any] = {"itemName": item_name}
        if filter_expr:
            request["filter"] = filter_expr
        if page_token:
            request["pageToken"] = page_token
        if page_size:
            request["pageSize"] = page_size
        body = await self._session.request(
            self.service_type, "POST", f"{DRIVE_ACTIVITY_API}/activity:query", json=request, operation="activity.query"
        )
        return QueryDriveActivityResponse.model_validate(body)


class DocsService:
    service_type = SERVICE_DOCS

    def __init__(self, session: GoogleApiSession):
        self._session = session

    async def create(self, title: str) -> str:
        """Create an empty document and return its id."""
        body = await self._session.request(
            self.service_type, "POST", f"{DOCS_API}/documents", json={"title": title}, operation="documents.create"
        )
        return body["documentId"]


class SheetsService:
    service_type = SERVICE_SHEETS

    def __init__(self, session: GoogleApiSession):
        self._session = session

    async def create(self, title: str) -> str:
        """Create an empty spreadsheet and return its id."""
        body = await self._session.request(
            self.service_type,
            "POST",
            f"{SHEETS_API}/spreadsheets",
            json={"properties": {"title": title}},
            operation="spreadsheets.create",
        )
        return body["spreadsheetId"]


class SlidesService:
    service_type = SERVICE_SLIDES

    def __init__(self, session: GoogleApiSession):
        self._session = session

    async def create(self, title: str) -> str:
        """Create an empty presentation and return its id."""
        body = await self._session.request(
            self.service_type,
            "POST",
            f"{SLIDES_API}/presentations",
            json={"title": title},
            operation="presentations.create",
        )
        return body["presentationId"]
