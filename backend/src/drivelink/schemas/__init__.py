"""
Pydantic schemas for DriveLink.

Google API payloads, persisted watch state, OAuth tokens and chat server
request bodies.
"""

from .activity import DriveActivity, QueryDriveActivityResponse
from .chat import DialogErrorResponse, PostActionIntegrationRequest, SubmitDialogRequest
from .drive import Change, ChangeList, Channel, Comment, DriveFile, Permission, Reply, StartPageToken
from .oauth import OAuthToken
from .watch import WatchChannelData

__all__ = [
    "Change",
    "ChangeList",
    "Channel",
    "Comment",
    "DialogErrorResponse",
    "DriveActivity",
    "DriveFile",
    "OAuthToken",
    "Permission",
    "PostActionIntegrationRequest",
    "QueryDriveActivityResponse",
    "Reply",
    "StartPageToken",
    "SubmitDialogRequest",
    "WatchChannelData",
]
