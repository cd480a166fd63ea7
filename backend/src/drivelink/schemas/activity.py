"""
Pydantic schemas for the Google Drive Activity v2 API.

Only the parts of ``DriveActivity`` the notification pipeline reads are
modelled; everything else is ignored.
"""

from typing import List, Optional

from pydantic import Field

from .drive import GoogleModel

# Comment post / suggestion subtypes
SUBTYPE_ADDED = "ADDED"
SUBTYPE_DELETED = "DELETED"
SUBTYPE_REPLY_ADDED = "REPLY_ADDED"
SUBTYPE_REPLY_DELETED = "REPLY_DELETED"
SUBTYPE_RESOLVED = "RESOLVED"
SUBTYPE_REOPENED = "REOPENED"


class KnownUser(GoogleModel):
    person_name: Optional[str] = None
    is_current_user: bool = False


class ActivityUser(GoogleModel):
    known_user: Optional[KnownUser] = None


class Actor(GoogleModel):
    user: Optional[ActivityUser] = None

    @property
    def is_current_user(self) -> bool:
        return bool(self.user and self.user.known_user and self.user.known_user.is_current_user)


class CommentPost(GoogleModel):
    subtype: str = ""


class CommentSuggestion(GoogleModel):
    subtype: str = ""


class CommentAction(GoogleModel):
    post: Optional[CommentPost] = None
    suggestion: Optional[CommentSuggestion] = None
    assignment: Optional[dict] = None


class PermissionChange(GoogleModel):
    added_permissions: List[dict] = Field(default_factory=list)
    removed_permissions: List[dict] = Field(default_factory=list)


class ActionDetail(GoogleModel):
    comment: Optional[CommentAction] = None
    permission_change: Optional[PermissionChange] = None


class DriveItem(GoogleModel):
    name: Optional[str] = None
    title: Optional[str] = None


class FileComment(GoogleModel):
    legacy_comment_id: str = ""
    legacy_discussion_id: str = ""
    link_to_discussion: str = ""
    parent: Optional[DriveItem] = None


class Target(GoogleModel):
    drive_item: Optional[DriveItem] = None
    file_comment: Optional[FileComment] = None


class TimeRange(GoogleModel):
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class DriveActivity(GoogleModel):
    primary_action_detail: ActionDetail = Field(default_factory=ActionDetail)
    actors: List[Actor] = Field(default_factory=list)
    targets: List[Target] = Field(default_factory=list)
    timestamp: Optional[str] = None
    time_range: Optional[TimeRange] = None

    @property
    def activity_time(self) -> Optional[str]:
        """Point-in-time timestamp, or the end of the time range for grouped activity."""
        if self.timestamp:
            return self.timestamp
        if self.time_range:
            return self.time_range.end_time
        return None

    @property
    def is_self_caused(self) -> bool:
        """True when every actor is the authenticated user."""
        return bool(self.actors) and all(actor.is_current_user for actor in self.actors)

    @property
    def file_comment(self) -> Optional[FileComment]:
        if not self.targets:
            return None
        return self.targets[0].file_comment


class QueryDriveActivityResponse(GoogleModel):
    activities: List[DriveActivity] = Field(default_factory=list)
    next_page_token: Optional[str] = None
