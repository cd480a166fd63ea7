"""
Pydantic schemas for Google Drive v3 resources.

Field names are snake_case; the camelCase wire names are handled by the
alias generator, and unknown fields are ignored.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class GoogleModel(BaseModel):
    """Base for Google API payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_api(self) -> Dict[str, Any]:
        """Serialize with wire (camelCase) names, omitting unset values."""
        return self.model_dump(by_alias=True, exclude_none=True)


class GoogleUser(GoogleModel):
    display_name: str = ""
    email_address: Optional[str] = None
    photo_link: Optional[str] = None
    permission_id: Optional[str] = None
    me: bool = False


class DriveFile(GoogleModel):
    id: str = ""
    name: str = ""
    mime_type: Optional[str] = None
    icon_link: str = ""
    web_view_link: str = ""
    created_time: Optional[str] = None
    modified_time: Optional[str] = None
    viewed_by_me_time: Optional[str] = None
    last_modifying_user: Optional[GoogleUser] = None
    sharing_user: Optional[GoogleUser] = None


class Change(GoogleModel):
    kind: Optional[str] = None
    change_type: Optional[str] = None
    time: Optional[str] = None
    removed: bool = False
    file_id: Optional[str] = None
    file: Optional[DriveFile] = None


class ChangeList(GoogleModel):
    changes: List[Change] = Field(default_factory=list)
    next_page_token: Optional[str] = None
    new_start_page_token: Optional[str] = None


class StartPageToken(GoogleModel):
    start_page_token: str


class Channel(GoogleModel):
    """A push-notification channel (``changes.watch`` / ``channels.stop``)."""

    kind: str = "api#channel"
    id: str
    resource_id: Optional[str] = None
    resource_uri: Optional[str] = None
    token: Optional[str] = None
    # Google sends int64 values as strings; lax mode coerces them
    expiration: Optional[int] = None
    type: Optional[str] = None
    address: Optional[str] = None
    payload: Optional[bool] = None
    params: Optional[Dict[str, str]] = None


class QuotedFileContent(GoogleModel):
    mime_type: Optional[str] = None
    value: str = ""


class Reply(GoogleModel):
    id: str = ""
    content: str = ""
    author: Optional[GoogleUser] = None
    created_time: Optional[str] = None
    deleted: bool = False


class Comment(GoogleModel):
    id: str = ""
    content: str = ""
    author: GoogleUser = Field(default_factory=GoogleUser)
    quoted_file_content: Optional[QuotedFileContent] = None
    replies: List[Reply] = Field(default_factory=list)
    resolved: bool = False
    deleted: bool = False


class Permission(GoogleModel):
    id: Optional[str] = None
    role: str
    type: str
    email_address: Optional[str] = None
    domain: Optional[str] = None
