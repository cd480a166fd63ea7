"""Turns Drive activity into direct messages from the bot.

Comment notifications look up the full comment thread through the Drive API;
when that lookup fails the event is dropped with a warning. Chat-side
failures are logged and never propagate into reconciliation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from ..core.exceptions import ChatPlatformError, DriveLinkException
from ..core.logging import get_logger
from ..schemas.activity import (
    SUBTYPE_ADDED,
    SUBTYPE_DELETED,
    SUBTYPE_REOPENED,
    SUBTYPE_REPLY_ADDED,
    SUBTYPE_REPLY_DELETED,
    SUBTYPE_RESOLVED,
    DriveActivity,
    FileComment,
)
from ..schemas.drive import Comment, DriveFile, GoogleUser
from ..utils.markdown import escape_markdown, hyperlink, inline_image, quote

if TYPE_CHECKING:
    from ..chat.client import ChatPlatformClient
    from ..providers.google.services import DriveService

logger = get_logger(__name__)

FILE_ICON_TEXT = "File icon:"
SHARE_FOOTER = "Google Drive for Mattermost"
REPLY_ACTION_NAME = "Reply to comment"


def author_name(user: Optional[GoogleUser]) -> str:
    """Display name safe to embed in a markdown message."""
    if user is None or not user.display_name:
        return "Someone"
    return escape_markdown(user.display_name)


def user_display_name(user: Optional[GoogleUser]) -> str:
    name = author_name(user)
    if user is not None and user.display_name and user.email_address:
        return f"{name} ({escape_markdown(user.email_address)})"
    return name


def is_notifiable(activity: DriveActivity) -> bool:
    """Only comment and sharing activity produce notifications."""
    detail = activity.primary_action_detail
    return detail.comment is not None or detail.permission_change is not None


class NotificationDispatcher:
    def __init__(self, chat: ChatPlatformClient, plugin_url: str):
        self._chat = chat
        self.plugin_url = plugin_url

    async def _post(self, user_id: str, message: str, props: Optional[Dict[str, Any]] = None) -> bool:
        try:
            await self._chat.create_direct_post(user_id, message, props)
        except ChatPlatformError as e:
            logger.error("Failed to post notification", extra={"user_id": user_id, "error": e.message})
            return False
        return True

    async def _fetch_comment(self, drive: DriveService, file_id: str, comment_id: str) -> Optional[Comment]:
        try:
            return await drive.get_comment(file_id, comment_id)
        except DriveLinkException as e:
            logger.warning(
                "Dropping comment notification; comment lookup failed",
                extra={"file_id": file_id, "comment_id": comment_id, "error": e.message},
            )
            return None

    def _file_reference(self, file: DriveFile, link: str) -> str:
        return f"{inline_image(FILE_ICON_TEXT, file.icon_link)} {hyperlink(escape_markdown(file.name), link)}"

    def _reply_action(self, file_id: str, comment_id: str) -> Dict[str, Any]:
        return {
            "name": REPLY_ACTION_NAME,
            "integration": {
                "url": f"{self.plugin_url}/api/v1/reply_dialog",
                "context": {"commentID": comment_id, "fileID": file_id},
            },
        }

    async def dispatch(self, user_id: str, drive: DriveService, file: DriveFile, activity: DriveActivity) -> bool:
        """Send the notification for one activity. Returns True if a message was posted."""
        detail = activity.primary_action_detail
        sent = False

        if detail.comment is not None:
            target = activity.file_comment
            if target is None:
                logger.warning("Comment activity has no comment target", extra={"user_id": user_id, "file_id": file.id})
                return False

            if detail.comment.post is not None:
                sent = await self._dispatch_post(user_id, drive, file, target, detail.comment.post.subtype)
            if detail.comment.suggestion is not None and detail.comment.suggestion.subtype == SUBTYPE_REPLY_ADDED:
                sent = await self.suggestion_reply_added(user_id, file, target) or sent

        if detail.permission_change is not None:
            sent = await self.file_shared(user_id, file) or sent

        return sent

    async def _dispatch_post(
        self, user_id: str, drive: DriveService, file: DriveFile, target: FileComment, subtype: str
    ) -> bool:
        if subtype == SUBTYPE_ADDED:
            return await self.comment_added(user_id, drive, file, target)
        if subtype == SUBTYPE_DELETED:
            return await self._post(user_id, f"A comment was deleted in {self._file_reference(file, target.link_to_discussion)}")
        if subtype == SUBTYPE_REPLY_ADDED:
            return await self.reply_added(user_id, drive, file, target)
        if subtype == SUBTYPE_REPLY_DELETED:
            return await self._post(
                user_id, f"A comment reply was deleted in {self._file_reference(file, target.link_to_discussion)}"
            )
        if subtype == SUBTYPE_RESOLVED:
            return await self._thread_status(user_id, drive, file, target, "marked a thread as resolved in")
        if subtype == SUBTYPE_REOPENED:
            return await self._thread_status(user_id, drive, file, target, "reopened a thread in")

        logger.debug("Ignoring comment subtype", extra={"subtype": subtype, "file_id": file.id})
        return False

    async def comment_added(self, user_id: str, drive: DriveService, file: DriveFile, target: FileComment) -> bool:
        comment_id = target.legacy_discussion_id
        if not comment_id:
            logger.warning("Comment activity carries no discussion id", extra={"file_id": file.id})
            return False
        comment = await self._fetch_comment(drive, file.id, comment_id)
        if comment is None:
            return False

        quoted = comment.quoted_file_content.value if comment.quoted_file_content else ""
        attachment = {
            "pretext": f"{author_name(comment.author)} commented on {self._file_reference(file, file.web_view_link)}",
            "text": f"{escape_markdown(quoted)}\n{quote(escape_markdown(comment.content))}",
            "actions": [self._reply_action(file.id, comment_id)],
        }
        return await self._post(user_id, "", {"attachments": [attachment]})

    async def reply_added(self, user_id: str, drive: DriveService, file: DriveFile, target: FileComment) -> bool:
        comment_id = target.legacy_discussion_id
        if not comment_id:
            logger.warning("Reply activity carries no discussion id", extra={"file_id": file.id})
            return False
        comment = await self._fetch_comment(drive, file.id, comment_id)
        if comment is None:
            return False

        last_reply = comment.replies[-1].content if comment.replies else ""
        previous = comment.replies[-2].content if len(comment.replies) > 1 else ""
        attachment = {
            "pretext": f"{author_name(comment.author)} replied on {self._file_reference(file, target.link_to_discussion)}",
            "text": f"Previous reply:\n{escape_markdown(previous)}\n{quote(escape_markdown(last_reply))}",
            "actions": [self._reply_action(file.id, comment_id)],
        }
        return await self._post(user_id, "", {"attachments": [attachment]})

    async def _thread_status(
        self, user_id: str, drive: DriveService, file: DriveFile, target: FileComment, verb: str
    ) -> bool:
        comment_id = target.legacy_discussion_id or target.legacy_comment_id
        if not comment_id:
            logger.warning("Thread activity carries no comment id", extra={"file_id": file.id})
            return False
        comment = await self._fetch_comment(drive, file.id, comment_id)
        if comment is None:
            return False
        message = f"{author_name(comment.author)} {verb} {self._file_reference(file, target.link_to_discussion)}"
        return await self._post(user_id, message)

    async def suggestion_reply_added(self, user_id: str, file: DriveFile, target: FileComment) -> bool:
        author = author_name(file.last_modifying_user)
        message = f"{author} added a new suggestion in {self._file_reference(file, target.link_to_discussion)}"
        return await self._post(user_id, message)

    async def file_shared(self, user_id: str, file: DriveFile) -> bool:
        message = f"{user_display_name(file.sharing_user)} shared an item with you"
        attachment = {
            "title": file.name,
            "title_link": file.web_view_link,
            "footer": SHARE_FOOTER,
            "footer_icon": file.icon_link,
        }
        return await self._post(user_id, message, {"attachments": [attachment]})

    async def multiple_activities(self, user_id: str, file: DriveFile, count: int) -> bool:
        """Single summary used instead of one message per activity on busy files."""
        message = (
            f"There have been {count} new activities in {self._file_reference(file, file.web_view_link)}. "
            "Open the file to see what changed."
        )
        return await self._post(user_id, message)
