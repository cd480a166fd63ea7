"""Reply-to-comment dialog behind the button on comment notifications."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict
from urllib.parse import urlencode

from ..core.exceptions import ValidationError
from ..core.logging import get_logger

if TYPE_CHECKING:
    from ..chat.client import ChatPlatformClient
    from ..providers.google.client import GoogleClient
    from ..schemas.chat import PostActionIntegrationRequest, SubmitDialogRequest

logger = get_logger(__name__)

REPLY_CALLBACK_ID = "reply"


class CommentReplyService:
    def __init__(self, google: GoogleClient, chat: ChatPlatformClient, plugin_url: str):
        self._google = google
        self._chat = chat
        self.plugin_url = plugin_url

    def build_dialog(self, post_id: str) -> Dict[str, Any]:
        return {
            "callback_id": REPLY_CALLBACK_ID,
            "title": "Reply to comment",
            "elements": [{"display_name": "Message", "name": "message", "type": "textarea"}],
            "submit_label": "Reply",
            "notify_on_cancel": False,
            # The reply is threaded under the notification post
            "state": post_id,
        }

    async def open_reply_dialog(self, request: PostActionIntegrationRequest) -> None:
        comment_id = request.context.get("commentID")
        file_id = request.context.get("fileID")
        if not comment_id or not file_id:
            raise ValidationError("missing commentID or fileID", details={"context": request.context})

        url = f"{self.plugin_url}/api/v1/reply?{urlencode({'fileID': file_id, 'commentID': comment_id})}"
        await self._chat.open_interactive_dialog(
            request.trigger_id, url, self.build_dialog(request.post_id)
        )

    async def submit_reply(self, request: SubmitDialogRequest, file_id: str, comment_id: str) -> None:
        message = request.submission.get("message")
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("reply message is required")
        if not file_id or not comment_id:
            raise ValidationError("missing commentID or fileID")

        drive = await self._google.drive(request.user_id)
        reply = await drive.create_reply(file_id, comment_id, message)
        logger.info("Created comment reply", extra={"user_id": request.user_id, "file_id": file_id})

        await self._chat.create_post(
            request.channel_id,
            f"You replied to this comment with: \n> {reply.content}",
            root_id=request.state,
        )
