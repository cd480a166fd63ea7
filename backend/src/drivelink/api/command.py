"""Slash command endpoint called by the chat server."""

from fastapi import APIRouter, Depends, Form

from ..core.context import DriveLinkContext
from ..core.logging import get_logger
from .dependencies import get_context

logger = get_logger(__name__)
router = APIRouter(tags=["command"])

RESPONSE_TYPE_EPHEMERAL = "ephemeral"


@router.post("/command", summary="Execute a /google-drive command")
async def execute_command(
    user_id: str = Form(...),
    channel_id: str = Form(""),
    command: str = Form(""),
    text: str = Form(""),
    context: DriveLinkContext = Depends(get_context),
) -> dict:
    """Run the command and answer with ephemeral text.

    The chat server posts ``command`` (the trigger) and ``text`` (the rest)
    as form fields.
    """
    full_text = f"{command} {text}".strip() if command else text
    message = await context.commands.execute(user_id, full_text)
    logger.debug("Executed slash command", extra={"user_id": user_id, "channel_id": channel_id})
    return {"response_type": RESPONSE_TYPE_EPHEMERAL, "text": message}
