"""
Pydantic schemas for requests posted by the chat server.

These mirror the chat platform's interactive message and dialog payloads.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class PostActionIntegrationRequest(BaseModel):
    """Body of an interactive message button click."""

    model_config = ConfigDict(extra="ignore")

    user_id: str = ""
    channel_id: str = ""
    post_id: str = ""
    trigger_id: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)


class SubmitDialogRequest(BaseModel):
    """Body of an interactive dialog submission."""

    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    callback_id: str = ""
    state: str = ""
    user_id: str = ""
    channel_id: str = ""
    team_id: str = ""
    submission: Dict[str, Any] = Field(default_factory=dict)
    cancelled: bool = False


class DialogErrorResponse(BaseModel):
    """Response returned to the chat server when a dialog submission fails."""

    error: str = ""
    errors: Dict[str, str] = Field(default_factory=dict)
