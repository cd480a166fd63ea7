"""Persisted per-user watch channel state."""

from pydantic import BaseModel, Field


class WatchChannelData(BaseModel):
    """One Drive change subscription per connected user."""

    channel_id: str = ""
    resource_id: str = ""
    user_id: str = Field("", description="Owning chat platform user")
    expiration: int = Field(0, description="Channel expiration, epoch milliseconds")
    token: str = Field("", description="Shared secret echoed in X-Goog-Channel-Token")
    page_token: str = Field("", description="Cursor into the Drive change log")

    def is_valid(self) -> bool:
        """A partial record is never an active subscription."""
        return bool(self.channel_id and self.resource_id and self.user_id and self.expiration)

    def expires_within(self, window_ms: int, now_ms: int) -> bool:
        return self.expiration - now_ms < window_ms
