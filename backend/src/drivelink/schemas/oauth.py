"""OAuth token payloads."""

from datetime import UTC, datetime, timedelta
from typing import Optional

from pydantic import BaseModel


class OAuthToken(BaseModel):
    """A Google OAuth token as stored (encrypted) for a user."""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expiry: Optional[datetime] = None

    def is_expired(self, leeway_seconds: int = 60) -> bool:
        if self.expiry is None:
            return False
        expiry = self.expiry if self.expiry.tzinfo else self.expiry.replace(tzinfo=UTC)
        return datetime.now(UTC) + timedelta(seconds=leeway_seconds) >= expiry

    @classmethod
    def from_token_response(cls, payload: dict, previous: Optional["OAuthToken"] = None) -> "OAuthToken":
        """Build from a Google token endpoint response.

        Refresh responses usually omit ``refresh_token``; keep the previous one.
        """
        expires_in = payload.get("expires_in")
        expiry = datetime.now(UTC) + timedelta(seconds=int(expires_in)) if expires_in else None
        refresh_token = payload.get("refresh_token") or (previous.refresh_token if previous else None)
        return cls(
            access_token=payload["access_token"],
            refresh_token=refresh_token,
            token_type=payload.get("token_type", "Bearer"),
            expiry=expiry,
        )
