"""Google OAuth credential handling.

Stored tokens are Fernet-encrypted JSON under ``{user_id}_token``. The adapter
hands out live access tokens, refreshing them against Google's token endpoint
when they are about to expire, and runs the authorization-code exchange for
the connect flow.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

import httpx
from google_auth_oauthlib.flow import Flow
from pydantic import ValidationError

from ...core.encryption import TokenEncryptionError, TokenEncryptionService
from ...core.exceptions import ConfigurationError, NotConnectedError, ProviderError
from ...core.logging import get_logger
from ...schemas.oauth import OAuthToken
from .errors import provider_error_from_response

if TYPE_CHECKING:
    from ...core.config import Settings
    from ...store.kvstore import KVStore

logger = get_logger(__name__)

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

GOOGLE_SCOPES: List[str] = [
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/drive.file",
    "https://www.googleapis.com/auth/drive.activity",
    "https://www.googleapis.com/auth/documents",
    "https://www.googleapis.com/auth/presentations",
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]


@dataclass(frozen=True)
class GoogleOAuthConfig:
    client_id: Optional[str]
    client_secret: Optional[str]
    redirect_uri: str
    scopes: List[str] = field(default_factory=lambda: list(GOOGLE_SCOPES))

    @classmethod
    def from_settings(cls, settings: Settings) -> GoogleOAuthConfig:
        return cls(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.oauth_redirect_uri,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)


class GoogleAuthAdapter:
    """Per-user Google credentials backed by the key-value store."""

    def __init__(
        self,
        kv_store: KVStore,
        encryption: TokenEncryptionService,
        oauth_config: GoogleOAuthConfig,
        http_client: Callable[[], Awaitable[httpx.AsyncClient]],
    ):
        self._kv = kv_store
        self._http_client = http_client
        # Replaced wholesale on configuration reload
        self.encryption = encryption
        self.oauth_config = oauth_config

    def reconfigure(self, oauth_config: GoogleOAuthConfig, encryption: TokenEncryptionService) -> None:
        self.oauth_config = oauth_config
        self.encryption = encryption

    async def load_token(self, user_id: str) -> OAuthToken:
        """Decrypt the stored token.

        Raises:
            NotConnectedError: no token is stored for the user.
        """
        encrypted = await self._kv.get_token(user_id)
        if not encrypted:
            raise NotConnectedError(user_id)
        try:
            return OAuthToken.model_validate_json(self.encryption.decrypt_token(encrypted))
        except (TokenEncryptionError, ValidationError) as e:
            logger.error("Stored Google token is unreadable", extra={"user_id": user_id, "error": str(e)})
            raise NotConnectedError(user_id, details={"user_id": user_id, "reason": "unreadable token"}) from e

    async def store_token(self, user_id: str, token: OAuthToken) -> None:
        await self._kv.store_token(user_id, self.encryption.encrypt_token(token.model_dump_json()))

    async def has_token(self, user_id: str) -> bool:
        return bool(await self._kv.get_token(user_id))

    async def delete_token(self, user_id: str) -> bool:
        return await self._kv.delete_token(user_id)

    async def get_access_token(self, user_id: str) -> str:
        """Return a live access token, refreshing and persisting it if expired."""
        token = await self.load_token(user_id)
        if not token.is_expired() or not token.refresh_token:
            return token.access_token

        refreshed = await self._refresh(user_id, token)
        await self.store_token(user_id, refreshed)
        return refreshed.access_token

    async def _refresh(self, user_id: str, token: OAuthToken) -> OAuthToken:
        config = self.oauth_config
        if not (config.client_id and config.client_secret):
            raise ConfigurationError("Google OAuth client is not configured")

        client = await self._http_client()
        try:
            response = await client.post(
                GOOGLE_TOKEN_URI,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": token.refresh_token,
                    "client_id": config.client_id,
                    "client_secret": config.client_secret,
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise ProviderError(0, f"token refresh failed: {e}") from e

        if response.status_code >= 400:
            error = provider_error_from_response(response)
            logger.warning(
                "Google token refresh failed",
                extra={"user_id": user_id, "status": response.status_code, "reasons": ",".join(error.reasons)},
            )
            raise error

        logger.debug("Refreshed Google access token", extra={"user_id": user_id})
        return OAuthToken.from_token_response(response.json(), previous=token)

    def build_authorization_url(self, state: str) -> str:
        config = self.oauth_config
        if not config.is_configured:
            raise ConfigurationError("Google OAuth is not configured")

        flow = Flow.from_client_config(
            {
                "web": {
                    "client_id": config.client_id,
                    "client_secret": config.client_secret,
                    "auth_uri": GOOGLE_AUTH_URI,
                    "token_uri": GOOGLE_TOKEN_URI,
                    "redirect_uris": [config.redirect_uri],
                }
            },
            scopes=config.scopes,
        )
        flow.redirect_uri = config.redirect_uri
        authorization_url, _ = flow.authorization_url(
            access_type="offline",
            prompt="consent",
            state=state,
        )
        return authorization_url

    async def exchange_code(self, code: str) -> OAuthToken:
        config = self.oauth_config
        if not config.is_configured:
            raise ConfigurationError("Google OAuth is not configured")

        client = await self._http_client()
        data: Dict[str, Any] = {
            "code": code,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "redirect_uri": config.redirect_uri,
            "grant_type": "authorization_code",
        }
        try:
            response = await client.post(GOOGLE_TOKEN_URI, data=data, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise ProviderError(0, f"token exchange failed: {e}") from e
        if response.status_code >= 400:
            raise provider_error_from_response(response)
        return OAuthToken.from_token_response(response.json())
