"""Google account connect flow.

``connect`` issues a single-use state token, returns Google's consent URL and
starts a watcher that DMs the user if the flow has not completed within the
connect timeout. ``complete`` redeems the state, exchanges the code and stores
the encrypted token.
"""

from __future__ import annotations

import asyncio
import secrets
from typing import TYPE_CHECKING, Dict, List, Optional, Set

from ..core.exceptions import AuthenticationError, DriveLinkException, OAuthStateError, ValidationError
from ..core.logging import get_logger
from .command_service import COMMAND_TRIGGER, command_help_markdown

if TYPE_CHECKING:
    from ..chat.client import ChatPlatformClient
    from ..providers.google.auth_adapter import GoogleAuthAdapter
    from ..store.kvstore import KVStore

logger = get_logger(__name__)

COLOR_DANGER = "#FF0000"
CONNECT_TIMEOUT_MESSAGE = "Timed out waiting for OAuth connection. Please check if the SiteURL is correct."

WELCOME_MESSAGE = (
    "#### Welcome to the Mattermost Google Drive Plugin!\n"
    "You've connected your Mattermost account to Google account. Read about the features of this plugin below:\n\n"
    "##### File Creation\n"
    f"Create Google documents, spreadsheets and presentations with `{COMMAND_TRIGGER} create [file type]`.\n\n"
    "##### Notifications\n"
    "When someone shares any files with you or comments on any file , you'll get a post here about it.\n\n"
    "##### Slash Commands\n"
)


class OAuthCompletionBroker:
    """In-process fan-out of connect-flow outcomes, keyed by user id."""

    def __init__(self) -> None:
        self._waiters: Dict[str, List[asyncio.Future]] = {}

    def subscribe(self, user_id: str) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(user_id, []).append(future)
        return future

    def unsubscribe(self, user_id: str, future: asyncio.Future) -> None:
        waiters = self._waiters.get(user_id, [])
        if future in waiters:
            waiters.remove(future)
        if not waiters:
            self._waiters.pop(user_id, None)

    def publish(self, user_id: str, error: Optional[str]) -> None:
        for future in self._waiters.get(user_id, []):
            if not future.done():
                future.set_result(error)


def state_user_id(state: str) -> str:
    """User id embedded in a ``{nonce}_{user_id}`` state token."""
    _, _, user_id = state.partition("_")
    return user_id


class OAuthService:
    def __init__(
        self,
        kv_store: KVStore,
        auth: GoogleAuthAdapter,
        chat: ChatPlatformClient,
        state_ttl_seconds: int = 600,
        connect_timeout_seconds: float = 45.0,
        broker: Optional[OAuthCompletionBroker] = None,
    ):
        self._kv = kv_store
        self._auth = auth
        self._chat = chat
        self.state_ttl_seconds = state_ttl_seconds
        self.connect_timeout_seconds = connect_timeout_seconds
        self.broker = broker or OAuthCompletionBroker()
        self._watchers: Set[asyncio.Task] = set()

    async def connect(self, user_id: str) -> str:
        """Return the Google consent URL for ``user_id``."""
        state = f"{secrets.token_hex(8)[:15]}_{user_id}"
        await self._kv.store_oauth_state(state, self.state_ttl_seconds)
        url = self._auth.build_authorization_url(state)

        future = self.broker.subscribe(user_id)
        task = asyncio.create_task(self._await_completion(user_id, future), name=f"oauth-connect:{user_id}")
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)
        return url

    async def _await_completion(self, user_id: str, future: asyncio.Future) -> None:
        try:
            error = await asyncio.wait_for(future, timeout=self.connect_timeout_seconds)
        except asyncio.TimeoutError:
            error = CONNECT_TIMEOUT_MESSAGE
        finally:
            self.broker.unsubscribe(user_id, future)

        if not error:
            return
        attachment = {
            "text": f"There was an error connecting to your Google account: `{error}` Please double check your configuration.",
            "color": COLOR_DANGER,
        }
        try:
            await self._chat.create_direct_post(user_id, "", {"attachments": [attachment]})
        except DriveLinkException as e:
            logger.warning("Failed to DM connect failure", extra={"user_id": user_id, "error": e.message})

    async def complete(self, authed_user_id: str, code: str, state: str) -> None:
        """Finish the flow started by ``connect``.

        Raises:
            ValidationError: no authorization code.
            OAuthStateError: unknown, expired or reused state.
            AuthenticationError: the state belongs to another user.
        """
        error: Optional[str] = None
        try:
            if not code:
                raise ValidationError("missing authorization code")
            if not state or not await self._kv.redeem_oauth_state(state):
                raise OAuthStateError("invalid state token")
            if state_user_id(state) != authed_user_id:
                raise AuthenticationError("not authorized, incorrect user")

            token = await self._auth.exchange_code(code)
            await self._auth.store_token(authed_user_id, token)
        except Exception as e:
            error = getattr(e, "message", None) or str(e)
            raise
        finally:
            self.broker.publish(authed_user_id, error)

        logger.info("Connected Google account", extra={"user_id": authed_user_id})
        try:
            await self._chat.create_direct_post(authed_user_id, WELCOME_MESSAGE + command_help_markdown())
        except DriveLinkException as e:
            logger.warning("Failed to send welcome message", extra={"user_id": authed_user_id, "error": e.message})

    async def shutdown(self) -> None:
        for task in list(self._watchers):
            task.cancel()
        if self._watchers:
            await asyncio.gather(*self._watchers, return_exceptions=True)
