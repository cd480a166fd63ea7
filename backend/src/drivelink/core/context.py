"""Application wiring.

``DriveLinkContext`` constructs every long-lived component once, in
dependency order, and is stored on ``app.state`` by the lifespan. Routes get
it through ``api.dependencies.get_context``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from ..chat.client import ChatPlatformClient
from ..providers.google.auth_adapter import GoogleAuthAdapter, GoogleOAuthConfig
from ..providers.google.client import GoogleClient
from ..services.command_service import CommandService
from ..services.notification_dispatcher import NotificationDispatcher
from ..services.oauth_service import OAuthService
from ..services.reply_service import CommentReplyService
from ..services.watch_channel_service import WatchChannelManager
from ..services.webhook_reconciler import WebhookReconciler
from ..store.kvstore import KVStore
from .cache_backend import CacheBackend
from .config import Settings
from .distributed_lock import BaseDistributedLock, create_distributed_lock
from .encryption import TokenEncryptionError, TokenEncryptionService
from .exceptions import ConfigurationError
from .logging import get_logger
from .rate_limiting import ProviderRateLimiter

logger = get_logger(__name__)


def _encryption_from_settings(settings: Settings) -> TokenEncryptionService:
    try:
        return TokenEncryptionService.from_settings(settings)
    except TokenEncryptionError as e:
        raise ConfigurationError(str(e)) from e


@dataclass
class DriveLinkContext:
    settings: Settings
    backend: CacheBackend
    kv_store: KVStore
    lock: BaseDistributedLock
    rate_limiter: ProviderRateLimiter
    auth: GoogleAuthAdapter
    google: GoogleClient
    chat: ChatPlatformClient
    dispatcher: NotificationDispatcher
    watch_manager: WatchChannelManager
    reconciler: WebhookReconciler
    oauth: OAuthService
    commands: CommandService
    replies: CommentReplyService

    @classmethod
    def build(
        cls,
        settings: Settings,
        backend: CacheBackend,
        http_client: Callable[[], Awaitable[httpx.AsyncClient]],
        lock: BaseDistributedLock | None = None,
    ) -> DriveLinkContext:
        kv_store = KVStore(backend)
        rate_limiter = ProviderRateLimiter.from_settings(kv_store, settings)
        auth = GoogleAuthAdapter(
            kv_store,
            _encryption_from_settings(settings),
            GoogleOAuthConfig.from_settings(settings),
            http_client,
        )
        google = GoogleClient(auth, rate_limiter, http_client)
        chat = ChatPlatformClient(
            settings.effective_chat_server_url, settings.bot_token, settings.bot_user_id, http_client
        )
        lock = lock or create_distributed_lock(backend)
        dispatcher = NotificationDispatcher(chat, settings.plugin_url)
        watch_manager = WatchChannelManager(
            kv_store,
            google,
            settings.webhook_url,
            channel_ttl_seconds=settings.watch_channel_ttl_seconds,
            renewal_window_seconds=settings.watch_renewal_window_seconds,
            refresh_workers=settings.watch_refresh_workers,
            page_size=settings.watch_refresh_page_size,
            lock=lock,
            lock_timeout_seconds=settings.request_timeout_seconds,
        )
        reconciler = WebhookReconciler(
            kv_store,
            google,
            chat,
            dispatcher,
            lock,
            lock_timeout_seconds=settings.request_timeout_seconds,
            change_page_iteration_limit=settings.change_page_iteration_limit,
            activity_page_iteration_limit=settings.activity_page_iteration_limit,
            multiple_activities_threshold=settings.multiple_activities_threshold,
        )
        oauth = OAuthService(
            kv_store,
            auth,
            chat,
            state_ttl_seconds=settings.oauth_state_ttl_seconds,
            connect_timeout_seconds=settings.oauth_connect_timeout_seconds,
        )
        commands = CommandService(
            auth, google, watch_manager, settings.plugin_url, app_name=settings.app_name, version=settings.version
        )
        replies = CommentReplyService(google, chat, settings.plugin_url)

        return cls(
            settings=settings,
            backend=backend,
            kv_store=kv_store,
            lock=lock,
            rate_limiter=rate_limiter,
            auth=auth,
            google=google,
            chat=chat,
            dispatcher=dispatcher,
            watch_manager=watch_manager,
            reconciler=reconciler,
            oauth=oauth,
            commands=commands,
            replies=replies,
        )

    def apply_settings(self, settings: Settings) -> None:
        """Hot-reload limiter and OAuth configuration without rebuilding components.

        The new settings are validated (encryption key included) before
        anything is swapped.
        """
        encryption = _encryption_from_settings(settings)
        self.rate_limiter.reconfigure(settings.drive_queries_per_minute, settings.drive_burst_size)
        self.auth.reconfigure(GoogleOAuthConfig.from_settings(settings), encryption)
        self.settings = settings
        logger.info(
            "Applied configuration reload",
            extra={"drive_qpm": settings.drive_queries_per_minute, "drive_burst": settings.drive_burst_size},
        )
