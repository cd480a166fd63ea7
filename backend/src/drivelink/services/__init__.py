"""
Services package for DriveLink.

Business logic behind the HTTP surface: watch channel lifecycle, webhook
reconciliation, notification dispatch, slash commands and the connect flow.
"""

from .command_service import CommandService
from .notification_dispatcher import NotificationDispatcher
from .oauth_service import OAuthCompletionBroker, OAuthService
from .reply_service import CommentReplyService
from .watch_channel_service import RefreshSummary, WatchChannelManager
from .webhook_reconciler import ReconcileResult, WebhookNotification, WebhookReconciler

__all__ = [
    "CommandService",
    "CommentReplyService",
    "NotificationDispatcher",
    "OAuthCompletionBroker",
    "OAuthService",
    "RefreshSummary",
    "ReconcileResult",
    "WatchChannelManager",
    "WebhookNotification",
    "WebhookReconciler",
]
