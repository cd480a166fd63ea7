"""Drive push-notification reconciliation.

One call of ``WebhookReconciler.reconcile`` handles one webhook delivery:

1. ignore anything that is not a ``change`` push
2. check the user exists and has a valid watch record
3. authenticate the channel token against the record
4. under the per-user cluster lock, re-read the record, drain the Drive
   change log from its page token and, for each changed file, report the
   activity that happened since the file's last-activity cursor
5. persist the advanced page token, even if per-file work failed

Errors before any file was processed leave the stored page token untouched
so the next delivery retries the same window.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from ..core.cache_backend import CacheError
from ..core.exceptions import UnknownUserError, WatchChannelError, WebhookValidationError
from ..core.logging import get_logger
from ..schemas.activity import DriveActivity
from ..schemas.drive import Change, DriveFile
from ..schemas.watch import WatchChannelData
from ..utils.timestamps import is_after, latest, parse_timestamp
from .notification_dispatcher import is_notifiable

if TYPE_CHECKING:
    from ..chat.client import ChatPlatformClient
    from ..core.distributed_lock import BaseDistributedLock
    from ..providers.google.client import GoogleClient
    from ..providers.google.services import DriveActivityService, DriveService
    from ..store.kvstore import KVStore
    from .notification_dispatcher import NotificationDispatcher

logger = get_logger(__name__)

RESOURCE_STATE_CHANGE = "change"
LOCK_KEY_PREFIX = "drive_watch_lock-"


def reconcile_lock_key(user_id: str) -> str:
    return f"{LOCK_KEY_PREFIX}{user_id}"


@dataclass
class WebhookNotification:
    """The parts of a Drive push delivery the reconciler reads."""

    resource_state: str
    channel_token: str
    user_id: str


@dataclass
class ReconcileResult:
    status_code: int = 200
    changes: int = 0
    notifications: int = 0
    skipped: bool = False
    failed_files: List[str] = field(default_factory=list)


class WebhookReconciler:
    def __init__(
        self,
        kv_store: KVStore,
        google: GoogleClient,
        chat: ChatPlatformClient,
        dispatcher: NotificationDispatcher,
        lock: BaseDistributedLock,
        lock_timeout_seconds: float = 60.0,
        change_page_iteration_limit: int = 5,
        activity_page_iteration_limit: int = 5,
        multiple_activities_threshold: int = 5,
    ):
        self._kv = kv_store
        self._google = google
        self._chat = chat
        self._dispatcher = dispatcher
        self._lock = lock
        self.lock_timeout_seconds = lock_timeout_seconds
        self.change_page_iteration_limit = change_page_iteration_limit
        self.activity_page_iteration_limit = activity_page_iteration_limit
        self.multiple_activities_threshold = multiple_activities_threshold

    async def _load_watch_channel(self, user_id: str) -> WatchChannelData:
        try:
            data = await self._kv.get_watch_channel(user_id)
        except CacheError as e:
            raise WatchChannelError(user_id, "watch record unreadable") from e
        if data is None or not data.is_valid():
            raise WatchChannelError(user_id, "no active watch channel")
        return data

    async def reconcile(self, notification: WebhookNotification) -> ReconcileResult:
        """Process one delivery.

        Raises:
            WebhookValidationError: missing user id or channel token mismatch.
            UnknownUserError: the user id is not a chat platform user.
            WatchChannelError: no usable watch record for the user.
            LockTimeoutError: the per-user lock was not granted in time.
            ProviderError: fetching the change log failed.
        """
        if notification.resource_state != RESOURCE_STATE_CHANGE:
            logger.debug("Ignoring Drive push", extra={"resource_state": notification.resource_state})
            return ReconcileResult(skipped=True)

        user_id = notification.user_id
        if not user_id:
            raise WebhookValidationError("missing userID")

        if await self._chat.get_user(user_id) is None:
            raise UnknownUserError(user_id)

        data = await self._load_watch_channel(user_id)
        if not notification.channel_token or not hmac.compare_digest(notification.channel_token, data.token):
            raise WebhookValidationError("channel token mismatch", details={"user_id": user_id})

        async with self._lock.hold(reconcile_lock_key(user_id), timeout=self.lock_timeout_seconds):
            return await self._reconcile_locked(user_id)

    async def _reconcile_locked(self, user_id: str) -> ReconcileResult:
        # Another delivery may have advanced the cursor while we waited
        data = await self._load_watch_channel(user_id)
        drive = await self._google.drive(user_id)

        page_token = data.page_token
        if not page_token:
            page_token = (await drive.get_start_page_token()).start_page_token

        changes, next_page_token = await self.drain_changes(drive, page_token)
        result = ReconcileResult(changes=len(changes))
        if not changes:
            await self._persist_page_token(data, next_page_token)
            return result

        # Not inside the try: failing here, before any file was looked at,
        # keeps the old page token so the next delivery retries the window
        activity = await self._google.drive_activity(user_id)
        try:
            for change in self._latest_change_per_file(changes):
                try:
                    result.notifications += await self._process_file(user_id, drive, activity, change)
                except Exception as e:
                    result.failed_files.append(change.file_id or "")
                    logger.error(
                        "Failed to process Drive change",
                        extra={"user_id": user_id, "file_id": change.file_id, "error": str(e)},
                    )
            return result
        finally:
            await self._persist_page_token(data, next_page_token)

    async def drain_changes(self, drive: DriveService, page_token: str) -> Tuple[List[Change], str]:
        """Read change pages until Drive signals the end of the log or the page limit is hit.

        Returns the accumulated changes and the token to resume from.
        """
        changes: List[Change] = []
        token = page_token
        for _ in range(self.change_page_iteration_limit):
            page = await drive.list_changes(token)
            changes.extend(page.changes)
            if page.new_start_page_token:
                token = page.new_start_page_token
                break
            if not page.next_page_token:
                break
            token = page.next_page_token
        else:
            logger.warning(
                "Change log not exhausted within page limit",
                extra={"limit": self.change_page_iteration_limit, "changes": len(changes)},
            )
        return changes, token

    @staticmethod
    def _latest_change_per_file(changes: List[Change]) -> List[Change]:
        by_file: Dict[str, Change] = {}
        for change in changes:
            if change.removed or change.file is None or not change.file_id:
                continue
            by_file.pop(change.file_id, None)
            by_file[change.file_id] = change
        return list(by_file.values())

    async def _persist_page_token(self, read: WatchChannelData, page_token: str) -> None:
        current = await self._kv.get_watch_channel(read.user_id)
        if current is None or current.channel_id != read.channel_id:
            # Stopped or renewed meanwhile; the new record owns its own cursor
            logger.info("Watch channel replaced during reconciliation", extra={"user_id": read.user_id})
            return
        if current.page_token == page_token:
            return
        await self._kv.store_watch_channel(read.user_id, current.model_copy(update={"page_token": page_token}))

    async def _advance_cursor(self, user_id: str, file_id: str, timestamp: Optional[str]) -> None:
        """Store ``timestamp`` as the file's cursor unless it would move it backwards."""
        current = await self._kv.get_last_activity(user_id, file_id)
        if is_after(timestamp, current):
            await self._kv.store_last_activity(user_id, file_id, timestamp)

    async def _process_file(
        self, user_id: str, drive: DriveService, activity_service: DriveActivityService, change: Change
    ) -> int:
        file: DriveFile = change.file
        file_id = change.file_id

        viewed = parse_timestamp(file.viewed_by_me_time)
        changed = parse_timestamp(change.time or file.modified_time)
        if viewed is not None and changed is not None and viewed >= changed:
            await self._advance_cursor(user_id, file_id, file.viewed_by_me_time)
            return 0

        last_activity = await self._kv.get_last_activity(user_id, file_id)
        activities = await self._fetch_activities(activity_service, file_id, last_activity)
        if not activities:
            return 0

        qualifying = [a for a in activities if not a.is_self_caused and is_notifiable(a)]
        newest_seen = latest(*(a.activity_time for a in activities))

        sent = 0
        if len(qualifying) > self.multiple_activities_threshold:
            if await self._dispatcher.multiple_activities(user_id, file, len(qualifying)):
                sent = 1
            await self._advance_cursor(user_id, file_id, latest(file.modified_time, newest_seen))
            return sent

        for activity in reversed(qualifying):
            if await self._dispatcher.dispatch(user_id, drive, file, activity):
                sent += 1
        await self._advance_cursor(user_id, file_id, newest_seen)
        return sent

    async def _fetch_activities(
        self, activity_service: DriveActivityService, file_id: str, last_activity: str
    ) -> List[DriveActivity]:
        """Activities newer than the cursor, newest first.

        Without a cursor only the most recent activity is requested.
        """
        item_name = f"items/{file_id}"
        if not last_activity:
            response = await activity_service.query(item_name, page_size=1)
            # pageSize is only a hint
            return response.activities[:1]

        activities: List[DriveActivity] = []
        page_token = ""
        for _ in range(self.activity_page_iteration_limit):
            response = await activity_service.query(
                item_name, filter_expr=f'time > "{last_activity}"', page_token=page_token
            )
            activities.extend(response.activities)
            if not response.next_page_token:
                break
            page_token = response.next_page_token
        return activities
