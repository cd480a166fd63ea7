"""
Tests for Drive push-notification reconciliation.

The Google facade is mocked at the service-handle level; the key-value
store, lock and dispatcher are the real implementations.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from drivelink.core.distributed_lock import InProcessDistributedLock
from drivelink.core.exceptions import (
    ProviderError,
    UnknownUserError,
    WatchChannelError,
    WebhookValidationError,
)
from drivelink.schemas.activity import DriveActivity, QueryDriveActivityResponse
from drivelink.schemas.drive import ChangeList, Comment, StartPageToken
from drivelink.schemas.watch import WatchChannelData
from drivelink.services.notification_dispatcher import NotificationDispatcher
from drivelink.services.webhook_reconciler import WebhookNotification, WebhookReconciler

USER = "user1"
TOKEN = "channel-secret"


def ts(second: int) -> str:
    return f"2024-03-01T10:00:{second:02d}Z"


def change(file_id: str = "f1", time: str = ts(30), viewed: str | None = None, removed: bool = False) -> dict:
    file = {
        "id": file_id,
        "name": f"File {file_id}",
        "webViewLink": f"https://docs/{file_id}",
        "iconLink": "https://drive/icon.png",
        "modifiedTime": time,
    }
    if viewed:
        file["viewedByMeTime"] = viewed
    return {"fileId": file_id, "time": time, "removed": removed, "file": None if removed else file}


def change_page(*changes: dict, next_page: str | None = None, new_start: str | None = None) -> ChangeList:
    return ChangeList.model_validate(
        {"changes": list(changes), "nextPageToken": next_page, "newStartPageToken": new_start}
    )


def comment_activity(time: str, discussion_id: str = "c1", self_caused: bool = False) -> DriveActivity:
    return DriveActivity.model_validate(
        {
            "primaryActionDetail": {"comment": {"post": {"subtype": "ADDED"}}},
            "actors": [{"user": {"knownUser": {"personName": "people/x", "isCurrentUser": self_caused}}}],
            "targets": [{"fileComment": {"legacyDiscussionId": discussion_id, "linkToDiscussion": "https://d"}}],
            "timestamp": time,
        }
    )


def share_activity(time: str) -> DriveActivity:
    return DriveActivity.model_validate(
        {
            "primaryActionDetail": {"permissionChange": {"addedPermissions": [{"role": "READER"}]}},
            "actors": [{"user": {"knownUser": {"personName": "people/x"}}}],
            "timestamp": time,
        }
    )


def activities(*items: DriveActivity, next_page: str | None = None) -> QueryDriveActivityResponse:
    return QueryDriveActivityResponse(activities=list(items), next_page_token=next_page)


@pytest.fixture
def drive():
    mock = MagicMock()
    mock.list_changes = AsyncMock(return_value=change_page(new_start="p2"))
    mock.get_start_page_token = AsyncMock(return_value=StartPageToken(start_page_token="start-0"))
    mock.get_comment = AsyncMock(
        side_effect=lambda file_id, comment_id: Comment.model_validate(
            {"id": comment_id, "content": f"comment {comment_id}", "author": {"displayName": "Alice"}}
        )
    )
    return mock


@pytest.fixture
def activity():
    mock = MagicMock()
    mock.query = AsyncMock(return_value=activities())
    return mock


@pytest.fixture
def google(drive, activity):
    mock = MagicMock()
    mock.drive = AsyncMock(return_value=drive)
    mock.drive_activity = AsyncMock(return_value=activity)
    return mock


@pytest.fixture
def reconciler(kv_store, google, chat):
    return WebhookReconciler(
        kv_store,
        google,
        chat,
        NotificationDispatcher(chat, "https://chat.example.com/plugins/gd"),
        InProcessDistributedLock(),
        lock_timeout_seconds=5,
        change_page_iteration_limit=5,
        activity_page_iteration_limit=5,
        multiple_activities_threshold=5,
    )


@pytest_asyncio.fixture
async def watching(kv_store):
    record = WatchChannelData(
        channel_id="chan-1",
        resource_id="res-1",
        user_id=USER,
        expiration=1_900_000_000_000,
        token=TOKEN,
        page_token="p1",
    )
    await kv_store.store_watch_channel(USER, record)
    return record


def delivery(state: str = "change", token: str = TOKEN, user_id: str = USER) -> WebhookNotification:
    return WebhookNotification(resource_state=state, channel_token=token, user_id=user_id)


class TestValidation:
    """Deliveries rejected or ignored before any Drive call."""

    @pytest.mark.asyncio
    async def test_sync_state_ignored(self, reconciler, watching, chat, google):
        result = await reconciler.reconcile(delivery(state="sync"))

        assert result.skipped is True
        assert result.status_code == 200
        chat.get_user.assert_not_awaited()
        google.drive.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_wrong_token_rejected(self, reconciler, watching, drive, kv_store):
        with pytest.raises(WebhookValidationError):
            await reconciler.reconcile(delivery(token="forged"))

        drive.list_changes.assert_not_awaited()
        assert (await kv_store.get_watch_channel(USER)).page_token == "p1"

    @pytest.mark.asyncio
    async def test_empty_token_rejected(self, reconciler, watching, drive):
        with pytest.raises(WebhookValidationError):
            await reconciler.reconcile(delivery(token=""))
        drive.list_changes.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_user_id(self, reconciler, watching):
        with pytest.raises(WebhookValidationError):
            await reconciler.reconcile(delivery(user_id=""))

    @pytest.mark.asyncio
    async def test_unknown_user(self, reconciler, watching, chat, drive):
        chat.get_user.return_value = None
        with pytest.raises(UnknownUserError):
            await reconciler.reconcile(delivery())
        drive.list_changes.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_watch_record(self, reconciler):
        with pytest.raises(WatchChannelError):
            await reconciler.reconcile(delivery())

    @pytest.mark.asyncio
    async def test_corrupt_watch_record(self, reconciler, backend):
        await backend.set(f"drive_change_channels-{USER}", "not json")
        with pytest.raises(WatchChannelError):
            await reconciler.reconcile(delivery())


class TestChangeLog:
    """Page token handling."""

    @pytest.mark.asyncio
    async def test_valid_delivery_end_to_end(self, reconciler, watching, drive, activity, chat, kv_store):
        """One new comment: page token advances, cursor set, one DM sent."""
        drive.list_changes.return_value = change_page(change("f1", time=ts(30), viewed=ts(10)), new_start="p2")
        activity.query.return_value = activities(comment_activity(ts(30)))

        result = await reconciler.reconcile(delivery())

        assert result.changes == 1
        assert result.notifications == 1
        drive.list_changes.assert_awaited_once_with("p1")
        assert (await kv_store.get_watch_channel(USER)).page_token == "p2"
        assert await kv_store.get_last_activity(USER, "f1") == ts(30)
        chat.create_direct_post.assert_awaited_once()
        assert chat.create_direct_post.await_args.args[0] == USER

    @pytest.mark.asyncio
    async def test_first_activity_query_asks_for_one(self, reconciler, watching, drive, activity):
        drive.list_changes.return_value = change_page(change("f1"), new_start="p2")

        await reconciler.reconcile(delivery())

        activity.query.assert_awaited_once_with("items/f1", page_size=1)

    @pytest.mark.asyncio
    async def test_first_activity_query_reports_only_latest(
        self, reconciler, watching, drive, activity, chat, kv_store
    ):
        """Drive may ignore pageSize; history beyond the newest entry is not reported."""
        drive.list_changes.return_value = change_page(change("f1"), new_start="p2")
        activity.query.return_value = activities(
            comment_activity(ts(29), "c3"), comment_activity(ts(28), "c2"), comment_activity(ts(27), "c1")
        )

        result = await reconciler.reconcile(delivery())

        assert result.notifications == 1
        chat.create_direct_post.assert_awaited_once()
        assert await kv_store.get_last_activity(USER, "f1") == ts(29)

    @pytest.mark.asyncio
    async def test_empty_page_token_uses_start_token(self, reconciler, watching, drive, kv_store):
        await kv_store.store_watch_channel(USER, watching.model_copy(update={"page_token": ""}))

        await reconciler.reconcile(delivery())

        drive.get_start_page_token.assert_awaited_once()
        drive.list_changes.assert_awaited_once_with("start-0")

    @pytest.mark.asyncio
    async def test_change_paging_is_bounded(self, reconciler, watching, drive, kv_store):
        """A change log that never ends stops at the page limit and resumes from the last token."""
        tokens = iter(f"n{i}" for i in range(1, 100))
        drive.list_changes.side_effect = lambda token: change_page(next_page=next(tokens))

        await reconciler.reconcile(delivery())

        assert drive.list_changes.await_count == 5
        assert [c.args[0] for c in drive.list_changes.await_args_list] == ["p1", "n1", "n2", "n3", "n4"]
        assert (await kv_store.get_watch_channel(USER)).page_token == "n5"

    @pytest.mark.asyncio
    async def test_follows_next_page_until_new_start(self, reconciler, watching, drive, activity, kv_store):
        drive.list_changes.side_effect = [
            change_page(change("f1"), next_page="n1"),
            change_page(change("f2"), new_start="p9"),
        ]

        result = await reconciler.reconcile(delivery())

        assert result.changes == 2
        assert activity.query.await_count == 2
        assert (await kv_store.get_watch_channel(USER)).page_token == "p9"

    @pytest.mark.asyncio
    async def test_change_fetch_failure_keeps_page_token(self, reconciler, watching, drive, kv_store):
        drive.list_changes.side_effect = ProviderError(500, "backend error")

        with pytest.raises(ProviderError):
            await reconciler.reconcile(delivery())
        assert (await kv_store.get_watch_channel(USER)).page_token == "p1"

    @pytest.mark.asyncio
    async def test_activity_handle_failure_keeps_page_token(self, reconciler, watching, drive, google, kv_store):
        """Changes that were fetched but never processed are fetched again next time."""
        drive.list_changes.return_value = change_page(change("f1"), new_start="p2")
        google.drive_activity.side_effect = ProviderError(0, "token refresh failed")

        with pytest.raises(ProviderError):
            await reconciler.reconcile(delivery())
        assert (await kv_store.get_watch_channel(USER)).page_token == "p1"

    @pytest.mark.asyncio
    async def test_removed_changes_and_duplicates(self, reconciler, watching, drive, activity):
        """Removed files are skipped and each file is processed once."""
        drive.list_changes.return_value = change_page(
            change("f1", time=ts(10)),
            change("gone", removed=True),
            change("f1", time=ts(20)),
            new_start="p2",
        )

        await reconciler.reconcile(delivery())

        activity.query.assert_awaited_once()
        assert activity.query.await_args.args[0] == "items/f1"

    @pytest.mark.asyncio
    async def test_page_token_not_written_to_replaced_channel(self, reconciler, watching, drive, kv_store):
        """A channel renewed mid-reconciliation keeps its own cursor."""

        async def renew_then_list(token):
            await kv_store.store_watch_channel(
                USER, watching.model_copy(update={"channel_id": "chan-2", "page_token": "fresh"})
            )
            return change_page(new_start="p2")

        drive.list_changes.side_effect = renew_then_list

        await reconciler.reconcile(delivery())

        record = await kv_store.get_watch_channel(USER)
        assert record.channel_id == "chan-2"
        assert record.page_token == "fresh"


class TestActivityProcessing:
    """Per-file activity reporting and cursor movement."""

    @pytest.mark.asyncio
    async def test_self_viewed_file_skipped(self, reconciler, watching, drive, activity, chat, kv_store):
        """A change the user already looked at produces no notification."""
        drive.list_changes.return_value = change_page(change("f1", time=ts(20), viewed=ts(25)), new_start="p2")

        result = await reconciler.reconcile(delivery())

        assert result.notifications == 0
        activity.query.assert_not_awaited()
        chat.create_direct_post.assert_not_awaited()
        assert await kv_store.get_last_activity(USER, "f1") == ts(25)

    @pytest.mark.asyncio
    async def test_viewed_at_same_instant_counts_as_seen(self, reconciler, watching, drive, activity):
        drive.list_changes.return_value = change_page(change("f1", time=ts(20), viewed=ts(20)), new_start="p2")
        await reconciler.reconcile(delivery())
        activity.query.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_self_notification(self, reconciler, watching, drive, activity, chat, kv_store):
        """The user's own activity is never reported but still advances the cursor."""
        await kv_store.store_last_activity(USER, "f1", ts(5))
        drive.list_changes.return_value = change_page(change("f1", time=ts(40)), new_start="p2")
        activity.query.return_value = activities(
            comment_activity(ts(40), "c2", self_caused=True),
            comment_activity(ts(30), "c1", self_caused=True),
        )

        result = await reconciler.reconcile(delivery())

        assert result.notifications == 0
        chat.create_direct_post.assert_not_awaited()
        assert await kv_store.get_last_activity(USER, "f1") == ts(40)

    @pytest.mark.asyncio
    async def test_cursor_filter_used(self, reconciler, watching, drive, activity, kv_store):
        await kv_store.store_last_activity(USER, "f1", ts(5))
        drive.list_changes.return_value = change_page(change("f1"), new_start="p2")

        await reconciler.reconcile(delivery())

        activity.query.assert_awaited_once_with("items/f1", filter_expr=f'time > "{ts(5)}"', page_token="")

    @pytest.mark.asyncio
    async def test_cursor_never_moves_backwards(self, reconciler, watching, drive, activity, kv_store):
        await kv_store.store_last_activity(USER, "f1", ts(50))
        drive.list_changes.return_value = change_page(change("f1", time=ts(55)), new_start="p2")
        activity.query.return_value = activities(comment_activity(ts(10)))

        await reconciler.reconcile(delivery())

        assert await kv_store.get_last_activity(USER, "f1") == ts(50)

    @pytest.mark.asyncio
    async def test_five_activities_sent_oldest_first(self, reconciler, watching, drive, activity, chat, kv_store):
        await kv_store.store_last_activity(USER, "f1", ts(1))
        drive.list_changes.return_value = change_page(change("f1", time=ts(50)), new_start="p2")
        # Google returns newest first
        activity.query.return_value = activities(*(comment_activity(ts(10 + i), f"c{i}") for i in range(4, -1, -1)))

        result = await reconciler.reconcile(delivery())

        assert result.notifications == 5
        assert chat.create_direct_post.await_count == 5
        assert [c.args[1] for c in drive.get_comment.await_args_list] == ["c0", "c1", "c2", "c3", "c4"]
        assert await kv_store.get_last_activity(USER, "f1") == ts(14)

    @pytest.mark.asyncio
    async def test_six_activities_summarized(self, reconciler, watching, drive, activity, chat, kv_store):
        await kv_store.store_last_activity(USER, "f1", ts(1))
        drive.list_changes.return_value = change_page(change("f1", time=ts(50)), new_start="p2")
        activity.query.return_value = activities(*(share_activity(ts(10 + i)) for i in range(5, -1, -1)))

        result = await reconciler.reconcile(delivery())

        assert result.notifications == 1
        chat.create_direct_post.assert_awaited_once()
        assert chat.create_direct_post.await_args.args[1].startswith("There have been 6 new activities in")
        # Cursor jumps to the file's modification time, past every activity
        assert await kv_store.get_last_activity(USER, "f1") == ts(50)

    @pytest.mark.asyncio
    async def test_activity_paging_is_bounded(self, reconciler, watching, drive, activity, kv_store):
        await kv_store.store_last_activity(USER, "f1", ts(1))
        drive.list_changes.return_value = change_page(change("f1"), new_start="p2")
        activity.query.return_value = activities(next_page="more")

        await reconciler.reconcile(delivery())

        assert activity.query.await_count == 5

    @pytest.mark.asyncio
    async def test_file_failure_isolated(self, reconciler, watching, drive, activity, chat, kv_store):
        """One failing file does not stop the others or the page token advance."""
        drive.list_changes.return_value = change_page(change("f1"), change("f2"), new_start="p2")

        async def query(item_name, **kwargs):
            if item_name == "items/f1":
                raise ProviderError(500, "boom")
            return activities(share_activity(ts(30)))

        activity.query.side_effect = query

        result = await reconciler.reconcile(delivery())

        assert result.failed_files == ["f1"]
        assert result.notifications == 1
        assert (await kv_store.get_watch_channel(USER)).page_token == "p2"
        assert await kv_store.get_last_activity(USER, "f2") == ts(30)
        assert await kv_store.get_last_activity(USER, "f1") == ""


class TestMutualExclusion:
    @pytest.mark.asyncio
    async def test_concurrent_deliveries_serialize(self, reconciler, watching, drive):
        """Overlapping deliveries for one user never drain the change log at the same time."""
        active = 0
        max_active = 0
        seen_tokens = []

        async def slow_list(token):
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            seen_tokens.append(token)
            await asyncio.sleep(0.02)
            active -= 1
            return change_page(new_start=f"{token}+")

        drive.list_changes.side_effect = slow_list

        await asyncio.gather(reconciler.reconcile(delivery()), reconciler.reconcile(delivery()))

        assert max_active == 1
        # The second holder re-reads the token the first one persisted
        assert seen_tokens == ["p1", "p1+"]
