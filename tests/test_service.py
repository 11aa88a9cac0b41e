"""Tests for the notification service facade."""

from datetime import datetime, timedelta, timezone

import pytest

from config.settings import Settings
from notifications.clock import ManualClock
from notifications.errors import RemoteSyncError
from notifications.models import InAppNotification, PermissionState
from notifications.senders import NullSender
from notifications.service import create_notification_service
from notifications.storage import FileKeyValueStore, InMemoryKeyValueStore
from realtime.connection_manager import ConnectionManager

from helpers.fakes import RecordingRemoteStore, RecordingSender


EXPENSE = {
    "id": "42",
    "description": "Aluguel",
    "value": 1500.0,
    "dueDate": "2024-06-10T00:00:00Z",
    "notificationEnabled": True,
    "userId": "user-1",
}


class TestLifecycle:
    """Tests for startup and shutdown."""

    @pytest.mark.asyncio
    async def test_startup_loads_state_and_permission(self, service, storage, settings_store):
        await settings_store.update({"soundEnabled": False})

        await service.startup()

        assert service.started is True
        assert service.permission is PermissionState.GRANTED
        assert service.get_settings().sound_enabled is False

    @pytest.mark.asyncio
    async def test_startup_purges_expired(self, service, ledger, clock):
        await ledger.add(InAppNotification(id="old", title="Old", expires_at=clock.now() - timedelta(days=1)))
        await ledger.add(InAppNotification(id="new", title="New"))

        await service.startup()

        assert [item.id for item in service.get_in_app_notifications()] == ["new"]

    @pytest.mark.asyncio
    async def test_shutdown_cancels_and_closes(self, service, clock, remote_store):
        await service.startup()
        await service.schedule_expense_reminder(EXPENSE)

        await service.shutdown()

        assert clock.pending_count == 0
        assert service.get_pending_reminders() == []
        assert remote_store.closed is True
        assert service.started is False


class TestFacade:
    """Tests for the operations exposed to the application."""

    @pytest.mark.asyncio
    async def test_full_reminder_flow(self, service, clock, sender):
        await service.startup()
        reminders = await service.schedule_expense_reminder(EXPENSE)
        assert len(reminders) == 3

        await clock.advance_to(datetime(2024, 6, 10, tzinfo=timezone.utc))

        assert [p.tag for p in sender.shown] == ["expense-42-3days", "expense-42-1day", "expense-42-sameday"]
        assert service.get_unread_count() == 3
        assert service.get_stats().by_type["expense_due"] == 1

    @pytest.mark.asyncio
    async def test_read_and_delete(self, service):
        await service.startup()
        await service.schedule_local_notification({"title": "A", "id": "a"})
        await service.schedule_local_notification({"title": "B", "id": "b"})

        assert await service.mark_in_app_notification_as_read("a") is True
        assert service.get_unread_count() == 1
        assert await service.mark_all_in_app_notifications_as_read() == 1
        assert await service.delete_in_app_notification("b") is True
        assert [item.id for item in service.get_in_app_notifications()] == ["a"]

    @pytest.mark.asyncio
    async def test_cancel_expense_notifications(self, service):
        await service.startup()
        await service.schedule_expense_reminder(EXPENSE)

        assert service.cancel_expense_notifications("42") == 3
        assert service.cancel_all_notifications() == 0

    @pytest.mark.asyncio
    async def test_apply_remote_change(self, service):
        await service.startup()
        await service.apply_remote_change({
            "eventType": "INSERT",
            "new": {"id": "r1", "type": "general", "title": "Remote", "user_id": "u"},
        })
        assert service.get_in_app_notifications()[0].id == "r1"

    @pytest.mark.asyncio
    async def test_apply_remote_change_is_not_mirrored_back(self, service, remote_store):
        await service.startup()
        await service.apply_remote_change({
            "eventType": "INSERT",
            "new": {"id": "r1", "type": "general", "title": "Remote", "user_id": "u"},
        })
        await service.dispatcher.drain()

        assert remote_store.inserted == []
        assert remote_store.updates == []


class TestRemoteMirroring:
    """Read state and deletes follow the in-app list to the remote table."""

    @pytest.mark.asyncio
    async def test_mark_read_is_mirrored_for_owner(self, service, remote_store):
        await service.startup()
        await service.schedule_local_notification({"title": "A", "id": "a", "userId": "u1"})

        await service.mark_in_app_notification_as_read("a")
        await service.dispatcher.drain()

        assert remote_store.updates == [("notifications", {"id": "a", "user_id": "u1"}, {"is_read": True})]

    @pytest.mark.asyncio
    async def test_mark_all_read_is_mirrored_per_owner(self, service, remote_store):
        await service.startup()
        await service.schedule_local_notification({"title": "A", "id": "a", "userId": "u1"})
        await service.schedule_local_notification({"title": "B", "id": "b", "userId": "u2"})

        await service.mark_all_in_app_notifications_as_read()
        await service.dispatcher.drain()

        assert [match["user_id"] for _, match, _ in remote_store.updates] == ["u1", "u2"]

    @pytest.mark.asyncio
    async def test_delete_is_mirrored(self, service, remote_store):
        await service.startup()
        await service.schedule_local_notification({"title": "A", "id": "a", "userId": "u1"})

        await service.delete_in_app_notification("a")
        await service.dispatcher.drain()

        assert remote_store.deletes == [("notifications", {"id": "a", "user_id": "u1"})]

    @pytest.mark.asyncio
    async def test_unknown_ids_are_not_mirrored(self, service, remote_store):
        await service.startup()

        assert await service.delete_in_app_notification("missing") is False
        await service.dispatcher.drain()

        assert remote_store.deletes == []

    @pytest.mark.asyncio
    async def test_refresh_from_remote(self, service, remote_store):
        remote_store.rows = [
            {"id": "r2", "type": "general", "title": "Two", "user_id": "u1"},
            {"id": "r1", "type": "general", "title": "One", "user_id": "u1"},
        ]
        await service.startup()

        assert await service.refresh_from_remote("u1") == 2
        assert await service.refresh_from_remote("u1") == 0
        assert [item.id for item in service.get_in_app_notifications()] == ["r2", "r1"]
        assert remote_store.selects[0][1] == {"user_id": "u1"}

    @pytest.mark.asyncio
    async def test_refresh_survives_remote_failure(self, service, remote_store):
        remote_store.fail_all = RemoteSyncError("offline")
        await service.startup()

        assert await service.refresh_from_remote("u1") == 0
        assert service.get_in_app_notifications() == []


class TestCreateNotificationService:
    """Tests for wiring from configuration."""

    @pytest.mark.asyncio
    async def test_builds_with_injected_collaborators(self):
        settings = Settings(ledger_capacity=2, platform="none", remote_sync_enabled=False)
        remote_store = RecordingRemoteStore()
        service = create_notification_service(
            settings,
            clock=ManualClock(datetime(2024, 6, 1, tzinfo=timezone.utc)),
            storage=InMemoryKeyValueStore(),
            remote_store=remote_store,
        )
        await service.startup()

        assert isinstance(service.dispatcher.sender, NullSender)
        assert service.permission is PermissionState.DENIED

        for n in range(3):
            await service.schedule_local_notification({"title": f"N{n}", "userId": "u"})
        await service.dispatcher.drain()

        assert [item.title for item in service.get_in_app_notifications()] == ["N2", "N1"]
        assert remote_store.inserted == []

    @pytest.mark.asyncio
    async def test_connections_get_mark_read_handler(self):
        connections = ConnectionManager()
        service = create_notification_service(
            Settings(platform="web"),
            clock=ManualClock(),
            storage=InMemoryKeyValueStore(),
            remote_store=RecordingRemoteStore(),
            connections=connections,
        )

        assert service.dispatcher.sender.channel == "web"
        assert connections._mark_read_handler == service.mark_in_app_notification_as_read

    @pytest.mark.asyncio
    async def test_startup_with_unreadable_store_file(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{not json", encoding="utf-8")
        service = create_notification_service(
            Settings(platform="none"),
            clock=ManualClock(),
            storage=FileKeyValueStore(str(path)),
            remote_store=RecordingRemoteStore(),
        )

        await service.startup()

        assert service.started is True
        assert service.get_in_app_notifications() == []
        assert service.get_settings().enabled is True

    def test_explicit_sender_wins(self):
        sender = RecordingSender()
        service = create_notification_service(
            Settings(),
            clock=ManualClock(),
            storage=InMemoryKeyValueStore(),
            remote_store=RecordingRemoteStore(),
            sender=sender,
        )
        assert service.dispatcher.sender is sender
