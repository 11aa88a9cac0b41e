"""Tests for platform notification senders."""

import sys
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from notifications.models import PermissionState, PushNotificationPayload, default_actions
from notifications.senders import NativeSender, NullSender, WebSender, resolve_sender
from realtime.connection_manager import ConnectionManager
from realtime.events import EventType


def _payload(**overrides):
    values = {
        "title": "Vencimento Hoje",
        "body": "Internet vence hoje",
        "tag": "expense-5-sameday",
        "data": {"priority": "urgent"},
        "actions": default_actions("/badge.png"),
        "require_interaction": True,
    }
    values.update(overrides)
    return PushNotificationPayload(**values)


class TestNullSender:
    """Tests for the no-op sender."""

    @pytest.mark.asyncio
    async def test_never_displays(self):
        sender = NullSender()
        assert sender.is_available is False
        assert await sender.request_permission() is PermissionState.DENIED
        assert await sender.show(_payload(), "u") is None


class TestNativeSender:
    """Tests for desktop notifications through plyer."""

    @pytest.mark.asyncio
    async def test_show_calls_plyer(self):
        notifier = MagicMock()
        with patch.dict(sys.modules, {"plyer": SimpleNamespace(notification=notifier)}):
            sender = NativeSender(app_name="FinanceFlow", timeout=7)
            assert await sender.request_permission() is PermissionState.GRANTED

            handle = await sender.show(_payload(body="x" * 500), "user-1")

        assert handle.tag == "expense-5-sameday"
        assert handle.channel == "native"
        kwargs = notifier.notify.call_args.kwargs
        assert kwargs["title"] == "Vencimento Hoje"
        assert len(kwargs["message"]) == 300
        assert kwargs["app_name"] == "FinanceFlow"
        assert kwargs["timeout"] == 7

    @pytest.mark.asyncio
    async def test_unavailable_without_plyer(self):
        with patch.dict(sys.modules, {"plyer": None}):
            sender = NativeSender()
            assert sender.is_available is False
            assert await sender.request_permission() is PermissionState.DENIED


class TestWebSender:
    """Tests for browser notifications over WebSocket."""

    @pytest.mark.asyncio
    async def test_show_sends_notification_event(self):
        connections = MagicMock(spec=ConnectionManager)
        connections.send_event = AsyncMock(return_value=1)
        sender = WebSender(connections)

        handle = await sender.show(_payload(), "user-1")

        event = connections.send_event.await_args.args[0]
        assert event.event_type is EventType.NOTIFICATION
        assert event.user_id == "user-1"
        assert event.data["tag"] == "expense-5-sameday"
        assert event.data["requireInteraction"] is True
        assert event.data["actions"][0] == {"action": "open", "title": "Abrir", "icon": "/badge.png"}
        assert handle.channel == "web"

    @pytest.mark.asyncio
    async def test_show_without_clients_displays_nothing(self):
        connections = MagicMock(spec=ConnectionManager)
        connections.send_event = AsyncMock(return_value=0)

        assert await WebSender(connections).show(_payload(), "user-1") is None

    @pytest.mark.asyncio
    async def test_clicks_are_forwarded(self):
        connections = ConnectionManager()
        sender = WebSender(connections)
        callback = AsyncMock()
        sender.on_click(callback)

        await connections._click_handler("expense-5-sameday", "open")

        callback.assert_awaited_once_with("expense-5-sameday", "open")

    def test_permission_comes_from_browsers(self):
        connections = MagicMock(spec=ConnectionManager)
        connections.permission_state.return_value = "granted"
        assert WebSender(connections).permission is PermissionState.GRANTED

    def test_permission_for_recipient(self):
        connections = MagicMock(spec=ConnectionManager)
        connections.permission_state.return_value = "granted"
        connections.permission_for.return_value = "denied"

        sender = WebSender(connections)

        assert sender.permission_for("u2") is PermissionState.DENIED
        connections.permission_for.assert_called_once_with("u2")


class TestResolveSender:
    """Tests for sender selection."""

    def test_none(self):
        assert isinstance(resolve_sender("none", ConnectionManager()), NullSender)

    def test_auto_prefers_web_when_connections_exist(self):
        assert isinstance(resolve_sender("auto", ConnectionManager()), WebSender)

    def test_native(self):
        with patch.dict(sys.modules, {"plyer": SimpleNamespace(notification=MagicMock())}):
            assert isinstance(resolve_sender("native"), NativeSender)

    def test_native_falls_back_to_null(self):
        with patch.dict(sys.modules, {"plyer": None}):
            assert isinstance(resolve_sender("auto"), NullSender)
