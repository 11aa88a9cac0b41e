"""Pytest configuration and fixtures for the notification engine tests."""

import os
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Set test environment BEFORE any other imports
os.environ.setdefault("NOTIFY_ENVIRONMENT", "test")
os.environ.setdefault("NOTIFY_STORAGE_BACKEND", "memory")
os.environ.setdefault("NOTIFY_PLATFORM", "none")

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from notifications.clock import ManualClock  # noqa: E402
from notifications.dispatcher import DeliveryDispatcher  # noqa: E402
from notifications.ledger import InAppNotificationLedger  # noqa: E402
from notifications.remote_sync import RemoteSyncAdapter  # noqa: E402
from notifications.scheduler import ReminderScheduler  # noqa: E402
from notifications.service import NotificationService  # noqa: E402
from notifications.settings_store import SettingsStore  # noqa: E402
from notifications.storage import InMemoryKeyValueStore  # noqa: E402

from helpers.fakes import RecordingRemoteStore, RecordingSender  # noqa: E402


START = datetime(2024, 6, 1, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return ManualClock(START)


@pytest.fixture
def storage():
    return InMemoryKeyValueStore()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def remote_store():
    return RecordingRemoteStore()


@pytest.fixture
def settings_store(storage):
    return SettingsStore(storage)


@pytest.fixture
def ledger(storage):
    return InAppNotificationLedger(storage, capacity=50)


@pytest.fixture
def remote_sync(remote_store):
    return RemoteSyncAdapter(remote_store)


@pytest.fixture
def dispatcher(settings_store, ledger, sender, remote_sync, clock):
    return DeliveryDispatcher(
        settings_store=settings_store,
        ledger=ledger,
        sender=sender,
        remote_sync=remote_sync,
        clock=clock,
    )


@pytest.fixture
def scheduler(settings_store, dispatcher, remote_sync, clock):
    return ReminderScheduler(settings_store, dispatcher, remote_sync, clock)


@pytest.fixture
def service(settings_store, ledger, dispatcher, scheduler, storage, remote_store, remote_sync, clock):
    """Fully wired service; call ``await service.startup()`` in the test."""
    return NotificationService(
        settings_store=settings_store,
        ledger=ledger,
        dispatcher=dispatcher,
        scheduler=scheduler,
        storage=storage,
        remote_store=remote_store,
        clock=clock,
        remote_sync=remote_sync,
    )


@pytest.fixture(autouse=True)
def _reset_service_registry():
    """Reset the service registry between tests for isolation."""
    yield
    from core.service_registry import services
    services.reset_all()
