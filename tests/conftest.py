"""
Shared fixtures: in-memory storage, a recording bot channel and a TestClient
wired to both.
"""

from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient

from application import (
    AbstractNotificationChannel,
    ImmediateNotificationScheduler,
    NotificationDeliveryError,
    NotificationDispatcher,
)
from infrastructure import (
    InMemoryKeyValueStorage,
    KeyValueNotificationConfigRepository,
    KeyValueUnitOfWork,
    ProjectStore,
)
from model import NotificationConfig, Project, ProjectStatus, Technology

FIXED_NOW = datetime(2024, 8, 15, 10, 30, tzinfo=timezone.utc)


class RecordingChannel(AbstractNotificationChannel):
    """Keeps every message instead of calling the bot API."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send(self, token, chat_id, text, actions=None):
        if self.fail:
            raise NotificationDeliveryError("bot API unreachable")
        self.sent.append(
            {"token": token, "chat_id": chat_id, "text": text, "actions": list(actions or [])}
        )


@pytest.fixture
def storage():
    return InMemoryKeyValueStorage()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def store(storage):
    return ProjectStore(storage)


@pytest.fixture
def config_repository(storage):
    return KeyValueNotificationConfigRepository(storage)


@pytest.fixture
def uow(store, config_repository):
    return KeyValueUnitOfWork(store, config_repository)


@pytest.fixture
def bot_configured(config_repository):
    config_repository.save(NotificationConfig(token="123:abc", chat_id="-100"))
    config_repository.flush()
    return config_repository


@pytest.fixture
def dispatcher(config_repository, channel):
    return NotificationDispatcher(config_repository, channel)


@pytest.fixture
def notifier(dispatcher):
    return ImmediateNotificationScheduler(dispatcher)


@pytest.fixture
def make_project():
    def _make(**overrides):
        values = dict(
            id="proj-1",
            name="Library System",
            student_name="Sara Ahmed",
            technology=Technology.JAVA,
            start_date=date(2024, 7, 1),
            deadline=date(2024, 9, 1),
            status=ProjectStatus.NOT_STARTED,
            description="Manage books and members",
        )
        values.update(overrides)
        return Project(**values)

    return _make


@pytest.fixture
def client(storage, channel):
    from api import app
    from main import configure

    configure(app, storage=storage, channel=channel)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
