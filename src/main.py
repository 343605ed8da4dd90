"""
main.py

Entry point for the Student Project Tracker API.

Wires the storage backend, the project store and the bot channel into the
FastAPI app and starts uvicorn.

Usage
-----
    # Option 1: run directly
    python main.py

    # Option 2: run via uvicorn CLI (recommended for development)
    uvicorn main:app --reload --port 8000

Once running, open your browser at:
    http://localhost:8000/docs      ← Swagger UI  (try every endpoint interactively)
    http://localhost:8000/redoc     ← ReDoc
    http://localhost:8000/health    ← liveness check

Quick-start walkthrough (use Swagger UI or curl)
-------------------------------------------------
1.  PUT   /api/v1/notification-settings       — bot token, chat id, toggles
2.  POST  /api/v1/notification-settings/test  — check the bot receives messages
3.  POST  /api/v1/projects                    — create a project
4.  POST  /api/v1/projects/{id}/tasks         — add tasks
5.  POST  /api/v1/projects/{id}/updates       — record progress
6.  PATCH /api/v1/projects/{id}/status        — move it along
7.  GET   /api/v1/dashboard                   — totals per status
8.  GET   /api/v1/backup                      — download a backup

Configuration
-------------
All settings come from environment variables (or a ``.env`` file); see
settings.py.  Projects are stored under TRACKER_DATA_DIR.
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI

import settings
from api import app, get_channel, get_dispatcher, get_uow
from application import (
    AbstractKeyValueStorage,
    AbstractNotificationChannel,
    NotificationDispatcher,
)
from infrastructure import (
    JsonFileKeyValueStorage,
    KeyValueNotificationConfigRepository,
    KeyValueUnitOfWork,
    ProjectStore,
    TelegramBotChannel,
)
from observability import get_logger

logger = get_logger(__name__)


def configure(
    target: FastAPI,
    storage: Optional[AbstractKeyValueStorage] = None,
    channel: Optional[AbstractNotificationChannel] = None,
) -> ProjectStore:
    """
    Wire one process-wide store, settings repository and channel into the
    app's dependencies.  Returns the store so callers can inspect it.
    """
    storage = storage or JsonFileKeyValueStorage(settings.DATA_DIR)
    channel = channel or TelegramBotChannel()
    store = ProjectStore(storage)
    config_repository = KeyValueNotificationConfigRepository(storage)
    dispatcher = NotificationDispatcher(config_repository, channel)

    target.dependency_overrides[get_uow] = lambda: KeyValueUnitOfWork(store, config_repository)
    target.dependency_overrides[get_dispatcher] = lambda: dispatcher
    target.dependency_overrides[get_channel] = lambda: channel
    return store


# ---------------------------------------------------------------------------
# Wire the JSON-file storage and the Telegram channel into the app.
# To use another backend, call configure() with your own storage.
# ---------------------------------------------------------------------------

configure(app)
logger.info("Storing projects under %s", settings.DATA_DIR)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,          # auto-reload on file changes during development
        log_level="info",
    )
