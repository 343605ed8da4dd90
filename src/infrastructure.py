"""
infrastructure.py

Storage backends, repository implementations, the Unit of Work and the bot
API channel.

Two key-value backends are provided:

- InMemoryKeyValueStorage   plain dict; for tests and demos
- JsonFileKeyValueStorage   one ``<key>.json`` file per key in a directory

The ProjectStore is built once per process.  It loads (and normalises) the
persisted list lazily, owns it afterwards, and serialises units of work with
a re-entrant lock.  Every commit writes the whole list back.

To swap in another backend, implement AbstractKeyValueStorage from
application.py and hand it to ``main.configure``:

    configure(app, storage=MyStorage(), channel=TelegramBotChannel())

Nothing in service.py, application.py or api.py needs to change.
"""

from __future__ import annotations

import copy
import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

import settings
from application import (
    AbstractKeyValueStorage,
    AbstractNotificationChannel,
    AbstractNotificationConfigRepository,
    AbstractProjectRepository,
    AbstractUnitOfWork,
    NotificationDeliveryError,
    StorageError,
)
from model import ActionLink, Language, NotificationConfig, NotificationEvent, Project
from observability import get_logger
from service import MigrationService, RecordSerializer

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Key-value storage backends
# ---------------------------------------------------------------------------

class InMemoryKeyValueStorage(AbstractKeyValueStorage):
    """A plain dict.  Persists for the lifetime of the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key):         return self._data.get(key)
    def set(self, key, value):  self._data[key] = value
    def remove(self, key):      self._data.pop(key, None)


class JsonFileKeyValueStorage(AbstractKeyValueStorage):
    """
    One UTF-8 file per key.  Writes go to a temporary file first and are
    moved into place, so a crash never leaves a half-written value.
    """

    def __init__(self, directory: str = settings.DATA_DIR):
        self._directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self._directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise StorageError(f"Could not read {path}: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(value, encoding="utf-8")
            os.replace(tmp_path, path)
        except (OSError, UnicodeEncodeError) as exc:
            raise StorageError(f"Could not write {path}: {exc}") from exc

    def remove(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not remove {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Project store (process-wide owner of the project list)
# ---------------------------------------------------------------------------

class ProjectStore:
    """
    Owns the canonical, newest-first project list.

    A store that cannot be read or parsed starts empty; the failure is
    logged and the next successful commit overwrites it.
    """

    def __init__(
        self,
        storage: AbstractKeyValueStorage,
        key: str = settings.PROJECTS_STORAGE_KEY,
    ):
        self.storage = storage
        self.key = key
        self.lock = threading.RLock()
        self._projects: Optional[List[Project]] = None
        self._migration = MigrationService()
        self._serializer = RecordSerializer()

    @property
    def projects(self) -> List[Project]:
        if self._projects is None:
            self._projects = self._load()
        return self._projects

    def _load(self) -> List[Project]:
        try:
            raw = self.storage.get(self.key)
        except StorageError as exc:
            logger.error("Could not read stored projects: %s", exc)
            return []
        if raw is None:
            return []
        try:
            records = json.loads(raw)
        except ValueError as exc:
            logger.error("Stored projects are not valid JSON, starting empty: %s", exc)
            return []
        projects = self._migration.normalize_all(records)
        logger.info("Loaded %d projects", len(projects))
        return projects

    def replace(self, projects: List[Project]) -> None:
        self._projects = projects

    def snapshot(self) -> List[Project]:
        return copy.deepcopy(self.projects)

    def persist(self) -> None:
        """Write the whole list; raises StorageError."""
        payload = json.dumps(self._serializer.to_records(self.projects), ensure_ascii=False)
        self.storage.set(self.key, payload)


# ---------------------------------------------------------------------------
# Repository implementations
# ---------------------------------------------------------------------------

class KeyValueProjectRepository(AbstractProjectRepository):
    """Works directly on the store's list; ``dirty`` tells the UoW to persist."""

    def __init__(self, store: ProjectStore):
        self._store = store
        self.dirty = False

    def get(self, project_id):
        return next((p for p in self._store.projects if p.id == project_id), None)

    def list_all(self):
        return list(self._store.projects)

    def add(self, project):
        self._store.projects.insert(0, project)
        self.dirty = True

    def save(self, project):
        projects = self._store.projects
        for index, existing in enumerate(projects):
            if existing.id == project.id:
                projects[index] = project
                break
        else:
            projects.insert(0, project)
        self.dirty = True

    def delete(self, project_id):
        self._store.replace([p for p in self._store.projects if p.id != project_id])
        self.dirty = True

    def replace_all(self, projects):
        self._store.replace(list(projects))
        self.dirty = True


class KeyValueNotificationConfigRepository(AbstractNotificationConfigRepository):
    """
    Process-wide holder of the bot settings.

    ``save`` only updates the cached value; the UoW calls ``flush`` on
    commit and ``discard`` on rollback.  A stored value that cannot be
    parsed is removed and reads as "not configured".
    """

    def __init__(
        self,
        storage: AbstractKeyValueStorage,
        key: str = settings.NOTIFICATION_CONFIG_STORAGE_KEY,
    ):
        self._storage = storage
        self._key = key
        self._lock = threading.Lock()
        self._cached: Optional[NotificationConfig] = None
        self._loaded = False
        self._pending = False

    def get(self) -> Optional[NotificationConfig]:
        with self._lock:
            if not self._loaded:
                self._cached = self._load()
                self._loaded = True
            return copy.deepcopy(self._cached)

    def save(self, config: NotificationConfig) -> None:
        with self._lock:
            self._cached = copy.deepcopy(config)
            self._loaded = True
            self._pending = True

    def flush(self) -> None:
        """Persist a pending save; raises StorageError."""
        with self._lock:
            if not self._pending or self._cached is None:
                return
            self._storage.set(self._key, json.dumps(self._to_record(self._cached)))
            self._pending = False

    def discard(self) -> None:
        with self._lock:
            if self._pending:
                self._pending = False
                self._loaded = False
                self._cached = None

    # --- wire format --------------------------------------------------------

    def _load(self) -> Optional[NotificationConfig]:
        try:
            raw = self._storage.get(self._key)
        except StorageError as exc:
            logger.error("Could not read notification settings: %s", exc)
            return None
        if raw is None:
            return None
        try:
            return self._from_record(json.loads(raw))
        except (ValueError, TypeError, AttributeError) as exc:
            logger.warning("Discarding unreadable notification settings: %s", exc)
            try:
                self._storage.remove(self._key)
            except StorageError as remove_exc:
                logger.error("Could not remove notification settings: %s", remove_exc)
            return None

    @staticmethod
    def _from_record(record: Dict[str, Any]) -> NotificationConfig:
        toggles = record.get("notifications")
        if not isinstance(toggles, dict):
            toggles = {}
        notifications = {}
        for event in NotificationEvent:
            value = toggles.get(event.value)
            # Only an explicit boolean switches a toggle; anything else keeps it on.
            notifications[event] = value if isinstance(value, bool) else True

        raw_language = record.get("language") or Language.ARABIC.value
        try:
            language = Language(raw_language)
        except ValueError:
            logger.warning("Unknown notification language %r, using Arabic", raw_language)
            language = Language.ARABIC

        return NotificationConfig(
            token=str(record.get("token") or ""),
            chat_id=str(record.get("chatId") or ""),
            notifications=notifications,
            language=language,
        )

    @staticmethod
    def _to_record(config: NotificationConfig) -> Dict[str, Any]:
        return {
            "token": config.token,
            "chatId": config.chat_id,
            "notifications": {
                event.value: config.is_enabled(event) for event in NotificationEvent
            },
            "language": config.language.value,
        }


# ---------------------------------------------------------------------------
# Unit of Work
# ---------------------------------------------------------------------------

class KeyValueUnitOfWork(AbstractUnitOfWork):
    """
    Holds the store lock from ``__enter__`` to ``__exit__``.

    ``commit`` persists whatever changed.  A StorageError is logged and
    reported through ``notice``; the in-memory change stays in place.
    ``rollback`` restores the list captured on entry (or at the last commit).
    """

    def __init__(
        self,
        store: ProjectStore,
        config_repository: KeyValueNotificationConfigRepository,
    ):
        self._store = store
        self._config_repository = config_repository
        self._snapshot: Optional[List[Project]] = None
        self.notice: Optional[str] = None

    def __enter__(self) -> "KeyValueUnitOfWork":
        self._store.lock.acquire()
        self.notice = None
        self._snapshot = self._store.snapshot()
        self.projects = KeyValueProjectRepository(self._store)
        self.notification_settings = self._config_repository
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            super().__exit__(exc_type, exc_val, exc_tb)
        finally:
            self._snapshot = None
            self._store.lock.release()

    def commit(self) -> None:
        try:
            if self.projects.dirty:
                self._store.persist()
                self.projects.dirty = False
            self._config_repository.flush()
        except StorageError as exc:
            logger.error("Persisting changes failed: %s", exc)
            self.notice = "Changes are applied but could not be saved to storage."
        self._snapshot = self._store.snapshot()

    def rollback(self) -> None:
        if self._snapshot is not None:
            self._store.replace(self._snapshot)
        self._config_repository.discard()


# ---------------------------------------------------------------------------
# Bot API channel
# ---------------------------------------------------------------------------

class TelegramBotChannel(AbstractNotificationChannel):
    """Sends MarkdownV2 messages through the Telegram Bot API ``sendMessage``."""

    def __init__(
        self,
        api_base: str = settings.TELEGRAM_API_BASE,
        timeout: float = settings.TELEGRAM_TIMEOUT_SECONDS,
    ):
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout

    def send(
        self,
        token: str,
        chat_id: str,
        text: str,
        actions: Optional[List[ActionLink]] = None,
    ) -> None:
        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "MarkdownV2",
        }
        if actions:
            payload["reply_markup"] = {
                "inline_keyboard": [[{"text": a.text, "url": a.url} for a in actions]]
            }

        try:
            response = requests.post(
                f"{self._api_base}/bot{token}/sendMessage",
                json=payload,
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise NotificationDeliveryError(f"Bot API unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if not response.ok or not body.get("ok", False):
            description = body.get("description") or response.reason or "unknown error"
            raise NotificationDeliveryError(
                f"Bot API rejected the message ({response.status_code}): {description}"
            )
