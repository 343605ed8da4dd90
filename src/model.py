"""
model.py

Domain models for the Student Project Tracker.

Entities
--------
- Project            (aggregate root)
- Task
- UpdateLogEntry
- Attachment
- NotificationConfig

Value objects
-------------
- StatusDetails
- FieldChange / ItemChange / ChangeSet   (output of the change diff)
- ActionLink

All models use Python dataclasses for clean, framework-agnostic definitions.
Identifiers are opaque strings.  Timestamps are always stored in UTC.
Child entities (tasks, log entries, attachments) live inside exactly one
Project and have no existence outside it.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


def new_id(prefix: str) -> str:
    """Return a fresh opaque identifier such as ``task-3f2a...``."""
    return f"{prefix}-{uuid.uuid4().hex}"


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Technology(str, Enum):
    """Closed set of technologies a student project can be built with."""
    C = "C"
    JAVA = "Java"
    JAVAFX = "JavaFX"
    PYTHON = "Python"
    ANDROID = "Android"
    WEB_APP = "WebApp"


class ProjectStatus(str, Enum):
    """
    Lifecycle status of a project.

    The members are ordered NOT_STARTED → IN_PROGRESS → COMPLETED → DELIVERED,
    but transitions are not restricted: any value may be set from any other.
    """
    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    DELIVERED = "Delivered"


class NotificationEvent(str, Enum):
    """
    Lifecycle events that may produce a bot notification.

    Values double as keys of the persisted per-event toggle map.
    """
    CREATE = "onAdd"
    STATUS_CHANGE = "onStatusUpdate"
    DETAIL_UPDATE = "onDetailsUpdate"
    DELETE = "onDelete"


class Language(str, Enum):
    """Languages available for rendered messages."""
    ARABIC = "ar"
    ENGLISH = "en"
    PERSIAN = "fa"


class ChangeKind(str, Enum):
    """Classification of a single collection-level change."""
    ADDED = "added"
    DELETED = "deleted"
    MODIFIED = "modified"
    TOGGLED = "toggled"


# ---------------------------------------------------------------------------
# Status display metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StatusDetails:
    """Display metadata for one status value."""
    emoji: str
    color: str


# Must cover every ProjectStatus member.
STATUS_DETAILS: Dict[ProjectStatus, StatusDetails] = {
    ProjectStatus.NOT_STARTED: StatusDetails(emoji="⏸️", color="gray"),
    ProjectStatus.IN_PROGRESS: StatusDetails(emoji="⏳", color="blue"),
    ProjectStatus.COMPLETED: StatusDetails(emoji="✅", color="green"),
    ProjectStatus.DELIVERED: StatusDetails(emoji="🎉", color="purple"),
}


# ---------------------------------------------------------------------------
# Project aggregate
# ---------------------------------------------------------------------------


@dataclass
class Task:
    """
    A unit of work inside a project.

    Tasks are edited in place (text, completion, deletion); the id is stable
    across edits so that before/after versions can be correlated.
    """
    id: str = field(default_factory=lambda: new_id("task"))
    text: str = ""
    is_completed: bool = False


@dataclass
class UpdateLogEntry:
    """A progress note.  Entries are appended, never edited."""
    id: str = field(default_factory=lambda: new_id("log"))
    text: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Attachment:
    """
    A file stored inline as a self-contained ``data:`` URL.

    Attachments are immutable once created: they are only added or removed.
    """
    id: str = field(default_factory=lambda: new_id("att"))
    name: str = ""
    mime_type: str = ""
    size: int = 0
    data_url: str = ""


@dataclass
class Project:
    """
    A student's software project.

    ``tasks``, ``update_log`` and ``attachments`` are always lists (possibly
    empty).  ``start_date`` is expected to precede ``deadline`` but this is
    not enforced.
    """
    id: str = field(default_factory=lambda: new_id("proj"))
    name: str = ""
    student_name: str = ""
    technology: Technology = Technology.C
    start_date: Optional[date] = None
    deadline: Optional[date] = None
    status: ProjectStatus = ProjectStatus.NOT_STARTED
    description: str = ""

    tasks: List[Task] = field(default_factory=list)
    update_log: List[UpdateLogEntry] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)

    # Optional contact fields
    github_link: str = ""
    whatsapp_number: str = ""
    telegram_username: str = ""

    def find_task(self, task_id: str) -> Optional[Task]:
        return next((t for t in self.tasks if t.id == task_id), None)

    def find_attachment(self, attachment_id: str) -> Optional[Attachment]:
        return next((a for a in self.attachments if a.id == attachment_id), None)


# ---------------------------------------------------------------------------
# Notification settings
# ---------------------------------------------------------------------------


def _all_events_enabled() -> Dict[NotificationEvent, bool]:
    return {event: True for event in NotificationEvent}


@dataclass
class NotificationConfig:
    """
    Bot credentials and per-event toggles.

    Any event missing from ``notifications`` counts as enabled.
    """
    token: str = ""
    chat_id: str = ""
    notifications: Dict[NotificationEvent, bool] = field(default_factory=_all_events_enabled)
    language: Language = Language.ARABIC

    @property
    def is_complete(self) -> bool:
        return bool(self.token and self.chat_id)

    def is_enabled(self, event: NotificationEvent) -> bool:
        return self.notifications.get(event, True)


# ---------------------------------------------------------------------------
# Change diff output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldChange:
    """
    A scalar field whose stringified value changed.

    For ``description`` the before/after texts are left empty: only the fact
    that it changed is reported.
    """
    field_name: str
    before: str = ""
    after: str = ""


@dataclass(frozen=True)
class ItemChange:
    """
    A change to one task, attachment or log entry.

    ``text`` is the post-change text, except for deletions where it is the
    pre-change text.  ``is_completed`` is set for toggled tasks only.
    """
    kind: ChangeKind
    item_id: str
    text: str
    is_completed: Optional[bool] = None


@dataclass(frozen=True)
class ActionLink:
    """A link-style shortcut sent alongside a message (inline keyboard button)."""
    text: str
    url: str


@dataclass
class ChangeSet:
    """Categorised differences between two snapshots of one project."""
    details: List[FieldChange] = field(default_factory=list)
    tasks: List[ItemChange] = field(default_factory=list)
    attachments: List[ItemChange] = field(default_factory=list)
    logs: List[ItemChange] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.details or self.tasks or self.attachments or self.logs)

    def summary(self) -> List[str]:
        """Plain, unescaped English lines describing every change."""
        lines: List[str] = []
        for change in self.details:
            if change.field_name == "description":
                lines.append("description changed")
            else:
                lines.append(f"{change.field_name}: '{change.before}' -> '{change.after}'")
        for change in self.tasks:
            if change.kind == ChangeKind.TOGGLED:
                state = "completed" if change.is_completed else "reopened"
                lines.append(f"task {state}: {change.text}")
            else:
                lines.append(f"task {change.kind.value}: {change.text}")
        for change in self.attachments:
            lines.append(f"attachment {change.kind.value}: {change.text}")
        for change in self.logs:
            lines.append(f"progress note added: {change.text}")
        return lines
