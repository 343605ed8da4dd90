"""
service.py

Service layer for the Student Project Tracker.

Responsibilities
----------------
Each service class encapsulates the business logic for one concern.
Services receive and return domain model instances (from model.py).
No persistence is handled here: callers load and store projects through the
unit of work of the application layer.

Services
--------
- escape                  – MarkdownV2 escaping of user-supplied text
- MigrationService        – Raw persisted record -> canonical Project
- RecordSerializer        – Canonical Project -> persisted record
- ChangeDiffService       – Categorised diff of two project snapshots
- MessageComposer         – Bot message text and action links per event
- StudentMessageService   – Plain-text message addressed to the student
- ProjectService          – Validation and in-place project mutations
- ReportingService        – Dashboard statistics, students, timeline

Design notes
------------
- UTC datetimes are used throughout; functions that depend on "now" accept
  an injectable value so callers (and tests) can pin the clock.
- Business rule violations raise a ValueError with a descriptive message.
- The diff service and the composers are pure: they never mutate their
  inputs and never touch the network.
- Every user value interpolated into a bot message passes through
  ``escape`` exactly once; literal reserved characters in templates are
  pre-escaped by hand.
"""

from __future__ import annotations

import base64
import calendar
import copy
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar, Union
from urllib.parse import quote

from model import (
    STATUS_DETAILS,
    ActionLink,
    Attachment,
    ChangeKind,
    ChangeSet,
    FieldChange,
    ItemChange,
    Language,
    NotificationEvent,
    Project,
    ProjectStatus,
    Task,
    Technology,
    UpdateLogEntry,
    new_id,
)
from observability import get_logger

logger = get_logger(__name__)

_E = TypeVar("_E", bound=Enum)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _stringify(value: Any) -> str:
    """Render a scalar field the way the diff compares it."""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return _text(value)


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = _text(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        logger.warning("Ignoring malformed date %r", text)
        return None


def _parse_timestamp(value: Any, fallback: datetime) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        text = _text(value).strip()
        if not text:
            return fallback
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.warning("Ignoring malformed timestamp %r", text)
            return fallback
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _month_before(day: date) -> date:
    """
    Step one calendar month back, letting an out-of-range day overflow into
    the following month (2024-03-31 -> "2024-02-31" -> 2024-03-02).
    """
    if day.month == 1:
        year, month = day.year - 1, 12
    else:
        year, month = day.year, day.month - 1
    return date(year, month, 1) + timedelta(days=day.day - 1)


# ---------------------------------------------------------------------------
# Escaping
# ---------------------------------------------------------------------------

_RESERVED = re.compile(r"([_*\[\]()~`>#+\-=|{}.!])")


def escape(text: Optional[str]) -> str:
    """Prefix every MarkdownV2 reserved character with one backslash."""
    if not text:
        return ""
    return _RESERVED.sub(r"\\\1", text)


# ---------------------------------------------------------------------------
# MigrationService
# ---------------------------------------------------------------------------

# Records written by older versions stored display labels instead of codes.
_LEGACY_STATUS_LABELS: Dict[str, ProjectStatus] = {
    "لم يبدأ": ProjectStatus.NOT_STARTED,
    "قيد التنفيذ": ProjectStatus.IN_PROGRESS,
    "مكتمل": ProjectStatus.COMPLETED,
    "تم التسليم": ProjectStatus.DELIVERED,
}

_LEGACY_TECHNOLOGY_LABELS: Dict[str, Technology] = {
    "تطبيق ويب": Technology.WEB_APP,
    "Web App": Technology.WEB_APP,
}


def _coerce_enum(enum_cls: Type[_E], value: Any, legacy: Mapping[str, _E]) -> _E:
    if isinstance(value, enum_cls):
        return value
    text = _text(value).strip()
    try:
        return enum_cls(text)
    except ValueError:
        pass
    if text in legacy:
        return legacy[text]
    if text in enum_cls.__members__:
        return enum_cls[text]
    default = next(iter(enum_cls))
    logger.warning(
        "Unknown %s value %r, falling back to %s",
        enum_cls.__name__, text, default.value,
    )
    return default


class MigrationService:
    """
    Turns a persisted record of any vintage into a canonical Project.

    The rules are applied in order:

    1. A non-empty legacy ``progressNotes`` with no ``updateLog`` becomes a
       single log entry stamped ``now``.  That pass stops there: the list and
       start-date defaulting below is not applied to it.
    2. ``tasks``, ``updateLog`` and ``attachments`` default to empty lists.
    3. A missing ``startDate`` defaults to one month before ``deadline``, or
       to today when there is no deadline either.

    Normalisation never raises on malformed optional data.  Bad dates become
    absent, unknown enum values fall back to the first member, malformed
    child records are dropped.  A Project passed in is returned as a deep
    copy, so ``normalize(normalize(x)) == normalize(x)``.
    """

    def normalize(
        self,
        raw: Union[Mapping[str, Any], Project],
        now: Optional[datetime] = None,
    ) -> Project:
        if isinstance(raw, Project):
            return copy.deepcopy(raw)
        now = now or _utcnow()
        if not isinstance(raw, Mapping):
            logger.warning("Record of type %s is not an object; using defaults", type(raw).__name__)
            raw = {}

        project_id = _text(raw.get("id"))
        if not project_id:
            project_id = new_id("proj")
            logger.warning("Record without id; assigned %s", project_id)

        project = Project(
            id=project_id,
            name=_text(raw.get("name")),
            student_name=_text(raw.get("studentName")),
            technology=_coerce_enum(Technology, raw.get("technology"), _LEGACY_TECHNOLOGY_LABELS),
            start_date=_parse_date(raw.get("startDate")),
            deadline=_parse_date(raw.get("deadline")),
            status=_coerce_enum(ProjectStatus, raw.get("status"), _LEGACY_STATUS_LABELS),
            description=_text(raw.get("description")),
            tasks=self._parse_tasks(raw.get("tasks")),
            attachments=self._parse_attachments(raw.get("attachments")),
            github_link=_text(raw.get("githubLink")),
            whatsapp_number=_text(raw.get("whatsappNumber")),
            telegram_username=_text(raw.get("telegramUsername")),
        )

        progress_notes = raw.get("progressNotes")
        if progress_notes and raw.get("updateLog") is None:
            project.update_log = [
                UpdateLogEntry(text=_text(progress_notes), timestamp=now)
            ]
            logger.info("Migrated legacy progress notes of project %s", project.id)
            return project

        project.update_log = self._parse_update_log(raw.get("updateLog"), now)

        if project.start_date is None:
            if project.deadline is not None:
                project.start_date = _month_before(project.deadline)
            else:
                project.start_date = now.date()
        return project

    def normalize_all(self, records: Any, now: Optional[datetime] = None) -> List[Project]:
        """Normalise a persisted list; anything but a list yields no projects."""
        if not isinstance(records, list):
            logger.warning("Persisted project list is not an array; ignoring it")
            return []
        return [self.normalize(record, now=now) for record in records]

    # --- children -----------------------------------------------------------

    def _parse_tasks(self, raw_tasks: Any) -> List[Task]:
        tasks: List[Task] = []
        for item in raw_tasks if isinstance(raw_tasks, list) else []:
            if not isinstance(item, Mapping):
                logger.warning("Skipping malformed task %r", item)
                continue
            tasks.append(
                Task(
                    id=_text(item.get("id")) or new_id("task"),
                    text=_text(item.get("text")),
                    is_completed=bool(item.get("isCompleted", False)),
                )
            )
        return tasks

    def _parse_update_log(self, raw_log: Any, now: datetime) -> List[UpdateLogEntry]:
        entries: List[UpdateLogEntry] = []
        for item in raw_log if isinstance(raw_log, list) else []:
            if not isinstance(item, Mapping):
                logger.warning("Skipping malformed log entry %r", item)
                continue
            entries.append(
                UpdateLogEntry(
                    id=_text(item.get("id")) or new_id("log"),
                    text=_text(item.get("text")),
                    timestamp=_parse_timestamp(item.get("timestamp"), now),
                )
            )
        return entries

    def _parse_attachments(self, raw_attachments: Any) -> List[Attachment]:
        attachments: List[Attachment] = []
        for item in raw_attachments if isinstance(raw_attachments, list) else []:
            if not isinstance(item, Mapping):
                logger.warning("Skipping malformed attachment %r", item)
                continue
            try:
                size = int(item.get("size") or 0)
            except (TypeError, ValueError):
                size = 0
            attachments.append(
                Attachment(
                    id=_text(item.get("id")) or new_id("att"),
                    name=_text(item.get("name")),
                    mime_type=_text(item.get("type")),
                    size=size,
                    data_url=_text(item.get("dataUrl")),
                )
            )
        return attachments


# ---------------------------------------------------------------------------
# RecordSerializer
# ---------------------------------------------------------------------------

class RecordSerializer:
    """Canonical Project -> persisted camelCase record.  Never emits progressNotes."""

    def to_record(self, project: Project) -> Dict[str, Any]:
        return {
            "id": project.id,
            "name": project.name,
            "studentName": project.student_name,
            "technology": project.technology.value,
            "startDate": project.start_date.isoformat() if project.start_date else None,
            "deadline": project.deadline.isoformat() if project.deadline else None,
            "status": project.status.value,
            "description": project.description,
            "tasks": [
                {"id": t.id, "text": t.text, "isCompleted": t.is_completed}
                for t in project.tasks
            ],
            "updateLog": [
                {"id": e.id, "text": e.text, "timestamp": e.timestamp.isoformat()}
                for e in project.update_log
            ],
            "attachments": [
                {
                    "id": a.id,
                    "name": a.name,
                    "type": a.mime_type,
                    "size": a.size,
                    "dataUrl": a.data_url,
                }
                for a in project.attachments
            ],
            "githubLink": project.github_link,
            "whatsappNumber": project.whatsapp_number,
            "telegramUsername": project.telegram_username,
        }

    def to_records(self, projects: List[Project]) -> List[Dict[str, Any]]:
        return [self.to_record(p) for p in projects]


# ---------------------------------------------------------------------------
# ChangeDiffService
# ---------------------------------------------------------------------------

# Scalar fields in the order they are reported.
TRACKED_FIELDS: Tuple[str, ...] = (
    "name",
    "student_name",
    "technology",
    "start_date",
    "deadline",
    "github_link",
    "whatsapp_number",
    "telegram_username",
    "status",
    "description",
)


class ChangeDiffService:
    """
    Compares two snapshots of the same project.

    Collection entries follow the order of ``after``; deletions come last in
    the order they had in ``before``.  A task that was both edited and
    toggled produces two entries, the edit first.
    """

    def diff(self, before: Project, after: Project) -> ChangeSet:
        return ChangeSet(
            details=self._diff_details(before, after),
            tasks=self._diff_tasks(before.tasks, after.tasks),
            attachments=self._diff_attachments(before.attachments, after.attachments),
            logs=self._diff_logs(before.update_log, after.update_log),
        )

    def _diff_details(self, before: Project, after: Project) -> List[FieldChange]:
        changes: List[FieldChange] = []
        for name in TRACKED_FIELDS:
            old = _stringify(getattr(before, name))
            new = _stringify(getattr(after, name))
            if old == new:
                continue
            if name == "description":
                changes.append(FieldChange(field_name=name))
            else:
                changes.append(FieldChange(field_name=name, before=old, after=new))
        return changes

    def _diff_tasks(self, before: List[Task], after: List[Task]) -> List[ItemChange]:
        previous = {t.id: t for t in before}
        current_ids = {t.id for t in after}
        changes: List[ItemChange] = []
        for task in after:
            old = previous.get(task.id)
            if old is None:
                changes.append(ItemChange(ChangeKind.ADDED, task.id, task.text))
                continue
            if old.text != task.text:
                changes.append(ItemChange(ChangeKind.MODIFIED, task.id, task.text))
            if old.is_completed != task.is_completed:
                changes.append(
                    ItemChange(ChangeKind.TOGGLED, task.id, task.text, is_completed=task.is_completed)
                )
        for task in before:
            if task.id not in current_ids:
                changes.append(ItemChange(ChangeKind.DELETED, task.id, task.text))
        return changes

    def _diff_attachments(
        self, before: List[Attachment], after: List[Attachment]
    ) -> List[ItemChange]:
        previous_ids = {a.id for a in before}
        current_ids = {a.id for a in after}
        changes = [
            ItemChange(ChangeKind.ADDED, a.id, a.name)
            for a in after
            if a.id not in previous_ids
        ]
        changes.extend(
            ItemChange(ChangeKind.DELETED, a.id, a.name)
            for a in before
            if a.id not in current_ids
        )
        return changes

    def _diff_logs(
        self, before: List[UpdateLogEntry], after: List[UpdateLogEntry]
    ) -> List[ItemChange]:
        previous_ids = {e.id for e in before}
        return [
            ItemChange(ChangeKind.ADDED, e.id, e.text)
            for e in after
            if e.id not in previous_ids
        ]


# ---------------------------------------------------------------------------
# MessageComposer
# ---------------------------------------------------------------------------

@dataclass
class MessageContext:
    """Extra input for StatusChange (original status) and DetailUpdate (changes)."""
    original_status: Optional[ProjectStatus] = None
    change_set: Optional[ChangeSet] = None


@dataclass(frozen=True)
class _BotTemplates:
    """
    Literal MarkdownV2 markup for one language.

    ``{placeholders}`` receive already-escaped values.  Reserved characters
    that are meant literally are escaped here by hand.
    """
    field_labels: Dict[str, str]
    status_labels: Dict[ProjectStatus, str]
    technology_labels: Dict[Technology, str]
    empty_value: str

    create_header: str
    create_project: str
    create_student: str
    create_technology: str
    create_deadline: str
    create_closing: str

    status_header: str
    status_transition: str

    delete_header: str
    delete_intro: str
    delete_project: str
    delete_student: str
    delete_closing: str

    update_header: str
    details_heading: str
    tasks_heading: str
    attachments_heading: str
    logs_heading: str
    description_changed: str
    task_added: str
    task_deleted: str
    task_modified: str
    task_completed: str
    task_reopened: str
    attachment_added: str
    attachment_deleted: str
    log_added: str
    update_closing: str

    test_message: str


_FIELD_LINE = "• *{label}:* {old} ➡️ {new}"

_ARABIC_TEMPLATES = _BotTemplates(
    field_labels={
        "name": "اسم المشروع",
        "student_name": "اسم الطالب",
        "technology": "التقنية",
        "start_date": "تاريخ البدء",
        "deadline": "الموعد النهائي",
        "github_link": "رابط GitHub",
        "whatsapp_number": "رقم واتساب",
        "telegram_username": "معرف تليجرام",
        "status": "الحالة",
        "description": "الوصف",
    },
    status_labels={
        ProjectStatus.NOT_STARTED: "لم يبدأ",
        ProjectStatus.IN_PROGRESS: "قيد التنفيذ",
        ProjectStatus.COMPLETED: "مكتمل",
        ProjectStatus.DELIVERED: "تم التسليم",
    },
    technology_labels={Technology.WEB_APP: "تطبيق ويب"},
    empty_value="_فارغ_",
    create_header="🌟 *مشروع جديد تم إنشاؤه* 🌟",
    create_project="*المشروع:* {name}",
    create_student="*الطالب:* {student}",
    create_technology="*التقنية:* {technology}",
    create_deadline="*الموعد النهائي:* {deadline}",
    create_closing="🚀 لتبدأ الرحلة\\!",
    status_header="📊 *تحديث حالة المشروع:* *{name}*",
    status_transition="تم تغيير الحالة من _{old}_ {old_emoji} إلى *{new}* {new_emoji}\\.",
    delete_header="🗑️ *تم حذف المشروع*",
    delete_intro="تمت إزالة المشروع التالي من النظام:",
    delete_project="*المشروع:* {name}",
    delete_student="*الطالب:* {student}",
    delete_closing="_سيتم افتقاده\\._",
    update_header="🔄 *تحديث مشروع:* *{name}*",
    details_heading="*التفاصيل الأساسية:*",
    tasks_heading="*تحديثات المهام:*",
    attachments_heading="*المرفقات:*",
    logs_heading="*سجل التقدم:*",
    description_changed="• *تم تحديث الوصف\\.*",
    task_added="➕ مهمة جديدة: {text}",
    task_deleted="🗑️ حذف مهمة: {text}",
    task_modified="✏️ تعديل مهمة: {text}",
    task_completed="✅ تم إنجاز مهمة: {text}",
    task_reopened="↩️ إعادة فتح مهمة: {text}",
    attachment_added="📎 مرفق جديد: {text}",
    attachment_deleted="🗑️ حذف مرفق: {text}",
    log_added="📝 {text}",
    update_closing="✨ استمر في العمل الرائع\\!",
    test_message="👋 هذه رسالة اختبار من نظام إدارة المشاريع.\nالاتصال يعمل بنجاح!",
)

_ENGLISH_TEMPLATES = _BotTemplates(
    field_labels={
        "name": "Project Name",
        "student_name": "Student Name",
        "technology": "Technology",
        "start_date": "Start Date",
        "deadline": "Deadline",
        "github_link": "GitHub Link",
        "whatsapp_number": "WhatsApp Number",
        "telegram_username": "Telegram Username",
        "status": "Status",
        "description": "Description",
    },
    status_labels={
        ProjectStatus.NOT_STARTED: "Not Started",
        ProjectStatus.IN_PROGRESS: "In Progress",
        ProjectStatus.COMPLETED: "Completed",
        ProjectStatus.DELIVERED: "Delivered",
    },
    technology_labels={Technology.WEB_APP: "Web App"},
    empty_value="_empty_",
    create_header="🌟 *New Project Created* 🌟",
    create_project="*Project:* {name}",
    create_student="*Student:* {student}",
    create_technology="*Technology:* {technology}",
    create_deadline="*Deadline:* {deadline}",
    create_closing="🚀 Let the journey begin\\!",
    status_header="📊 *Project Status Update:* *{name}*",
    status_transition="Status changed from _{old}_ {old_emoji} to *{new}* {new_emoji}\\.",
    delete_header="🗑️ *Project Deleted*",
    delete_intro="The following project was removed from the system:",
    delete_project="*Project:* {name}",
    delete_student="*Student:* {student}",
    delete_closing="_It will be missed\\._",
    update_header="🔄 *Project Updated:* *{name}*",
    details_heading="*Core Details:*",
    tasks_heading="*Task Updates:*",
    attachments_heading="*Attachments:*",
    logs_heading="*Progress Log:*",
    description_changed="• *Description updated\\.*",
    task_added="➕ New task: {text}",
    task_deleted="🗑️ Task deleted: {text}",
    task_modified="✏️ Task edited: {text}",
    task_completed="✅ Task completed: {text}",
    task_reopened="↩️ Task reopened: {text}",
    attachment_added="📎 New attachment: {text}",
    attachment_deleted="🗑️ Attachment removed: {text}",
    log_added="📝 {text}",
    update_closing="✨ Keep up the great work\\!",
    test_message="👋 This is a test message from the project tracker.\nThe connection works!",
)

_BOT_TEMPLATES: Dict[Language, _BotTemplates] = {
    Language.ARABIC: _ARABIC_TEMPLATES,
    Language.ENGLISH: _ENGLISH_TEMPLATES,
}

_GITHUB_ACTION = "View on GitHub ↗️"
_WHATSAPP_ACTION = "Chat on WhatsApp 💬"
_ACTION_EVENTS = (
    NotificationEvent.CREATE,
    NotificationEvent.STATUS_CHANGE,
    NotificationEvent.DELETE,
)


def whatsapp_url(number: str) -> Optional[str]:
    digits = re.sub(r"\D", "", number or "")
    return f"https://wa.me/{digits}" if digits else None


class MessageComposer:
    """
    Renders lifecycle events as MarkdownV2 bot messages.

    Languages without bot templates fall back to Arabic.
    """

    def __init__(self, language: Language = Language.ARABIC) -> None:
        self.language = language
        self._t = _BOT_TEMPLATES.get(language, _ARABIC_TEMPLATES)

    def compose(
        self,
        event: NotificationEvent,
        project: Project,
        context: Optional[MessageContext] = None,
    ) -> str:
        """Return the message for ``event``, or "" when there is nothing to say."""
        context = context or MessageContext()
        if event == NotificationEvent.CREATE:
            return self._compose_create(project)
        if event == NotificationEvent.STATUS_CHANGE:
            return self._compose_status_change(project, context.original_status)
        if event == NotificationEvent.DETAIL_UPDATE:
            return self._compose_detail_update(project, context.change_set)
        if event == NotificationEvent.DELETE:
            return self._compose_delete(project)
        raise ValueError(f"Unsupported notification event: {event!r}")

    def compose_test_message(self) -> str:
        return escape(self._t.test_message)

    def build_actions(self, event: NotificationEvent, project: Project) -> List[ActionLink]:
        """Link buttons for create, status-change and delete messages."""
        if event not in _ACTION_EVENTS:
            return []
        actions: List[ActionLink] = []
        if project.github_link:
            actions.append(ActionLink(text=_GITHUB_ACTION, url=project.github_link))
        url = whatsapp_url(project.whatsapp_number)
        if url:
            actions.append(ActionLink(text=_WHATSAPP_ACTION, url=url))
        return actions

    # --- labels -------------------------------------------------------------

    def status_label(self, status: ProjectStatus) -> str:
        return self._t.status_labels.get(status, status.value)

    def technology_label(self, technology: Technology) -> str:
        return self._t.technology_labels.get(technology, technology.value)

    def _value(self, raw: str) -> str:
        return escape(raw) if raw else self._t.empty_value

    def _status_value(self, raw: str) -> str:
        if not raw:
            return self._t.empty_value
        status = ProjectStatus(raw)
        return f"{escape(self.status_label(status))} {STATUS_DETAILS[status].emoji}"

    # --- events -------------------------------------------------------------

    def _compose_create(self, project: Project) -> str:
        t = self._t
        deadline = project.deadline.isoformat() if project.deadline else ""
        return "\n".join([
            t.create_header,
            "",
            t.create_project.format(name=escape(project.name)),
            t.create_student.format(student=escape(project.student_name)),
            t.create_technology.format(technology=escape(self.technology_label(project.technology))),
            t.create_deadline.format(deadline=self._value(deadline)),
            "",
            t.create_closing,
        ])

    def _compose_status_change(
        self, project: Project, original_status: Optional[ProjectStatus]
    ) -> str:
        t = self._t
        if original_status is None:
            old, old_emoji = t.empty_value, ""
        else:
            old = escape(self.status_label(original_status))
            old_emoji = STATUS_DETAILS[original_status].emoji
        return "\n".join([
            t.status_header.format(name=escape(project.name)),
            "",
            t.status_transition.format(
                old=old,
                old_emoji=old_emoji,
                new=escape(self.status_label(project.status)),
                new_emoji=STATUS_DETAILS[project.status].emoji,
            ),
        ])

    def _compose_delete(self, project: Project) -> str:
        t = self._t
        return "\n".join([
            t.delete_header,
            "",
            t.delete_intro,
            t.delete_project.format(name=escape(project.name)),
            t.delete_student.format(student=escape(project.student_name)),
            "",
            t.delete_closing,
        ])

    def _compose_detail_update(self, project: Project, change_set: Optional[ChangeSet]) -> str:
        if change_set is None or change_set.is_empty:
            return ""
        t = self._t
        sections = [
            (t.details_heading, [self._render_field(c) for c in change_set.details]),
            (t.tasks_heading, [self._render_task(c) for c in change_set.tasks]),
            (t.attachments_heading, [self._render_attachment(c) for c in change_set.attachments]),
            (t.logs_heading, [t.log_added.format(text=escape(c.text)) for c in change_set.logs]),
        ]
        blocks = [t.update_header.format(name=escape(project.name))]
        for heading, lines in sections:
            if lines:
                blocks.append("\n".join([heading] + lines))
        blocks.append(t.update_closing)
        return "\n\n".join(blocks)

    def _render_field(self, change: FieldChange) -> str:
        t = self._t
        if change.field_name == "description":
            return t.description_changed
        label = t.field_labels.get(change.field_name, change.field_name)
        if change.field_name == "status":
            old, new = self._status_value(change.before), self._status_value(change.after)
        elif change.field_name == "technology":
            old = self._value(self.technology_label(Technology(change.before)) if change.before else "")
            new = self._value(self.technology_label(Technology(change.after)) if change.after else "")
        else:
            old, new = self._value(change.before), self._value(change.after)
        return _FIELD_LINE.format(label=escape(label), old=old, new=new)

    def _render_task(self, change: ItemChange) -> str:
        t = self._t
        if change.kind == ChangeKind.ADDED:
            template = t.task_added
        elif change.kind == ChangeKind.DELETED:
            template = t.task_deleted
        elif change.kind == ChangeKind.MODIFIED:
            template = t.task_modified
        else:
            template = t.task_completed if change.is_completed else t.task_reopened
        return template.format(text=escape(change.text))

    def _render_attachment(self, change: ItemChange) -> str:
        t = self._t
        template = t.attachment_added if change.kind == ChangeKind.ADDED else t.attachment_deleted
        return template.format(text=escape(change.text))


# ---------------------------------------------------------------------------
# StudentMessageService
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class _StudentTemplates:
    greeting: str
    subjects: Dict[ProjectStatus, str]
    details_header: str
    project_line: str
    technology_line: str
    deadline_line: str
    github_label: str
    latest_update_header: str
    status_messages: Dict[ProjectStatus, str]
    closing: str
    system_intro: str
    technology_labels: Dict[Technology, str]


_STUDENT_TEMPLATES: Dict[Language, _StudentTemplates] = {
    Language.ARABIC: _StudentTemplates(
        greeting="👋 مرحباً {student}،",
        subjects={
            ProjectStatus.NOT_STARTED: "✅ تم تسجيل مشروعك بنجاح!",
            ProjectStatus.IN_PROGRESS: '🚀 تحديث بخصوص مشروعك "{project}"',
            ProjectStatus.COMPLETED: '🎉 أخبار رائعة! مشروعك "{project}" اكتمل تقريباً',
            ProjectStatus.DELIVERED: '📦 تم تسليم مشروعك "{project}" بنجاح!',
        },
        details_header="تفاصيل المشروع:",
        project_line="📌 المشروع: {project}",
        technology_line="🔧 التقنية: {technology}",
        deadline_line="🗓️ الموعد النهائي: {deadline}",
        github_label="🔗 رابط GitHub:",
        latest_update_header="💡 آخر تحديث مسجل:",
        status_messages={
            ProjectStatus.NOT_STARTED: "تم إعداد كل شيء لمشروعك. سنقوم بإعلامك فور بدء العمل عليه. استعد للانطلاق!",
            ProjectStatus.IN_PROGRESS: "العمل يجري على قدم وساق! نحن نحقق تقدمًا جيدًا. يمكنك متابعة آخر التحديثات مباشرةً عبر مستودع GitHub.",
            ProjectStatus.COMPLETED: "لقد انتهينا من مرحلة البرمجة الأساسية! المشروع الآن قيد المراجعة النهائية والاختبار لضمان خلوه من الأخطاء وتقديمه بأفضل جودة.",
            ProjectStatus.DELIVERED: "نأمل أن يكون كل شيء كما توقعت. لا تتردد في مراجعته وإعلامنا بأي ملاحظات. نتمنى لك كل التوفيق في استخدامه وعرضه.",
        },
        closing="بالتوفيق،",
        system_intro="---\n📬 هذا إشعار آلي من نظام إدارة المشاريع.",
        technology_labels={Technology.WEB_APP: "تطبيق ويب"},
    ),
    Language.PERSIAN: _StudentTemplates(
        greeting="👋 سلام {student}،",
        subjects={
            ProjectStatus.NOT_STARTED: "✅ پروژه شما با موفقیت ثبت شد!",
            ProjectStatus.IN_PROGRESS: '🚀 به‌روزرسانی در مورد پروژه شما "{project}"',
            ProjectStatus.COMPLETED: '🎉 خبر عالی! پروژه شما "{project}" تقریباً کامل شده است',
            ProjectStatus.DELIVERED: '📦 پروژه شما "{project}" با موفقیت تحویل داده شد!',
        },
        details_header="جزئیات پروژه:",
        project_line="📌 پروژه: {project}",
        technology_line="🔧 تکنولوژی: {technology}",
        deadline_line="🗓️ مهلت نهایی: {deadline}",
        github_label="🔗 لینک گیت‌هاب:",
        latest_update_header="💡 آخرین به‌روزرسانی ثبت‌شده:",
        status_messages={
            ProjectStatus.NOT_STARTED: "همه چیز برای پروژه شما آماده شده است. به محض شروع کار به شما اطلاع خواهیم داد. آماده شروع باشید!",
            ProjectStatus.IN_PROGRESS: "کار با سرعت در حال انجام است! ما پیشرفت خوبی داریم. شما می‌توانید آخرین به‌روزرسانی‌ها را مستقیماً از طریق مخزن گیت‌هاب دنبال کنید.",
            ProjectStatus.COMPLETED: "ما مرحله اصلی برنامه‌نویسی را به پایان رسانده‌ایم! پروژه اکنون در حال بررسی نهایی و آزمایش است تا از بدون خطا بودن آن و ارائه با بهترین کیفیت اطمینان حاصل شود.",
            ProjectStatus.DELIVERED: "امیدواریم همه چیز همانطور که انتظار داشتید باشد. لطفاً آن را بررسی کرده و هرگونه بازخورد را به ما اطلاع دهید. برای شما در استفاده و ارائه آن آرزوی موفقیت داریم.",
        },
        closing="با آرزوی موفقیت،",
        system_intro="---\n📬 این یک اعلان خودکار از سیستم مدیریت پروژه است.",
        technology_labels={Technology.WEB_APP: "اپلیکیشن وب"},
    ),
}

STUDENT_MESSAGE_LANGUAGES: Tuple[Language, ...] = tuple(_STUDENT_TEMPLATES)


@dataclass(frozen=True)
class StudentShareLinks:
    whatsapp_url: Optional[str]
    telegram_url: Optional[str]


class StudentMessageService:
    """
    Builds the plain-text message an administrator sends to a student.

    Unlike bot messages this text is not MarkdownV2 and is not escaped.
    """

    def __init__(self, sender_name: str = "") -> None:
        self.sender_name = sender_name

    def compose(self, project: Project, language: Language = Language.ARABIC) -> str:
        t = _STUDENT_TEMPLATES.get(language)
        if t is None:
            raise ValueError(
                f"Student messages are available in "
                f"{', '.join(lang.value for lang in STUDENT_MESSAGE_LANGUAGES)} only."
            )
        deadline = project.deadline.isoformat() if project.deadline else "-"
        details = [
            t.details_header,
            t.project_line.format(project=project.name),
            t.technology_line.format(
                technology=t.technology_labels.get(project.technology, project.technology.value)
            ),
            t.deadline_line.format(deadline=deadline),
        ]
        if project.github_link:
            details.append(f"{t.github_label} {project.github_link}")

        body = [t.status_messages[project.status]]
        latest = self.latest_update(project)
        if latest is not None:
            body.append(f'{t.latest_update_header} "{latest.text}"')

        closing = t.closing
        if self.sender_name:
            closing = f"{closing}\n{self.sender_name}"

        blocks = [
            "\n".join([
                t.greeting.format(student=project.student_name),
                t.subjects[project.status].format(project=project.name),
            ]),
            "\n".join(details),
            "\n".join(body),
            closing,
            t.system_intro,
        ]
        return "\n\n".join(blocks)

    def share_links(self, project: Project, message: str) -> StudentShareLinks:
        whatsapp = whatsapp_url(project.whatsapp_number)
        if whatsapp:
            whatsapp = f"{whatsapp}?text={quote(message, safe='')}"
        username = project.telegram_username.strip().lstrip("@")
        telegram = f"https://t.me/{username}" if username else None
        return StudentShareLinks(whatsapp_url=whatsapp, telegram_url=telegram)

    @staticmethod
    def latest_update(project: Project) -> Optional[UpdateLogEntry]:
        if not project.update_log:
            return None
        return max(project.update_log, key=lambda e: e.timestamp)


# ---------------------------------------------------------------------------
# ProjectService
# ---------------------------------------------------------------------------

_REQUIRED_TEXT_FIELDS: Tuple[str, ...] = ("name", "student_name", "description")
_EDITABLE_FIELDS: Tuple[str, ...] = (
    "name",
    "student_name",
    "technology",
    "start_date",
    "deadline",
    "status",
    "description",
    "github_link",
    "whatsapp_number",
    "telegram_username",
)


def _require_text(value: Optional[str], label: str) -> str:
    if value is None or not value.strip():
        raise ValueError(f"{label} is required.")
    return value.strip()


class ProjectService:
    """
    Validates input and mutates projects in place.

    Methods return the created or mutated object so the caller can hand it
    back to the unit of work.
    """

    def create_project(
        self,
        name: str,
        student_name: str,
        technology: Technology,
        start_date: Optional[date],
        deadline: Optional[date],
        description: str,
        status: ProjectStatus = ProjectStatus.NOT_STARTED,
        github_link: str = "",
        whatsapp_number: str = "",
        telegram_username: str = "",
    ) -> Project:
        """Create and return a new Project instance (unsaved)."""
        if start_date is None:
            raise ValueError("start_date is required.")
        if deadline is None:
            raise ValueError("deadline is required.")
        return Project(
            name=_require_text(name, "name"),
            student_name=_require_text(student_name, "student_name"),
            technology=technology,
            start_date=start_date,
            deadline=deadline,
            status=status,
            description=_require_text(description, "description"),
            github_link=(github_link or "").strip(),
            whatsapp_number=(whatsapp_number or "").strip(),
            telegram_username=(telegram_username or "").strip(),
        )

    def update_details(self, project: Project, **changes: Any) -> Project:
        """
        Apply field-level updates.  ``None`` means "leave unchanged"; the
        project is untouched when any value is invalid.
        """
        unknown = set(changes) - set(_EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}.")
        cleaned: Dict[str, Any] = {}
        for name, value in changes.items():
            if value is None:
                continue
            if name in _REQUIRED_TEXT_FIELDS:
                value = _require_text(value, name)
            elif isinstance(value, str):
                value = value.strip()
            cleaned[name] = value
        for name, value in cleaned.items():
            setattr(project, name, value)
        return project

    def replace_tasks(self, project: Project, tasks: List[Task]) -> Project:
        """Swap in a full task list; ids must be unique and texts non-blank."""
        seen = set()
        for task in tasks:
            _require_text(task.text, "task text")
            if task.id in seen:
                raise ValueError(f"Duplicate task id {task.id}.")
            seen.add(task.id)
        project.tasks = [Task(id=t.id, text=t.text.strip(), is_completed=t.is_completed) for t in tasks]
        return project

    # --- tasks --------------------------------------------------------------

    def add_task(self, project: Project, text: str) -> Task:
        task = Task(text=_require_text(text, "task text"))
        project.tasks.append(task)
        return task

    def edit_task(self, task: Task, text: Optional[str]) -> Task:
        """Blank text keeps the current text."""
        if text is not None and text.strip():
            task.text = text.strip()
        return task

    def toggle_task(self, task: Task) -> Task:
        task.is_completed = not task.is_completed
        return task

    def delete_task(self, project: Project, task: Task) -> None:
        project.tasks = [t for t in project.tasks if t.id != task.id]

    # --- progress log -------------------------------------------------------

    def add_update(
        self, project: Project, text: str, now: Optional[datetime] = None
    ) -> UpdateLogEntry:
        entry = UpdateLogEntry(
            text=_require_text(text, "update text"),
            timestamp=now or _utcnow(),
        )
        project.update_log.append(entry)
        return entry

    # --- attachments --------------------------------------------------------

    def add_attachment(
        self,
        project: Project,
        filename: str,
        mime_type: Optional[str],
        content: bytes,
        max_bytes: int,
    ) -> Attachment:
        """Encode ``content`` as a data URL; oversize files change nothing."""
        if len(content) > max_bytes:
            raise ValueError(
                f"Attachment '{filename}' is {len(content)} bytes; "
                f"the limit is {max_bytes} bytes."
            )
        mime_type = mime_type or "application/octet-stream"
        payload = base64.b64encode(content).decode("ascii")
        attachment = Attachment(
            name=_require_text(filename, "filename"),
            mime_type=mime_type,
            size=len(content),
            data_url=f"data:{mime_type};base64,{payload}",
        )
        project.attachments.append(attachment)
        return attachment

    def remove_attachment(self, project: Project, attachment: Attachment) -> None:
        project.attachments = [a for a in project.attachments if a.id != attachment.id]

    def decode_attachment(self, attachment: Attachment) -> bytes:
        header, sep, payload = attachment.data_url.partition(",")
        if not sep or not header.startswith("data:") or not header.endswith(";base64"):
            raise ValueError(f"Attachment {attachment.id} has no base64 data URL.")
        return base64.b64decode(payload)

    # --- status -------------------------------------------------------------

    def set_status(self, project: Project, status: ProjectStatus) -> bool:
        """Return False (and change nothing) when the status is unchanged."""
        if project.status == status:
            return False
        project.status = status
        return True

    # --- derived values -----------------------------------------------------

    @staticmethod
    def task_progress(project: Project) -> int:
        """Completed tasks as a whole percentage; 0 without tasks."""
        if not project.tasks:
            return 0
        done = sum(1 for t in project.tasks if t.is_completed)
        return round(done * 100 / len(project.tasks))


# ---------------------------------------------------------------------------
# ReportingService
# ---------------------------------------------------------------------------

@dataclass
class TimelineRow:
    project: Project
    offset_days: int
    duration_days: int


@dataclass
class TimelineMonth:
    year: int
    month: int
    days: int


@dataclass
class Timeline:
    window_start: Optional[date] = None
    window_end: Optional[date] = None
    total_days: int = 0
    months: List[TimelineMonth] = field(default_factory=list)
    rows: List[TimelineRow] = field(default_factory=list)


class ReportingService:
    """Read-only aggregates over the project list."""

    def count_by_status(self, projects: List[Project]) -> Dict[ProjectStatus, int]:
        counts = {status: 0 for status in ProjectStatus}
        for project in projects:
            counts[project.status] += 1
        return counts

    def task_totals(self, projects: List[Project]) -> Tuple[int, int]:
        """Return (total tasks, completed tasks)."""
        total = sum(len(p.tasks) for p in projects)
        done = sum(1 for p in projects for t in p.tasks if t.is_completed)
        return total, done

    def group_by_student(self, projects: List[Project]) -> List[Tuple[str, List[Project]]]:
        """Group by trimmed student name; names sorted, projects by deadline."""
        groups: Dict[str, List[Project]] = {}
        for project in projects:
            groups.setdefault(project.student_name.strip(), []).append(project)
        return [
            (name, sorted(groups[name], key=lambda p: p.deadline or date.max))
            for name in sorted(groups)
        ]

    def timeline(self, projects: List[Project]) -> Timeline:
        """
        Lay out projects having both dates on a shared day axis.

        The window runs from the first day of the earliest start month to the
        last day of the latest deadline month.
        """
        dated = sorted(
            (p for p in projects if p.start_date and p.deadline),
            key=lambda p: p.start_date,
        )
        if not dated:
            return Timeline()
        earliest = min(p.start_date for p in dated)
        latest = max(p.deadline for p in dated)
        window_start = earliest.replace(day=1)
        window_end = latest.replace(day=calendar.monthrange(latest.year, latest.month)[1])

        months: List[TimelineMonth] = []
        year, month = window_start.year, window_start.month
        while (year, month) <= (window_end.year, window_end.month):
            months.append(TimelineMonth(year, month, calendar.monthrange(year, month)[1]))
            year, month = (year + 1, 1) if month == 12 else (year, month + 1)

        rows = [
            TimelineRow(
                project=p,
                offset_days=(p.start_date - window_start).days,
                duration_days=max((p.deadline - p.start_date).days + 1, 1),
            )
            for p in dated
        ]
        return Timeline(
            window_start=window_start,
            window_end=window_end,
            total_days=(window_end - window_start).days + 1,
            months=months,
            rows=rows,
        )
