"""
application.py

Application layer for the Student Project Tracker.

Overview
--------
The application layer sits between the presentation layer (API) and the
domain / service layer.  It is responsible for:

  1. Defining clean output DTOs (dataclasses) that carry only the data the
     presentation layer needs; no raw domain objects are leaked upward.
  2. Declaring abstract storage, repository, channel and scheduler
     interfaces so that the application layer stays persistence- and
     transport-agnostic (implementations live in infrastructure.py / api.py).
  3. Declaring the UnitOfWork abstraction so that every mutation inside a
     use case is persisted in one commit.
  4. Running the notification pipeline (diff -> compose -> send) through the
     NotificationDispatcher.
  5. Implementing Use Case handlers, one class per user-facing operation,
     that orchestrate service calls, repository reads/writes and
     notifications in the correct order.

Structure
---------
DTOs
    ProjectDTO, ProjectSummaryDTO, ProjectUpdateResultDTO
    TaskDTO, UpdateLogEntryDTO, AttachmentDTO, AttachmentContentDTO
    BackupDTO, RestoreResultDTO
    NotificationSettingsDTO, ConnectionTestDTO
    DashboardDTO, StudentGroupDTO, TimelineDTO, StudentMessageDTO

Storage / repository interfaces
    AbstractKeyValueStorage
    AbstractProjectRepository
    AbstractNotificationConfigRepository

Unit of Work
    AbstractUnitOfWork

Notifications
    AbstractNotificationChannel
    AbstractNotificationScheduler, ImmediateNotificationScheduler
    NotificationDispatcher

Use Cases
    --- Projects ---
    CreateProjectUseCase, UpdateProjectUseCase, UpdateProjectStatusUseCase
    DeleteProjectUseCase, GetProjectUseCase, ListProjectsUseCase

    --- Tasks, progress log, attachments ---
    AddTaskUseCase, EditTaskUseCase, ToggleTaskUseCase, DeleteTaskUseCase
    AddProgressUpdateUseCase
    AddAttachmentUseCase, DeleteAttachmentUseCase, GetAttachmentContentUseCase

    --- Backup ---
    ExportBackupUseCase, RestoreBackupUseCase

    --- Notification settings ---
    GetNotificationSettingsUseCase, SaveNotificationSettingsUseCase
    TestNotificationConnectionUseCase

    --- Reporting ---
    GetDashboardUseCase, GetStudentsOverviewUseCase, GetTimelineUseCase
    ComposeStudentMessageUseCase

Design notes
------------
- Use cases receive commands and return DTOs only; no domain objects cross
  the application boundary.
- Each use case accepts a UnitOfWork; mutating ones also accept an optional
  notification scheduler.  The store is persisted before any notification
  is scheduled, and the diff is always taken against a deep copy captured
  before the mutation.
- All timestamps flowing out are ISO-8601 strings (UTC).
- Errors bubble up as ApplicationError subclasses (business) or ValueError
  (validation inside services).  StorageError never escapes a commit: it is
  logged and exposed as ``uow.notice``.
"""

from __future__ import annotations

import abc
import copy
import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import settings
from model import (
    STATUS_DETAILS,
    ActionLink,
    Attachment,
    Language,
    NotificationConfig,
    NotificationEvent,
    Project,
    ProjectStatus,
    Task,
    Technology,
    UpdateLogEntry,
)
from observability import get_logger
from service import (
    ChangeDiffService,
    MessageComposer,
    MessageContext,
    MigrationService,
    ProjectService,
    RecordSerializer,
    ReportingService,
    StudentMessageService,
)

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ApplicationError(Exception):
    """Raised when a use case cannot complete due to a business rule violation."""


class NotFoundError(ApplicationError):
    """Raised when a requested entity does not exist."""


class ValidationError(ApplicationError):
    """Raised when input is malformed (restore file, missing fields, oversize file)."""


class StorageError(Exception):
    """Raised by storage backends when a read or write fails."""


class NotificationDeliveryError(Exception):
    """Raised by a notification channel when the bot API call fails."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fmt(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO-8601 UTC string, or None."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _fmt_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


# ===========================================================================
# DTO DEFINITIONS
# ===========================================================================

# ---------------------------------------------------------------------------
# Project DTOs
# ---------------------------------------------------------------------------

@dataclass
class TaskDTO:
    id: str
    text: str
    is_completed: bool


@dataclass
class UpdateLogEntryDTO:
    id: str
    text: str
    timestamp: str


@dataclass
class AttachmentDTO:
    id: str
    name: str
    mime_type: str
    size: int


@dataclass
class ProjectDTO:
    id: str
    name: str
    student_name: str
    technology: str
    start_date: Optional[str]
    deadline: Optional[str]
    status: str
    status_emoji: str
    status_color: str
    description: str
    tasks: List[TaskDTO]
    update_log: List[UpdateLogEntryDTO]
    attachments: List[AttachmentDTO]
    github_link: str
    whatsapp_number: str
    telegram_username: str
    progress_pct: int


@dataclass
class ProjectSummaryDTO:
    id: str
    name: str
    student_name: str
    technology: str
    status: str
    status_emoji: str
    deadline: Optional[str]
    task_count: int
    completed_task_count: int
    progress_pct: int
    latest_update: Optional[str]


@dataclass
class ProjectUpdateResultDTO:
    project: ProjectDTO
    changes: List[str]


@dataclass
class AttachmentContentDTO:
    name: str
    mime_type: str
    content: bytes


# ---------------------------------------------------------------------------
# Backup DTOs
# ---------------------------------------------------------------------------

@dataclass
class BackupDTO:
    filename: str
    content: str
    project_count: int


@dataclass
class RestoreResultDTO:
    restored: int


# ---------------------------------------------------------------------------
# Notification settings DTOs
# ---------------------------------------------------------------------------

@dataclass
class NotificationSettingsDTO:
    token: str
    chat_id: str
    notifications: Dict[str, bool]
    language: str
    is_complete: bool


@dataclass
class ConnectionTestDTO:
    success: bool
    message: str


# ---------------------------------------------------------------------------
# Reporting DTOs
# ---------------------------------------------------------------------------

@dataclass
class DashboardDTO:
    total_projects: int
    by_status: Dict[str, int]
    total_tasks: int
    completed_tasks: int
    task_completion_pct: int


@dataclass
class StudentGroupDTO:
    student_name: str
    project_count: int
    projects: List[ProjectSummaryDTO]


@dataclass
class TimelineMonthDTO:
    year: int
    month: int
    days: int


@dataclass
class TimelineRowDTO:
    project_id: str
    name: str
    student_name: str
    status: str
    status_color: str
    start_date: str
    deadline: str
    offset_days: int
    duration_days: int


@dataclass
class TimelineDTO:
    window_start: Optional[str]
    window_end: Optional[str]
    total_days: int
    months: List[TimelineMonthDTO] = field(default_factory=list)
    rows: List[TimelineRowDTO] = field(default_factory=list)


@dataclass
class StudentMessageDTO:
    project_id: str
    language: str
    message: str
    whatsapp_url: Optional[str]
    telegram_url: Optional[str]


# ===========================================================================
# DTO ASSEMBLERS
# ===========================================================================

class _Assembler:
    """Converts domain model instances into DTOs."""

    @staticmethod
    def task(t: Task) -> TaskDTO:
        return TaskDTO(id=t.id, text=t.text, is_completed=t.is_completed)

    @staticmethod
    def log_entry(e: UpdateLogEntry) -> UpdateLogEntryDTO:
        return UpdateLogEntryDTO(id=e.id, text=e.text, timestamp=_fmt(e.timestamp))

    @staticmethod
    def attachment(a: Attachment) -> AttachmentDTO:
        return AttachmentDTO(id=a.id, name=a.name, mime_type=a.mime_type, size=a.size)

    @staticmethod
    def project(p: Project) -> ProjectDTO:
        details = STATUS_DETAILS[p.status]
        return ProjectDTO(
            id=p.id,
            name=p.name,
            student_name=p.student_name,
            technology=p.technology.value,
            start_date=_fmt_date(p.start_date),
            deadline=_fmt_date(p.deadline),
            status=p.status.value,
            status_emoji=details.emoji,
            status_color=details.color,
            description=p.description,
            tasks=[_Assembler.task(t) for t in p.tasks],
            update_log=[_Assembler.log_entry(e) for e in p.update_log],
            attachments=[_Assembler.attachment(a) for a in p.attachments],
            github_link=p.github_link,
            whatsapp_number=p.whatsapp_number,
            telegram_username=p.telegram_username,
            progress_pct=ProjectService.task_progress(p),
        )

    @staticmethod
    def summary(p: Project) -> ProjectSummaryDTO:
        latest = StudentMessageService.latest_update(p)
        return ProjectSummaryDTO(
            id=p.id,
            name=p.name,
            student_name=p.student_name,
            technology=p.technology.value,
            status=p.status.value,
            status_emoji=STATUS_DETAILS[p.status].emoji,
            deadline=_fmt_date(p.deadline),
            task_count=len(p.tasks),
            completed_task_count=sum(1 for t in p.tasks if t.is_completed),
            progress_pct=ProjectService.task_progress(p),
            latest_update=latest.text if latest else None,
        )

    @staticmethod
    def notification_settings(c: NotificationConfig) -> NotificationSettingsDTO:
        return NotificationSettingsDTO(
            token=c.token,
            chat_id=c.chat_id,
            notifications={event.value: c.is_enabled(event) for event in NotificationEvent},
            language=c.language.value,
            is_complete=c.is_complete,
        )


# ===========================================================================
# STORAGE & REPOSITORY INTERFACES
# ===========================================================================

class AbstractKeyValueStorage(abc.ABC):
    """
    String key -> JSON text.  Implementations raise StorageError on I/O
    failure; a missing key reads as None.
    """

    @abc.abstractmethod
    def get(self, key: str) -> Optional[str]: ...

    @abc.abstractmethod
    def set(self, key: str, value: str) -> None: ...

    @abc.abstractmethod
    def remove(self, key: str) -> None: ...


class AbstractProjectRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, project_id: str) -> Optional[Project]: ...

    @abc.abstractmethod
    def list_all(self) -> List[Project]: ...

    @abc.abstractmethod
    def add(self, project: Project) -> None:
        """Insert at the front of the list (newest first)."""

    @abc.abstractmethod
    def save(self, project: Project) -> None: ...

    @abc.abstractmethod
    def delete(self, project_id: str) -> None: ...

    @abc.abstractmethod
    def replace_all(self, projects: List[Project]) -> None: ...


class AbstractNotificationConfigRepository(abc.ABC):
    @abc.abstractmethod
    def get(self) -> Optional[NotificationConfig]: ...

    @abc.abstractmethod
    def save(self, config: NotificationConfig) -> None: ...


# ===========================================================================
# UNIT OF WORK
# ===========================================================================

class AbstractUnitOfWork(abc.ABC):
    """
    Groups all repositories under a single boundary.
    Use as a context manager:

        with uow:
            uow.projects.save(project)
            uow.commit()

    Leaving the block through an exception rolls back.  ``notice`` is set by
    ``commit`` when persistence failed but the in-memory change stands.
    """
    projects: AbstractProjectRepository
    notification_settings: AbstractNotificationConfigRepository
    notice: Optional[str] = None

    def __enter__(self) -> "AbstractUnitOfWork":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()

    @abc.abstractmethod
    def commit(self) -> None: ...

    @abc.abstractmethod
    def rollback(self) -> None: ...


# ===========================================================================
# NOTIFICATIONS
# ===========================================================================

class AbstractNotificationChannel(abc.ABC):
    """Outbound transport to the bot API."""

    @abc.abstractmethod
    def send(
        self,
        token: str,
        chat_id: str,
        text: str,
        actions: Optional[List[ActionLink]] = None,
    ) -> None:
        """Deliver one message or raise NotificationDeliveryError."""


class NotificationDispatcher:
    """
    Best-effort delivery of lifecycle notifications.

    ``dispatch`` never raises: missing configuration, a disabled event, an
    empty change set and transport failures all end in a log line.
    """

    def __init__(
        self,
        config_repository: AbstractNotificationConfigRepository,
        channel: AbstractNotificationChannel,
        composer_factory: Callable[[Language], MessageComposer] = MessageComposer,
    ) -> None:
        self._config_repository = config_repository
        self._channel = channel
        self._composer_factory = composer_factory

    def dispatch(
        self,
        event: NotificationEvent,
        project: Project,
        context: Optional[MessageContext] = None,
    ) -> None:
        try:
            self._dispatch(event, project, context)
        except NotificationDeliveryError as exc:
            logger.warning("Notification %s for project %s not delivered: %s", event.value, project.id, exc)
        except Exception:
            logger.exception("Notification %s for project %s failed", event.value, project.id)

    def _dispatch(
        self,
        event: NotificationEvent,
        project: Project,
        context: Optional[MessageContext],
    ) -> None:
        config = self._config_repository.get()
        if config is None or not config.is_complete:
            logger.info("Bot not configured; skipping %s notification", event.value)
            return
        if not config.is_enabled(event):
            logger.info("%s notifications are disabled", event.value)
            return
        if event == NotificationEvent.DETAIL_UPDATE and (
            context is None or context.change_set is None or context.change_set.is_empty
        ):
            return

        composer = self._composer_factory(config.language)
        text = composer.compose(event, project, context)
        if not text:
            return
        self._channel.send(
            config.token,
            config.chat_id,
            text,
            composer.build_actions(event, project),
        )
        logger.info("Sent %s notification for project %s", event.value, project.id)


class AbstractNotificationScheduler(abc.ABC):
    """Hands a notification over for delivery outside the unit of work."""

    @abc.abstractmethod
    def schedule(
        self,
        event: NotificationEvent,
        project: Project,
        context: Optional[MessageContext] = None,
    ) -> None: ...


class ImmediateNotificationScheduler(AbstractNotificationScheduler):
    """Dispatches inline.  Used by scripts and tests."""

    def __init__(self, dispatcher: NotificationDispatcher) -> None:
        self._dispatcher = dispatcher

    def schedule(self, event, project, context=None) -> None:
        self._dispatcher.dispatch(event, project, context)


# ===========================================================================
# SERVICE SINGLETONS (shared across use cases)
# ===========================================================================

_project_svc = ProjectService()
_diff_svc = ChangeDiffService()
_migration_svc = MigrationService()
_serializer = RecordSerializer()
_reporting_svc = ReportingService()


# ===========================================================================
# USE CASE HELPERS
# ===========================================================================

def _get_project_or_raise(uow: AbstractUnitOfWork, project_id: str) -> Project:
    project = uow.projects.get(project_id)
    if project is None:
        raise NotFoundError(f"Project {project_id} not found.")
    return project


def _get_task_or_raise(project: Project, task_id: str) -> Task:
    task = project.find_task(task_id)
    if task is None:
        raise NotFoundError(f"Task {task_id} not found in project {project.id}.")
    return task


def _get_attachment_or_raise(project: Project, attachment_id: str) -> Attachment:
    attachment = project.find_attachment(attachment_id)
    if attachment is None:
        raise NotFoundError(f"Attachment {attachment_id} not found in project {project.id}.")
    return attachment


def _schedule(
    notifier: Optional[AbstractNotificationScheduler],
    event: NotificationEvent,
    project: Project,
    context: Optional[MessageContext] = None,
) -> None:
    if notifier is not None:
        notifier.schedule(event, copy.deepcopy(project), context)


def _schedule_detail_update(
    notifier: Optional[AbstractNotificationScheduler],
    before: Project,
    after: Project,
) -> List[str]:
    """Diff the snapshots, schedule a DetailUpdate when anything changed."""
    change_set = _diff_svc.diff(before, after)
    if not change_set.is_empty:
        _schedule(notifier, NotificationEvent.DETAIL_UPDATE, after, MessageContext(change_set=change_set))
    return change_set.summary()


def _validation(exc: ValueError) -> ValidationError:
    return ValidationError(str(exc))


# ===========================================================================
# USE CASES: PROJECTS
# ===========================================================================

@dataclass
class CreateProjectCommand:
    name: str
    student_name: str
    technology: Technology
    start_date: Optional[date]
    deadline: Optional[date]
    description: str
    status: ProjectStatus = ProjectStatus.NOT_STARTED
    github_link: str = ""
    whatsapp_number: str = ""
    telegram_username: str = ""


class CreateProjectUseCase:
    """Create a project at the front of the list and announce it."""

    def execute(
        self,
        cmd: CreateProjectCommand,
        uow: AbstractUnitOfWork,
        notifier: Optional[AbstractNotificationScheduler] = None,
    ) -> ProjectDTO:
        with uow:
            try:
                project = _project_svc.create_project(
                    name=cmd.name,
                    student_name=cmd.student_name,
                    technology=cmd.technology,
                    start_date=cmd.start_date,
                    deadline=cmd.deadline,
                    description=cmd.description,
                    status=cmd.status,
                    github_link=cmd.github_link,
                    whatsapp_number=cmd.whatsapp_number,
                    telegram_username=cmd.telegram_username,
                )
            except ValueError as exc:
                raise _validation(exc) from exc
            uow.projects.add(project)
            uow.commit()
            logger.info("Created project %s (%s)", project.id, project.name)
            _schedule(notifier, NotificationEvent.CREATE, project)
            return _Assembler.project(project)


@dataclass
class TaskDraft:
    """A task as submitted with a full edit; a missing id means a new task."""
    text: str
    is_completed: bool = False
    id: Optional[str] = None


@dataclass
class UpdateProjectCommand:
    project_id: str
    name: Optional[str] = None
    student_name: Optional[str] = None
    technology: Optional[Technology] = None
    start_date: Optional[date] = None
    deadline: Optional[date] = None
    status: Optional[ProjectStatus] = None
    description: Optional[str] = None
    github_link: Optional[str] = None
    whatsapp_number: Optional[str] = None
    telegram_username: Optional[str] = None
    tasks: Optional[List[TaskDraft]] = None


class UpdateProjectUseCase:
    """
    Apply a full edit.  Omitted fields are left unchanged; a task list, when
    given, replaces the current one (ids kept, missing ids generated).
    """

    def execute(
        self,
        cmd: UpdateProjectCommand,
        uow: AbstractUnitOfWork,
        notifier: Optional[AbstractNotificationScheduler] = None,
    ) -> ProjectUpdateResultDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            before = copy.deepcopy(project)
            try:
                _project_svc.update_details(
                    project,
                    name=cmd.name,
                    student_name=cmd.student_name,
                    technology=cmd.technology,
                    start_date=cmd.start_date,
                    deadline=cmd.deadline,
                    status=cmd.status,
                    description=cmd.description,
                    github_link=cmd.github_link,
                    whatsapp_number=cmd.whatsapp_number,
                    telegram_username=cmd.telegram_username,
                )
                if cmd.tasks is not None:
                    tasks = [
                        Task(id=d.id, text=d.text, is_completed=d.is_completed) if d.id
                        else Task(text=d.text, is_completed=d.is_completed)
                        for d in cmd.tasks
                    ]
                    _project_svc.replace_tasks(project, tasks)
            except ValueError as exc:
                raise _validation(exc) from exc
            uow.projects.save(project)
            uow.commit()
            changes = _schedule_detail_update(notifier, before, project)
            return ProjectUpdateResultDTO(project=_Assembler.project(project), changes=changes)


@dataclass
class UpdateProjectStatusCommand:
    project_id: str
    status: ProjectStatus


class UpdateProjectStatusUseCase:
    """Quick status change; setting the current status is a no-op."""

    def execute(
        self,
        cmd: UpdateProjectStatusCommand,
        uow: AbstractUnitOfWork,
        notifier: Optional[AbstractNotificationScheduler] = None,
    ) -> ProjectDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            original_status = project.status
            if _project_svc.set_status(project, cmd.status):
                uow.projects.save(project)
                uow.commit()
                logger.info(
                    "Project %s status %s -> %s",
                    project.id, original_status.value, cmd.status.value,
                )
                _schedule(
                    notifier,
                    NotificationEvent.STATUS_CHANGE,
                    project,
                    MessageContext(original_status=original_status),
                )
            return _Assembler.project(project)


class DeleteProjectUseCase:
    def execute(
        self,
        project_id: str,
        uow: AbstractUnitOfWork,
        notifier: Optional[AbstractNotificationScheduler] = None,
    ) -> None:
        with uow:
            project = _get_project_or_raise(uow, project_id)
            uow.projects.delete(project_id)
            uow.commit()
            logger.info("Deleted project %s (%s)", project.id, project.name)
            _schedule(notifier, NotificationEvent.DELETE, project)


class GetProjectUseCase:
    def execute(self, project_id: str, uow: AbstractUnitOfWork) -> ProjectDTO:
        with uow:
            return _Assembler.project(_get_project_or_raise(uow, project_id))


class ListProjectsUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> List[ProjectSummaryDTO]:
        with uow:
            return [_Assembler.summary(p) for p in uow.projects.list_all()]


# ===========================================================================
# USE CASES: TASKS
# ===========================================================================

@dataclass
class AddTaskCommand:
    project_id: str
    text: str


class AddTaskUseCase:
    def execute(
        self,
        cmd: AddTaskCommand,
        uow: AbstractUnitOfWork,
        notifier: Optional[AbstractNotificationScheduler] = None,
    ) -> TaskDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            before = copy.deepcopy(project)
            try:
                task = _project_svc.add_task(project, cmd.text)
            except ValueError as exc:
                raise _validation(exc) from exc
            uow.projects.save(project)
            uow.commit()
            _schedule_detail_update(notifier, before, project)
        return _Assembler.task(task)


@dataclass
class EditTaskCommand:
    project_id: str
    task_id: str
    text: Optional[str] = None


class EditTaskUseCase:
    """Blank text keeps the current text (and then nothing is announced)."""

    def execute(
        self,
        cmd: EditTaskCommand,
        uow: AbstractUnitOfWork,
        notifier: Optional[AbstractNotificationScheduler] = None,
    ) -> TaskDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            task = _get_task_or_raise(project, cmd.task_id)
            before = copy.deepcopy(project)
            _project_svc.edit_task(task, cmd.text)
            uow.projects.save(project)
            uow.commit()
            _schedule_detail_update(notifier, before, project)
        return _Assembler.task(task)


@dataclass
class TaskRefCommand:
    project_id: str
    task_id: str


class ToggleTaskUseCase:
    def execute(
        self,
        cmd: TaskRefCommand,
        uow: AbstractUnitOfWork,
        notifier: Optional[AbstractNotificationScheduler] = None,
    ) -> TaskDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            task = _get_task_or_raise(project, cmd.task_id)
            before = copy.deepcopy(project)
            _project_svc.toggle_task(task)
            uow.projects.save(project)
            uow.commit()
            _schedule_detail_update(notifier, before, project)
        return _Assembler.task(task)


class DeleteTaskUseCase:
    def execute(
        self,
        cmd: TaskRefCommand,
        uow: AbstractUnitOfWork,
        notifier: Optional[AbstractNotificationScheduler] = None,
    ) -> None:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            task = _get_task_or_raise(project, cmd.task_id)
            before = copy.deepcopy(project)
            _project_svc.delete_task(project, task)
            uow.projects.save(project)
            uow.commit()
            _schedule_detail_update(notifier, before, project)


# ===========================================================================
# USE CASES: PROGRESS LOG
# ===========================================================================

@dataclass
class AddProgressUpdateCommand:
    project_id: str
    text: str


class AddProgressUpdateUseCase:
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock

    def execute(
        self,
        cmd: AddProgressUpdateCommand,
        uow: AbstractUnitOfWork,
        notifier: Optional[AbstractNotificationScheduler] = None,
    ) -> UpdateLogEntryDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            before = copy.deepcopy(project)
            try:
                entry = _project_svc.add_update(project, cmd.text, now=self._clock())
            except ValueError as exc:
                raise _validation(exc) from exc
            uow.projects.save(project)
            uow.commit()
            _schedule_detail_update(notifier, before, project)
        return _Assembler.log_entry(entry)


# ===========================================================================
# USE CASES: ATTACHMENTS
# ===========================================================================

@dataclass
class AddAttachmentCommand:
    project_id: str
    filename: str
    mime_type: Optional[str]
    content: bytes


class AddAttachmentUseCase:
    """Store a file inline; the size ceiling is checked before anything changes."""

    def __init__(self, max_bytes: int = settings.MAX_ATTACHMENT_BYTES) -> None:
        self._max_bytes = max_bytes

    def execute(
        self,
        cmd: AddAttachmentCommand,
        uow: AbstractUnitOfWork,
        notifier: Optional[AbstractNotificationScheduler] = None,
    ) -> AttachmentDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            before = copy.deepcopy(project)
            try:
                attachment = _project_svc.add_attachment(
                    project, cmd.filename, cmd.mime_type, cmd.content, self._max_bytes
                )
            except ValueError as exc:
                raise _validation(exc) from exc
            uow.projects.save(project)
            uow.commit()
            _schedule_detail_update(notifier, before, project)
        return _Assembler.attachment(attachment)


@dataclass
class AttachmentRefCommand:
    project_id: str
    attachment_id: str


class DeleteAttachmentUseCase:
    def execute(
        self,
        cmd: AttachmentRefCommand,
        uow: AbstractUnitOfWork,
        notifier: Optional[AbstractNotificationScheduler] = None,
    ) -> None:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            attachment = _get_attachment_or_raise(project, cmd.attachment_id)
            before = copy.deepcopy(project)
            _project_svc.remove_attachment(project, attachment)
            uow.projects.save(project)
            uow.commit()
            _schedule_detail_update(notifier, before, project)


class GetAttachmentContentUseCase:
    def execute(self, cmd: AttachmentRefCommand, uow: AbstractUnitOfWork) -> AttachmentContentDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            attachment = _get_attachment_or_raise(project, cmd.attachment_id)
            try:
                content = _project_svc.decode_attachment(attachment)
            except ValueError as exc:
                raise ApplicationError(str(exc)) from exc
            return AttachmentContentDTO(
                name=attachment.name,
                mime_type=attachment.mime_type or "application/octet-stream",
                content=content,
            )


# ===========================================================================
# USE CASES: BACKUP
# ===========================================================================

class ExportBackupUseCase:
    """Serialise every project into a dated, indented JSON document."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock

    def execute(self, uow: AbstractUnitOfWork) -> BackupDTO:
        with uow:
            projects = uow.projects.list_all()
            if not projects:
                raise ValidationError("There are no projects to export.")
            content = json.dumps(
                _serializer.to_records(projects), ensure_ascii=False, indent=2
            )
        filename = f"projects-backup-{self._clock().date().isoformat()}.json"
        return BackupDTO(filename=filename, content=content, project_count=len(projects))


@dataclass
class RestoreBackupCommand:
    content: str


class RestoreBackupUseCase:
    """
    Replace the whole project list with the contents of a backup file.

    The file must be a JSON array whose every element is an object with a
    truthy ``id``, ``name`` and ``status``.  Anything else is rejected and
    the current list is left untouched.
    """

    REQUIRED_KEYS = ("id", "name", "status")

    def execute(self, cmd: RestoreBackupCommand, uow: AbstractUnitOfWork) -> RestoreResultDTO:
        records = self._parse(cmd.content)
        projects = [_migration_svc.normalize(record) for record in records]
        with uow:
            uow.projects.replace_all(projects)
            uow.commit()
        logger.info("Restored %d projects from backup", len(projects))
        return RestoreResultDTO(restored=len(projects))

    def _parse(self, content: str) -> List[Dict[str, Any]]:
        try:
            records = json.loads(content)
        except ValueError as exc:
            raise ValidationError(f"Backup is not valid JSON: {exc}") from exc
        if not isinstance(records, list):
            raise ValidationError("Backup must contain a JSON array of projects.")
        for index, record in enumerate(records):
            if not isinstance(record, dict):
                raise ValidationError(f"Backup entry {index} is not an object.")
            missing = [key for key in self.REQUIRED_KEYS if not record.get(key)]
            if missing:
                raise ValidationError(
                    f"Backup entry {index} is missing {', '.join(missing)}."
                )
        return records


# ===========================================================================
# USE CASES: NOTIFICATION SETTINGS
# ===========================================================================

class GetNotificationSettingsUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> NotificationSettingsDTO:
        with uow:
            config = uow.notification_settings.get() or NotificationConfig()
            return _Assembler.notification_settings(config)


@dataclass
class SaveNotificationSettingsCommand:
    token: str
    chat_id: str
    notifications: Dict[NotificationEvent, bool] = field(default_factory=dict)
    language: Language = Language.ARABIC


class SaveNotificationSettingsUseCase:
    def execute(
        self, cmd: SaveNotificationSettingsCommand, uow: AbstractUnitOfWork
    ) -> NotificationSettingsDTO:
        token = (cmd.token or "").strip()
        chat_id = (cmd.chat_id or "").strip()
        if not token or not chat_id:
            raise ValidationError("Both the bot token and the chat id are required.")
        toggles = {event: cmd.notifications.get(event, True) for event in NotificationEvent}
        config = NotificationConfig(
            token=token, chat_id=chat_id, notifications=toggles, language=cmd.language
        )
        with uow:
            uow.notification_settings.save(config)
            uow.commit()
        return _Assembler.notification_settings(config)


@dataclass
class TestNotificationConnectionCommand:
    token: str
    chat_id: str
    language: Language = Language.ARABIC


class TestNotificationConnectionUseCase:
    """Send a canned message with the given credentials; nothing is saved."""

    def __init__(self, channel: AbstractNotificationChannel) -> None:
        self._channel = channel

    def execute(self, cmd: TestNotificationConnectionCommand) -> ConnectionTestDTO:
        token = (cmd.token or "").strip()
        chat_id = (cmd.chat_id or "").strip()
        if not token or not chat_id:
            raise ValidationError("Both the bot token and the chat id are required.")
        text = MessageComposer(cmd.language).compose_test_message()
        try:
            self._channel.send(token, chat_id, text)
        except NotificationDeliveryError as exc:
            logger.warning("Connection test failed: %s", exc)
            return ConnectionTestDTO(success=False, message=f"Connection failed: {exc}")
        return ConnectionTestDTO(success=True, message="Test message sent successfully.")


# ===========================================================================
# USE CASES: REPORTING
# ===========================================================================

class GetDashboardUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> DashboardDTO:
        with uow:
            projects = uow.projects.list_all()
            counts = _reporting_svc.count_by_status(projects)
            total, done = _reporting_svc.task_totals(projects)
            return DashboardDTO(
                total_projects=len(projects),
                by_status={status.value: count for status, count in counts.items()},
                total_tasks=total,
                completed_tasks=done,
                task_completion_pct=round(done * 100 / total) if total else 0,
            )


class GetStudentsOverviewUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> List[StudentGroupDTO]:
        with uow:
            groups = _reporting_svc.group_by_student(uow.projects.list_all())
            return [
                StudentGroupDTO(
                    student_name=name,
                    project_count=len(projects),
                    projects=[_Assembler.summary(p) for p in projects],
                )
                for name, projects in groups
            ]


class GetTimelineUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> TimelineDTO:
        with uow:
            timeline = _reporting_svc.timeline(uow.projects.list_all())
            return TimelineDTO(
                window_start=_fmt_date(timeline.window_start),
                window_end=_fmt_date(timeline.window_end),
                total_days=timeline.total_days,
                months=[TimelineMonthDTO(m.year, m.month, m.days) for m in timeline.months],
                rows=[
                    TimelineRowDTO(
                        project_id=row.project.id,
                        name=row.project.name,
                        student_name=row.project.student_name,
                        status=row.project.status.value,
                        status_color=STATUS_DETAILS[row.project.status].color,
                        start_date=_fmt_date(row.project.start_date),
                        deadline=_fmt_date(row.project.deadline),
                        offset_days=row.offset_days,
                        duration_days=row.duration_days,
                    )
                    for row in timeline.rows
                ],
            )


@dataclass
class ComposeStudentMessageCommand:
    project_id: str
    language: Language = Language.ARABIC


class ComposeStudentMessageUseCase:
    def __init__(self, sender_name: str = settings.SENDER_NAME) -> None:
        self._service = StudentMessageService(sender_name=sender_name)

    def execute(
        self, cmd: ComposeStudentMessageCommand, uow: AbstractUnitOfWork
    ) -> StudentMessageDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            try:
                message = self._service.compose(project, cmd.language)
            except ValueError as exc:
                raise _validation(exc) from exc
            links = self._service.share_links(project, message)
            return StudentMessageDTO(
                project_id=project.id,
                language=cmd.language.value,
                message=message,
                whatsapp_url=links.whatsapp_url,
                telegram_url=links.telegram_url,
            )
