"""
api.py

REST API layer for the Student Project Tracker.

Framework : FastAPI
Auth      : none; the tracker is a single-administrator tool.

Structure
---------
  Routers (all prefixed under /api/v1)
  ├── /projects                          — project CRUD, quick status change
  │   ├── /{project_id}/tasks            — add / edit / toggle / delete tasks
  │   ├── /{project_id}/updates          — progress log
  │   ├── /{project_id}/attachments      — upload / download / delete files
  │   └── /{project_id}/student-message  — message addressed to the student
  ├── /dashboard, /students, /timeline   — reporting views
  ├── /backup                            — export and restore the project list
  └── /notification-settings             — bot credentials, toggles, test send

Notifications
-------------
  Mutating endpoints hand their notification to a BackgroundTaskScheduler:
  it is sent after the response has been returned and its outcome never
  affects the response.

Error handling
--------------
  NotFoundError      → 404
  ValidationError    → 422
  ApplicationError   → 422
  ValueError         → 422
  Unhandled          → 500 (FastAPI default)

Response envelope
-----------------
  Success  : { "data": <payload> }   plus "notice" when saving to storage failed
  Error    : { "detail": "<message>" }

Running
-------
  uvicorn main:app --reload   (main.py wires storage and the bot channel)
"""

from __future__ import annotations

import dataclasses
from datetime import date
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    FastAPI,
    File,
    Path,
    Query,
    Response,
    UploadFile,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_mcp import FastApiMCP
from pydantic import BaseModel, Field, field_validator

import settings
from application import (
    # Exceptions
    ApplicationError,
    NotFoundError,
    ValidationError,
    # Abstractions
    AbstractNotificationChannel,
    AbstractNotificationScheduler,
    AbstractUnitOfWork,
    NotificationDispatcher,
    # Use-case commands
    AddAttachmentCommand,
    AddProgressUpdateCommand,
    AddTaskCommand,
    AttachmentRefCommand,
    ComposeStudentMessageCommand,
    CreateProjectCommand,
    EditTaskCommand,
    RestoreBackupCommand,
    SaveNotificationSettingsCommand,
    TaskDraft,
    TaskRefCommand,
    TestNotificationConnectionCommand,
    UpdateProjectCommand,
    UpdateProjectStatusCommand,
    # Use-case classes
    AddAttachmentUseCase,
    AddProgressUpdateUseCase,
    AddTaskUseCase,
    ComposeStudentMessageUseCase,
    CreateProjectUseCase,
    DeleteAttachmentUseCase,
    DeleteProjectUseCase,
    DeleteTaskUseCase,
    EditTaskUseCase,
    ExportBackupUseCase,
    GetAttachmentContentUseCase,
    GetDashboardUseCase,
    GetNotificationSettingsUseCase,
    GetProjectUseCase,
    GetStudentsOverviewUseCase,
    GetTimelineUseCase,
    ListProjectsUseCase,
    RestoreBackupUseCase,
    SaveNotificationSettingsUseCase,
    TestNotificationConnectionUseCase,
    ToggleTaskUseCase,
    UpdateProjectStatusUseCase,
    UpdateProjectUseCase,
)
from model import Language, NotificationEvent, Project, ProjectStatus, Technology
from observability import get_logger
from service import MessageContext

logger = get_logger(__name__)

BOT_LANGUAGES = (Language.ARABIC, Language.ENGLISH)


# ---------------------------------------------------------------------------
# App bootstrap
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Student Project Tracker API",
    version=settings.APP_VERSION,
    description=(
        "REST API for tracking student software projects: tasks, progress "
        "log, attachments, status, reporting, backups and bot notifications."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------

@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(ApplicationError)
async def application_error_handler(request, exc: ApplicationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Dependencies
#
# main.configure() overrides these with the process-wide store, settings
# repository and bot channel.
# ---------------------------------------------------------------------------

def get_uow() -> AbstractUnitOfWork:
    raise RuntimeError("No unit of work configured; call main.configure(app, ...) first.")


def get_dispatcher() -> NotificationDispatcher:
    raise RuntimeError("No notification dispatcher configured; call main.configure(app, ...) first.")


def get_channel() -> AbstractNotificationChannel:
    raise RuntimeError("No notification channel configured; call main.configure(app, ...) first.")


class BackgroundTaskScheduler(AbstractNotificationScheduler):
    """Runs the dispatcher after the response has been sent."""

    def __init__(self, background_tasks: BackgroundTasks, dispatcher: NotificationDispatcher):
        self._background_tasks = background_tasks
        self._dispatcher = dispatcher

    def schedule(
        self,
        event: NotificationEvent,
        project: Project,
        context: Optional[MessageContext] = None,
    ) -> None:
        self._background_tasks.add_task(self._dispatcher.dispatch, event, project, context)


def get_notifier(
    background_tasks: BackgroundTasks,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> AbstractNotificationScheduler:
    return BackgroundTaskScheduler(background_tasks, dispatcher)


# ---------------------------------------------------------------------------
# Envelope helper
# ---------------------------------------------------------------------------

def _ok(data: Any, uow: Optional[AbstractUnitOfWork] = None) -> Dict:
    """Wrap a DTO or list of DTOs in the standard success envelope."""
    if dataclasses.is_dataclass(data):
        payload: Any = dataclasses.asdict(data)
    elif isinstance(data, list):
        payload = [
            dataclasses.asdict(item) if dataclasses.is_dataclass(item) else item
            for item in data
        ]
    else:
        payload = data
    envelope: Dict[str, Any] = {"data": payload}
    if uow is not None and uow.notice:
        envelope["notice"] = uow.notice
    return envelope


def _download(content: bytes, filename: str, media_type: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )


# ===========================================================================
# REQUEST BODY SCHEMAS  (Pydantic v2)
# ===========================================================================

# ---------------------------------------------------------------------------
# Project schemas
# ---------------------------------------------------------------------------

class CreateProjectRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    student_name: str = Field(..., min_length=1, max_length=200)
    technology: Technology
    start_date: date
    deadline: date
    description: str = Field(..., min_length=1)
    status: ProjectStatus = ProjectStatus.NOT_STARTED
    github_link: str = Field(default="")
    whatsapp_number: str = Field(default="")
    telegram_username: str = Field(default="")


class TaskDraftRequest(BaseModel):
    id: Optional[str] = None
    text: str = Field(..., min_length=1)
    is_completed: bool = False


class UpdateProjectRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    student_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    technology: Optional[Technology] = None
    start_date: Optional[date] = None
    deadline: Optional[date] = None
    status: Optional[ProjectStatus] = None
    description: Optional[str] = Field(default=None, min_length=1)
    github_link: Optional[str] = None
    whatsapp_number: Optional[str] = None
    telegram_username: Optional[str] = None
    tasks: Optional[List[TaskDraftRequest]] = Field(
        default=None, description="Full task list; replaces the current one when given."
    )


class UpdateStatusRequest(BaseModel):
    status: ProjectStatus


# ---------------------------------------------------------------------------
# Task / progress schemas
# ---------------------------------------------------------------------------

class AddTaskRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=500)


class EditTaskRequest(BaseModel):
    text: Optional[str] = Field(
        default=None, description="Blank or missing text keeps the current text."
    )


class AddProgressUpdateRequest(BaseModel):
    text: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Notification settings schemas
# ---------------------------------------------------------------------------

class NotificationSettingsRequest(BaseModel):
    token: str = Field(..., min_length=1)
    chat_id: str = Field(..., min_length=1)
    notifications: Dict[NotificationEvent, bool] = Field(default_factory=dict)
    language: Language = Language.ARABIC

    @field_validator("language")
    @classmethod
    def validate_language(cls, v: Language) -> Language:
        if v not in BOT_LANGUAGES:
            raise ValueError(f"language must be one of: {[lang.value for lang in BOT_LANGUAGES]}")
        return v


class ConnectionTestRequest(BaseModel):
    token: str = Field(..., min_length=1)
    chat_id: str = Field(..., min_length=1)
    language: Language = Language.ARABIC

    @field_validator("language")
    @classmethod
    def validate_language(cls, v: Language) -> Language:
        if v not in BOT_LANGUAGES:
            raise ValueError(f"language must be one of: {[lang.value for lang in BOT_LANGUAGES]}")
        return v


# ===========================================================================
# ROUTERS
# ===========================================================================

api_v1 = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

project_router = APIRouter(prefix="/projects", tags=["Projects"])


@project_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a project",
    response_description="The created project.",
)
def create_project(
    body: CreateProjectRequest,
    uow: AbstractUnitOfWork = Depends(get_uow),
    notifier: AbstractNotificationScheduler = Depends(get_notifier),
):
    """
    Create a project at the top of the list.  A "new project" bot message
    is sent afterwards when notifications are configured.
    """
    cmd = CreateProjectCommand(
        name=body.name,
        student_name=body.student_name,
        technology=body.technology,
        start_date=body.start_date,
        deadline=body.deadline,
        description=body.description,
        status=body.status,
        github_link=body.github_link,
        whatsapp_number=body.whatsapp_number,
        telegram_username=body.telegram_username,
    )
    result = CreateProjectUseCase().execute(cmd, uow, notifier)
    return _ok(result, uow)


@project_router.get("", summary="List projects (newest first)")
def list_projects(uow: AbstractUnitOfWork = Depends(get_uow)):
    return _ok(ListProjectsUseCase().execute(uow))


@project_router.get("/{project_id}", summary="Get a project by ID")
def get_project(
    project_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetProjectUseCase().execute(project_id, uow))


@project_router.patch(
    "/{project_id}",
    summary="Edit project details and, optionally, the whole task list",
)
def update_project(
    body: UpdateProjectRequest,
    project_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
    notifier: AbstractNotificationScheduler = Depends(get_notifier),
):
    """
    Returns the updated project and a plain-text list of what changed.  One
    "project updated" bot message summarises all changes.
    """
    tasks = None
    if body.tasks is not None:
        tasks = [TaskDraft(text=t.text, is_completed=t.is_completed, id=t.id) for t in body.tasks]
    cmd = UpdateProjectCommand(
        project_id=project_id,
        name=body.name,
        student_name=body.student_name,
        technology=body.technology,
        start_date=body.start_date,
        deadline=body.deadline,
        status=body.status,
        description=body.description,
        github_link=body.github_link,
        whatsapp_number=body.whatsapp_number,
        telegram_username=body.telegram_username,
        tasks=tasks,
    )
    result = UpdateProjectUseCase().execute(cmd, uow, notifier)
    return _ok(result, uow)


@project_router.patch("/{project_id}/status", summary="Change the project status")
def update_project_status(
    body: UpdateStatusRequest,
    project_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
    notifier: AbstractNotificationScheduler = Depends(get_notifier),
):
    cmd = UpdateProjectStatusCommand(project_id=project_id, status=body.status)
    result = UpdateProjectStatusUseCase().execute(cmd, uow, notifier)
    return _ok(result, uow)


@project_router.delete(
    "/{project_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a project",
)
def delete_project(
    project_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
    notifier: AbstractNotificationScheduler = Depends(get_notifier),
):
    DeleteProjectUseCase().execute(project_id, uow, notifier)


@project_router.get(
    "/{project_id}/student-message",
    summary="Compose a message addressed to the student",
)
def get_student_message(
    project_id: str = Path(...),
    language: Language = Query(Language.ARABIC, description="ar or fa"),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Plain-text message in Arabic or Persian, with WhatsApp / Telegram share
    links when the project has contact details.
    """
    cmd = ComposeStudentMessageCommand(project_id=project_id, language=language)
    return _ok(ComposeStudentMessageUseCase().execute(cmd, uow))


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

task_router = APIRouter(prefix="/projects/{project_id}/tasks", tags=["Tasks"])


@task_router.post("", status_code=status.HTTP_201_CREATED, summary="Add a task")
def add_task(
    body: AddTaskRequest,
    project_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
    notifier: AbstractNotificationScheduler = Depends(get_notifier),
):
    cmd = AddTaskCommand(project_id=project_id, text=body.text)
    return _ok(AddTaskUseCase().execute(cmd, uow, notifier), uow)


@task_router.patch("/{task_id}", summary="Edit a task's text")
def edit_task(
    body: EditTaskRequest,
    project_id: str = Path(...),
    task_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
    notifier: AbstractNotificationScheduler = Depends(get_notifier),
):
    cmd = EditTaskCommand(project_id=project_id, task_id=task_id, text=body.text)
    return _ok(EditTaskUseCase().execute(cmd, uow, notifier), uow)


@task_router.post("/{task_id}/toggle", summary="Flip a task's completion")
def toggle_task(
    project_id: str = Path(...),
    task_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
    notifier: AbstractNotificationScheduler = Depends(get_notifier),
):
    cmd = TaskRefCommand(project_id=project_id, task_id=task_id)
    return _ok(ToggleTaskUseCase().execute(cmd, uow, notifier), uow)


@task_router.delete(
    "/{task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a task",
)
def delete_task(
    project_id: str = Path(...),
    task_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
    notifier: AbstractNotificationScheduler = Depends(get_notifier),
):
    DeleteTaskUseCase().execute(TaskRefCommand(project_id=project_id, task_id=task_id), uow, notifier)


# ---------------------------------------------------------------------------
# Progress log
# ---------------------------------------------------------------------------

update_router = APIRouter(prefix="/projects/{project_id}/updates", tags=["Progress Log"])


@update_router.post("", status_code=status.HTTP_201_CREATED, summary="Add a progress note")
def add_progress_update(
    body: AddProgressUpdateRequest,
    project_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
    notifier: AbstractNotificationScheduler = Depends(get_notifier),
):
    cmd = AddProgressUpdateCommand(project_id=project_id, text=body.text)
    return _ok(AddProgressUpdateUseCase().execute(cmd, uow, notifier), uow)


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------

attachment_router = APIRouter(
    prefix="/projects/{project_id}/attachments",
    tags=["Attachments"],
)


@attachment_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Upload an attachment",
)
def add_attachment(
    project_id: str = Path(...),
    file: UploadFile = File(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
    notifier: AbstractNotificationScheduler = Depends(get_notifier),
):
    """Files above the configured size limit are rejected with 422."""
    max_bytes = settings.MAX_ATTACHMENT_BYTES
    filename = file.filename or "attachment"
    # Never buffer more than one byte past the limit.
    content = file.file.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise ValidationError(f"Attachment '{filename}' exceeds the limit of {max_bytes} bytes.")
    cmd = AddAttachmentCommand(
        project_id=project_id,
        filename=filename,
        mime_type=file.content_type,
        content=content,
    )
    return _ok(AddAttachmentUseCase(max_bytes=max_bytes).execute(cmd, uow, notifier), uow)


@attachment_router.get("/{attachment_id}", summary="Download an attachment")
def download_attachment(
    project_id: str = Path(...),
    attachment_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AttachmentRefCommand(project_id=project_id, attachment_id=attachment_id)
    result = GetAttachmentContentUseCase().execute(cmd, uow)
    return _download(result.content, result.name, result.mime_type)


@attachment_router.delete(
    "/{attachment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an attachment",
)
def delete_attachment(
    project_id: str = Path(...),
    attachment_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
    notifier: AbstractNotificationScheduler = Depends(get_notifier),
):
    cmd = AttachmentRefCommand(project_id=project_id, attachment_id=attachment_id)
    DeleteAttachmentUseCase().execute(cmd, uow, notifier)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

report_router = APIRouter(tags=["Reports"])


@report_router.get("/dashboard", summary="Project and task totals")
def get_dashboard(uow: AbstractUnitOfWork = Depends(get_uow)):
    return _ok(GetDashboardUseCase().execute(uow))


@report_router.get("/students", summary="Projects grouped by student")
def get_students(uow: AbstractUnitOfWork = Depends(get_uow)):
    return _ok(GetStudentsOverviewUseCase().execute(uow))


@report_router.get("/timeline", summary="Timeline rows for dated projects")
def get_timeline(uow: AbstractUnitOfWork = Depends(get_uow)):
    return _ok(GetTimelineUseCase().execute(uow))


# ---------------------------------------------------------------------------
# Backup
# ---------------------------------------------------------------------------

backup_router = APIRouter(prefix="/backup", tags=["Backup"])


@backup_router.get("", summary="Download all projects as a JSON backup")
def export_backup(uow: AbstractUnitOfWork = Depends(get_uow)):
    result = ExportBackupUseCase().execute(uow)
    return _download(result.content.encode("utf-8"), result.filename, "application/json")


@backup_router.post("/restore", summary="Replace all projects with a JSON backup")
def restore_backup(
    file: UploadFile = File(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    The file must be a JSON array of project objects, each with an id, a
    name and a status.  A rejected file leaves the current projects as they are.
    """
    raw = file.file.read()
    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValidationError("Backup file is not UTF-8 text.") from exc
    result = RestoreBackupUseCase().execute(RestoreBackupCommand(content=content), uow)
    return _ok(result, uow)


# ---------------------------------------------------------------------------
# Notification settings
# ---------------------------------------------------------------------------

settings_router = APIRouter(prefix="/notification-settings", tags=["Notification Settings"])


@settings_router.get("", summary="Current bot settings")
def get_notification_settings(uow: AbstractUnitOfWork = Depends(get_uow)):
    return _ok(GetNotificationSettingsUseCase().execute(uow))


@settings_router.put("", summary="Save bot settings")
def save_notification_settings(
    body: NotificationSettingsRequest,
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = SaveNotificationSettingsCommand(
        token=body.token,
        chat_id=body.chat_id,
        notifications=dict(body.notifications),
        language=body.language,
    )
    return _ok(SaveNotificationSettingsUseCase().execute(cmd, uow), uow)


@settings_router.post("/test", summary="Send a test message")
def test_notification_connection(
    body: ConnectionTestRequest,
    channel: AbstractNotificationChannel = Depends(get_channel),
):
    """Uses the submitted credentials; nothing is saved."""
    cmd = TestNotificationConnectionCommand(
        token=body.token, chat_id=body.chat_id, language=body.language
    )
    return _ok(TestNotificationConnectionUseCase(channel).execute(cmd))


# ---------------------------------------------------------------------------
# Register all routers
# ---------------------------------------------------------------------------

api_v1.include_router(project_router)
api_v1.include_router(task_router)
api_v1.include_router(update_router)
api_v1.include_router(attachment_router)
api_v1.include_router(report_router)
api_v1.include_router(backup_router)
api_v1.include_router(settings_router)

app.include_router(api_v1)


# ---------------------------------------------------------------------------
# MCP server: exposes all API routes as MCP tools
# Accessible at: http://localhost:8000/mcp
# ---------------------------------------------------------------------------
mcp = FastApiMCP(app)
mcp.mount()


# ===========================================================================
# HEALTH CHECK
# ===========================================================================

@app.get("/health", tags=["Health"], summary="Service health check")
def health():
    return {"status": "ok", "version": settings.APP_VERSION}


# ===========================================================================
# OPENAPI CUSTOMISATION: tag order and descriptions
# ===========================================================================

tags_metadata = [
    {
        "name": "Health",
        "description": "Liveness probe.",
    },
    {
        "name": "Projects",
        "description": (
            "Student projects, newest first.  Creating, editing, changing the "
            "status of and deleting a project each send a bot notification "
            "when notifications are configured."
        ),
    },
    {
        "name": "Tasks",
        "description": "Checklist items of a project.  Blank edits keep the old text.",
    },
    {
        "name": "Progress Log",
        "description": "Append-only, timestamped progress notes.",
    },
    {
        "name": "Attachments",
        "description": "Files stored inline with the project, up to the configured size limit.",
    },
    {
        "name": "Reports",
        "description": "Dashboard totals, per-student grouping and the project timeline.",
    },
    {
        "name": "Backup",
        "description": (
            "Export every project as a dated JSON file, or replace all projects "
            "with a previously exported file."
        ),
    },
    {
        "name": "Notification Settings",
        "description": (
            "Bot token, chat id, per-event toggles and message language.  "
            "A test message can be sent before saving."
        ),
    },
]

app.openapi_tags = tags_metadata
