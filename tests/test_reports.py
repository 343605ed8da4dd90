from datetime import date, datetime, timezone
from urllib.parse import quote

import pytest

from application import (
    ComposeStudentMessageCommand,
    ComposeStudentMessageUseCase,
    GetDashboardUseCase,
    GetStudentsOverviewUseCase,
    GetTimelineUseCase,
    ValidationError,
)
from model import Language, ProjectStatus, Task, Technology, UpdateLogEntry
from service import ReportingService, StudentMessageService


def _seed(uow, *projects):
    with uow:
        uow.projects.replace_all(list(projects))
        uow.commit()


# ---------------------------------------------------------------------------
# Dashboard and students
# ---------------------------------------------------------------------------

def test_dashboard_counts(uow, make_project):
    _seed(
        uow,
        make_project(id="p1", status=ProjectStatus.IN_PROGRESS,
                     tasks=[Task(text="a", is_completed=True), Task(text="b")]),
        make_project(id="p2", status=ProjectStatus.IN_PROGRESS, tasks=[Task(text="c")]),
        make_project(id="p3", status=ProjectStatus.DELIVERED),
    )

    dashboard = GetDashboardUseCase().execute(uow)

    assert dashboard.total_projects == 3
    assert dashboard.by_status == {"NotStarted": 0, "InProgress": 2, "Completed": 0, "Delivered": 1}
    assert (dashboard.total_tasks, dashboard.completed_tasks) == (3, 1)
    assert dashboard.task_completion_pct == 33


def test_empty_dashboard(uow):
    dashboard = GetDashboardUseCase().execute(uow)
    assert dashboard.total_projects == 0
    assert dashboard.task_completion_pct == 0


def test_students_grouped_by_trimmed_name(uow, make_project):
    _seed(
        uow,
        make_project(id="p1", student_name="Sara Ahmed ", deadline=date(2024, 10, 1)),
        make_project(id="p2", student_name="Omar", deadline=date(2024, 6, 1)),
        make_project(id="p3", student_name=" Sara Ahmed", deadline=date(2024, 8, 1)),
    )

    groups = GetStudentsOverviewUseCase().execute(uow)

    assert [(g.student_name, g.project_count) for g in groups] == [("Omar", 1), ("Sara Ahmed", 2)]
    assert [p.id for p in groups[1].projects] == ["p3", "p1"]


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------

def test_timeline_window_and_rows(make_project):
    projects = [
        make_project(id="late", start_date=date(2024, 3, 1), deadline=date(2024, 4, 20)),
        make_project(id="early", start_date=date(2024, 2, 10), deadline=date(2024, 3, 5)),
    ]

    timeline = ReportingService().timeline(projects)

    assert timeline.window_start == date(2024, 2, 1)
    assert timeline.window_end == date(2024, 4, 30)
    assert timeline.total_days == 90
    assert [(m.month, m.days) for m in timeline.months] == [(2, 29), (3, 31), (4, 30)]
    assert [r.project.id for r in timeline.rows] == ["early", "late"]
    assert (timeline.rows[0].offset_days, timeline.rows[0].duration_days) == (9, 25)
    assert (timeline.rows[1].offset_days, timeline.rows[1].duration_days) == (29, 51)


def test_timeline_spans_year_end(make_project):
    timeline = ReportingService().timeline(
        [make_project(start_date=date(2023, 12, 20), deadline=date(2024, 1, 10))]
    )
    assert [(m.year, m.month) for m in timeline.months] == [(2023, 12), (2024, 1)]


def test_timeline_skips_undated_projects(uow, make_project):
    _seed(uow, make_project(start_date=None, deadline=None))

    timeline = GetTimelineUseCase().execute(uow)

    assert timeline.rows == []
    assert timeline.window_start is None
    assert timeline.total_days == 0


def test_deadline_before_start_lasts_one_day(make_project):
    timeline = ReportingService().timeline(
        [make_project(start_date=date(2024, 5, 10), deadline=date(2024, 5, 1))]
    )
    assert timeline.rows[0].duration_days == 1


# ---------------------------------------------------------------------------
# Student messages
# ---------------------------------------------------------------------------

def test_arabic_student_message(make_project):
    project = make_project(
        status=ProjectStatus.IN_PROGRESS,
        github_link="https://github.com/sara/lib",
        update_log=[
            UpdateLogEntry(text="older", timestamp=datetime(2024, 8, 1, tzinfo=timezone.utc)),
            UpdateLogEntry(text="Finished login", timestamp=datetime(2024, 8, 10, tzinfo=timezone.utc)),
        ],
    )

    message = StudentMessageService(sender_name="Eng. Khaled").compose(project, Language.ARABIC)

    assert message.startswith("👋 مرحباً Sara Ahmed،\n🚀 تحديث بخصوص مشروعك \"Library System\"")
    assert "🔗 رابط GitHub: https://github.com/sara/lib" in message
    assert 'آخر تحديث مسجل: "Finished login"' in message
    assert "بالتوفيق،\nEng. Khaled" in message
    # Plain text: nothing is escaped.
    assert "\\." not in message


def test_persian_student_message_without_github(make_project):
    message = StudentMessageService().compose(make_project(), Language.PERSIAN)
    assert message.startswith("👋 سلام Sara Ahmed،\n✅ پروژه شما با موفقیت ثبت شد!")
    assert "گیت‌هاب:" not in message


def test_student_message_uses_localized_technology(make_project):
    project = make_project(technology=Technology.WEB_APP)

    arabic = StudentMessageService().compose(project, Language.ARABIC)
    persian = StudentMessageService().compose(project, Language.PERSIAN)

    assert "🔧 التقنية: تطبيق ويب" in arabic
    assert "🔧 تکنولوژی: اپلیکیشن وب" in persian
    assert "WebApp" not in arabic


def test_english_student_message_is_rejected(make_project):
    with pytest.raises(ValueError):
        StudentMessageService().compose(make_project(), Language.ENGLISH)


def test_share_links(uow, make_project):
    _seed(uow, make_project(whatsapp_number="+20 100 123", telegram_username="@sara_dev"))

    result = ComposeStudentMessageUseCase(sender_name="").execute(
        ComposeStudentMessageCommand("proj-1", Language.ARABIC), uow
    )

    assert result.whatsapp_url == f"https://wa.me/20100123?text={quote(result.message, safe='')}"
    assert result.telegram_url == "https://t.me/sara_dev"


def test_share_links_absent_without_contacts(uow, make_project):
    _seed(uow, make_project())
    result = ComposeStudentMessageUseCase().execute(ComposeStudentMessageCommand("proj-1"), uow)
    assert result.whatsapp_url is None
    assert result.telegram_url is None


def test_student_message_language_error_is_a_validation_error(uow, make_project):
    _seed(uow, make_project())
    with pytest.raises(ValidationError):
        ComposeStudentMessageUseCase().execute(
            ComposeStudentMessageCommand("proj-1", Language.ENGLISH), uow
        )
