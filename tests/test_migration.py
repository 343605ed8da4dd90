from datetime import date, datetime, timezone

from model import (
    Attachment,
    ProjectStatus,
    Task,
    Technology,
    UpdateLogEntry,
)
from service import MigrationService, RecordSerializer

NOW = datetime(2024, 8, 15, 10, 30, tzinfo=timezone.utc)

migration = MigrationService()
serializer = RecordSerializer()


def test_progress_notes_become_single_log_entry():
    raw = {
        "id": "p1",
        "name": "Chat App",
        "status": "InProgress",
        "deadline": "2024-05-10",
        "progressNotes": "Finished the login screen",
    }
    project = migration.normalize(raw, now=NOW)

    assert len(project.update_log) == 1
    entry = project.update_log[0]
    assert entry.text == "Finished the login screen"
    assert entry.timestamp == NOW
    assert entry.id
    assert project.tasks == []
    # The migration pass skips start-date defaulting.
    assert project.start_date is None


def test_progress_notes_ignored_when_update_log_present():
    raw = {
        "id": "p1",
        "progressNotes": "legacy",
        "updateLog": [{"id": "l1", "text": "current", "timestamp": "2024-08-01T09:00:00Z"}],
    }
    project = migration.normalize(raw, now=NOW)
    assert [e.text for e in project.update_log] == ["current"]
    assert project.update_log[0].timestamp == datetime(2024, 8, 1, 9, 0, tzinfo=timezone.utc)


def test_missing_collections_default_to_empty_lists():
    project = migration.normalize({"id": "p1", "startDate": "2024-01-01"}, now=NOW)
    assert project.tasks == []
    assert project.update_log == []
    assert project.attachments == []


def test_start_date_defaults_to_month_before_deadline():
    project = migration.normalize({"id": "p1", "deadline": "2024-05-20"}, now=NOW)
    assert project.start_date == date(2024, 4, 20)


def test_start_date_month_overflow_rolls_forward():
    project = migration.normalize({"id": "p1", "deadline": "2024-03-31"}, now=NOW)
    assert project.start_date == date(2024, 3, 2)


def test_start_date_from_january_deadline_wraps_year():
    project = migration.normalize({"id": "p1", "deadline": "2024-01-15"}, now=NOW)
    assert project.start_date == date(2023, 12, 15)


def test_start_date_defaults_to_today_without_dates():
    project = migration.normalize({"id": "p1"}, now=NOW)
    assert project.start_date == date(2024, 8, 15)
    assert project.deadline is None


def test_malformed_deadline_becomes_absent():
    project = migration.normalize({"id": "p1", "deadline": "soon"}, now=NOW)
    assert project.deadline is None
    assert project.start_date == date(2024, 8, 15)


def test_legacy_arabic_labels_are_mapped():
    project = migration.normalize(
        {"id": "p1", "status": "قيد التنفيذ", "technology": "تطبيق ويب"}, now=NOW
    )
    assert project.status == ProjectStatus.IN_PROGRESS
    assert project.technology == Technology.WEB_APP


def test_unknown_enum_values_fall_back_to_first_member():
    project = migration.normalize({"id": "p1", "status": "Archived", "technology": "Rust"}, now=NOW)
    assert project.status == ProjectStatus.NOT_STARTED
    assert project.technology == Technology.C


def test_malformed_children_are_skipped():
    raw = {
        "id": "p1",
        "tasks": ["oops", {"id": "t1", "text": "Design UI", "isCompleted": True}],
        "attachments": [42, {"id": "a1", "name": "spec.pdf", "type": "application/pdf",
                             "size": "12", "dataUrl": "data:application/pdf;base64,AA=="}],
    }
    project = migration.normalize(raw, now=NOW)
    assert project.tasks == [Task(id="t1", text="Design UI", is_completed=True)]
    assert project.attachments[0].size == 12
    assert project.attachments[0].mime_type == "application/pdf"


def test_normalize_is_idempotent(make_project):
    once = migration.normalize({"id": "p1", "name": "X", "deadline": "2024-03-31"}, now=NOW)
    assert migration.normalize(once) == once
    assert migration.normalize(once) is not once

    project = make_project(
        tasks=[Task(id="t1", text="A")],
        update_log=[UpdateLogEntry(id="l1", text="note", timestamp=NOW)],
        attachments=[Attachment(id="a1", name="f.txt", mime_type="text/plain", size=2,
                                data_url="data:text/plain;base64,aGk=")],
        github_link="https://github.com/sara/library",
    )
    assert migration.normalize(serializer.to_record(project), now=NOW) == project


def test_serialized_record_uses_wire_names_and_drops_progress_notes():
    migrated = migration.normalize({"id": "p1", "progressNotes": "old"}, now=NOW)
    record = serializer.to_record(migrated)
    assert "progressNotes" not in record
    assert record["updateLog"][0]["text"] == "old"
    assert set(record) >= {"studentName", "startDate", "githubLink", "whatsappNumber", "telegramUsername"}


def test_non_list_store_normalizes_to_nothing():
    assert migration.normalize_all({"id": "p1"}) == []
