import copy
from datetime import date

from model import Attachment, ChangeKind, FieldChange, ProjectStatus, Task, UpdateLogEntry
from service import ChangeDiffService

diff_svc = ChangeDiffService()


def test_identical_snapshots_have_no_changes(make_project):
    project = make_project(tasks=[Task(id="t1", text="A")])
    assert diff_svc.diff(project, copy.deepcopy(project)).is_empty


def test_scalar_fields_follow_fixed_order(make_project):
    before = make_project()
    after = copy.deepcopy(before)
    after.status = ProjectStatus.IN_PROGRESS
    after.name = "Library System v2"
    after.deadline = date(2024, 9, 15)

    details = diff_svc.diff(before, after).details

    assert details == [
        FieldChange("name", "Library System", "Library System v2"),
        FieldChange("deadline", "2024-09-01", "2024-09-15"),
        FieldChange("status", "NotStarted", "InProgress"),
    ]


def test_description_change_carries_no_texts(make_project):
    before = make_project()
    after = copy.deepcopy(before)
    after.description = "Something else"
    assert diff_svc.diff(before, after).details == [FieldChange("description")]


def test_empty_optional_field_compares_as_empty_string(make_project):
    before = make_project()
    after = copy.deepcopy(before)
    after.github_link = "https://github.com/sara/library"
    change = diff_svc.diff(before, after).details[0]
    assert change == FieldChange("github_link", "", "https://github.com/sara/library")


def test_modified_and_toggled_task_yields_two_entries(make_project):
    before = make_project(tasks=[Task(id="t1", text="Design UI")])
    after = copy.deepcopy(before)
    after.tasks[0].text = "Design the UI"
    after.tasks[0].is_completed = True

    tasks = diff_svc.diff(before, after).tasks

    assert [(c.kind, c.text) for c in tasks] == [
        (ChangeKind.MODIFIED, "Design the UI"),
        (ChangeKind.TOGGLED, "Design the UI"),
    ]
    assert tasks[1].is_completed is True


def test_task_entries_follow_after_order_with_deletions_last(make_project):
    before = make_project(tasks=[
        Task(id="t1", text="Gone first"),
        Task(id="t2", text="Kept"),
        Task(id="t3", text="Gone second"),
    ])
    after = copy.deepcopy(before)
    after.tasks = [Task(id="t4", text="New"), Task(id="t2", text="Kept", is_completed=True)]

    tasks = diff_svc.diff(before, after).tasks

    assert [(c.kind, c.item_id) for c in tasks] == [
        (ChangeKind.ADDED, "t4"),
        (ChangeKind.TOGGLED, "t2"),
        (ChangeKind.DELETED, "t1"),
        (ChangeKind.DELETED, "t3"),
    ]
    assert tasks[2].text == "Gone first"


def test_attachments_added_and_deleted(make_project):
    before = make_project(attachments=[Attachment(id="a1", name="old.pdf")])
    after = copy.deepcopy(before)
    after.attachments = [Attachment(id="a2", name="new.png")]

    attachments = diff_svc.diff(before, after).attachments

    assert [(c.kind, c.text) for c in attachments] == [
        (ChangeKind.ADDED, "new.png"),
        (ChangeKind.DELETED, "old.pdf"),
    ]


def test_only_new_log_entries_are_reported(make_project):
    before = make_project(update_log=[UpdateLogEntry(id="l1", text="first")])
    after = copy.deepcopy(before)
    after.update_log.append(UpdateLogEntry(id="l2", text="second"))

    logs = diff_svc.diff(before, after).logs

    assert [(c.kind, c.text) for c in logs] == [(ChangeKind.ADDED, "second")]


def test_diff_does_not_mutate_inputs(make_project):
    before = make_project(tasks=[Task(id="t1", text="A")])
    after = copy.deepcopy(before)
    after.tasks.append(Task(id="t2", text="B"))
    before_copy, after_copy = copy.deepcopy(before), copy.deepcopy(after)

    diff_svc.diff(before, after)

    assert before == before_copy
    assert after == after_copy
