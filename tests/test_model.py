from model import (
    STATUS_DETAILS,
    ChangeKind,
    ChangeSet,
    FieldChange,
    ItemChange,
    NotificationConfig,
    NotificationEvent,
    ProjectStatus,
)


def test_every_status_has_display_details():
    assert set(STATUS_DETAILS) == set(ProjectStatus)
    for details in STATUS_DETAILS.values():
        assert details.emoji
        assert details.color


def test_notification_config_defaults_to_all_events_enabled():
    config = NotificationConfig(token="t", chat_id="c")
    assert config.is_complete
    assert all(config.is_enabled(event) for event in NotificationEvent)


def test_missing_event_counts_as_enabled():
    config = NotificationConfig(token="t", chat_id="c", notifications={})
    assert config.is_enabled(NotificationEvent.DELETE)


def test_config_without_chat_id_is_incomplete():
    assert not NotificationConfig(token="t", chat_id="").is_complete


def test_change_set_summary_lines():
    change_set = ChangeSet(
        details=[FieldChange("name", "Old", "New"), FieldChange("description")],
        tasks=[
            ItemChange(ChangeKind.ADDED, "t1", "Design UI"),
            ItemChange(ChangeKind.TOGGLED, "t2", "Write tests", is_completed=True),
        ],
        attachments=[ItemChange(ChangeKind.DELETED, "a1", "report.pdf")],
        logs=[ItemChange(ChangeKind.ADDED, "l1", "Met the student")],
    )
    assert change_set.summary() == [
        "name: 'Old' -> 'New'",
        "description changed",
        "task added: Design UI",
        "task completed: Write tests",
        "attachment deleted: report.pdf",
        "progress note added: Met the student",
    ]


def test_empty_change_set():
    assert ChangeSet().is_empty
    assert not ChangeSet(logs=[ItemChange(ChangeKind.ADDED, "l1", "x")]).is_empty
