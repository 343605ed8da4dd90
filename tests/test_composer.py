import copy

from model import (
    ActionLink,
    Language,
    NotificationEvent,
    ProjectStatus,
    Task,
    Technology,
)
from service import ChangeDiffService, MessageComposer, MessageContext

arabic = MessageComposer(Language.ARABIC)
english = MessageComposer(Language.ENGLISH)


def _detail_context(before, after):
    return MessageContext(change_set=ChangeDiffService().diff(before, after))


def test_create_message_escapes_user_values_once(make_project):
    project = make_project(name="v1.0_beta (final)", student_name="O'Neil-Smith")

    text = arabic.compose(NotificationEvent.CREATE, project)

    assert "🌟 *مشروع جديد تم إنشاؤه* 🌟" in text
    assert "v1\\.0\\_beta \\(final\\)" in text
    assert "O'Neil\\-Smith" in text
    assert "\\\\" not in text
    assert text.endswith("🚀 لتبدأ الرحلة\\!")


def test_create_message_uses_localized_technology(make_project):
    project = make_project(technology=Technology.WEB_APP)
    assert "تطبيق ويب" in arabic.compose(NotificationEvent.CREATE, project)
    assert "Web App" in english.compose(NotificationEvent.CREATE, project)


def test_create_message_shows_escaped_deadline(make_project):
    text = english.compose(NotificationEvent.CREATE, make_project())
    assert "*Deadline:* 2024\\-09\\-01" in text


def test_status_change_shows_both_statuses_with_emojis(make_project):
    project = make_project(status=ProjectStatus.IN_PROGRESS)

    text = english.compose(
        NotificationEvent.STATUS_CHANGE,
        project,
        MessageContext(original_status=ProjectStatus.NOT_STARTED),
    )

    assert "📊 *Project Status Update:* *Library System*" in text
    assert "from _Not Started_ ⏸️ to *In Progress* ⏳\\." in text


def test_arabic_status_change_uses_arabic_labels(make_project):
    project = make_project(status=ProjectStatus.DELIVERED)
    text = arabic.compose(
        NotificationEvent.STATUS_CHANGE,
        project,
        MessageContext(original_status=ProjectStatus.COMPLETED),
    )
    assert "_مكتمل_ ✅" in text
    assert "*تم التسليم* 🎉" in text


def test_delete_message_names_project_and_student(make_project):
    text = english.compose(NotificationEvent.DELETE, make_project())
    assert text.startswith("🗑️ *Project Deleted*")
    assert "*Project:* Library System" in text
    assert "*Student:* Sara Ahmed" in text
    assert text.endswith("_It will be missed\\._")


def test_empty_detail_update_yields_empty_message(make_project):
    project = make_project()
    context = _detail_context(project, copy.deepcopy(project))
    assert arabic.compose(NotificationEvent.DETAIL_UPDATE, project, context) == ""
    assert arabic.compose(NotificationEvent.DETAIL_UPDATE, project) == ""


def test_detail_update_lists_only_non_empty_sections(make_project):
    before = make_project()
    after = copy.deepcopy(before)
    after.tasks.append(Task(id="t1", text="Design UI"))

    text = english.compose(NotificationEvent.DETAIL_UPDATE, after, _detail_context(before, after))

    assert text.startswith("🔄 *Project Updated:* *Library System*")
    assert "*Task Updates:*\n➕ New task: Design UI" in text
    assert "*Core Details:*" not in text
    assert "*Attachments:*" not in text
    assert text.endswith("✨ Keep up the great work\\!")


def test_detail_update_renders_field_changes(make_project):
    before = make_project()
    after = copy.deepcopy(before)
    after.github_link = "https://github.com/sara/lib"
    after.status = ProjectStatus.COMPLETED
    after.description = "new"

    text = english.compose(NotificationEvent.DETAIL_UPDATE, after, _detail_context(before, after))

    assert "• *GitHub Link:* _empty_ ➡️ https://github\\.com/sara/lib" in text
    assert "• *Status:* Not Started ⏸️ ➡️ Completed ✅" in text
    assert "• *Description updated\\.*" in text


def test_toggled_task_lines(make_project):
    before = make_project(tasks=[Task(id="t1", text="A"), Task(id="t2", text="B", is_completed=True)])
    after = copy.deepcopy(before)
    after.tasks[0].is_completed = True
    after.tasks[1].is_completed = False

    text = english.compose(NotificationEvent.DETAIL_UPDATE, after, _detail_context(before, after))

    assert "✅ Task completed: A" in text
    assert "↩️ Task reopened: B" in text


def test_actions_for_contact_links(make_project):
    project = make_project(github_link="https://github.com/sara/lib", whatsapp_number="+20 100-123")

    actions = arabic.build_actions(NotificationEvent.CREATE, project)

    assert actions == [
        ActionLink(text="View on GitHub ↗️", url="https://github.com/sara/lib"),
        ActionLink(text="Chat on WhatsApp 💬", url="https://wa.me/20100123"),
    ]
    assert arabic.build_actions(NotificationEvent.DETAIL_UPDATE, project) == []


def test_no_actions_without_contact_details(make_project):
    assert english.build_actions(NotificationEvent.DELETE, make_project()) == []


def test_test_message_is_escaped():
    assert english.compose_test_message().endswith("works\\!")


def test_persian_bot_language_falls_back_to_arabic(make_project):
    text = MessageComposer(Language.PERSIAN).compose(NotificationEvent.DELETE, make_project())
    assert text.startswith("🗑️ *تم حذف المشروع*")
