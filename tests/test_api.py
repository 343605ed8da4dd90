import json

import settings

PROJECT = {
    "name": "Library System",
    "student_name": "Sara Ahmed",
    "technology": "Java",
    "start_date": "2024-07-01",
    "deadline": "2024-09-01",
    "description": "Manage books and members",
    "github_link": "https://github.com/sara/lib",
}

SETTINGS = {"token": "123:abc", "chat_id": "-100", "language": "en"}


def _create(client, **overrides):
    response = client.post("/api/v1/projects", json={**PROJECT, **overrides})
    assert response.status_code == 201
    return response.json()["data"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": "1.0.0"}


def test_create_and_get(client):
    created = _create(client)

    fetched = client.get(f"/api/v1/projects/{created['id']}").json()["data"]

    assert fetched["name"] == "Library System"
    assert fetched["status"] == "NotStarted"
    assert fetched["status_emoji"] == "⏸️"
    assert fetched["tasks"] == []
    assert "notice" not in client.get("/api/v1/projects").json()


def test_unknown_project_is_404(client):
    response = client.get("/api/v1/projects/missing")
    assert response.status_code == 404
    assert "missing" in response.json()["detail"]


def test_invalid_technology_is_422(client):
    response = client.post("/api/v1/projects", json={**PROJECT, "technology": "Rust"})
    assert response.status_code == 422


def test_blank_description_is_422(client):
    response = client.post("/api/v1/projects", json={**PROJECT, "description": "   "})
    assert response.status_code == 422


def test_task_added_notifies_bot(client, channel):
    assert client.put("/api/v1/notification-settings", json=SETTINGS).status_code == 200
    project = _create(client)

    response = client.post(f"/api/v1/projects/{project['id']}/tasks", json={"text": "Design UI"})

    assert response.status_code == 201
    texts = [m["text"] for m in channel.sent]
    assert len(texts) == 2
    assert texts[0].startswith("🌟 *New Project Created*")
    assert "➕ New task: Design UI" in texts[1]
    assert channel.sent[0]["actions"][0].url == "https://github.com/sara/lib"


def test_no_messages_without_settings(client, channel):
    _create(client)
    assert channel.sent == []


def test_task_lifecycle(client):
    project = _create(client)
    base = f"/api/v1/projects/{project['id']}/tasks"
    task = client.post(base, json={"text": "Design UI"}).json()["data"]

    edited = client.patch(f"{base}/{task['id']}", json={"text": "Design the UI"}).json()["data"]
    toggled = client.post(f"{base}/{task['id']}/toggle").json()["data"]
    deleted = client.delete(f"{base}/{task['id']}")

    assert edited["text"] == "Design the UI"
    assert toggled["is_completed"] is True
    assert deleted.status_code == 204
    assert client.get(f"/api/v1/projects/{project['id']}").json()["data"]["tasks"] == []


def test_update_returns_change_summary(client):
    project = _create(client)

    response = client.patch(
        f"/api/v1/projects/{project['id']}",
        json={"status": "InProgress", "tasks": [{"text": "Design UI"}]},
    )

    data = response.json()["data"]
    assert data["project"]["status"] == "InProgress"
    assert data["changes"] == ["status: 'NotStarted' -> 'InProgress'", "task added: Design UI"]


def test_status_endpoint(client):
    project = _create(client)
    response = client.patch(f"/api/v1/projects/{project['id']}/status", json={"status": "Delivered"})
    assert response.json()["data"]["status_color"]


def test_delete_project(client, channel):
    client.put("/api/v1/notification-settings", json=SETTINGS)
    project = _create(client)

    assert client.delete(f"/api/v1/projects/{project['id']}").status_code == 204
    assert client.get(f"/api/v1/projects/{project['id']}").status_code == 404
    assert channel.sent[-1]["text"].startswith("🗑️ *Project Deleted*")


def test_progress_update(client):
    project = _create(client)
    response = client.post(f"/api/v1/projects/{project['id']}/updates", json={"text": "Met the student"})
    assert response.status_code == 201
    listed = client.get("/api/v1/projects").json()["data"]
    assert listed[0]["latest_update"] == "Met the student"


def test_attachment_upload_and_download(client):
    project = _create(client)
    base = f"/api/v1/projects/{project['id']}/attachments"

    uploaded = client.post(base, files={"file": ("progress report.txt", b"hello", "text/plain")})
    assert uploaded.status_code == 201
    attachment = uploaded.json()["data"]
    assert attachment["size"] == 5

    download = client.get(f"{base}/{attachment['id']}")
    assert download.content == b"hello"
    assert download.headers["content-type"].startswith("text/plain")
    assert download.headers["content-disposition"].startswith("attachment; filename*=UTF-8''")

    assert client.delete(f"{base}/{attachment['id']}").status_code == 204


def test_backup_download_and_restore(client):
    _create(client)

    backup = client.get("/api/v1/backup")
    assert backup.status_code == 200
    assert "projects-backup-" in backup.headers["content-disposition"]
    records = json.loads(backup.content)
    records[0]["name"] = "Restored"

    restored = client.post(
        "/api/v1/backup/restore",
        files={"file": ("backup.json", json.dumps(records).encode("utf-8"), "application/json")},
    )

    assert restored.json()["data"] == {"restored": 1}
    assert client.get("/api/v1/projects").json()["data"][0]["name"] == "Restored"


def test_backup_of_nothing_is_422(client):
    assert client.get("/api/v1/backup").status_code == 422


def test_restore_with_bad_file_is_422(client):
    _create(client)

    response = client.post(
        "/api/v1/backup/restore",
        files={"file": ("backup.json", b'[{"id": "p1", "name": "X"}]', "application/json")},
    )

    assert response.status_code == 422
    assert len(client.get("/api/v1/projects").json()["data"]) == 1


def test_settings_round_trip(client):
    client.put("/api/v1/notification-settings", json={**SETTINGS, "notifications": {"onDelete": False}})

    data = client.get("/api/v1/notification-settings").json()["data"]

    assert data["is_complete"] is True
    assert data["language"] == "en"
    assert data["notifications"]["onDelete"] is False
    assert data["notifications"]["onAdd"] is True


def test_persian_bot_language_is_422(client):
    response = client.put("/api/v1/notification-settings", json={**SETTINGS, "language": "fa"})
    assert response.status_code == 422


def test_connection_test_endpoint(client, channel):
    response = client.post("/api/v1/notification-settings/test", json=SETTINGS)
    assert response.json()["data"]["success"] is True
    assert channel.sent[0]["chat_id"] == "-100"

    channel.fail = True
    response = client.post("/api/v1/notification-settings/test", json=SETTINGS)
    assert response.status_code == 200
    assert response.json()["data"]["success"] is False


def test_reports(client):
    _create(client)
    assert client.get("/api/v1/dashboard").json()["data"]["total_projects"] == 1
    assert client.get("/api/v1/students").json()["data"][0]["student_name"] == "Sara Ahmed"
    timeline = client.get("/api/v1/timeline").json()["data"]
    assert timeline["window_start"] == "2024-07-01"
    assert timeline["window_end"] == "2024-09-30"


def test_student_message_endpoint(client):
    project = _create(client, whatsapp_number="0100")

    response = client.get(f"/api/v1/projects/{project['id']}/student-message", params={"language": "fa"})

    data = response.json()["data"]
    assert data["language"] == "fa"
    assert data["message"].startswith("👋 سلام Sara Ahmed")
    assert data["whatsapp_url"].startswith("https://wa.me/0100?text=")

    english = client.get(f"/api/v1/projects/{project['id']}/student-message", params={"language": "en"})
    assert english.status_code == 422


def test_oversize_attachment_is_422(client, monkeypatch):
    monkeypatch.setattr(settings, "MAX_ATTACHMENT_BYTES", 4)
    project = _create(client)

    response = client.post(
        f"/api/v1/projects/{project['id']}/attachments",
        files={"file": ("report.txt", b"12345", "text/plain")},
    )

    assert response.status_code == 422
    assert "4 bytes" in response.json()["detail"]
    assert client.get(f"/api/v1/projects/{project['id']}").json()["data"]["attachments"] == []
