from unittest.mock import MagicMock

import pytest

from app.services.audit import AuditLogService, set_audit_service
from app.services.preferences import default_preferences, from_document, from_mapping


def test_defaults():
    preferences = default_preferences("teacher-1")

    assert preferences.dashboard_layout == "grid"
    assert preferences.default_student_view == "progress"
    assert preferences.custom_categories == ["Math", "Science", "English", "History"]
    assert preferences.primary_criteria["Excellent"] == 90


def test_from_mapping_parses_categories_and_flags():
    preferences = from_mapping(
        "teacher-1",
        {
            "dashboard_layout": "list",
            "notification_settings": {"email_updates": "off", "progress_alerts": "yes"},
            "custom_categories": "Art, Music,Art",
        },
    )

    assert preferences.dashboard_layout == "list"
    assert preferences.notification_settings == {
        "email_updates": False,
        "progress_alerts": True,
        "new_student_registrations": False,
    }
    assert preferences.custom_categories == ["Art", "Music"]


@pytest.mark.parametrize(
    "payload",
    [
        {"dashboard_layout": "cards"},
        {"default_student_view": "grades"},
        {"notification_settings": "all"},
        {"grade_templates": [{"name": "", "criteria": {"A": 90}}]},
        {"grade_templates": [{"name": "Strict", "criteria": {"A": "high"}}]},
        {"grade_templates": [{"name": "Strict", "criteria": {"A": 120}}]},
    ],
)
def test_from_mapping_rejects_invalid_values(payload):
    with pytest.raises(ValueError):
        from_mapping("teacher-1", payload)


def test_from_document_ignores_mongo_id():
    document = default_preferences("teacher-1").to_document()
    document["_id"] = "object-id"

    preferences = from_document(document)

    assert preferences.user_id == "teacher-1"
    assert preferences == default_preferences("teacher-1")


@pytest.fixture()
def preference_store(app, monkeypatch):
    monkeypatch.setenv("MONGODB_URI", "mongodb://localhost:27017")
    database = {"audit_logs": MagicMock(), "teacher_preferences": MagicMock()}
    database["teacher_preferences"].find_one.return_value = None
    service = AuditLogService("mongodb://localhost:27017")
    service.attach(database)
    set_audit_service(service)
    return database["teacher_preferences"]


def test_api_returns_defaults_without_storage(teacher_client, teacher):
    response = teacher_client.get("/api/teacher/preferences")

    assert response.status_code == 200
    assert response.get_json()["user_id"] == teacher
    assert response.get_json()["dashboard_layout"] == "grid"


def test_api_put_without_storage_returns_503(teacher_client):
    response = teacher_client.put("/api/teacher/preferences", json={"dashboard_layout": "list"})

    assert response.status_code == 503


def test_api_put_saves_preferences(teacher_client, teacher, preference_store):
    response = teacher_client.put("/api/teacher/preferences", json={"dashboard_layout": "list"})

    assert response.status_code == 200
    preference_store.replace_one.assert_called_once()
    query, document = preference_store.replace_one.call_args.args
    assert query == {"user_id": teacher}
    assert document["dashboard_layout"] == "list"
    assert preference_store.replace_one.call_args.kwargs == {"upsert": True}


def test_api_put_rejects_invalid_payload(teacher_client, preference_store):
    response = teacher_client.put("/api/teacher/preferences", json={"dashboard_layout": "cards"})

    assert response.status_code == 400
    preference_store.replace_one.assert_not_called()


def test_form_saves_grade_criteria(teacher_client, preference_store):
    response = teacher_client.post(
        "/teacher/preferences",
        data={
            "dashboard_layout": "list",
            "default_student_view": "classrooms",
            "email_updates": "on",
            "custom_categories": "Math, Art",
            "grade_template_name": "Strict",
            "grade_criteria": "A: 93\nB: 85\n",
        },
    )

    assert response.status_code == 302
    document = preference_store.replace_one.call_args.args[1]
    assert document["default_student_view"] == "classrooms"
    assert document["notification_settings"]["email_updates"] is True
    assert document["notification_settings"]["progress_alerts"] is False
    assert document["custom_categories"] == ["Math", "Art"]
    assert document["grade_templates"] == [{"name": "Strict", "criteria": {"A": 93.0, "B": 85.0}}]


def test_form_rejects_malformed_criteria(teacher_client, preference_store):
    response = teacher_client.post(
        "/teacher/preferences",
        data={"dashboard_layout": "grid", "default_student_view": "progress", "grade_criteria": "excellent"},
    )

    assert response.status_code == 200
    assert b"must look like" in response.data
    preference_store.replace_one.assert_not_called()


def test_saved_preferences_drive_dashboard_tab(teacher_client, teacher, preference_store):
    stored = from_mapping(teacher, {"default_student_view": "classrooms"}).to_document()
    preference_store.find_one.return_value = {"_id": "x", **stored}

    response = teacher_client.get("/teacher/dashboard")

    assert "Create New Classroom" in response.get_data(as_text=True)


def test_preferences_page_renders(teacher_client):
    response = teacher_client.get("/teacher/preferences")

    assert response.status_code == 200
    assert b"Excellent: 90" in response.data
