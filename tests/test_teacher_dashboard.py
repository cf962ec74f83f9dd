import pytest


@pytest.fixture()
def roster(backend, student, other_student):
    backend.add_row("classrooms", class_name="Algebra I", grade="9", student_id=student)
    backend.add_row("classrooms", class_name="World History", student_id=other_student)
    backend.add_row("progress", student_id=student, topic="Fractions", status="completed", score=88)
    backend.add_row("progress", student_id=other_student, topic="Ancient Rome", status="pending")


def test_teacher_dashboard_shows_all_students(teacher_client, roster):
    response = teacher_client.get("/teacher/dashboard?tab=students")

    body = response.get_data(as_text=True)
    assert response.status_code == 200
    assert "Alex Adams" in body
    assert "Sam Smith" in body


def test_teacher_dashboard_defaults_to_progress_tab(teacher_client, roster):
    response = teacher_client.get("/teacher/dashboard")

    body = response.get_data(as_text=True)
    assert "Fractions" in body
    assert "Ancient Rome" in body
    assert "(Good)" in body


def test_teacher_dashboard_ignores_unknown_tab(teacher_client, roster):
    response = teacher_client.get("/teacher/dashboard?tab=bogus")

    assert response.status_code == 200
    assert "Create New Student" in response.get_data(as_text=True)


def test_teacher_dashboard_api_stats(teacher_client, roster):
    response = teacher_client.get("/api/teacher/dashboard")

    payload = response.get_json()
    assert payload["stats"] == {"students": 2, "classrooms": 2, "progress": 2, "completed": 1}
    names = {row["topic"]: row["student_name"] for row in payload["progress"]}
    assert names == {"Fractions": "Alex Adams", "Ancient Rome": "Sam Smith"}
    grades = {row["topic"]: row["grade_label"] for row in payload["progress"]}
    assert grades == {"Fractions": "Good", "Ancient Rome": None}


def test_teacher_creates_student_account(teacher_client, backend):
    response = teacher_client.post(
        "/teacher/students",
        data={
            "first_name": "Nora",
            "last_name": "Newcomer",
            "email": "nora@example.com",
            "password": "temp1234",
        },
        follow_redirects=True,
    )

    assert b"Student created successfully." in response.data
    user = backend.find_user("nora@example.com")
    assert user is not None
    assert backend.row("profiles", user["id"])["role"] == "student"


def test_teacher_student_form_validation(teacher_client, backend):
    response = teacher_client.post(
        "/teacher/students",
        data={"first_name": "", "last_name": "Only", "email": "x@example.com", "password": "1"},
        follow_redirects=True,
    )

    assert b"First name is required." in response.data
    assert b"Password must be at least 6 characters long." in response.data
    assert backend.find_user("x@example.com") is None


def test_teacher_manages_classrooms(teacher_client, backend, student):
    teacher_client.post(
        "/teacher/classrooms",
        data={"class_name": "Biology", "grade": "10", "student_id": student},
    )
    classroom = next(row for row in backend.tables["classrooms"] if row["class_name"] == "Biology")
    assert classroom["grade"] == "10"

    teacher_client.post(
        f"/teacher/classrooms/{classroom['id']}/edit",
        data={"class_name": "Advanced Biology", "grade": ""},
    )
    assert backend.row("classrooms", classroom["id"])["class_name"] == "Advanced Biology"
    assert backend.row("classrooms", classroom["id"])["grade"] is None

    response = teacher_client.post(
        f"/teacher/classrooms/{classroom['id']}/delete",
        follow_redirects=True,
    )
    assert b"Classroom deleted." in response.data
    assert backend.row("classrooms", classroom["id"]) is None


def test_teacher_classroom_requires_student(teacher_client, backend):
    response = teacher_client.post(
        "/teacher/classrooms",
        data={"class_name": "Orphan Class", "student_id": ""},
        follow_redirects=True,
    )

    assert b"Please select a student." in response.data
    assert backend.tables["classrooms"] == []


def test_teacher_manages_progress(teacher_client, backend, student):
    teacher_client.post(
        "/teacher/progress",
        data={"student_id": student, "topic": "Poetry", "status": "pending", "score": ""},
    )
    record = next(row for row in backend.tables["progress"] if row["topic"] == "Poetry")
    assert record["status"] == "pending"
    assert record["score"] is None

    teacher_client.post(
        f"/teacher/progress/{record['id']}/update",
        data={"status": "completed", "score": "91"},
    )
    updated = backend.row("progress", record["id"])
    assert updated["status"] == "completed"
    assert updated["score"] == 91.0

    response = teacher_client.post(f"/teacher/progress/{record['id']}/delete", follow_redirects=True)
    assert b"Progress record deleted." in response.data
    assert backend.row("progress", record["id"]) is None


def test_teacher_progress_rejects_out_of_range_score(teacher_client, backend, student):
    response = teacher_client.post(
        "/teacher/progress",
        data={"student_id": student, "topic": "Poetry", "status": "pending", "score": "140"},
        follow_redirects=True,
    )

    assert b"Score must be a number between 0 and 100." in response.data
    assert backend.tables["progress"] == []


def test_teacher_delete_of_missing_progress_flashes_error(teacher_client):
    response = teacher_client.post("/teacher/progress/missing-id/delete", follow_redirects=True)

    assert b"Progress record not found." in response.data
