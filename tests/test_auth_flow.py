from urllib.parse import urlparse

from supabase import PostgrestAPIError

from tests.helpers import login


def test_login_redirects_student_to_student_dashboard(client, student):
    response = login(client, "student1@example.com")

    assert response.status_code == 302
    assert urlparse(response.headers["Location"]).path == "/student/dashboard"


def test_login_redirects_teacher_to_teacher_dashboard(client, teacher):
    response = login(client, "teacher@example.com")

    assert response.status_code == 302
    assert urlparse(response.headers["Location"]).path == "/teacher/dashboard"


def test_login_rejects_invalid_credentials(client, student):
    response = login(client, "student1@example.com", "wrong-password")

    assert response.status_code == 200
    assert b"Invalid login credentials" in response.data
    with client.session_transaction() as sess:
        assert "sb_access_token" not in sess


def test_login_requires_email_and_password(client):
    response = client.post("/login", data={"email": "", "password": ""})

    assert response.status_code == 200
    assert b"Email is required." in response.data
    assert b"Password is required." in response.data


def test_login_stores_tokens_and_profile_in_session(client, backend, student):
    login(client, "student1@example.com")

    with client.session_transaction() as sess:
        assert backend.access_tokens[sess["sb_access_token"]] == student
        assert sess["profile"]["role"] == "student"
        assert sess["profile"]["email"] == "student1@example.com"


def test_signup_creates_account_and_signs_in(client, backend):
    response = client.post(
        "/signup",
        data={
            "first_name": "Nina",
            "last_name": "New",
            "email": "nina@example.com",
            "role": "teacher",
            "password": "secret12",
            "confirm_password": "secret12",
        },
    )

    assert response.status_code == 302
    assert urlparse(response.headers["Location"]).path == "/teacher/dashboard"
    profile = next(row for row in backend.tables["profiles"] if row["email"] == "nina@example.com")
    assert profile["role"] == "teacher"
    assert profile["full_name"] == "Nina New"


def test_signup_with_email_confirmation_redirects_to_login(client, backend):
    backend.require_email_confirmation = True

    response = client.post(
        "/signup",
        data={
            "first_name": "Cara",
            "last_name": "Confirm",
            "email": "cara@example.com",
            "role": "student",
            "password": "secret12",
            "confirm_password": "secret12",
        },
        follow_redirects=True,
    )

    assert response.status_code == 200
    assert b"Confirm your email address" in response.data
    assert backend.find_user("cara@example.com") is not None


def test_signup_profile_load_failure_redirects_to_login(client, backend):
    backend.fail_next = PostgrestAPIError(
        {"message": "boom", "code": "XX000", "hint": None, "details": None}
    )

    response = client.post(
        "/signup",
        data={
            "first_name": "Fay",
            "last_name": "Failure",
            "email": "fay@example.com",
            "role": "student",
            "password": "secret12",
            "confirm_password": "secret12",
        },
    )

    assert response.status_code == 302
    assert urlparse(response.headers["Location"]).path == "/login"
    assert backend.find_user("fay@example.com") is not None
    with client.session_transaction() as sess:
        assert "sb_access_token" not in sess


def test_signup_rejects_mismatched_passwords(client, backend):
    response = client.post(
        "/signup",
        data={
            "first_name": "Pat",
            "last_name": "Typo",
            "email": "pat@example.com",
            "role": "student",
            "password": "secret12",
            "confirm_password": "secret13",
        },
    )

    assert response.status_code == 200
    assert b"Passwords do not match." in response.data
    assert backend.find_user("pat@example.com") is None


def test_signup_rejects_short_password(client):
    response = client.post(
        "/signup",
        data={
            "first_name": "Sho",
            "last_name": "Rt",
            "email": "short@example.com",
            "role": "student",
            "password": "abc",
            "confirm_password": "abc",
        },
    )

    assert b"at least 6 characters" in response.data


def test_signup_reports_existing_account(client, student):
    response = client.post(
        "/signup",
        data={
            "first_name": "Alex",
            "last_name": "Again",
            "email": "student1@example.com",
            "role": "student",
            "password": "secret12",
            "confirm_password": "secret12",
        },
    )

    assert response.status_code == 200
    assert b"User already registered" in response.data


def test_logout_revokes_tokens_and_clears_session(student_client, backend):
    response = student_client.get("/logout")

    assert response.status_code == 302
    assert urlparse(response.headers["Location"]).path == "/login"
    assert backend.access_tokens == {}
    with student_client.session_transaction() as sess:
        assert "sb_access_token" not in sess
        assert "profile" not in sess

    follow_up = student_client.get("/student/dashboard")
    assert follow_up.status_code == 302
    assert urlparse(follow_up.headers["Location"]).path == "/login"


def test_expiring_token_is_refreshed_before_request(student_client, backend):
    with student_client.session_transaction() as sess:
        old_token = sess["sb_access_token"]
        sess["sb_expires_at"] = 0

    response = student_client.get("/api/student/dashboard")

    assert response.status_code == 200
    with student_client.session_transaction() as sess:
        assert sess["sb_access_token"] != old_token
        assert sess["sb_expires_at"] > 0


def test_rejected_refresh_signs_the_user_out(student_client):
    with student_client.session_transaction() as sess:
        sess["sb_expires_at"] = 0
        sess["sb_refresh_token"] = "refresh-unknown"

    response = student_client.get("/student/dashboard")

    assert response.status_code == 302
    assert urlparse(response.headers["Location"]).path == "/login"
    with student_client.session_transaction() as sess:
        assert "sb_access_token" not in sess


def test_missing_backend_configuration_returns_503(client, monkeypatch, student):
    monkeypatch.delenv("SUPABASE_ANON_KEY")

    response = client.post("/login", data={"email": "student1@example.com", "password": "password123"})

    assert response.status_code == 503
