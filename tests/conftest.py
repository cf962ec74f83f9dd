from collections.abc import Iterator

import pytest

import models
from app import create_app
from app.services.audit import set_audit_service
from tests.fake_supabase import ANON_KEY, SERVICE_KEY, FakeSupabase
from tests.helpers import login


@pytest.fixture()
def backend(monkeypatch: pytest.MonkeyPatch) -> FakeSupabase:
    fake = FakeSupabase()
    monkeypatch.setattr(models, "_create_supabase_client", fake.create_client)
    return fake


@pytest.fixture()
def app(monkeypatch: pytest.MonkeyPatch, backend: FakeSupabase):
    # Keep a developer's .env from overriding the test environment
    monkeypatch.setattr("app._ENV_LOADED", True)

    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("SUPABASE_URL", "https://test-project.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", ANON_KEY)
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", SERVICE_KEY)
    monkeypatch.setenv("SESSION_COOKIE_SECURE", "false")
    monkeypatch.setenv("PROFILE_FETCH_RETRIES", "1")
    monkeypatch.delenv("MONGODB_URI", raising=False)

    set_audit_service(None)

    application = create_app()
    application.config.update(TESTING=True)

    yield application

    set_audit_service(None)
    models.reset_client()


@pytest.fixture()
def client(app) -> Iterator:
    with app.test_client() as client:
        yield client


@pytest.fixture()
def app_context(app):
    with app.app_context():
        yield


@pytest.fixture()
def teacher(backend: FakeSupabase) -> str:
    return backend.add_user("teacher@example.com", role="teacher", first_name="Tara", last_name="Teacher")


@pytest.fixture()
def student(backend: FakeSupabase) -> str:
    return backend.add_user("student1@example.com", role="student", first_name="Alex", last_name="Adams")


@pytest.fixture()
def other_student(backend: FakeSupabase) -> str:
    return backend.add_user("student2@example.com", role="student", first_name="Sam", last_name="Smith")


@pytest.fixture()
def teacher_client(client, teacher):
    response = login(client, "teacher@example.com")
    assert response.status_code == 302
    return client


@pytest.fixture()
def student_client(client, student):
    response = login(client, "student1@example.com")
    assert response.status_code == 302
    return client
