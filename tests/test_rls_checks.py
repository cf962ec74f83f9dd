import pytest

from app.services.rls_checks import RlsCheckRunner


@pytest.fixture()
def runner(app):
    return RlsCheckRunner()


def test_all_checks_pass_against_policy_backend(runner, backend):
    suites = runner.run_all()

    assert [suite.name for suite in suites] == ["RLS Policy Checks", "Authentication Checks"]
    for suite in suites:
        assert suite.passed, [(result.name, result.error) for result in suite.results]
    names = [result.name for suite in suites for result in suite.results]
    assert names == [
        "Student can access own data",
        "Student data isolation",
        "Teacher can access all data",
        "User registration",
        "Profile creation trigger",
    ]


def test_temporary_accounts_are_removed(runner, backend, teacher):
    runner.run_all()

    assert list(backend.users) == [teacher]
    assert backend.tables["progress"] == []


def test_accounts_are_kept_without_service_key(runner, backend, monkeypatch):
    monkeypatch.delenv("SUPABASE_SERVICE_KEY")

    runner.run_all()

    assert len(backend.users) == 5


def test_leaking_reads_fail_isolation_check(runner, backend, monkeypatch):
    monkeypatch.setattr(backend, "can_see", lambda *args: True)

    suite = runner.run_policy_suite()

    results = {result.name: result for result in suite.results}
    assert results["Student can access own data"].passed
    assert not results["Student data isolation"].passed
    assert "read another student's progress" in results["Student data isolation"].error
    assert not suite.passed
    runner.cleanup()


def test_isolation_check_depends_on_own_data_check(runner, backend):
    runner._students.clear()

    result = runner._run("Student data isolation", runner._check_student_isolation)

    assert not result.passed
    assert "did not complete" in result.error


def test_teacher_check_fails_without_student_records(runner, backend):
    result = runner._run("Teacher can access all data", runner._check_teacher_all_data)

    assert not result.passed
    assert "created no records" in result.error
    assert backend.users == {}


def test_rls_checks_page_runs_suites(teacher_client):
    response = teacher_client.post("/teacher/rls-checks", follow_redirects=True)

    body = response.get_data(as_text=True)
    assert response.status_code == 200
    assert "All checks passed (5 checks completed)." in body
    assert body.count("PASS") == 5


def test_rls_checks_page_renders_empty(teacher_client):
    response = teacher_client.get("/teacher/rls-checks")

    assert response.status_code == 200
    assert b"Run Checks" in response.data
