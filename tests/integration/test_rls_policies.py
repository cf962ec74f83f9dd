"""Live policy tests against a real Supabase project.

Run with ``RLS_INTEGRATION_TESTS=1`` and the Supabase variables from
``.env.example`` pointing at a project with the migrations applied.
"""

import os

import pytest

import models
from app.services.rls_checks import RlsCheckRunner

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        os.getenv("RLS_INTEGRATION_TESTS") != "1"
        or not os.getenv("SUPABASE_URL")
        or not os.getenv("SUPABASE_ANON_KEY"),
        reason="Set RLS_INTEGRATION_TESTS=1 with Supabase credentials to run live policy tests",
    ),
]


@pytest.fixture()
def live_runner():
    models.reset_client()
    runner = RlsCheckRunner()
    yield runner
    runner.cleanup()


def test_policy_suite_passes(live_runner):
    suite = live_runner.run_policy_suite()

    failures = [(result.name, result.error) for result in suite.results if not result.passed]
    assert failures == []


def test_auth_suite_passes(live_runner):
    suite = live_runner.run_auth_suite()

    failures = [(result.name, result.error) for result in suite.results if not result.passed]
    assert failures == []


def test_anonymous_client_sees_no_rows():
    models.reset_client()
    client = models.new_client()

    assert models.list_progress(client=client) == []
    assert models.list_classrooms(client=client) == []
