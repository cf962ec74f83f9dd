from __future__ import annotations

from typing import Optional

from config.settings import get_settings
from app.utils.retry import execute_with_retry
from models import get_profile, list_students as _list_students


class ProfileNotReadyError(LookupError):
    """Raised when the profile trigger has not produced a row yet."""


def fetch_profile(user_id: str, *, client=None) -> Optional[dict[str, object]]:
    """Return the profile row visible to the client, if any."""
    return get_profile(user_id, client=client)


def fetch_profile_with_retry(user_id: str, *, client=None) -> dict[str, object]:
    """Wait for the sign-up trigger to create the profile and return it."""
    settings = get_settings()

    def _load() -> dict[str, object]:
        profile = get_profile(user_id, client=client)
        if profile is None:
            raise ProfileNotReadyError(f"Profile for user {user_id} not found.")
        return profile

    return execute_with_retry(
        _load,
        max_attempts=max(1, settings.PROFILE_FETCH_RETRIES),
        base_delay=settings.PROFILE_FETCH_BACKOFF_BASE,
        cap_seconds=settings.PROFILE_FETCH_BACKOFF_CAP,
        retry_exceptions=(ProfileNotReadyError,),
    )


def list_students(*, client=None) -> list[dict[str, object]]:
    """Return student profiles; teachers see all, students only themselves."""
    return _list_students(client=client)
