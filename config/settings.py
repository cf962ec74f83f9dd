import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "off", "no"}


@dataclass(frozen=True)
class Settings:
    SECRET_KEY: str
    SUPABASE_URL: str | None
    SUPABASE_ANON_KEY: str | None
    SUPABASE_SERVICE_KEY: str | None
    DATABASE_URL: str | None
    MONGODB_URI: str | None
    MONGODB_DB_NAME: str
    MONGODB_TIMEOUT_MS: int
    AUDIT_LOG_ENABLED: bool
    MIN_PASSWORD_LENGTH: int
    PROFILE_FETCH_RETRIES: int
    PROFILE_FETCH_BACKOFF_BASE: float
    PROFILE_FETCH_BACKOFF_CAP: float
    TOKEN_REFRESH_MARGIN_SECONDS: int
    SESSION_COOKIE_SECURE: bool
    LOG_LEVEL: str


def get_settings() -> Settings:
    return Settings(
        SECRET_KEY=os.getenv("SECRET_KEY", "dev-insecure-key"),
        SUPABASE_URL=os.getenv("SUPABASE_URL"),
        SUPABASE_ANON_KEY=os.getenv("SUPABASE_ANON_KEY"),
        SUPABASE_SERVICE_KEY=os.getenv("SUPABASE_SERVICE_KEY"),
        DATABASE_URL=os.getenv("DATABASE_URL"),
        MONGODB_URI=os.getenv("MONGODB_URI"),
        MONGODB_DB_NAME=os.getenv("MONGODB_DB_NAME", "rls_guard_dog"),
        MONGODB_TIMEOUT_MS=int(os.getenv("MONGODB_TIMEOUT_MS", "5000")),
        AUDIT_LOG_ENABLED=_env_bool("AUDIT_LOG_ENABLED", True),
        MIN_PASSWORD_LENGTH=int(os.getenv("MIN_PASSWORD_LENGTH", "6")),
        PROFILE_FETCH_RETRIES=int(os.getenv("PROFILE_FETCH_RETRIES", "4")),
        PROFILE_FETCH_BACKOFF_BASE=float(os.getenv("PROFILE_FETCH_BACKOFF_BASE", "1.5")),
        PROFILE_FETCH_BACKOFF_CAP=float(os.getenv("PROFILE_FETCH_BACKOFF_CAP", "5")),
        TOKEN_REFRESH_MARGIN_SECONDS=int(os.getenv("TOKEN_REFRESH_MARGIN_SECONDS", "60")),
        SESSION_COOKIE_SECURE=_env_bool("SESSION_COOKIE_SECURE", True),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )
