from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Optional

from flask import Flask, jsonify, request, session
from flask_login import LoginManager, logout_user
from dotenv import load_dotenv

from config.settings import get_settings
from models import (
    AuthenticationError,
    SupabaseConfigurationError,
    User,
    bind_access_token,
    refresh_session,
    reset_client,
)

from .security import (
    ACCESS_TOKEN_KEY,
    EXPIRES_AT_KEY,
    REFRESH_TOKEN_KEY,
    clear_auth_session,
    session_user,
    update_tokens,
)

logger = logging.getLogger(__name__)

_ENV_LOADED = False


def _ensure_env_loaded() -> None:
    global _ENV_LOADED
    if _ENV_LOADED:
        return

    base_dir = Path(__file__).resolve().parent.parent
    env_path = base_dir / ".env"
    if env_path.exists():
        load_dotenv(env_path, override=True)
    else:
        load_dotenv(override=True)

    _ENV_LOADED = True


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


login_manager = LoginManager()
login_manager.login_view = "core.login"
login_manager.login_message_category = "info"
# Use "basic" instead of "strong" to avoid session invalidation behind load balancers
login_manager.session_protection = "basic"


@login_manager.user_loader
def load_user(user_id: str) -> Optional[User]:
    return session_user(user_id)


def create_app() -> Flask:
    _ensure_env_loaded()

    # Drop clients cached with credentials from a previous configuration
    reset_client()

    settings = get_settings()
    _configure_logging(settings.LOG_LEVEL)

    base_dir = os.path.dirname(os.path.dirname(__file__))
    template_dir = os.path.join(base_dir, "templates")
    static_dir = os.path.join(base_dir, "static")
    app = Flask(__name__, template_folder=template_dir, static_folder=static_dir)
    app.config["SECRET_KEY"] = settings.SECRET_KEY

    app.config["SESSION_COOKIE_SECURE"] = settings.SESSION_COOKIE_SECURE
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.config["PERMANENT_SESSION_LIFETIME"] = 86400 * 7

    login_manager.init_app(app)

    @app.before_request
    def bind_user_client():
        """Run this request's queries as the signed-in user, refreshing stale tokens."""
        access_token = session.get(ACCESS_TOKEN_KEY)
        if not access_token:
            return None

        expires_at = session.get(EXPIRES_AT_KEY)
        margin = settings.TOKEN_REFRESH_MARGIN_SECONDS
        if expires_at is not None and int(expires_at) - margin <= time.time():
            try:
                refreshed = refresh_session(session.get(REFRESH_TOKEN_KEY, ""))
            except AuthenticationError as exc:
                logger.info("Session refresh rejected, signing out: %s", exc)
                clear_auth_session()
                logout_user()
                return None
            update_tokens(refreshed)
            access_token = refreshed.access_token

        bind_access_token(access_token)
        return None

    @app.errorhandler(SupabaseConfigurationError)
    def backend_not_configured(exc: SupabaseConfigurationError):
        logger.error("Backend is not configured: %s", exc)
        if request.path.startswith("/api/"):
            return jsonify({"error": "Backend is not configured."}), 503
        return "Backend is not configured.", 503

    from .routes import bp as core_bp

    app.register_blueprint(core_bp)

    return app
