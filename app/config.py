"""
Application Configuration.

Pydantic Settings model for the session core.  All configuration is
loaded from environment variables and ``.env`` files.  Inject an
``AppConfig`` instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import model_validator


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Backend ---
    API_BASE_URL: str = ""
    TOKEN_REFRESH_PATH: str = "/api/token/refresh/"
    PATIENT_LOGIN_PATH: str = "/users/patient/login/"
    NURSE_LOGIN_PATH: str = "/users/nurse/login/"
    LOGOUT_PATH: str = "/users/logout/"
    PASSWORD_RESET_PATH: str = "/users/password-reset/"
    CHANGE_PASSWORD_PATH: str = "/users/change-password/"
    DELETE_ACCOUNT_PATH: str = "/users/delete-account/"

    # --- Token refresh ---
    # Only the start-up exchange is bounded; the request client's own
    # refresh uses the HTTP client's default timeout.
    BOOTSTRAP_REFRESH_TIMEOUT_S: float = 10.0
    COALESCE_TOKEN_REFRESH: bool = True

    # --- Biometrics (patients only) ---
    BIOMETRIC_MAX_FAILED_ATTEMPTS: int = 3
    BIOMETRIC_LOCKOUT_SECONDS: int = 300
    BIOMETRIC_PREFERENCE_VERSION: str = "1.0"
    BIOMETRIC_PROMPT_MESSAGE: str = "Authenticate to access your care modules"

    # --- Secure storage ---
    SECURE_STORE_PATH: str = "secure_store.db"
    SECURE_STORE_SALT_PATH: str = str(Path.home() / ".session_core_salt")

    # --- Logging ---
    LOG_FILE: str = "session_core.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _validate_and_warn(self) -> "AppConfig":
        """Reject unusable limits and warn when the backend is unset.

        Pydantic silently falls back to defaults when ``.env`` is
        missing, so the warning is the only first-run signal an
        operator gets.
        """
        if self.BIOMETRIC_MAX_FAILED_ATTEMPTS < 1:
            raise ValueError("BIOMETRIC_MAX_FAILED_ATTEMPTS must be at least 1")
        if self.BIOMETRIC_LOCKOUT_SECONDS <= 0:
            raise ValueError("BIOMETRIC_LOCKOUT_SECONDS must be positive")
        if self.BOOTSTRAP_REFRESH_TIMEOUT_S <= 0:
            raise ValueError("BOOTSTRAP_REFRESH_TIMEOUT_S must be positive")

        _log = logging.getLogger("app.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "environment variables or defaults."
            )

        if not self.API_BASE_URL:
            _log.warning(
                "API_BASE_URL is empty; every backend call will fail "
                "until it is configured."
            )

        return self

    @property
    def lockout_window_ms(self) -> int:
        """Lockout window in epoch milliseconds, the unit stored on disk."""
        return self.BIOMETRIC_LOCKOUT_SECONDS * 1000


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    Uses a check-lock-check pattern so the fast path avoids the lock
    while first initialisation stays thread-safe.  Prefer constructor
    injection of ``AppConfig`` in new code.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
