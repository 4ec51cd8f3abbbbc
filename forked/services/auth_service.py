"""Operator authentication for the admin-only endpoints."""

from __future__ import annotations

import secrets
import time
from threading import RLock
from typing import Callable, Optional

from forked.utils.config import Settings, get_settings
from forked.utils.logger import get_logger


logger = get_logger(__name__)


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminTokenNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidAdminTokenError(AuthenticationError):
    """Raised when provided token is invalid or its session expired."""


class AuthService:
    """Exchanges the admin token for expiring bearer sessions.

    When no admin token is configured the admin endpoints are open and
    ``login`` is refused.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock
        self._sessions: dict[str, float] = {}
        self._lock = RLock()

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.admin_token)

    def _expected_token(self) -> str:
        if not self._settings.admin_token:
            raise AdminTokenNotConfiguredError(
                "ADMIN_TOKEN is not configured. Set ADMIN_TOKEN in environment variables."
            )
        return self._settings.admin_token

    def login(self, provided_admin_token: str) -> str:
        expected = self._expected_token()
        if not secrets.compare_digest(provided_admin_token, expected):
            logger.warning("Admin login rejected")
            raise InvalidAdminTokenError("Invalid admin token")
        bearer = secrets.token_urlsafe(32)
        expires_at = self._clock() + self._settings.admin_session_ttl_seconds
        with self._lock:
            self._purge_expired()
            self._sessions[bearer] = expires_at
        logger.info("Admin session opened | active_sessions=%s", len(self._sessions))
        return bearer

    def logout(self, bearer_token: str) -> None:
        with self._lock:
            self._sessions.pop(bearer_token, None)

    def validate_bearer_token(self, bearer_token: str) -> None:
        if not self.auth_enabled:
            return
        with self._lock:
            self._purge_expired()
            if not self._sessions:
                raise InvalidAdminTokenError("No active session. Login first.")
            if not any(secrets.compare_digest(bearer_token, known) for known in self._sessions):
                raise InvalidAdminTokenError("Invalid or expired bearer token")

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [token for token, expires_at in self._sessions.items() if expires_at <= now]
        for token in expired:
            del self._sessions[token]
