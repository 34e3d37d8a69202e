"""Admin sessions guarding the administrative scheduling endpoints."""

from __future__ import annotations

import secrets
import time
from threading import RLock
from typing import Callable, Optional

from scheduling_engine.utils.config import Settings, get_settings
from scheduling_engine.utils.logger import get_logger


logger = get_logger(__name__)


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminTokenNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidAdminTokenError(AuthenticationError):
    """Raised when provided token is invalid."""


class SessionExpiredError(InvalidAdminTokenError):
    """Raised when a bearer token outlived its session."""


class AuthService:
    """Trades ``ADMIN_TOKEN`` for expiring bearer sessions.

    When no admin token is configured the administrative endpoints are open
    and every bearer check passes.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock
        self._sessions: dict[str, float] = {}
        self._lock = RLock()

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.admin_token)

    def login(self, provided_admin_token: str) -> str:
        if not self._settings.admin_token:
            raise AdminTokenNotConfiguredError(
                "ADMIN_TOKEN is not configured. Set ADMIN_TOKEN in environment variables."
            )
        if not secrets.compare_digest(provided_admin_token, self._settings.admin_token):
            logger.warning("Admin login rejected")
            raise InvalidAdminTokenError("Invalid admin token")

        session_token = secrets.token_urlsafe(32)
        expires_at = self._clock() + self._settings.admin_session_ttl_seconds
        with self._lock:
            self._purge_expired()
            self._sessions[session_token] = expires_at
        logger.info("Admin session opened | active_sessions=%s", len(self._sessions))
        return session_token

    def logout(self, bearer_token: str) -> None:
        with self._lock:
            self._sessions.pop(bearer_token, None)

    def validate_bearer_token(self, bearer_token: str) -> None:
        if not self.auth_enabled:
            return
        with self._lock:
            matched = next(
                (
                    token
                    for token in self._sessions
                    if secrets.compare_digest(bearer_token, token)
                ),
                None,
            )
            if matched is None:
                raise InvalidAdminTokenError("Invalid bearer token. Login first.")
            if self._sessions[matched] <= self._clock():
                del self._sessions[matched]
                raise SessionExpiredError("Session expired. Login again.")

    def _purge_expired(self) -> None:
        now = self._clock()
        for token in [token for token, expires_at in self._sessions.items() if expires_at <= now]:
            del self._sessions[token]
