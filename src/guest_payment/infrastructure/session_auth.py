"""Signed authentication cookie used as the host's session/auth collaborator.

Cookie value: ``<user_id>:<expires>:<hmac>`` where the HMAC-SHA256 covers
``<user_id>:<expires>`` under the configured auth secret.
"""

import hashlib
import hmac
import time
from typing import Callable, Optional

import structlog

from guest_payment.config import Settings
from guest_payment.domain.context import ResponseDirectives
from guest_payment.domain.exceptions import ConfigurationError
from guest_payment.domain.interfaces import ISessionAuth

logger = structlog.get_logger(__name__)

# Lifetime of a non-persistent login; the cookie itself is a session cookie
SESSION_LOGIN_SECONDS = 2 * 86400


def sign_auth_value(secret_key: str, user_id: int, expires: int) -> str:
    message = f"{user_id}:{expires}"
    signature = hmac.new(secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"{message}:{signature}"


def verify_auth_value(secret_key: str, value: str, now: float) -> Optional[int]:
    """Return the user id carried by a valid, unexpired cookie value."""
    try:
        user_part, expires_part, signature = value.split(":")
        user_id, expires = int(user_part), int(expires_part)
    except ValueError:
        return None

    expected = sign_auth_value(secret_key, user_id, expires).rsplit(":", 1)[1]
    if not hmac.compare_digest(expected, signature):
        logger.warning("auth_cookie_signature_invalid")
        return None
    if expires < now or user_id <= 0:
        return None
    return user_id


class SignedCookieAuth(ISessionAuth):
    """Request-scoped authentication state read from and written to a signed cookie."""

    def __init__(
        self,
        cookies: dict[str, str],
        response: ResponseDirectives,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ):
        if not settings.auth_secret_key:
            logger.error("auth_secret_key_missing")
            raise ConfigurationError("Authentication secret key is not configured")

        self.settings = settings
        self.response = response
        self.clock = clock
        self._user_id = verify_auth_value(
            settings.auth_secret_key, cookies.get(settings.auth_cookie_name, ""), clock()
        )

    def get_current_user_id(self) -> Optional[int]:
        return self._user_id

    def authenticate_as(self, user_id: int, persistent: bool) -> None:
        lifetime = self.settings.auth_cookie_max_age_seconds if persistent else SESSION_LOGIN_SECONDS
        value = sign_auth_value(self.settings.auth_secret_key, user_id, int(self.clock()) + lifetime)
        self.response.set_cookie(
            self.settings.auth_cookie_name,
            value,
            max_age=lifetime if persistent else None,
            secure=self.settings.cookie_secure,
            httponly=True,
        )
        self._user_id = user_id
        logger.info("authenticated", user_id=user_id, persistent=persistent)

    def clear_authentication(self) -> None:
        if self._user_id is not None:
            logger.info("authentication_cleared", user_id=self._user_id)
        self._user_id = None
        self.response.delete_cookie(self.settings.auth_cookie_name)
