"""Failed validation attempt limiting per source address.

Counters live in the shared key/value store so they survive across
requests and decay by TTL. Each new failure restarts the window.
"""

import re

import structlog

from guest_payment.config import Settings
from guest_payment.domain.interfaces import IKeyValueStore

logger = structlog.get_logger(__name__)

KEY_PREFIX = "gp_failed_"


class FailedAttemptLimiter:
    """Track failed token validations by client IP."""

    def __init__(
        self,
        store: IKeyValueStore,
        max_attempts: int = 5,
        window_seconds: int = 900,
        trusted_prefixes: tuple[str, ...] | list[str] = (),
    ):
        self.store = store
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.trusted_prefixes = tuple(trusted_prefixes)

    @classmethod
    def from_settings(cls, store: IKeyValueStore, settings: Settings) -> "FailedAttemptLimiter":
        return cls(
            store,
            max_attempts=settings.rate_limit_max_failed_attempts,
            window_seconds=settings.rate_limit_window_seconds,
            trusted_prefixes=settings.rate_limit_trusted_prefixes,
        )

    def _key(self, client_ip: str) -> str:
        return KEY_PREFIX + re.sub(r"[^0-9A-Za-z]", "_", client_ip or "unknown")

    def is_trusted(self, client_ip: str) -> bool:
        return bool(client_ip) and client_ip.startswith(self.trusted_prefixes)

    def failed_attempts(self, client_ip: str) -> int:
        return int(self.store.get(self._key(client_ip)) or 0)

    def is_blocked(self, client_ip: str) -> bool:
        """Check whether validation should be refused without being attempted."""
        if self.is_trusted(client_ip):
            return False
        return self.failed_attempts(client_ip) >= self.max_attempts

    def record_failure(self, client_ip: str) -> int:
        if self.is_trusted(client_ip):
            return 0

        attempts = self.failed_attempts(client_ip) + 1
        self.store.set(self._key(client_ip), attempts, self.window_seconds)
        if attempts >= self.max_attempts:
            logger.warning("validation_rate_limit_reached", client_ip=client_ip, attempts=attempts)
        return attempts

    def reset(self, client_ip: str) -> None:
        self.store.delete(self._key(client_ip))
