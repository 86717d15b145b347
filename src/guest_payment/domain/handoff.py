"""Secure cart handoff: carries cart contents across a redirect.

The redirect URL only carries an opaque random key; the owner id and the
serialized cart live in the key/value store for a limited time.
"""

import secrets
import string
from typing import Optional

import structlog

from guest_payment.domain.interfaces import IKeyValueStore
from guest_payment.domain.models import CartLine

logger = structlog.get_logger(__name__)

MAP_PREFIX = "gp_map_"
CART_PREFIX = "gp_cart_"
KEY_LENGTH = 24
_KEY_ALPHABET = string.ascii_letters + string.digits


def generate_handoff_key(length: int = KEY_LENGTH) -> str:
    return "".join(secrets.choice(_KEY_ALPHABET) for _ in range(length))


class CartHandoffStore:
    """Time-boxed mapping from opaque keys to (owner, cart contents)."""

    def __init__(self, store: IKeyValueStore, ttl_seconds: int = 86400):
        self.store = store
        self.ttl_seconds = ttl_seconds

    def create(self, owner_id: int, lines: list[CartLine]) -> str:
        """Store cart lines for ``owner_id`` and return the handoff key."""
        key = generate_handoff_key()
        self.store.set(MAP_PREFIX + key, owner_id, self.ttl_seconds)
        self.store.set(
            CART_PREFIX + key,
            {"owner_id": owner_id, "lines": [line.to_dict() for line in lines]},
            self.ttl_seconds,
        )
        logger.info("cart_handoff_created", owner_id=owner_id, line_count=len(lines))
        return key

    def get_owner(self, key: str) -> Optional[int]:
        owner = self.store.get(MAP_PREFIX + key)
        return int(owner) if owner is not None else None

    def consume(self, key: str) -> Optional[tuple[int, list[CartLine]]]:
        """Return (owner_id, lines) for a key and delete the handoff.

        Returns None if the key is unknown or expired.
        """
        if not key or not key.isalnum():
            return None

        payload = self.store.get(CART_PREFIX + key)
        self.delete(key)
        if not payload:
            return None

        lines = [CartLine.from_dict(item) for item in payload.get("lines", [])]
        return int(payload["owner_id"]), lines

    def delete(self, key: str) -> None:
        self.store.delete(MAP_PREFIX + key)
        self.store.delete(CART_PREFIX + key)

    def sweep_owner(self, owner_id: int) -> int:
        """Delete every handoff mapped to ``owner_id``.

        Returns:
            Number of handoffs removed
        """
        keys = self.store.find_keys(MAP_PREFIX, owner_id)
        for map_key in keys:
            self.delete(map_key[len(MAP_PREFIX):])

        if keys:
            logger.info("cart_handoffs_swept", owner_id=owner_id, count=len(keys))
        return len(keys)
