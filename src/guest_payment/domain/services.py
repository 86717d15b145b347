"""Token lifecycle: issue, validate, present and invalidate order-bound tokens.

Per order the token moves NONE -> ISSUED -> (VALIDATED | EXPIRED |
INVALIDATED). VALIDATED is never stored; it is re-derived on every request
by lookup hash, status gate, decrypt-and-compare and expiry check.
"""

import hmac
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

import structlog

from guest_payment.config import Settings
from guest_payment.domain.context import add_query_arg
from guest_payment.domain.encryption import TokenCodec, generate_raw_token
from guest_payment.domain.exceptions import TokenError
from guest_payment.domain.handoff import CartHandoffStore
from guest_payment.domain.interfaces import IOrderStore
from guest_payment.domain.messages import TOKEN_PARAM
from guest_payment.domain.models import (
    CREDENTIAL_META_KEYS,
    META_GENERATION_METHOD,
    META_OWNER_USER_ID,
    META_PAYER_EMAIL,
    META_TOKEN_CREATED,
    META_TOKEN_ENCRYPTED,
    META_TOKEN_HASH,
    GenerationMethod,
    Order,
    OrderKind,
    PresentableToken,
    TokenValidation,
    ValidationStatus,
)

logger = structlog.get_logger(__name__)

SECONDS_PER_DAY = 86400
RAW_TOKEN_PATTERN = re.compile(r"^[0-9a-f]{64}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Subscriptions are searched before plain orders
LOOKUP_ORDER = (OrderKind.SUBSCRIPTION, OrderKind.ORDER)


def is_valid_email(value: str) -> bool:
    return bool(value) and EMAIL_PATTERN.match(value) is not None


def _parse_timestamp(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class Found:
    order: Order


@dataclass(frozen=True)
class NotFound:
    reason: str


LookupResult = Union[Found, NotFound]


class TokenLifecycleManager:
    """Issues, stores, looks up, validates and invalidates guest payment tokens."""

    def __init__(
        self,
        codec: TokenCodec,
        orders: IOrderStore,
        handoffs: CartHandoffStore,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize lifecycle manager.

        Args:
            codec: Token codec (configured cipher and lookup keys)
            orders: Order storage holding the token fields
            handoffs: Cart handoff store, swept on invalidation
            settings: Application settings (expiry, status allow-lists)
            clock: Source of the current epoch time
        """
        self.codec = codec
        self.orders = orders
        self.handoffs = handoffs
        self.settings = settings
        self.clock = clock

    @property
    def expiry_seconds(self) -> int:
        return max(1, self.settings.token_expiry_days) * SECONDS_PER_DAY

    def is_expired(self, created_at: int, now: Optional[float] = None) -> bool:
        """A token is valid while now <= created_at + expiry."""
        current = self.clock() if now is None else now
        return current > created_at + self.expiry_seconds

    def lookup_hash(self, raw_token: str) -> str:
        return self.codec.keyed_hash(raw_token)

    def build_payment_link(self, raw_token: str) -> str:
        return add_query_arg(self.settings.cart_url(), **{TOKEN_PARAM: raw_token})

    def issue(self, order_id: int, payer_email: str, method: GenerationMethod | str) -> Optional[str]:
        """Issue a new token for an order, replacing any previous one.

        Args:
            order_id: Order the token is bound to
            payer_email: Payer address; required for the email method
            method: Generation method ("email" or "manual")

        Returns:
            The raw 64 hex character token, or None on failure
        """
        try:
            method = GenerationMethod(method)
        except ValueError:
            logger.warning("token_issue_rejected", order_id=order_id, reason="unknown_method")
            return None

        email = (payer_email or "").strip()
        if method is GenerationMethod.EMAIL and not is_valid_email(email):
            logger.warning("token_issue_rejected", order_id=order_id, reason="invalid_email")
            return None
        if email and not is_valid_email(email):
            logger.warning("token_issue_rejected", order_id=order_id, reason="invalid_email")
            return None

        try:
            order = self.orders.get(order_id)
            if order is None:
                logger.warning("token_issue_rejected", order_id=order_id, reason="order_not_found")
                return None

            owner_id = order.owner_user_id
            if not owner_id:
                logger.error("token_issue_rejected", order_id=order_id, reason="no_owner")
                return None

            raw_token = generate_raw_token()
            encrypted = self.codec.encrypt(raw_token)
            if encrypted is None:
                raise TokenError("encryption_failed")
            token_hash = self.codec.keyed_hash(raw_token)

            # Invalidate-then-store in a single save
            self._clear_credentials(order)
            order.meta.update(
                {
                    META_TOKEN_ENCRYPTED: encrypted,
                    META_TOKEN_HASH: token_hash,
                    META_TOKEN_CREATED: str(int(self.clock())),
                    META_OWNER_USER_ID: str(owner_id),
                    META_PAYER_EMAIL: email,
                    META_GENERATION_METHOD: method.value,
                }
            )
            self.orders.save(order)

            stored = self.orders.get(order_id)
            if stored is None or stored.meta.get(META_TOKEN_HASH) != token_hash:
                raise TokenError("verification_mismatch")

            self.orders.add_note(order_id, f"Guest payment link generated ({method.value}).")

        except TokenError as e:
            logger.error("token_issue_failed", order_id=order_id, reason=str(e))
            return None

        logger.info("token_issued", order_id=order_id, owner_id=owner_id, method=method.value)
        return raw_token

    def _lookup(self, token_hash: str) -> LookupResult:
        for kind in LOOKUP_ORDER:
            order = self.orders.find_by_meta(META_TOKEN_HASH, token_hash, kind)
            if order is not None and order.has_allowed_status(self.settings):
                return Found(order)
        return NotFound("no_live_match")

    def validate(self, raw_token: str) -> TokenValidation:
        """Validate a raw token presented by a visitor.

        A lookup hash match is not proof of possession: the stored ciphertext
        must decrypt to exactly the presented value.

        Returns:
            TokenValidation with status FOUND (and the order), NOT_FOUND or
            EXPIRED_OR_TAMPERED
        """
        if not raw_token or not RAW_TOKEN_PATTERN.match(raw_token):
            return TokenValidation(ValidationStatus.NOT_FOUND)

        try:
            result = self._lookup(self.codec.keyed_hash(raw_token))
        except Exception as e:
            logger.error("token_lookup_failed", error=str(e))
            return TokenValidation(ValidationStatus.NOT_FOUND)

        if isinstance(result, NotFound):
            logger.warning("token_validation_failed", reason=result.reason)
            return TokenValidation(ValidationStatus.NOT_FOUND)

        order = result.order
        decrypted = self.codec.decrypt(order.meta.get(META_TOKEN_ENCRYPTED, ""))
        if decrypted is None or not hmac.compare_digest(decrypted, raw_token):
            logger.warning("token_validation_failed", order_id=order.id, reason="tampered")
            return TokenValidation(ValidationStatus.EXPIRED_OR_TAMPERED)

        created_at = _parse_timestamp(order.meta.get(META_TOKEN_CREATED))
        if created_at is None or self.is_expired(created_at):
            logger.warning("token_validation_failed", order_id=order.id, reason="expired")
            return TokenValidation(ValidationStatus.EXPIRED_OR_TAMPERED)

        logger.info("token_validated", order_id=order.id, kind=order.kind.value)
        return TokenValidation(ValidationStatus.FOUND, order)

    def _clear_credentials(self, order: Order) -> None:
        for key in CREDENTIAL_META_KEYS:
            order.meta.pop(key, None)

        owner_id = order.owner_user_id
        if owner_id:
            self.handoffs.sweep_owner(owner_id)

    def invalidate(self, order_id: int) -> bool:
        """Remove the token from an order.

        Idempotent: an order without token data is a successful no-op.

        Returns:
            False only if the order does not exist or storage failed
        """
        try:
            order = self.orders.get(order_id)
            if order is None:
                return False

            if not any(order.meta.get(key) for key in CREDENTIAL_META_KEYS):
                return True

            self._clear_credentials(order)
            self.orders.save(order)

            stored = self.orders.get(order_id)
            if stored is not None and stored.meta.get(META_TOKEN_HASH):
                logger.error("token_invalidation_failed", order_id=order_id, reason="still_present")
                return False

        except Exception as e:
            logger.error("token_invalidation_failed", order_id=order_id, error=str(e))
            return False

        logger.info("token_invalidated", order_id=order_id)
        return True

    def handle_payment_complete(self, order_id: int) -> bool:
        """Consume the token once its order has been paid."""
        return self.invalidate(order_id)

    def get_presentable_token(self, order_id: int) -> Optional[PresentableToken]:
        """Decrypt the stored token for display or resend.

        Returns None on any missing field, decryption failure or expiry.
        """
        try:
            order = self.orders.get(order_id)
        except Exception as e:
            logger.error("token_presentation_failed", order_id=order_id, error=str(e))
            return None

        if order is None:
            return None

        encrypted = order.meta.get(META_TOKEN_ENCRYPTED)
        created_at = _parse_timestamp(order.meta.get(META_TOKEN_CREATED))
        if not encrypted or created_at is None:
            return None

        raw_token = self.codec.decrypt(encrypted)
        if raw_token is None:
            logger.warning("token_presentation_failed", order_id=order_id, reason="decryption_failed")
            return None

        if self.is_expired(created_at):
            return None

        owner_id = order.owner_user_id
        if not owner_id:
            return None

        try:
            method = GenerationMethod(order.meta.get(META_GENERATION_METHOD) or GenerationMethod.EMAIL.value)
        except ValueError:
            return None

        email = order.meta.get(META_PAYER_EMAIL, "")
        if not email and method is not GenerationMethod.MANUAL:
            return None

        return PresentableToken(
            raw_token=raw_token,
            payer_email=email,
            owner_user_id=owner_id,
            created_at=created_at,
            method=method,
        )
