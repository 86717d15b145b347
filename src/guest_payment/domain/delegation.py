"""Operator delegation: an operator pays for an order as the customer.

REQUESTED -> STARTED -> (AUTO_RETURNED | MANUAL_RETURNED | EXPIRED)

The delegation record lives in the key/value store for a short TTL. Two
cookies (session token and return secret) tie the browser to it; a browser
without both cookies has no delegation, whoever is logged in.
"""

import hmac
import secrets
import time
from dataclasses import asdict, dataclass
from typing import Callable, Optional

import structlog

from guest_payment.domain.context import (
    PageKind,
    Redirect,
    RequestContext,
    SharedContext,
    add_query_arg,
    remove_query_arg,
)
from guest_payment.domain.exceptions import DelegationError
from guest_payment.domain.messages import ADMIN_PAY_PARAM

logger = structlog.get_logger(__name__)

RECORD_PREFIX = "gp_admin_pay_"
BLOCKED_STATUSES = frozenset({"auto-draft", "completed", "processing", "refunded"})

EXPIRED_MESSAGE = "This pay-for-customer session is invalid or has expired."
IDENTITY_MESSAGE = "The current login does not match this pay-for-customer session."


@dataclass(frozen=True)
class AdminPaySession:
    token: str
    admin_id: int
    customer_id: int
    order_id: int
    return_url: str
    return_secret: str
    created_at: int

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Optional["AdminPaySession"]:
        """Build a session from a stored record, or None if it is incomplete."""
        try:
            session = cls(
                token=str(data["token"]),
                admin_id=int(data["admin_id"]),
                customer_id=int(data["customer_id"]),
                order_id=int(data["order_id"]),
                return_url=str(data.get("return_url") or ""),
                return_secret=str(data["return_secret"]),
                created_at=int(data["created_at"]),
            )
        except (KeyError, TypeError, ValueError):
            return None

        if not (session.admin_id and session.customer_id and session.order_id and session.return_secret):
            return None
        return session


class OperatorDelegationController:
    """Start, enter and leave an operator's pay-for-customer session."""

    def __init__(self, shared: SharedContext, clock: Callable[[], float] = time.time):
        self.shared = shared
        self.settings = shared.settings
        self.clock = clock

    def _load(self, token: str) -> Optional[AdminPaySession]:
        if not token or not token.isalnum():
            return None
        data = self.shared.store.get(RECORD_PREFIX + token)
        if not data:
            return None
        return AdminPaySession.from_dict(data)

    def _require_operator(self, user_id: Optional[int]) -> None:
        user = self.shared.users.get(user_id) if user_id else None
        if user is None or not user.is_operator:
            raise DelegationError("You do not have permission to pay for customer orders.")

    def start(self, ctx: RequestContext, order_id: int) -> Redirect:
        """Create a delegation record and send the operator to the pay page.

        Raises:
            DelegationError: If the operator, order or customer is not eligible
        """
        operator_id = ctx.current_user_id()
        self._require_operator(operator_id)

        order = self.shared.orders.get(order_id)
        if order is None:
            raise DelegationError("Order not found.", status_code=404)
        if order.status in BLOCKED_STATUSES:
            raise DelegationError("This order is already paid or cannot be paid.", status_code=400)
        if not order.customer_id or self.shared.users.get(order.customer_id) is None:
            raise DelegationError("This order is not assigned to a customer.", status_code=400)

        session = AdminPaySession(
            token=secrets.token_hex(16),
            admin_id=operator_id,
            customer_id=order.customer_id,
            order_id=order_id,
            return_url=self.settings.admin_order_url(order_id),
            return_secret=secrets.token_hex(16),
            created_at=int(self.clock()),
        )
        self.shared.store.set(RECORD_PREFIX + session.token, session.to_dict(), self.settings.admin_pay_ttl_seconds)
        self.shared.orders.add_note(
            order_id,
            f"Operator #{operator_id} started paying on behalf of customer #{order.customer_id}.",
        )

        logger.info(
            "delegation_started",
            order_id=order_id,
            admin_id=operator_id,
            customer_id=order.customer_id,
        )
        return Redirect(add_query_arg(self.settings.pay_url(order_id), **{ADMIN_PAY_PARAM: session.token}))

    def begin_impersonation(self, ctx: RequestContext) -> Redirect:
        """Switch the operator's browser to the customer identity.

        Raises:
            DelegationError: If the record is missing or the caller is not its operator
        """
        token = ctx.query.get(ADMIN_PAY_PARAM, "")
        session = self._load(token)
        if session is None:
            raise DelegationError(EXPIRED_MESSAGE)

        current_user = ctx.current_user_id()
        if current_user != session.admin_id:
            logger.warning("delegation_replay_rejected", order_id=session.order_id, user_id=current_user)
            raise DelegationError(IDENTITY_MESSAGE)
        self._require_operator(current_user)

        ttl = self.settings.admin_pay_ttl_seconds
        secure = self.settings.cookie_secure
        samesite = "none" if secure else "lax"
        for name, value in (
            (self.settings.admin_pay_cookie, session.token),
            (self.settings.admin_pay_secret_cookie, session.return_secret),
        ):
            ctx.response.set_cookie(name, value, max_age=ttl, secure=secure, httponly=True, samesite=samesite)
            ctx.cookies[name] = value

        ctx.auth.clear_authentication()
        ctx.auth.authenticate_as(session.customer_id, persistent=False)

        logger.info(
            "delegation_impersonation_begun",
            order_id=session.order_id,
            admin_id=session.admin_id,
            customer_id=session.customer_id,
        )
        return Redirect(remove_query_arg(ctx.url, ADMIN_PAY_PARAM))

    def has_session_cookies(self, ctx: RequestContext) -> bool:
        return ctx.has_cookie(self.settings.admin_pay_cookie) or ctx.has_cookie(self.settings.admin_pay_secret_cookie)

    def active_session(self, ctx: RequestContext) -> Optional[AdminPaySession]:
        """Find the delegation bound to this browser, if any.

        Raises:
            DelegationError: If delegation state is present but does not verify
        """
        if not self.has_session_cookies(ctx):
            return None

        token = ctx.cookies.get(self.settings.admin_pay_cookie, "")
        secret = ctx.cookies.get(self.settings.admin_pay_secret_cookie, "")

        # Both cookies are required; stored state never substitutes for the secret
        session = self._load(token) if secret else None
        if session is None:
            raise DelegationError(EXPIRED_MESSAGE)
        if not hmac.compare_digest(session.return_secret, secret):
            logger.warning("delegation_secret_mismatch", order_id=session.order_id)
            raise DelegationError("This pay-for-customer session could not be verified.")
        return session

    def auto_return(self, ctx: RequestContext) -> Optional[Redirect]:
        """Restore the operator on the delegated order's confirmation page.

        Returns:
            Redirect to the return URL, or None if no delegation applies here
        """
        if ctx.page is not PageKind.ORDER_RECEIVED:
            return None

        session = self.active_session(ctx)
        if session is None or ctx.page_order_id != session.order_id:
            return None

        if ctx.current_user_id() != session.customer_id:
            raise DelegationError(IDENTITY_MESSAGE)

        return self._restore(
            ctx,
            session,
            "Payment completed by operator on behalf of the customer; operator session restored.",
        )

    def manual_return(self, ctx: RequestContext) -> Redirect:
        """Abandon the delegation and restore the operator regardless of payment progress."""
        session = self.active_session(ctx)
        if session is None:
            raise DelegationError("No active pay-for-customer session was found.", status_code=400)

        if ctx.current_user_id() not in (session.customer_id, session.admin_id):
            raise DelegationError(IDENTITY_MESSAGE)

        return self._restore(
            ctx,
            session,
            "Operator pay-for-customer session abandoned; operator session restored.",
        )

    def _restore(self, ctx: RequestContext, session: AdminPaySession, note: str) -> Redirect:
        admin = self.shared.users.get(session.admin_id)
        if admin is None or not admin.is_operator:
            self._clear(ctx, session)
            logger.error("delegation_operator_revoked", admin_id=session.admin_id)
            raise DelegationError("The operator account can no longer be restored.")

        self.shared.orders.add_note(session.order_id, note)
        ctx.auth.clear_authentication()
        ctx.auth.authenticate_as(session.admin_id, persistent=True)
        self._clear(ctx, session)

        logger.info("delegation_returned", order_id=session.order_id, admin_id=session.admin_id)
        return Redirect(session.return_url or self.settings.admin_order_url(session.order_id))

    def _clear(self, ctx: RequestContext, session: AdminPaySession) -> None:
        self.shared.store.delete(RECORD_PREFIX + session.token)
        for name in (self.settings.admin_pay_cookie, self.settings.admin_pay_secret_cookie):
            ctx.response.delete_cookie(name)
            ctx.cookies.pop(name, None)
