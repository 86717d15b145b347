"""Session impersonation: redeem a token as the order owner.

States: ANONYMOUS -> TOKEN_PRESENTED -> (AUTHENTICATED_RESTRICTED |
REJECTED) -> TORN_DOWN.

While the scoped marker cookie is present every page view is checked
against an allow-list. The owner's user record mirrors the original order
id and the validated token hash for the duration of the session.
"""

from typing import Optional

import structlog

from guest_payment.domain.cart import CartReconstructionEngine
from guest_payment.domain.checkout_guard import DuplicateOrderGuard
from guest_payment.domain.context import (
    CONTINUE,
    Outcome,
    PageKind,
    Redirect,
    RequestContext,
    SharedContext,
    add_query_arg,
    remove_query_arg,
)
from guest_payment.domain.messages import (
    CART_KEY_PARAM,
    CART_PREP_FAILED,
    ERROR_PARAM,
    EXPIRED,
    INVALID_TOKEN,
    NO_USER_ID,
    ORDER_NOT_FOUND,
    RATE_LIMITED,
    SUCCESS_PARAM,
    TOKEN_PARAM,
)
from guest_payment.domain.models import (
    USER_META_CART_KEY,
    USER_META_ORIGINAL_ORDER_ID,
    USER_META_TOKEN_VALIDATION,
    Order,
    ValidationStatus,
)
from guest_payment.domain.rate_limit import FailedAttemptLimiter
from guest_payment.domain.services import TokenLifecycleManager

logger = structlog.get_logger(__name__)

ALLOWED_PAGES = frozenset(
    {
        PageKind.CART,
        PageKind.CHECKOUT,
        PageKind.ORDER_PAY,
        PageKind.ORDER_RECEIVED,
        PageKind.AJAX,
        PageKind.REST,
    }
)

SESSION_USER_META_KEYS = (
    USER_META_TOKEN_VALIDATION,
    USER_META_ORIGINAL_ORDER_ID,
    USER_META_CART_KEY,
)


class SessionImpersonationController:
    """Authenticates token holders as the order owner and confines the session."""

    def __init__(
        self,
        shared: SharedContext,
        lifecycle: TokenLifecycleManager,
        rebuilder: CartReconstructionEngine,
        guard: DuplicateOrderGuard,
        limiter: FailedAttemptLimiter,
    ):
        self.shared = shared
        self.settings = shared.settings
        self.lifecycle = lifecycle
        self.rebuilder = rebuilder
        self.guard = guard
        self.limiter = limiter

    def is_active(self, ctx: RequestContext) -> bool:
        return ctx.has_cookie(self.settings.session_marker_cookie)

    def _home(self) -> str:
        return self.settings.url("/")

    def _error(self, code: str) -> Redirect:
        return Redirect(add_query_arg(self._home(), **{ERROR_PARAM: code}))

    def _set_marker(self, ctx: RequestContext) -> None:
        name = self.settings.session_marker_cookie
        ctx.response.set_cookie(
            name,
            "1",
            max_age=self.settings.session_marker_ttl_seconds,
            secure=self.settings.cookie_secure,
            httponly=True,
        )
        ctx.cookies[name] = "1"

    def _clear_marker(self, ctx: RequestContext) -> None:
        name = self.settings.session_marker_cookie
        ctx.response.delete_cookie(name)
        ctx.cookies.pop(name, None)

    def handle_request(self, ctx: RequestContext) -> Outcome:
        """Process a presented token, or restrict an active session."""
        raw_token = ctx.query.get(TOKEN_PARAM, "").strip()
        if raw_token:
            return self.consume_token(ctx, raw_token)

        if self.is_active(ctx):
            return self.restrict(ctx)

        return CONTINUE

    def consume_token(self, ctx: RequestContext, raw_token: str) -> Outcome:
        current_user = ctx.current_user_id()
        if current_user:
            # Re-process the link from a known anonymous state
            logger.info("token_presented_while_authenticated", user_id=current_user)
            if self.is_active(ctx):
                self.teardown(ctx, current_user)
            else:
                ctx.auth.clear_authentication()
            return Redirect(add_query_arg(self._home(), **{TOKEN_PARAM: raw_token}))

        client_ip = ctx.client_ip
        if self.limiter.is_blocked(client_ip):
            logger.warning("token_rejected_rate_limited", client_ip=client_ip)
            return self._error(RATE_LIMITED)

        validation = self.lifecycle.validate(raw_token)
        if validation.status is ValidationStatus.NOT_FOUND:
            self.limiter.record_failure(client_ip)
            return self._error(INVALID_TOKEN)
        if validation.status is ValidationStatus.EXPIRED_OR_TAMPERED:
            self.limiter.record_failure(client_ip)
            return self._error(EXPIRED)

        order = validation.order
        owner_id = order.owner_user_id
        if not owner_id or self.shared.users.get(owner_id) is None:
            logger.error("token_owner_missing", order_id=order.id, owner_id=owner_id)
            return self._error(NO_USER_ID)

        existing_id = self.guard.original_order_id(owner_id)
        if existing_id and existing_id != order.id:
            return self._redirect_to_existing(ctx, existing_id)

        self.limiter.reset(client_ip)
        return self._start_session(ctx, order, owner_id, raw_token)

    def _redirect_to_existing(self, ctx: RequestContext, existing_id: int) -> Redirect:
        existing = self.shared.orders.get(existing_id)
        if existing is None:
            logger.warning("original_order_missing", order_id=existing_id)
            return self._error(ORDER_NOT_FOUND)

        self.limiter.reset(ctx.client_ip)
        logger.info("token_redirected_to_original_order", order_id=existing_id, paid=existing.is_paid)
        if existing.is_paid:
            return Redirect(add_query_arg(self._home(), **{SUCCESS_PARAM: "1"}))
        return Redirect(self.settings.pay_url(existing_id))

    def _start_session(self, ctx: RequestContext, order: Order, owner_id: int, raw_token: str) -> Redirect:
        users = self.shared.users

        ctx.auth.authenticate_as(owner_id, persistent=False)
        users.set_meta(owner_id, USER_META_TOKEN_VALIDATION, self.lifecycle.lookup_hash(raw_token))
        users.set_meta(owner_id, USER_META_ORIGINAL_ORDER_ID, str(order.id))
        self._set_marker(ctx)

        # An owed order stays payable after its products are retired or sold out
        added = self.rebuilder.rebuild(order, ctx.cart, ctx.notices, bypass_availability=True)
        if not added or ctx.cart.get_line_count() == 0:
            logger.error("cart_preparation_failed", order_id=order.id, owner_id=owner_id)
            self.teardown(ctx, owner_id)
            return self._error(CART_PREP_FAILED)

        order.cart_hash = ctx.cart.compute_hash()
        self.shared.orders.save(order)
        ctx.cart.set_awaiting_order_id(order.id)
        ctx.cart.persist()

        cart_key = self.shared.handoffs.create(owner_id, ctx.cart.get_lines())
        users.set_meta(owner_id, USER_META_CART_KEY, cart_key)

        logger.info("impersonation_started", order_id=order.id, owner_id=owner_id)
        return Redirect(add_query_arg(self.settings.cart_url(), **{CART_KEY_PARAM: cart_key}))

    def restrict(self, ctx: RequestContext) -> Outcome:
        """Confine an active session to the allow-listed pages."""
        if ctx.current_user_id() is None:
            # Authentication lapsed; the marker alone grants nothing
            self._clear_marker(ctx)
            return CONTINUE

        if ctx.page in ALLOWED_PAGES:
            return CONTINUE

        if ctx.page is PageKind.ADMIN:
            return self.on_admin_access(ctx)

        logger.info("restricted_page_redirected", page=ctx.page.value)
        return Redirect(self.settings.cart_url())

    def on_admin_access(self, ctx: RequestContext) -> Outcome:
        """Admin-area access always ends the impersonated session."""
        if not self.is_active(ctx) or ctx.page is not PageKind.ADMIN:
            return CONTINUE

        user_id = ctx.current_user_id()
        logger.warning("impersonated_admin_access_blocked", user_id=user_id)
        self.teardown(ctx, user_id)
        return Redirect(self._home())

    def restore_cart_handoff(self, ctx: RequestContext) -> Outcome:
        """Rebuild the cart from a handoff key after the post-login redirect."""
        key = ctx.query.get(CART_KEY_PARAM, "")
        if not key or ctx.page not in (PageKind.CART, PageKind.CHECKOUT):
            return CONTINUE

        clean_url = remove_query_arg(ctx.url, CART_KEY_PARAM)
        user_id = ctx.current_user_id()
        owner_id = self.shared.handoffs.get_owner(key)
        if user_id is None or owner_id != user_id:
            logger.warning("cart_handoff_owner_mismatch", user_id=user_id)
            return Redirect(clean_url)

        handoff = self.shared.handoffs.consume(key)
        if handoff is not None and ctx.cart.get_line_count() == 0:
            _, lines = handoff
            ctx.cart.set_lines(lines)
            ctx.cart.recompute_totals()
            ctx.cart.persist()
            logger.info("cart_handoff_restored", owner_id=user_id, line_count=len(lines))

        self.shared.users.delete_meta(user_id, USER_META_CART_KEY)
        return Redirect(clean_url)

    def on_order_paid(self, ctx: RequestContext, order_id: int) -> bool:
        """Tear down the session once the owner's order has been paid.

        Acts only when the paid order belongs to the session owner, so an
        unrelated concurrent request cannot end the session.
        """
        if not self.is_active(ctx):
            return False

        user_id = ctx.current_user_id()
        if not user_id:
            return False

        order = self.shared.orders.get(order_id)
        if order is None or user_id not in (order.customer_id, order.owner_user_id):
            logger.warning("payment_cleanup_skipped", order_id=order_id, user_id=user_id)
            return False

        original_id = self.guard.original_order_id(user_id)
        if original_id:
            self.lifecycle.invalidate(original_id)
            self.shared.orders.add_note(original_id, "Guest payment completed; payment link invalidated.")

        self.teardown(ctx, user_id)
        return True

    def on_logout(self, ctx: RequestContext) -> None:
        user_id = ctx.current_user_id()
        if self.is_active(ctx) or user_id:
            self.teardown(ctx, user_id)

    def teardown(self, ctx: RequestContext, owner_id: Optional[int]) -> None:
        """Return to a clean logged-out state."""
        ctx.auth.clear_authentication()
        self._clear_marker(ctx)

        if owner_id:
            for key in SESSION_USER_META_KEYS:
                self.shared.users.delete_meta(owner_id, key)
            self.shared.handoffs.sweep_owner(owner_id)

        logger.info("impersonation_torn_down", owner_id=owner_id)
