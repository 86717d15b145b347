"""Named pipeline stages invoked by the host at its extension points."""

from typing import Optional

import structlog

from guest_payment.domain.cart import CartGuard, CartReconstructionEngine
from guest_payment.domain.checkout_guard import DuplicateOrderGuard
from guest_payment.domain.context import (
    Continue,
    ErrorPage,
    Outcome,
    PageKind,
    RequestContext,
    SharedContext,
)
from guest_payment.domain.delegation import OperatorDelegationController
from guest_payment.domain.encryption import TokenCodec
from guest_payment.domain.exceptions import DelegationError
from guest_payment.domain.impersonation import SessionImpersonationController
from guest_payment.domain.messages import ADMIN_PAY_PARAM
from guest_payment.domain.rate_limit import FailedAttemptLimiter
from guest_payment.domain.services import TokenLifecycleManager

logger = structlog.get_logger(__name__)


class GuestPaymentPipeline:
    """Entry points for the host request, cart and checkout lifecycle."""

    def __init__(
        self,
        lifecycle: TokenLifecycleManager,
        impersonation: SessionImpersonationController,
        delegation: OperatorDelegationController,
        guard: DuplicateOrderGuard,
        cart_guard: CartGuard,
    ):
        self.lifecycle = lifecycle
        self.impersonation = impersonation
        self.delegation = delegation
        self.guard = guard
        self.cart_guard = cart_guard

    @classmethod
    def build(cls, shared: SharedContext, codec: TokenCodec) -> "GuestPaymentPipeline":
        """Wire every component from the shared dependencies."""
        lifecycle = TokenLifecycleManager(codec, shared.orders, shared.handoffs, shared.settings)
        guard = DuplicateOrderGuard(shared)
        impersonation = SessionImpersonationController(
            shared,
            lifecycle,
            CartReconstructionEngine(shared.catalog),
            guard,
            FailedAttemptLimiter.from_settings(shared.store, shared.settings),
        )
        return cls(
            lifecycle=lifecycle,
            impersonation=impersonation,
            delegation=OperatorDelegationController(shared),
            guard=guard,
            cart_guard=CartGuard(shared.catalog),
        )

    def on_request_start(self, ctx: RequestContext) -> Outcome:
        """Run the request-time stages in order; the first redirect or error wins."""
        try:
            if ctx.page is PageKind.ADMIN:
                outcome = self.impersonation.on_admin_access(ctx)
                if not isinstance(outcome, Continue):
                    return outcome

            if ctx.query.get(ADMIN_PAY_PARAM):
                return self.delegation.begin_impersonation(ctx)

            returned = self.delegation.auto_return(ctx)
            if returned is not None:
                return returned

        except DelegationError as e:
            logger.warning("delegation_request_rejected", page=ctx.page.value, reason=e.message)
            return ErrorPage(e.message, e.status_code)

        outcome = self.impersonation.handle_request(ctx)
        if not isinstance(outcome, Continue):
            return outcome

        return self.impersonation.restore_cart_handoff(ctx)

    def on_before_calculate_totals(self, ctx: RequestContext) -> int:
        if not self.impersonation.is_active(ctx):
            return 0
        return self.cart_guard.guard(ctx.cart, ctx.notices)

    def on_checkout_resolve_order(self, ctx: RequestContext, proposed_order_id: Optional[int]) -> Optional[int]:
        return self.guard.resolve_order(ctx, proposed_order_id)

    def on_checkout_validate(self, ctx: RequestContext, order_id: Optional[int] = None) -> None:
        """Checkout checkpoint.

        Without ``order_id`` the classic multi-step form is checked against
        the in-flight order marker; with it, the API-style form.

        Raises:
            CheckoutBlockedError: On any mismatch with the original order
        """
        if order_id is None:
            self.guard.validate_checkout(ctx)
        else:
            self.guard.validate_order(ctx, order_id)

    def on_order_paid(self, ctx: RequestContext, order_id: int) -> None:
        self.lifecycle.handle_payment_complete(order_id)
        self.impersonation.on_order_paid(ctx, order_id)

    def on_logout(self, ctx: RequestContext) -> None:
        self.impersonation.on_logout(ctx)
