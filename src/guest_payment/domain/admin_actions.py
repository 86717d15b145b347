"""Operator-facing token actions: generate, send, resend and invalidate links."""

import structlog

from guest_payment.domain.context import SharedContext
from guest_payment.domain.exceptions import AdminActionError
from guest_payment.domain.interfaces import IPaymentNotifier
from guest_payment.domain.models import GenerationMethod, Order
from guest_payment.domain.services import TokenLifecycleManager, is_valid_email

logger = structlog.get_logger(__name__)


class AdminActions:
    """Operator actions on an order's guest payment link.

    Every action requires the acting user to be an operator.
    """

    def __init__(self, shared: SharedContext, lifecycle: TokenLifecycleManager, notifier: IPaymentNotifier):
        self.shared = shared
        self.lifecycle = lifecycle
        self.notifier = notifier

    def _require_operator(self, operator_id: int | None) -> None:
        user = self.shared.users.get(operator_id) if operator_id else None
        if user is None or not user.is_operator:
            raise AdminActionError("Operator privileges are required.", status_code=403)

    def _require_order(self, order_id: int) -> Order:
        order = self.shared.orders.get(order_id)
        if order is None:
            raise AdminActionError("Order not found.", status_code=404)
        return order

    def _send(self, order: Order, email: str, link: str) -> None:
        if not self.shared.settings.email_integration_enabled:
            raise AdminActionError("Payment email delivery is disabled.")
        if not self.notifier.send_payment_email(order, email, link):
            logger.error("payment_email_failed", order_id=order.id)
            raise AdminActionError("The payment link was created but the email could not be sent.", status_code=502)
        self.shared.orders.add_note(order.id, f"Guest payment link sent to {email}.")

    def generate_manual_link(self, operator_id: int | None, order_id: int) -> str:
        """Issue a link with no known payer and return it for manual sharing."""
        self._require_operator(operator_id)
        self._require_order(order_id)

        raw_token = self.lifecycle.issue(order_id, "", GenerationMethod.MANUAL)
        if raw_token is None:
            raise AdminActionError("Could not generate a payment link for this order.")

        logger.info("manual_link_generated", order_id=order_id, operator_id=operator_id)
        return self.lifecycle.build_payment_link(raw_token)

    def generate_and_send(self, operator_id: int | None, order_id: int, email: str) -> str:
        """Issue a link for ``email`` and deliver it."""
        self._require_operator(operator_id)
        email = (email or "").strip()
        if not is_valid_email(email):
            raise AdminActionError("A valid email address is required.")

        order = self._require_order(order_id)
        if not order.has_allowed_status(self.shared.settings):
            raise AdminActionError(f"Orders with status '{order.status}' cannot be paid by link.")
        if not self.shared.settings.email_integration_enabled:
            raise AdminActionError("Payment email delivery is disabled.")

        raw_token = self.lifecycle.issue(order_id, email, GenerationMethod.EMAIL)
        if raw_token is None:
            raise AdminActionError("Could not generate a payment link for this order.")

        link = self.lifecycle.build_payment_link(raw_token)
        self._send(order, email, link)
        logger.info("payment_link_sent", order_id=order_id, operator_id=operator_id)
        return link

    def resend(self, operator_id: int | None, order_id: int) -> str:
        """Send the current live link again to its recorded payer."""
        self._require_operator(operator_id)
        order = self._require_order(order_id)

        token = self.lifecycle.get_presentable_token(order_id)
        if token is None:
            raise AdminActionError("This order has no valid payment link to resend.")
        if not token.payer_email:
            raise AdminActionError("This payment link has no recorded payer email.")

        link = self.lifecycle.build_payment_link(token.raw_token)
        self._send(order, token.payer_email, link)
        logger.info("payment_link_resent", order_id=order_id, operator_id=operator_id)
        return link

    def invalidate(self, operator_id: int | None, order_id: int) -> None:
        self._require_operator(operator_id)
        self._require_order(order_id)

        if not self.lifecycle.invalidate(order_id):
            raise AdminActionError("The payment link could not be invalidated.", status_code=500)

        self.shared.orders.add_note(order_id, "Guest payment link invalidated by operator.")
        logger.info("payment_link_invalidated", order_id=order_id, operator_id=operator_id)
