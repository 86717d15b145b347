"""FastAPI routes for operator guest payment actions.

- POST /admin/orders/{order_id}/guest-payment/manual-link: issue a link for manual sharing
- POST /admin/orders/{order_id}/guest-payment/send: issue a link and email it
- POST /admin/orders/{order_id}/guest-payment/resend: email the live link again
- POST /admin/orders/{order_id}/guest-payment/invalidate: revoke the live link
- POST /admin/orders/{order_id}/pay-for-customer: start an operator delegation
- POST /admin-pay/return: abandon a delegation and restore the operator
"""

import structlog
from fastapi import APIRouter, HTTPException
from fastapi.responses import Response

from guest_payment.api.adapter import apply_cookies, error_page, outcome_response
from guest_payment.api.dependencies import Actions, Context, Delegation, OperatorId
from guest_payment.api.models import (
    InvalidateLinkResponse,
    PaymentLinkResponse,
    SendPaymentLinkRequest,
)
from guest_payment.domain.context import Redirect
from guest_payment.domain.exceptions import AdminActionError, DelegationError

logger = structlog.get_logger(__name__)

router = APIRouter()


def _action_error(e: AdminActionError, order_id: int) -> HTTPException:
    logger.warning("admin_action_rejected", order_id=order_id, reason=e.message)
    return HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/admin/orders/{order_id}/guest-payment/manual-link", response_model=PaymentLinkResponse)
def generate_manual_link(order_id: int, operator_id: OperatorId, actions: Actions) -> PaymentLinkResponse:
    """Generate a payment link without a known payer."""
    try:
        link = actions.generate_manual_link(operator_id, order_id)
    except AdminActionError as e:
        raise _action_error(e, order_id) from e
    return PaymentLinkResponse(order_id=order_id, link=link)


@router.post("/admin/orders/{order_id}/guest-payment/send", response_model=PaymentLinkResponse)
def send_payment_link(
    order_id: int,
    body: SendPaymentLinkRequest,
    operator_id: OperatorId,
    actions: Actions,
) -> PaymentLinkResponse:
    """Generate a payment link for a payer and queue the payment email."""
    try:
        link = actions.generate_and_send(operator_id, order_id, body.email)
    except AdminActionError as e:
        raise _action_error(e, order_id) from e
    return PaymentLinkResponse(order_id=order_id, link=link, email=body.email.strip())


@router.post("/admin/orders/{order_id}/guest-payment/resend", response_model=PaymentLinkResponse)
def resend_payment_link(order_id: int, operator_id: OperatorId, actions: Actions) -> PaymentLinkResponse:
    try:
        link = actions.resend(operator_id, order_id)
    except AdminActionError as e:
        raise _action_error(e, order_id) from e
    return PaymentLinkResponse(order_id=order_id, link=link)


@router.post("/admin/orders/{order_id}/guest-payment/invalidate", response_model=InvalidateLinkResponse)
def invalidate_payment_link(order_id: int, operator_id: OperatorId, actions: Actions) -> InvalidateLinkResponse:
    try:
        actions.invalidate(operator_id, order_id)
    except AdminActionError as e:
        raise _action_error(e, order_id) from e
    return InvalidateLinkResponse(order_id=order_id, invalidated=True)


@router.post("/admin/orders/{order_id}/pay-for-customer")
def pay_for_customer(order_id: int, ctx: Context, delegation: Delegation) -> Response:
    """Start paying an order on the customer's behalf."""
    try:
        outcome = delegation.start(ctx, order_id)
    except DelegationError as e:
        logger.warning("delegation_start_rejected", order_id=order_id, reason=e.message)
        return apply_cookies(error_page(e.message, e.status_code), ctx.response)
    return outcome_response(Redirect(outcome.url, status_code=303), ctx.response)


@router.post("/admin-pay/return")
def return_to_operator(ctx: Context, delegation: Delegation) -> Response:
    """Abandon the current delegation and restore the operator identity."""
    try:
        outcome = delegation.manual_return(ctx)
    except DelegationError as e:
        logger.warning("delegation_return_rejected", reason=e.message)
        return apply_cookies(error_page(e.message, e.status_code), ctx.response)
    return outcome_response(Redirect(outcome.url, status_code=303), ctx.response)
