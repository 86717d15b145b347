"""User-facing error codes and messages for guest payment redirects."""

ERROR_PARAM = "guest_payment_error"
SUCCESS_PARAM = "guest_payment_success"
TOKEN_PARAM = "guest_payment_token"
CART_KEY_PARAM = "gp_cart_key"
ADMIN_PAY_PARAM = "gp_admin_pay"

INVALID_TOKEN = "invalid_token"
EXPIRED = "expired"
RATE_LIMITED = "rate_limited"
CART_PREP_FAILED = "cart_prep_failed"
NO_USER_ID = "no_user_id"
ORDER_NOT_FOUND = "order_not_found"
RESTRICTED_PAGE = "restricted_page"

ERROR_MESSAGES = {
    INVALID_TOKEN: "The payment link is invalid or has already been used.",
    EXPIRED: "This payment link has expired. Please request a new one.",
    RATE_LIMITED: "Too many attempts. Please try again later.",
    CART_PREP_FAILED: "We could not prepare your cart for payment. Please contact the store.",
    NO_USER_ID: "This payment link is not associated with a customer account.",
    ORDER_NOT_FOUND: "The original order for this payment could not be found.",
    RESTRICTED_PAGE: "This page is not available during guest payment.",
}

ALREADY_PAID_MESSAGE = "This order has already been paid. Thank you!"
UNAVAILABLE_ITEMS_NOTICE = (
    "One or more unavailable items were removed from your cart. "
    "Please review your cart before checking out."
)
EMPTY_ORDER_NOTICE = "This order has no items to pay for."
DUPLICATE_ORDER_NOTICE = (
    "Your payment session no longer matches the original order. "
    "Please open the payment link again."
)
NO_AVAILABLE_ITEMS_NOTICE = "None of the items on this order can currently be added to your cart."
ITEM_UNAVAILABLE_NOTICE = "An item from your order is no longer available and was skipped."
ITEM_NEEDS_OPTION_NOTICE = (
    "An item from your order is missing its selected options and was skipped. "
    "Please contact the store."
)
ITEM_FAILED_NOTICE = "An item from your order could not be added to your cart."


def error_message(code: str) -> str:
    """Return the message for an error code, defaulting to the invalid-token text."""
    return ERROR_MESSAGES.get(code, ERROR_MESSAGES[INVALID_TOKEN])


def flag_notice(query: dict[str, str]) -> tuple[str, str] | None:
    """(message, level) for a redirect flag left in the query string, if any."""
    code = query.get(ERROR_PARAM)
    if code:
        return error_message(code), "error"
    if query.get(SUCCESS_PARAM):
        return ALREADY_PAID_MESSAGE, "success"
    return None
