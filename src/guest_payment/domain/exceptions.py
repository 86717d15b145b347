"""Exception hierarchy for the guest payment core."""


class GuestPaymentError(Exception):
    """Base exception for guest payment errors."""

    pass


class ConfigurationError(GuestPaymentError):
    """Raised when the cipher key or method is missing or unusable.

    Fatal for the token lifecycle: nothing that needs the codec can be built.
    """

    pass


class TokenError(GuestPaymentError):
    """Raised when a token cannot be issued or stored."""

    pass


class CheckoutBlockedError(GuestPaymentError):
    """Raised to abort a checkout step that would fork the original order."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class DelegationError(GuestPaymentError):
    """Raised on any operator delegation integrity failure.

    Always surfaced as an explicit error page.
    """

    def __init__(self, message: str, status_code: int = 403):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AdminActionError(GuestPaymentError):
    """Raised when an operator token action cannot be completed."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
