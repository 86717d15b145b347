"""Guest payment links with token-gated session impersonation."""

__version__ = "0.1.0"
