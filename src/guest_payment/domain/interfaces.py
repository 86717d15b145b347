"""Abstract collaborator interfaces used by the guest payment core.

The domain layer defines what it needs from the host (orders, users,
catalog, key/value storage, authentication, cart) and the infrastructure
layer implements it.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional

from guest_payment.domain.models import CartLine, Order, OrderKind, Product, User


class IOrderStore(ABC):
    """Order and subscription records, including the token meta fields."""

    @abstractmethod
    def get(self, order_id: int) -> Optional[Order]:
        """Load an order with its line items and meta, or None if missing."""
        pass

    @abstractmethod
    def find_by_meta(self, key: str, value: str, kind: OrderKind) -> Optional[Order]:
        """Find the first record of ``kind`` whose meta ``key`` equals ``value``."""
        pass

    @abstractmethod
    def save(self, order: Order) -> None:
        """Persist status, cart hash and meta atomically.

        Meta keys absent from ``order.meta`` are deleted.
        """
        pass

    @abstractmethod
    def add_note(self, order_id: int, note: str) -> None:
        pass


class IUserStore(ABC):
    """User records and the per-user marker meta."""

    @abstractmethod
    def get(self, user_id: int) -> Optional[User]:
        pass

    @abstractmethod
    def get_meta(self, user_id: int, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_meta(self, user_id: int, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete_meta(self, user_id: int, key: str) -> None:
        pass


class ICatalog(ABC):
    @abstractmethod
    def get_product(self, product_id: int) -> Optional[Product]:
        """Return the product or variation, or None if it no longer exists."""
        pass


class IKeyValueStore(ABC):
    """Short-lived key/value storage with TTL checked at read time."""

    @abstractmethod
    def get(self, key: str) -> Any:
        """Return the stored value, or None if missing or expired."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def find_keys(self, prefix: str, value: Any) -> list[str]:
        """Return live keys starting with ``prefix`` whose value equals ``value``."""
        pass


class ISessionAuth(ABC):
    """Request-scoped authentication state of the host."""

    @abstractmethod
    def get_current_user_id(self) -> Optional[int]:
        pass

    @abstractmethod
    def authenticate_as(self, user_id: int, persistent: bool) -> None:
        """Authenticate the current request (and browser) as ``user_id``."""
        pass

    @abstractmethod
    def clear_authentication(self) -> None:
        pass


class ICartSession(ABC):
    """The live cart and checkout session of the current visitor."""

    @abstractmethod
    def empty(self) -> None:
        pass

    @abstractmethod
    def add_line(
        self,
        product_id: int,
        variation_id: int,
        quantity: int,
        custom_price: Optional[Decimal] = None,
        variation_attributes: Optional[dict[str, str]] = None,
        item_data: Optional[dict[str, str]] = None,
        bypass_availability: bool = False,
    ) -> Optional[str]:
        """Add a line through the regular add-to-cart path.

        ``bypass_availability`` skips the purchasable and stock checks, for
        lines of an order that is already owed.

        Returns:
            The new line key, or None if the cart rejected the line
        """
        pass

    @abstractmethod
    def get_lines(self) -> list[CartLine]:
        pass

    @abstractmethod
    def set_lines(self, lines: list[CartLine]) -> None:
        pass

    @abstractmethod
    def remove_line(self, key: str) -> None:
        pass

    @abstractmethod
    def recompute_totals(self) -> None:
        pass

    @abstractmethod
    def get_line_count(self) -> int:
        pass

    @abstractmethod
    def compute_hash(self) -> str:
        """Fingerprint of the cart contents, compared with an order's cart hash."""
        pass

    @abstractmethod
    def get_awaiting_order_id(self) -> Optional[int]:
        """In-flight order marker of the checkout pipeline."""
        pass

    @abstractmethod
    def set_awaiting_order_id(self, order_id: Optional[int]) -> None:
        pass

    @abstractmethod
    def persist(self) -> None:
        """Write the session state once."""
        pass


class IPaymentNotifier(ABC):
    """Outbound delivery of payment links."""

    @abstractmethod
    def send_payment_email(self, order: Order, email: str, link: str) -> bool:
        pass
