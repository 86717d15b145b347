"""Repository layer implementing the core's storage collaborators.

Each repository wraps a SQLAlchemy session. Writes are flushed
immediately; the surrounding unit of work commits once per request.
"""

import time
from decimal import Decimal
from typing import Any, Callable, Optional

import structlog
from sqlalchemy.orm import Session

from guest_payment.domain.interfaces import ICatalog, IKeyValueStore, IOrderStore, IUserStore
from guest_payment.domain.models import Order, OrderKind, OrderLineItem, Product, User
from guest_payment.infrastructure.models import (
    KeyValueEntry,
    OrderItemRecord,
    OrderMetaRecord,
    OrderNoteRecord,
    OrderRecord,
    ProductRecord,
    UserMetaRecord,
    UserRecord,
)

logger = structlog.get_logger(__name__)


class OrderRepository(IOrderStore):
    """Orders, their line items, meta (including token fields) and notes."""

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy database session
        """
        self.session = session

    def add(self, order: Order) -> Order:
        """Insert a new order with its items and meta.

        Returns:
            The stored order with its assigned id
        """
        record = OrderRecord(
            kind=order.kind.value,
            status=order.status,
            customer_id=order.customer_id,
            cart_hash=order.cart_hash,
        )
        if order.id:
            record.id = order.id
        record.items = [
            OrderItemRecord(
                item_type=item.item_type,
                name=item.name,
                product_id=item.product_id,
                variation_id=item.variation_id,
                quantity=item.quantity,
                total=item.total,
                variation_attributes=item.variation_attributes or None,
                item_meta=item.meta or None,
            )
            for item in order.items
        ]
        record.meta = [OrderMetaRecord(meta_key=k, meta_value=v) for k, v in order.meta.items()]

        self.session.add(record)
        self.session.flush()
        return self._to_domain_entity(record)

    def get(self, order_id: int) -> Optional[Order]:
        record = self.session.get(OrderRecord, order_id)
        if record is None:
            return None
        return self._to_domain_entity(record)

    def find_by_meta(self, key: str, value: str, kind: OrderKind) -> Optional[Order]:
        record = (
            self.session.query(OrderRecord)
            .join(OrderMetaRecord, OrderMetaRecord.order_id == OrderRecord.id)
            .filter(
                OrderMetaRecord.meta_key == key,
                OrderMetaRecord.meta_value == value,
                OrderRecord.kind == kind.value,
            )
            .order_by(OrderRecord.id)
            .first()
        )
        if record is None:
            return None
        return self._to_domain_entity(record)

    def save(self, order: Order) -> None:
        """Persist status, cart hash and the full meta set of an order.

        Raises:
            ValueError: If the order does not exist
        """
        record = self.session.get(OrderRecord, order.id)
        if record is None:
            raise ValueError(f"Order {order.id} does not exist")

        record.status = order.status
        record.cart_hash = order.cart_hash or ""

        existing = {meta.meta_key: meta for meta in record.meta}
        for key, meta in existing.items():
            if key not in order.meta:
                record.meta.remove(meta)
        for key, value in order.meta.items():
            if key in existing:
                existing[key].meta_value = value
            else:
                record.meta.append(OrderMetaRecord(meta_key=key, meta_value=value))

        self.session.flush()
        logger.debug("order_saved", order_id=order.id)

    def add_note(self, order_id: int, note: str) -> None:
        self.session.add(OrderNoteRecord(order_id=order_id, note=note))
        self.session.flush()

    def get_notes(self, order_id: int) -> list[str]:
        rows = (
            self.session.query(OrderNoteRecord)
            .filter(OrderNoteRecord.order_id == order_id)
            .order_by(OrderNoteRecord.id)
            .all()
        )
        return [row.note for row in rows]

    def set_status(self, order_id: int, status: str) -> None:
        record = self.session.get(OrderRecord, order_id)
        if record is None:
            raise ValueError(f"Order {order_id} does not exist")
        record.status = status
        self.session.flush()

    def _to_domain_entity(self, record: OrderRecord) -> Order:
        return Order(
            id=record.id,
            kind=OrderKind(record.kind),
            status=record.status,
            customer_id=record.customer_id,
            cart_hash=record.cart_hash or "",
            items=[
                OrderLineItem(
                    id=item.id,
                    item_type=item.item_type,
                    name=item.name,
                    product_id=item.product_id,
                    variation_id=item.variation_id,
                    quantity=item.quantity,
                    total=Decimal(item.total),
                    variation_attributes=dict(item.variation_attributes or {}),
                    meta=dict(item.item_meta or {}),
                )
                for item in record.items
            ],
            meta={meta.meta_key: meta.meta_value for meta in record.meta},
        )


class UserRepository(IUserStore):
    """Users and per-user meta."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, user: User) -> User:
        record = UserRecord(email=user.email, display_name=user.display_name, is_operator=user.is_operator)
        if user.id:
            record.id = user.id
        self.session.add(record)
        self.session.flush()
        return self._to_domain_entity(record)

    def get(self, user_id: int) -> Optional[User]:
        record = self.session.get(UserRecord, user_id)
        if record is None:
            return None
        return self._to_domain_entity(record)

    def _meta_record(self, user_id: int, key: str) -> Optional[UserMetaRecord]:
        return (
            self.session.query(UserMetaRecord)
            .filter(UserMetaRecord.user_id == user_id, UserMetaRecord.meta_key == key)
            .first()
        )

    def get_meta(self, user_id: int, key: str) -> Optional[str]:
        record = self._meta_record(user_id, key)
        return record.meta_value if record else None

    def set_meta(self, user_id: int, key: str, value: str) -> None:
        record = self._meta_record(user_id, key)
        if record is None:
            self.session.add(UserMetaRecord(user_id=user_id, meta_key=key, meta_value=value))
        else:
            record.meta_value = value
        self.session.flush()

    def delete_meta(self, user_id: int, key: str) -> None:
        record = self._meta_record(user_id, key)
        if record is not None:
            self.session.delete(record)
            self.session.flush()

    def _to_domain_entity(self, record: UserRecord) -> User:
        return User(
            id=record.id,
            email=record.email,
            display_name=record.display_name,
            is_operator=record.is_operator,
        )


class CatalogRepository(ICatalog):
    """Read access to products and variations; trashed products do not resolve."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, product: Product) -> Product:
        record = ProductRecord(
            parent_id=product.parent_id,
            product_type=product.product_type,
            name=product.name,
            price=product.price,
            purchasable=product.purchasable,
            in_stock=product.in_stock,
        )
        if product.id:
            record.id = product.id
        self.session.add(record)
        self.session.flush()
        return self._to_domain_entity(record)

    def trash(self, product_id: int) -> None:
        record = self.session.get(ProductRecord, product_id)
        if record is not None:
            record.status = "trash"
            self.session.flush()

    def get_product(self, product_id: int) -> Optional[Product]:
        if not product_id or product_id <= 0:
            return None
        record = self.session.get(ProductRecord, product_id)
        if record is None or record.status == "trash":
            return None
        return self._to_domain_entity(record)

    def _to_domain_entity(self, record: ProductRecord) -> Product:
        return Product(
            id=record.id,
            product_type=record.product_type,
            price=Decimal(record.price) if record.price is not None else None,
            parent_id=record.parent_id or 0,
            purchasable=record.purchasable,
            in_stock=record.in_stock,
            name=record.name,
        )


class KeyValueRepository(IKeyValueStore):
    """Key/value entries with lazy TTL expiry."""

    def __init__(self, session: Session, clock: Callable[[], float] = time.time):
        self.session = session
        self.clock = clock

    def _live_entry(self, key: str) -> Optional[KeyValueEntry]:
        entry = self.session.get(KeyValueEntry, key)
        if entry is None:
            return None
        if entry.expires_at <= int(self.clock()):
            self.session.delete(entry)
            self.session.flush()
            return None
        return entry

    def get(self, key: str) -> Any:
        entry = self._live_entry(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        expires_at = int(self.clock()) + ttl_seconds
        entry = self.session.get(KeyValueEntry, key)
        if entry is None:
            self.session.add(KeyValueEntry(key=key, value=value, expires_at=expires_at))
        else:
            entry.value = value
            entry.expires_at = expires_at
        self.session.flush()

    def delete(self, key: str) -> None:
        entry = self.session.get(KeyValueEntry, key)
        if entry is not None:
            self.session.delete(entry)
            self.session.flush()

    def find_keys(self, prefix: str, value: Any) -> list[str]:
        now = int(self.clock())
        entries = (
            self.session.query(KeyValueEntry)
            .filter(KeyValueEntry.key.startswith(prefix, autoescape=True), KeyValueEntry.expires_at > now)
            .all()
        )
        return [entry.key for entry in entries if entry.value == value]
