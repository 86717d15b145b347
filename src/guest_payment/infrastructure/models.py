"""SQLAlchemy ORM models for the Guest Payment service."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from guest_payment.infrastructure.database import Base


class OrderRecord(Base):
    """
    Orders and subscription-like records.

    The guest payment token fields are stored as order meta so that the
    lookup hash can be queried through the meta index.
    """

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(
        String(20), nullable=False, default="order", comment="order or subscription"
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending", index=True)
    customer_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True, index=True
    )
    cart_hash: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )

    items: Mapped[list["OrderItemRecord"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", order_by="OrderItemRecord.id"
    )
    meta: Mapped[list["OrderMetaRecord"]] = relationship(
        back_populates="order", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("idx_orders_kind_status", "kind", "status"),)


class OrderItemRecord(Base):
    """Historical order line (products, fees, shipping)."""

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_type: Mapped[str] = mapped_column(String(20), nullable=False, default="line_item")
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    product_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    variation_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    variation_attributes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    item_meta: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    order: Mapped[OrderRecord] = relationship(back_populates="items")


class OrderMetaRecord(Base):
    """Scalar key/value meta attached to an order."""

    __tablename__ = "order_meta"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    meta_key: Mapped[str] = mapped_column(String(191), nullable=False)
    meta_value: Mapped[str] = mapped_column(Text, nullable=False, default="")

    order: Mapped[OrderRecord] = relationship(back_populates="meta")

    __table_args__ = (
        UniqueConstraint("order_id", "meta_key", name="uq_order_meta_key"),
        Index("idx_order_meta_lookup", "meta_key", "meta_value"),
    )


class OrderNoteRecord(Base):
    __tablename__ = "order_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    note: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )


class ProductRecord(Base):
    """Catalog products and variations (variations carry a parent_id)."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    parent_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    product_type: Mapped[str] = mapped_column(String(32), nullable=False, default="simple")
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    purchasable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    in_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="publish", comment="publish or trash"
    )


class UserRecord(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    display_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_operator: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class UserMetaRecord(Base):
    __tablename__ = "user_meta"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    meta_key: Mapped[str] = mapped_column(String(191), nullable=False)
    meta_value: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (UniqueConstraint("user_id", "meta_key", name="uq_user_meta_key"),)


class KeyValueEntry(Base):
    """
    Short-lived shared state: cart handoffs, delegation records,
    failed-attempt counters and session carts.

    Expiry is checked when an entry is read.
    """

    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(191), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    expires_at: Mapped[int] = mapped_column(
        BigInteger, nullable=False, index=True, comment="Expiry as epoch seconds"
    )


class OutboxMessage(Base):
    """
    Transactional outbox for payment emails.

    Rows are written in the same transaction as the token they carry and
    picked up by the mail delivery worker.
    """

    __tablename__ = "outbox"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    aggregate_id: Mapped[int] = mapped_column(Integer, nullable=False, comment="Order id")
    message_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )
    processed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    __table_args__ = (Index("idx_outbox_unprocessed", "created_at"),)
