import uuid
from enum import Enum
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import EmailStr
from sqlalchemy import DateTime, JSON, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel, Column, Relationship


def get_datetime_utc() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    """Order lifecycle states"""

    PENDING = "pending"  # Created at payment initialization, awaiting escrow
    CONFIRMED = "confirmed"  # Seller accepted the escrowed order
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class DeliveryStatus(str, Enum):
    NOT_SHIPPED = "not_shipped"
    PROCESSING = "processing"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"


class PayoutStatus(str, Enum):
    IN_ESCROW = "in_escrow"
    PROCESSING = "processing"  # Buyer confirmed delivery, hold released
    PAID = "paid"


class PaymentMethod(str, Enum):
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    CRYPTO = "crypto"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class HoldStatus(str, Enum):
    ACTIVE = "active"
    RELEASED = "released"
    DISPUTED = "disputed"


class NotificationType(str, Enum):
    ORDER_PLACED = "order_placed"
    ORDER_CONFIRMED = "order_confirmed"
    ORDER_SHIPPED = "order_shipped"
    ORDER_CANCELLED = "order_cancelled"
    DELIVERY_MARKED = "delivery_marked"
    DELIVERY_CONFIRMED = "delivery_confirmed"
    PAYMENT_FAILED = "payment_failed"
    REFUND_ISSUED = "refund_issued"
    PURCHASE = "purchase"
    REVIEW = "review"
    COMMENT = "comment"
    REMINDER = "reminder"


TERMINAL_ORDER_STATUSES = {OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value}


# PARTIES


class Buyer(SQLModel, table=True):
    __tablename__ = "buyers"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: str = Field(index=True, unique=True)  # Identity provider subject
    full_name: str | None = Field(default=None)
    email: str | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )


class Seller(SQLModel, table=True):
    __tablename__ = "sellers"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: str = Field(index=True, unique=True)
    brand_name: str | None = Field(default=None)
    email: str | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )


# CATALOG


class Listing(SQLModel, table=True):
    __tablename__ = "listings"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    seller_id: uuid.UUID = Field(foreign_key="sellers.id", index=True)
    title: str
    image: str | None = Field(default=None)
    price_cents: int
    currency: str = Field(default="NGN", max_length=3)
    created_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )


class ShippingRate(SQLModel, table=True):
    """Seller shipping fee; the most recently created active rate applies."""

    __tablename__ = "shipping_rates"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    seller_id: uuid.UUID = Field(foreign_key="sellers.id", index=True)
    amount_cents: int
    currency: str = Field(default="NGN", max_length=3)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )


# CART


class Cart(SQLModel, table=True):
    __tablename__ = "carts"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    buyer_id: uuid.UUID = Field(foreign_key="buyers.id", index=True)
    created_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )
    updated_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )

    items: list["CartItem"] = Relationship(back_populates="cart")


class CartItem(SQLModel, table=True):
    __tablename__ = "cart_items"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    cart_id: uuid.UUID = Field(foreign_key="carts.id", index=True)
    listing_id: uuid.UUID = Field(foreign_key="listings.id")
    quantity: int = Field(ge=1)
    # Frozen when the item was added; checkout never re-reads the live price
    unit_price_cents: int
    currency: str = Field(default="NGN", max_length=3)
    created_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )

    cart: Cart | None = Relationship(back_populates="items")


# ORDERS


class Order(SQLModel, table=True):
    __tablename__ = "orders"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    buyer_id: uuid.UUID = Field(foreign_key="buyers.id", index=True)
    seller_id: uuid.UUID = Field(foreign_key="sellers.id", index=True)
    listing_id: uuid.UUID = Field(foreign_key="listings.id")  # First item of the cart
    product_title: str | None = Field(default=None)
    quantity: int = Field(default=1)

    amount_cents: int
    currency: str = Field(default="NGN", max_length=3)
    payment_method: str

    customer_name: str
    customer_email: str
    customer_phone: str | None = Field(default=None)
    shipping_address: str | None = Field(default=None)

    order_status: str = Field(default=OrderStatus.PENDING.value, index=True)
    delivery_status: str = Field(default=DeliveryStatus.NOT_SHIPPED.value, index=True)
    payout_status: str = Field(default=PayoutStatus.IN_ESCROW.value, index=True)
    tracking_number: str | None = Field(default=None)

    order_date: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )
    delivered_date: datetime | None = Field(
        default=None, sa_type=DateTime(timezone=True)
    )
    created_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )
    updated_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )

    items: list["OrderItem"] = Relationship(back_populates="order")


class OrderItem(SQLModel, table=True):
    __tablename__ = "order_items"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    order_id: uuid.UUID = Field(foreign_key="orders.id", index=True)
    listing_id: uuid.UUID = Field(foreign_key="listings.id")
    quantity: int
    unit_price_cents: int
    currency: str = Field(default="NGN", max_length=3)

    order: Order | None = Relationship(back_populates="items")


# PAYMENTS AND ESCROW


class Payment(SQLModel, table=True):
    """One row per payment attempt, keyed by the gateway transaction reference"""

    __tablename__ = "payments"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    buyer_id: uuid.UUID = Field(foreign_key="buyers.id", index=True)
    order_id: uuid.UUID | None = Field(default=None, foreign_key="orders.id", index=True)
    listing_id: uuid.UUID | None = Field(default=None, foreign_key="listings.id")
    amount_cents: int
    currency: str = Field(default="NGN", max_length=3)
    payment_method: str
    provider: str = Field(default="tsara")
    status: str = Field(default=PaymentStatus.PENDING.value, index=True)
    transaction_ref: str = Field(index=True, unique=True)
    payment_url: str | None = Field(default=None)
    gateway_response: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )
    updated_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )


class PaymentHold(SQLModel, table=True):
    """
    Escrow record: funds held for the seller until the buyer confirms delivery.

    At most one active hold may exist per order; the partial unique index below
    turns a concurrent second insert into an IntegrityError.
    """

    __tablename__ = "payment_holds"
    __table_args__ = (
        Index(
            "uq_payment_holds_active_order",
            "order_id",
            unique=True,
            postgresql_where=text("hold_status = 'active'"),
            sqlite_where=text("hold_status = 'active'"),
        ),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    payment_id: uuid.UUID = Field(foreign_key="payments.id", index=True)
    order_id: uuid.UUID = Field(foreign_key="orders.id", index=True)
    seller_id: uuid.UUID = Field(foreign_key="sellers.id", index=True)
    amount_cents: int
    currency: str = Field(default="NGN", max_length=3)
    hold_status: str = Field(default=HoldStatus.ACTIVE.value, index=True)
    reason: str | None = Field(default=None)
    duration_days: int = Field(default=30)
    hold_until: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    released_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    created_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )
    updated_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )


# NOTIFICATIONS AND MESSAGING


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    buyer_id: uuid.UUID | None = Field(default=None, foreign_key="buyers.id", index=True)
    seller_id: uuid.UUID | None = Field(default=None, foreign_key="sellers.id", index=True)
    type: str = Field(index=True)
    title: str
    message: str
    is_read: bool = Field(default=False)
    is_starred: bool = Field(default=False)
    details: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )


class Conversation(SQLModel, table=True):
    __tablename__ = "conversations"
    __table_args__ = (UniqueConstraint("buyer_id", "seller_id"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    buyer_id: uuid.UUID = Field(foreign_key="buyers.id", index=True)
    seller_id: uuid.UUID = Field(foreign_key="sellers.id", index=True)
    last_message_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    created_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )
    updated_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )


class Message(SQLModel, table=True):
    __tablename__ = "messages"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    conversation_id: uuid.UUID = Field(foreign_key="conversations.id", index=True)
    sender_id: uuid.UUID
    sender_role: str  # buyer or seller
    content: str
    created_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )


# CHECKOUT SCHEMAS


class CheckoutLine(SQLModel):
    """A cart item with its listing snapshot"""

    cart_item_id: uuid.UUID
    listing_id: uuid.UUID
    seller_id: uuid.UUID
    title: str
    image: str | None = None
    quantity: int
    unit_price_cents: int
    currency: str
    line_total_cents: int


class CartTotals(SQLModel):
    subtotal_cents: int
    shipping_cents: int
    total_cents: int
    currency: str
    item_count: int


class CheckoutSeller(SQLModel):
    seller_id: uuid.UUID
    brand_name: str | None = None


class CheckoutSummary(SQLModel):
    items: list[CheckoutLine]
    summary: CartTotals
    sellers: list[CheckoutSeller]


class CheckoutInitialize(SQLModel):
    customer_name: str = Field(min_length=2, max_length=255)
    customer_email: EmailStr
    customer_phone: str | None = None
    shipping_address: str | None = None
    shipping_city: str | None = None
    shipping_state: str | None = None
    shipping_postal_code: str | None = None
    shipping_country: str | None = None
    payment_method: PaymentMethod
    currency: str = Field(default="NGN", min_length=3, max_length=3)
    redirect_url: str | None = None
    success_url: str | None = None
    cancel_url: str | None = None


class PaymentInitialized(SQLModel):
    payment_id: uuid.UUID
    payment_url: str
    order_id: uuid.UUID
    total_amount_cents: int
    currency: str
    transaction_ref: str


class CheckoutPrepare(SQLModel):
    cart_id: uuid.UUID


class CheckoutConfirm(SQLModel):
    payment_id: uuid.UUID
    transaction_ref: str = Field(min_length=1)


class CheckoutConfirmation(SQLModel):
    order_id: uuid.UUID
    total_amount_cents: int
    currency: str
    payment_url: str = ""
    payment_id: uuid.UUID
    estimated_delivery_days: int


# ORDER SCHEMAS


class OrderItemPublic(SQLModel):
    listing_id: uuid.UUID
    quantity: int
    unit_price_cents: int
    currency: str


class OrderPublic(SQLModel):
    id: uuid.UUID
    buyer_id: uuid.UUID
    seller_id: uuid.UUID
    listing_id: uuid.UUID
    product_title: str | None
    quantity: int
    amount_cents: int
    currency: str
    payment_method: str
    customer_name: str
    shipping_address: str | None
    order_status: str
    delivery_status: str
    payout_status: str
    tracking_number: str | None
    order_date: datetime
    delivered_date: datetime | None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemPublic] = []


class OrdersPublic(SQLModel):
    data: list[OrderPublic]
    count: int


class SellerOrderUpdate(SQLModel):
    status: Literal["processing", "shipped", "in_transit", "delivered", "canceled"]
    tracking_number: str | None = None


class DeliveryState(SQLModel):
    order_id: uuid.UUID
    delivery_status: str


class SellerDeliveryResult(SQLModel):
    success: bool = True
    message: str
    order: DeliveryState


class OrderStatusUpdated(SQLModel):
    success: bool = True
    message: str


class MessageToBuyer(SQLModel):
    buyer_id: uuid.UUID
    message: str = Field(min_length=1, max_length=5000)


class MessageSent(SQLModel):
    success: bool = True
    message: str
    conversation_id: uuid.UUID


class EscrowBalance(SQLModel):
    seller_id: uuid.UUID
    currency: str
    balance_cents: int


# NOTIFICATION SCHEMAS


class NotificationCreate(SQLModel):
    """What a caller asks the notification service to deliver"""

    type: NotificationType
    title: str
    message: str
    buyer_id: uuid.UUID | None = None
    seller_id: uuid.UUID | None = None
    email: str | None = None
    details: dict[str, Any] | None = None


class NotificationPublic(SQLModel):
    id: uuid.UUID
    buyer_id: uuid.UUID | None
    seller_id: uuid.UUID | None
    type: str
    title: str
    message: str
    is_read: bool
    is_starred: bool
    details: dict[str, Any] | None
    created_at: datetime


class NotificationsPublic(SQLModel):
    data: list[NotificationPublic]
    count: int
    unread_count: int


# OUTBOX PATTERN


class OutboxEvent(SQLModel, table=True):
    """
    Outbox table for transactional event publishing
    Events are written here atomically with DB changes, then published by worker
    """

    __tablename__ = "outbox_events"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    event_id: str = Field(index=True, unique=True)  # For idempotency
    event_type: str = Field(index=True)
    topic: str = Field(index=True)
    partition_key: str | None = Field(default=None)  # For Kafka partitioning
    payload: dict[str, Any] = Field(sa_column=Column(JSON))

    # Trace context captured when the event was written
    trace_id: str | None = Field(default=None, max_length=32, index=True)
    span_id: str | None = Field(default=None, max_length=16)
    parent_span_id: str | None = Field(default=None, max_length=16)

    # Status tracking
    published: bool = Field(default=False, index=True)
    published_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    attempts: int = Field(default=0)
    last_error: str | None = Field(default=None)

    created_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )
    updated_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )


class WebhookAck(SQLModel):
    success: bool = True
    message: str
