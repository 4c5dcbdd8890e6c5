"""
Order event schemas

Each settlement transition writes one of these into the outbox in the same
transaction as the state change. Ids travel as strings so the payload stays
plain JSON on the wire.
"""

from datetime import datetime

from settlement.events.base import BaseEventData


class OrderEventData(BaseEventData):
    order_id: str
    buyer_id: str
    seller_id: str


class OrderPlacedData(OrderEventData):
    """Payment confirmed and funds moved into escrow"""

    payment_id: str
    hold_id: str
    amount_cents: int
    currency: str
    placed_at: datetime


class OrderConfirmedData(OrderEventData):
    """Seller accepted the order"""

    confirmed_at: datetime


class OrderShippedData(OrderEventData):
    delivery_status: str
    tracking_number: str | None = None


class OrderCancelledData(OrderEventData):
    reason: str
    cancelled_at: datetime


class OrderDeliveryMarkedData(OrderEventData):
    """Seller marked the shipment delivered"""

    delivered_at: datetime


class OrderDeliveryConfirmedData(OrderEventData):
    """Buyer confirmed receipt; the escrow hold (if any) was released"""

    amount_cents: int
    currency: str
    hold_id: str | None = None
    hold_released: bool
    confirmed_at: datetime
