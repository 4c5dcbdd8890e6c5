"""
Event schemas for Kafka events
Centralized event definitions using Pydantic for type safety
"""

from settlement.events.base import EventEnvelope, BaseEventData
from settlement.events.order_events import (
    OrderEventData,
    OrderPlacedData,
    OrderConfirmedData,
    OrderShippedData,
    OrderCancelledData,
    OrderDeliveryMarkedData,
    OrderDeliveryConfirmedData,
)
from settlement.events.payment_events import PaymentFailedData, PaymentRefundedData

# event_type -> payload schema, used by consumers to validate incoming data
EVENT_DATA_TYPES: dict[str, type[BaseEventData]] = {
    "order.placed": OrderPlacedData,
    "order.confirmed": OrderConfirmedData,
    "order.shipped": OrderShippedData,
    "order.cancelled": OrderCancelledData,
    "order.delivery_marked": OrderDeliveryMarkedData,
    "order.delivery_confirmed": OrderDeliveryConfirmedData,
    "payment.failed": PaymentFailedData,
    "payment.refunded": PaymentRefundedData,
}

__all__ = [
    # Base
    "EventEnvelope",
    "BaseEventData",
    "EVENT_DATA_TYPES",
    # Order events
    "OrderEventData",
    "OrderPlacedData",
    "OrderConfirmedData",
    "OrderShippedData",
    "OrderCancelledData",
    "OrderDeliveryMarkedData",
    "OrderDeliveryConfirmedData",
    # Payment events
    "PaymentFailedData",
    "PaymentRefundedData",
]
