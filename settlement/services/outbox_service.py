"""
Outbox service - transactional event publishing with trace context
"""

from sqlmodel import Session

from settlement.core.config import settings
from settlement.core.logging import get_logger
from settlement.core.tracing import get_trace_context
from settlement.models import OutboxEvent
from settlement.events.base import BaseEventData, EventEnvelope

logger = get_logger(__name__)


def topic_for(event_type: str) -> str:
    """Kafka topic that carries the given settlement event type."""
    topics = {
        "order.placed": settings.KAFKA_TOPIC_ORDER_PLACED,
        "order.confirmed": settings.KAFKA_TOPIC_ORDER_CONFIRMED,
        "order.shipped": settings.KAFKA_TOPIC_ORDER_SHIPPED,
        "order.cancelled": settings.KAFKA_TOPIC_ORDER_CANCELLED,
        "order.delivery_marked": settings.KAFKA_TOPIC_ORDER_DELIVERY_MARKED,
        "order.delivery_confirmed": settings.KAFKA_TOPIC_ORDER_DELIVERY_CONFIRMED,
        "payment.failed": settings.KAFKA_TOPIC_PAYMENT_FAILED,
        "payment.refunded": settings.KAFKA_TOPIC_PAYMENT_REFUNDED,
    }
    return topics[event_type]


class OutboxService:
    """Service for transactional outbox pattern"""

    @staticmethod
    def create_event(
        session: Session,
        event_type: str,
        event_data: BaseEventData,
        partition_key: str | None = None,
        topic: str | None = None,
    ) -> OutboxEvent:
        """
        Add an outbox event to the caller's transaction.

        The row becomes visible only when the caller commits, together with the
        state change it describes. A rolled-back transition therefore never
        produces an event, and the outbox worker publishes it later.

        Args:
            session: Database session of the business transaction
            event_type: Type of event (e.g. "order.placed")
            event_data: Pydantic model with event payload
            partition_key: Kafka partition key (the order id keeps an order's
                events in sequence)
            topic: Override for the topic derived from event_type

        Returns:
            OutboxEvent: the pending (uncommitted) outbox row
        """
        envelope = EventEnvelope[type(event_data)](event_type=event_type, data=event_data)
        event_id = envelope.event_id
        topic = topic or topic_for(event_type)

        # Captured from contextvars set by TracingMiddleware (None outside a request)
        trace_context = get_trace_context()

        outbox_event = OutboxEvent(
            event_id=event_id,
            event_type=event_type,
            topic=topic,
            partition_key=partition_key,
            payload=envelope.model_dump(mode="json"),
            trace_id=trace_context.trace_id if trace_context else None,
            span_id=trace_context.span_id if trace_context else None,
            parent_span_id=trace_context.parent_span_id if trace_context else None,
        )

        session.add(outbox_event)
        # No commit: the caller commits atomically with the business change

        logger.info(
            "outbox_event_created",
            event_id=event_id,
            event_type=event_type,
            topic=topic,
            has_trace_context=trace_context is not None,
        )

        return outbox_event
