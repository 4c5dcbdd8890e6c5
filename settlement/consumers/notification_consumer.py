"""
Notification consumer

Consumes settlement events from Kafka and turns them into buyer/seller
notifications. Delivery is at least once, so every event is deduplicated on its
event_id in Redis before it is handled. Offsets are committed only after an
event was handled (or recognised as a duplicate); a failure leaves the offset
uncommitted so the event is redelivered.
"""

import asyncio

import structlog

from settlement.core.config import settings
from settlement.core.db import get_instrumented_session
from settlement.core.kafka import KafkaConsumerClient, kafka_consumer
from settlement.core.logging import get_logger
from settlement.core.metrics import kafka_events_consumed_total, kafka_events_duplicate_total
from settlement.core.redis import RedisClient, redis_client
from settlement.core.tracing import (
    clear_trace_context,
    extract_trace_context_from_kafka_headers,
    set_trace_context,
)
from settlement.services.notification_service import NotificationService

logger = get_logger(__name__)


async def start_consumer():
    """Main consumer loop, run as a background task of the API process"""
    logger.info("notification_consumer_starting", topics=kafka_consumer.topics)
    service = NotificationService()

    try:
        async for message in kafka_consumer.consume_messages():
            await handle_message(message, service)

    except asyncio.CancelledError:
        logger.info("notification_consumer_cancelled")
        raise
    except Exception as e:
        logger.error(
            "notification_consumer_crashed",
            error_type=type(e).__name__,
            error_message=str(e),
            exc_info=True,
        )
        raise


async def handle_message(
    message,
    service: NotificationService,
    consumer: KafkaConsumerClient = kafka_consumer,
    redis: RedisClient = redis_client,
) -> None:
    """Process a single Kafka message with idempotency and trace context extraction"""
    event = message.value
    event_id = event.get("event_id")
    event_type = event.get("event_type", "unknown")

    # Continue the trace of the request that wrote the event
    trace_context = extract_trace_context_from_kafka_headers(message.headers)
    if trace_context:
        set_trace_context(trace_context)
        structlog.contextvars.bind_contextvars(
            **{"trace.id": trace_context.trace_id},
            **{"span.id": trace_context.span_id},
            parent_span_id=trace_context.parent_span_id,
        )

    try:
        if not event_id:
            logger.warning("kafka_event_missing_id", topic=message.topic, event_type=event_type)
            kafka_events_consumed_total.labels(
                topic=message.topic, event_type=event_type, status="invalid"
            ).inc()
            await consumer.commit()
            return

        cache_key = f"processed_event:{event_id}"
        if await redis.exists(cache_key):
            logger.debug("kafka_event_duplicate", event_id=event_id, event_type=event_type)
            kafka_events_duplicate_total.labels(topic=message.topic, event_type=event_type).inc()
            await consumer.commit()
            return

        with get_instrumented_session() as session:
            handled = await service.handle_event(session, event)

        await redis.set(cache_key, "1", ttl=settings.PROCESSED_EVENT_TTL)
        await consumer.commit()

        kafka_events_consumed_total.labels(
            topic=message.topic,
            event_type=event_type,
            status="success" if handled else "ignored",
        ).inc()
        logger.info(
            "kafka_event_processed",
            event_id=event_id,
            event_type=event_type,
            handled=handled,
            has_trace_context=trace_context is not None,
        )

    except Exception as e:
        logger.error(
            "kafka_event_processing_failed",
            event_id=event_id,
            event_type=event_type,
            error_type=type(e).__name__,
            error_message=str(e),
            exc_info=True,
        )
        kafka_events_consumed_total.labels(
            topic=message.topic, event_type=event_type, status="failure"
        ).inc()
        # Not committed; redelivered after a rebalance or restart
    finally:
        clear_trace_context()
        structlog.contextvars.clear_contextvars()
