"""
Outbox worker - publishes settlement events from the outbox table to Kafka

Runs as its own process (`python -m settlement.workers.outbox_worker`). Events are
written to `outbox_events` in the same transaction as the settlement transition
that produced them; this worker delivers them at least once, carrying the trace
context captured at write time as a W3C traceparent header.
"""

import asyncio
import signal
import sys
import time
from datetime import datetime, UTC

import structlog
from prometheus_client import start_http_server
from sqlmodel import Session, select, func

from settlement.core.config import settings
from settlement.core.db import engine
from settlement.core.kafka import KafkaProducerClient, kafka_producer
from settlement.core.logging import configure_logging, get_logger
from settlement.core.tracing import TraceContext, create_trace_context
from settlement.core.metrics import (
    registry,
    outbox_events_pending,
    outbox_events_processed_total,
    outbox_publish_duration_seconds,
    outbox_retry_attempts_total,
)
from settlement.models import OutboxEvent

logger = get_logger(__name__)


def _request_stop(stop: asyncio.Event, sig: signal.Signals) -> None:
    logger.info("shutdown_signal_received", signal=sig.name)
    stop.set()


async def _wait(stop: asyncio.Event, seconds: float) -> None:
    try:
        await asyncio.wait_for(stop.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


async def process_outbox_events(stop: asyncio.Event):
    """Poll the outbox until `stop` is set"""
    logger.info("outbox_worker_starting")

    await kafka_producer.start()

    try:
        while not stop.is_set():
            try:
                published_count = await publish_pending_events(settings.OUTBOX_BATCH_SIZE)
            except Exception as e:
                logger.error(
                    "outbox_processing_error",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await _wait(stop, settings.OUTBOX_ERROR_BACKOFF_SECONDS)
                continue

            if published_count:
                logger.info("outbox_events_published", count=published_count)
            update_pending_count()
            await _wait(stop, settings.OUTBOX_POLL_INTERVAL_SECONDS)

    except asyncio.CancelledError:
        logger.info("outbox_worker_cancelled")
        raise
    finally:
        await kafka_producer.stop()
        logger.info("outbox_worker_stopped")


def _event_trace(event: OutboxEvent) -> TraceContext | None:
    """New span under the request that wrote the event; None for untraced rows."""
    if not event.trace_id:
        return None
    return create_trace_context(trace_id=event.trace_id, parent_span_id=event.span_id)


def _mark_published(session: Session, event: OutboxEvent) -> None:
    now = datetime.now(UTC)
    event.published = True
    event.published_at = now
    event.updated_at = now
    session.add(event)
    session.commit()


def _record_failure(session: Session, event: OutboxEvent, error: Exception) -> None:
    """Keep the row pending for the next poll, with the attempt counted."""
    session.rollback()
    event.attempts += 1
    event.last_error = str(error)[: settings.OUTBOX_ERROR_MESSAGE_MAX_LENGTH]
    event.updated_at = datetime.now(UTC)
    session.add(event)
    session.commit()

    outbox_events_processed_total.labels(status="failure").inc()
    outbox_retry_attempts_total.labels(event_type=event.event_type).inc()

    give_up = event.attempts >= settings.OUTBOX_MAX_RETRY_ATTEMPTS
    log = logger.critical if give_up else logger.error
    log(
        "outbox_event_max_retries_exceeded" if give_up else "outbox_event_publish_failed",
        event_id=event.event_id,
        event_type=event.event_type,
        attempts=event.attempts,
        error_type=type(error).__name__,
        error_message=str(error),
        needs_manual_intervention=give_up,
    )


async def _publish_event(
    session: Session, event: OutboxEvent, producer: KafkaProducerClient
) -> bool:
    started = time.perf_counter()
    trace_context = _event_trace(event)
    headers: list[tuple[str, bytes]] = []
    if trace_context:
        headers.append(("traceparent", trace_context.to_traceparent_header().encode("utf-8")))
        structlog.contextvars.bind_contextvars(
            **{"trace.id": trace_context.trace_id},
            **{"span.id": trace_context.span_id},
            parent_span_id=trace_context.parent_span_id,
        )

    try:
        await producer.publish(
            topic=event.topic,
            event_type=event.event_type,
            envelope=event.payload,
            key=event.partition_key,
            headers=headers,
        )
        _mark_published(session, event)
    except Exception as e:
        _record_failure(session, event, e)
        return False
    finally:
        structlog.contextvars.clear_contextvars()

    outbox_events_processed_total.labels(status="success").inc()
    outbox_publish_duration_seconds.observe(time.perf_counter() - started)
    logger.info(
        "outbox_event_published",
        event_id=event.event_id,
        event_type=event.event_type,
        topic=event.topic,
        partition_key=event.partition_key,
    )
    return True


async def publish_pending_events(
    batch_size: int, producer: KafkaProducerClient = kafka_producer
) -> int:
    """
    Publish one batch of unpublished events, oldest first.

    Rows are locked with SKIP LOCKED so several workers can share the table.
    Each event commits on its own: a broker failure on one row does not hold
    back the rest of the batch.

    Returns:
        Number of events published
    """
    with Session(engine) as session:
        pending = session.exec(
            select(OutboxEvent)
            .where(OutboxEvent.published == False)  # noqa: E712
            .order_by(OutboxEvent.created_at.asc())  # type: ignore[attr-defined]
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        ).all()

        published = 0
        for event in pending:
            if await _publish_event(session, event, producer):
                published += 1
    return published


def update_pending_count():
    try:
        with Session(engine) as session:
            count_statement = (
                select(func.count())
                .select_from(OutboxEvent)
                .where(OutboxEvent.published == False)  # noqa: E712
            )
            outbox_events_pending.set(session.exec(count_statement).one())
    except Exception as e:
        logger.error(
            "outbox_pending_count_failed",
            error_type=type(e).__name__,
            error_message=str(e),
        )


async def main():
    configure_logging()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _request_stop, stop, sig)

    logger.info(
        "outbox_worker_main_starting",
        service=settings.SERVICE_NAME,
        environment=settings.ENVIRONMENT,
    )

    start_http_server(settings.METRICS_PORT, registry=registry)
    logger.info("metrics_server_started", port=settings.METRICS_PORT)

    try:
        await process_outbox_events(stop)
    except Exception as e:
        logger.error(
            "outbox_worker_fatal_error",
            error_type=type(e).__name__,
            error_message=str(e),
            exc_info=True,
        )
        sys.exit(1)
    logger.info("outbox_worker_shutdown_complete")


if __name__ == "__main__":
    asyncio.run(main())
