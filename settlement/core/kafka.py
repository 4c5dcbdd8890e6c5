"""Kafka producer and consumer for settlement events"""

import asyncio
import time
from typing import Any

import orjson
from aiokafka import AIOKafkaProducer, AIOKafkaConsumer
from aiokafka.errors import KafkaError
from tenacity import retry, stop_after_attempt, wait_exponential

from settlement.core.config import settings
from settlement.core.logging import get_logger
from settlement.core.metrics import (
    kafka_events_published_total,
    kafka_publish_duration_seconds,
    kafka_consumer_lag_messages,
)

logger = get_logger(__name__)


def _count_publish(topic: str, event_type: str, status: str) -> None:
    kafka_events_published_total.labels(topic=topic, event_type=event_type, status=status).inc()


class KafkaProducerClient:
    """Async Kafka producer"""

    def __init__(self):
        self.producer: AIOKafkaProducer | None = None

    async def start(self):
        try:
            self.producer = AIOKafkaProducer(
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                value_serializer=lambda v: orjson.dumps(v),
                key_serializer=lambda k: k.encode("utf-8") if k else None,
                acks="all",  # Wait for all replicas
                compression_type="gzip",
                request_timeout_ms=30000,
            )
            await self.producer.start()
            logger.info(
                "kafka_producer_started",
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            )
        except Exception as e:
            logger.error("kafka_producer_start_failed", error_message=str(e))
            raise

    async def stop(self):
        if self.producer:
            await self.producer.stop()
            logger.info("kafka_producer_stopped")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def publish(
        self,
        topic: str,
        event_type: str,
        envelope: dict[str, Any],
        key: str | None = None,
        headers: list[tuple[str, bytes]] | None = None,
    ) -> None:
        """
        Publish an already-built event envelope.

        The envelope (event_id, event_type, timestamp, version, data) is created
        when the outbox row is written, so a retried publish carries the same
        event_id and consumers can deduplicate on it.
        """
        if not self.producer:
            raise RuntimeError("Kafka producer not started")

        started = time.perf_counter()
        try:
            await self.producer.send_and_wait(topic, value=envelope, key=key, headers=headers or [])
        except KafkaError as e:
            _count_publish(topic, event_type, "failure")
            logger.warning(
                "kafka_publish_attempt_failed",
                topic=topic,
                event_type=event_type,
                error_message=str(e),
            )
            raise

        _count_publish(topic, event_type, "success")
        kafka_publish_duration_seconds.labels(topic=topic, event_type=event_type).observe(
            time.perf_counter() - started
        )


class KafkaConsumerClient:
    """Async Kafka consumer with manual commits (at-least-once delivery)"""

    def __init__(self, topics: list[str]):
        self.topics = topics
        self.consumer: AIOKafkaConsumer | None = None
        self._lag_task: asyncio.Task | None = None

    async def start(self):
        try:
            self.consumer = AIOKafkaConsumer(
                *self.topics,
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                group_id=settings.KAFKA_CONSUMER_GROUP_ID,
                value_deserializer=lambda m: orjson.loads(m),
                auto_offset_reset="earliest",
                enable_auto_commit=False,
                max_poll_records=100,
                session_timeout_ms=30000,
                max_poll_interval_ms=300000,  # 5 minutes
            )
            await self.consumer.start()

            self._lag_task = asyncio.create_task(self._track_consumer_lag())

            logger.info("kafka_consumer_started", topics=self.topics)
        except Exception as e:
            logger.error("kafka_consumer_start_failed", error_message=str(e))
            raise

    async def stop(self):
        if self._lag_task and not self._lag_task.done():
            self._lag_task.cancel()
            try:
                await self._lag_task
            except asyncio.CancelledError:
                pass

        if self.consumer:
            await self.consumer.stop()
            logger.info("kafka_consumer_stopped")

    async def consume_messages(self):
        """Async generator yielding messages"""
        if not self.consumer:
            raise RuntimeError("Kafka consumer not started")

        async for message in self.consumer:
            yield message

    async def commit(self):
        if self.consumer:
            await self.consumer.commit()

    async def _report_lag(self) -> None:
        """Committed-to-highwater distance per assigned partition."""
        for partition in self.consumer.assignment():
            try:
                committed = await self.consumer.committed(partition) or 0
            except KafkaError as e:
                logger.debug(
                    "consumer_lag_lookup_failed",
                    topic=partition.topic,
                    partition=partition.partition,
                    error_message=str(e),
                )
                continue
            highwater = self.consumer.highwater(partition) or 0
            kafka_consumer_lag_messages.labels(
                topic=partition.topic, consumer_group=settings.KAFKA_CONSUMER_GROUP_ID
            ).set(max(highwater - committed, 0))

    async def _track_consumer_lag(self):
        while self.consumer is not None:
            await self._report_lag()
            await asyncio.sleep(settings.KAFKA_LAG_REPORT_INTERVAL)


kafka_producer = KafkaProducerClient()
kafka_consumer = KafkaConsumerClient(settings.SETTLEMENT_TOPICS)
