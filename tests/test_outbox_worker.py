import unittest

from sqlmodel import select

from factories import DatabaseMixin
from settlement.core.config import settings
from settlement.events import OrderShippedData
from settlement.models import OutboxEvent
from settlement.services.outbox_service import OutboxService, topic_for
from settlement.workers.outbox_worker import publish_pending_events


class FakeProducer:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published: list[dict] = []

    async def publish(self, topic, event_type, envelope, key=None, headers=None):
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.published.append(
            {"topic": topic, "event_type": event_type, "envelope": envelope, "key": key, "headers": headers}
        )


class TestOutboxWorker(DatabaseMixin, unittest.IsolatedAsyncioTestCase):
    def write_event(self, order_id: str = "order-1", trace_id: str | None = None) -> OutboxEvent:
        event = OutboxService.create_event(
            session=self.session,
            event_type="order.shipped",
            event_data=OrderShippedData(
                order_id=order_id,
                buyer_id="buyer-1",
                seller_id="seller-1",
                delivery_status="in_transit",
            ),
            partition_key=order_id,
        )
        if trace_id:
            event.trace_id = trace_id
            event.span_id = "b7ad6b7169203331"
        self.session.commit()
        return event

    def stored(self) -> list[OutboxEvent]:
        self.session.expire_all()
        return list(self.session.exec(select(OutboxEvent)).all())

    async def test_publishes_and_marks_events(self):
        self.write_event()
        producer = FakeProducer()

        count = await publish_pending_events(10, producer)

        self.assertEqual(count, 1)
        [message] = producer.published
        self.assertEqual(message["topic"], "order.shipped")
        self.assertEqual(message["key"], "order-1")
        self.assertEqual(message["envelope"]["event_type"], "order.shipped")
        self.assertEqual(message["envelope"]["data"]["delivery_status"], "in_transit")
        self.assertEqual(message["headers"], [])
        [event] = self.stored()
        self.assertTrue(event.published)
        self.assertIsNotNone(event.published_at)

        self.assertEqual(await publish_pending_events(10, producer), 0)

    async def test_trace_context_becomes_traceparent(self):
        trace_id = "0af7651916cd43dd8448eb211c80319c"
        self.write_event(trace_id=trace_id)
        producer = FakeProducer()

        await publish_pending_events(10, producer)

        [(key, value)] = producer.published[0]["headers"]
        self.assertEqual(key, "traceparent")
        self.assertTrue(value.decode("utf-8").startswith(f"00-{trace_id}-"))

    async def test_failure_records_attempt(self):
        self.write_event()

        count = await publish_pending_events(10, FakeProducer(fail=True))

        self.assertEqual(count, 0)
        [event] = self.stored()
        self.assertFalse(event.published)
        self.assertEqual(event.attempts, 1)
        self.assertEqual(event.last_error, "broker unavailable")

    async def test_batch_size_is_respected(self):
        for index in range(3):
            self.write_event(order_id=f"order-{index}")
        producer = FakeProducer()

        self.assertEqual(await publish_pending_events(2, producer), 2)
        self.assertEqual(await publish_pending_events(2, producer), 1)


class TestTopics(unittest.TestCase):
    def test_every_event_type_has_a_consumed_topic(self):
        for event_type in (
            "order.placed",
            "order.confirmed",
            "order.shipped",
            "order.cancelled",
            "order.delivery_marked",
            "order.delivery_confirmed",
            "payment.failed",
            "payment.refunded",
        ):
            with self.subTest(event_type=event_type):
                self.assertIn(topic_for(event_type), settings.SETTLEMENT_TOPICS)
