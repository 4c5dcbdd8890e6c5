import unittest
import uuid
from dataclasses import dataclass, field

from sqlmodel import select

from factories import DatabaseMixin
from settlement.consumers.notification_consumer import handle_message
from settlement.models import Notification


@dataclass
class FakeMessage:
    value: dict
    topic: str = "order.confirmed"
    headers: list = field(default_factory=list)


class FakeConsumer:
    def __init__(self):
        self.commits = 0

    async def commit(self):
        self.commits += 1


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}

    async def exists(self, key: str) -> bool:
        return key in self.store

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        self.store[key] = value
        return True


class RecordingService:
    def __init__(self, fail: bool = False, handled: bool = True):
        self.fail = fail
        self.handled = handled
        self.events: list[dict] = []

    async def handle_event(self, session, envelope):
        if self.fail:
            raise ValueError("broken payload")
        self.events.append(envelope)
        session.add(
            Notification(type="reminder", title="t", message=envelope["event_id"])
        )
        return self.handled


class TestHandleMessage(DatabaseMixin, unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        super().setUp()
        self.consumer = FakeConsumer()
        self.redis = FakeRedis()

    def message(self, event_id: str | None = None, **kwargs) -> FakeMessage:
        value = {"event_type": "order.confirmed", "data": {}}
        if event_id:
            value["event_id"] = event_id
        return FakeMessage(value=value, **kwargs)

    async def test_handles_and_commits(self):
        service = RecordingService()
        event_id = str(uuid.uuid4())

        await handle_message(self.message(event_id), service, self.consumer, self.redis)

        self.assertEqual(len(service.events), 1)
        self.assertEqual(self.consumer.commits, 1)
        self.assertIn(f"processed_event:{event_id}", self.redis.store)
        # The session opened for the event commits what the handler wrote
        self.assertEqual(len(self.session.exec(select(Notification)).all()), 1)

    async def test_duplicate_is_skipped(self):
        service = RecordingService()
        event_id = str(uuid.uuid4())

        await handle_message(self.message(event_id), service, self.consumer, self.redis)
        await handle_message(self.message(event_id), service, self.consumer, self.redis)

        self.assertEqual(len(service.events), 1)
        self.assertEqual(self.consumer.commits, 2)

    async def test_missing_event_id_is_committed(self):
        service = RecordingService()

        await handle_message(self.message(), service, self.consumer, self.redis)

        self.assertEqual(service.events, [])
        self.assertEqual(self.consumer.commits, 1)

    async def test_failure_leaves_offset_uncommitted(self):
        event_id = str(uuid.uuid4())

        await handle_message(
            self.message(event_id), RecordingService(fail=True), self.consumer, self.redis
        )

        self.assertEqual(self.consumer.commits, 0)
        self.assertNotIn(f"processed_event:{event_id}", self.redis.store)

    async def test_trace_header_is_accepted(self):
        headers = [("traceparent", b"00-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01")]

        await handle_message(
            self.message(str(uuid.uuid4()), headers=headers),
            RecordingService(),
            self.consumer,
            self.redis,
        )

        self.assertEqual(self.consumer.commits, 1)
