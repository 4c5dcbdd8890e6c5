import unittest
import uuid
from datetime import datetime, timezone
from unittest.mock import patch

from pydantic import ValidationError
from sqlmodel import select

from factories import DatabaseMixin, make_buyer, make_seller
from settlement.errors import ErrorCode, SettlementError
from settlement.events import OrderDeliveryConfirmedData, OrderPlacedData, PaymentFailedData
from settlement.models import Notification, NotificationCreate, NotificationType
from settlement.services.notification_service import (
    NotificationService,
    Recipient,
    format_amount,
    render_email,
)


class FakeMailer:
    def __init__(self, enabled: bool = True, fail: bool = False):
        self.enabled = enabled
        self.fail = fail
        self.sent: list[tuple[str, str]] = []

    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        if self.fail:
            raise ConnectionError("smtp unavailable")
        self.sent.append((to, subject))


def envelope(event_type: str, data) -> dict:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "version": "1.0",
        "data": data.model_dump(mode="json"),
    }


class TestFormatting(unittest.TestCase):
    def test_format_amount(self):
        self.assertEqual(format_amount(12500, "NGN"), "NGN 125.00")
        self.assertEqual(format_amount(5, "USD"), "USD 0.05")
        self.assertEqual(format_amount(-1999, "NGN"), "NGN -19.99")

    def test_render_email_escapes_message(self):
        subject, body, text = render_email(
            NotificationCreate(
                type=NotificationType.ORDER_SHIPPED,
                title="Order Shipped",
                message="<b>on its way</b>",
            )
        )

        self.assertEqual(subject, "Order Shipped")
        self.assertIn("&lt;b&gt;on its way&lt;/b&gt;", body)
        self.assertEqual(text, "<b>on its way</b>")


class TestHandleEvent(DatabaseMixin, unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        super().setUp()
        self.buyer = make_buyer(self.session)
        self.seller = make_seller(self.session)
        self.mailer = FakeMailer()
        self.service = NotificationService(mailer=self.mailer)

    def placed(self) -> OrderPlacedData:
        return OrderPlacedData(
            order_id=str(uuid.uuid4()),
            buyer_id=str(self.buyer.id),
            seller_id=str(self.seller.id),
            payment_id=str(uuid.uuid4()),
            hold_id=str(uuid.uuid4()),
            amount_cents=12500,
            currency="NGN",
            placed_at=datetime.now(timezone.utc),
        )

    async def test_order_placed_notifies_both_parties(self):
        handled = await self.service.handle_event(
            self.session, envelope("order.placed", self.placed())
        )

        self.assertTrue(handled)
        notifications = self.session.exec(select(Notification)).all()
        by_type = {n.type: n for n in notifications}
        self.assertEqual(set(by_type), {"order_placed", "purchase"})
        self.assertEqual(by_type["order_placed"].buyer_id, self.buyer.id)
        self.assertIn("NGN 125.00", by_type["order_placed"].message)
        self.assertEqual(by_type["purchase"].seller_id, self.seller.id)
        self.assertEqual(
            self.mailer.sent,
            [("ada@example.com", "Order Placed"), ("shop@example.com", "New Purchase Notification")],
        )

    async def test_delivery_confirmed_mentions_release(self):
        data = OrderDeliveryConfirmedData(
            order_id=str(uuid.uuid4()),
            buyer_id=str(self.buyer.id),
            seller_id=str(self.seller.id),
            amount_cents=5000,
            currency="NGN",
            hold_id=str(uuid.uuid4()),
            hold_released=True,
            confirmed_at=datetime.now(timezone.utc),
        )

        await self.service.handle_event(self.session, envelope("order.delivery_confirmed", data))

        [notification] = self.session.exec(select(Notification)).all()
        self.assertEqual(notification.type, "delivery_confirmed")
        self.assertIn("released from escrow", notification.message)

    async def test_payment_failed_without_seller(self):
        data = PaymentFailedData(
            payment_id=str(uuid.uuid4()),
            buyer_id=str(self.buyer.id),
            transaction_ref="order_x",
            amount_cents=5000,
            currency="NGN",
            reason="gateway_reported_failed",
        )

        await self.service.handle_event(self.session, envelope("payment.failed", data))

        [notification] = self.session.exec(select(Notification)).all()
        self.assertEqual(notification.type, "payment_failed")
        self.assertEqual(notification.buyer_id, self.buyer.id)

    async def test_unknown_event_type_is_ignored(self):
        handled = await self.service.handle_event(
            self.session, {"event_type": "user.created", "data": {}}
        )

        self.assertFalse(handled)
        self.assertEqual(self.session.exec(select(Notification)).all(), [])

    async def test_malformed_payload_raises(self):
        with self.assertRaises(ValidationError):
            await self.service.handle_event(
                self.session, {"event_type": "order.placed", "data": {"order_id": "x"}}
            )

    async def test_email_failure_is_swallowed(self):
        service = NotificationService(mailer=FakeMailer(fail=True))

        await service.handle_event(self.session, envelope("order.placed", self.placed()))

        self.assertEqual(len(self.session.exec(select(Notification)).all()), 2)

    async def test_disabled_mailer_skips_email(self):
        mailer = FakeMailer(enabled=False)
        service = NotificationService(mailer=mailer)

        await service.handle_event(self.session, envelope("order.placed", self.placed()))

        self.assertEqual(mailer.sent, [])
        self.assertEqual(len(self.session.exec(select(Notification)).all()), 2)

    async def test_database_failure_is_swallowed(self):
        payload = NotificationCreate(
            type=NotificationType.REMINDER,
            title="Reminder",
            message="Confirm your delivery",
            buyer_id=self.buyer.id,
            email="ada@example.com",
        )

        with patch.object(self.session, "commit", side_effect=RuntimeError("db down")):
            notification_id = await self.service.send_notification(self.session, payload)

        self.assertIsNone(notification_id)
        self.assertEqual(self.mailer.sent, [("ada@example.com", "Reminder")])


class TestNotificationHousekeeping(DatabaseMixin, unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.buyer = make_buyer(self.session)
        self.recipient = Recipient(buyer_id=self.buyer.id)
        self.notifications = []
        for title in ("First", "Second", "Third"):
            notification = Notification(
                buyer_id=self.buyer.id, type="reminder", title=title, message=title
            )
            self.session.add(notification)
            self.notifications.append(notification)
        self.session.commit()

    def test_list_with_counts(self):
        NotificationService.mark_as_read(self.session, self.recipient, self.notifications[0].id)

        page, count, unread = NotificationService.list_notifications(self.session, self.recipient)
        unread_page, _, _ = NotificationService.list_notifications(
            self.session, self.recipient, unread_only=True
        )

        self.assertEqual(len(page), 3)
        self.assertEqual(count, 3)
        self.assertEqual(unread, 2)
        self.assertEqual(len(unread_page), 2)

    def test_mark_all_as_read(self):
        self.assertEqual(NotificationService.mark_all_as_read(self.session, self.recipient), 3)
        self.assertEqual(NotificationService.mark_all_as_read(self.session, self.recipient), 0)

    def test_star_and_delete(self):
        target = self.notifications[1].id

        starred = NotificationService.toggle_star(self.session, self.recipient, target, True)
        self.assertTrue(starred.is_starred)

        NotificationService.delete_notification(self.session, self.recipient, target)
        _, count, _ = NotificationService.list_notifications(self.session, self.recipient)
        self.assertEqual(count, 2)

    def test_other_recipients_cannot_touch(self):
        stranger = Recipient(seller_id=make_seller(self.session).id)

        with self.assertRaises(SettlementError) as ctx:
            NotificationService.mark_as_read(self.session, stranger, self.notifications[0].id)

        self.assertEqual(ctx.exception.code, ErrorCode.NOT_FOUND)
