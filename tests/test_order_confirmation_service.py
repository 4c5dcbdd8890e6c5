import unittest
import uuid

from sqlmodel import select

from factories import (
    DatabaseMixin,
    make_buyer,
    make_escrowed_order,
    make_order,
    make_seller,
    outbox_events,
)
from settlement.errors import ErrorCode, SettlementError
from settlement.models import Conversation, HoldStatus, Message, Order, OrderStatus, PaymentHold
from settlement.services.escrow_service import EscrowService
from settlement.services.order_confirmation_service import OrderConfirmationService


class OrderTestCase(DatabaseMixin, unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.buyer = make_buyer(self.session)
        self.seller = make_seller(self.session)

    def confirmed_order(self) -> Order:
        order = make_escrowed_order(self.session, self.buyer, self.seller)
        return OrderConfirmationService.seller_confirm_order(self.session, self.seller.id, order.id)

    def delivered_order(self) -> Order:
        order = self.confirmed_order()
        OrderConfirmationService.seller_confirm_delivery(self.session, self.seller.id, order.id)
        return order


class TestSellerConfirmOrder(OrderTestCase):
    def test_confirm_with_active_hold(self):
        order = self.confirmed_order()

        self.assertEqual(order.order_status, "confirmed")
        self.assertEqual(order.delivery_status, "processing")
        self.assertEqual(order.payout_status, "in_escrow")
        [event] = outbox_events(self.session, "order.confirmed")
        self.assertEqual(event.payload["data"]["order_id"], str(order.id))

    def test_confirm_without_hold_is_refused(self):
        order = make_order(self.session, self.buyer, self.seller)

        with self.assertRaises(SettlementError) as ctx:
            OrderConfirmationService.seller_confirm_order(self.session, self.seller.id, order.id)

        self.assertEqual(ctx.exception.code, ErrorCode.BAD_REQUEST)
        self.assertIn("Payment hold not found or not active", ctx.exception.message)
        self.assertEqual(self.session.get(Order, order.id).order_status, "pending")
        self.assertEqual(outbox_events(self.session), [])

    def test_confirm_twice(self):
        order = self.confirmed_order()

        with self.assertRaises(SettlementError) as ctx:
            OrderConfirmationService.seller_confirm_order(self.session, self.seller.id, order.id)

        self.assertEqual(ctx.exception.message, "Order is already confirmed")
        self.assertEqual(len(outbox_events(self.session, "order.confirmed")), 1)

    def test_other_sellers_order_is_not_found(self):
        order = make_escrowed_order(self.session, self.buyer, self.seller)
        intruder = make_seller(self.session, "Ankara Lane")

        with self.assertRaises(SettlementError) as ctx:
            OrderConfirmationService.seller_confirm_order(self.session, intruder.id, order.id)

        self.assertEqual(ctx.exception.code, ErrorCode.NOT_FOUND)


class TestSellerDelivery(OrderTestCase):
    def test_mark_delivered(self):
        order = self.confirmed_order()

        result = OrderConfirmationService.seller_confirm_delivery(
            self.session, self.seller.id, order.id
        )

        self.assertEqual(result.message, "Delivery confirmed. Buyer notified.")
        self.assertEqual(result.order.delivery_status, "delivered")
        refreshed = self.session.get(Order, order.id, populate_existing=True)
        self.assertEqual(refreshed.payout_status, "in_escrow")
        self.assertIsNotNone(EscrowService.get_active_hold(self.session, order.id))
        self.assertEqual(len(outbox_events(self.session, "order.delivery_marked")), 1)

    def test_requires_confirmation(self):
        order = make_escrowed_order(self.session, self.buyer, self.seller)

        with self.assertRaises(SettlementError) as ctx:
            OrderConfirmationService.seller_confirm_delivery(self.session, self.seller.id, order.id)

        self.assertEqual(
            ctx.exception.message, "Order must be confirmed before marking as delivered"
        )

    def test_mark_delivered_twice(self):
        order = self.delivered_order()

        with self.assertRaises(SettlementError) as ctx:
            OrderConfirmationService.seller_confirm_delivery(self.session, self.seller.id, order.id)

        self.assertEqual(ctx.exception.message, "Order has already been marked as delivered")


class TestUpdateOrderStatus(OrderTestCase):
    def test_shipped_sets_in_transit_and_tracking(self):
        order = self.confirmed_order()

        result = OrderConfirmationService.update_order_status(
            self.session, self.seller.id, order.id, "shipped", "TRK-123"
        )

        self.assertEqual(result.message, "Order status updated to shipped")
        refreshed = self.session.get(Order, order.id, populate_existing=True)
        self.assertEqual(refreshed.delivery_status, "in_transit")
        self.assertEqual(refreshed.tracking_number, "TRK-123")
        [event] = outbox_events(self.session, "order.shipped")
        self.assertEqual(event.payload["data"]["tracking_number"], "TRK-123")

    def test_cannot_ship_unconfirmed_order(self):
        order = make_escrowed_order(self.session, self.buyer, self.seller)

        with self.assertRaises(SettlementError) as ctx:
            OrderConfirmationService.update_order_status(
                self.session, self.seller.id, order.id, "in_transit"
            )

        self.assertEqual(ctx.exception.code, ErrorCode.BAD_REQUEST)

    def test_delivered_follows_seller_delivery_rules(self):
        order = self.confirmed_order()

        result = OrderConfirmationService.update_order_status(
            self.session, self.seller.id, order.id, "delivered"
        )

        self.assertEqual(result.message, "Delivery confirmed. Buyer notified.")
        refreshed = self.session.get(Order, order.id, populate_existing=True)
        self.assertEqual(refreshed.delivery_status, "delivered")
        self.assertEqual(refreshed.payout_status, "in_escrow")

    def test_cancel_pending_order_without_hold(self):
        order = make_order(self.session, self.buyer, self.seller)

        OrderConfirmationService.update_order_status(
            self.session, self.seller.id, order.id, "canceled"
        )

        refreshed = self.session.get(Order, order.id, populate_existing=True)
        self.assertEqual(refreshed.order_status, OrderStatus.CANCELLED.value)
        [event] = outbox_events(self.session, "order.cancelled")
        self.assertEqual(event.payload["data"]["reason"], "cancelled_by_seller")

        with self.assertRaises(SettlementError) as ctx:
            OrderConfirmationService.update_order_status(
                self.session, self.seller.id, order.id, "processing"
            )
        self.assertEqual(ctx.exception.message, "Cannot update a cancelled order")

    def test_escrowed_order_cannot_be_cancelled(self):
        order = make_escrowed_order(self.session, self.buyer, self.seller)

        with self.assertRaises(SettlementError) as ctx:
            OrderConfirmationService.update_order_status(
                self.session, self.seller.id, order.id, "canceled"
            )

        self.assertIn("cannot be cancelled", ctx.exception.message)
        self.assertIsNotNone(EscrowService.get_active_hold(self.session, order.id))

    def test_unknown_order(self):
        with self.assertRaises(SettlementError) as ctx:
            OrderConfirmationService.update_order_status(
                self.session, self.seller.id, uuid.uuid4(), "processing"
            )

        self.assertEqual(ctx.exception.code, ErrorCode.NOT_FOUND)
        self.assertEqual(ctx.exception.message, "Order not found")


class TestBuyerConfirmDelivery(OrderTestCase):
    def test_releases_hold(self):
        order = self.delivered_order()

        confirmed = OrderConfirmationService.buyer_confirm_delivery(
            self.session, self.buyer.id, order.id
        )

        self.assertEqual(confirmed.payout_status, "processing")
        self.assertIsNotNone(confirmed.delivered_date)
        hold = self.session.exec(select(PaymentHold).where(PaymentHold.order_id == order.id)).one()
        self.assertEqual(hold.hold_status, HoldStatus.RELEASED.value)
        [event] = outbox_events(self.session, "order.delivery_confirmed")
        self.assertTrue(event.payload["data"]["hold_released"])
        self.assertEqual(event.payload["data"]["hold_id"], str(hold.id))

    def test_missing_hold_still_completes(self):
        order = self.delivered_order()
        EscrowService.dispute_hold(self.session, order.id, "manual_review")
        self.session.commit()

        confirmed = OrderConfirmationService.buyer_confirm_delivery(
            self.session, self.buyer.id, order.id
        )

        self.assertEqual(confirmed.payout_status, "processing")
        [event] = outbox_events(self.session, "order.delivery_confirmed")
        self.assertFalse(event.payload["data"]["hold_released"])
        self.assertIsNone(event.payload["data"]["hold_id"])

    def test_requires_seller_delivery(self):
        order = self.confirmed_order()

        with self.assertRaises(SettlementError) as ctx:
            OrderConfirmationService.buyer_confirm_delivery(self.session, self.buyer.id, order.id)

        self.assertEqual(
            ctx.exception.message, "Cannot confirm delivery until seller confirms shipment"
        )
        self.assertIsNotNone(EscrowService.get_active_hold(self.session, order.id))

    def test_confirm_twice_releases_once(self):
        order = self.delivered_order()
        OrderConfirmationService.buyer_confirm_delivery(self.session, self.buyer.id, order.id)

        with self.assertRaises(SettlementError) as ctx:
            OrderConfirmationService.buyer_confirm_delivery(self.session, self.buyer.id, order.id)

        self.assertEqual(ctx.exception.message, "Delivery already confirmed")
        self.assertEqual(len(outbox_events(self.session, "order.delivery_confirmed")), 1)

    def test_other_buyers_order_is_not_found(self):
        order = self.delivered_order()
        stranger = make_buyer(self.session)

        with self.assertRaises(SettlementError) as ctx:
            OrderConfirmationService.buyer_confirm_delivery(self.session, stranger.id, order.id)

        self.assertEqual(ctx.exception.code, ErrorCode.NOT_FOUND)


class TestSellerQueries(OrderTestCase):
    def test_list_and_filter(self):
        make_order(self.session, self.buyer, self.seller)
        self.confirmed_order()
        make_order(self.session, self.buyer, make_seller(self.session, "Ankara Lane"))

        orders, count = OrderConfirmationService.list_seller_orders(self.session, self.seller.id)
        confirmed, confirmed_count = OrderConfirmationService.list_seller_orders(
            self.session, self.seller.id, OrderStatus.CONFIRMED
        )

        self.assertEqual(count, 2)
        self.assertEqual(len(orders), 2)
        self.assertEqual(confirmed_count, 1)
        self.assertEqual(confirmed[0].order_status, "confirmed")

    def test_order_details_scoped_to_seller(self):
        order = make_order(self.session, self.buyer, self.seller)
        other = make_seller(self.session, "Ankara Lane")

        self.assertEqual(
            OrderConfirmationService.get_order_details(self.session, self.seller.id, order.id).id,
            order.id,
        )
        with self.assertRaises(SettlementError):
            OrderConfirmationService.get_order_details(self.session, other.id, order.id)

    def test_message_reuses_conversation(self):
        order = make_order(self.session, self.buyer, self.seller)

        first = OrderConfirmationService.send_message_to_buyer(
            self.session, self.seller.id, order.id, self.buyer.id, "Your kaftan ships Monday"
        )
        second = OrderConfirmationService.send_message_to_buyer(
            self.session, self.seller.id, order.id, self.buyer.id, "Tracking to follow"
        )

        self.assertEqual(first.conversation_id, second.conversation_id)
        self.assertEqual(len(self.session.exec(select(Conversation)).all()), 1)
        messages = self.session.exec(select(Message)).all()
        self.assertEqual({m.sender_role for m in messages}, {"seller"})
        self.assertEqual(len(messages), 2)

    def test_message_to_wrong_buyer(self):
        order = make_order(self.session, self.buyer, self.seller)
        stranger = make_buyer(self.session)

        with self.assertRaises(SettlementError) as ctx:
            OrderConfirmationService.send_message_to_buyer(
                self.session, self.seller.id, order.id, stranger.id, "hello"
            )

        self.assertEqual(ctx.exception.message, "Invalid buyer for this order")
