import unittest

from factories import DatabaseMixin, make_buyer, make_listing, make_seller
from settlement.errors import ErrorCode, SettlementError
from settlement.models import HoldStatus, Order, Payment, PaymentStatus
from settlement.services.escrow_service import EscrowService, assert_hold_transition


class EscrowTestCase(DatabaseMixin, unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.buyer = make_buyer(self.session)
        self.seller = make_seller(self.session)
        self.listing = make_listing(self.session, self.seller)

    def make_order(self, amount_cents: int = 5000, currency: str = "NGN") -> tuple[Order, Payment]:
        order = Order(
            buyer_id=self.buyer.id,
            seller_id=self.seller.id,
            listing_id=self.listing.id,
            amount_cents=amount_cents,
            currency=currency,
            payment_method="card",
            customer_name="Ada Obi",
            customer_email="ada@example.com",
        )
        self.session.add(order)
        self.session.flush()
        payment = Payment(
            buyer_id=self.buyer.id,
            order_id=order.id,
            amount_cents=amount_cents,
            currency=currency,
            payment_method="card",
            transaction_ref=f"order_{order.id}",
        )
        self.session.add(payment)
        self.session.commit()
        return order, payment


class TestPaymentTransitions(EscrowTestCase):
    def test_complete_is_idempotent_per_reference(self):
        _, payment = self.make_order()

        first = EscrowService.complete_payment(self.session, payment.id, payment.transaction_ref)
        second = EscrowService.complete_payment(self.session, payment.id, payment.transaction_ref)

        self.assertEqual(first.status, PaymentStatus.COMPLETED.value)
        self.assertEqual(second.status, PaymentStatus.COMPLETED.value)

    def test_complete_with_wrong_reference_is_rejected(self):
        _, payment = self.make_order()

        with self.assertRaises(SettlementError) as ctx:
            EscrowService.complete_payment(self.session, payment.id, "order_other")

        self.assertEqual(ctx.exception.code, ErrorCode.PRECONDITION_FAILED)
        self.assertEqual(
            self.session.get(Payment, payment.id).status, PaymentStatus.PENDING.value
        )

    def test_failed_payment_cannot_complete(self):
        _, payment = self.make_order()
        self.assertTrue(EscrowService.fail_payment(self.session, payment.id, payment.transaction_ref))

        with self.assertRaises(SettlementError) as ctx:
            EscrowService.complete_payment(self.session, payment.id, payment.transaction_ref)

        self.assertEqual(ctx.exception.code, ErrorCode.PRECONDITION_FAILED)

    def test_completed_payment_is_never_downgraded(self):
        _, payment = self.make_order()
        EscrowService.complete_payment(self.session, payment.id, payment.transaction_ref)

        self.assertFalse(
            EscrowService.fail_payment(self.session, payment.id, payment.transaction_ref)
        )
        self.assertFalse(
            EscrowService.mark_payment_processing(
                self.session, payment.id, payment.transaction_ref
            )
        )
        self.assertEqual(
            self.session.get(Payment, payment.id).status, PaymentStatus.COMPLETED.value
        )

    def test_refund_requires_completion(self):
        _, payment = self.make_order()

        self.assertFalse(
            EscrowService.refund_payment(self.session, payment.id, payment.transaction_ref)
        )
        EscrowService.complete_payment(self.session, payment.id, payment.transaction_ref)
        self.assertTrue(
            EscrowService.refund_payment(self.session, payment.id, payment.transaction_ref)
        )
        self.assertEqual(
            self.session.get(Payment, payment.id).status, PaymentStatus.REFUNDED.value
        )


class TestPaymentHolds(EscrowTestCase):
    def _completed(self, amount_cents: int = 5000, currency: str = "NGN"):
        order, payment = self.make_order(amount_cents, currency)
        payment = EscrowService.complete_payment(self.session, payment.id, payment.transaction_ref)
        return order, payment

    def test_hold_requires_completed_payment(self):
        order, payment = self.make_order()

        with self.assertRaises(SettlementError) as ctx:
            EscrowService.create_payment_hold(self.session, payment, order)

        self.assertEqual(ctx.exception.code, ErrorCode.PRECONDITION_FAILED)

    def test_only_one_active_hold_per_order(self):
        order, payment = self._completed()
        EscrowService.create_payment_hold(self.session, payment, order)

        with self.assertRaises(SettlementError) as ctx:
            EscrowService.create_payment_hold(self.session, payment, order)

        self.assertEqual(ctx.exception.code, ErrorCode.PRECONDITION_FAILED)
        self.assertEqual(ctx.exception.message, "This order has already been confirmed")

    def test_custom_duration(self):
        order, payment = self._completed()

        hold = EscrowService.create_payment_hold(self.session, payment, order, duration_days=14)

        self.assertEqual(hold.duration_days, 14)
        self.assertAlmostEqual(
            (hold.hold_until - hold.created_at).total_seconds(), 14 * 86400, delta=5
        )

    def test_release_is_single_shot(self):
        order, payment = self._completed()
        EscrowService.create_payment_hold(self.session, payment, order)

        released = EscrowService.release_hold(self.session, order.id)
        again = EscrowService.release_hold(self.session, order.id)

        self.assertEqual(released.hold_status, HoldStatus.RELEASED.value)
        self.assertIsNotNone(released.released_at)
        self.assertIsNone(again)
        self.assertIsNone(EscrowService.get_active_hold(self.session, order.id))

    def test_dispute_records_reason(self):
        order, payment = self._completed()
        EscrowService.create_payment_hold(self.session, payment, order)

        hold = EscrowService.dispute_hold(self.session, order.id, "item_not_received")

        self.assertEqual(hold.hold_status, HoldStatus.DISPUTED.value)
        self.assertEqual(hold.reason, "item_not_received")
        with self.assertRaises(SettlementError):
            EscrowService.dispute_hold(self.session, order.id, "again")

    def test_no_new_hold_after_release_or_dispute(self):
        for outcome, settle in (
            ("released", lambda order: EscrowService.release_hold(self.session, order.id)),
            (
                "disputed",
                lambda order: EscrowService.dispute_hold(self.session, order.id, "chargeback"),
            ),
        ):
            order, payment = self._completed()
            EscrowService.create_payment_hold(self.session, payment, order)
            settle(order)

            with self.subTest(outcome=outcome):
                with self.assertRaises(SettlementError) as ctx:
                    EscrowService.create_payment_hold(self.session, payment, order)

                self.assertEqual(ctx.exception.code, ErrorCode.PRECONDITION_FAILED)
                self.assertIsNone(EscrowService.get_active_hold(self.session, order.id))

    def test_balance_sums_active_holds_in_currency(self):
        first, first_payment = self._completed(5000)
        second, second_payment = self._completed(2500)
        released, released_payment = self._completed(9999)
        dollars, dollar_payment = self._completed(100, "USD")
        for order, payment in (
            (first, first_payment),
            (second, second_payment),
            (released, released_payment),
            (dollars, dollar_payment),
        ):
            EscrowService.create_payment_hold(self.session, payment, order)
        EscrowService.release_hold(self.session, released.id)

        self.assertEqual(
            EscrowService.get_seller_escrow_balance(self.session, self.seller.id, "NGN"), 7500
        )
        self.assertEqual(
            EscrowService.get_seller_escrow_balance(self.session, self.seller.id, "USD"), 100
        )
        self.assertEqual(
            EscrowService.get_seller_escrow_balance(self.session, self.seller.id, "GHS"), 0
        )


class TestHoldTransitions(unittest.TestCase):
    def test_active_may_be_released_or_disputed(self):
        assert_hold_transition("active", "released")
        assert_hold_transition("active", "disputed")

    def test_settled_holds_are_final(self):
        for current in ("released", "disputed"):
            for target in ("active", "released", "disputed"):
                with self.subTest(current=current, target=target):
                    with self.assertRaises(SettlementError):
                        assert_hold_transition(current, target)
