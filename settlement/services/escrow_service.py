"""
Payment and escrow hold lifecycle

Money moves exactly once, so every state change here is a conditional update
(compare-and-swap) on the expected current status rather than read-then-write:

    payments.status        pending | processing -> completed | failed   (keyed on id + transaction_ref)
                           completed -> refunded
    payment_holds.status   active -> released | disputed

None of these methods commit; the caller owns the transaction.
"""

import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from settlement.core.config import settings
from settlement.core.logging import get_logger
from settlement.core.metrics import payment_holds_created_total
from settlement.errors import ErrorCode, SettlementError
from settlement.models import (
    HoldStatus,
    Order,
    Payment,
    PaymentHold,
    PaymentStatus,
)

logger = get_logger(__name__)

HOLD_TRANSITIONS: dict[str, set[str]] = {
    HoldStatus.ACTIVE.value: {HoldStatus.RELEASED.value, HoldStatus.DISPUTED.value},
    HoldStatus.RELEASED.value: set(),
    HoldStatus.DISPUTED.value: set(),
}


def assert_hold_transition(current: str, target: str) -> None:
    """Holds only ever leave `active`, and only once."""
    if target not in HOLD_TRANSITIONS.get(current, set()):
        raise SettlementError(
            ErrorCode.BAD_REQUEST,
            f"Cannot move a {current} payment hold to {target}",
        )


class EscrowService:
    @staticmethod
    def complete_payment(
        session: Session, payment_id: uuid.UUID, transaction_ref: str
    ) -> Payment:
        """
        Mark a payment completed, exactly once per transaction reference.

        Repeating the call for an already-completed payment with the same
        reference returns it unchanged. Any other state (failed, refunded, or a
        reference mismatch) is a PRECONDITION_FAILED.
        """
        now = datetime.now(timezone.utc)
        result = session.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,  # type: ignore[arg-type]
                Payment.transaction_ref == transaction_ref,  # type: ignore[arg-type]
                Payment.status.in_(  # type: ignore[attr-defined]
                    [PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value]
                ),
            )
            .values(status=PaymentStatus.COMPLETED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )

        payment = session.get(Payment, payment_id, populate_existing=True)
        if payment is None:
            raise SettlementError(ErrorCode.NOT_FOUND, "Payment not found")

        if result.rowcount == 1:  # type: ignore[attr-defined]
            logger.info(
                "payment_completed",
                payment_id=str(payment_id),
                transaction_ref=transaction_ref,
            )
            return payment

        if (
            payment.status == PaymentStatus.COMPLETED.value
            and payment.transaction_ref == transaction_ref
        ):
            logger.info(
                "payment_already_completed",
                payment_id=str(payment_id),
                transaction_ref=transaction_ref,
            )
            return payment

        logger.warning(
            "payment_completion_rejected",
            payment_id=str(payment_id),
            transaction_ref=transaction_ref,
            current_status=payment.status,
            reference_matches=payment.transaction_ref == transaction_ref,
        )
        raise SettlementError(
            ErrorCode.PRECONDITION_FAILED,
            "Payment confirmation failed. Please try again or contact support.",
        )

    @staticmethod
    def _move_payment(
        session: Session,
        payment_id: uuid.UUID,
        transaction_ref: str,
        allowed_from: list[str],
        target: PaymentStatus,
    ) -> bool:
        result = session.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,  # type: ignore[arg-type]
                Payment.transaction_ref == transaction_ref,  # type: ignore[arg-type]
                Payment.status.in_(allowed_from),  # type: ignore[attr-defined]
            )
            .values(status=target.value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        moved = result.rowcount == 1  # type: ignore[attr-defined]
        if moved:
            session.get(Payment, payment_id, populate_existing=True)
        return moved

    @staticmethod
    def fail_payment(session: Session, payment_id: uuid.UUID, transaction_ref: str) -> bool:
        """pending | processing -> failed. False when the payment was already settled."""
        moved = EscrowService._move_payment(
            session,
            payment_id,
            transaction_ref,
            [PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value],
            PaymentStatus.FAILED,
        )
        if moved:
            logger.info(
                "payment_failed", payment_id=str(payment_id), transaction_ref=transaction_ref
            )
        return moved

    @staticmethod
    def mark_payment_processing(
        session: Session, payment_id: uuid.UUID, transaction_ref: str
    ) -> bool:
        return EscrowService._move_payment(
            session,
            payment_id,
            transaction_ref,
            [PaymentStatus.PENDING.value],
            PaymentStatus.PROCESSING,
        )

    @staticmethod
    def refund_payment(session: Session, payment_id: uuid.UUID, transaction_ref: str) -> bool:
        """completed -> refunded. False when the payment was not completed."""
        moved = EscrowService._move_payment(
            session,
            payment_id,
            transaction_ref,
            [PaymentStatus.COMPLETED.value],
            PaymentStatus.REFUNDED,
        )
        if moved:
            logger.info(
                "payment_refunded", payment_id=str(payment_id), transaction_ref=transaction_ref
            )
        return moved

    @staticmethod
    def create_payment_hold(
        session: Session,
        payment: Payment,
        order: Order,
        duration_days: int | None = None,
    ) -> PaymentHold:
        """
        Move the order's funds into escrow for the seller.

        Requires a completed payment. An order is held at most once: a released
        or disputed hold blocks a new one, and the partial unique index on active
        holds rejects a second hold inserted by a concurrent request.
        """
        if payment.status != PaymentStatus.COMPLETED.value:
            raise SettlementError(
                ErrorCode.PRECONDITION_FAILED,
                "Payment must be completed before funds can be held in escrow",
            )

        if EscrowService.get_hold(session, order.id) is not None:
            raise SettlementError(
                ErrorCode.PRECONDITION_FAILED,
                "This order has already been confirmed",
            )

        duration_days = duration_days or settings.PAYMENT_HOLD_DAYS
        now = datetime.now(timezone.utc)
        hold = PaymentHold(
            payment_id=payment.id,
            order_id=order.id,
            seller_id=order.seller_id,
            amount_cents=order.amount_cents,
            currency=order.currency,
            hold_status=HoldStatus.ACTIVE.value,
            duration_days=duration_days,
            hold_until=now + timedelta(days=duration_days),
        )
        session.add(hold)
        try:
            session.flush()
        except IntegrityError as e:
            logger.warning(
                "payment_hold_conflict",
                order_id=str(order.id),
                payment_id=str(payment.id),
                error_message=str(e.orig),
            )
            raise SettlementError(
                ErrorCode.PRECONDITION_FAILED,
                "This order has already been confirmed",
            ) from e

        payment_holds_created_total.labels(currency=hold.currency).inc()
        logger.info(
            "payment_hold_created",
            hold_id=str(hold.id),
            order_id=str(order.id),
            seller_id=str(order.seller_id),
            amount_cents=hold.amount_cents,
            currency=hold.currency,
            hold_until=hold.hold_until,
        )
        return hold

    @staticmethod
    def get_hold(session: Session, order_id: uuid.UUID) -> PaymentHold | None:
        """The order's hold in any status."""
        return session.exec(select(PaymentHold).where(PaymentHold.order_id == order_id)).first()

    @staticmethod
    def get_active_hold(session: Session, order_id: uuid.UUID) -> PaymentHold | None:
        statement = select(PaymentHold).where(
            PaymentHold.order_id == order_id,
            PaymentHold.hold_status == HoldStatus.ACTIVE.value,
        )
        return session.exec(statement).first()

    @staticmethod
    def _transition_hold(
        session: Session,
        order_id: uuid.UUID,
        target: HoldStatus,
        now: datetime,
        reason: str | None = None,
    ) -> PaymentHold | None:
        hold = EscrowService.get_active_hold(session, order_id)
        if hold is None:
            return None

        assert_hold_transition(hold.hold_status, target.value)

        values: dict = {"hold_status": target.value, "updated_at": now}
        if target == HoldStatus.RELEASED:
            values["released_at"] = now
        if reason is not None:
            values["reason"] = reason

        result = session.execute(
            update(PaymentHold)
            .where(
                PaymentHold.id == hold.id,  # type: ignore[arg-type]
                PaymentHold.hold_status == HoldStatus.ACTIVE.value,  # type: ignore[arg-type]
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:  # type: ignore[attr-defined]
            # Another transaction moved the hold first
            return None

        return session.get(PaymentHold, hold.id, populate_existing=True)

    @staticmethod
    def release_hold(
        session: Session, order_id: uuid.UUID, now: datetime | None = None
    ) -> PaymentHold | None:
        """
        Release the order's active hold to the seller.

        Returns None when there was no active hold to release.
        """
        hold = EscrowService._transition_hold(
            session, order_id, HoldStatus.RELEASED, now or datetime.now(timezone.utc)
        )
        if hold is not None:
            logger.info(
                "payment_hold_released",
                hold_id=str(hold.id),
                order_id=str(order_id),
                amount_cents=hold.amount_cents,
            )
        return hold

    @staticmethod
    def dispute_hold(session: Session, order_id: uuid.UUID, reason: str) -> PaymentHold:
        hold = EscrowService._transition_hold(
            session, order_id, HoldStatus.DISPUTED, datetime.now(timezone.utc), reason
        )
        if hold is None:
            raise SettlementError(
                ErrorCode.BAD_REQUEST, "No active payment hold for this order"
            )
        logger.info(
            "payment_hold_disputed",
            hold_id=str(hold.id),
            order_id=str(order_id),
            reason=reason,
        )
        return hold

    @staticmethod
    def get_seller_escrow_balance(
        session: Session, seller_id: uuid.UUID, currency: str
    ) -> int:
        """Sum of the seller's active holds, in minor units."""
        statement = select(func.coalesce(func.sum(PaymentHold.amount_cents), 0)).where(
            PaymentHold.seller_id == seller_id,
            PaymentHold.currency == currency,
            PaymentHold.hold_status == HoldStatus.ACTIVE.value,
        )
        return int(session.exec(statement).one())
