"""
Tsara webhook handling

Webhooks only move Payment rows along the payment state machine. They never
create escrow holds (confirm_checkout is the only path into escrow) and never
move a payment backwards, so a late or replayed `pending` after `completed`
is recorded for audit and otherwise ignored.
"""

from datetime import datetime, timezone

from pydantic import ValidationError
from sqlalchemy import update
from sqlmodel import Session, select

from settlement.clients.tsara import WebhookEvent, verify_webhook_signature
from settlement.core.logging import get_logger
from settlement.core.metrics import webhook_events_total
from settlement.errors import ErrorCode, SettlementError
from settlement.events import PaymentFailedData, PaymentRefundedData
from settlement.models import (
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
    TERMINAL_ORDER_STATUSES,
    WebhookAck,
)
from settlement.services.escrow_service import EscrowService
from settlement.services.outbox_service import OutboxService

logger = get_logger(__name__)

PAYMENT_EVENTS = {"payment.updated", "payment_link.updated"}

# Gateway status -> local payment status
STATUS_MAP: dict[str, PaymentStatus] = {
    "pending": PaymentStatus.PENDING,
    "processing": PaymentStatus.PROCESSING,
    "success": PaymentStatus.COMPLETED,
    "failed": PaymentStatus.FAILED,
    "refunded": PaymentStatus.REFUNDED,
}


class WebhookService:
    @staticmethod
    def parse(payload: bytes, signature: str | None) -> WebhookEvent:
        if not signature:
            webhook_events_total.labels(event_type="unknown", result="missing_signature").inc()
            raise SettlementError(ErrorCode.BAD_REQUEST, "Missing signature")

        if not verify_webhook_signature(payload, signature):
            webhook_events_total.labels(event_type="unknown", result="invalid_signature").inc()
            logger.warning("webhook_signature_invalid", payload_bytes=len(payload))
            raise SettlementError(ErrorCode.UNAUTHORIZED, "Invalid signature")

        try:
            return WebhookEvent.model_validate_json(payload)
        except ValidationError as e:
            webhook_events_total.labels(event_type="unknown", result="invalid_payload").inc()
            logger.warning("webhook_payload_invalid", errors=e.errors(include_url=False))
            raise SettlementError(ErrorCode.BAD_REQUEST, "Invalid webhook payload") from e

    @staticmethod
    def handle_tsara_webhook(
        session: Session, payload: bytes, signature: str | None
    ) -> WebhookAck:
        event = WebhookService.parse(payload, signature)

        if event.event not in PAYMENT_EVENTS:
            webhook_events_total.labels(event_type=event.event, result="ignored").inc()
            logger.info("webhook_event_ignored", event_type=event.event)
            return WebhookAck(success=True, message="Webhook processed successfully")

        reference = event.data.reference
        payment = session.exec(
            select(Payment).where(Payment.transaction_ref == reference)
        ).first()
        if payment is None:
            webhook_events_total.labels(event_type=event.event, result="not_found").inc()
            raise SettlementError(ErrorCode.NOT_FOUND, "Payment not found")

        target = STATUS_MAP[event.data.status]
        try:
            payment.gateway_response = event.model_dump(mode="json")
            session.add(payment)
            session.flush()

            result = WebhookService._apply_status(session, payment, target)
            session.commit()
        except Exception:
            session.rollback()
            raise

        webhook_events_total.labels(event_type=event.event, result=result).inc()
        logger.info(
            "webhook_processed",
            event_type=event.event,
            transaction_ref=reference,
            gateway_status=event.data.status,
            result=result,
        )
        return WebhookAck(success=True, message="Webhook processed successfully")

    @staticmethod
    def _apply_status(session: Session, payment: Payment, target: PaymentStatus) -> str:
        """Move the payment toward `target`; returns a short result label."""
        ref = payment.transaction_ref

        match target:
            case PaymentStatus.PENDING:
                return "unchanged"
            case PaymentStatus.PROCESSING:
                moved = EscrowService.mark_payment_processing(session, payment.id, ref)
                return "applied" if moved else "stale"
            case PaymentStatus.COMPLETED:
                try:
                    EscrowService.complete_payment(session, payment.id, ref)
                except SettlementError:
                    return "stale"
                return "applied"
            case PaymentStatus.FAILED:
                if not EscrowService.fail_payment(session, payment.id, ref):
                    return "stale"
                order = session.get(Order, payment.order_id) if payment.order_id else None
                OutboxService.create_event(
                    session=session,
                    event_type="payment.failed",
                    event_data=PaymentFailedData(
                        payment_id=str(payment.id),
                        buyer_id=str(payment.buyer_id),
                        transaction_ref=ref,
                        amount_cents=payment.amount_cents,
                        currency=payment.currency,
                        reason="gateway_webhook",
                        order_id=str(order.id) if order else None,
                        seller_id=str(order.seller_id) if order else None,
                    ),
                    partition_key=str(payment.order_id or payment.id),
                )
                return "applied"
            case PaymentStatus.REFUNDED:
                if not EscrowService.refund_payment(session, payment.id, ref):
                    return "stale"
                WebhookService._refund_order(session, payment)
                return "applied"

        return "unchanged"

    @staticmethod
    def _refund_order(session: Session, payment: Payment) -> None:
        """A refunded payment takes its order out of escrow; the hold is disputed, never released."""
        order = session.get(Order, payment.order_id) if payment.order_id else None
        if order is not None:
            session.execute(
                update(Order)
                .where(
                    Order.id == order.id,  # type: ignore[arg-type]
                    Order.order_status.not_in(TERMINAL_ORDER_STATUSES),  # type: ignore[attr-defined]
                )
                .values(
                    order_status=OrderStatus.REFUNDED.value,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            if EscrowService.get_active_hold(session, order.id) is not None:
                EscrowService.dispute_hold(session, order.id, "payment_refunded")

        OutboxService.create_event(
            session=session,
            event_type="payment.refunded",
            event_data=PaymentRefundedData(
                payment_id=str(payment.id),
                buyer_id=str(payment.buyer_id),
                transaction_ref=payment.transaction_ref,
                amount_cents=payment.amount_cents,
                currency=payment.currency,
                order_id=str(order.id) if order else None,
                seller_id=str(order.seller_id) if order else None,
            ),
            partition_key=str(payment.order_id or payment.id),
        )
