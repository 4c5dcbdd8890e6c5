"""
Notification service

Notifications are a side channel: they observe settlement transitions and never
take part in them. Every write and every email here is best effort. Failures
are logged and counted, then swallowed, so a broken mailbox or a notification
insert error can never fail (or roll back) the transition that triggered it.

Settlement code does not call this module directly. Transitions write events to
the outbox; the notification consumer feeds them to `handle_event`.
"""

import html
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError
from sqlalchemy import update
from sqlmodel import Session, func, select

from settlement.clients.email_client import EmailClient, email_client
from settlement.core.logging import get_logger
from settlement.core.metrics import notifications_total
from settlement.errors import ErrorCode, SettlementError
from settlement.events import (
    EVENT_DATA_TYPES,
    OrderCancelledData,
    OrderConfirmedData,
    OrderDeliveryConfirmedData,
    OrderDeliveryMarkedData,
    OrderPlacedData,
    OrderShippedData,
    PaymentFailedData,
    PaymentRefundedData,
)
from settlement.models import (
    Buyer,
    Notification,
    NotificationCreate,
    NotificationType,
    Seller,
)

logger = get_logger(__name__)

EMAIL_SUBJECTS: dict[NotificationType, str] = {
    NotificationType.PURCHASE: "New Purchase Notification",
    NotificationType.REVIEW: "New Review Received",
    NotificationType.COMMENT: "New Comment",
    NotificationType.REMINDER: "Reminder",
    NotificationType.ORDER_PLACED: "Order Placed",
    NotificationType.ORDER_CONFIRMED: "Order Confirmed",
    NotificationType.ORDER_SHIPPED: "Order Shipped",
    NotificationType.ORDER_CANCELLED: "Order Cancelled",
    NotificationType.DELIVERY_MARKED: "Order Delivered",
    NotificationType.PAYMENT_FAILED: "Payment Failed",
    NotificationType.REFUND_ISSUED: "Refund Issued",
    NotificationType.DELIVERY_CONFIRMED: "Delivery Confirmed",
}


def format_amount(amount_cents: int, currency: str) -> str:
    """NGN 125.00 from 12500; integer arithmetic only."""
    sign = "-" if amount_cents < 0 else ""
    major, minor = divmod(abs(amount_cents), 100)
    return f"{currency} {sign}{major}.{minor:02d}"


def short_id(value: str | uuid.UUID) -> str:
    return str(value)[:8]


def render_email(payload: NotificationCreate) -> tuple[str, str, str]:
    """Return (subject, html, text) for a notification email."""
    subject = EMAIL_SUBJECTS.get(payload.type, "Notification")
    sent_at = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    body = f"""
    <html>
      <body style="font-family: Arial, sans-serif;">
        <h2>{html.escape(subject)}</h2>
        <p>{html.escape(payload.message)}</p>
        <p style="color: #888; font-size: 12px;">Sent at {sent_at}</p>
      </body>
    </html>
    """
    return subject, body, payload.message


@dataclass(frozen=True)
class Recipient:
    """Whose notifications a read/update call may touch."""

    buyer_id: uuid.UUID | None = None
    seller_id: uuid.UUID | None = None

    def clause(self):
        if self.buyer_id is not None:
            return Notification.buyer_id == self.buyer_id
        if self.seller_id is not None:
            return Notification.seller_id == self.seller_id
        raise ValueError("Recipient needs a buyer_id or a seller_id")


class NotificationService:
    def __init__(self, mailer: EmailClient | None = None):
        self.mailer = mailer or email_client

    # ---- delivery -------------------------------------------------------

    async def send_notification(
        self, session: Session, payload: NotificationCreate
    ) -> uuid.UUID | None:
        """
        Store a notification and email it when an address is known.

        Returns the notification id, or None if the row could not be written.
        Never raises.
        """
        notification_id: uuid.UUID | None = None
        try:
            notification = Notification(
                buyer_id=payload.buyer_id,
                seller_id=payload.seller_id,
                type=payload.type.value,
                title=payload.title,
                message=payload.message,
                details=payload.details,
            )
            session.add(notification)
            session.commit()
            notification_id = notification.id
            notifications_total.labels(channel="db", status="sent").inc()
        except Exception as e:
            session.rollback()
            notifications_total.labels(channel="db", status="failed").inc()
            logger.error(
                "notification_write_failed",
                notification_type=payload.type.value,
                buyer_id=str(payload.buyer_id) if payload.buyer_id else None,
                seller_id=str(payload.seller_id) if payload.seller_id else None,
                error_type=type(e).__name__,
                error_message=str(e),
            )

        if not payload.email:
            return notification_id

        if not self.mailer.enabled:
            notifications_total.labels(channel="email", status="skipped").inc()
            return notification_id

        try:
            subject, body, text = render_email(payload)
            await self.mailer.send(payload.email, subject, body, text)
            notifications_total.labels(channel="email", status="sent").inc()
        except Exception as e:
            notifications_total.labels(channel="email", status="failed").inc()
            logger.error(
                "notification_email_failed",
                notification_type=payload.type.value,
                error_type=type(e).__name__,
                error_message=str(e),
            )

        return notification_id

    # ---- typed notifications ---------------------------------------------

    async def notify_order_placed(self, session: Session, data: OrderPlacedData):
        amount = format_amount(data.amount_cents, data.currency)
        details = {
            "order_id": data.order_id,
            "amount_cents": data.amount_cents,
            "currency": data.currency,
            "seller_id": data.seller_id,
        }
        await self.send_notification(
            session,
            NotificationCreate(
                type=NotificationType.ORDER_PLACED,
                title="Order Placed Successfully",
                message=f"Your order #{short_id(data.order_id)} for {amount} has been placed successfully!",
                buyer_id=uuid.UUID(data.buyer_id),
                email=_buyer_email(session, data.buyer_id),
                details=details,
            ),
        )
        await self.send_notification(
            session,
            NotificationCreate(
                type=NotificationType.PURCHASE,
                title="New Purchase",
                message=f"New order #{short_id(data.order_id)}: {amount} is held in escrow until delivery is confirmed",
                seller_id=uuid.UUID(data.seller_id),
                email=_seller_email(session, data.seller_id),
                details=details,
            ),
        )

    async def notify_order_confirmed(self, session: Session, data: OrderConfirmedData):
        await self._notify_buyer(
            session,
            data.buyer_id,
            NotificationType.ORDER_CONFIRMED,
            "Order Confirmed",
            "Your order has been confirmed",
            {"order_id": data.order_id, "seller_id": data.seller_id},
        )

    async def notify_order_shipped(self, session: Session, data: OrderShippedData):
        message = "Your order is on its way"
        if data.tracking_number:
            message += f" (tracking number {data.tracking_number})"
        await self._notify_buyer(
            session,
            data.buyer_id,
            NotificationType.ORDER_SHIPPED,
            "Order Shipped",
            message,
            {"order_id": data.order_id, "tracking_number": data.tracking_number},
        )

    async def notify_order_cancelled(self, session: Session, data: OrderCancelledData):
        await self._notify_buyer(
            session,
            data.buyer_id,
            NotificationType.ORDER_CANCELLED,
            "Order Cancelled",
            f"Your order #{short_id(data.order_id)} has been cancelled",
            {"order_id": data.order_id, "reason": data.reason},
        )

    async def notify_delivery_marked(self, session: Session, data: OrderDeliveryMarkedData):
        await self._notify_buyer(
            session,
            data.buyer_id,
            NotificationType.DELIVERY_MARKED,
            "Order Delivered",
            "Your order has been delivered. Please confirm receipt to complete your purchase.",
            {"order_id": data.order_id, "seller_id": data.seller_id},
        )

    async def notify_delivery_confirmed(
        self, session: Session, data: OrderDeliveryConfirmedData
    ):
        message = f"The buyer confirmed delivery of order #{short_id(data.order_id)}"
        if data.hold_released:
            message += f". {format_amount(data.amount_cents, data.currency)} has been released from escrow"
        await self.send_notification(
            session,
            NotificationCreate(
                type=NotificationType.DELIVERY_CONFIRMED,
                title="Delivery Confirmed",
                message=message,
                seller_id=uuid.UUID(data.seller_id),
                email=_seller_email(session, data.seller_id),
                details={
                    "order_id": data.order_id,
                    "buyer_id": data.buyer_id,
                    "hold_released": data.hold_released,
                },
            ),
        )

    async def notify_payment_failed(self, session: Session, data: PaymentFailedData):
        details = {
            "payment_id": data.payment_id,
            "order_id": data.order_id,
            "transaction_ref": data.transaction_ref,
        }
        await self._notify_buyer(
            session,
            data.buyer_id,
            NotificationType.PAYMENT_FAILED,
            "Payment Failed",
            "Payment failed for your order",
            details,
        )
        if data.seller_id:
            await self.send_notification(
                session,
                NotificationCreate(
                    type=NotificationType.PAYMENT_FAILED,
                    title="Payment Failed",
                    message=f"Payment failed for order #{short_id(data.order_id or data.payment_id)}",
                    seller_id=uuid.UUID(data.seller_id),
                    details=details,
                ),
            )

    async def notify_refund_issued(self, session: Session, data: PaymentRefundedData):
        await self._notify_buyer(
            session,
            data.buyer_id,
            NotificationType.REFUND_ISSUED,
            "Refund Issued",
            f"Refund of {format_amount(data.amount_cents, data.currency)} has been issued",
            {"payment_id": data.payment_id, "order_id": data.order_id},
        )

    async def _notify_buyer(
        self,
        session: Session,
        buyer_id: str,
        type_: NotificationType,
        title: str,
        message: str,
        details: dict[str, Any],
    ):
        await self.send_notification(
            session,
            NotificationCreate(
                type=type_,
                title=title,
                message=message,
                buyer_id=uuid.UUID(buyer_id),
                email=_buyer_email(session, buyer_id),
                details=details,
            ),
        )

    async def handle_event(self, session: Session, envelope: dict[str, Any]) -> bool:
        """
        Turn a settlement event envelope into notifications.

        Returns False for event types this service does not act on. Malformed
        payloads raise, so the consumer leaves the offset uncommitted.
        """
        event_type = envelope.get("event_type", "")
        data_type = EVENT_DATA_TYPES.get(event_type)
        if data_type is None:
            logger.warning("notification_event_unknown_type", event_type=event_type)
            return False

        try:
            data = data_type.model_validate(envelope.get("data") or {})
        except ValidationError:
            logger.error(
                "notification_event_invalid",
                event_type=event_type,
                event_id=envelope.get("event_id"),
            )
            raise

        match data:
            case OrderPlacedData():
                await self.notify_order_placed(session, data)
            case OrderConfirmedData():
                await self.notify_order_confirmed(session, data)
            case OrderShippedData():
                await self.notify_order_shipped(session, data)
            case OrderCancelledData():
                await self.notify_order_cancelled(session, data)
            case OrderDeliveryMarkedData():
                await self.notify_delivery_marked(session, data)
            case OrderDeliveryConfirmedData():
                await self.notify_delivery_confirmed(session, data)
            case PaymentFailedData():
                await self.notify_payment_failed(session, data)
            case PaymentRefundedData():
                await self.notify_refund_issued(session, data)
        return True

    # ---- reading and housekeeping ----------------------------------------

    @staticmethod
    def list_notifications(
        session: Session,
        recipient: Recipient,
        unread_only: bool = False,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[list[Notification], int, int]:
        """Return (page, total count, unread count) for the recipient."""
        base = select(Notification).where(recipient.clause())
        if unread_only:
            base = base.where(Notification.is_read == False)  # noqa: E712

        count = session.exec(
            select(func.count()).select_from(Notification).where(recipient.clause())
        ).one()
        unread_count = session.exec(
            select(func.count())
            .select_from(Notification)
            .where(recipient.clause(), Notification.is_read == False)  # noqa: E712
        ).one()
        notifications = session.exec(
            base.order_by(Notification.created_at.desc())  # type: ignore[attr-defined]
            .offset(skip)
            .limit(limit)
        ).all()
        return list(notifications), count, unread_count

    @staticmethod
    def _get_owned(
        session: Session, recipient: Recipient, notification_id: uuid.UUID
    ) -> Notification:
        notification = session.exec(
            select(Notification).where(
                Notification.id == notification_id, recipient.clause()
            )
        ).first()
        if notification is None:
            raise SettlementError(ErrorCode.NOT_FOUND, "Notification not found")
        return notification

    @staticmethod
    def mark_as_read(
        session: Session, recipient: Recipient, notification_id: uuid.UUID
    ) -> Notification:
        notification = NotificationService._get_owned(session, recipient, notification_id)
        notification.is_read = True
        session.add(notification)
        session.commit()
        session.refresh(notification)
        return notification

    @staticmethod
    def mark_all_as_read(session: Session, recipient: Recipient) -> int:
        result = session.execute(
            update(Notification)
            .where(recipient.clause(), Notification.is_read == False)  # noqa: E712
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        return result.rowcount  # type: ignore[attr-defined]

    @staticmethod
    def toggle_star(
        session: Session,
        recipient: Recipient,
        notification_id: uuid.UUID,
        starred: bool,
    ) -> Notification:
        notification = NotificationService._get_owned(session, recipient, notification_id)
        notification.is_starred = starred
        session.add(notification)
        session.commit()
        session.refresh(notification)
        return notification

    @staticmethod
    def delete_notification(
        session: Session, recipient: Recipient, notification_id: uuid.UUID
    ) -> None:
        notification = NotificationService._get_owned(session, recipient, notification_id)
        session.delete(notification)
        session.commit()


def _buyer_email(session: Session, buyer_id: str) -> str | None:
    buyer = session.get(Buyer, uuid.UUID(buyer_id))
    return buyer.email if buyer else None


def _seller_email(session: Session, seller_id: str) -> str | None:
    seller = session.get(Seller, uuid.UUID(seller_id))
    return seller.email if seller else None
