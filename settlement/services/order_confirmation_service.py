"""
Order confirmation

Order state is three orthogonal fields driven by two actors:

    order_status     pending -> confirmed              (seller; needs an active hold)
                     pending -> cancelled              (seller, before escrow exists)
    delivery_status  not_shipped -> processing -> in_transit -> delivered   (seller)
    payout_status    in_escrow -> processing           (buyer confirms receipt)

Each transition is a conditional update on the state it expects, so two
concurrent requests for the same transition cannot both succeed. The domain
event for a transition is written to the outbox in the same transaction.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.orm import selectinload
from sqlmodel import Session, func, select

from settlement.core.logging import get_logger
from settlement.core.metrics import hold_release_total, order_transitions_total
from settlement.errors import ErrorCode, SettlementError
from settlement.events import (
    OrderCancelledData,
    OrderConfirmedData,
    OrderDeliveryConfirmedData,
    OrderDeliveryMarkedData,
    OrderShippedData,
)
from settlement.models import (
    Conversation,
    DeliveryState,
    DeliveryStatus,
    Message,
    MessageSent,
    Order,
    OrderStatus,
    OrderStatusUpdated,
    PayoutStatus,
    SellerDeliveryResult,
    TERMINAL_ORDER_STATUSES,
)
from settlement.services.escrow_service import EscrowService
from settlement.services.outbox_service import OutboxService

logger = get_logger(__name__)

SETTLED_PAYOUT_STATUSES = (PayoutStatus.PROCESSING.value, PayoutStatus.PAID.value)


class OrderConfirmationService:
    @staticmethod
    def _seller_order(
        session: Session,
        seller_id: uuid.UUID,
        order_id: uuid.UUID,
        message: str = "Order not found or does not belong to this seller",
    ) -> Order:
        order = session.get(Order, order_id)
        if order is None or order.seller_id != seller_id:
            raise SettlementError(ErrorCode.NOT_FOUND, message)
        return order

    @staticmethod
    def _apply(
        session: Session,
        order_id: uuid.UUID,
        expected: list,
        values: dict,
    ) -> bool:
        """Conditional update of one order; False when the order left the expected state."""
        result = session.execute(
            update(Order)
            .where(Order.id == order_id, *expected)  # type: ignore[arg-type]
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    @staticmethod
    def _commit(session: Session) -> None:
        try:
            session.commit()
        except Exception:
            session.rollback()
            raise

    # ---- seller ---------------------------------------------------------

    @staticmethod
    def seller_confirm_order(
        session: Session, seller_id: uuid.UUID, order_id: uuid.UUID
    ) -> Order:
        """
        Seller accepts a paid order.

        Refused unless the order's funds are held in escrow; a seller must never
        ship against a payment that was not captured.
        """
        order = OrderConfirmationService._seller_order(session, seller_id, order_id)

        if order.order_status == OrderStatus.CONFIRMED.value:
            raise SettlementError(ErrorCode.BAD_REQUEST, "Order is already confirmed")
        if order.order_status in TERMINAL_ORDER_STATUSES:
            raise SettlementError(
                ErrorCode.BAD_REQUEST, f"Cannot confirm a {order.order_status} order"
            )

        if EscrowService.get_active_hold(session, order.id) is None:
            logger.warning(
                "order_confirm_rejected_no_hold",
                order_id=str(order.id),
                seller_id=str(seller_id),
            )
            raise SettlementError(
                ErrorCode.BAD_REQUEST,
                "Payment hold not found or not active. Payment verification failed. "
                "Please contact support.",
            )

        now = datetime.now(timezone.utc)
        try:
            moved = OrderConfirmationService._apply(
                session,
                order.id,
                [Order.order_status == OrderStatus.PENDING.value],
                {
                    "order_status": OrderStatus.CONFIRMED.value,
                    "delivery_status": DeliveryStatus.PROCESSING.value,
                    "updated_at": now,
                },
            )
            if not moved:
                raise SettlementError(ErrorCode.BAD_REQUEST, "Order is already confirmed")

            OutboxService.create_event(
                session=session,
                event_type="order.confirmed",
                event_data=OrderConfirmedData(
                    order_id=str(order.id),
                    buyer_id=str(order.buyer_id),
                    seller_id=str(order.seller_id),
                    confirmed_at=now,
                ),
                partition_key=str(order.id),
            )
        except Exception:
            session.rollback()
            raise
        OrderConfirmationService._commit(session)

        order_transitions_total.labels(actor="seller", transition="confirm_order").inc()
        logger.info("order_confirmed", order_id=str(order.id), seller_id=str(seller_id))
        return session.get(Order, order.id, populate_existing=True)  # type: ignore[return-value]

    @staticmethod
    def seller_confirm_delivery(
        session: Session, seller_id: uuid.UUID, order_id: uuid.UUID
    ) -> SellerDeliveryResult:
        """Seller marks the shipment delivered. Funds stay in escrow until the buyer confirms."""
        order = OrderConfirmationService._seller_order(session, seller_id, order_id)

        if order.order_status != OrderStatus.CONFIRMED.value:
            raise SettlementError(
                ErrorCode.BAD_REQUEST, "Order must be confirmed before marking as delivered"
            )
        if order.delivery_status == DeliveryStatus.DELIVERED.value:
            raise SettlementError(
                ErrorCode.BAD_REQUEST, "Order has already been marked as delivered"
            )

        now = datetime.now(timezone.utc)
        try:
            moved = OrderConfirmationService._apply(
                session,
                order.id,
                [
                    Order.order_status == OrderStatus.CONFIRMED.value,
                    Order.delivery_status != DeliveryStatus.DELIVERED.value,
                ],
                {"delivery_status": DeliveryStatus.DELIVERED.value, "updated_at": now},
            )
            if not moved:
                raise SettlementError(
                    ErrorCode.BAD_REQUEST, "Order has already been marked as delivered"
                )

            OutboxService.create_event(
                session=session,
                event_type="order.delivery_marked",
                event_data=OrderDeliveryMarkedData(
                    order_id=str(order.id),
                    buyer_id=str(order.buyer_id),
                    seller_id=str(order.seller_id),
                    delivered_at=now,
                ),
                partition_key=str(order.id),
            )
        except Exception:
            session.rollback()
            raise
        OrderConfirmationService._commit(session)

        order_transitions_total.labels(actor="seller", transition="mark_delivered").inc()
        logger.info("order_delivery_marked", order_id=str(order.id), seller_id=str(seller_id))

        return SellerDeliveryResult(
            success=True,
            message="Delivery confirmed. Buyer notified.",
            order=DeliveryState(order_id=order.id, delivery_status=DeliveryStatus.DELIVERED.value),
        )

    @staticmethod
    def update_order_status(
        session: Session,
        seller_id: uuid.UUID,
        order_id: uuid.UUID,
        status: str,
        tracking_number: str | None = None,
    ) -> OrderStatusUpdated:
        """
        Seller-side status update.

        processing            delivery_status -> processing
        shipped, in_transit   delivery_status -> in_transit (order must be confirmed)
        delivered             same rules as seller_confirm_delivery
        canceled              order_status -> cancelled, only while pending
        """
        order = OrderConfirmationService._seller_order(
            session, seller_id, order_id, "Order not found"
        )
        if order.order_status in TERMINAL_ORDER_STATUSES:
            raise SettlementError(
                ErrorCode.BAD_REQUEST, f"Cannot update a {order.order_status} order"
            )

        if status == "delivered":
            if tracking_number:
                order.tracking_number = tracking_number
                session.add(order)
            result = OrderConfirmationService.seller_confirm_delivery(session, seller_id, order_id)
            return OrderStatusUpdated(success=result.success, message=result.message)

        if status == "canceled":
            return OrderConfirmationService._cancel_order(session, order, tracking_number)

        now = datetime.now(timezone.utc)
        values: dict = {"updated_at": now}
        if tracking_number:
            values["tracking_number"] = tracking_number

        if order.delivery_status == DeliveryStatus.DELIVERED.value:
            raise SettlementError(
                ErrorCode.BAD_REQUEST, "Order has already been marked as delivered"
            )

        if status == "processing":
            values["delivery_status"] = DeliveryStatus.PROCESSING.value
            expected = [Order.delivery_status != DeliveryStatus.DELIVERED.value]
            event = None
        else:
            if order.order_status != OrderStatus.CONFIRMED.value:
                raise SettlementError(
                    ErrorCode.BAD_REQUEST, "Order must be confirmed before it can be shipped"
                )
            values["delivery_status"] = DeliveryStatus.IN_TRANSIT.value
            expected = [
                Order.order_status == OrderStatus.CONFIRMED.value,
                Order.delivery_status != DeliveryStatus.DELIVERED.value,
            ]
            event = OrderShippedData(
                order_id=str(order.id),
                buyer_id=str(order.buyer_id),
                seller_id=str(order.seller_id),
                delivery_status=DeliveryStatus.IN_TRANSIT.value,
                tracking_number=tracking_number or order.tracking_number,
            )

        try:
            if not OrderConfirmationService._apply(session, order.id, expected, values):
                raise SettlementError(
                    ErrorCode.BAD_REQUEST, "Order has already been marked as delivered"
                )
            if event is not None:
                OutboxService.create_event(
                    session=session,
                    event_type="order.shipped",
                    event_data=event,
                    partition_key=str(order.id),
                )
        except Exception:
            session.rollback()
            raise
        OrderConfirmationService._commit(session)

        order_transitions_total.labels(actor="seller", transition=status).inc()
        logger.info(
            "order_status_updated",
            order_id=str(order.id),
            seller_id=str(seller_id),
            status=status,
            tracking_number=values.get("tracking_number"),
        )
        return OrderStatusUpdated(success=True, message=f"Order status updated to {status}")

    @staticmethod
    def _cancel_order(
        session: Session, order: Order, tracking_number: str | None
    ) -> OrderStatusUpdated:
        """Cancellation is only possible before funds are escrowed; refunds go through the gateway."""
        if order.order_status != OrderStatus.PENDING.value or EscrowService.get_active_hold(
            session, order.id
        ):
            raise SettlementError(
                ErrorCode.BAD_REQUEST,
                "Orders with escrowed funds cannot be cancelled. Please contact support.",
            )

        now = datetime.now(timezone.utc)
        values: dict = {"order_status": OrderStatus.CANCELLED.value, "updated_at": now}
        if tracking_number:
            values["tracking_number"] = tracking_number

        try:
            moved = OrderConfirmationService._apply(
                session,
                order.id,
                [Order.order_status == OrderStatus.PENDING.value],
                values,
            )
            if not moved:
                raise SettlementError(
                    ErrorCode.BAD_REQUEST, "Order can no longer be cancelled"
                )
            OutboxService.create_event(
                session=session,
                event_type="order.cancelled",
                event_data=OrderCancelledData(
                    order_id=str(order.id),
                    buyer_id=str(order.buyer_id),
                    seller_id=str(order.seller_id),
                    reason="cancelled_by_seller",
                    cancelled_at=now,
                ),
                partition_key=str(order.id),
            )
        except Exception:
            session.rollback()
            raise
        OrderConfirmationService._commit(session)

        order_transitions_total.labels(actor="seller", transition="canceled").inc()
        logger.info("order_cancelled", order_id=str(order.id), seller_id=str(order.seller_id))
        return OrderStatusUpdated(success=True, message="Order status updated to canceled")

    @staticmethod
    def get_order_details(
        session: Session, seller_id: uuid.UUID, order_id: uuid.UUID
    ) -> Order:
        statement = (
            select(Order)
            .options(selectinload(Order.items))  # type: ignore[arg-type]
            .where(Order.id == order_id, Order.seller_id == seller_id)
        )
        order = session.exec(statement).first()
        if order is None:
            raise SettlementError(ErrorCode.NOT_FOUND, "Order not found")
        return order

    @staticmethod
    def list_seller_orders(
        session: Session,
        seller_id: uuid.UUID,
        order_status: OrderStatus | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[list[Order], int]:
        filters = [Order.seller_id == seller_id]
        if order_status is not None:
            filters.append(Order.order_status == order_status.value)

        count = session.exec(select(func.count()).select_from(Order).where(*filters)).one()
        orders = session.exec(
            select(Order)
            .where(*filters)
            .options(selectinload(Order.items))  # type: ignore[arg-type]
            .order_by(Order.created_at.desc())  # type: ignore[attr-defined]
            .offset(skip)
            .limit(limit)
        ).all()
        return list(orders), count

    @staticmethod
    def send_message_to_buyer(
        session: Session,
        seller_id: uuid.UUID,
        order_id: uuid.UUID,
        buyer_id: uuid.UUID,
        message: str,
    ) -> MessageSent:
        order = OrderConfirmationService._seller_order(session, seller_id, order_id)
        if order.buyer_id != buyer_id:
            raise SettlementError(ErrorCode.BAD_REQUEST, "Invalid buyer for this order")

        now = datetime.now(timezone.utc)
        conversation = session.exec(
            select(Conversation).where(
                Conversation.buyer_id == buyer_id, Conversation.seller_id == seller_id
            )
        ).first()
        if conversation is None:
            conversation = Conversation(buyer_id=buyer_id, seller_id=seller_id)
            session.add(conversation)

        conversation.last_message_at = now
        conversation.updated_at = now
        session.add(
            Message(
                conversation_id=conversation.id,
                sender_id=seller_id,
                sender_role="seller",
                content=message,
            )
        )
        OrderConfirmationService._commit(session)

        logger.info(
            "message_sent_to_buyer",
            conversation_id=str(conversation.id),
            order_id=str(order.id),
            seller_id=str(seller_id),
        )
        return MessageSent(
            success=True, message="Message sent to buyer", conversation_id=conversation.id
        )

    # ---- buyer ----------------------------------------------------------

    @staticmethod
    def buyer_confirm_delivery(
        session: Session, buyer_id: uuid.UUID, order_id: uuid.UUID
    ) -> Order:
        """
        Buyer confirms receipt and releases the escrowed funds.

        The order update and the hold release commit together or not at all.
        An order without an active hold still moves to payout processing; that
        case is logged and counted separately.
        """
        order = session.get(Order, order_id)
        if order is None or order.buyer_id != buyer_id:
            raise SettlementError(ErrorCode.NOT_FOUND, "Order not found")

        if order.delivery_status != DeliveryStatus.DELIVERED.value:
            raise SettlementError(
                ErrorCode.BAD_REQUEST, "Cannot confirm delivery until seller confirms shipment"
            )
        if order.payout_status in SETTLED_PAYOUT_STATUSES:
            raise SettlementError(ErrorCode.BAD_REQUEST, "Delivery already confirmed")

        now = datetime.now(timezone.utc)
        try:
            moved = OrderConfirmationService._apply(
                session,
                order.id,
                [
                    Order.delivery_status == DeliveryStatus.DELIVERED.value,
                    Order.payout_status.not_in(SETTLED_PAYOUT_STATUSES),  # type: ignore[attr-defined]
                ],
                {
                    "delivery_status": DeliveryStatus.DELIVERED.value,
                    "payout_status": PayoutStatus.PROCESSING.value,
                    "delivered_date": now,
                    "updated_at": now,
                },
            )
            if not moved:
                raise SettlementError(ErrorCode.BAD_REQUEST, "Delivery already confirmed")

            hold = EscrowService.release_hold(session, order.id, now)
            if hold is None:
                logger.warning(
                    "delivery_confirmed_without_active_hold",
                    order_id=str(order.id),
                    buyer_id=str(buyer_id),
                    seller_id=str(order.seller_id),
                )

            OutboxService.create_event(
                session=session,
                event_type="order.delivery_confirmed",
                event_data=OrderDeliveryConfirmedData(
                    order_id=str(order.id),
                    buyer_id=str(order.buyer_id),
                    seller_id=str(order.seller_id),
                    amount_cents=order.amount_cents,
                    currency=order.currency,
                    hold_id=str(hold.id) if hold else None,
                    hold_released=hold is not None,
                    confirmed_at=now,
                ),
                partition_key=str(order.id),
            )
        except Exception:
            session.rollback()
            raise
        OrderConfirmationService._commit(session)

        hold_release_total.labels(outcome="released" if hold else "missing_hold").inc()
        order_transitions_total.labels(actor="buyer", transition="confirm_delivery").inc()
        logger.info(
            "delivery_confirmed",
            order_id=str(order.id),
            buyer_id=str(buyer_id),
            hold_released=hold is not None,
        )
        return session.get(Order, order.id, populate_existing=True)  # type: ignore[return-value]
