"""
Checkout orchestration: cart -> payment initialization -> confirmed escrow.

    prepare_checkout     read-only pricing of a cart
    initialize_payment   gateway call first, then Order + Payment rows (pending)
    confirm_checkout     re-verify with the gateway, complete the payment,
                         create the escrow hold, re-check, emit order.placed,
                         clear the cart

confirm_checkout is the only path that creates a PaymentHold.
"""

import uuid
from datetime import datetime, timezone
from typing import Literal

from sqlalchemy import delete
from sqlalchemy.orm import selectinload
from sqlmodel import Session, select

from settlement.clients.tsara import PaymentGateway
from settlement.core.config import settings
from settlement.core.logging import get_logger
from settlement.core.metrics import checkouts_confirmed_total, checkouts_initialized_total
from settlement.errors import ErrorCode, GatewayError, SettlementError
from settlement.events import OrderPlacedData, PaymentFailedData
from settlement.models import (
    Buyer,
    Cart,
    CartItem,
    CartTotals,
    CheckoutConfirmation,
    CheckoutInitialize,
    CheckoutLine,
    CheckoutSeller,
    CheckoutSummary,
    DeliveryStatus,
    Listing,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentInitialized,
    PaymentStatus,
    PayoutStatus,
    Seller,
    ShippingRate,
    TERMINAL_ORDER_STATUSES,
)
from settlement.services.escrow_service import EscrowService
from settlement.services.outbox_service import OutboxService
from settlement.services.payment_methods import (
    build_payment_request,
    checkout_url_for,
    dispatch_payment,
)

logger = get_logger(__name__)

BuyerOrderFilter = Literal["active", "completed", "all"]


class CheckoutService:
    # ---- pricing --------------------------------------------------------

    @staticmethod
    def _resolve_lines(
        session: Session, items: list[CartItem], missing_message: str | None = None
    ) -> list[CheckoutLine]:
        """Attach listing snapshots to cart items; prices stay the frozen cart prices."""
        lines = []
        for item in items:
            listing = session.get(Listing, item.listing_id)
            if listing is None:
                raise SettlementError(
                    ErrorCode.NOT_FOUND,
                    missing_message or f"Listing {item.listing_id} not found",
                )
            lines.append(
                CheckoutLine(
                    cart_item_id=item.id,
                    listing_id=item.listing_id,
                    seller_id=listing.seller_id,
                    title=listing.title,
                    image=listing.image,
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    currency=item.currency,
                    line_total_cents=item.unit_price_cents * item.quantity,
                )
            )
        return lines

    @staticmethod
    def shipping_for_seller(session: Session, seller_id: uuid.UUID) -> int:
        """Most recently created active rate; sellers without one ship free."""
        rate = session.exec(
            select(ShippingRate)
            .where(ShippingRate.seller_id == seller_id, ShippingRate.is_active == True)  # noqa: E712
            .order_by(ShippingRate.created_at.desc())  # type: ignore[attr-defined]
        ).first()
        return rate.amount_cents if rate else 0

    @staticmethod
    def compute_totals(session: Session, lines: list[CheckoutLine]) -> CartTotals:
        """
        The single pricing function for both prepare and initialize.

        Subtotal is the sum of frozen unit prices times quantity; shipping is one
        rate per distinct seller.
        """
        currencies = {line.currency for line in lines}
        if len(currencies) > 1:
            raise SettlementError(
                ErrorCode.BAD_REQUEST, "Cart contains items in more than one currency"
            )

        subtotal_cents = sum(line.line_total_cents for line in lines)
        seller_ids = list(dict.fromkeys(line.seller_id for line in lines))
        shipping_cents = sum(
            CheckoutService.shipping_for_seller(session, seller_id) for seller_id in seller_ids
        )
        return CartTotals(
            subtotal_cents=subtotal_cents,
            shipping_cents=shipping_cents,
            total_cents=subtotal_cents + shipping_cents,
            currency=lines[0].currency,
            item_count=sum(line.quantity for line in lines),
        )

    @staticmethod
    def _cart_items(session: Session, cart: Cart) -> list[CartItem]:
        items = session.exec(
            select(CartItem)
            .where(CartItem.cart_id == cart.id)
            .order_by(CartItem.created_at.asc())  # type: ignore[attr-defined]
        ).all()
        if not items:
            raise SettlementError(ErrorCode.BAD_REQUEST, "Cart is empty")
        return list(items)

    # ---- operations -----------------------------------------------------

    @staticmethod
    def prepare_checkout(session: Session, buyer: Buyer, cart_id: uuid.UUID) -> CheckoutSummary:
        cart = session.get(Cart, cart_id)
        if cart is None or cart.buyer_id != buyer.id:
            raise SettlementError(ErrorCode.NOT_FOUND, "Cart not found")

        lines = CheckoutService._resolve_lines(session, CheckoutService._cart_items(session, cart))
        totals = CheckoutService.compute_totals(session, lines)

        sellers = []
        for seller_id in dict.fromkeys(line.seller_id for line in lines):
            seller = session.get(Seller, seller_id)
            sellers.append(
                CheckoutSeller(seller_id=seller_id, brand_name=seller.brand_name if seller else None)
            )

        logger.info(
            "checkout_prepared",
            cart_id=str(cart.id),
            buyer_id=str(buyer.id),
            items=len(lines),
            total_cents=totals.total_cents,
        )
        return CheckoutSummary(items=lines, summary=totals, sellers=sellers)

    @staticmethod
    async def initialize_payment(
        session: Session,
        gateway: PaymentGateway,
        buyer: Buyer,
        checkout_in: CheckoutInitialize,
    ) -> PaymentInitialized:
        """
        Start a payment for the buyer's cart.

        Nothing is written until the gateway has accepted the request and returned
        a usable payment URL; after that the Order (pending, in escrow, not shipped),
        its items and the pending Payment are committed together.
        """
        method = checkout_in.payment_method.value

        cart = session.exec(
            select(Cart)
            .where(Cart.buyer_id == buyer.id)
            .order_by(Cart.updated_at.desc())  # type: ignore[attr-defined]
        ).first()
        if cart is None:
            raise SettlementError(ErrorCode.NOT_FOUND, "Cart not found")

        items = CheckoutService._cart_items(session, cart)
        lines = CheckoutService._resolve_lines(
            session, items, "Some items in your cart are no longer available"
        )

        seller_ids = {line.seller_id for line in lines}
        if len(seller_ids) > 1:
            checkouts_initialized_total.labels(payment_method=method, outcome="rejected").inc()
            raise SettlementError(
                ErrorCode.BAD_REQUEST,
                "Your cart contains items from multiple sellers. "
                "Please remove items or create separate orders.",
            )
        seller_id = lines[0].seller_id

        totals = CheckoutService.compute_totals(session, lines)
        currency = checkout_in.currency.upper()
        if currency != totals.currency:
            raise SettlementError(
                ErrorCode.BAD_REQUEST,
                f"Cart is priced in {totals.currency} but payment was requested in {currency}",
            )

        # Ids exist before the gateway call so they can travel in its metadata
        order_id = uuid.uuid4()
        payment_id = uuid.uuid4()
        transaction_ref = f"order_{order_id}"
        metadata = {
            "order_id": str(order_id),
            "payment_id": str(payment_id),
            "buyer_id": str(buyer.id),
            "customer_name": checkout_in.customer_name,
            "customer_email": checkout_in.customer_email,
            "shipping_address": checkout_in.shipping_address or "",
            "shipping_city": checkout_in.shipping_city or "",
            "shipping_state": checkout_in.shipping_state or "",
            "shipping_postal_code": checkout_in.shipping_postal_code or "",
            "shipping_country": checkout_in.shipping_country or "",
        }

        payment_request = build_payment_request(
            checkout_in.payment_method,
            order_id=str(order_id),
            buyer_id=str(buyer.id),
            amount_cents=totals.total_cents,
            currency=currency,
            reference=transaction_ref,
            metadata=metadata,
            redirect_url=checkout_in.redirect_url,
            success_url=checkout_in.success_url,
            cancel_url=checkout_in.cancel_url,
        )

        try:
            link = await dispatch_payment(gateway, payment_request)
        except GatewayError as e:
            checkouts_initialized_total.labels(payment_method=method, outcome="gateway_error").inc()
            raise e.to_settlement_error(
                "Payment initialization failed. Please try again."
            ) from e

        payment_url = checkout_url_for(link)
        if not payment_url.startswith("http"):
            checkouts_initialized_total.labels(payment_method=method, outcome="gateway_error").inc()
            logger.error(
                "gateway_invalid_payment_url",
                order_id=str(order_id),
                payment_method=method,
                link_type=type(link).__name__,
            )
            raise SettlementError(
                ErrorCode.INTERNAL_SERVER_ERROR,
                "Invalid payment URL received from provider",
            )

        shipping_address = ", ".join(
            part
            for part in (
                checkout_in.shipping_address,
                checkout_in.shipping_city,
                checkout_in.shipping_state,
                checkout_in.shipping_postal_code,
                checkout_in.shipping_country,
            )
            if part
        )
        order = Order(
            id=order_id,
            buyer_id=buyer.id,
            seller_id=seller_id,
            listing_id=lines[0].listing_id,
            product_title=lines[0].title,
            quantity=totals.item_count,
            amount_cents=totals.total_cents,
            currency=currency,
            payment_method=method,
            customer_name=checkout_in.customer_name,
            customer_email=checkout_in.customer_email,
            customer_phone=checkout_in.customer_phone,
            shipping_address=shipping_address or None,
            order_status=OrderStatus.PENDING.value,
            delivery_status=DeliveryStatus.NOT_SHIPPED.value,
            payout_status=PayoutStatus.IN_ESCROW.value,
        )
        order.items = [
            OrderItem(
                listing_id=line.listing_id,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                currency=line.currency,
            )
            for line in lines
        ]
        session.add(order)

        payment = Payment(
            id=payment_id,
            buyer_id=buyer.id,
            order_id=order_id,
            listing_id=lines[0].listing_id,
            amount_cents=totals.total_cents,
            currency=currency,
            payment_method=method,
            provider="tsara",
            status=PaymentStatus.PENDING.value,
            transaction_ref=transaction_ref,
            payment_url=payment_url,
            gateway_response=link.model_dump(mode="json"),
        )
        session.add(payment)

        try:
            session.commit()
        except Exception:
            session.rollback()
            raise

        checkouts_initialized_total.labels(payment_method=method, outcome="success").inc()
        logger.info(
            "payment_initialized",
            order_id=str(order_id),
            payment_id=str(payment_id),
            buyer_id=str(buyer.id),
            seller_id=str(seller_id),
            payment_method=method,
            amount_cents=totals.total_cents,
            currency=currency,
        )

        return PaymentInitialized(
            payment_id=payment_id,
            payment_url=payment_url,
            order_id=order_id,
            total_amount_cents=totals.total_cents,
            currency=currency,
            transaction_ref=transaction_ref,
        )

    @staticmethod
    async def confirm_checkout(
        session: Session,
        gateway: PaymentGateway,
        buyer: Buyer,
        payment_id: uuid.UUID,
        transaction_ref: str,
    ) -> CheckoutConfirmation:
        """
        Move a paid order into escrow.

        Each step must succeed before the next runs:
        1. gateway re-verification by transaction reference
        2. local payment and order lookup; the order must be pending and never held
        3. payment completion (conditional, idempotent; committed on its own)
        4. escrow hold creation
        5. re-read of the payment, which must still be completed
        6. order.placed event and cart clearing, committed with the hold

        A failed post-condition rolls the hold back, re-affirms the order as
        pending and fails PRECONDITION_FAILED with no event emitted.
        """
        log = logger.bind(payment_id=str(payment_id), transaction_ref=transaction_ref)

        try:
            verification = await gateway.verify_payment(transaction_ref)
        except GatewayError as e:
            checkouts_confirmed_total.labels(outcome="error").inc()
            raise e.to_settlement_error(
                "Payment confirmation failed. Please try again or contact support."
            ) from e

        payment = session.get(Payment, payment_id)
        if payment is None or payment.buyer_id != buyer.id:
            raise SettlementError(ErrorCode.NOT_FOUND, "Payment not found")

        gateway_status = verification.data.status
        if (
            not verification.success
            or gateway_status != "success"
            or verification.data.reference != transaction_ref
        ):
            checkouts_confirmed_total.labels(outcome="verification_failed").inc()
            log.warning(
                "checkout_verification_failed",
                gateway_status=gateway_status,
                gateway_reference=verification.data.reference,
            )
            if gateway_status == "failed" and payment.transaction_ref == transaction_ref:
                CheckoutService._record_payment_failure(session, payment, "gateway_reported_failed")
            raise SettlementError(ErrorCode.PRECONDITION_FAILED, "Payment verification failed")

        if payment.order_id is None:
            raise SettlementError(
                ErrorCode.PRECONDITION_FAILED, "Order not associated with payment"
            )

        order = session.get(Order, payment.order_id)
        if order is None:
            raise SettlementError(ErrorCode.NOT_FOUND, "Order not found")
        # Escrow is entered once per order; replays after a hold existed are refused
        if order.order_status != OrderStatus.PENDING.value or EscrowService.get_hold(
            session, order.id
        ):
            checkouts_confirmed_total.labels(outcome="duplicate").inc()
            log.warning(
                "checkout_already_confirmed",
                order_id=str(order.id),
                order_status=order.order_status,
            )
            raise SettlementError(
                ErrorCode.PRECONDITION_FAILED, "This order has already been confirmed"
            )

        try:
            payment = EscrowService.complete_payment(session, payment.id, transaction_ref)
            session.commit()
        except Exception:
            session.rollback()
            checkouts_confirmed_total.labels(outcome="error").inc()
            raise

        try:
            hold = EscrowService.create_payment_hold(session, payment, order)
        except SettlementError:
            session.rollback()
            checkouts_confirmed_total.labels(outcome="duplicate").inc()
            raise

        reread = session.get(Payment, payment.id, populate_existing=True)
        if reread is None or reread.status != PaymentStatus.COMPLETED.value:
            session.rollback()
            CheckoutService._reset_order_to_pending(session, order.id)
            checkouts_confirmed_total.labels(outcome="postcondition_failed").inc()
            log.error(
                "checkout_postcondition_failed",
                order_id=str(order.id),
                payment_status=reread.status if reread else None,
            )
            raise SettlementError(
                ErrorCode.PRECONDITION_FAILED,
                "Payment could not be confirmed. Your order is on hold; please contact support.",
            )

        try:
            now = datetime.now(timezone.utc)
            OutboxService.create_event(
                session=session,
                event_type="order.placed",
                event_data=OrderPlacedData(
                    order_id=str(order.id),
                    buyer_id=str(order.buyer_id),
                    seller_id=str(order.seller_id),
                    payment_id=str(payment.id),
                    hold_id=str(hold.id),
                    amount_cents=order.amount_cents,
                    currency=order.currency,
                    placed_at=now,
                ),
                partition_key=str(order.id),
            )
            CheckoutService._clear_cart(session, buyer)
            session.commit()
        except Exception:
            session.rollback()
            checkouts_confirmed_total.labels(outcome="error").inc()
            raise

        checkouts_confirmed_total.labels(outcome="success").inc()
        log.info(
            "checkout_confirmed",
            order_id=str(order.id),
            hold_id=str(hold.id),
            amount_cents=order.amount_cents,
            currency=order.currency,
        )

        return CheckoutConfirmation(
            order_id=order.id,
            total_amount_cents=order.amount_cents,
            currency=order.currency,
            payment_url="",
            payment_id=payment.id,
            estimated_delivery_days=settings.ESTIMATED_DELIVERY_DAYS,
        )

    @staticmethod
    def _record_payment_failure(session: Session, payment: Payment, reason: str) -> None:
        """Mark the payment failed and emit payment.failed, in its own transaction."""
        try:
            if EscrowService.fail_payment(session, payment.id, payment.transaction_ref):
                order = session.get(Order, payment.order_id) if payment.order_id else None
                OutboxService.create_event(
                    session=session,
                    event_type="payment.failed",
                    event_data=PaymentFailedData(
                        payment_id=str(payment.id),
                        buyer_id=str(payment.buyer_id),
                        transaction_ref=payment.transaction_ref,
                        amount_cents=payment.amount_cents,
                        currency=payment.currency,
                        reason=reason,
                        order_id=str(order.id) if order else None,
                        seller_id=str(order.seller_id) if order else None,
                    ),
                    partition_key=str(payment.order_id or payment.id),
                )
            session.commit()
        except Exception:
            session.rollback()
            raise

    @staticmethod
    def _reset_order_to_pending(session: Session, order_id: uuid.UUID) -> None:
        order = session.get(Order, order_id, populate_existing=True)
        if order is None:
            return
        order.order_status = OrderStatus.PENDING.value
        order.updated_at = datetime.now(timezone.utc)
        session.add(order)
        session.commit()

    @staticmethod
    def _clear_cart(session: Session, buyer: Buyer) -> None:
        cart_ids = select(Cart.id).where(Cart.buyer_id == buyer.id)
        session.execute(
            delete(CartItem)
            .where(CartItem.cart_id.in_(cart_ids))  # type: ignore[attr-defined]
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def get_buyer_orders(
        session: Session, buyer: Buyer, status: BuyerOrderFilter = "all"
    ) -> list[Order]:
        """
        active: not yet delivered and not cancelled/refunded
        completed: delivered
        """
        statement = (
            select(Order)
            .options(selectinload(Order.items))  # type: ignore[arg-type]
            .where(Order.buyer_id == buyer.id)
        )
        if status == "active":
            statement = statement.where(
                Order.delivery_status != DeliveryStatus.DELIVERED.value,
                Order.order_status.not_in(TERMINAL_ORDER_STATUSES),  # type: ignore[attr-defined]
            )
        elif status == "completed":
            statement = statement.where(Order.delivery_status == DeliveryStatus.DELIVERED.value)

        statement = statement.order_by(Order.created_at.desc())  # type: ignore[attr-defined]
        return list(session.exec(statement).all())
