import uuid

from fastapi import APIRouter, Query

from settlement.core.config import settings
from settlement.core.logging import get_logger
from settlement.deps import SellerDep, SessionDep
from settlement.models import (
    EscrowBalance,
    MessageSent,
    MessageToBuyer,
    OrderPublic,
    OrdersPublic,
    OrderStatus,
    OrderStatusUpdated,
    SellerDeliveryResult,
    SellerOrderUpdate,
)
from settlement.services.escrow_service import EscrowService
from settlement.services.order_confirmation_service import OrderConfirmationService

router = APIRouter(prefix="/seller", tags=["seller-orders"])
logger = get_logger(__name__)


@router.get("/orders", response_model=OrdersPublic)
async def read_seller_orders(
    session: SessionDep,
    seller: SellerDep,
    order_status: OrderStatus | None = None,
    skip: int = 0,
    limit: int = Query(default=100, le=500),
):
    """Seller's orders with pagination"""
    orders, count = OrderConfirmationService.list_seller_orders(
        session, seller.id, order_status, skip, limit
    )
    logger.info(
        "seller_orders_retrieved",
        seller_id=str(seller.id),
        count=count,
        returned=len(orders),
    )
    return OrdersPublic(data=[OrderPublic.model_validate(order) for order in orders], count=count)


@router.get("/orders/{order_id}", response_model=OrderPublic)
async def read_order_details(session: SessionDep, seller: SellerDep, order_id: uuid.UUID):
    order = OrderConfirmationService.get_order_details(session, seller.id, order_id)
    return OrderPublic.model_validate(order)


@router.post("/orders/{order_id}/confirm", response_model=OrderPublic)
async def confirm_order(session: SessionDep, seller: SellerDep, order_id: uuid.UUID):
    """Accept a paid order; requires the funds to be held in escrow"""
    order = OrderConfirmationService.seller_confirm_order(session, seller.id, order_id)
    return OrderPublic.model_validate(order)


@router.post("/orders/{order_id}/confirm-delivery", response_model=SellerDeliveryResult)
async def confirm_delivery(session: SessionDep, seller: SellerDep, order_id: uuid.UUID):
    """Mark the shipment delivered and notify the buyer"""
    return OrderConfirmationService.seller_confirm_delivery(session, seller.id, order_id)


@router.put("/orders/{order_id}/status", response_model=OrderStatusUpdated)
async def update_order_status(
    *,
    session: SessionDep,
    seller: SellerDep,
    order_id: uuid.UUID,
    update_in: SellerOrderUpdate,
):
    return OrderConfirmationService.update_order_status(
        session, seller.id, order_id, update_in.status, update_in.tracking_number
    )


@router.post("/orders/{order_id}/messages", response_model=MessageSent)
async def send_message_to_buyer(
    *,
    session: SessionDep,
    seller: SellerDep,
    order_id: uuid.UUID,
    message_in: MessageToBuyer,
):
    return OrderConfirmationService.send_message_to_buyer(
        session, seller.id, order_id, message_in.buyer_id, message_in.message
    )


@router.get("/escrow/balance", response_model=EscrowBalance)
async def read_escrow_balance(
    session: SessionDep,
    seller: SellerDep,
    currency: str = Query(default=settings.DEFAULT_CURRENCY, min_length=3, max_length=3),
):
    """Funds currently held in escrow for the seller, in minor units"""
    currency = currency.upper()
    balance = EscrowService.get_seller_escrow_balance(session, seller.id, currency)
    return EscrowBalance(seller_id=seller.id, currency=currency, balance_cents=balance)
