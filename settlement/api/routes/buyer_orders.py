import uuid
from typing import Literal

from fastapi import APIRouter

from settlement.core.logging import get_logger
from settlement.deps import BuyerDep, SessionDep
from settlement.models import OrderPublic, OrdersPublic
from settlement.services.checkout_service import CheckoutService
from settlement.services.order_confirmation_service import OrderConfirmationService

router = APIRouter(prefix="/buyer/orders", tags=["buyer-orders"])
logger = get_logger(__name__)


@router.get("/", response_model=OrdersPublic)
async def read_buyer_orders(
    session: SessionDep,
    buyer: BuyerDep,
    status: Literal["active", "completed", "all"] = "all",
):
    """Buyer's orders, newest first"""
    orders = CheckoutService.get_buyer_orders(session, buyer, status)

    logger.info(
        "buyer_orders_retrieved",
        buyer_id=str(buyer.id),
        status_filter=status,
        count=len(orders),
    )
    return OrdersPublic(
        data=[OrderPublic.model_validate(order) for order in orders], count=len(orders)
    )


@router.post("/{order_id}/confirm-delivery", response_model=OrderPublic)
async def confirm_delivery(session: SessionDep, buyer: BuyerDep, order_id: uuid.UUID):
    """Confirm receipt; releases the escrowed funds for payout"""
    order = OrderConfirmationService.buyer_confirm_delivery(session, buyer.id, order_id)
    return OrderPublic.model_validate(order)
