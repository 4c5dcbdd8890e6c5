from fastapi import APIRouter

from settlement.core.logging import get_logger
from settlement.deps import BuyerDep, GatewayDep, SessionDep
from settlement.models import (
    CheckoutConfirm,
    CheckoutConfirmation,
    CheckoutInitialize,
    CheckoutPrepare,
    CheckoutSummary,
    PaymentInitialized,
)
from settlement.services.checkout_service import CheckoutService

router = APIRouter(prefix="/checkout", tags=["checkout"])
logger = get_logger(__name__)


@router.post("/prepare", response_model=CheckoutSummary)
async def prepare_checkout(session: SessionDep, buyer: BuyerDep, prepare_in: CheckoutPrepare):
    """Price the cart: line items, subtotal, shipping, total"""
    return CheckoutService.prepare_checkout(session, buyer, prepare_in.cart_id)


@router.post("/initialize", response_model=PaymentInitialized)
async def initialize_payment(
    *,
    session: SessionDep,
    gateway: GatewayDep,
    buyer: BuyerDep,
    checkout_in: CheckoutInitialize,
):
    """Create a gateway payment for the buyer's cart and return the payment URL"""
    logger.info(
        "payment_initialization_started",
        buyer_id=str(buyer.id),
        payment_method=checkout_in.payment_method.value,
        currency=checkout_in.currency,
    )
    return await CheckoutService.initialize_payment(session, gateway, buyer, checkout_in)


@router.post("/confirm", response_model=CheckoutConfirmation)
async def confirm_checkout(
    *,
    session: SessionDep,
    gateway: GatewayDep,
    buyer: BuyerDep,
    confirm_in: CheckoutConfirm,
):
    """Verify the payment with the gateway and move the funds into escrow"""
    logger.info(
        "checkout_confirmation_started",
        buyer_id=str(buyer.id),
        payment_id=str(confirm_in.payment_id),
    )
    return await CheckoutService.confirm_checkout(
        session, gateway, buyer, confirm_in.payment_id, confirm_in.transaction_ref
    )
