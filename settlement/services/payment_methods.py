"""
Payment method dispatch

A checkout's payment request is one of three closed variants. Each variant maps
to exactly one gateway call, and each gateway call returns its own typed link,
so callers never probe a response for `url` vs `checkout_url`.

    CryptoPayment                               -> StablecoinPaymentLink
    CardPayment / BankTransferPayment
        with success_url and cancel_url         -> CheckoutSession
        otherwise                               -> PaymentLink (redirect flow)
"""

from typing import Annotated, Any, Literal, Union, assert_never

from pydantic import BaseModel, Field

from settlement.clients.tsara import (
    CheckoutSession,
    CheckoutSessionRequest,
    FiatPaymentLinkRequest,
    GatewayLink,
    PaymentGateway,
    PaymentLink,
    StablecoinPaymentLink,
    StablecoinPaymentLinkRequest,
)
from settlement.core.config import settings
from settlement.models import PaymentMethod


class FiatPayment(BaseModel):
    amount_cents: int = Field(ge=0)
    currency: str
    reference: str
    customer_id: str
    description: str
    metadata: dict[str, Any]
    redirect_url: str
    success_url: str | None = None
    cancel_url: str | None = None

    @property
    def uses_checkout_session(self) -> bool:
        return bool(self.success_url and self.cancel_url)


class CardPayment(FiatPayment):
    method: Literal["card"] = "card"


class BankTransferPayment(FiatPayment):
    method: Literal["bank_transfer"] = "bank_transfer"


class CryptoPayment(BaseModel):
    method: Literal["crypto"] = "crypto"
    amount_cents: int = Field(ge=0)
    reference: str
    wallet_id: str
    description: str
    metadata: dict[str, Any]
    asset: Literal["USDC"] = "USDC"
    network: Literal["solana"] = "solana"


PaymentRequest = Annotated[
    Union[CardPayment, BankTransferPayment, CryptoPayment],
    Field(discriminator="method"),
]


def build_payment_request(
    method: PaymentMethod,
    *,
    order_id: str,
    buyer_id: str,
    amount_cents: int,
    currency: str,
    reference: str,
    metadata: dict[str, Any],
    redirect_url: str | None = None,
    success_url: str | None = None,
    cancel_url: str | None = None,
) -> PaymentRequest:
    """Build the payment variant for a checkout."""
    match method:
        case PaymentMethod.CRYPTO:
            return CryptoPayment(
                amount_cents=amount_cents,
                reference=reference,
                wallet_id=buyer_id,
                description=f"Fashion purchase - Order {order_id}",
                metadata=metadata,
                asset=settings.STABLECOIN_ASSET,
                network=settings.STABLECOIN_NETWORK,
            )
        case PaymentMethod.CARD | PaymentMethod.BANK_TRANSFER:
            variant = CardPayment if method == PaymentMethod.CARD else BankTransferPayment
            return variant(
                amount_cents=amount_cents,
                currency=currency,
                reference=reference,
                customer_id=buyer_id,
                description=f"Order {order_id}",
                metadata=metadata,
                redirect_url=redirect_url or f"{settings.APP_URL}/checkout/success",
                success_url=success_url,
                cancel_url=cancel_url,
            )
        case _:
            assert_never(method)


async def dispatch_payment(
    gateway: PaymentGateway,
    request: PaymentRequest,
) -> GatewayLink:
    """Make the single gateway call that corresponds to the payment variant."""
    match request:
        case CryptoPayment():
            return await gateway.create_stablecoin_payment_link(
                StablecoinPaymentLinkRequest(
                    amount=str(request.amount_cents),
                    asset=request.asset,
                    network=request.network,
                    wallet_id=request.wallet_id,
                    description=request.description,
                    metadata=request.metadata,
                )
            )
        case CardPayment() | BankTransferPayment() if request.uses_checkout_session:
            return await gateway.create_checkout_session(
                CheckoutSessionRequest(
                    amount=request.amount_cents,
                    currency=request.currency,
                    reference=request.reference,
                    customer_id=request.customer_id,
                    success_url=request.success_url,
                    cancel_url=request.cancel_url,
                    metadata=request.metadata,
                )
            )
        case CardPayment() | BankTransferPayment():
            return await gateway.create_fiat_payment_link(
                FiatPaymentLinkRequest(
                    amount=request.amount_cents,
                    currency=request.currency,
                    description=request.description,
                    customer_id=request.customer_id,
                    metadata=request.metadata,
                    redirect_url=request.redirect_url,
                )
            )
        case _:
            assert_never(request)


def checkout_url_for(link: GatewayLink) -> str:
    """Where the buyer is redirected to pay."""
    match link:
        case CheckoutSession():
            return link.checkout_url
        case PaymentLink() | StablecoinPaymentLink():
            return link.url
        case _:
            assert_never(link)
