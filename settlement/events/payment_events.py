"""
Payment event schemas
"""

from settlement.events.base import BaseEventData


class PaymentFailedData(BaseEventData):
    """Gateway reported the payment as failed"""

    payment_id: str
    buyer_id: str
    transaction_ref: str
    amount_cents: int
    currency: str
    reason: str
    order_id: str | None = None
    seller_id: str | None = None


class PaymentRefundedData(BaseEventData):
    """Gateway reported the payment as refunded"""

    payment_id: str
    buyer_id: str
    transaction_ref: str
    amount_cents: int
    currency: str
    order_id: str | None = None
    seller_id: str | None = None
