"""
Tsara payment gateway client

Every call goes through `_request`, which unwraps the gateway envelope

    {"success": true, "data": {...}, "request_id": "..."}
    {"success": false, "error": {"code": ..., "message": ..., "status": ...}, "request_id": "..."}

and validates `data` against a strict response model. Failures are raised as
GatewayError with a kind (auth, connectivity, validation, unknown); the raw
gateway body is logged and kept on the exception, never shown to API clients.

Amounts are integer minor units (kobo/cents, or the token's smallest unit for
stablecoin links).
"""

import hashlib
import hmac
import time
from typing import Any, Literal, Protocol, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from settlement.core.config import settings
from settlement.core.logging import get_logger
from settlement.core.metrics import gateway_calls_total, gateway_call_duration_seconds
from settlement.core.tracing import get_trace_context
from settlement.errors import GatewayError, GatewayErrorKind

logger = get_logger(__name__)

TModel = TypeVar("TModel", bound=BaseModel)


# REQUESTS


class FiatPaymentLinkRequest(BaseModel):
    amount: int
    currency: str
    description: str | None = None
    customer_id: str | None = None
    metadata: dict[str, Any] | None = None
    redirect_url: str | None = None


class StablecoinPaymentLinkRequest(BaseModel):
    amount: str
    asset: Literal["USDC"] = "USDC"
    network: Literal["solana"] = "solana"
    wallet_id: str
    description: str | None = None
    metadata: dict[str, Any] | None = None


class CheckoutSessionRequest(BaseModel):
    amount: int
    currency: str
    reference: str
    customer_id: str | None = None
    success_url: str | None = None
    cancel_url: str | None = None
    metadata: dict[str, Any] | None = None


# RESPONSES


class GatewayModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PaymentLink(GatewayModel):
    id: str
    url: str
    status: Literal["active", "disabled"]
    amount: int
    currency: str
    description: str | None = None
    customer_id: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: str | None = None
    expires_at: str | None = None


class StablecoinPaymentLink(GatewayModel):
    id: str
    url: str
    status: Literal["active", "disabled"]
    amount: str
    asset: str
    network: str
    wallet_id: str
    description: str | None = None
    metadata: dict[str, Any] | None = None


class CheckoutSession(GatewayModel):
    id: str
    status: Literal["open", "completed", "expired"]
    checkout_url: str
    amount: int
    currency: str
    reference: str
    expires_at: str | None = None


class GatewayPayment(GatewayModel):
    id: str
    reference: str
    status: Literal["pending", "processing", "success", "failed"]
    amount: int
    currency: str
    customer_id: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: str | None = None
    updated_at: str | None = None


class PaymentVerification(GatewayModel):
    success: bool
    data: GatewayPayment


class DisabledLink(GatewayModel):
    id: str
    status: str


GatewayLink = PaymentLink | StablecoinPaymentLink | CheckoutSession


# WEBHOOKS


class WebhookPaymentData(GatewayModel):
    reference: str
    status: Literal["pending", "processing", "success", "failed", "refunded"]
    amount: int | None = None
    currency: str | None = None


class WebhookEvent(GatewayModel):
    event: str
    data: WebhookPaymentData


class PaymentGateway(Protocol):
    """The narrow surface checkout depends on; tests provide a fake."""

    async def create_fiat_payment_link(self, request: FiatPaymentLinkRequest) -> PaymentLink: ...

    async def create_stablecoin_payment_link(
        self, request: StablecoinPaymentLinkRequest
    ) -> StablecoinPaymentLink: ...

    async def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSession: ...

    async def verify_payment(self, reference: str) -> PaymentVerification: ...


def verify_webhook_signature(
    payload: bytes, signature: str, secret: str | None = None
) -> bool:
    """Check a hex HMAC-SHA256 webhook signature over the raw request body."""
    key = (secret if secret is not None else settings.TSARA_SECRET_KEY).encode("utf-8")
    expected = hmac.new(key, payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def _classify_status(status_code: int) -> GatewayErrorKind:
    if status_code in (401, 403):
        return GatewayErrorKind.AUTH
    if status_code in (400, 404, 409, 422):
        return GatewayErrorKind.VALIDATION
    if status_code in (408, 429, 502, 503, 504):
        return GatewayErrorKind.CONNECTIVITY
    return GatewayErrorKind.UNKNOWN


class TsaraClient:
    """Async HTTP client for the Tsara API"""

    def __init__(
        self,
        base_url: str | None = None,
        secret_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.TSARA_API_URL
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {secret_key if secret_key is not None else settings.TSARA_SECRET_KEY}",
                "Content-Type": "application/json",
            },
            timeout=timeout or settings.TSARA_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        response_model: type[TModel],
        json: dict[str, Any] | None = None,
    ) -> tuple[TModel, dict[str, Any]]:
        """Send a request and return (validated data, raw envelope)."""
        headers = {}
        trace_context = get_trace_context()
        if trace_context:
            headers["traceparent"] = trace_context.to_traceparent_header()

        start_time = time.time()
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise self._fail(operation, GatewayErrorKind.CONNECTIVITY, "Gateway request timed out", e)
        except httpx.TransportError as e:
            raise self._fail(operation, GatewayErrorKind.CONNECTIVITY, "Gateway unreachable", e)
        finally:
            gateway_call_duration_seconds.labels(operation=operation).observe(
                time.time() - start_time
            )

        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            kind = (
                _classify_status(response.status_code)
                if response.is_error
                else GatewayErrorKind.UNKNOWN
            )
            raise self._fail(
                operation,
                kind,
                "Gateway returned a non-JSON response",
                status_code=response.status_code,
                payload=response.text[:500],
            )

        if response.is_error or body.get("success") is False:
            error = body.get("error") or {}
            status_code = error.get("status") or response.status_code
            raise self._fail(
                operation,
                _classify_status(status_code),
                error.get("message") or f"Gateway responded with HTTP {response.status_code}",
                status_code=status_code,
                gateway_code=error.get("code"),
                payload=body,
            )

        try:
            data = response_model.model_validate(body.get("data"))
        except ValidationError as e:
            raise self._fail(
                operation,
                GatewayErrorKind.UNKNOWN,
                "Gateway response did not match the expected schema",
                e,
                status_code=response.status_code,
                payload=body,
            )

        gateway_calls_total.labels(operation=operation, outcome="success").inc()
        logger.debug(
            "gateway_call_succeeded",
            operation=operation,
            request_id=body.get("request_id"),
        )
        return data, body

    def _fail(
        self,
        operation: str,
        kind: GatewayErrorKind,
        message: str,
        cause: Exception | None = None,
        *,
        status_code: int | None = None,
        gateway_code: str | None = None,
        payload: object | None = None,
    ) -> GatewayError:
        gateway_calls_total.labels(operation=operation, outcome=kind.value).inc()
        logger.error(
            "gateway_call_failed",
            operation=operation,
            error_kind=kind.value,
            error_message=message,
            status_code=status_code,
            gateway_code=gateway_code,
            gateway_payload=payload,
            cause=repr(cause) if cause else None,
        )
        error = GatewayError(
            kind,
            message,
            status_code=status_code,
            gateway_code=gateway_code,
            payload=payload,
        )
        error.__cause__ = cause
        return error

    async def create_fiat_payment_link(self, request: FiatPaymentLinkRequest) -> PaymentLink:
        link, _ = await self._request(
            "create_fiat_payment_link",
            "POST",
            "/payment-links",
            PaymentLink,
            json=request.model_dump(exclude_none=True),
        )
        return link

    async def create_stablecoin_payment_link(
        self, request: StablecoinPaymentLinkRequest
    ) -> StablecoinPaymentLink:
        link, _ = await self._request(
            "create_stablecoin_payment_link",
            "POST",
            "/stablecoin/payment-links",
            StablecoinPaymentLink,
            json=request.model_dump(exclude_none=True),
        )
        return link

    async def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSession:
        checkout_session, _ = await self._request(
            "create_checkout_session",
            "POST",
            "/checkout/sessions",
            CheckoutSession,
            json=request.model_dump(exclude_none=True),
        )
        return checkout_session

    async def verify_payment(self, reference: str) -> PaymentVerification:
        payment, body = await self._request(
            "verify_payment",
            "GET",
            f"/payments/{reference}",
            GatewayPayment,
        )
        return PaymentVerification(success=bool(body.get("success")), data=payment)

    async def retrieve_payment_link(self, link_id: str) -> PaymentLink:
        link, _ = await self._request(
            "retrieve_payment_link", "GET", f"/payment-links/{link_id}", PaymentLink
        )
        return link

    async def retrieve_stablecoin_payment_link(self, link_id: str) -> StablecoinPaymentLink:
        link, _ = await self._request(
            "retrieve_stablecoin_payment_link",
            "GET",
            f"/stablecoin/payment-links/{link_id}",
            StablecoinPaymentLink,
        )
        return link

    async def disable_payment_link(self, link_id: str) -> DisabledLink:
        result, _ = await self._request(
            "disable_payment_link",
            "POST",
            f"/payment-links/{link_id}/disable",
            DisabledLink,
        )
        return result


# Global gateway client instance
tsara_client = TsaraClient()
