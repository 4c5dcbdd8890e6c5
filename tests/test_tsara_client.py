import hashlib
import hmac
import json
import unittest

import httpx

from settlement.clients.tsara import (
    CheckoutSessionRequest,
    FiatPaymentLinkRequest,
    TsaraClient,
    verify_webhook_signature,
)
from settlement.core.tracing import TraceContext, clear_trace_context, set_trace_context
from settlement.errors import GatewayError, GatewayErrorKind


def client_for(handler) -> TsaraClient:
    return TsaraClient(
        base_url="https://sandbox.tsara.test/v1",
        secret_key="sk_test",
        transport=httpx.MockTransport(handler),
    )


class TestTsaraClient(unittest.IsolatedAsyncioTestCase):
    async def test_create_fiat_payment_link(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {
                        "id": "plink_1",
                        "url": "https://pay.tsara.test/l/1",
                        "status": "active",
                        "amount": 11000,
                        "currency": "NGN",
                    },
                    "request_id": "req_1",
                },
            )

        client = client_for(handler)
        link = await client.create_fiat_payment_link(
            FiatPaymentLinkRequest(amount=11000, currency="NGN", description="Order 1")
        )
        await client.aclose()

        self.assertEqual(link.url, "https://pay.tsara.test/l/1")
        self.assertEqual(seen["path"], "/v1/payment-links")
        self.assertEqual(seen["auth"], "Bearer sk_test")
        self.assertEqual(seen["body"], {"amount": 11000, "currency": "NGN", "description": "Order 1"})

    async def test_verify_payment(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {
                        "id": "pay_1",
                        "reference": "order_1",
                        "status": "success",
                        "amount": 11000,
                        "currency": "NGN",
                    },
                },
            )

        client = client_for(handler)
        verification = await client.verify_payment("order_1")

        self.assertTrue(verification.success)
        self.assertEqual(verification.data.status, "success")
        self.assertEqual(verification.data.reference, "order_1")

    async def test_forwards_traceparent(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["traceparent"] = request.headers.get("traceparent")
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {
                        "id": "pay_1",
                        "reference": "order_1",
                        "status": "pending",
                        "amount": 1,
                        "currency": "NGN",
                    },
                },
            )

        context = TraceContext(trace_id="0af7651916cd43dd8448eb211c80319c", span_id="b7ad6b7169203331")
        set_trace_context(context)
        try:
            await client_for(handler).verify_payment("order_1")
        finally:
            clear_trace_context()

        self.assertEqual(seen["traceparent"], context.to_traceparent_header())

    async def test_error_envelope_is_classified(self):
        cases = [
            (401, GatewayErrorKind.AUTH),
            (422, GatewayErrorKind.VALIDATION),
            (503, GatewayErrorKind.CONNECTIVITY),
            (500, GatewayErrorKind.UNKNOWN),
        ]
        for status_code, kind in cases:
            with self.subTest(status_code=status_code):

                def handler(request: httpx.Request, status_code=status_code) -> httpx.Response:
                    return httpx.Response(
                        status_code,
                        json={
                            "success": False,
                            "error": {"code": "E1", "message": "nope", "status": status_code},
                        },
                    )

                with self.assertRaises(GatewayError) as ctx:
                    await client_for(handler).create_checkout_session(
                        CheckoutSessionRequest(amount=1, currency="NGN", reference="order_1")
                    )
                self.assertEqual(ctx.exception.kind, kind)
                self.assertEqual(ctx.exception.gateway_code, "E1")

    async def test_success_false_with_http_200(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"success": False, "error": {"message": "Invalid amount", "status": 400}},
            )

        with self.assertRaises(GatewayError) as ctx:
            await client_for(handler).verify_payment("order_1")

        self.assertEqual(ctx.exception.kind, GatewayErrorKind.VALIDATION)
        self.assertEqual(ctx.exception.message, "Invalid amount")

    async def test_non_json_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>Bad Gateway</html>")

        with self.assertRaises(GatewayError) as ctx:
            await client_for(handler).verify_payment("order_1")

        self.assertEqual(ctx.exception.kind, GatewayErrorKind.CONNECTIVITY)

    async def test_schema_mismatch(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": True, "data": {"id": "plink_1"}})

        with self.assertRaises(GatewayError) as ctx:
            await client_for(handler).create_fiat_payment_link(
                FiatPaymentLinkRequest(amount=1, currency="NGN")
            )

        self.assertEqual(ctx.exception.kind, GatewayErrorKind.UNKNOWN)

    async def test_transport_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertRaises(GatewayError) as ctx:
            await client_for(handler).verify_payment("order_1")

        self.assertEqual(ctx.exception.kind, GatewayErrorKind.CONNECTIVITY)


class TestWebhookSignature(unittest.TestCase):
    def test_valid_and_invalid(self):
        body = b'{"event":"payment.updated"}'
        signature = hmac.new(b"whsec", body, hashlib.sha256).hexdigest()

        self.assertTrue(verify_webhook_signature(body, signature, secret="whsec"))
        self.assertTrue(verify_webhook_signature(body, signature.upper(), secret="whsec"))
        self.assertFalse(verify_webhook_signature(body, signature, secret="other"))
        self.assertFalse(verify_webhook_signature(body + b" ", signature, secret="whsec"))
