import unittest

from fastapi.testclient import TestClient

from settlement.core.tracing import TraceContext, extract_trace_context_from_kafka_headers
from settlement.main import app
from settlement.middleware.metrics_middleware import endpoint_label

TRACEPARENT = "00-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01"


class TestTraceparentParsing(unittest.TestCase):
    def test_valid_header_starts_child_span(self):
        context = TraceContext.from_traceparent_header(TRACEPARENT)

        self.assertEqual(context.trace_id, "0af7651916cd43dd8448eb211c80319c")
        self.assertEqual(context.parent_span_id, "b7ad6b7169203331")
        self.assertNotEqual(context.span_id, "b7ad6b7169203331")
        self.assertTrue(context.sampled)

    def test_malformed_headers(self):
        for header in (
            "garbage",
            "01-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01",
            "00-" + "0" * 32 + "-b7ad6b7169203331-01",
            "00-0af7651916cd43dd8448eb211c80319c-" + "0" * 16 + "-01",
            "00-zzf7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01",
        ):
            with self.subTest(header=header):
                self.assertIsNone(TraceContext.from_traceparent_header(header))

    def test_kafka_headers(self):
        context = extract_trace_context_from_kafka_headers(
            [("other", b"x"), ("traceparent", TRACEPARENT.encode("utf-8"))]
        )

        self.assertEqual(context.trace_id, "0af7651916cd43dd8448eb211c80319c")
        self.assertIsNone(extract_trace_context_from_kafka_headers(None))


class TestTracingMiddleware(unittest.TestCase):
    def setUp(self):
        # No lifespan: the client is not used as a context manager
        self.client = TestClient(app)

    def test_continues_incoming_trace(self):
        response = self.client.get("/api/v1/health/live", headers={"traceparent": TRACEPARENT})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["X-Trace-Id"], "0af7651916cd43dd8448eb211c80319c")
        self.assertIn("X-Request-Id", response.headers)

    def test_starts_new_trace(self):
        first = self.client.get("/api/v1/health/live")
        second = self.client.get("/api/v1/health/live", headers={"traceparent": "bogus"})

        self.assertEqual(len(first.headers["X-Trace-Id"]), 32)
        self.assertNotEqual(first.headers["X-Trace-Id"], second.headers["X-Trace-Id"])

    def test_metrics_endpoint(self):
        self.client.get("/api/v1/health/live")

        response = self.client.get("/metrics")

        self.assertEqual(response.status_code, 200)
        self.assertIn("http_requests_total", response.text)

    def test_endpoint_label_collapses_ids(self):
        self.assertEqual(
            endpoint_label("/api/v1/seller/orders/123e4567-e89b-12d3-a456-426614174000/confirm"),
            "/api/v1/seller/orders/{id}/confirm",
        )
        self.assertEqual(
            endpoint_label("/api/v1/notifications/123e4567-e89b-12d3-a456-426614174000"),
            "/api/v1/notifications/{id}",
        )
