"""
W3C Trace Context propagation.

A checkout spans several hops: the HTTP request that confirms payment, the
outbox row written in that transaction, the Kafka message published later by the
outbox worker, and the notification consumer that finally writes the buyer's
notification. The trace id travels with each hop so all of their logs correlate.

traceparent format: 00-{trace_id:32 hex}-{span_id:16 hex}-{flags:2 hex}
"""

import re
import secrets
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional

trace_id_var: ContextVar[Optional[str]] = ContextVar("trace.id", default=None)
span_id_var: ContextVar[Optional[str]] = ContextVar("span.id", default=None)
parent_span_id_var: ContextVar[Optional[str]] = ContextVar(
    "parent_span_id", default=None
)

TRACEPARENT_RE = re.compile(r"00-([0-9a-f]{32})-([0-9a-f]{16})-([0-9a-f]{2})")
ZERO_TRACE_ID = "0" * 32
ZERO_SPAN_ID = "0" * 16


@dataclass
class TraceContext:
    """Trace identifiers for the current unit of work."""

    trace_id: str  # 32 hex characters (128 bits)
    span_id: str  # 16 hex characters (64 bits)
    parent_span_id: Optional[str] = None
    sampled: bool = True
    version: str = "00"

    def to_traceparent_header(self) -> str:
        """Format as a traceparent value; our span_id is the callee's parent."""
        trace_flags = "01" if self.sampled else "00"
        return f"{self.version}-{self.trace_id}-{self.span_id}-{trace_flags}"

    @classmethod
    def from_traceparent_header(cls, header_value: str) -> Optional["TraceContext"]:
        """
        Parse a traceparent header, starting a new span under it.

        Returns None for malformed values and all-zero ids. Only version 00 is
        understood.
        """
        match = TRACEPARENT_RE.fullmatch(header_value.strip().lower()) if header_value else None
        if match is None:
            return None

        trace_id, parent_span_id, trace_flags = match.groups()
        if trace_id == ZERO_TRACE_ID or parent_span_id == ZERO_SPAN_ID:
            return None

        return cls(
            trace_id=trace_id,
            span_id=generate_span_id(),
            parent_span_id=parent_span_id,
            sampled=bool(int(trace_flags, 16) & 0x01),
        )


def generate_trace_id() -> str:
    return secrets.token_bytes(16).hex()


def generate_span_id() -> str:
    return secrets.token_bytes(8).hex()


def create_trace_context(
    trace_id: Optional[str] = None,
    parent_span_id: Optional[str] = None,
    sampled: bool = True,
) -> TraceContext:
    """
    Start a new trace, or continue one when trace_id is given.

    A fresh span_id is generated either way.
    """
    return TraceContext(
        trace_id=trace_id or generate_trace_id(),
        span_id=generate_span_id(),
        parent_span_id=parent_span_id,
        sampled=sampled,
    )


def set_trace_context(context: TraceContext) -> None:
    trace_id_var.set(context.trace_id)
    span_id_var.set(context.span_id)
    if context.parent_span_id:
        parent_span_id_var.set(context.parent_span_id)


def get_trace_context() -> Optional[TraceContext]:
    """Current trace context, or None outside a traced request/message."""
    trace_id = trace_id_var.get()
    if not trace_id:
        return None

    return TraceContext(
        trace_id=trace_id,
        span_id=span_id_var.get() or generate_span_id(),
        parent_span_id=parent_span_id_var.get(),
    )


def clear_trace_context() -> None:
    """Reset between items in background loops (worker, consumer) and tests."""
    trace_id_var.set(None)
    span_id_var.set(None)
    parent_span_id_var.set(None)


def extract_trace_context_from_kafka_headers(
    headers: list[tuple[str, bytes]] | None,
) -> Optional[TraceContext]:
    """Read a traceparent header from Kafka message headers, if present."""
    if not headers:
        return None

    for key, value in headers:
        if key == "traceparent":
            return TraceContext.from_traceparent_header(value.decode("utf-8"))

    return None
