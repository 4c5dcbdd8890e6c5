"""
The envelope every settlement event travels in

    {"event_id": ..., "event_type": "order.placed", "timestamp": ..., "version": "1.0", "data": {...}}

event_id is fixed when the outbox row is written, so redelivered messages carry
the same id and consumers deduplicate on it.
"""

from datetime import datetime, UTC
from typing import Generic, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class BaseEventData(BaseModel):
    model_config = ConfigDict(use_enum_values=True)


TData = TypeVar("TData", bound=BaseEventData)


class EventEnvelope(BaseModel, Generic[TData]):
    """Parametrize with the payload type (EventEnvelope[OrderPlacedData]) so it serializes fully."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    version: str = "1.0"
    data: TData
