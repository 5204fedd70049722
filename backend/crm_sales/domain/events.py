"""
Domain events.

An event is a tagged record: ``event_type`` names the variant and ``data``
holds its JSON-compatible payload. Payloads are normalized on creation so an
event read back from the event store is identical to the one raised.
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventMetadata(BaseModel):
    tenant_id: int
    user_id: Optional[int] = None
    timestamp: datetime
    aggregate_version: int = Field(..., ge=1)

    model_config = ConfigDict(frozen=True)


class DomainEvent(BaseModel):
    event_type: str
    aggregate_type: str
    aggregate_id: int
    data: Dict[str, Any] = Field(default_factory=dict)
    metadata: EventMetadata

    model_config = ConfigDict(frozen=True)

    @property
    def version(self) -> int:
        return self.metadata.aggregate_version

    @property
    def occurred_on(self) -> date:
        return self.metadata.timestamp.date()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def encode_value(value: Any) -> Any:
    """Normalize a payload value to its JSON form"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return encode_value(value.model_dump())
    if isinstance(value, dict):
        return {str(k): encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def decode_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)
