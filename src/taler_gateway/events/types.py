"""Host event types.

Events are immutable and carry just enough to let subscribers reload state.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class HostEvent:
    """Base class for events published on the host event aggregator."""

    event_id: UUID = field(default_factory=uuid4, kw_only=True)
    timestamp: datetime = field(default_factory=_utcnow, kw_only=True)

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type
        return {k: _serialize(v) for k, v in data.items()}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass(frozen=True)
class InvoiceNeedUpdate(HostEvent):
    """The invoice should re-evaluate its status (e.g. a payment arrived)."""

    invoice_id: str


@dataclass(frozen=True)
class TalerOrderSettled(HostEvent):
    """A Taler order was observed paid and recorded as a settled payment."""

    invoice_id: str
    order_id: str
    asset_code: str
    amount: Decimal


def _serialize(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value
