"""Host events and the event aggregator."""

from taler_gateway.events.aggregator import EventAggregator, EventHandler
from taler_gateway.events.types import HostEvent, InvoiceNeedUpdate, TalerOrderSettled

__all__ = [
    "EventAggregator",
    "EventHandler",
    "HostEvent",
    "InvoiceNeedUpdate",
    "TalerOrderSettled",
]
