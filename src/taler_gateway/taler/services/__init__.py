"""Taler background services."""

from taler_gateway.taler.services.listener import (
    ListenerState,
    SweepResult,
    TalerPaymentListener,
)

__all__ = ["ListenerState", "SweepResult", "TalerPaymentListener"]
