"""Taler payment-method handler and detail blobs."""

from taler_gateway.taler.payments.details import OrderIntent, SettlementDetails
from taler_gateway.taler.payments.handler import TalerPaymentMethodHandler

__all__ = ["OrderIntent", "SettlementDetails", "TalerPaymentMethodHandler"]
