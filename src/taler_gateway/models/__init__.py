"""ORM models."""

from taler_gateway.models.base import Base, TimestampMixin
from taler_gateway.models.invoice import InvoiceRecord, PaymentPromptRecord, PaymentRecord
from taler_gateway.models.settings import ServerSetting

__all__ = [
    "Base",
    "TimestampMixin",
    "InvoiceRecord",
    "PaymentPromptRecord",
    "PaymentRecord",
    "ServerSetting",
]
