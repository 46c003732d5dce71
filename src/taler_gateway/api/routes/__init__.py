"""API routes."""

from taler_gateway.api.routes.health import router as health_router
from taler_gateway.api.routes.invoices import router as invoices_router
from taler_gateway.api.routes.taler_server import router as taler_server_router

__all__ = ["health_router", "invoices_router", "taler_server_router"]
