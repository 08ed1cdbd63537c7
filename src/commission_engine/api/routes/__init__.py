"""API routes."""

from commission_engine.api.routes.affiliates import router as affiliates_router
from commission_engine.api.routes.health import router as health_router
from commission_engine.api.routes.reprocess import router as reprocess_router
from commission_engine.api.routes.webhooks import router as webhooks_router
from commission_engine.api.routes.withdrawals import router as withdrawals_router

__all__ = [
    "affiliates_router",
    "health_router",
    "reprocess_router",
    "webhooks_router",
    "withdrawals_router",
]
