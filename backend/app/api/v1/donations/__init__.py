"""
Donation API routers.

Provides endpoints for:
- Donation intents, lookup and payment verification
- Gateway webhook callbacks
- Payment retries
- Receipts (download and resend)
- Admin statistics and event logs
"""
from fastapi import APIRouter

from app.api.v1.donations.webhook import router as webhook_router
from app.api.v1.donations.retry import router as retry_router
from app.api.v1.donations.receipts import router as receipts_router
from app.api.v1.donations.admin import router as admin_router
from app.api.v1.donations.intents import router as intents_router

# Combined donations router; the intents router goes last because its
# `/{reference}` lookup would shadow the fixed single-segment paths
donations_router = APIRouter(tags=["donations"])

donations_router.include_router(webhook_router, prefix="/donations")
donations_router.include_router(retry_router, prefix="/donations")
donations_router.include_router(receipts_router, prefix="/donations")
donations_router.include_router(admin_router, prefix="/donations", tags=["donations-admin"])
donations_router.include_router(intents_router, prefix="/donations")

__all__ = ["donations_router"]
