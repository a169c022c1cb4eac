"""
Health check endpoints.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.deps import get_gateway_client
from app.db.base import get_db, ping_db
from app.schemas.common import HealthResponse
from app.services.gateway import GatewayClient

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
):
    """Liveness plus database reachability; 503 when the database is down."""
    database_ok = await ping_db(db)
    health = HealthResponse(
        code=200 if database_ok else 503,
        message="API is healthy." if database_ok else "Database unavailable.",
        database=database_ok,
        gatewayConfigured=gateway.is_configured(),
        environment=settings.APP_ENV,
    )
    if not database_ok:
        return JSONResponse(status_code=503, content=health.model_dump())
    return health
