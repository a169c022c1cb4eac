"""
FastAPI dependencies shared by the API routers.
"""
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.config import settings
from app.core.security import decode_token
from app.services.donation_events import RequestMeta
from app.services.email import EmailService, get_email_service
from app.services.gateway import GatewayClient
from app.services.reconciliation import FanoutServices
from app.services.receipt import ReceiptRenderer, get_receipt_renderer

ADMIN_ROLES = ("admin", "superadmin")

bearer_scheme = HTTPBearer(auto_error=False)


def get_gateway_client() -> GatewayClient:
    return GatewayClient.from_settings()


def get_fanout(
    email_service: EmailService = Depends(get_email_service),
    renderer: ReceiptRenderer = Depends(get_receipt_renderer),
) -> FanoutServices:
    return FanoutServices(email_service=email_service, renderer=renderer)


def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta.from_request(request)


def get_base_url(request: Request) -> str:
    """
    Public base URL of this service, for gateway callback URLs.

    Honours the proxy's forwarded protocol; falls back to SITE_URL when
    the request carries no host.
    """
    host = request.headers.get("x-forwarded-host") or request.headers.get("host")
    if not host:
        return settings.SITE_URL.rstrip("/")
    protocol = request.headers.get("x-forwarded-proto") or request.url.scheme
    return f"{protocol}://{host}"


async def get_current_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    """Verify the admin bearer token and return its claims."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"}
        )

    payload = decode_token(credentials.credentials)
    if payload is None or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    if payload.get("role") not in ADMIN_ROLES and not payload.get("is_superadmin"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )

    return payload
