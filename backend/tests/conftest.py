"""
Test configuration and fixtures for the donations API tests.
"""
import os
import tempfile

# Settings are read once at import time, so the test environment has to be
# in place before anything under `app` is imported.
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["DEBUG"] = "false"
os.environ["APP_ENV"] = "test"
os.environ["EMAIL_LOG_PATH"] = os.path.join(tempfile.gettempdir(), "donation_test_emails.log")
os.environ.pop("SMTP_HOST", None)
os.environ.pop("GATEWAY_SECRET_KEY", None)
os.environ.pop("GATEWAY_WEBHOOK_SECRET", None)

import pytest
import pytest_asyncio
from typing import AsyncGenerator, Optional
from urllib.parse import parse_qsl

import httpx
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.main import app
from app.db.base import Base, get_db
from app.core.deps import get_gateway_client
from app.core.request_guards import donation_rate_limiter
from app.core.security import create_access_token
from app.models.donation import Donation, DonationStatus
from app.models.donation_event import DonationEvent
from app.models.project import Project
from app.services.email import EmailService, EmailResult, EmailAttachment, get_email_service
from app.services.gateway import GatewayClient
from app.services.receipt import ReceiptRenderer, get_receipt_renderer
from app.schemas.donation import ReceiptData

GATEWAY_URL = "https://dev.toyyibpay.com"
ORIGIN = "http://test"


class GatewayStub:
    """
    Fake payment gateway behind httpx.MockTransport.

    Records every request so tests can assert on what was (or was not)
    sent to the gateway.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.category_code = "cat-general"
        self.bill_count = 0
        self.bill_response = None
        self.transactions: list[dict] = []
        self.error: Optional[Exception] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error:
            raise self.error

        path = request.url.path
        if path.endswith("/createCategory"):
            return httpx.Response(200, json=[{"CategoryCode": self.category_code}])
        if path.endswith("/createBill"):
            if self.bill_response is not None:
                return httpx.Response(200, json=self.bill_response)
            self.bill_count += 1
            return httpx.Response(200, json=[{"BillCode": f"bill{self.bill_count:03d}"}])
        if path.endswith("/getBillTransactions"):
            return httpx.Response(200, json=self.transactions)
        return httpx.Response(404, json={"error": "unknown endpoint"})

    def client(self) -> GatewayClient:
        return GatewayClient(
            GATEWAY_URL,
            "test-secret",
            timeout=5.0,
            transport=httpx.MockTransport(self.handler),
        )

    def calls(self, endpoint: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(endpoint)]

    @staticmethod
    def form(request: httpx.Request) -> dict[str, str]:
        return dict(parse_qsl(request.content.decode()))


class RecordingEmailService(EmailService):
    """Email service that records messages instead of sending them."""

    def __init__(self):
        super().__init__()
        self.sent: list[dict] = []
        self.fail = False
        self.error: Optional[Exception] = None

    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        html: Optional[str] = None,
        attachments: Optional[list[EmailAttachment]] = None
    ) -> EmailResult:
        if self.error:
            raise self.error
        if self.fail:
            return EmailResult(success=False, reason="send_failed", error="SMTP unavailable")
        attachments = attachments or []
        self.sent.append({
            "to": to,
            "subject": subject,
            "body": body,
            "html": html,
            "attachments": attachments,
        })
        return EmailResult(success=True, attachments=[a.filename for a in attachments])


class FailingRenderer(ReceiptRenderer):
    def render(self, data: ReceiptData) -> bytes:
        raise RuntimeError("renderer exploded")


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
    # Clean up test database file
    try:
        os.remove("./test.db")
    except OSError:
        pass


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session_maker = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )
    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def gateway() -> GatewayStub:
    return GatewayStub()


@pytest.fixture
def email_service() -> RecordingEmailService:
    return RecordingEmailService()


@pytest.fixture
def renderer() -> ReceiptRenderer:
    return ReceiptRenderer()


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession,
    gateway: GatewayStub,
    email_service: RecordingEmailService,
    renderer: ReceiptRenderer,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database, gateway and email overrides."""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway_client] = gateway.client
    app.dependency_overrides[get_email_service] = lambda: email_service
    app.dependency_overrides[get_receipt_renderer] = lambda: renderer
    donation_rate_limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url=ORIGIN,
        headers={"Origin": ORIGIN},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
    donation_rate_limiter.reset()


@pytest_asyncio.fixture
async def project(db_session: AsyncSession) -> Project:
    """Create a project accepting donations."""
    project = Project(
        slug="clean-water",
        title="Clean Water Fund",
        description="Wells for rural villages",
        donation_enabled=True,
        donation_goal=5_000_000,
        donation_raised=0,
        gateway_category_code="cat-water",
    )
    db_session.add(project)
    await db_session.commit()
    return project


@pytest_asyncio.fixture
async def make_donation(db_session: AsyncSession):
    """Factory for donations in any state."""
    async def _make(**overrides) -> Donation:
        values = {
            "payment_reference": "YIP-001",
            "donor_name": "Aisyah Rahman",
            "donor_email": "aisyah@example.com",
            "donor_phone": "012-3456789",
            "is_anonymous": False,
            "amount": 5000,
            "currency": "MYR",
            "status": DonationStatus.PENDING,
            "gateway_bill_code": "bill-initial",
            "payment_attempts": 1,
            "environment": "sandbox",
        }
        values.update(overrides)
        donation = Donation(**values)
        db_session.add(donation)
        await db_session.commit()
        return donation

    return _make


async def event_types(db: AsyncSession, donation_id: str) -> list[str]:
    """Event types logged for a donation, oldest first."""
    result = await db.execute(
        select(DonationEvent.event_type)
        .where(DonationEvent.donation_id == donation_id)
        .order_by(DonationEvent.created, DonationEvent.id)
    )
    return list(result.scalars().all())


async def events_of(db: AsyncSession, donation_id: str, event_type: str) -> list[DonationEvent]:
    result = await db.execute(
        select(DonationEvent)
        .where(DonationEvent.donation_id == donation_id, DonationEvent.event_type == event_type)
        .order_by(DonationEvent.created, DonationEvent.id)
    )
    return list(result.scalars().all())


@pytest.fixture
def admin_headers() -> dict:
    """Authorization headers carrying an admin token."""
    token = create_access_token(subject="admin-user", additional_claims={"role": "admin"})
    return {"Authorization": f"Bearer {token}"}
