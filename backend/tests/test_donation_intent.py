"""
Tests for donation intents and the public donation lookup.
"""
import re

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.deps import get_gateway_client
from app.main import app
from app.models.donation import Donation, DonationStatus
from app.models.project import Project
from app.services.gateway import GatewayClient
from app.services.settings import set_setting, DONATIONS_CLOSED_KEY
from conftest import GatewayStub, GATEWAY_URL, event_types, events_of

DONATIONS_URL = "/api/v1/donations"
PAYMENT_REFERENCE = re.compile(r"^YIP-\d{13}-[A-Z0-9]{6}$")


def intent(**overrides) -> dict:
    payload = {
        "donorName": "Aisyah Rahman",
        "donorEmail": "aisyah@example.com",
        "donorPhone": "012-3456789",
        "amount": 50,
        "message": "For the wells",
    }
    payload.update(overrides)
    return payload


async def stored(db: AsyncSession, reference: str) -> Donation:
    result = await db.execute(select(Donation).where(Donation.payment_reference == reference))
    return result.scalar_one()


class TestCreateDonation:

    @pytest.mark.asyncio
    async def test_gateway_bill_for_project(
        self, client: AsyncClient, db_session: AsyncSession, gateway: GatewayStub, project
    ):
        response = await client.post(DONATIONS_URL, json=intent(projectId=project.id))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"] == "Donation initiated successfully"
        assert data["paymentMethod"] == "toyyibpay"
        assert data["redirectUrl"] == "https://dev.toyyibpay.com/bill001"
        assert data["bankDetails"] is None
        assert PAYMENT_REFERENCE.match(data["paymentReference"])

        donation = await stored(db_session, data["paymentReference"])
        assert donation.id == data["donationId"]
        assert donation.status == DonationStatus.PENDING
        assert donation.amount == 5000
        assert donation.project_id == project.id
        assert donation.gateway_bill_code == "bill001"
        assert donation.payment_attempts == 1
        assert donation.environment == "sandbox"
        assert donation.session_id.startswith("sess_")
        assert await event_types(db_session, donation.id) == ["created", "bill_created"]

        form = gateway.form(gateway.calls("/createBill")[0])
        assert form["categoryCode"] == "cat-water"
        assert form["billAmount"] == "5000"
        assert form["billTo"] == "Aisyah Rahman"
        assert form["billEmail"] == "aisyah@example.com"
        assert form["billPayorInfo"] == "1"
        assert form["billCallbackUrl"] == "http://test/api/v1/donations/webhook"
        assert form["billReturnUrl"] == f"{settings.SITE_URL}/donate/success?ref={donation.payment_reference}"
        assert gateway.calls("/createCategory") == []

    @pytest.mark.asyncio
    async def test_general_fund_category_created_on_first_use(
        self, client: AsyncClient, gateway: GatewayStub
    ):
        response = await client.post(DONATIONS_URL, json=intent())

        assert response.status_code == 200
        assert len(gateway.calls("/createCategory")) == 1
        form = gateway.form(gateway.calls("/createBill")[0])
        assert form["categoryCode"] == "cat-general"
        assert form["billName"] == "Donation to YIP"

    @pytest.mark.asyncio
    async def test_program_is_recorded_in_bill(self, client: AsyncClient, gateway: GatewayStub, project):
        response = await client.post(DONATIONS_URL, json=intent(projectId=project.id, program="Ramadan"))

        assert response.status_code == 200
        form = gateway.form(gateway.calls("/createBill")[0])
        assert form["billDescription"] == "Donation for Clean Water Fund - Ramadan"

    @pytest.mark.asyncio
    async def test_anonymous_donation_needs_no_details(
        self, client: AsyncClient, db_session: AsyncSession, gateway: GatewayStub, project
    ):
        response = await client.post(
            DONATIONS_URL,
            json={"amount": 25, "isAnonymous": True, "projectId": project.id},
        )

        assert response.status_code == 200
        donation = await stored(db_session, response.json()["paymentReference"])
        assert donation.is_anonymous is True
        assert donation.amount == 2500
        form = gateway.form(gateway.calls("/createBill")[0])
        assert form["billTo"] == "Penderma"
        assert form["billPayorInfo"] == "0"

    @pytest.mark.asyncio
    async def test_manual_payment_without_gateway(
        self, client: AsyncClient, db_session: AsyncSession, project
    ):
        app.dependency_overrides[get_gateway_client] = lambda: GatewayClient(GATEWAY_URL, None)

        response = await client.post(DONATIONS_URL, json=intent(projectId=project.id))

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Donation recorded successfully"
        assert data["paymentMethod"] == "manual"
        assert data["redirectUrl"] == f"{settings.SITE_URL}/donate/success?ref={data['paymentReference']}"
        assert data["bankDetails"] == {
            "bankName": settings.MANUAL_BANK_NAME,
            "accountNumber": settings.MANUAL_BANK_ACCOUNT_NUMBER,
            "accountName": settings.MANUAL_BANK_ACCOUNT_NAME,
            "reference": data["paymentReference"],
        }
        donation = await stored(db_session, data["paymentReference"])
        assert donation.gateway_bill_code is None
        assert await event_types(db_session, donation.id) == ["created", "manual_payment"]

    @pytest.mark.asyncio
    async def test_gateway_failure_keeps_pending_donation(
        self, client: AsyncClient, db_session: AsyncSession, gateway: GatewayStub, project
    ):
        gateway.bill_response = {"msg": "Invalid category"}

        response = await client.post(DONATIONS_URL, json=intent(projectId=project.id))

        assert response.status_code == 500
        detail = response.json()["detail"]
        assert detail["code"] == "BILL_CREATE_FAILED"
        assert "details" not in detail
        assert "Invalid category" not in response.text

        result = await db_session.execute(select(Donation))
        [donation] = result.scalars().all()
        assert donation.status == DonationStatus.PENDING
        assert donation.gateway_bill_code is None
        [error] = await events_of(db_session, donation.id, "error")
        assert error.event_data["code"] == "BILL_CREATE_FAILED"


class TestCreateDonationRejections:

    @pytest.mark.asyncio
    async def test_donations_closed(self, client: AsyncClient, db_session: AsyncSession, gateway: GatewayStub):
        await set_setting(db_session, DONATIONS_CLOSED_KEY, {"closed": True})
        await db_session.commit()

        response = await client.post(DONATIONS_URL, json=intent())

        assert response.status_code == 403
        assert response.json()["detail"] == "Donations are currently closed. Please check back later."
        assert gateway.requests == []

    @pytest.mark.asyncio
    async def test_unknown_project(self, client: AsyncClient):
        response = await client.post(DONATIONS_URL, json=intent(projectId="nope"))

        assert response.status_code == 404
        assert response.json()["detail"] == "Project not found"

    @pytest.mark.asyncio
    async def test_project_not_accepting(self, client: AsyncClient, db_session: AsyncSession):
        closed = Project(slug="closed", title="Closed Project", donation_enabled=False, donation_raised=0)
        db_session.add(closed)
        await db_session.commit()

        response = await client.post(DONATIONS_URL, json=intent(projectId=closed.id))

        assert response.status_code == 400
        assert response.json()["detail"] == "Donations are not enabled for this project"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload,message", [
        (intent(donorEmail=None), "Name and email are required for non-anonymous donations"),
        (intent(donorName=None), "Name and email are required for non-anonymous donations"),
        (intent(amount=0.5), "Minimum donation amount is RM 1"),
        (intent(donorPhone="call me"), "Invalid phone number format"),
    ])
    async def test_invalid_payload(self, client: AsyncClient, gateway: GatewayStub, payload, message):
        response = await client.post(DONATIONS_URL, json=payload)

        assert response.status_code == 400
        assert response.json()["detail"] == message
        assert gateway.requests == []

    @pytest.mark.asyncio
    async def test_amount_above_maximum(self, client: AsyncClient):
        response = await client.post(DONATIONS_URL, json=intent(amount=100001))

        assert response.status_code == 400
        assert response.json()["detail"].startswith("Maximum donation amount is RM 100,000.")

    @pytest.mark.asyncio
    async def test_invalid_email(self, client: AsyncClient):
        response = await client.post(DONATIONS_URL, json=intent(donorEmail="not-an-email"))
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_untrusted_origin(self, client: AsyncClient, db_session: AsyncSession):
        response = await client.post(
            DONATIONS_URL,
            json=intent(),
            headers={"Origin": "https://evil.example"},
        )

        assert response.status_code == 403
        result = await db_session.execute(select(Donation))
        assert result.scalars().all() == []

    @pytest.mark.asyncio
    async def test_referer_is_accepted_as_origin(self, client: AsyncClient):
        client.headers.pop("Origin")

        response = await client.post(
            DONATIONS_URL,
            json=intent(),
            headers={"Referer": "http://localhost:3000/donate"},
        )

        assert response.status_code == 200


class TestDonationLookup:

    @pytest.mark.asyncio
    async def test_lookup(self, client: AsyncClient, project, make_donation):
        donation = await make_donation(project_id=project.id)

        response = await client.get("/api/v1/donations/YIP-001")

        assert response.status_code == 200
        data = response.json()["donation"]
        assert data["id"] == donation.id
        assert data["reference"] == "YIP-001"
        assert data["donorName"] == "Aisyah Rahman"
        assert data["donorEmail"] == "aisyah@example.com"
        assert data["status"] == "pending"
        assert data["project"] == {"id": project.id, "title": "Clean Water Fund", "slug": "clean-water"}

    @pytest.mark.asyncio
    async def test_lookup_hides_anonymous_donor(self, client: AsyncClient, make_donation):
        await make_donation(is_anonymous=True, donor_name="Hidden Person")

        response = await client.get("/api/v1/donations/YIP-001")

        data = response.json()["donation"]
        assert data["donorName"] == "Anonymous"
        assert data["donorEmail"] is None
        assert "Hidden Person" not in response.text

    @pytest.mark.asyncio
    async def test_lookup_unknown(self, client: AsyncClient):
        response = await client.get("/api/v1/donations/YIP-NOPE")

        assert response.status_code == 404
        assert response.json()["detail"] == "Donation not found"
