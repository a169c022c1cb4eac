"""
Tests for receipt numbers, rendering, download and resend.
"""
import re
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import utcnow
from app.models.donation import DonationStatus
from app.schemas.donation import OrganizationLetterhead, ReceiptData
from app.services import receipt as receipt_service
from app.services.receipt import (
    ReceiptRenderer,
    build_receipt_data,
    format_amount,
    generate_receipt_number,
    receipt_filename,
)
from app.services.settings import set_setting, ORGANIZATION_CONFIG_KEY
from conftest import event_types, events_of

RECEIPT_NUMBER = "YIP-2026-XYZ123"


@pytest.fixture
def completed_donation(make_donation, project):
    async def _make(**overrides):
        values = {
            "project_id": project.id,
            "status": DonationStatus.COMPLETED,
            "receipt_number": RECEIPT_NUMBER,
            "completed_at": utcnow(),
            "gateway_transaction_id": "TP999",
        }
        values.update(overrides)
        return await make_donation(**values)
    return _make


def letterhead() -> OrganizationLetterhead:
    return OrganizationLetterhead(name="Yayasan Insan Prihatin", address=["Melaka"])


class TestReceiptHelpers:

    def test_format_amount(self):
        assert format_amount(Decimal("1234"), "MYR") == "RM 1,234.00"
        assert format_amount(Decimal("5.5"), "USD") == "USD 5.50"

    def test_receipt_filename(self):
        assert receipt_filename(RECEIPT_NUMBER) == f"YIP-Receipt-{RECEIPT_NUMBER}.pdf"

    @pytest.mark.asyncio
    async def test_receipt_number_format(self, db_session: AsyncSession):
        number = await generate_receipt_number(db_session)

        year = datetime.now(timezone.utc).year
        assert re.match(rf"^YIP-{year}-[A-Z0-9]{{6}}$", number)

    @pytest.mark.asyncio
    async def test_receipt_number_collision_is_regenerated(
        self, db_session: AsyncSession, make_donation, monkeypatch
    ):
        await make_donation(status=DonationStatus.COMPLETED, receipt_number="YIP-2026-TAKEN1")
        candidates = iter(["YIP-2026-TAKEN1", "YIP-2026-FRESH1"])
        monkeypatch.setattr(receipt_service, "_candidate_receipt_number", lambda: next(candidates))

        assert await generate_receipt_number(db_session) == "YIP-2026-FRESH1"

    @pytest.mark.asyncio
    async def test_receipt_number_gives_up_after_repeated_collisions(
        self, db_session: AsyncSession, make_donation, monkeypatch
    ):
        await make_donation(status=DonationStatus.COMPLETED, receipt_number="YIP-2026-TAKEN1")
        monkeypatch.setattr(receipt_service, "_candidate_receipt_number", lambda: "YIP-2026-TAKEN1")

        with pytest.raises(RuntimeError):
            await generate_receipt_number(db_session)

    @pytest.mark.asyncio
    async def test_anonymous_receipt_data(self, completed_donation):
        donation = await completed_donation(is_anonymous=True, donor_name="Hidden Person")

        data = build_receipt_data(donation, "Clean Water Fund", letterhead())

        assert data.donor_name == "Anonymous"
        assert data.donor_phone is None
        assert data.donor_email == "aisyah@example.com"
        assert data.amount == Decimal("50.00")

    def test_renderer_produces_pdf_with_markup_characters(self):
        data = ReceiptData(
            receipt_number=RECEIPT_NUMBER,
            donor_name="Tan & Sons <Holdings>",
            donor_email="tan@example.com",
            amount=Decimal("120.50"),
            currency="MYR",
            project_title="Food & Shelter",
            payment_reference="YIP-001",
            payment_method="fpx",
            completed_at=datetime(2026, 3, 1, 10, 30, tzinfo=timezone.utc),
            created_at=datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc),
            organization=OrganizationLetterhead(
                name="Yayasan Insan Prihatin",
                legal_name="Pemegang Amanah Yayasan <Insan> Prihatin",
                address=["Line 1 & 2"],
                tax_exemption_ref="LHDN.01/35/42/51/179-6.XXXX",
            ),
        )

        pdf = ReceiptRenderer().render(data)

        assert pdf.startswith(b"%PDF")
        assert len(pdf) > 1000


class TestReceiptDownload:

    @pytest.mark.asyncio
    async def test_download(self, client: AsyncClient, completed_donation):
        await completed_donation()

        response = await client.get("/api/v1/donations/receipt/YIP-001")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.headers["content-disposition"] == (
            f'attachment; filename="YIP-Receipt-{RECEIPT_NUMBER}.pdf"'
        )
        assert "no-cache" in response.headers["cache-control"]
        assert response.content.startswith(b"%PDF")

    @pytest.mark.asyncio
    async def test_download_uses_stored_letterhead(
        self, client: AsyncClient, db_session: AsyncSession, completed_donation, monkeypatch
    ):
        await completed_donation()
        await set_setting(db_session, ORGANIZATION_CONFIG_KEY, {"name": "Insan Prihatin Foundation"})
        await db_session.commit()
        rendered = []
        original = ReceiptRenderer.render

        def spy(self, data):
            rendered.append(data)
            return original(self, data)

        monkeypatch.setattr(ReceiptRenderer, "render", spy)

        response = await client.get("/api/v1/donations/receipt/YIP-001")

        assert response.status_code == 200
        assert rendered[0].organization.name == "Insan Prihatin Foundation"
        assert rendered[0].project_title == "Clean Water Fund"

    @pytest.mark.asyncio
    async def test_download_unknown_reference(self, client: AsyncClient):
        response = await client.get("/api/v1/donations/receipt/YIP-NOPE")

        assert response.status_code == 404
        assert response.json()["detail"] == "Donation not found"

    @pytest.mark.asyncio
    async def test_download_before_completion(self, client: AsyncClient, make_donation):
        await make_donation()

        response = await client.get("/api/v1/donations/receipt/YIP-001")

        assert response.status_code == 400
        assert response.json()["detail"] == "Receipt not available. Payment may not be completed."


class TestReceiptResend:

    @pytest.mark.asyncio
    async def test_resend(
        self, client: AsyncClient, db_session: AsyncSession, completed_donation, email_service
    ):
        donation = await completed_donation()

        response = await client.post("/api/v1/donations/receipt/YIP-001/resend")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Receipt email sent successfully",
            "email": "aisyah@example.com",
        }
        assert len(email_service.sent) == 1
        assert RECEIPT_NUMBER in email_service.sent[0]["subject"]
        await db_session.refresh(donation)
        assert donation.receipt_sent_at is not None
        assert await event_types(db_session, donation.id) == ["receipt_resent"]

    @pytest.mark.asyncio
    async def test_resend_without_email(self, client: AsyncClient, completed_donation, email_service):
        await completed_donation(donor_email=None)

        response = await client.post("/api/v1/donations/receipt/YIP-001/resend")

        assert response.status_code == 400
        assert response.json()["detail"] == "No email address on file for this donation"
        assert email_service.sent == []

    @pytest.mark.asyncio
    async def test_resend_before_completion(self, client: AsyncClient, make_donation):
        await make_donation()

        response = await client.post("/api/v1/donations/receipt/YIP-001/resend")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_resend_unknown_reference(self, client: AsyncClient):
        response = await client.post("/api/v1/donations/receipt/YIP-NOPE/resend")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_resend_send_failure(
        self, client: AsyncClient, db_session: AsyncSession, completed_donation, email_service
    ):
        email_service.fail = True
        donation = await completed_donation()

        response = await client.post("/api/v1/donations/receipt/YIP-001/resend")

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to send receipt email"
        [failed] = await events_of(db_session, donation.id, "receipt_email_failed")
        assert failed.event_data["resend"] is True
