"""
Donation statistics for the admin dashboard.
"""
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.donation import Donation, DonationStatus
from app.schemas.donation import DonationStats

CENT = Decimal("0.01")


async def get_donation_stats(db: AsyncSession) -> DonationStats:
    """Totals in major units, counts per status and the success rate."""
    result = await db.execute(
        select(Donation.status, func.count(Donation.id), func.coalesce(func.sum(Donation.amount), 0))
        .group_by(Donation.status)
    )
    counts = {s: 0 for s in DonationStatus}
    completed_sum = 0
    for row_status, count, amount_sum in result.all():
        counts[DonationStatus(row_status)] = count
        if row_status == DonationStatus.COMPLETED:
            completed_sum = int(amount_sum)

    total = sum(counts.values())
    completed = counts[DonationStatus.COMPLETED]
    total_raised = (Decimal(completed_sum) / 100).quantize(CENT)
    average = (total_raised / completed).quantize(CENT) if completed else Decimal("0.00")

    return DonationStats(
        totalRaised=total_raised,
        totalDonations=total,
        completedDonations=completed,
        pendingDonations=counts[DonationStatus.PENDING],
        failedDonations=counts[DonationStatus.FAILED],
        refundedDonations=counts[DonationStatus.REFUNDED],
        averageAmount=average,
        successRate=round(completed / total * 100, 1) if total else 0.0,
    )
