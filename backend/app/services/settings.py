"""
Settings service.

Helpers for reading and writing the key/value `app_settings` store and for
assembling configuration objects that merge stored overrides with the
environment defaults.
"""
from typing import Optional, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite

from app.core.config import settings
from app.models.app_setting import AppSetting
from app.models.base import utcnow
from app.schemas.donation import OrganizationLetterhead

DONATIONS_CLOSED_KEY = "donations_closed"
ORGANIZATION_CONFIG_KEY = "organization_config"


async def get_setting(db: AsyncSession, key: str) -> Optional[dict[str, Any]]:
    """Return the stored value for a key, or None."""
    result = await db.execute(
        select(AppSetting.value).where(AppSetting.key == key)
    )
    return result.scalar_one_or_none()


async def set_setting(db: AsyncSession, key: str, value: dict[str, Any]) -> None:
    """
    Insert or overwrite a setting in a single statement.

    Concurrent writers never fail on the unique key; the last write wins.
    """
    dialect = db.get_bind().dialect.name
    insert = postgresql.insert if dialect == "postgresql" else sqlite.insert

    stmt = insert(AppSetting).values(key=key, value=value)
    stmt = stmt.on_conflict_do_update(
        index_elements=["key"],
        set_={"value": value, "updated": utcnow()},
    )
    await db.execute(stmt)


async def donations_closed(db: AsyncSession) -> bool:
    """Whether an administrator has closed donations."""
    value = await get_setting(db, DONATIONS_CLOSED_KEY)
    return bool(value and value.get("closed") is True)


async def get_organization_letterhead(db: AsyncSession) -> OrganizationLetterhead:
    """
    Organization details printed on receipts.

    Starts from environment defaults and applies any stored overrides.
    """
    letterhead = OrganizationLetterhead(
        name=settings.ORG_NAME,
        legal_name=settings.ORG_LEGAL_NAME,
        tagline=settings.ORG_TAGLINE,
        registration_number=settings.ORG_REGISTRATION_NUMBER,
        tax_exemption_ref=settings.ORG_TAX_EXEMPTION_REF,
        address=list(settings.ORG_ADDRESS),
        phone=settings.ORG_PHONE,
        email=settings.ORG_EMAIL,
        website=settings.ORG_WEBSITE,
    )

    overrides = await get_setting(db, ORGANIZATION_CONFIG_KEY)
    if overrides:
        known = {k: v for k, v in overrides.items() if k in OrganizationLetterhead.model_fields}
        letterhead = letterhead.model_copy(update=known)

    return letterhead
