"""
App Setting model - key/value settings store.
"""
from typing import Optional
from sqlalchemy import String, JSON
from sqlalchemy.orm import Mapped, mapped_column
from app.models.base import BaseModel


class AppSetting(BaseModel):
    """
    Site-wide settings persisted as JSON values.

    Keys used by the donation service:
    - gateway_general_fund_category: cached gateway category code
    - donations_closed: {"closed": bool}
    - organization_config: letterhead overrides for receipts
    """
    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    value: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<AppSetting {self.key}>"
