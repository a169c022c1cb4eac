"""
Project model.

Projects are owned by the CMS; the donation service only reads the
donation configuration and increments the raised amount.
"""
from typing import Optional
from sqlalchemy import String, Text, Boolean, Integer
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel


class Project(BaseModel):
    """Fundraising project that donations can be attributed to."""
    __tablename__ = "projects"

    slug: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Donation configuration
    donation_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    donation_goal: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # minor units
    # Only ever changed through an atomic increment
    donation_raised: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # minor units
    gateway_category_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<Project {self.slug}>"
