"""Campaign SQLAlchemy model: one outreach request for a niche in a city."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import String, Integer, DateTime, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base, utcnow


class CampaignStatus(str, Enum):
    """Status of an outreach campaign. Transitions forward only."""

    CREATED = "CREATED"
    RUNNING = "RUNNING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


class Campaign(Base):
    """SQLAlchemy model representing an outreach campaign.

    A campaign owns its leads and events; deleting a campaign cascades to
    both at the database level.

    Attributes:
        id: Unique identifier for the campaign (UUID).
        niche: Free-text business category (e.g. "roofers").
        city: Target city.
        limit: Maximum number of leads to scrape.
        status: Current campaign status.
        created_at: Timestamp when campaign was created.
        updated_at: Timestamp when campaign was last updated.
    """

    __tablename__ = "campaigns"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    niche: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str] = mapped_column(String(255), nullable=False)
    limit: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Maximum number of leads to scrape"
    )

    status: Mapped[CampaignStatus] = mapped_column(
        SQLEnum(CampaignStatus, name="campaign_status"),
        nullable=False,
        default=CampaignStatus.CREATED,
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow
    )

    leads: Mapped[list["Lead"]] = relationship(
        "Lead",
        back_populates="campaign",
        passive_deletes=True,
        lazy="raise"
    )

    def __repr__(self) -> str:
        """Return string representation of the campaign."""
        return (
            f"<Campaign(id={self.id!r}, niche={self.niche!r}, "
            f"city={self.city!r}, status={self.status.value!r})>"
        )

    def to_dict(self) -> dict:
        """Convert campaign to dictionary representation.

        Returns:
            Dictionary with all campaign fields.
        """
        return {
            "id": self.id,
            "niche": self.niche,
            "city": self.city,
            "limit": self.limit,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
