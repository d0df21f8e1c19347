"""Lead SQLAlchemy model: one targeted business and its pipeline state."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base, utcnow


class LeadStatus(str, Enum):
    """Status of a lead in the pipeline, in forward order.

    DO_NOT_CONTACT is absorbing and reachable from any status.
    """

    NEW = "NEW"
    SCRAPED = "SCRAPED"
    ENRICHED = "ENRICHED"
    SITE_GENERATED = "SITE_GENERATED"
    IMAGES_READY = "IMAGES_READY"
    DEPLOYED = "DEPLOYED"
    EMAILED_1 = "EMAILED_1"
    CALLED_1 = "CALLED_1"
    REPLIED = "REPLIED"
    BOOKED = "BOOKED"
    DO_NOT_CONTACT = "DO_NOT_CONTACT"


class Lead(Base):
    """SQLAlchemy model representing a targeted local business.

    The ledger row is the single source of truth for which stage a lead is
    in. Contact fields are filled progressively by Scrape and Enrich.

    Attributes:
        id: Unique identifier for the lead (UUID).
        campaign_id: Owning campaign.
        business_name: Business display name.
        website_url: Business website; unique per campaign when set.
        phone: Contact phone number.
        email: Contact email address.
        address: Street address or city.
        source_url: Where the listing was found.
        demo_url: Public URL of the deployed demo site.
        hero_image_url: Hero image assigned to the demo site.
        service_image_urls: Service images assigned to the demo site.
        status: Current pipeline status.
        do_not_contact: Sticky opt-out flag.
        email_sent_count: Number of outreach emails sent.
        call_attempts: Number of outreach calls placed.
        interested: Set by reply handling.
        booked: Set by reply handling.
        last_error: Last diagnostic message recorded by a stage.
    """

    __tablename__ = "leads"
    __table_args__ = (
        UniqueConstraint(
            "campaign_id", "website_url", name="uq_leads_campaign_website"
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    campaign_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    business_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    website_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    demo_url: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Set at deploy; the lead is externally visible once present"
    )
    hero_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    service_image_urls: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list
    )

    status: Mapped[LeadStatus] = mapped_column(
        SQLEnum(LeadStatus, name="lead_status"),
        nullable=False,
        default=LeadStatus.NEW,
        index=True
    )

    do_not_contact: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Sticky opt-out; suppresses email and call stages"
    )
    email_sent_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    call_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    interested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    booked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

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

    campaign: Mapped["Campaign"] = relationship(
        "Campaign",
        back_populates="leads",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        """Return string representation of the lead."""
        return (
            f"<Lead(id={self.id!r}, business_name={self.business_name!r}, "
            f"status={self.status.value!r})>"
        )

    def to_dict(self) -> dict:
        """Convert lead to dictionary representation.

        Returns:
            Dictionary with all lead fields, camel-cased for API output.
        """
        return {
            "id": self.id,
            "campaignId": self.campaign_id,
            "businessName": self.business_name,
            "websiteUrl": self.website_url,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "sourceUrl": self.source_url,
            "demoUrl": self.demo_url,
            "heroImageUrl": self.hero_image_url,
            "serviceImageUrls": list(self.service_image_urls or []),
            "status": self.status.value,
            "doNotContact": self.do_not_contact,
            "emailSentCount": self.email_sent_count,
            "callAttempts": self.call_attempts,
            "interested": self.interested,
            "booked": self.booked,
            "lastError": self.last_error,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
