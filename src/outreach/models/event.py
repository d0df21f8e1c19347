"""Event SQLAlchemy model: the append-only fact log for campaigns and leads."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, utcnow


class EventType(str, Enum):
    """Closed set of event types recorded by the pipeline."""

    CAMPAIGN_CREATED = "CAMPAIGN_CREATED"
    LEAD_SCRAPED = "LEAD_SCRAPED"
    SCRAPE_COMPLETED = "SCRAPE_COMPLETED"
    LEAD_ENRICHED = "LEAD_ENRICHED"
    SITE_GENERATED = "SITE_GENERATED"
    IMAGES_READY = "IMAGES_READY"
    DEPLOYED = "DEPLOYED"
    EMAIL_SENT = "EMAIL_SENT"
    CALL_PLACED = "CALL_PLACED"
    CALL_RESULT = "CALL_RESULT"
    LEAD_REPLIED = "LEAD_REPLIED"
    LEAD_BOOKED = "LEAD_BOOKED"
    ERROR = "ERROR"


class Event(Base):
    """Immutable fact about a campaign or lead.

    Rows are only ever inserted. The autoincrement id gives a total append
    order, which is what "latest event of a type" is resolved against.

    Attributes:
        id: Monotonic event sequence number.
        campaign_id: Owning campaign.
        lead_id: Lead the fact is about, if any. Nulled if the lead is deleted.
        type: Event type.
        event_metadata: Typed payload for ``type`` (stored in column ``metadata``).
        created_at: Timestamp when the event was recorded.
    """

    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_lead_type", "lead_id", "type"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True
    )

    campaign_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    lead_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("leads.id", ondelete="SET NULL"),
        nullable=True
    )

    type: Mapped[EventType] = mapped_column(
        SQLEnum(EventType, name="event_type"),
        nullable=False
    )

    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow
    )

    def __repr__(self) -> str:
        """Return string representation of the event."""
        return (
            f"<Event(id={self.id!r}, type={self.type.value!r}, "
            f"lead_id={self.lead_id!r})>"
        )

    def to_dict(self) -> dict:
        """Convert event to dictionary representation."""
        return {
            "id": self.id,
            "campaignId": self.campaign_id,
            "leadId": self.lead_id,
            "type": self.type.value,
            "metadata": dict(self.event_metadata or {}),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
