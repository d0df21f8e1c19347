"""IdempotencyKey SQLAlchemy model: claims and results of side-effecting units."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, utcnow


class IdempotencyKey(Base):
    """Record of one side-effecting unit of work.

    A row without ``result`` is a claim (in flight, or orphaned by a crash).
    A row with ``result`` means the unit completed; ``result`` holds
    ``{"value": <stage result>}``.

    Attributes:
        key: Stage-specific composite key, e.g. ``email:{leadId}:step:1``.
        stage: Stage name that owns the key.
        campaign_id: Campaign the unit belongs to.
        lead_id: Lead the unit belongs to. Nulled if the lead is deleted.
        result: Result envelope, or None while claimed.
    """

    __tablename__ = "idempotency_keys"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    stage: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

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

    result: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON(none_as_null=True),
        nullable=True,
        comment="{'value': ...} once the unit completed; NULL while claimed"
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

    @property
    def is_completed(self) -> bool:
        """True when the unit finished and its result was committed."""
        return isinstance(self.result, dict) and "value" in self.result

    def __repr__(self) -> str:
        """Return string representation of the key."""
        state = "completed" if self.is_completed else "claimed"
        return f"<IdempotencyKey(key={self.key!r}, stage={self.stage!r}, {state})>"

    def to_dict(self) -> dict:
        """Convert key to dictionary representation."""
        return {
            "key": self.key,
            "stage": self.stage,
            "campaignId": self.campaign_id,
            "leadId": self.lead_id,
            "result": self.result,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
