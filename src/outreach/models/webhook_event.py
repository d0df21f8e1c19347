"""WebhookEvent SQLAlchemy model for deduplicating provider callbacks."""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, utcnow


class WebhookEvent(Base):
    """A processed inbound provider callback.

    ``(provider, external_id, event_type)`` is unique, so a provider
    redelivering the same callback is recognised and not applied twice.

    Attributes:
        id: Unique identifier (UUID).
        provider: Provider path segment, e.g. "twilio" or "fake".
        external_id: Provider-side id (call id).
        event_type: Provider-reported status.
        payload: Raw request body plus the applied outcome.
        processed_at: When the callback was applied.
    """

    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint(
            "provider", "external_id", "event_type", name="uq_webhook_events_dedup"
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<WebhookEvent(provider={self.provider!r}, "
            f"external_id={self.external_id!r}, event_type={self.event_type!r})>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "provider": self.provider,
            "externalId": self.external_id,
            "eventType": self.event_type,
            "payload": self.payload,
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
        }
