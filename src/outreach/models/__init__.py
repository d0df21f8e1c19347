"""Outreach pipeline database models.

This module contains the SQLAlchemy models backing the Lead Ledger, the
Event Log, the Idempotency Store and webhook deduplication.
"""

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp used for model defaults."""
    return datetime.now(timezone.utc)


# Import models to register them with Base metadata
from .campaign import Campaign, CampaignStatus
from .lead import Lead, LeadStatus
from .event import Event, EventType
from .idempotency import IdempotencyKey
from .webhook_event import WebhookEvent

# Import database utilities
from .database import (
    DatabaseManager,
    session_scope,
    create_test_engine,
    create_all_tables,
)

__all__ = [
    # Base class
    "Base",
    "utcnow",
    # Models
    "Campaign",
    "CampaignStatus",
    "Lead",
    "LeadStatus",
    "Event",
    "EventType",
    "IdempotencyKey",
    "WebhookEvent",
    # Database utilities
    "DatabaseManager",
    "session_scope",
    "create_test_engine",
    "create_all_tables",
]
