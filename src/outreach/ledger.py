"""Lead Ledger: durable current state of campaigns and leads.

The ledger answers "what stage is this lead in". All status writes go
through ``advance_status`` or ``advance_from`` so a lead never moves
backwards along the pipeline and never leaves DO_NOT_CONTACT once it gets
there.

Functions take the caller's ``AsyncSession`` and never commit; the stage
handler owns the transaction.
"""

import logging
import uuid
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from .exceptions import CampaignNotFoundError, LeadNotFoundError, StatusPreconditionError
from .models import Campaign, CampaignStatus, Lead, LeadStatus


logger = logging.getLogger(__name__)


# Forward order of the lead state machine (DO_NOT_CONTACT is handled apart)
STATUS_ORDER: tuple[LeadStatus, ...] = (
    LeadStatus.NEW,
    LeadStatus.SCRAPED,
    LeadStatus.ENRICHED,
    LeadStatus.SITE_GENERATED,
    LeadStatus.IMAGES_READY,
    LeadStatus.DEPLOYED,
    LeadStatus.EMAILED_1,
    LeadStatus.CALLED_1,
    LeadStatus.REPLIED,
    LeadStatus.BOOKED,
)

_STATUS_RANK = {status: rank for rank, status in enumerate(STATUS_ORDER)}

# Statuses at which the lead has a live demo site
LIVE_SITE_STATUSES: tuple[LeadStatus, ...] = (
    LeadStatus.DEPLOYED,
    LeadStatus.EMAILED_1,
    LeadStatus.CALLED_1,
    LeadStatus.REPLIED,
    LeadStatus.BOOKED,
    LeadStatus.DO_NOT_CONTACT,
)

_CAMPAIGN_RANK = {
    CampaignStatus.CREATED: 0,
    CampaignStatus.RUNNING: 1,
    CampaignStatus.COMPLETE: 2,
    CampaignStatus.FAILED: 2,
}


def status_rank(status: LeadStatus) -> int:
    """Position of ``status`` in the forward order.

    DO_NOT_CONTACT ranks after every other status.
    """
    if status == LeadStatus.DO_NOT_CONTACT:
        return len(STATUS_ORDER)
    return _STATUS_RANK[status]


def is_forward_transition(current: LeadStatus, target: LeadStatus) -> bool:
    """Whether moving from ``current`` to ``target`` keeps status monotonic."""
    if current == LeadStatus.DO_NOT_CONTACT:
        return target == LeadStatus.DO_NOT_CONTACT
    if target == LeadStatus.DO_NOT_CONTACT:
        return True
    return status_rank(target) >= status_rank(current)


def advance_status(lead: Lead, target: LeadStatus) -> bool:
    """Move a lead to ``target`` if that is not a regression.

    Args:
        lead: Lead to update (in the caller's session).
        target: Desired status.

    Returns:
        True if the lead is now at ``target``, False if the write was refused.
    """
    current = lead.status or LeadStatus.NEW
    if not is_forward_transition(current, target):
        logger.info(
            "Refusing status regression for lead %s: %s -> %s",
            lead.id,
            current.value,
            target.value,
        )
        return False
    lead.status = target
    return True


def advance_from(lead: Lead, predecessor: LeadStatus, target: LeadStatus) -> bool:
    """Move a lead from exactly ``predecessor`` to ``target``.

    Build stages re-check under the row lock with this: when two deliveries
    of the same job both pass the entry precondition, only the first one to
    commit advances the lead. The second sees ``target`` and must neither
    record an event nor queue the next stage.

    Returns:
        True if this call moved the lead.
    """
    if lead.status != predecessor:
        logger.info(
            "Lead %s is %s, not %s; leaving it for %s",
            lead.id,
            lead.status.value if lead.status else None,
            predecessor.value,
            target.value,
        )
        return False
    lead.status = target
    return True


def require_status(lead: Lead, stage: str, allowed: Iterable[LeadStatus]) -> None:
    """Fail loudly if a lead is not in one of the ``allowed`` statuses.

    Raises:
        StatusPreconditionError: If ``lead.status`` is not allowed.
    """
    allowed = tuple(allowed)
    if lead.status not in allowed:
        raise StatusPreconditionError(lead.id, stage, allowed, lead.status)


def advance_campaign_status(campaign: Campaign, target: CampaignStatus) -> bool:
    """Move a campaign forward. COMPLETE and FAILED are both terminal.

    Returns:
        True if the campaign is now at ``target``.
    """
    current = campaign.status or CampaignStatus.CREATED
    if current == target:
        return True
    if _CAMPAIGN_RANK[target] <= _CAMPAIGN_RANK[current]:
        logger.info(
            "Refusing campaign status change %s -> %s for %s",
            current.value,
            target.value,
            campaign.id,
        )
        return False
    campaign.status = target
    return True


def mark_do_not_contact(lead: Lead) -> bool:
    """Apply an opt-out. Safe to call repeatedly.

    Returns:
        True if the lead was not opted out before this call.
    """
    newly_applied = not lead.do_not_contact
    lead.do_not_contact = True
    lead.status = LeadStatus.DO_NOT_CONTACT
    return newly_applied


async def get_campaign_or_raise(session: AsyncSession, campaign_id: str) -> Campaign:
    """Load a campaign or raise ``CampaignNotFoundError``."""
    campaign = await session.get(Campaign, campaign_id)
    if campaign is None:
        raise CampaignNotFoundError(campaign_id)
    return campaign


async def get_lead_or_raise(
    session: AsyncSession,
    lead_id: str,
    for_update: bool = False,
) -> Lead:
    """Load a lead or raise ``LeadNotFoundError``.

    Args:
        session: Session to load in.
        lead_id: Lead id.
        for_update: Take a row lock (PostgreSQL) for the rest of the transaction.
    """
    query = select(Lead).where(Lead.id == lead_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    lead = result.scalar_one_or_none()
    if lead is None:
        raise LeadNotFoundError(lead_id)
    return lead


async def find_lead_by_website(
    session: AsyncSession,
    campaign_id: str,
    website_url: str,
) -> Optional[Lead]:
    """Find the lead for ``(campaign_id, website_url)``, if any."""
    result = await session.execute(
        select(Lead).where(
            Lead.campaign_id == campaign_id,
            Lead.website_url == website_url,
        )
    )
    return result.scalar_one_or_none()


def _refresh_contact_fields(lead: Lead, fields: dict) -> None:
    for name, value in fields.items():
        if value is not None:
            setattr(lead, name, value)


async def upsert_lead(
    session: AsyncSession,
    campaign_id: str,
    business_name: Optional[str],
    website_url: Optional[str] = None,
    phone: Optional[str] = None,
    email: Optional[str] = None,
    address: Optional[str] = None,
    source_url: Optional[str] = None,
) -> tuple[Lead, bool]:
    """Create or refresh a lead keyed by ``(campaign_id, website_url)``.

    A re-scrape of a known website refreshes its contact fields and never
    regresses its status. Leads without a website are always created.

    Returns:
        Tuple of (lead, created).
    """
    fields = {
        "business_name": business_name,
        "phone": phone,
        "email": email,
        "address": address,
        "source_url": source_url,
    }

    if website_url:
        existing = await find_lead_by_website(session, campaign_id, website_url)
        if existing is not None:
            _refresh_contact_fields(existing, fields)
            if existing.status == LeadStatus.NEW:
                advance_status(existing, LeadStatus.SCRAPED)
            if existing.status == LeadStatus.SCRAPED:
                existing.last_error = None
            return existing, False
    else:
        lead = Lead(
            campaign_id=campaign_id,
            website_url=None,
            status=LeadStatus.SCRAPED,
            service_image_urls=[],
            **fields,
        )
        session.add(lead)
        await session.flush()
        return lead, True

    lead_id = str(uuid.uuid4())
    stmt = (
        _dialect_insert(session)(Lead)
        .values(
            id=lead_id,
            campaign_id=campaign_id,
            website_url=website_url,
            status=LeadStatus.SCRAPED,
            service_image_urls=[],
            do_not_contact=False,
            email_sent_count=0,
            call_attempts=0,
            interested=False,
            booked=False,
            **fields,
        )
        .on_conflict_do_nothing(index_elements=["campaign_id", "website_url"])
        .returning(Lead.id)
    )
    inserted_id = (await session.execute(stmt)).scalar_one_or_none()

    if inserted_id is not None:
        return await get_lead_or_raise(session, lead_id), True

    # Another worker inserted the same website concurrently
    existing = await find_lead_by_website(session, campaign_id, website_url)
    if existing is None:
        raise LeadNotFoundError(lead_id)
    _refresh_contact_fields(existing, fields)
    return existing, False


def _dialect_insert(session: AsyncSession):
    """Return the dialect ``insert`` construct that supports ON CONFLICT."""
    if session.get_bind().dialect.name == "postgresql":
        return postgresql_insert
    return sqlite_insert
