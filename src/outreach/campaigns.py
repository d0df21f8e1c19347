"""Campaign commands and read models.

Commands create campaigns (batch, one manual lead, or one searched lead) and
start the pipeline by enqueueing the first stage after the transaction
commits. Queries aggregate the ledger for the dashboard. ``resume_lead`` is
the manual recovery path for a lead whose next job was lost.
"""

import logging
from dataclasses import dataclass
from functools import partial
from typing import Annotated, Any, Optional
from urllib.parse import urlparse

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .event_log import append_event, list_events
from .events import CampaignCreatedPayload, LeadOutcomePayload, LeadScrapedPayload
from .exceptions import ConflictError, NoListingFoundError
from .ledger import (
    LIVE_SITE_STATUSES,
    advance_status,
    get_campaign_or_raise,
    get_lead_or_raise,
    upsert_lead,
)
from .models import Campaign, CampaignStatus, Event, EventType, Lead, LeadStatus, session_scope
from .providers import ListingsProvider
from .queue import Job, PipelineQueues, QueueName


logger = logging.getLogger(__name__)

MAX_CAMPAIGN_LIMIT = 1000
MAX_EMAIL_STEPS = 2
MAX_CALL_ATTEMPTS = 2


def _check_http_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("must be an http(s) URL")
    return value


HttpUrlStr = Annotated[str, AfterValidator(_check_http_url)]


class CommandModel(BaseModel):
    """Base for API command bodies (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )


class CampaignCommand(CommandModel):
    niche: str = Field(min_length=2)
    city: str = Field(min_length=2)
    limit: int = Field(ge=1, le=MAX_CAMPAIGN_LIMIT)
    sheet_data_url: Optional[HttpUrlStr] = None


class SearchOneCommand(CommandModel):
    niche: str = Field(min_length=2)
    city: str = Field(min_length=2)
    sheet_data_url: Optional[HttpUrlStr] = None


class ManualLeadCommand(CommandModel):
    niche: str = Field(min_length=2)
    city: str = Field(min_length=2)
    business_name: str = Field(min_length=2)
    website_url: HttpUrlStr
    sheet_data_url: Optional[HttpUrlStr] = None


class LeadOutcomeCommand(CommandModel):
    outcome: str = Field(pattern="^(replied|booked)$")
    source: Optional[str] = None
    note: Optional[str] = None


@dataclass
class CampaignStarted:
    """Result of a campaign command.

    Attributes:
        campaign_id: New campaign id.
        lead_id: The single lead of a one-lead campaign.
        business_name: Business name of that lead.
        website_url: Website of that lead.
        message: Human-readable status for the API response.
    """

    campaign_id: str
    message: str
    lead_id: Optional[str] = None
    business_name: Optional[str] = None
    website_url: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"campaignId": self.campaign_id, "message": self.message}
        if self.lead_id is not None:
            data.update(
                {
                    "leadId": self.lead_id,
                    "businessName": self.business_name,
                    "websiteUrl": self.website_url,
                }
            )
        return data


@dataclass
class CampaignMetrics:
    """Lead counts for one campaign, plus the three dashboard lines."""

    campaign_id: str
    niche: str
    city: str
    leads_total: int
    live_sites: int
    emailed: int
    called: int
    interested: int
    booked: int
    do_not_contact: int

    @property
    def status_lines(self) -> tuple[str, str, str]:
        return (
            f"Found {self.leads_total} {self.niche} in {self.city}",
            f"{self.live_sites} live · {self.emailed} emailed · {self.called} called",
            f"{self.interested} interested · {self.booked} booked",
        )

    def to_dict(self) -> dict[str, Any]:
        line1, line2, line3 = self.status_lines
        return {
            "leadsTotal": self.leads_total,
            "liveSites": self.live_sites,
            "emailed": self.emailed,
            "called": self.called,
            "interested": self.interested,
            "booked": self.booked,
            "doNotContact": self.do_not_contact,
            "line1": line1,
            "line2": line2,
            "line3": line3,
        }


async def create_campaign(
    session_factory: async_sessionmaker[AsyncSession],
    queues: PipelineQueues,
    command: CampaignCommand,
) -> CampaignStarted:
    """Create a batch campaign and queue its scrape job.

    The campaign and its CAMPAIGN_CREATED event commit together; the scrape
    job is enqueued only after the commit.
    """
    async with session_scope(session_factory) as session:
        campaign = Campaign(
            niche=command.niche,
            city=command.city,
            limit=command.limit,
            status=CampaignStatus.CREATED,
        )
        session.add(campaign)
        await session.flush()
        await append_event(
            session,
            campaign.id,
            EventType.CAMPAIGN_CREATED,
            CampaignCreatedPayload(
                niche=command.niche,
                city=command.city,
                limit=command.limit,
                mode="batch",
                sheet_data_url=command.sheet_data_url,
            ),
        )
        campaign_id = campaign.id

    await queues.enqueue_scrape(campaign_id)
    logger.info(
        "Campaign %s created: %s in %s (limit=%d)",
        campaign_id,
        command.niche,
        command.city,
        command.limit,
    )
    return CampaignStarted(campaign_id=campaign_id, message="Pipeline running...")


async def _create_one_lead_campaign(
    session_factory: async_sessionmaker[AsyncSession],
    queues: PipelineQueues,
    niche: str,
    city: str,
    business_name: str,
    website_url: str,
    source_url: str,
    mode: str,
    sheet_data_url: Optional[str],
) -> tuple[str, str]:
    async with session_scope(session_factory) as session:
        campaign = Campaign(niche=niche, city=city, limit=1, status=CampaignStatus.RUNNING)
        session.add(campaign)
        await session.flush()
        await append_event(
            session,
            campaign.id,
            EventType.CAMPAIGN_CREATED,
            CampaignCreatedPayload(
                niche=niche,
                city=city,
                limit=1,
                mode=mode,
                sheet_data_url=sheet_data_url,
            ),
        )
        lead, _ = await upsert_lead(
            session,
            campaign.id,
            business_name=business_name,
            website_url=website_url,
            source_url=source_url,
        )
        await append_event(
            session,
            campaign.id,
            EventType.LEAD_SCRAPED,
            LeadScrapedPayload(website_url=website_url, source_url=source_url, mode=mode),
            lead_id=lead.id,
        )
        campaign_id, lead_id = campaign.id, lead.id

    await queues.enqueue_enrich(lead_id)
    logger.info("Campaign %s (%s) started with lead %s", campaign_id, mode, lead_id)
    return campaign_id, lead_id


async def create_manual_lead_campaign(
    session_factory: async_sessionmaker[AsyncSession],
    queues: PipelineQueues,
    command: ManualLeadCommand,
) -> CampaignStarted:
    """Create a one-lead campaign for a business the operator supplied."""
    campaign_id, lead_id = await _create_one_lead_campaign(
        session_factory,
        queues,
        niche=command.niche,
        city=command.city,
        business_name=command.business_name,
        website_url=command.website_url,
        source_url=command.website_url,
        mode="manual-one",
        sheet_data_url=command.sheet_data_url,
    )
    return CampaignStarted(
        campaign_id=campaign_id,
        message="Manual lead added and pipeline started",
        lead_id=lead_id,
        business_name=command.business_name,
        website_url=command.website_url,
    )


async def search_one_lead_campaign(
    session_factory: async_sessionmaker[AsyncSession],
    queues: PipelineQueues,
    listings: ListingsProvider,
    command: SearchOneCommand,
) -> CampaignStarted:
    """Find one business with a website and start a campaign for it.

    Raises:
        NoListingFoundError: If the listings provider returns no business
            with a website.
        ProviderError: If the listings provider fails.
    """
    found = await listings.scrape_listings(command.niche, command.city, 1)
    candidate = next((listing for listing in found if listing.website_url), None)
    if candidate is None:
        raise NoListingFoundError(command.niche, command.city)

    campaign_id, lead_id = await _create_one_lead_campaign(
        session_factory,
        queues,
        niche=command.niche,
        city=command.city,
        business_name=candidate.business_name,
        website_url=candidate.website_url,
        source_url=candidate.source_url or candidate.website_url,
        mode="search-one",
        sheet_data_url=command.sheet_data_url,
    )
    return CampaignStarted(
        campaign_id=campaign_id,
        message="Lead found and pipeline started",
        lead_id=lead_id,
        business_name=candidate.business_name,
        website_url=candidate.website_url,
    )


async def _count_leads(session: AsyncSession, campaign_id: str, *conditions) -> int:
    result = await session.execute(
        select(func.count()).select_from(Lead).where(Lead.campaign_id == campaign_id, *conditions)
    )
    return int(result.scalar_one())


async def campaign_metrics(
    session_factory: async_sessionmaker[AsyncSession],
    campaign_id: str,
) -> CampaignMetrics:
    """Aggregate lead counts for a campaign.

    Raises:
        CampaignNotFoundError: If the campaign does not exist.
    """
    async with session_scope(session_factory) as session:
        campaign = await get_campaign_or_raise(session, campaign_id)
        return CampaignMetrics(
            campaign_id=campaign.id,
            niche=campaign.niche,
            city=campaign.city,
            leads_total=await _count_leads(session, campaign_id),
            live_sites=await _count_leads(
                session, campaign_id, Lead.status.in_(LIVE_SITE_STATUSES)
            ),
            emailed=await _count_leads(session, campaign_id, Lead.email_sent_count > 0),
            called=await _count_leads(session, campaign_id, Lead.call_attempts > 0),
            interested=await _count_leads(session, campaign_id, Lead.interested.is_(True)),
            booked=await _count_leads(session, campaign_id, Lead.booked.is_(True)),
            do_not_contact=await _count_leads(
                session, campaign_id, Lead.do_not_contact.is_(True)
            ),
        )


async def list_campaign_leads(
    session_factory: async_sessionmaker[AsyncSession],
    campaign_id: str,
) -> list[dict[str, Any]]:
    """Return a campaign's leads, newest first.

    Raises:
        CampaignNotFoundError: If the campaign does not exist.
    """
    async with session_scope(session_factory) as session:
        await get_campaign_or_raise(session, campaign_id)
        result = await session.execute(
            select(Lead)
            .where(Lead.campaign_id == campaign_id)
            .order_by(Lead.created_at.desc(), Lead.id.desc())
        )
        return [lead.to_dict() for lead in result.scalars().all()]


async def list_lead_events(
    session_factory: async_sessionmaker[AsyncSession],
    lead_id: str,
) -> list[dict[str, Any]]:
    """Return a lead's events in append order.

    Raises:
        LeadNotFoundError: If the lead does not exist.
    """
    async with session_scope(session_factory) as session:
        await get_lead_or_raise(session, lead_id)
        events: list[Event] = await list_events(session, lead_id=lead_id)
        return [event.to_dict() for event in events]


async def resume_lead(
    session_factory: async_sessionmaker[AsyncSession],
    queues: PipelineQueues,
    lead_id: str,
) -> Job:
    """Re-enqueue the stage a lead is waiting for.

    Only stalled leads are resumed: if the stage's queue already holds a
    waiting, delayed or running job for the lead, a second one would fail
    its status precondition once the first completes, so it is refused.

    Returns:
        The enqueued job.

    Raises:
        LeadNotFoundError: If the lead does not exist.
        ConflictError: If the lead is opted out, converted, has nothing
            left to do, or already has a job in flight.
    """
    async with session_scope(session_factory) as session:
        lead = await get_lead_or_raise(session, lead_id)
        status = lead.status
        do_not_contact = lead.do_not_contact
        email_sent_count = lead.email_sent_count
        call_attempts = lead.call_attempts

    if do_not_contact or status == LeadStatus.DO_NOT_CONTACT:
        raise ConflictError(f"Lead {lead_id} is opted out")

    if status == LeadStatus.SCRAPED:
        queue, enqueue = QueueName.ENRICH, partial(queues.enqueue_enrich, lead_id)
    elif status == LeadStatus.ENRICHED:
        queue, enqueue = QueueName.SITE, partial(queues.enqueue_site, lead_id)
    elif status == LeadStatus.SITE_GENERATED:
        queue, enqueue = QueueName.IMAGE, partial(queues.enqueue_image, lead_id)
    elif status == LeadStatus.IMAGES_READY:
        queue, enqueue = QueueName.DEPLOY, partial(queues.enqueue_deploy, lead_id)
    elif status == LeadStatus.DEPLOYED:
        queue, enqueue = QueueName.EMAIL, partial(queues.enqueue_email, lead_id, step=1)
    elif status == LeadStatus.EMAILED_1 and call_attempts < email_sent_count:
        queue, enqueue = QueueName.CALL, partial(
            queues.enqueue_call, lead_id, attempt=call_attempts + 1
        )
    elif status in (LeadStatus.EMAILED_1, LeadStatus.CALLED_1) and email_sent_count < MAX_EMAIL_STEPS:
        queue, enqueue = QueueName.EMAIL, partial(
            queues.enqueue_email, lead_id, step=email_sent_count + 1
        )
    elif status in (LeadStatus.EMAILED_1, LeadStatus.CALLED_1) and call_attempts < MAX_CALL_ATTEMPTS:
        queue, enqueue = QueueName.CALL, partial(
            queues.enqueue_call, lead_id, attempt=call_attempts + 1
        )
    else:
        raise ConflictError(f"Lead {lead_id} has nothing to resume (status={status.value})")

    in_flight = await queues.find_lead_job(queue, lead_id)
    if in_flight is not None:
        raise ConflictError(
            f"Lead {lead_id} already has {queue.value} job {in_flight.id} in flight"
        )

    job = await enqueue()
    logger.info("Resumed lead %s at %s (job %s)", lead_id, job.queue, job.id)
    return job


async def mark_lead_outcome(
    session_factory: async_sessionmaker[AsyncSession],
    lead_id: str,
    command: LeadOutcomeCommand,
) -> dict[str, Any]:
    """Record that a lead replied or booked.

    Raises:
        LeadNotFoundError: If the lead does not exist.
        ConflictError: If the lead is opted out.
    """
    booked = command.outcome == "booked"
    async with session_scope(session_factory) as session:
        lead = await get_lead_or_raise(session, lead_id, for_update=True)
        if lead.do_not_contact:
            raise ConflictError(f"Lead {lead_id} is opted out")

        lead.interested = True
        if booked:
            lead.booked = True
        advance_status(lead, LeadStatus.BOOKED if booked else LeadStatus.REPLIED)
        await append_event(
            session,
            lead.campaign_id,
            EventType.LEAD_BOOKED if booked else EventType.LEAD_REPLIED,
            LeadOutcomePayload(source=command.source, note=command.note),
            lead_id=lead.id,
        )
        logger.info("Lead %s marked %s", lead_id, command.outcome)
        return lead.to_dict()
