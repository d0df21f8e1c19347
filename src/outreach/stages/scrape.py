"""Scrape stage: one campaign job fans out into many leads."""

import asyncio
import logging

from ..event_log import append_event
from ..events import LeadScrapedPayload, ScrapeCompletedPayload
from ..ledger import advance_campaign_status, get_campaign_or_raise, upsert_lead
from ..models import CampaignStatus, EventType, LeadStatus, session_scope
from ..providers import Listing
from ..queue import QueueName, ScrapeJob
from .base import StageContext, StageResult, stage_logger


logger = logging.getLogger(__name__)


async def _persist_listing(ctx: StageContext, campaign_id: str, listing: Listing) -> tuple[str, bool]:
    """Upsert one listing and record LEAD_SCRAPED.

    Returns:
        Tuple of (lead id, whether the lead still needs enrichment).
    """
    async with session_scope(ctx.session_factory) as session:
        lead, _ = await upsert_lead(
            session,
            campaign_id,
            business_name=listing.business_name,
            website_url=listing.website_url,
            phone=listing.phone,
            email=listing.email,
            address=listing.address,
            source_url=listing.source_url,
        )
        await append_event(
            session,
            campaign_id,
            EventType.LEAD_SCRAPED,
            LeadScrapedPayload(
                website_url=listing.website_url,
                source_url=listing.source_url,
            ),
            lead_id=lead.id,
        )
        return lead.id, lead.status == LeadStatus.SCRAPED


async def run_scrape(ctx: StageContext, job: ScrapeJob) -> StageResult:
    """Scrape listings for a campaign and queue each new lead for enrichment.

    A listing that fails to persist is counted and logged; it does not fail
    the batch. Provider failures propagate so the queue retries the batch.

    Raises:
        CampaignNotFoundError: If the campaign does not exist.
        ProviderError: If the listings provider fails.
    """
    log = stage_logger(logger, QueueName.SCRAPE, job.campaign_id)
    log.info("starting scrape batch")

    async with session_scope(ctx.session_factory) as session:
        campaign = await get_campaign_or_raise(session, job.campaign_id)
        niche, city, limit = campaign.niche, campaign.city, campaign.limit

    listings = await ctx.providers.listings.scrape_listings(niche, city, limit)
    listings = listings[:limit]

    succeeded = 0
    failed = 0
    rate_limit = ctx.config.SCRAPER_RATE_LIMIT_SECONDS

    for listing in listings:
        if rate_limit > 0:
            await asyncio.sleep(rate_limit)

        try:
            lead_id, needs_enrich = await _persist_listing(ctx, job.campaign_id, listing)
        except Exception as e:
            failed += 1
            log.warning("lead failed: %s (%s)", listing.business_name, e)
            continue

        if needs_enrich:
            await ctx.queues.enqueue_enrich(lead_id)
            log.bind(lead_id=lead_id).info("scraped and queued for enrichment")
        else:
            log.bind(lead_id=lead_id).info("refreshed lead already past scrape")
        succeeded += 1

    async with session_scope(ctx.session_factory) as session:
        campaign = await get_campaign_or_raise(session, job.campaign_id)
        target = CampaignStatus.RUNNING if succeeded > 0 else CampaignStatus.COMPLETE
        advance_campaign_status(campaign, target)
        await append_event(
            session,
            job.campaign_id,
            EventType.SCRAPE_COMPLETED,
            ScrapeCompletedPayload(listings=len(listings), succeeded=succeeded, failed=failed),
        )

    log.info("batch completed: %d succeeded, %d failed", succeeded, failed)
    return StageResult.done(listings=len(listings), succeeded=succeeded, failed=failed)
