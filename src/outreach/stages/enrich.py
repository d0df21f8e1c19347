"""Enrich stage: best-effort website crawl that always hands off to site generation."""

import logging
from typing import Optional

from ..event_log import append_event
from ..events import LeadEnrichedPayload
from ..ledger import advance_from, get_lead_or_raise, require_status
from ..models import EventType, LeadStatus, session_scope
from ..providers import EnrichmentResult
from ..providers.enrichment import NO_HTML_ERROR, is_mock_website
from ..queue import LeadJob, QueueName
from .base import StageContext, StageResult, format_failure, stage_logger


logger = logging.getLogger(__name__)


def choose_crawl_target(website_url: Optional[str], placeholder_url: str) -> tuple[str, bool]:
    """Pick the site to crawl.

    Leads without a website, or with a mock ``example.com`` one, are crawled
    against the placeholder site so the demo still gets real-looking content.

    Returns:
        Tuple of (url to crawl, whether the placeholder was used).
    """
    if not website_url or is_mock_website(website_url):
        return placeholder_url, True
    return website_url, False


def enrichment_error(
    result: EnrichmentResult, placeholder_used: bool, crawled_url: str
) -> Optional[str]:
    """The ``last_error`` a lead carries after enrichment, or None."""
    if not result.pages_visited:
        return result.error or NO_HTML_ERROR
    if placeholder_used:
        return f"placeholder crawl used ({crawled_url})"
    return None


async def run_enrich(ctx: StageContext, job: LeadJob) -> StageResult:
    """Enrich a scraped lead and queue site generation.

    Extraction failures never fail the job: the lead is still marked
    ENRICHED, with ``last_error`` describing what went wrong.

    Raises:
        LeadNotFoundError: If the lead does not exist.
        StatusPreconditionError: If the lead is not SCRAPED.
    """
    async with session_scope(ctx.session_factory) as session:
        lead = await get_lead_or_raise(session, job.lead_id)
        log = stage_logger(logger, QueueName.ENRICH, lead.campaign_id, lead.id)
        if lead.do_not_contact:
            log.info("skipped enrichment (doNotContact=true)")
            return StageResult.skipped("do_not_contact")
        require_status(lead, "enrich", [LeadStatus.SCRAPED])
        website_url = lead.website_url

    crawl_url, placeholder_used = choose_crawl_target(
        website_url, ctx.config.PLACEHOLDER_WEBSITE_URL
    )

    try:
        result = await ctx.providers.enrichment.fetch_and_extract(crawl_url)
        crawl_failure = None
    except Exception as e:
        crawl_failure = format_failure(e)
        result = EnrichmentResult(crawled_from_url=crawl_url, error=crawl_failure)

    async with session_scope(ctx.session_factory) as session:
        lead = await get_lead_or_raise(session, job.lead_id, for_update=True)
        advanced = advance_from(lead, LeadStatus.SCRAPED, LeadStatus.ENRICHED)
        current_status = lead.status.value
        if advanced:
            if crawl_failure is None:
                # Extracted contact details only fill gaps left by the listing
                lead.phone = lead.phone or result.phone
                lead.email = lead.email or result.email
                lead.last_error = enrichment_error(result, placeholder_used, crawl_url)
            else:
                lead.last_error = crawl_failure

            await append_event(
                session,
                lead.campaign_id,
                EventType.LEAD_ENRICHED,
                LeadEnrichedPayload(
                    phone=lead.phone,
                    email=lead.email,
                    service_keywords=result.service_keywords,
                    claims=result.claims,
                    brand_colors=result.brand_colors,
                    summary=result.summary,
                    placeholder_used=placeholder_used,
                    crawled_from_url=crawl_url,
                    pages_visited=result.pages_visited,
                    error=crawl_failure or result.error,
                ),
                lead_id=lead.id,
            )
        last_error = lead.last_error

    if not advanced:
        log.info("lead moved to %s during enrichment; not queueing site", current_status)
        return StageResult.skipped("status_changed", status=current_status)

    await ctx.queues.enqueue_site(job.lead_id)

    if crawl_failure is not None:
        log.warning("enrichment fallback path used (%s)", crawl_failure)
    else:
        log.info(
            "enriched; pages=%d, services=%d, source=%s",
            len(result.pages_visited),
            len(result.service_keywords),
            crawl_url,
        )
    return StageResult.done(
        pages=len(result.pages_visited),
        placeholder_used=placeholder_used,
        last_error=last_error,
    )
