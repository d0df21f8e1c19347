"""Site-Generate stage: render the demo site bundle from enrichment results."""

import logging

from ..event_log import append_event, latest_payload
from ..events import LeadEnrichedPayload, SiteGeneratedPayload
from ..ledger import advance_from, get_lead_or_raise, require_status
from ..models import EventType, LeadStatus, session_scope
from ..providers import SiteContext
from ..queue import LeadJob, QueueName
from .base import StageContext, StageResult, stage_logger


logger = logging.getLogger(__name__)

DEFAULT_BUSINESS_NAME = "Local Contractor"


async def run_site(ctx: StageContext, job: LeadJob) -> StageResult:
    """Generate a lead's site bundle and queue image assignment.

    Raises:
        LeadNotFoundError: If the lead does not exist.
        StatusPreconditionError: If the lead is not ENRICHED.
        ProviderError: If the site builder fails.
    """
    async with session_scope(ctx.session_factory) as session:
        lead = await get_lead_or_raise(session, job.lead_id)
        log = stage_logger(logger, QueueName.SITE, lead.campaign_id, lead.id)
        if lead.do_not_contact:
            log.info("skipped site generation (doNotContact=true)")
            return StageResult.skipped("do_not_contact")
        require_status(lead, "site", [LeadStatus.ENRICHED])

        enriched = await latest_payload(session, lead.id, EventType.LEAD_ENRICHED)
        if not isinstance(enriched, LeadEnrichedPayload):
            enriched = LeadEnrichedPayload()

        context = SiteContext(
            lead_id=lead.id,
            business_name=lead.business_name or DEFAULT_BUSINESS_NAME,
            city=lead.campaign.city,
            niche=lead.campaign.niche,
            services=list(enriched.service_keywords),
            phone=lead.phone,
            email=lead.email,
            summary=enriched.summary,
            brand_colors=list(enriched.brand_colors),
        )

    bundle = await ctx.providers.site_builder.generate_site(context)

    async with session_scope(ctx.session_factory) as session:
        lead = await get_lead_or_raise(session, job.lead_id, for_update=True)
        advanced = advance_from(lead, LeadStatus.ENRICHED, LeadStatus.SITE_GENERATED)
        if advanced:
            lead.last_error = None
            await append_event(
                session,
                lead.campaign_id,
                EventType.SITE_GENERATED,
                SiteGeneratedPayload(
                    artifact_location=bundle.artifact_location,
                    summary=bundle.summary,
                ),
                lead_id=lead.id,
            )
        current_status = lead.status.value

    if not advanced:
        log.info("lead moved to %s during site generation; not queueing images", current_status)
        return StageResult.skipped("status_changed", status=current_status)

    await ctx.queues.enqueue_image(job.lead_id)
    log.info("site generated at %s", bundle.artifact_location)
    return StageResult.done(artifact_location=bundle.artifact_location)
