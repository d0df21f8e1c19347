"""Deploy stage: publish the bundle, after which the lead has a public demo URL."""

import asyncio
import logging

from ..event_log import append_event, latest_payload
from ..events import DeployedPayload, SiteGeneratedPayload
from ..exceptions import MissingArtifactError
from ..ledger import advance_from, get_lead_or_raise, require_status
from ..models import EventType, LeadStatus, session_scope
from ..providers import inject_image_urls
from ..queue import LeadJob, QueueName
from .base import StageContext, StageResult, stage_logger


logger = logging.getLogger(__name__)


async def run_deploy(ctx: StageContext, job: LeadJob) -> StageResult:
    """Deploy a lead's site and queue the first outreach email.

    Raises:
        LeadNotFoundError: If the lead does not exist.
        StatusPreconditionError: If the lead is not IMAGES_READY.
        MissingArtifactError: If no SITE_GENERATED bundle was recorded.
        ProviderError: If the deploy provider fails.
    """
    async with session_scope(ctx.session_factory) as session:
        lead = await get_lead_or_raise(session, job.lead_id)
        log = stage_logger(logger, QueueName.DEPLOY, lead.campaign_id, lead.id)
        if lead.do_not_contact:
            log.info("skipped deploy (doNotContact=true)")
            return StageResult.skipped("do_not_contact")
        require_status(lead, "deploy", [LeadStatus.IMAGES_READY])

        site = await latest_payload(session, lead.id, EventType.SITE_GENERATED)
        if not isinstance(site, SiteGeneratedPayload) or not site.artifact_location:
            raise MissingArtifactError(f"Missing site artifact for lead {lead.id}")
        hero_image_url = lead.hero_image_url
        service_image_urls = list(lead.service_image_urls or [])

    loop = asyncio.get_event_loop()
    ready_bundle = await loop.run_in_executor(
        None,
        inject_image_urls,
        site.artifact_location,
        hero_image_url,
        service_image_urls,
    )
    deployment = await ctx.providers.deploy.deploy(ready_bundle, job.lead_id)

    async with session_scope(ctx.session_factory) as session:
        lead = await get_lead_or_raise(session, job.lead_id, for_update=True)
        advanced = advance_from(lead, LeadStatus.IMAGES_READY, LeadStatus.DEPLOYED)
        if advanced:
            lead.demo_url = deployment.url
            lead.last_error = None
            await append_event(
                session,
                lead.campaign_id,
                EventType.DEPLOYED,
                DeployedPayload(url=deployment.url),
                lead_id=lead.id,
            )
        current_status = lead.status.value

    if not advanced:
        log.info("lead moved to %s during deploy; not queueing email", current_status)
        return StageResult.skipped("status_changed", status=current_status)

    await ctx.queues.enqueue_email(job.lead_id, step=1)
    log.info("deployed to %s", deployment.url)
    return StageResult.done(url=deployment.url)
