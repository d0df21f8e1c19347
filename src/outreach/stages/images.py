"""Image-Assign stage: pick a lead's hero and service images from the niche pool."""

import logging

from ..event_log import append_event
from ..events import ImagesReadyPayload
from ..ledger import advance_from, get_lead_or_raise, require_status
from ..models import EventType, LeadStatus, session_scope
from ..providers import pick_lead_images
from ..queue import LeadJob, QueueName
from .base import StageContext, StageResult, stage_logger


logger = logging.getLogger(__name__)


async def run_images(ctx: StageContext, job: LeadJob) -> StageResult:
    """Assign pooled images to a lead and queue deployment.

    The pool for (niche, style) is generated on first use and cached; every
    lead of the niche then draws from it deterministically.

    Raises:
        LeadNotFoundError: If the lead does not exist.
        StatusPreconditionError: If the lead is not SITE_GENERATED.
        ProviderError: If the image provider fails while filling the pool.
    """
    style = ctx.config.IMAGE_STYLE

    async with session_scope(ctx.session_factory) as session:
        lead = await get_lead_or_raise(session, job.lead_id)
        log = stage_logger(logger, QueueName.IMAGE, lead.campaign_id, lead.id)
        if lead.do_not_contact:
            log.info("skipped image assignment (doNotContact=true)")
            return StageResult.skipped("do_not_contact")
        require_status(lead, "image", [LeadStatus.SITE_GENERATED])
        niche = lead.campaign.niche

    pool = await ctx.image_cache.get_or_create(niche, style)
    images = pick_lead_images(job.lead_id, pool)

    async with session_scope(ctx.session_factory) as session:
        lead = await get_lead_or_raise(session, job.lead_id, for_update=True)
        advanced = advance_from(lead, LeadStatus.SITE_GENERATED, LeadStatus.IMAGES_READY)
        if advanced:
            lead.hero_image_url = images.hero_image_url
            lead.service_image_urls = list(images.service_image_urls)
            lead.last_error = None
            await append_event(
                session,
                lead.campaign_id,
                EventType.IMAGES_READY,
                ImagesReadyPayload(
                    style=style,
                    hero_image_url=images.hero_image_url,
                    service_image_urls_count=len(images.service_image_urls),
                ),
                lead_id=lead.id,
            )
        current_status = lead.status.value

    if not advanced:
        log.info("lead moved to %s during image assignment; not queueing deploy", current_status)
        return StageResult.skipped("status_changed", status=current_status)

    await ctx.queues.enqueue_deploy(job.lead_id)
    log.info("images assigned from pool %s/%s", niche, style)
    return StageResult.done(
        hero_image_url=images.hero_image_url,
        service_image_urls=list(images.service_image_urls),
    )
