"""Call stage: place follow-up call ``attempt`` once, capped at two attempts."""

import logging
from typing import Any, Optional
from urllib.parse import urlencode

from ..event_log import append_event
from ..events import CallPlacedPayload
from ..idempotency import call_key, run_idempotent_stage
from ..ledger import advance_status, get_lead_or_raise, require_status
from ..models import EventType, LeadStatus, session_scope
from ..providers import CallRequest
from ..queue import CallJob, QueueName
from .base import StageContext, StageResult, stage_logger


logger = logging.getLogger(__name__)

MAX_CALL_ATTEMPTS = 2
MISSING_PHONE_ERROR = "missing phone number; outreach call skipped"
CALLABLE_STATUSES = (LeadStatus.EMAILED_1, LeadStatus.CALLED_1)
CONVERTED_STATUSES = (LeadStatus.REPLIED, LeadStatus.BOOKED)


def build_call_script(business_name: Optional[str], demo_url: Optional[str]) -> str:
    return (
        f"Hi, is this the owner of {business_name or 'your business'}? "
        "I sent a quick website preview earlier. Can I resend the link? "
        f"{demo_url or 'the preview link'}"
    )


def build_callback_url(base_url: str, provider_name: str, lead_id: str, campaign_id: str) -> str:
    """Webhook URL a call provider reports results to.

    Providers such as Twilio post only their own call fields, so the lead and
    campaign ride along in the query string.
    """
    query = urlencode({"leadId": lead_id, "campaignId": campaign_id})
    return f"{base_url.rstrip('/')}/webhooks/calls/{provider_name}?{query}"


async def run_call(ctx: StageContext, job: CallJob) -> StageResult:
    """Place outreach call ``job.attempt`` to a lead.

    Opted-out leads, leads at the attempt cap, attempts already placed,
    leads that already replied and leads without a phone number are
    skipped. The call runs behind the idempotency key
    ``call:{leadId}:attempt:{attempt}``.

    A placed first attempt queues email step 2 after
    ``FOLLOW_UP_EMAIL_DELAY_SECONDS``, and that email queues call attempt 2.
    This second round is an extension of this project: the base sequence is
    one email followed by one call, and anything past call 1 otherwise only
    happens through ``resume_lead``.

    Raises:
        LeadNotFoundError: If the lead does not exist.
        StatusPreconditionError: If no outreach email was sent yet.
        ProviderError: If the call provider fails.
    """
    attempt = job.attempt

    async with session_scope(ctx.session_factory) as session:
        lead = await get_lead_or_raise(session, job.lead_id)
        campaign_id = lead.campaign_id
        log = stage_logger(logger, QueueName.CALL, campaign_id, lead.id)

        if lead.do_not_contact:
            log.info("skipped call (doNotContact=true)")
            return StageResult.skipped("do_not_contact")
        if lead.call_attempts >= MAX_CALL_ATTEMPTS:
            log.info("skipped call (callAttempts >= %d)", MAX_CALL_ATTEMPTS)
            return StageResult.skipped("attempt_cap")
        if lead.call_attempts >= attempt:
            log.info("attempt %d already placed; skipping duplicate", attempt)
            return StageResult.skipped("already_called")
        if lead.status in CONVERTED_STATUSES:
            log.info("skipped call (lead is %s)", lead.status.value)
            return StageResult.skipped("converted")

        require_status(lead, f"call attempt {attempt}", CALLABLE_STATUSES)
        if not lead.phone:
            lead.last_error = MISSING_PHONE_ERROR
            log.info("skipped call (missing phone)")
            return StageResult.skipped("missing_phone")

        request = CallRequest(
            to=lead.phone,
            script=build_call_script(lead.business_name, lead.demo_url),
            callback_url=build_callback_url(
                ctx.config.CALL_WEBHOOK_BASE_URL,
                ctx.providers.calls.name,
                lead.id,
                campaign_id,
            ),
        )

    async def place() -> dict[str, Any]:
        receipt = await ctx.providers.calls.place_call(request)
        return {"callId": receipt.call_id, "callbackUrl": request.callback_url}

    outcome = await run_idempotent_stage(
        ctx.idempotency,
        call_key(job.lead_id, attempt),
        "call",
        campaign_id,
        job.lead_id,
        place,
        log=log,
    )
    if outcome.in_flight:
        log.info("idempotency skip for attempt %d", attempt)
        return StageResult.skipped("in_flight")
    if not outcome.executed:
        log.warning("attempt %d was placed but never recorded; recording cached call", attempt)

    async with session_scope(ctx.session_factory) as session:
        lead = await get_lead_or_raise(session, job.lead_id, for_update=True)
        if lead.call_attempts >= attempt:
            log.info("attempt %d recorded by a concurrent delivery", attempt)
            return StageResult.skipped("already_called")
        lead.call_attempts += 1
        lead.last_error = None
        advance_status(lead, LeadStatus.CALLED_1)
        await append_event(
            session,
            campaign_id,
            EventType.CALL_PLACED,
            CallPlacedPayload(
                attempt=attempt,
                call_id=outcome.result["callId"],
                callback_url=outcome.result["callbackUrl"],
            ),
            lead_id=lead.id,
        )
        schedule_follow_up = attempt == 1 and not lead.do_not_contact

    call_id = outcome.result["callId"]
    if schedule_follow_up:
        delay = ctx.config.FOLLOW_UP_EMAIL_DELAY_SECONDS
        await ctx.queues.enqueue_email(job.lead_id, step=2, delay_seconds=delay)
        log.info("call attempt %d placed (callId=%s); follow-up email queued", attempt, call_id)
    else:
        log.info("call attempt %d placed (callId=%s)", attempt, call_id)
    return StageResult.done(attempt=attempt, call_id=call_id)
