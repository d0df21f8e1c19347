"""Email stage: send outreach email ``step`` once, then schedule the follow-up call."""

import logging
from typing import Any

from ..event_log import append_event
from ..events import EmailSentPayload
from ..exceptions import PipelineError
from ..idempotency import email_key, run_idempotent_stage
from ..ledger import advance_status, get_lead_or_raise, require_status
from ..models import EventType, LeadStatus, session_scope
from ..providers import EmailMessage
from ..queue import EmailJob, QueueName
from .base import StageContext, StageResult, stage_logger


logger = logging.getLogger(__name__)

DEFAULT_GREETING_NAME = "there"
MISSING_EMAIL_ERROR = "missing email address; outreach email skipped"

# Statuses each step may be sent from
STEP_PRECONDITIONS = {
    1: (LeadStatus.DEPLOYED,),
    2: (LeadStatus.EMAILED_1, LeadStatus.CALLED_1),
}


def build_subject(business_name: str, step: int) -> str:
    if step == 1:
        return f"Built this for {business_name}"
    return "Quick follow-up: website preview"


def build_body(business_name: str, demo_url: str, step: int) -> tuple[str, str]:
    """Return the (html, text) body for an outreach step."""
    if step == 1:
        html = (
            f"<p>Hi {business_name},</p>"
            "<p>I built a quick website preview for your business:</p>"
            f'<p><a href="{demo_url}">{demo_url}</a></p>'
            "<p>If useful, I can customize it further.</p>"
        )
        text = (
            f"Hi {business_name},\n\n"
            "I built a quick website preview for your business:\n"
            f"{demo_url}\n\n"
            "If useful, I can customize it further."
        )
        return html, text

    html = (
        f"<p>Quick follow-up for {business_name}.</p>"
        "<p>Your website preview is still live here:</p>"
        f'<p><a href="{demo_url}">{demo_url}</a></p>'
    )
    text = (
        f"Quick follow-up for {business_name}.\n\n"
        "Your website preview is still live here:\n"
        f"{demo_url}"
    )
    return html, text


def build_outreach_email(
    to: str,
    business_name: str,
    demo_url: str,
    step: int,
    campaign_id: str,
    lead_id: str,
) -> EmailMessage:
    """Assemble the message for an outreach step, tagged with tracking headers."""
    html, text = build_body(business_name, demo_url, step)
    return EmailMessage(
        to=to,
        subject=build_subject(business_name, step),
        html=html,
        text=text,
        headers={
            "x-campaign-id": campaign_id,
            "x-lead-id": lead_id,
            "x-email-step": str(step),
        },
    )


async def run_email(ctx: StageContext, job: EmailJob) -> StageResult:
    """Send outreach email ``job.step`` to a lead.

    Opted-out leads, leads without an email address and steps that were
    already sent are skipped. The send itself runs behind the idempotency
    key ``email:{leadId}:step:{step}``, so a redelivered job never emails
    twice.

    Raises:
        LeadNotFoundError: If the lead does not exist.
        StatusPreconditionError: If the lead is not ready for this step.
        PipelineError: If a deployed lead has no demo URL.
        ProviderError: If the email provider fails.
    """
    step = job.step

    async with session_scope(ctx.session_factory) as session:
        lead = await get_lead_or_raise(session, job.lead_id)
        campaign_id = lead.campaign_id
        log = stage_logger(logger, QueueName.EMAIL, campaign_id, lead.id)

        if lead.do_not_contact:
            log.info("skipped email (doNotContact=true)")
            return StageResult.skipped("do_not_contact")
        if not lead.email:
            lead.last_error = MISSING_EMAIL_ERROR
            log.info("skipped email (missing email)")
            return StageResult.skipped("missing_email")
        if lead.email_sent_count >= step:
            log.info("step %d already sent; skipping duplicate", step)
            return StageResult.skipped("already_sent")

        require_status(lead, f"email step {step}", STEP_PRECONDITIONS[step])
        if not lead.demo_url:
            raise PipelineError(f"Lead {lead.id} missing demoUrl; cannot email")

        message = build_outreach_email(
            to=lead.email,
            business_name=lead.business_name or DEFAULT_GREETING_NAME,
            demo_url=lead.demo_url,
            step=step,
            campaign_id=campaign_id,
            lead_id=lead.id,
        )

    async def send() -> dict[str, Any]:
        receipt = await ctx.providers.email.send_email(message)
        return {"providerMessageId": receipt.message_id, "subject": message.subject}

    outcome = await run_idempotent_stage(
        ctx.idempotency,
        email_key(job.lead_id, step),
        "email",
        campaign_id,
        job.lead_id,
        send,
        log=log,
    )
    if outcome.in_flight:
        log.info("idempotency skip for step %d", step)
        return StageResult.skipped("in_flight")
    if not outcome.executed:
        log.warning("step %d was sent but never recorded; recording cached send", step)

    async with session_scope(ctx.session_factory) as session:
        lead = await get_lead_or_raise(session, job.lead_id, for_update=True)
        if lead.email_sent_count >= step:
            log.info("step %d recorded by a concurrent delivery", step)
            return StageResult.skipped("already_sent")
        lead.email_sent_count += 1
        lead.last_error = None
        advance_status(lead, LeadStatus.EMAILED_1)
        await append_event(
            session,
            campaign_id,
            EventType.EMAIL_SENT,
            EmailSentPayload(
                step=step,
                provider_message_id=outcome.result["providerMessageId"],
                subject=outcome.result["subject"],
            ),
            lead_id=lead.id,
        )
        opted_out = lead.do_not_contact

    if opted_out:
        log.info("lead opted out while step %d was sending; no follow-up call", step)
        return StageResult.done(step=step, provider_message_id=outcome.result["providerMessageId"])

    delay = ctx.config.CALL_DELAY_SECONDS
    await ctx.queues.enqueue_call(job.lead_id, attempt=step, delay_seconds=delay)
    log.info("email step %d sent; follow-up call queued (+%ds)", step, int(delay))
    return StageResult.done(step=step, provider_message_id=outcome.result["providerMessageId"])
