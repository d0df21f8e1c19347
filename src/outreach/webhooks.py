"""Call-result webhook ingestion and opt-out detection.

A provider reports how a call went. The result is recorded as a CALL_RESULT
event and, when the transcript asks us to stop, the lead is opted out. The
opt-out is applied unconditionally and is safe to race with in-flight
stages: email and call stages check ``do_not_contact`` on entry.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .event_log import append_event
from .events import CallResultPayload
from .exceptions import InvalidRequestError
from .ledger import get_lead_or_raise, mark_do_not_contact
from .models import EventType, WebhookEvent, session_scope


logger = logging.getLogger(__name__)

OPT_OUT_PHRASES = (
    "do not call",
    "don't call",
    "stop calling",
    "remove me",
    "opt out",
    "unsubscribe",
)


def has_opt_out_intent(transcript: Optional[str]) -> bool:
    """Case-insensitive substring match of the opt-out phrases."""
    if not transcript:
        return False
    text = transcript.lower()
    return any(phrase in text for phrase in OPT_OUT_PHRASES)


class CallWebhookBody(BaseModel):
    """Body of ``POST /webhooks/calls/{provider}``.

    Accepts the camelCase JSON fields and, for form-encoded Twilio status
    callbacks, ``CallSid``, ``CallStatus`` and ``SpeechResult``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    lead_id: Optional[str] = None
    campaign_id: Optional[str] = None
    call_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("callId", "call_id", "CallSid")
    )
    status: str = Field(validation_alias=AliasChoices("status", "CallStatus"))
    transcript: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("transcript", "SpeechResult")
    )


@dataclass
class WebhookOutcome:
    """Response of the webhook ingestor.

    Attributes:
        provider: Provider path segment the callback came in on.
        opt_out_applied: Whether the callback opted a lead out.
        duplicate: True when the callback was a redelivery of one already
            processed; no new event was written.
    """

    provider: str
    opt_out_applied: bool
    duplicate: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "provider": self.provider,
            "optOutApplied": self.opt_out_applied,
        }


async def _find_processed(
    session: AsyncSession,
    provider: str,
    call_id: str,
    status: str,
) -> Optional[WebhookEvent]:
    result = await session.execute(
        select(WebhookEvent).where(
            WebhookEvent.provider == provider,
            WebhookEvent.external_id == call_id,
            WebhookEvent.event_type == status,
        )
    )
    return result.scalar_one_or_none()


async def _apply_call_result(
    session: AsyncSession,
    provider: str,
    body: CallWebhookBody,
) -> WebhookOutcome:
    lead_id = body.lead_id
    campaign_id = body.campaign_id

    lead = None
    if lead_id:
        lead = await get_lead_or_raise(session, lead_id, for_update=True)
        campaign_id = lead.campaign_id

    if not campaign_id:
        raise InvalidRequestError("campaignId is required when leadId is not provided")

    if body.call_id:
        processed = await _find_processed(session, provider, body.call_id, body.status)
        if processed is not None:
            logger.info(
                "Duplicate %s callback for call %s (%s), ignoring",
                provider,
                body.call_id,
                body.status,
            )
            return WebhookOutcome(
                provider=provider,
                opt_out_applied=bool(processed.payload.get("optOutApplied")),
                duplicate=True,
            )

    opt_out = has_opt_out_intent(body.transcript)
    await append_event(
        session,
        campaign_id,
        EventType.CALL_RESULT,
        CallResultPayload(
            provider=provider,
            call_id=body.call_id,
            status=body.status,
            transcript=body.transcript or None,
            opt_out=opt_out,
        ),
        lead_id=lead.id if lead is not None else None,
    )

    opt_out_applied = lead is not None and opt_out
    if opt_out_applied:
        mark_do_not_contact(lead)
        logger.info("Lead %s opted out via %s call result", lead.id, provider)

    if body.call_id:
        session.add(
            WebhookEvent(
                provider=provider,
                external_id=body.call_id,
                event_type=body.status,
                payload={
                    **body.model_dump(by_alias=True),
                    "optOutApplied": opt_out_applied,
                },
            )
        )
        await session.flush()

    return WebhookOutcome(provider=provider, opt_out_applied=opt_out_applied)


async def ingest_call_result(
    session_factory: async_sessionmaker[AsyncSession],
    provider: str,
    body: CallWebhookBody,
) -> WebhookOutcome:
    """Record a call result and apply any opt-out it carries.

    Args:
        session_factory: Session factory for the ledger.
        provider: Provider path segment (e.g. "twilio").
        body: Parsed callback body.

    Returns:
        WebhookOutcome for the HTTP response.

    Raises:
        InvalidRequestError: If neither leadId nor campaignId is given.
        LeadNotFoundError: If leadId is given but unknown.
    """
    try:
        async with session_scope(session_factory) as session:
            return await _apply_call_result(session, provider, body)
    except IntegrityError:
        # A concurrent delivery of the same callback committed first
        async with session_scope(session_factory) as session:
            processed = await _find_processed(session, provider, body.call_id, body.status)
            if processed is None:
                raise
            return WebhookOutcome(
                provider=provider,
                opt_out_applied=bool(processed.payload.get("optOutApplied")),
                duplicate=True,
            )
