"""Unit tests for typed event payloads and the append-only event log."""

import pytest
from pydantic import ValidationError

from outreach.event_log import (
    append_event,
    count_events,
    latest_event,
    latest_payload,
    list_events,
)
from outreach.events import (
    EVENT_PAYLOADS,
    CallPlacedPayload,
    CampaignCreatedPayload,
    EmailSentPayload,
    LeadEnrichedPayload,
    build_event_payload,
    check_payload,
    parse_event_payload,
)
from outreach.models import EventType, session_scope


# ============================================================================
# Payload models
# ============================================================================

@pytest.mark.unit
class TestPayloads:
    """Tests for payload validation and camelCase metadata."""

    def test_every_event_type_has_a_payload(self):
        assert set(EVENT_PAYLOADS) == set(EventType)

    def test_metadata_uses_camel_case(self):
        payload = LeadEnrichedPayload(
            service_keywords=["roof repair"],
            brand_colors=["#0f766e"],
            placeholder_used=True,
        )
        metadata = payload.to_metadata()

        assert metadata["serviceKeywords"] == ["roof repair"]
        assert metadata["brandColors"] == ["#0f766e"]
        assert metadata["placeholderUsed"] is True
        assert "service_keywords" not in metadata

    def test_parse_round_trips_stored_metadata(self):
        stored = CallPlacedPayload(
            attempt=1, call_id="sim-call-1", callback_url="http://h/webhooks/calls/simulated"
        ).to_metadata()

        parsed = parse_event_payload(EventType.CALL_PLACED, stored)

        assert isinstance(parsed, CallPlacedPayload)
        assert parsed.call_id == "sim-call-1"

    def test_parse_rejects_wrong_shape(self):
        with pytest.raises(ValidationError):
            parse_event_payload(EventType.EMAIL_SENT, {"subject": "hi"})

    def test_build_event_payload_accepts_snake_case(self):
        payload = build_event_payload(
            EventType.EMAIL_SENT, step=1, provider_message_id="m1", subject="Hi"
        )

        assert isinstance(payload, EmailSentPayload)
        assert payload.provider_message_id == "m1"

    def test_check_payload_rejects_mismatch(self):
        """Test a payload cannot be written under another event type."""
        payload = CampaignCreatedPayload(niche="roofers", city="Denver", limit=3)

        with pytest.raises(TypeError, match="LEAD_SCRAPED events take LeadScrapedPayload"):
            check_payload(EventType.LEAD_SCRAPED, payload)

    def test_payloads_are_frozen(self):
        payload = CampaignCreatedPayload(niche="roofers", city="Denver", limit=3)

        with pytest.raises(ValidationError):
            payload.niche = "plumbers"


# ============================================================================
# Event log
# ============================================================================

@pytest.mark.unit
class TestEventLog:
    """Tests for appending and reading events."""

    @pytest.mark.asyncio
    async def test_append_assigns_increasing_ids(self, session_factory, make_lead):
        lead = await make_lead()

        async with session_scope(session_factory) as session:
            first = await append_event(
                session,
                lead.campaign_id,
                EventType.EMAIL_SENT,
                EmailSentPayload(step=1, provider_message_id="m1", subject="a"),
                lead_id=lead.id,
            )
            second = await append_event(
                session,
                lead.campaign_id,
                EventType.EMAIL_SENT,
                EmailSentPayload(step=2, provider_message_id="m2", subject="b"),
                lead_id=lead.id,
            )

        assert second.id > first.id
        assert first.event_metadata["providerMessageId"] == "m1"

    @pytest.mark.asyncio
    async def test_append_rejects_mismatched_payload(self, session_factory, make_lead):
        lead = await make_lead()

        async with session_scope(session_factory) as session:
            with pytest.raises(TypeError):
                await append_event(
                    session,
                    lead.campaign_id,
                    EventType.DEPLOYED,
                    EmailSentPayload(step=1, provider_message_id="m1", subject="a"),
                    lead_id=lead.id,
                )

    @pytest.mark.asyncio
    async def test_latest_payload_is_highest_id(self, session_factory, make_lead):
        """Test "latest" is resolved by insert order."""
        lead = await make_lead()

        async with session_scope(session_factory) as session:
            for step, message_id in ((1, "m1"), (2, "m2")):
                await append_event(
                    session,
                    lead.campaign_id,
                    EventType.EMAIL_SENT,
                    EmailSentPayload(step=step, provider_message_id=message_id, subject="s"),
                    lead_id=lead.id,
                )

        async with session_scope(session_factory) as session:
            payload = await latest_payload(session, lead.id, EventType.EMAIL_SENT)
            missing = await latest_payload(session, lead.id, EventType.DEPLOYED)
            event = await latest_event(session, lead.id, EventType.EMAIL_SENT)

        assert isinstance(payload, EmailSentPayload)
        assert payload.provider_message_id == "m2"
        assert missing is None
        assert event.to_dict()["metadata"]["step"] == 2

    @pytest.mark.asyncio
    async def test_list_and_count(self, session_factory, make_lead):
        lead = await make_lead()

        async with session_scope(session_factory) as session:
            await append_event(
                session,
                lead.campaign_id,
                EventType.CAMPAIGN_CREATED,
                CampaignCreatedPayload(niche="roofers", city="Denver", limit=3),
            )
            await append_event(
                session,
                lead.campaign_id,
                EventType.EMAIL_SENT,
                EmailSentPayload(step=1, provider_message_id="m1", subject="s"),
                lead_id=lead.id,
            )

        async with session_scope(session_factory) as session:
            campaign_events = await list_events(session, campaign_id=lead.campaign_id)
            lead_events = await list_events(session, lead_id=lead.id)
            typed = await list_events(
                session,
                campaign_id=lead.campaign_id,
                event_types=[EventType.CAMPAIGN_CREATED],
            )
            sent = await count_events(session, lead.id, EventType.EMAIL_SENT)

        assert [e.type for e in campaign_events] == [
            EventType.CAMPAIGN_CREATED,
            EventType.EMAIL_SENT,
        ]
        assert [e.type for e in lead_events] == [EventType.EMAIL_SENT]
        assert len(typed) == 1
        assert sent == 1
