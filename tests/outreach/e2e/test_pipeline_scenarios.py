"""E2E tests driving campaigns through the whole pipeline.

Jobs are processed with ``drain`` against the in-memory broker; delayed
follow-ups are reached by promoting them instead of waiting.
"""

import httpx
import pytest

from outreach.campaigns import (
    CampaignCommand,
    ManualLeadCommand,
    campaign_metrics,
    create_campaign,
    create_manual_lead_campaign,
    list_campaign_leads,
    list_lead_events,
)
from outreach.event_log import count_events, latest_payload
from outreach.ledger import get_lead_or_raise
from outreach.models import EventType, LeadStatus, session_scope
from outreach.providers.enrichment import NO_HTML_ERROR, WebsiteEnrichmentFetcher
from outreach.queue import QueueName, drain
from outreach.stages import build_stage_bindings
from outreach.webhooks import CallWebhookBody, ingest_call_result


pytestmark = pytest.mark.e2e


async def start_manual_lead(session_factory, ctx, **overrides):
    """Start a manual-one campaign whose lead has contact details on file."""
    values = dict(
        niche="roofers",
        city="Denver",
        business_name="Acme Roofing",
        website_url="https://acme-roofing.com",
    )
    values.update(overrides)
    started = await create_manual_lead_campaign(
        session_factory, ctx.queues, ManualLeadCommand(**values)
    )
    async with session_scope(session_factory) as session:
        lead = await get_lead_or_raise(session, started.lead_id)
        lead.phone = "+1-555-0101"
        lead.email = "owner@acme-roofing.com"
    return started


async def event_types(session_factory, lead_id: str) -> list[str]:
    return [event["type"] for event in await list_lead_events(session_factory, lead_id)]


# ============================================================================
# Scenario: batch scrape
# ============================================================================

class TestBatchCampaign:
    """A batch campaign fans out into unique leads and reaches outreach."""

    @pytest.mark.asyncio
    async def test_scrape_produces_unique_leads(self, ctx, broker, session_factory):
        started = await create_campaign(
            session_factory, ctx.queues, CampaignCommand(niche="roofers", city="Dallas", limit=5)
        )

        await drain(broker, build_stage_bindings(ctx, (QueueName.SCRAPE,)))

        leads = await list_campaign_leads(session_factory, started.campaign_id)
        assert len(leads) == 5
        assert len({lead["websiteUrl"] for lead in leads}) == 5
        assert {lead["status"] for lead in leads} == {"SCRAPED"}
        assert len(await broker.pending_jobs(QueueName.ENRICH)) == 5

    @pytest.mark.asyncio
    async def test_every_lead_reaches_first_email(self, ctx, broker, bindings, session_factory, tmp_path):
        started = await create_campaign(
            session_factory, ctx.queues, CampaignCommand(niche="roofers", city="Dallas", limit=5)
        )

        report = await drain(broker, bindings)

        assert report.failed == 0
        leads = await list_campaign_leads(session_factory, started.campaign_id)
        assert {lead["status"] for lead in leads} == {"EMAILED_1"}
        for lead in leads:
            assert lead["demoUrl"] == f"http://localhost:3000/demo/{lead['id']}"
            assert (tmp_path / "demo" / lead["id"] / "index.html").exists()

        # Follow-up calls wait for the call delay
        assert (await broker.counts(QueueName.CALL)).delayed == 5
        assert len(ctx.image_cache) == 1

        metrics = await campaign_metrics(session_factory, started.campaign_id)
        assert metrics.status_lines == (
            "Found 5 roofers in Dallas",
            "5 live · 5 emailed · 0 called",
            "0 interested · 0 booked",
        )


# ============================================================================
# Scenario: enrichment failure
# ============================================================================

class TestEnrichmentFailure:
    @pytest.mark.asyncio
    async def test_unreachable_site_still_gets_a_demo(self, ctx, broker, session_factory, fetch_lead):
        """A site that serves no HTML is enriched with an error and moves on."""
        ctx.providers.enrichment = WebsiteEnrichmentFetcher(
            transport=httpx.MockTransport(lambda request: httpx.Response(500))
        )
        started = await start_manual_lead(session_factory, ctx)

        await drain(broker, build_stage_bindings(ctx, (QueueName.ENRICH,)))

        lead = await fetch_lead(started.lead_id)
        assert lead.status == LeadStatus.ENRICHED
        assert lead.last_error == NO_HTML_ERROR
        async with session_scope(session_factory) as session:
            enriched = await latest_payload(session, lead.id, EventType.LEAD_ENRICHED)
        assert enriched.service_keywords == []
        assert enriched.claims == []
        assert [job.data for job in await broker.pending_jobs(QueueName.SITE)] == [
            {"lead_id": lead.id}
        ]


# ============================================================================
# Scenario: outreach sequence
# ============================================================================

class TestOutreachSequence:
    """Email 1 → call 1 → email 2 → call 2, each exactly once."""

    @pytest.mark.asyncio
    async def test_first_email_schedules_delayed_call(
        self, ctx, broker, clock, bindings, session_factory, fetch_lead
    ):
        started = await start_manual_lead(session_factory, ctx)

        await drain(broker, bindings)

        lead = await fetch_lead(started.lead_id)
        assert lead.status == LeadStatus.EMAILED_1
        assert lead.email_sent_count == 1
        calls = await broker.pending_jobs(QueueName.CALL)
        assert [job.data for job in calls] == [{"lead_id": lead.id, "attempt": 1}]
        assert calls[0].available_at - calls[0].created_at == 1800

        # Nothing is called before the delay passes
        await drain(broker, bindings)
        assert ctx.providers.calls.placed == []

        clock.advance(1800)
        await drain(broker, bindings)
        assert (await fetch_lead(lead.id)).call_attempts == 1

    @pytest.mark.asyncio
    async def test_redelivered_email_counts_once(
        self, ctx, broker, bindings, session_factory, fetch_lead
    ):
        started = await start_manual_lead(session_factory, ctx)
        await drain(broker, bindings)

        await ctx.queues.enqueue_email(started.lead_id, step=1)
        await drain(broker, bindings)

        assert (await fetch_lead(started.lead_id)).email_sent_count == 1
        assert len(ctx.providers.email.sent) == 1
        async with session_scope(session_factory) as session:
            assert await count_events(session, started.lead_id, EventType.EMAIL_SENT) == 1

    @pytest.mark.asyncio
    async def test_full_sequence_then_cap(self, ctx, broker, bindings, session_factory, fetch_lead):
        started = await start_manual_lead(session_factory, ctx)

        await drain(broker, bindings, include_delayed=True)

        lead = await fetch_lead(started.lead_id)
        assert lead.status == LeadStatus.CALLED_1
        assert lead.email_sent_count == 2
        assert lead.call_attempts == 2
        assert await event_types(session_factory, lead.id) == [
            "LEAD_SCRAPED",
            "LEAD_ENRICHED",
            "SITE_GENERATED",
            "IMAGES_READY",
            "DEPLOYED",
            "EMAIL_SENT",
            "CALL_PLACED",
            "EMAIL_SENT",
            "CALL_PLACED",
        ]

        # A late redelivery of the last call is capped
        await ctx.queues.enqueue_call(lead.id, attempt=2)
        await drain(broker, bindings)

        assert (await fetch_lead(lead.id)).call_attempts == 2
        assert len(ctx.providers.calls.placed) == 2
        async with session_scope(session_factory) as session:
            assert await count_events(session, lead.id, EventType.CALL_PLACED) == 2


# ============================================================================
# Scenario: opt-out
# ============================================================================

class TestOptOut:
    @pytest.mark.asyncio
    async def test_opt_out_stops_further_contact(
        self, ctx, broker, bindings, session_factory, fetch_lead
    ):
        """An opt-out arriving between email and call suppresses the call."""
        started = await start_manual_lead(session_factory, ctx)
        await drain(broker, bindings)

        outcome = await ingest_call_result(
            session_factory,
            "simulated",
            CallWebhookBody(
                lead_id=started.lead_id,
                call_id="sim-call-earlier",
                status="completed",
                transcript="Please remove me from your list",
            ),
        )
        assert outcome.opt_out_applied is True

        await drain(broker, bindings, include_delayed=True)

        lead = await fetch_lead(started.lead_id)
        assert lead.do_not_contact is True
        assert lead.status == LeadStatus.DO_NOT_CONTACT
        assert lead.call_attempts == 0
        assert ctx.providers.calls.placed == []
        types = await event_types(session_factory, lead.id)
        assert "CALL_PLACED" not in types
        assert types[-1] == "CALL_RESULT"
