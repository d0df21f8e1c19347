"""Unit tests for campaign commands, dashboard metrics and lead recovery."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from outreach.campaigns import (
    CampaignCommand,
    CampaignStarted,
    LeadOutcomeCommand,
    ManualLeadCommand,
    SearchOneCommand,
    campaign_metrics,
    create_campaign,
    create_manual_lead_campaign,
    list_campaign_leads,
    list_lead_events,
    mark_lead_outcome,
    resume_lead,
    search_one_lead_campaign,
)
from outreach.event_log import list_events
from outreach.exceptions import (
    CampaignNotFoundError,
    ConflictError,
    LeadNotFoundError,
    NoListingFoundError,
)
from outreach.models import CampaignStatus, EventType, LeadStatus, session_scope
from outreach.providers import Listing, MockListingsProvider
from outreach.queue import QueueName, drain


pytestmark = pytest.mark.unit


# ============================================================================
# Command models
# ============================================================================

class TestCommands:
    """Tests for API command validation."""

    def test_campaign_command_from_camel_case(self):
        command = CampaignCommand.model_validate(
            {
                "niche": "  roofers ",
                "city": "Denver",
                "limit": 5,
                "sheetDataUrl": "https://docs.example.com/sheet",
            }
        )

        assert command.niche == "roofers"
        assert command.sheet_data_url == "https://docs.example.com/sheet"

    @pytest.mark.parametrize(
        "body",
        [
            {"niche": "r", "city": "Denver", "limit": 5},
            {"niche": "roofers", "city": "Denver", "limit": 0},
            {"niche": "roofers", "city": "Denver", "limit": 1001},
            {"niche": "roofers", "city": "Denver", "limit": 5, "sheetDataUrl": "ftp://x"},
            {"niche": "roofers", "limit": 5},
        ],
    )
    def test_campaign_command_rejects(self, body):
        with pytest.raises(ValidationError):
            CampaignCommand.model_validate(body)

    def test_manual_lead_requires_http_url(self):
        with pytest.raises(ValidationError):
            ManualLeadCommand.model_validate(
                {
                    "niche": "roofers",
                    "city": "Denver",
                    "businessName": "Acme Roofing",
                    "websiteUrl": "acme-roofing",
                }
            )

    def test_outcome_command(self):
        assert LeadOutcomeCommand(outcome="booked").outcome == "booked"
        with pytest.raises(ValidationError):
            LeadOutcomeCommand(outcome="ignored")

    def test_started_to_dict(self):
        assert CampaignStarted(campaign_id="c1", message="Pipeline running...").to_dict() == {
            "campaignId": "c1",
            "message": "Pipeline running...",
        }


# ============================================================================
# Campaign creation
# ============================================================================

class TestCreateCampaign:
    @pytest.mark.asyncio
    async def test_creates_and_queues_scrape(self, session_factory, ctx, broker, fetch_campaign):
        command = CampaignCommand(
            niche="roofers",
            city="Dallas",
            limit=5,
            sheet_data_url="https://docs.example.com/sheet",
        )

        started = await create_campaign(session_factory, ctx.queues, command)

        campaign = await fetch_campaign(started.campaign_id)
        assert campaign.status == CampaignStatus.CREATED
        assert campaign.limit == 5
        assert started.message == "Pipeline running..."

        pending = await broker.pending_jobs(QueueName.SCRAPE)
        assert [job.data for job in pending] == [{"campaign_id": started.campaign_id}]

        async with session_scope(session_factory) as session:
            events = await list_events(session, campaign_id=started.campaign_id)
        assert [e.type for e in events] == [EventType.CAMPAIGN_CREATED]
        assert events[0].event_metadata["mode"] == "batch"
        assert events[0].event_metadata["sheetDataUrl"] == "https://docs.example.com/sheet"


class TestOneLeadCampaigns:
    """Tests for manual-one and search-one campaigns."""

    @pytest.mark.asyncio
    async def test_manual_lead(self, session_factory, ctx, broker, fetch_lead, fetch_campaign):
        command = ManualLeadCommand(
            niche="roofers",
            city="Denver",
            business_name="Acme Roofing",
            website_url="https://acme-roofing.com",
        )

        started = await create_manual_lead_campaign(session_factory, ctx.queues, command)

        assert started.to_dict() == {
            "campaignId": started.campaign_id,
            "message": "Manual lead added and pipeline started",
            "leadId": started.lead_id,
            "businessName": "Acme Roofing",
            "websiteUrl": "https://acme-roofing.com",
        }
        lead = await fetch_lead(started.lead_id)
        assert lead.status == LeadStatus.SCRAPED
        assert lead.source_url == "https://acme-roofing.com"
        campaign = await fetch_campaign(started.campaign_id)
        assert campaign.status == CampaignStatus.RUNNING
        assert campaign.limit == 1

        pending = await broker.pending_jobs(QueueName.ENRICH)
        assert [job.data for job in pending] == [{"lead_id": started.lead_id}]

        events = await list_lead_events(session_factory, started.lead_id)
        assert [e["type"] for e in events] == ["LEAD_SCRAPED"]
        assert events[0]["metadata"]["mode"] == "manual-one"

    @pytest.mark.asyncio
    async def test_search_one(self, session_factory, ctx, broker):
        command = SearchOneCommand(niche="roofers", city="Denver")

        started = await search_one_lead_campaign(
            session_factory, ctx.queues, MockListingsProvider(), command
        )

        assert started.message == "Lead found and pipeline started"
        assert started.business_name == "Denver roofers Co 1"
        assert started.website_url == "https://roofers-denver-1.example.com"
        assert len(await broker.pending_jobs(QueueName.ENRICH)) == 1

    @pytest.mark.asyncio
    async def test_search_one_without_website(self, session_factory, ctx, broker):
        listings = MagicMock()
        listings.scrape_listings = AsyncMock(return_value=[Listing(business_name="No Site Co")])

        with pytest.raises(NoListingFoundError, match="roofers in Denver"):
            await search_one_lead_campaign(
                session_factory,
                ctx.queues,
                listings,
                SearchOneCommand(niche="roofers", city="Denver"),
            )

        assert await broker.pending_jobs(QueueName.ENRICH) == []


# ============================================================================
# Read models
# ============================================================================

class TestCampaignMetrics:
    """Tests for the dashboard aggregates."""

    @pytest.mark.asyncio
    async def test_counts(self, session_factory, make_campaign, make_lead):
        campaign = await make_campaign(niche="roofers", city="Denver")

        async def lead(n, **fields):
            return await make_lead(
                campaign_id=campaign.id, website_url=f"https://lead-{n}.test", **fields
            )

        await lead(1, status=LeadStatus.SCRAPED)
        await lead(2, status=LeadStatus.DEPLOYED)
        await lead(3, status=LeadStatus.EMAILED_1, email_sent_count=1)
        await lead(
            4,
            status=LeadStatus.BOOKED,
            email_sent_count=2,
            call_attempts=1,
            interested=True,
            booked=True,
        )
        await lead(
            5,
            status=LeadStatus.DO_NOT_CONTACT,
            do_not_contact=True,
            email_sent_count=1,
            call_attempts=1,
        )

        metrics = await campaign_metrics(session_factory, campaign.id)

        assert metrics.to_dict() == {
            "leadsTotal": 5,
            "liveSites": 4,
            "emailed": 3,
            "called": 2,
            "interested": 1,
            "booked": 1,
            "doNotContact": 1,
            "line1": "Found 5 roofers in Denver",
            "line2": "4 live · 3 emailed · 2 called",
            "line3": "1 interested · 1 booked",
        }

    @pytest.mark.asyncio
    async def test_empty_campaign(self, session_factory, make_campaign):
        campaign = await make_campaign()

        metrics = await campaign_metrics(session_factory, campaign.id)

        assert metrics.leads_total == 0
        assert metrics.status_lines[0] == "Found 0 roofers in Denver"

    @pytest.mark.asyncio
    async def test_unknown_campaign(self, session_factory):
        with pytest.raises(CampaignNotFoundError):
            await campaign_metrics(session_factory, "missing")


class TestListings:
    @pytest.mark.asyncio
    async def test_campaign_leads(self, session_factory, make_campaign, make_lead):
        campaign = await make_campaign()
        first = await make_lead(campaign_id=campaign.id, website_url="https://a.test")
        second = await make_lead(campaign_id=campaign.id, website_url="https://b.test")
        await make_lead()

        leads = await list_campaign_leads(session_factory, campaign.id)

        assert {lead["id"] for lead in leads} == {first.id, second.id}
        assert leads[0]["campaignId"] == campaign.id
        assert leads[0]["serviceImageUrls"] == []

    @pytest.mark.asyncio
    async def test_unknown_campaign_leads(self, session_factory):
        with pytest.raises(CampaignNotFoundError):
            await list_campaign_leads(session_factory, "missing")

    @pytest.mark.asyncio
    async def test_unknown_lead_events(self, session_factory):
        with pytest.raises(LeadNotFoundError):
            await list_lead_events(session_factory, "missing")


# ============================================================================
# Recovery and outcomes
# ============================================================================

class TestResumeLead:
    """Tests for re-enqueueing the stage a lead is waiting for."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,fields,queue,data",
        [
            (LeadStatus.SCRAPED, {}, "enrich", {}),
            (LeadStatus.ENRICHED, {}, "site", {}),
            (LeadStatus.SITE_GENERATED, {}, "image", {}),
            (LeadStatus.IMAGES_READY, {}, "deploy", {}),
            (LeadStatus.DEPLOYED, {}, "email", {"step": 1}),
            (LeadStatus.EMAILED_1, {"email_sent_count": 1}, "call", {"attempt": 1}),
            (
                LeadStatus.CALLED_1,
                {"email_sent_count": 1, "call_attempts": 1},
                "email",
                {"step": 2},
            ),
            (
                LeadStatus.CALLED_1,
                {"email_sent_count": 2, "call_attempts": 1},
                "call",
                {"attempt": 2},
            ),
        ],
    )
    async def test_next_stage(self, session_factory, ctx, make_lead, status, fields, queue, data):
        lead = await make_lead(status=status, **fields)

        job = await resume_lead(session_factory, ctx.queues, lead.id)

        assert job.queue == queue
        assert job.data == {"lead_id": lead.id, **data}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,fields",
        [
            (LeadStatus.CALLED_1, {"email_sent_count": 2, "call_attempts": 2}),
            (LeadStatus.REPLIED, {"email_sent_count": 1}),
            (LeadStatus.DO_NOT_CONTACT, {"do_not_contact": True}),
        ],
    )
    async def test_nothing_to_resume(self, session_factory, ctx, make_lead, status, fields):
        lead = await make_lead(status=status, **fields)

        with pytest.raises(ConflictError):
            await resume_lead(session_factory, ctx.queues, lead.id)

    @pytest.mark.asyncio
    async def test_unknown_lead(self, session_factory, ctx):
        with pytest.raises(LeadNotFoundError):
            await resume_lead(session_factory, ctx.queues, "missing")

    @pytest.mark.asyncio
    async def test_waiting_job_blocks_resume(self, session_factory, ctx, broker, bindings, make_lead):
        """Test a lead whose job is only queued is not given a second one."""
        lead = await make_lead(status=LeadStatus.SCRAPED)
        queued = await ctx.queues.enqueue_enrich(lead.id)

        with pytest.raises(ConflictError, match=f"enrich job {queued.id} in flight"):
            await resume_lead(session_factory, ctx.queues, lead.id)

        report = await drain(broker, bindings)
        assert report.failed == 0
        assert report.retrying == 0
        assert await broker.failed_jobs(QueueName.ENRICH) == []

    @pytest.mark.asyncio
    async def test_delayed_job_blocks_resume(self, session_factory, ctx, make_lead):
        lead = await make_lead(status=LeadStatus.EMAILED_1, email_sent_count=1)
        await ctx.queues.enqueue_call(lead.id, attempt=1, delay_seconds=1800)

        with pytest.raises(ConflictError):
            await resume_lead(session_factory, ctx.queues, lead.id)

    @pytest.mark.asyncio
    async def test_running_job_blocks_resume(self, session_factory, ctx, broker, make_lead):
        lead = await make_lead(status=LeadStatus.ENRICHED)
        await ctx.queues.enqueue_site(lead.id)
        assert (await broker.reserve(QueueName.SITE)).data == {"lead_id": lead.id}

        with pytest.raises(ConflictError):
            await resume_lead(session_factory, ctx.queues, lead.id)

    @pytest.mark.asyncio
    async def test_other_leads_jobs_do_not_block(self, session_factory, ctx, broker, make_lead):
        lead = await make_lead(status=LeadStatus.SCRAPED)
        other = await make_lead(status=LeadStatus.SCRAPED)
        await ctx.queues.enqueue_enrich(other.id)

        job = await resume_lead(session_factory, ctx.queues, lead.id)

        assert [j.id for j in await broker.pending_jobs(QueueName.ENRICH)][-1] == job.id


class TestMarkLeadOutcome:
    @pytest.mark.asyncio
    async def test_replied(self, session_factory, make_lead):
        lead = await make_lead(status=LeadStatus.EMAILED_1, email_sent_count=1)

        result = await mark_lead_outcome(
            session_factory, lead.id, LeadOutcomeCommand(outcome="replied", source="email")
        )

        assert result["status"] == "REPLIED"
        assert result["interested"] is True
        assert result["booked"] is False
        events = await list_lead_events(session_factory, lead.id)
        assert events[-1]["type"] == "LEAD_REPLIED"
        assert events[-1]["metadata"]["source"] == "email"

    @pytest.mark.asyncio
    async def test_booked_is_not_downgraded(self, session_factory, make_lead):
        """Test a reply recorded after a booking keeps the lead BOOKED."""
        lead = await make_lead(status=LeadStatus.CALLED_1)

        await mark_lead_outcome(session_factory, lead.id, LeadOutcomeCommand(outcome="booked"))
        result = await mark_lead_outcome(
            session_factory, lead.id, LeadOutcomeCommand(outcome="replied")
        )

        assert result["status"] == "BOOKED"
        assert result["booked"] is True

    @pytest.mark.asyncio
    async def test_opted_out_lead(self, session_factory, make_lead):
        lead = await make_lead(status=LeadStatus.DO_NOT_CONTACT, do_not_contact=True)

        with pytest.raises(ConflictError):
            await mark_lead_outcome(session_factory, lead.id, LeadOutcomeCommand(outcome="booked"))
