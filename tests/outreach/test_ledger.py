"""Unit tests for the lead ledger: status monotonicity, opt-out and upserts."""

import pytest
from sqlalchemy import func, select

from outreach.exceptions import (
    CampaignNotFoundError,
    LeadNotFoundError,
    StatusPreconditionError,
)
from outreach.ledger import (
    STATUS_ORDER,
    advance_campaign_status,
    advance_from,
    advance_status,
    get_campaign_or_raise,
    get_lead_or_raise,
    is_forward_transition,
    mark_do_not_contact,
    require_status,
    status_rank,
    upsert_lead,
)
from outreach.models import Campaign, CampaignStatus, Lead, LeadStatus, session_scope


# ============================================================================
# Status transitions
# ============================================================================

@pytest.mark.unit
class TestStatusOrder:
    """Tests for the forward order of lead statuses."""

    def test_order_is_pipeline_order(self):
        assert STATUS_ORDER[0] == LeadStatus.NEW
        assert STATUS_ORDER[-1] == LeadStatus.BOOKED
        assert LeadStatus.DO_NOT_CONTACT not in STATUS_ORDER

    def test_do_not_contact_ranks_last(self):
        assert status_rank(LeadStatus.DO_NOT_CONTACT) > status_rank(LeadStatus.BOOKED)

    @pytest.mark.parametrize(
        "current,target,expected",
        [
            (LeadStatus.SCRAPED, LeadStatus.ENRICHED, True),
            (LeadStatus.ENRICHED, LeadStatus.ENRICHED, True),
            (LeadStatus.DEPLOYED, LeadStatus.ENRICHED, False),
            (LeadStatus.CALLED_1, LeadStatus.EMAILED_1, False),
            (LeadStatus.SCRAPED, LeadStatus.DO_NOT_CONTACT, True),
            (LeadStatus.DO_NOT_CONTACT, LeadStatus.EMAILED_1, False),
            (LeadStatus.DO_NOT_CONTACT, LeadStatus.DO_NOT_CONTACT, True),
        ],
    )
    def test_is_forward_transition(self, current, target, expected):
        assert is_forward_transition(current, target) is expected


@pytest.mark.unit
class TestAdvanceStatus:
    """Tests for advance_status on in-memory Lead objects."""

    def test_moves_forward(self):
        lead = Lead(id="l1", status=LeadStatus.SCRAPED)

        assert advance_status(lead, LeadStatus.ENRICHED) is True
        assert lead.status == LeadStatus.ENRICHED

    def test_refuses_regression(self):
        """Test a late stage result never moves a lead backwards."""
        lead = Lead(id="l1", status=LeadStatus.CALLED_1)

        assert advance_status(lead, LeadStatus.EMAILED_1) is False
        assert lead.status == LeadStatus.CALLED_1

    def test_do_not_contact_is_absorbing(self):
        lead = Lead(id="l1", status=LeadStatus.DO_NOT_CONTACT)

        assert advance_status(lead, LeadStatus.CALLED_1) is False
        assert lead.status == LeadStatus.DO_NOT_CONTACT

    def test_unset_status_counts_as_new(self):
        lead = Lead(id="l1")

        assert advance_status(lead, LeadStatus.SCRAPED) is True


@pytest.mark.unit
class TestAdvanceFrom:
    """Tests for the exact-predecessor advance used by build stages."""

    def test_moves_from_predecessor(self):
        lead = Lead(id="l1", status=LeadStatus.SCRAPED)

        assert advance_from(lead, LeadStatus.SCRAPED, LeadStatus.ENRICHED) is True
        assert lead.status == LeadStatus.ENRICHED

    def test_already_at_target_is_not_an_advance(self):
        """Test a second delivery that finds its own result does not advance again."""
        lead = Lead(id="l1", status=LeadStatus.ENRICHED)

        assert advance_from(lead, LeadStatus.SCRAPED, LeadStatus.ENRICHED) is False
        assert lead.status == LeadStatus.ENRICHED

    def test_opted_out_lead_stays_put(self):
        lead = Lead(id="l1", status=LeadStatus.DO_NOT_CONTACT)

        assert advance_from(lead, LeadStatus.IMAGES_READY, LeadStatus.DEPLOYED) is False
        assert lead.status == LeadStatus.DO_NOT_CONTACT


@pytest.mark.unit
class TestRequireStatus:
    def test_allowed_status_passes(self):
        require_status(Lead(id="l1", status=LeadStatus.ENRICHED), "site", [LeadStatus.ENRICHED])

    def test_out_of_order_status_raises(self):
        """Test the error names the stage, expectation and actual status."""
        lead = Lead(id="l1", status=LeadStatus.SCRAPED)

        with pytest.raises(StatusPreconditionError) as exc_info:
            require_status(lead, "deploy", [LeadStatus.IMAGES_READY])

        err = exc_info.value
        assert err.expected == ["IMAGES_READY"]
        assert err.actual == "SCRAPED"
        assert "before deploy" in str(err)


@pytest.mark.unit
class TestOptOut:
    def test_mark_do_not_contact(self):
        lead = Lead(id="l1", status=LeadStatus.EMAILED_1, do_not_contact=False)

        assert mark_do_not_contact(lead) is True
        assert lead.do_not_contact is True
        assert lead.status == LeadStatus.DO_NOT_CONTACT

    def test_repeat_opt_out_is_noop(self):
        lead = Lead(id="l1", status=LeadStatus.DO_NOT_CONTACT, do_not_contact=True)

        assert mark_do_not_contact(lead) is False
        assert lead.status == LeadStatus.DO_NOT_CONTACT


@pytest.mark.unit
class TestCampaignStatus:
    def test_forward(self):
        campaign = Campaign(id="c1", status=CampaignStatus.CREATED)

        assert advance_campaign_status(campaign, CampaignStatus.RUNNING) is True
        assert campaign.status == CampaignStatus.RUNNING

    def test_terminal_states_stay_put(self):
        campaign = Campaign(id="c1", status=CampaignStatus.COMPLETE)

        assert advance_campaign_status(campaign, CampaignStatus.FAILED) is False
        assert advance_campaign_status(campaign, CampaignStatus.RUNNING) is False
        assert campaign.status == CampaignStatus.COMPLETE

    def test_same_status_is_accepted(self):
        campaign = Campaign(id="c1", status=CampaignStatus.RUNNING)

        assert advance_campaign_status(campaign, CampaignStatus.RUNNING) is True


# ============================================================================
# Persistence
# ============================================================================

@pytest.mark.unit
class TestLookups:
    @pytest.mark.asyncio
    async def test_missing_lead_raises(self, session_factory):
        async with session_scope(session_factory) as session:
            with pytest.raises(LeadNotFoundError, match="Lead not found: nope"):
                await get_lead_or_raise(session, "nope")

    @pytest.mark.asyncio
    async def test_missing_campaign_raises(self, session_factory):
        async with session_scope(session_factory) as session:
            with pytest.raises(CampaignNotFoundError):
                await get_campaign_or_raise(session, "nope")

    @pytest.mark.asyncio
    async def test_lead_for_update(self, session_factory, make_lead):
        lead = await make_lead()

        async with session_scope(session_factory) as session:
            loaded = await get_lead_or_raise(session, lead.id, for_update=True)
            assert loaded.business_name == "Acme Roofing"


@pytest.mark.unit
class TestUpsertLead:
    """Tests for the (campaign, website) keyed lead upsert."""

    @pytest.mark.asyncio
    async def test_creates_scraped_lead(self, session_factory, make_campaign):
        campaign = await make_campaign()

        async with session_scope(session_factory) as session:
            lead, created = await upsert_lead(
                session,
                campaign.id,
                business_name="Peak Roofing",
                website_url="https://peak-roofing.com",
                phone="+1-555-0199",
            )

        assert created is True
        assert lead.status == LeadStatus.SCRAPED
        assert lead.phone == "+1-555-0199"
        assert lead.service_image_urls == []
        assert lead.email_sent_count == 0

    @pytest.mark.asyncio
    async def test_rescrape_refreshes_without_duplicate(self, session_factory, make_campaign):
        """Test a second upsert of the same website updates the existing row."""
        campaign = await make_campaign()

        async with session_scope(session_factory) as session:
            first, _ = await upsert_lead(
                session, campaign.id, "Peak Roofing", "https://peak-roofing.com"
            )
        async with session_scope(session_factory) as session:
            second, created = await upsert_lead(
                session,
                campaign.id,
                "Peak Roofing LLC",
                "https://peak-roofing.com",
                email="hi@peak-roofing.com",
            )
        async with session_scope(session_factory) as session:
            count = (
                await session.execute(
                    select(func.count()).select_from(Lead).where(Lead.campaign_id == campaign.id)
                )
            ).scalar_one()

        assert created is False
        assert second.id == first.id
        assert second.business_name == "Peak Roofing LLC"
        assert second.email == "hi@peak-roofing.com"
        assert count == 1

    @pytest.mark.asyncio
    async def test_rescrape_never_regresses_status(self, session_factory, make_lead):
        lead = await make_lead(status=LeadStatus.DEPLOYED, last_error="old")

        async with session_scope(session_factory) as session:
            refreshed, created = await upsert_lead(
                session, lead.campaign_id, "Acme Roofing", lead.website_url, phone="+1-555-0202"
            )

        assert created is False
        assert refreshed.status == LeadStatus.DEPLOYED
        assert refreshed.phone == "+1-555-0202"
        assert refreshed.last_error == "old"

    @pytest.mark.asyncio
    async def test_none_fields_keep_existing_values(self, session_factory, make_lead):
        lead = await make_lead()

        async with session_scope(session_factory) as session:
            refreshed, _ = await upsert_lead(
                session, lead.campaign_id, None, lead.website_url, phone=None
            )

        assert refreshed.business_name == "Acme Roofing"
        assert refreshed.phone == "+1-555-0101"

    @pytest.mark.asyncio
    async def test_leads_without_website_are_always_created(self, session_factory, make_campaign):
        campaign = await make_campaign()

        async with session_scope(session_factory) as session:
            first, created_first = await upsert_lead(session, campaign.id, "No Site Co")
            second, created_second = await upsert_lead(session, campaign.id, "No Site Co")

        assert created_first and created_second
        assert first.id != second.id
        assert first.status == LeadStatus.SCRAPED

    @pytest.mark.asyncio
    async def test_same_website_in_other_campaign_is_new_lead(
        self, session_factory, make_lead, make_campaign
    ):
        lead = await make_lead()
        other = await make_campaign(city="Austin")

        async with session_scope(session_factory) as session:
            copy, created = await upsert_lead(session, other.id, "Acme Roofing", lead.website_url)

        assert created is True
        assert copy.id != lead.id
