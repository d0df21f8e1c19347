"""Shared fixtures for outreach pipeline tests.

Every test gets a fresh in-memory SQLite ledger, an in-memory broker driven
by a manual clock, and the simulated provider set writing under tmp_path.
"""

import os
from typing import Any, Optional
from unittest.mock import patch

import pytest
import pytest_asyncio

from outreach.config import Config
from outreach.models import (
    Campaign,
    CampaignStatus,
    Lead,
    LeadStatus,
    create_all_tables,
    create_test_engine,
    session_scope,
)
from outreach.models.database import build_session_factory
from outreach.providers import resolve_providers
from outreach.queue import InMemoryBroker, ManualClock
from outreach.stages import StageContext, build_stage_bindings


# ============================================================================
# Configuration
# ============================================================================

def make_test_env(tmp_path, **overrides: str) -> dict[str, str]:
    """Environment for a test ``Config`` writing sites and demos under tmp_path."""
    env = {
        "APP_ENV": "test",
        "SITE_OUTPUT_DIR": str(tmp_path / "sites"),
        "DEMO_ROOT": str(tmp_path / "demo"),
        "PUBLIC_BASE_URL": "http://localhost:3000",
        "CALL_WEBHOOK_BASE_URL": "http://localhost:3000",
        "PLACEHOLDER_WEBSITE_URL": "https://placeholder-builders.com/",
        "JOB_ATTEMPTS": "3",
        "JOB_BACKOFF_SECONDS": "3",
        "CALL_DELAY_SECONDS": "1800",
        "FOLLOW_UP_EMAIL_DELAY_SECONDS": "86400",
        "IMAGE_HERO_POOL_SIZE": "5",
        "IMAGE_SERVICE_POOL_SIZE": "10",
    }
    env.update(overrides)
    return env


@pytest.fixture
def test_env(tmp_path) -> dict[str, str]:
    return make_test_env(tmp_path)


@pytest.fixture
def test_config(test_env) -> Config:
    """Config for the simulated (non-production) environment."""
    with patch.dict(os.environ, test_env, clear=True):
        return Config()


# ============================================================================
# Database
# ============================================================================

@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database with all tables."""
    engine = create_test_engine()
    await create_all_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


# ============================================================================
# Queue and stage context
# ============================================================================

@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def broker(clock) -> InMemoryBroker:
    return InMemoryBroker(clock=clock)


@pytest.fixture
def providers(test_config):
    return resolve_providers(test_config)


@pytest.fixture
def ctx(test_config, session_factory, broker, providers) -> StageContext:
    return StageContext.build(test_config, session_factory, broker, providers)


@pytest.fixture
def bindings(ctx):
    return build_stage_bindings(ctx)


# ============================================================================
# Ledger helpers
# ============================================================================

@pytest.fixture
def make_campaign(session_factory):
    """Factory creating a campaign row."""

    async def _make(
        niche: str = "roofers",
        city: str = "Denver",
        limit: int = 3,
        status: CampaignStatus = CampaignStatus.RUNNING,
    ) -> Campaign:
        async with session_scope(session_factory) as session:
            campaign = Campaign(niche=niche, city=city, limit=limit, status=status)
            session.add(campaign)
            await session.flush()
            return campaign

    return _make


@pytest.fixture
def make_lead(session_factory, make_campaign):
    """Factory creating a lead (and its campaign unless one is given)."""

    async def _make(
        status: LeadStatus = LeadStatus.SCRAPED,
        campaign_id: Optional[str] = None,
        **fields: Any,
    ) -> Lead:
        if campaign_id is None:
            campaign_id = (await make_campaign()).id
        values = {
            "business_name": "Acme Roofing",
            "website_url": "https://acme-roofing.com",
            "phone": "+1-555-0101",
            "email": "owner@acme-roofing.com",
            "service_image_urls": [],
        }
        values.update(fields)
        async with session_scope(session_factory) as session:
            lead = Lead(campaign_id=campaign_id, status=status, **values)
            session.add(lead)
            await session.flush()
            return lead

    return _make


@pytest.fixture
def fetch_lead(session_factory):
    """Reload a lead's current ledger row."""

    async def _fetch(lead_id: str) -> Lead:
        async with session_scope(session_factory) as session:
            return await session.get(Lead, lead_id)

    return _fetch


@pytest.fixture
def fetch_campaign(session_factory):
    async def _fetch(campaign_id: str) -> Campaign:
        async with session_scope(session_factory) as session:
            return await session.get(Campaign, campaign_id)

    return _fetch
