"""Shared stage plumbing: injected dependencies, results and the dead-letter hook.

Every stage handler follows the same shape:

1. Load the lead (or campaign) from the ledger; a missing row is fatal.
2. Check opt-out and the status precondition; inapplicable work is a
   logged skip, an out-of-order status is an error.
3. Run the business logic, behind the idempotency store when it has an
   external side effect.
4. Persist the ledger update and the event, then enqueue the next stage.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Config
from ..event_log import append_event
from ..events import ErrorPayload
from ..idempotency import IdempotencyStore
from ..ledger import advance_campaign_status
from ..logging_utils import StageLogger
from ..models import Campaign, CampaignStatus, EventType, Lead, session_scope
from ..providers import ImagePoolCache, ProviderSet
from ..queue import Job, PipelineQueues, QueueBroker, QueueName, job_options_from_config


logger = logging.getLogger(__name__)

# Queue -> worker name used in log prefixes
WORKER_NAMES = {
    QueueName.SCRAPE: "scraper",
    QueueName.ENRICH: "enricher",
    QueueName.SITE: "site-generator",
    QueueName.IMAGE: "image-generator",
    QueueName.DEPLOY: "deployer",
    QueueName.EMAIL: "emailer",
    QueueName.CALL: "caller",
}


@dataclass
class StageContext:
    """Dependencies handed to every stage handler.

    Attributes:
        session_factory: Factory for ledger / event log sessions.
        queues: Typed enqueue helpers for the next stage.
        providers: Capability implementations resolved at process start.
        idempotency: Idempotency store guarding side effects.
        config: Application configuration.
        image_cache: Per-niche image pools shared by the image stage.
    """

    session_factory: async_sessionmaker[AsyncSession]
    queues: PipelineQueues
    providers: ProviderSet
    idempotency: IdempotencyStore
    config: Config
    image_cache: ImagePoolCache

    @classmethod
    def build(
        cls,
        config: Config,
        session_factory: async_sessionmaker[AsyncSession],
        broker: QueueBroker,
        providers: ProviderSet,
    ) -> "StageContext":
        """Wire a context from its parts using the configured pool sizes."""
        return cls(
            session_factory=session_factory,
            queues=PipelineQueues(broker, job_options_from_config(config)),
            providers=providers,
            idempotency=IdempotencyStore(session_factory),
            config=config,
            image_cache=ImagePoolCache(
                providers.images,
                hero_pool_size=config.IMAGE_HERO_POOL_SIZE,
                service_pool_size=config.IMAGE_SERVICE_POOL_SIZE,
                max_entries=config.IMAGE_POOL_MAX_ENTRIES,
            ),
        )


class StageStatus(str, Enum):
    DONE = "done"
    SKIPPED = "skipped"


@dataclass
class StageResult:
    """What a handler did with a job.

    Attributes:
        status: DONE when the stage ran, SKIPPED for a policy skip.
        reason: Why the job was skipped.
        details: Stage specific values (counts, provider ids).
    """

    status: StageStatus
    reason: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def done(cls, **details: Any) -> "StageResult":
        return cls(status=StageStatus.DONE, details=details)

    @classmethod
    def skipped(cls, reason: str, **details: Any) -> "StageResult":
        return cls(status=StageStatus.SKIPPED, reason=reason, details=details)

    @property
    def was_skipped(self) -> bool:
        return self.status == StageStatus.SKIPPED


def stage_logger(
    module_logger: logging.Logger,
    queue: QueueName,
    campaign_id: Optional[str] = None,
    lead_id: Optional[str] = None,
) -> StageLogger:
    """Logger prefixed with ``[campaignId][leadId][worker]`` for a stage."""
    return StageLogger(module_logger, WORKER_NAMES[queue], campaign_id, lead_id)


def format_failure(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


async def record_stage_failure(
    ctx: StageContext,
    queue: QueueName,
    job: Job,
    exc: BaseException,
) -> None:
    """Dead-letter hook: leave a trace of the parked job in the ledger.

    Lead jobs set ``last_error`` on the lead; scrape jobs mark the campaign
    FAILED. Both write an ERROR event. Jobs whose lead or campaign no longer
    exists are only logged.
    """
    payload = job.payload()
    error = format_failure(exc)
    lead_id = getattr(payload, "lead_id", None)
    campaign_id = getattr(payload, "campaign_id", None)
    log = stage_logger(logger, queue, campaign_id, lead_id)

    async with session_scope(ctx.session_factory) as session:
        if lead_id is not None:
            lead = await session.get(Lead, lead_id)
            if lead is None:
                log.warning("job %s dead-lettered for missing lead: %s", job.id, error)
                return
            campaign_id = lead.campaign_id
            lead.last_error = f"{queue.value} failed after {job.attempts_made} attempts: {error}"
        else:
            campaign = await session.get(Campaign, campaign_id)
            if campaign is None:
                log.warning("job %s dead-lettered for missing campaign: %s", job.id, error)
                return
            advance_campaign_status(campaign, CampaignStatus.FAILED)

        await append_event(
            session,
            campaign_id,
            EventType.ERROR,
            ErrorPayload(
                stage=queue.value,
                job_id=job.id,
                attempts=job.attempts_made,
                error=error,
            ),
            lead_id=lead_id,
        )

    log.bind(campaign_id=campaign_id).error(
        "job %s failed permanently after %d attempts: %s",
        job.id,
        job.attempts_made,
        error,
    )
