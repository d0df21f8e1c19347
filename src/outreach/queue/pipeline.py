"""Typed enqueue helpers and broker construction."""

import logging
from dataclasses import replace
from typing import Optional

from ..config import Config
from .base import QueueBroker
from .jobs import CallJob, EmailJob, Job, JobOptions, LeadJob, QueueName, ScrapeJob
from .memory import InMemoryBroker
from .redis_broker import RedisBroker


logger = logging.getLogger(__name__)


def job_options_from_config(config: Config) -> JobOptions:
    """Default delivery options for every stage job."""
    return JobOptions(
        attempts=config.JOB_ATTEMPTS,
        backoff_seconds=config.JOB_BACKOFF_SECONDS,
    )


def build_broker(config: Config) -> QueueBroker:
    """Create the broker selected by ``QUEUE_BACKEND``.

    Raises:
        ConfigError: If the queue configuration is invalid.
    """
    config.validate_for_queue()
    if config.QUEUE_BACKEND == "redis":
        logger.info("Using Redis queue broker (prefix=%s)", config.QUEUE_PREFIX)
        return RedisBroker.from_url(config.REDIS_URL, prefix=config.QUEUE_PREFIX)
    logger.info("Using in-memory queue broker")
    return InMemoryBroker()


class PipelineQueues:
    """Enqueues the next stage's job with the pipeline's delivery options.

    Args:
        broker: Underlying broker.
        options: Default options; per-call delays are layered on top.
    """

    def __init__(self, broker: QueueBroker, options: Optional[JobOptions] = None):
        self.broker = broker
        self.options = options or JobOptions()

    def _options(self, delay_seconds: float = 0.0) -> JobOptions:
        return replace(self.options, delay_seconds=delay_seconds)

    async def enqueue_scrape(self, campaign_id: str) -> Job:
        return await self.broker.enqueue(
            QueueName.SCRAPE, ScrapeJob(campaign_id=campaign_id), self._options()
        )

    async def enqueue_enrich(self, lead_id: str) -> Job:
        return await self.broker.enqueue(
            QueueName.ENRICH, LeadJob(lead_id=lead_id), self._options()
        )

    async def enqueue_site(self, lead_id: str) -> Job:
        return await self.broker.enqueue(
            QueueName.SITE, LeadJob(lead_id=lead_id), self._options()
        )

    async def enqueue_image(self, lead_id: str) -> Job:
        return await self.broker.enqueue(
            QueueName.IMAGE, LeadJob(lead_id=lead_id), self._options()
        )

    async def enqueue_deploy(self, lead_id: str) -> Job:
        return await self.broker.enqueue(
            QueueName.DEPLOY, LeadJob(lead_id=lead_id), self._options()
        )

    async def enqueue_email(self, lead_id: str, step: int, delay_seconds: float = 0.0) -> Job:
        return await self.broker.enqueue(
            QueueName.EMAIL,
            EmailJob(lead_id=lead_id, step=step),
            self._options(delay_seconds),
        )

    async def enqueue_call(self, lead_id: str, attempt: int, delay_seconds: float = 0.0) -> Job:
        return await self.broker.enqueue(
            QueueName.CALL,
            CallJob(lead_id=lead_id, attempt=attempt),
            self._options(delay_seconds),
        )

    async def find_lead_job(self, queue: QueueName, lead_id: str) -> Optional[Job]:
        """Return a waiting, delayed or running job of ``queue`` for ``lead_id``."""
        for job in await self.broker.active_jobs(queue) + await self.broker.pending_jobs(queue):
            if job.data.get("lead_id") == lead_id:
                return job
        return None
