"""Work queue: one logical queue per stage, at-least-once delivery."""

from .base import QueueBroker, QueueCounts
from .jobs import (
    PIPELINE_ORDER,
    CallJob,
    EmailJob,
    Job,
    JobOptions,
    JobPayload,
    LeadJob,
    QueueName,
    ScrapeJob,
)
from .memory import InMemoryBroker, ManualClock
from .pipeline import PipelineQueues, build_broker, job_options_from_config
from .redis_broker import RedisBroker
from .worker import (
    DrainReport,
    JobOutcome,
    StageBinding,
    StageWorker,
    WorkerPool,
    drain,
    process_job,
)

__all__ = [
    "PIPELINE_ORDER",
    "CallJob",
    "DrainReport",
    "EmailJob",
    "InMemoryBroker",
    "Job",
    "JobOptions",
    "JobOutcome",
    "JobPayload",
    "LeadJob",
    "ManualClock",
    "PipelineQueues",
    "QueueBroker",
    "QueueCounts",
    "QueueName",
    "RedisBroker",
    "ScrapeJob",
    "StageBinding",
    "StageWorker",
    "WorkerPool",
    "build_broker",
    "drain",
    "job_options_from_config",
    "process_job",
]
