"""Queue names, job payloads and the job envelope.

Payloads carry only identifiers; handlers re-derive everything else from the
ledger and the event log, which is what makes redelivery safe.
"""

import json
import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict


class QueueName(str, Enum):
    """One logical queue per pipeline stage, in pipeline order."""

    SCRAPE = "scrape"
    ENRICH = "enrich"
    SITE = "site"
    IMAGE = "image"
    DEPLOY = "deploy"
    EMAIL = "email"
    CALL = "call"


PIPELINE_ORDER: tuple[QueueName, ...] = tuple(QueueName)


class JobPayload(BaseModel):
    """Base model for job payloads."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class ScrapeJob(JobPayload):
    campaign_id: str


class LeadJob(JobPayload):
    """Payload for enrich, site, image and deploy jobs."""

    lead_id: str


class EmailJob(JobPayload):
    lead_id: str
    step: Literal[1, 2]


class CallJob(JobPayload):
    lead_id: str
    attempt: Literal[1, 2]


PAYLOAD_TYPES: dict[QueueName, type[JobPayload]] = {
    QueueName.SCRAPE: ScrapeJob,
    QueueName.ENRICH: LeadJob,
    QueueName.SITE: LeadJob,
    QueueName.IMAGE: LeadJob,
    QueueName.DEPLOY: LeadJob,
    QueueName.EMAIL: EmailJob,
    QueueName.CALL: CallJob,
}


@dataclass
class JobOptions:
    """Delivery options applied to a job at enqueue time.

    Attributes:
        attempts: Maximum number of deliveries before the job is dead-lettered.
        backoff_seconds: Delay before the first retry; doubles on each retry.
        delay_seconds: Delay before the first delivery.
        remove_on_complete: Drop the job once it completes.
        remove_on_fail: Drop the job instead of keeping it as a dead letter.
    """

    attempts: int = 3
    backoff_seconds: float = 3.0
    delay_seconds: float = 0.0
    remove_on_complete: bool = True
    remove_on_fail: bool = False


@dataclass
class Job:
    """A queued stage invocation.

    Attributes:
        id: Unique job id.
        queue: Queue name.
        data: Serialized payload.
        attempts_made: Deliveries that ended in failure so far.
        max_attempts: Deliveries allowed before dead-lettering.
        backoff_seconds: Base of the exponential retry delay.
        available_at: Epoch seconds before which the job is not delivered.
        created_at: Epoch seconds when the job was enqueued.
        failed_reason: Message of the last failure.
        finished_at: Epoch seconds when the job completed or was dead-lettered.
    """

    queue: str
    data: dict[str, Any]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempts_made: int = 0
    max_attempts: int = 3
    backoff_seconds: float = 3.0
    remove_on_complete: bool = True
    remove_on_fail: bool = False
    available_at: float = 0.0
    created_at: float = field(default_factory=time.time)
    failed_reason: Optional[str] = None
    finished_at: Optional[float] = None

    @classmethod
    def create(
        cls,
        queue: QueueName,
        payload: JobPayload,
        options: JobOptions,
        now: float,
    ) -> "Job":
        """Build a job for ``payload`` using ``options``."""
        return cls(
            queue=QueueName(queue).value,
            data=payload.model_dump(),
            max_attempts=max(1, options.attempts),
            backoff_seconds=options.backoff_seconds,
            remove_on_complete=options.remove_on_complete,
            remove_on_fail=options.remove_on_fail,
            available_at=now + max(0.0, options.delay_seconds),
            created_at=now,
        )

    def payload(self) -> JobPayload:
        """Parse ``data`` into the payload model for this job's queue."""
        return PAYLOAD_TYPES[QueueName(self.queue)].model_validate(self.data)

    def retry_delay(self) -> float:
        """Delay before the next delivery after ``attempts_made`` failures."""
        return self.backoff_seconds * (2 ** max(0, self.attempts_made - 1))

    @property
    def can_retry(self) -> bool:
        return self.attempts_made < self.max_attempts

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> "Job":
        return cls(**json.loads(raw))
