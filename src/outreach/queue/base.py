"""Queue broker interface shared by the in-memory and Redis backends."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .jobs import Job, JobOptions, JobPayload, QueueName


logger = logging.getLogger(__name__)


@dataclass
class QueueCounts:
    """Snapshot of one queue."""

    waiting: int = 0
    delayed: int = 0
    active: int = 0
    failed: int = 0
    completed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "waiting": self.waiting,
            "delayed": self.delayed,
            "active": self.active,
            "failed": self.failed,
            "completed": self.completed,
        }


class QueueBroker(ABC):
    """At-least-once job broker with delayed delivery and retry/backoff.

    A reserved job is "active" until ``complete`` or ``fail`` is called for
    it. ``fail`` either reschedules the job with exponential backoff or,
    once attempts are exhausted, moves it to the failed set where it stays
    for inspection.
    """

    @abstractmethod
    def now(self) -> float:
        """Current broker time in epoch seconds."""

    @abstractmethod
    async def add(self, job: Job) -> Job:
        """Persist a fully built job."""

    async def enqueue(
        self,
        queue: QueueName,
        payload: JobPayload,
        options: Optional[JobOptions] = None,
    ) -> Job:
        """Enqueue ``payload`` on ``queue``.

        Args:
            queue: Target queue.
            payload: Job payload.
            options: Delivery options; defaults to ``JobOptions()``.

        Returns:
            The enqueued job.
        """
        job = Job.create(queue, payload, options or JobOptions(), self.now())
        await self.add(job)
        logger.debug(
            "Enqueued job %s on %s (delay=%.1fs)",
            job.id,
            job.queue,
            job.available_at - job.created_at,
        )
        return job

    @abstractmethod
    async def reserve(self, queue: QueueName) -> Optional[Job]:
        """Take the next ready job from ``queue``, or None if none is ready."""

    @abstractmethod
    async def complete(self, job: Job) -> None:
        """Mark an active job as completed."""

    @abstractmethod
    async def _schedule_retry(self, job: Job) -> None:
        """Return an active job to the queue at ``job.available_at``."""

    @abstractmethod
    async def _dead_letter(self, job: Job) -> None:
        """Move an active job to the failed set (or drop it)."""

    async def fail(self, job: Job, error: BaseException) -> bool:
        """Record a failed delivery.

        Args:
            job: The active job that failed.
            error: The exception raised by the handler.

        Returns:
            True if the job will be retried, False if it was dead-lettered.
        """
        job.attempts_made += 1
        job.failed_reason = f"{type(error).__name__}: {error}"

        if job.can_retry:
            delay = job.retry_delay()
            job.available_at = self.now() + delay
            await self._schedule_retry(job)
            logger.warning(
                "Job %s on %s failed (attempt %d/%d), retrying in %.1fs: %s",
                job.id,
                job.queue,
                job.attempts_made,
                job.max_attempts,
                delay,
                job.failed_reason,
            )
            return True

        job.finished_at = self.now()
        await self._dead_letter(job)
        logger.error(
            "Job %s on %s failed after %d attempts: %s",
            job.id,
            job.queue,
            job.attempts_made,
            job.failed_reason,
        )
        return False

    @abstractmethod
    async def pending_jobs(self, queue: QueueName) -> list[Job]:
        """Waiting and delayed jobs of ``queue``, in delivery order."""

    @abstractmethod
    async def active_jobs(self, queue: QueueName) -> list[Job]:
        """Jobs of ``queue`` currently reserved by a worker."""

    @abstractmethod
    async def failed_jobs(self, queue: QueueName) -> list[Job]:
        """Dead-lettered jobs of ``queue``, most recent first."""

    @abstractmethod
    async def counts(self, queue: QueueName) -> QueueCounts:
        """Counts of waiting/delayed/active/failed/completed jobs."""

    @abstractmethod
    async def promote_delayed(self, queue: QueueName) -> int:
        """Make every delayed job of ``queue`` ready now.

        Returns:
            Number of jobs promoted.
        """

    async def retry_failed(self, queue: QueueName, job_id: str) -> bool:
        """Put a dead-lettered job back on its queue with fresh attempts."""
        raise NotImplementedError

    async def recover_stalled(self, queue: QueueName) -> int:
        """Return jobs left active by a crashed worker to the queue.

        Returns:
            Number of jobs recovered.
        """
        return 0

    async def close(self) -> None:
        """Release broker resources."""
        return None
