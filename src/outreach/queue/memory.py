"""In-process asyncio broker used in development and tests."""

import logging
import time
from collections import defaultdict
from typing import Callable, Optional

from .base import QueueBroker, QueueCounts
from .jobs import Job, QueueName


logger = logging.getLogger(__name__)


class InMemoryBroker(QueueBroker):
    """Broker keeping all jobs in process memory.

    Jobs do not survive a restart. Time comes from ``clock`` so tests can
    move it forward instead of sleeping through delays and backoff.

    Example:
        >>> clock = ManualClock()
        >>> broker = InMemoryBroker(clock=clock)
        >>> await broker.enqueue(QueueName.CALL, CallJob(lead_id="l1", attempt=1),
        ...                      JobOptions(delay_seconds=1800))
        >>> await broker.reserve(QueueName.CALL)   # None, not due yet
        >>> clock.advance(1800)
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._pending: dict[str, list[Job]] = defaultdict(list)
        self._active: dict[str, dict[str, Job]] = defaultdict(dict)
        self._failed: dict[str, list[Job]] = defaultdict(list)
        self._completed: dict[str, int] = defaultdict(int)

    def now(self) -> float:
        return self._clock()

    async def add(self, job: Job) -> Job:
        self._pending[job.queue].append(job)
        return job

    async def reserve(self, queue: QueueName) -> Optional[Job]:
        name = QueueName(queue).value
        now = self.now()
        ready = [job for job in self._pending[name] if job.available_at <= now]
        if not ready:
            return None
        job = min(ready, key=lambda j: j.available_at)
        self._pending[name].remove(job)
        self._active[name][job.id] = job
        return job

    async def complete(self, job: Job) -> None:
        self._active[job.queue].pop(job.id, None)
        job.finished_at = self.now()
        self._completed[job.queue] += 1

    async def _schedule_retry(self, job: Job) -> None:
        self._active[job.queue].pop(job.id, None)
        self._pending[job.queue].append(job)

    async def _dead_letter(self, job: Job) -> None:
        self._active[job.queue].pop(job.id, None)
        if not job.remove_on_fail:
            self._failed[job.queue].append(job)

    async def pending_jobs(self, queue: QueueName) -> list[Job]:
        name = QueueName(queue).value
        return sorted(self._pending[name], key=lambda j: j.available_at)

    async def active_jobs(self, queue: QueueName) -> list[Job]:
        return list(self._active[QueueName(queue).value].values())

    async def failed_jobs(self, queue: QueueName) -> list[Job]:
        return list(reversed(self._failed[QueueName(queue).value]))

    async def counts(self, queue: QueueName) -> QueueCounts:
        name = QueueName(queue).value
        now = self.now()
        pending = self._pending[name]
        delayed = sum(1 for job in pending if job.available_at > now)
        return QueueCounts(
            waiting=len(pending) - delayed,
            delayed=delayed,
            active=len(self._active[name]),
            failed=len(self._failed[name]),
            completed=self._completed[name],
        )

    async def promote_delayed(self, queue: QueueName) -> int:
        now = self.now()
        promoted = 0
        for job in self._pending[QueueName(queue).value]:
            if job.available_at > now:
                job.available_at = now
                promoted += 1
        return promoted

    async def retry_failed(self, queue: QueueName, job_id: str) -> bool:
        name = QueueName(queue).value
        for job in self._failed[name]:
            if job.id == job_id:
                self._failed[name].remove(job)
                job.attempts_made = 0
                job.finished_at = None
                job.available_at = self.now()
                self._pending[name].append(job)
                logger.info("Re-queued failed job %s on %s", job_id, name)
                return True
        return False


class ManualClock:
    """Settable clock for driving ``InMemoryBroker`` in tests and drains."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> float:
        self.current += seconds
        return self.current
