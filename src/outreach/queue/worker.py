"""Stage workers: pull jobs from a broker and run stage handlers.

One ``StageWorker`` serves one queue with bounded concurrency. A handler
that raises hands the job back to the broker for retry; once the broker
dead-letters the job, the stage's failure hook runs.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Mapping, Optional

from .base import QueueBroker
from .jobs import PIPELINE_ORDER, Job, QueueName


logger = logging.getLogger(__name__)

JobHandler = Callable[[Job], Awaitable[None]]
FailureHook = Callable[[Job, BaseException], Awaitable[None]]


class JobOutcome(str, Enum):
    COMPLETED = "completed"
    RETRYING = "retrying"
    FAILED = "failed"


@dataclass
class StageBinding:
    """How a queue is served.

    Attributes:
        handler: Coroutine run for each job.
        on_failed: Coroutine run once a job is dead-lettered.
        concurrency: Max jobs of this queue processed at once.
    """

    handler: JobHandler
    on_failed: Optional[FailureHook] = None
    concurrency: int = 5


async def process_job(broker: QueueBroker, binding: StageBinding, job: Job) -> JobOutcome:
    """Run one reserved job and settle it with the broker.

    Args:
        broker: Broker the job was reserved from.
        binding: Handler and failure hook for the job's queue.
        job: Reserved job.

    Returns:
        The job's outcome.
    """
    try:
        await binding.handler(job)
    except Exception as exc:
        if await broker.fail(job, exc):
            return JobOutcome.RETRYING
        if binding.on_failed is not None:
            try:
                await binding.on_failed(job, exc)
            except Exception:
                logger.exception(
                    "Failure hook for job %s on %s raised", job.id, job.queue
                )
        return JobOutcome.FAILED

    await broker.complete(job)
    return JobOutcome.COMPLETED


class StageWorker:
    """Serves a single queue until ``stop_event`` is set."""

    def __init__(
        self,
        broker: QueueBroker,
        queue: QueueName,
        binding: StageBinding,
        poll_interval: float = 0.5,
    ):
        self.broker = broker
        self.queue = QueueName(queue)
        self.binding = binding
        self.poll_interval = poll_interval

    async def run(self, stop_event: asyncio.Event) -> None:
        semaphore = asyncio.Semaphore(max(1, self.binding.concurrency))
        in_flight: set[asyncio.Task] = set()
        logger.info(
            "Worker for %s started (concurrency=%d)",
            self.queue.value,
            self.binding.concurrency,
        )

        try:
            while not stop_event.is_set():
                await semaphore.acquire()
                try:
                    job = await self.broker.reserve(self.queue)
                except Exception:
                    semaphore.release()
                    logger.exception("Reserving from %s failed", self.queue.value)
                    await self._idle(stop_event)
                    continue

                if job is None:
                    semaphore.release()
                    await self._idle(stop_event)
                    continue

                task = asyncio.create_task(self._run_job(job, semaphore))
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)
        finally:
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)
            logger.info("Worker for %s stopped", self.queue.value)

    async def _run_job(self, job: Job, semaphore: asyncio.Semaphore) -> None:
        try:
            await process_job(self.broker, self.binding, job)
        except Exception:
            logger.exception("Settling job %s on %s failed", job.id, job.queue)
        finally:
            semaphore.release()

    async def _idle(self, stop_event: asyncio.Event) -> None:
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass


class WorkerPool:
    """Runs one ``StageWorker`` per bound queue.

    Example:
        >>> pool = WorkerPool(broker, build_stage_bindings(ctx))
        >>> task = asyncio.create_task(pool.run())
        >>> pool.stop()
        >>> await task
    """

    def __init__(
        self,
        broker: QueueBroker,
        bindings: Mapping[QueueName, StageBinding],
        poll_interval: float = 0.5,
    ):
        self.broker = broker
        self.bindings = dict(bindings)
        self.poll_interval = poll_interval
        self._stop = asyncio.Event()

    async def run(self, recover_stalled: bool = False) -> None:
        """Serve all bound queues until ``stop`` is called.

        Args:
            recover_stalled: Return jobs left active by a crashed worker to
                their queues before starting. Only safe when no other worker
                process serves the same queues.
        """
        if recover_stalled:
            for queue in self.bindings:
                await self.broker.recover_stalled(queue)

        workers = [
            StageWorker(self.broker, queue, binding, self.poll_interval)
            for queue, binding in self.bindings.items()
        ]
        await asyncio.gather(*(worker.run(self._stop) for worker in workers))

    def stop(self) -> None:
        self._stop.set()


@dataclass
class DrainReport:
    """Counts of jobs processed by ``drain``, overall and per queue."""

    processed: int = 0
    completed: int = 0
    retrying: int = 0
    failed: int = 0
    per_queue: dict[str, int] = field(default_factory=dict)

    def record(self, queue: QueueName, outcome: JobOutcome) -> None:
        self.processed += 1
        self.per_queue[queue.value] = self.per_queue.get(queue.value, 0) + 1
        if outcome == JobOutcome.COMPLETED:
            self.completed += 1
        elif outcome == JobOutcome.RETRYING:
            self.retrying += 1
        else:
            self.failed += 1


async def drain(
    broker: QueueBroker,
    bindings: Mapping[QueueName, StageBinding],
    include_delayed: bool = False,
    max_jobs: int = 10_000,
) -> DrainReport:
    """Process ready jobs in pipeline order until no queue has one.

    Args:
        broker: Broker to drain.
        bindings: Handlers per queue; unbound queues are left untouched.
        include_delayed: Promote delayed jobs (scheduled follow-ups and
            retries) whenever the ready work runs out.
        max_jobs: Upper bound on jobs processed.

    Returns:
        DrainReport with the outcome counts.
    """
    report = DrainReport()

    while report.processed < max_jobs:
        progressed = False
        for queue in PIPELINE_ORDER:
            binding = bindings.get(queue)
            if binding is None:
                continue
            while report.processed < max_jobs:
                job = await broker.reserve(queue)
                if job is None:
                    break
                report.record(queue, await process_job(broker, binding, job))
                progressed = True

        if progressed:
            continue
        if not include_delayed:
            break

        promoted = 0
        for queue in bindings:
            promoted += await broker.promote_delayed(queue)
        if promoted == 0:
            break

    logger.info(
        "Drain finished: processed=%d completed=%d retrying=%d failed=%d",
        report.processed,
        report.completed,
        report.retrying,
        report.failed,
    )
    return report
