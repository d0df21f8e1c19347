"""Pipeline stage handlers and their queue bindings."""

from typing import Awaitable, Callable

from ..queue import Job, JobPayload, QueueName, StageBinding
from .base import (
    WORKER_NAMES,
    StageContext,
    StageResult,
    StageStatus,
    record_stage_failure,
)
from .call import run_call
from .deploy import run_deploy
from .email import run_email
from .enrich import run_enrich
from .images import run_images
from .scrape import run_scrape
from .site import run_site

StageRunner = Callable[[StageContext, JobPayload], Awaitable[StageResult]]

STAGE_RUNNERS: dict[QueueName, StageRunner] = {
    QueueName.SCRAPE: run_scrape,
    QueueName.ENRICH: run_enrich,
    QueueName.SITE: run_site,
    QueueName.IMAGE: run_images,
    QueueName.DEPLOY: run_deploy,
    QueueName.EMAIL: run_email,
    QueueName.CALL: run_call,
}


def _bind(ctx: StageContext, queue: QueueName) -> StageBinding:
    runner = STAGE_RUNNERS[queue]

    async def handler(job: Job) -> None:
        await runner(ctx, job.payload())

    async def on_failed(job: Job, exc: BaseException) -> None:
        await record_stage_failure(ctx, queue, job, exc)

    return StageBinding(
        handler=handler,
        on_failed=on_failed,
        concurrency=ctx.config.concurrency_for(queue.value),
    )


def build_stage_bindings(
    ctx: StageContext,
    queues: tuple[QueueName, ...] = tuple(QueueName),
) -> dict[QueueName, StageBinding]:
    """Bind each requested queue to its stage handler and dead-letter hook.

    Args:
        ctx: Dependencies shared by the handlers.
        queues: Queues to serve; all of them by default.

    Returns:
        Mapping of queue name to binding, ready for ``WorkerPool`` or ``drain``.
    """
    return {QueueName(queue): _bind(ctx, QueueName(queue)) for queue in queues}


__all__ = [
    "STAGE_RUNNERS",
    "WORKER_NAMES",
    "StageContext",
    "StageResult",
    "StageStatus",
    "build_stage_bindings",
    "record_stage_failure",
    "run_call",
    "run_deploy",
    "run_email",
    "run_enrich",
    "run_images",
    "run_scrape",
    "run_site",
]
