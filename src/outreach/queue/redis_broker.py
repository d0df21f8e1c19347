"""Redis-backed broker for running stage workers in separate processes.

Key layout per queue (``{prefix}`` defaults to ``outreach``)::

    {prefix}:{queue}:wait       list of ready job ids
    {prefix}:{queue}:delayed    sorted set of job ids scored by available_at
    {prefix}:{queue}:active     list of reserved job ids
    {prefix}:{queue}:failed     list of dead-lettered job ids, newest first
    {prefix}:{queue}:completed  completed counter
    {prefix}:job:{id}           job body (JSON)
"""

import logging
import time
from typing import Optional

import redis.asyncio as redis

from .base import QueueBroker, QueueCounts
from .jobs import Job, QueueName


logger = logging.getLogger(__name__)


class RedisBroker(QueueBroker):
    """Queue broker storing jobs in Redis.

    Args:
        client: ``redis.asyncio.Redis`` created with ``decode_responses=True``.
        prefix: Key namespace.
    """

    def __init__(self, client: "redis.Redis", prefix: str = "outreach") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "outreach") -> "RedisBroker":
        """Create a broker from a ``redis://`` URL."""
        return cls(redis.from_url(url, decode_responses=True), prefix=prefix)

    def now(self) -> float:
        return time.time()

    def _key(self, queue: str, part: str) -> str:
        return f"{self._prefix}:{queue}:{part}"

    def _job_key(self, job_id: str) -> str:
        return f"{self._prefix}:job:{job_id}"

    async def _save(self, job: Job) -> None:
        await self._client.set(self._job_key(job.id), job.to_json())

    async def _load(self, job_id: str) -> Optional[Job]:
        raw = await self._client.get(self._job_key(job_id))
        if raw is None:
            return None
        return Job.from_json(raw)

    async def _load_many(self, job_ids: list[str]) -> list[Job]:
        if not job_ids:
            return []
        raws = await self._client.mget([self._job_key(job_id) for job_id in job_ids])
        return [Job.from_json(raw) for raw in raws if raw is not None]

    async def add(self, job: Job) -> Job:
        await self._save(job)
        if job.available_at > self.now():
            await self._client.zadd(
                self._key(job.queue, "delayed"), {job.id: job.available_at}
            )
        else:
            await self._client.rpush(self._key(job.queue, "wait"), job.id)
        return job

    async def _promote_due(self, queue: str, until: float) -> int:
        delayed_key = self._key(queue, "delayed")
        due = await self._client.zrangebyscore(delayed_key, "-inf", until)
        promoted = 0
        for job_id in due:
            # ZREM decides which worker moves the job when several race here
            if await self._client.zrem(delayed_key, job_id):
                await self._client.rpush(self._key(queue, "wait"), job_id)
                promoted += 1
        return promoted

    async def reserve(self, queue: QueueName) -> Optional[Job]:
        name = QueueName(queue).value
        await self._promote_due(name, self.now())

        while True:
            job_id = await self._client.lmove(
                self._key(name, "wait"), self._key(name, "active"), "LEFT", "RIGHT"
            )
            if job_id is None:
                return None
            job = await self._load(job_id)
            if job is not None:
                return job
            logger.warning("Dropping job id %s on %s with no stored body", job_id, name)
            await self._client.lrem(self._key(name, "active"), 1, job_id)

    async def complete(self, job: Job) -> None:
        await self._client.lrem(self._key(job.queue, "active"), 1, job.id)
        await self._client.incr(self._key(job.queue, "completed"))
        job.finished_at = self.now()
        if job.remove_on_complete:
            await self._client.delete(self._job_key(job.id))
        else:
            await self._save(job)

    async def _schedule_retry(self, job: Job) -> None:
        await self._client.lrem(self._key(job.queue, "active"), 1, job.id)
        await self._save(job)
        await self._client.zadd(self._key(job.queue, "delayed"), {job.id: job.available_at})

    async def _dead_letter(self, job: Job) -> None:
        await self._client.lrem(self._key(job.queue, "active"), 1, job.id)
        if job.remove_on_fail:
            await self._client.delete(self._job_key(job.id))
            return
        await self._save(job)
        await self._client.lpush(self._key(job.queue, "failed"), job.id)

    async def pending_jobs(self, queue: QueueName) -> list[Job]:
        name = QueueName(queue).value
        waiting = await self._client.lrange(self._key(name, "wait"), 0, -1)
        delayed = await self._client.zrange(self._key(name, "delayed"), 0, -1)
        return await self._load_many(list(waiting) + list(delayed))

    async def active_jobs(self, queue: QueueName) -> list[Job]:
        job_ids = await self._client.lrange(self._key(QueueName(queue).value, "active"), 0, -1)
        return await self._load_many(list(job_ids))

    async def failed_jobs(self, queue: QueueName) -> list[Job]:
        name = QueueName(queue).value
        job_ids = await self._client.lrange(self._key(name, "failed"), 0, -1)
        return await self._load_many(list(job_ids))

    async def counts(self, queue: QueueName) -> QueueCounts:
        name = QueueName(queue).value
        completed = await self._client.get(self._key(name, "completed"))
        return QueueCounts(
            waiting=await self._client.llen(self._key(name, "wait")),
            delayed=await self._client.zcard(self._key(name, "delayed")),
            active=await self._client.llen(self._key(name, "active")),
            failed=await self._client.llen(self._key(name, "failed")),
            completed=int(completed or 0),
        )

    async def promote_delayed(self, queue: QueueName) -> int:
        return await self._promote_due(QueueName(queue).value, float("inf"))

    async def retry_failed(self, queue: QueueName, job_id: str) -> bool:
        name = QueueName(queue).value
        removed = await self._client.lrem(self._key(name, "failed"), 1, job_id)
        if not removed:
            return False
        job = await self._load(job_id)
        if job is None:
            return False
        job.attempts_made = 0
        job.finished_at = None
        job.available_at = self.now()
        await self._save(job)
        await self._client.rpush(self._key(name, "wait"), job.id)
        logger.info("Re-queued failed job %s on %s", job_id, name)
        return True

    async def recover_stalled(self, queue: QueueName) -> int:
        name = QueueName(queue).value
        recovered = 0
        while True:
            job_id = await self._client.lmove(
                self._key(name, "active"), self._key(name, "wait"), "LEFT", "RIGHT"
            )
            if job_id is None:
                break
            recovered += 1
        if recovered:
            logger.warning("Recovered %d stalled jobs on %s", recovered, name)
        return recovered

    async def close(self) -> None:
        await self._client.aclose()
