"""Idempotency Store and the idempotent stage runner.

At-least-once queue delivery plus a per-unit idempotency key gives
at-most-once execution of business side effects (one email per step, one
call per attempt).

Lifecycle of a key:

1. No row: the unit never ran. ``run_idempotent_stage`` commits a claim row
   (no result) *before* running the body.
2. Claim without result: another delivery is running the body, or crashed
   while doing so. The caller skips; the claim stays until an operator
   releases it. Duplicate side effects are worse than a stalled lead.
3. Row with result: the unit completed. The cached result is returned and
   the body is not run again.

If the body raises, the claim is deleted so a queue retry can claim again.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import IdempotencyKey, session_scope


logger = logging.getLogger(__name__)

T = TypeVar("T")


def email_key(lead_id: str, step: int) -> str:
    """Idempotency key for outreach email ``step`` of a lead."""
    return f"email:{lead_id}:step:{step}"


def call_key(lead_id: str, attempt: int) -> str:
    """Idempotency key for outreach call ``attempt`` of a lead."""
    return f"call:{lead_id}:attempt:{attempt}"


@dataclass
class StageOutcome(Generic[T]):
    """Result of ``run_idempotent_stage``.

    Attributes:
        executed: True if the body ran during this call.
        result: Body result, the cached result of an earlier run, or None
            when another execution holds the claim.
    """

    executed: bool
    result: Optional[T]

    @property
    def in_flight(self) -> bool:
        """True when the key was claimed but has no committed result."""
        return not self.executed and self.result is None

    def to_dict(self) -> dict[str, Any]:
        return {"executed": self.executed, "result": self.result}


class IdempotencyStore:
    """Persistence for idempotency keys.

    Each operation runs in its own short transaction so that a claim is
    durable before the side effect it guards is attempted.

    Example:
        >>> store = IdempotencyStore(session_factory)
        >>> claimed = await store.claim("email:l1:step:1", "email", "c1", "l1")
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def lookup(self, key: str) -> Optional[IdempotencyKey]:
        """Return the row for ``key``, if any."""
        async with session_scope(self._session_factory) as session:
            return await session.get(IdempotencyKey, key)

    async def claim(
        self,
        key: str,
        stage: str,
        campaign_id: str,
        lead_id: Optional[str],
    ) -> bool:
        """Insert a claim row for ``key``.

        Returns:
            True if this caller now owns the claim, False if a row already
            existed (lost a race with a concurrent delivery).
        """
        try:
            async with session_scope(self._session_factory) as session:
                session.add(
                    IdempotencyKey(
                        key=key,
                        stage=stage,
                        campaign_id=campaign_id,
                        lead_id=lead_id,
                        result=None,
                    )
                )
        except IntegrityError:
            logger.info("Idempotency key %s already claimed by another delivery", key)
            return False
        return True

    async def complete(self, key: str, result: Any) -> None:
        """Store the body's result on the claim row."""
        async with session_scope(self._session_factory) as session:
            row = await session.get(IdempotencyKey, key)
            if row is None:
                raise LookupError(f"Idempotency claim vanished before completion: {key}")
            row.result = {"value": result}

    async def release(self, key: str) -> bool:
        """Delete the row for ``key``.

        Used when the body failed, and by operators to clear orphaned claims.

        Returns:
            True if a row was deleted.
        """
        async with session_scope(self._session_factory) as session:
            row = await session.get(IdempotencyKey, key)
            if row is None:
                return False
            await session.delete(row)
            return True

    async def list_orphaned_claims(
        self,
        older_than: timedelta = timedelta(hours=1),
    ) -> list[IdempotencyKey]:
        """List claims without a result that are older than ``older_than``."""
        cutoff = datetime.now(timezone.utc) - older_than
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(IdempotencyKey)
                .where(
                    IdempotencyKey.result.is_(None),
                    IdempotencyKey.created_at < cutoff,
                )
                .order_by(IdempotencyKey.created_at.asc())
            )
            return list(result.scalars().all())


async def run_idempotent_stage(
    store: IdempotencyStore,
    key: str,
    stage: str,
    campaign_id: str,
    lead_id: Optional[str],
    run: Callable[[], Awaitable[T]],
    log: Optional[logging.LoggerAdapter] = None,
) -> StageOutcome[T]:
    """Run ``run`` at most once for ``key``.

    Args:
        store: Idempotency store.
        key: Key identifying the side-effecting unit (not the job).
        stage: Stage name recorded on the key.
        campaign_id: Campaign the unit belongs to.
        lead_id: Lead the unit belongs to.
        run: Async body performing the side effect. Its result must be
            JSON-serializable.
        log: Logger to report skips on; defaults to this module's logger.

    Returns:
        StageOutcome describing whether the body ran and its result.

    Raises:
        Exception: Whatever ``run`` raised, after the claim was released.
    """
    log = log or logger

    existing = await store.lookup(key)
    if existing is not None:
        if existing.is_completed:
            log.info("idempotency hit for key=%s (completed), returning cached result", key)
            return StageOutcome(executed=False, result=existing.result["value"])
        log.info("idempotency hit for key=%s (in-flight/unknown), skipping", key)
        return StageOutcome(executed=False, result=None)

    if not await store.claim(key, stage, campaign_id, lead_id):
        return StageOutcome(executed=False, result=None)

    try:
        result = await run()
    except Exception:
        await store.release(key)
        raise

    await store.complete(key, result)
    return StageOutcome(executed=True, result=result)
