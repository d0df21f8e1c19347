"""Process wiring shared by the API server and the CLI."""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import Config
from .models import DatabaseManager
from .providers import ProviderSet, resolve_providers
from .queue import QueueBroker, WorkerPool, build_broker
from .stages import StageContext, build_stage_bindings


logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Everything a process needs to accept commands and run stages.

    Attributes:
        ctx: Stage dependencies (session factory, queues, providers, config).
        broker: Queue broker behind ``ctx.queues``.
    """

    ctx: StageContext
    broker: QueueBroker

    @property
    def config(self) -> Config:
        return self.ctx.config

    @property
    def providers(self) -> ProviderSet:
        return self.ctx.providers

    @classmethod
    async def start(cls, config: Config, create_tables: bool = False) -> "Runtime":
        """Build the engine, broker and providers for ``config``.

        Raises:
            ConfigError: If the configuration is invalid for this environment.
        """
        config.validate_all()
        DatabaseManager.configure(
            config.DATABASE_URL,
            echo=config.DATABASE_ECHO,
            **config.get_database_connection_args(),
        )
        if create_tables:
            await DatabaseManager.create_tables()
        session_factory = await DatabaseManager.get_session_factory()

        broker = build_broker(config)
        providers = resolve_providers(config)
        ctx = StageContext.build(config, session_factory, broker, providers)
        logger.info(
            "Runtime started (env=%s, queue=%s)",
            config.APP_ENV,
            config.QUEUE_BACKEND,
        )
        return cls(ctx=ctx, broker=broker)

    def worker_pool(self, queues: Optional[tuple] = None) -> WorkerPool:
        """Create a worker pool serving ``queues`` (all stages by default)."""
        bindings = (
            build_stage_bindings(self.ctx, queues)
            if queues
            else build_stage_bindings(self.ctx)
        )
        return WorkerPool(
            self.broker,
            bindings,
            poll_interval=self.config.WORKER_POLL_INTERVAL_SECONDS,
        )

    async def close(self) -> None:
        await self.broker.close()
        await DatabaseManager.close()
