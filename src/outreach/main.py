"""CLI entry point for the outreach pipeline.

This module provides the command-line interface for operating the pipeline:
creating the schema, checking credentials, running stage workers, serving
the HTTP API, and creating or recovering campaigns by hand.

Usage:
    outreach init-db
    outreach check-env --verbose
    outreach worker --queues email call
    outreach serve --with-workers
    outreach create-campaign --niche roofers --city Denver --limit 10 --drain
    outreach failed-jobs --queue email
    outreach retry-job email JOB_ID

Example:
    # Run a small campaign end to end in one process with simulated providers
    APP_ENV=dev outreach create-campaign --niche plumbers --city Austin --limit 3 --drain
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Optional

from .campaigns import CampaignCommand, create_campaign, resume_lead
from .config import Config, ConfigError
from .exceptions import PipelineError
from .logging_utils import setup_logging
from .queue import PIPELINE_ORDER, QueueName, drain
from .runtime import Runtime
from .stages import build_stage_bindings


logger = logging.getLogger(__name__)


def check_environment(config: Config) -> dict[str, bool]:
    """Report which provider credentials are present.

    Returns:
        Mapping of setting name to whether it is set.
    """
    names = [
        "DATABASE_URL",
        "OPENAI_API_KEY",
        "GOOGLE_MAPS_API_KEY",
        "SENDGRID_API_KEY",
        "SENDGRID_FROM_EMAIL",
        "TWILIO_ACCOUNT_SID",
        "TWILIO_AUTH_TOKEN",
        "TWILIO_PHONE_NUMBER",
        "VERCEL_TOKEN",
    ]
    return {name: bool(getattr(config, name, "")) for name in names}


def print_env_status(config: Config, verbose: bool = False) -> bool:
    """Print environment status and validate it for the selected environment.

    Returns:
        True if the configuration is valid.
    """
    mode = "production" if config.is_production() else "simulated"
    print("\nEnvironment Status:")
    print("-" * 40)
    print(f"  APP_ENV: {config.APP_ENV} ({mode} providers)")
    print(f"  QUEUE_BACKEND: {config.QUEUE_BACKEND}")
    if verbose:
        for name, present in check_environment(config).items():
            symbol = "✓" if present else "-"
            print(f"  [{symbol}] {name}")
    print("-" * 40)

    try:
        config.validate_all()
    except ConfigError as e:
        print(f"\nError: {e}")
        return False
    print("\nConfiguration OK")
    return True


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="outreach",
        description="Lead outreach pipeline: scrape, enrich, build demo sites, email and call",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    output = parser.add_argument_group("output options")
    output.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")
    output.add_argument("--debug", action="store_true", help="Enable debug output")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create database tables")
    commands.add_parser("check-env", help="Check configuration and credentials")

    worker = commands.add_parser("worker", help="Run stage workers until interrupted")
    worker.add_argument(
        "--queues",
        nargs="+",
        choices=[queue.value for queue in QueueName],
        default=None,
        help="Queues to serve (default: all)",
    )

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None, help="Bind host (default: API_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: API_PORT)")
    serve.add_argument(
        "--with-workers",
        action="store_true",
        help="Run stage workers in the API process (required for QUEUE_BACKEND=memory)",
    )

    campaign = commands.add_parser("create-campaign", help="Create a campaign")
    required = campaign.add_argument_group("required arguments")
    required.add_argument("--niche", required=True, help="Business niche (e.g., roofers)")
    required.add_argument("--city", required=True, help="Target city (e.g., Denver)")
    options = campaign.add_argument_group("pipeline options")
    options.add_argument("--limit", type=int, default=10, help="Maximum leads (default: 10)")
    options.add_argument(
        "--drain",
        action="store_true",
        help="Process the pipeline in this process until idle, including delayed follow-ups",
    )

    resume = commands.add_parser("resume-lead", help="Re-enqueue the stage a lead is waiting for")
    resume.add_argument("lead_id", help="Lead id")

    failed = commands.add_parser("failed-jobs", help="List dead-lettered jobs")
    failed.add_argument(
        "--queue",
        choices=[queue.value for queue in QueueName],
        default=None,
        help="Only this queue (default: all)",
    )

    retry = commands.add_parser("retry-job", help="Move a dead-lettered job back onto its queue")
    retry.add_argument("queue", choices=[queue.value for queue in QueueName], help="Queue name")
    retry.add_argument("job_id", help="Failed job id")

    drain_cmd = commands.add_parser("drain", help="Process queued jobs until idle")
    drain_cmd.add_argument(
        "--include-delayed",
        action="store_true",
        help="Also run delayed jobs (scheduled follow-ups and retries) now",
    )

    return parser


async def run_worker(runtime: Runtime, queues: Optional[list[str]]) -> None:
    selected = tuple(QueueName(q) for q in queues) if queues else None
    pool = runtime.worker_pool(selected)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, pool.stop)
        except NotImplementedError:
            # Signal handlers are unavailable on some platforms
            pass

    logger.info("Workers running for: %s", ", ".join(q.value for q in pool.bindings))
    await pool.run(recover_stalled=True)
    logger.info("Workers stopped")


async def run_command(args: argparse.Namespace, config: Config) -> int:
    """Run one CLI command.

    Returns:
        Exit code.
    """
    if args.command == "check-env":
        return 0 if print_env_status(config, verbose=args.verbose) else 1

    runtime = await Runtime.start(config, create_tables=args.command == "init-db")
    try:
        if args.command == "init-db":
            print("Database tables created")
            return 0

        if args.command == "worker":
            await run_worker(runtime, args.queues)
            return 0

        if args.command == "create-campaign":
            command = CampaignCommand(niche=args.niche, city=args.city, limit=args.limit)
            started = await create_campaign(
                runtime.ctx.session_factory, runtime.ctx.queues, command
            )
            print(f"Campaign ID: {started.campaign_id}")
            if args.drain:
                report = await drain(
                    runtime.broker, build_stage_bindings(runtime.ctx), include_delayed=True
                )
                print(
                    f"Processed {report.processed} jobs: {report.completed} completed, "
                    f"{report.retrying} retrying, {report.failed} failed"
                )
            return 0

        if args.command == "resume-lead":
            job = await resume_lead(runtime.ctx.session_factory, runtime.ctx.queues, args.lead_id)
            print(f"Queued {job.queue} job {job.id} for lead {args.lead_id}")
            return 0

        if args.command == "failed-jobs":
            queues = [QueueName(args.queue)] if args.queue else list(PIPELINE_ORDER)
            jobs = []
            for queue in queues:
                jobs.extend(job.to_dict() for job in await runtime.broker.failed_jobs(queue))
            print(json.dumps(jobs, indent=2))
            return 0

        if args.command == "retry-job":
            if not await runtime.broker.retry_failed(QueueName(args.queue), args.job_id):
                print(f"No failed job {args.job_id} on {args.queue}", file=sys.stderr)
                return 1
            print(f"Requeued job {args.job_id} on {args.queue}")
            return 0

        if args.command == "drain":
            report = await drain(
                runtime.broker,
                build_stage_bindings(runtime.ctx),
                include_delayed=args.include_delayed,
            )
            print(json.dumps({"processed": report.processed, "perQueue": report.per_queue}))
            return 0

        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await runtime.close()


def serve(args: argparse.Namespace, config: Config) -> int:
    import uvicorn

    from .api import create_app

    config.validate_all()
    host = args.host or config.API_HOST
    port = args.port or config.API_PORT
    logger.info("Starting API on %s:%d", host, port)
    uvicorn.run(create_app(config=config, run_workers=args.with_workers), host=host, port=port)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    config = Config()
    level = "DEBUG" if args.debug else config.get_log_level()
    setup_logging(level=level, structured=config.structured_logs(), service_name="outreach")

    try:
        if args.command == "serve":
            return serve(args, config)
        return asyncio.run(run_command(args, config))
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except PipelineError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
