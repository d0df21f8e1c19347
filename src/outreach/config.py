"""Outreach pipeline configuration module.

This module provides centralized configuration management for the outreach
pipeline, loading settings from environment variables with validation.

Configuration is loaded from:
1. .env file (if present)
2. Environment variables

Provider credentials should be provided via environment variables, never
hardcoded. Runtime code receives a ``Config`` instance explicitly; the
module-level ``config`` exists for process entry points.

Usage:
    >>> from outreach.config import Config
    >>> cfg = Config()
    >>> cfg.concurrency_for("email")
    5
"""

import logging
import os
import tempfile
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


DEFAULT_CONCURRENCY = 5

# Queue name -> environment variable controlling its worker concurrency
CONCURRENCY_ENV_VARS = {
    "scrape": "SCRAPER_CONCURRENCY",
    "enrich": "ENRICHER_CONCURRENCY",
    "site": "SITE_GENERATOR_CONCURRENCY",
    "image": "IMAGE_GENERATOR_CONCURRENCY",
    "deploy": "DEPLOYER_CONCURRENCY",
    "email": "EMAILER_CONCURRENCY",
    "call": "CALLER_CONCURRENCY",
}


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


class Config:
    """Application configuration loaded from environment variables.

    Attributes:
        APP_ENV: Deployment environment (dev, test, production).
        DATABASE_URL: SQLAlchemy async database URL.
        QUEUE_BACKEND: ``memory`` or ``redis``.
        REDIS_URL: Redis connection URL for the redis queue backend.
        JOB_ATTEMPTS: Max delivery attempts per queued job.
        JOB_BACKOFF_SECONDS: Initial exponential backoff between attempts.
        CALL_DELAY_SECONDS: Delay between an email send and its follow-up call.
        OPENAI_API_KEY: OpenAI key for site copy and image generation.
        GOOGLE_MAPS_API_KEY: Google Maps Places key for listings.
        SENDGRID_API_KEY: SendGrid key for email delivery.
        TWILIO_ACCOUNT_SID: Twilio account SID for outbound calls.
        VERCEL_TOKEN: Vercel token for demo site deployments.

    Example:
        >>> config = Config()
        >>> print(config.APP_ENV)
        dev
    """

    def __init__(self) -> None:
        """Initialize configuration by loading from environment variables."""
        self.logger = logging.getLogger(__name__)

        # Application environment
        self.APP_ENV = self._get_optional("APP_ENV", "dev")
        self.ENV = self._get_optional("ENV")
        self.DEBUG = self._get_bool("DEBUG")
        self.LOG_LEVEL = self._get_optional("LOG_LEVEL", "INFO")
        self.LOG_STRUCTURED = self._get_optional("LOG_STRUCTURED")

        # Database Configuration
        self.DATABASE_URL = self._get_optional(
            "DATABASE_URL", "sqlite+aiosqlite:///./outreach.db"
        )
        self.DATABASE_POOL_SIZE = self._get_int("DATABASE_POOL_SIZE", 5)
        self.DATABASE_MAX_OVERFLOW = self._get_int("DATABASE_MAX_OVERFLOW", 10)
        self.DATABASE_ECHO = self._get_bool("DATABASE_ECHO")

        # Queue Configuration
        self.QUEUE_BACKEND = self._get_optional("QUEUE_BACKEND", "memory").lower()
        self.REDIS_URL = self._get_optional("REDIS_URL", "redis://localhost:6379/0")
        self.QUEUE_PREFIX = self._get_optional("QUEUE_PREFIX", "outreach")
        self.JOB_ATTEMPTS = self._get_int("JOB_ATTEMPTS", 3)
        self.JOB_BACKOFF_SECONDS = self._get_float("JOB_BACKOFF_SECONDS", 3.0)
        self.WORKER_POLL_INTERVAL_SECONDS = self._get_float(
            "WORKER_POLL_INTERVAL_SECONDS", 0.5
        )
        self.STAGE_CONCURRENCY = {
            queue: self._get_int(env_name, DEFAULT_CONCURRENCY)
            for queue, env_name in CONCURRENCY_ENV_VARS.items()
        }

        # Pipeline timing
        self.CALL_DELAY_SECONDS = self._get_float("CALL_DELAY_SECONDS", 30 * 60)
        self.FOLLOW_UP_EMAIL_DELAY_SECONDS = self._get_float(
            "FOLLOW_UP_EMAIL_DELAY_SECONDS", 24 * 60 * 60
        )
        self.CALL_WEBHOOK_BASE_URL = self._get_optional(
            "CALL_WEBHOOK_BASE_URL", "http://localhost:3000"
        ).rstrip("/")
        self.PUBLIC_BASE_URL = self._get_optional(
            "PUBLIC_BASE_URL", "http://localhost:3000"
        ).rstrip("/")

        # Scraper Configuration
        self.SCRAPER_PROVIDER = self._get_optional("SCRAPER_PROVIDER", "duckduckgo").lower()
        self.SCRAPER_RATE_LIMIT_SECONDS = self._get_float("SCRAPER_RATE_LIMIT_SECONDS", 0.0)
        self.SCRAPER_USER_AGENT = self._get_optional(
            "SCRAPER_USER_AGENT",
            "Mozilla/5.0 (compatible; OutreachScraper/0.1; +https://example.com/bot)",
        )

        # Enricher Configuration
        self.ENRICHER_FETCH_TIMEOUT_SECONDS = self._get_float(
            "ENRICHER_FETCH_TIMEOUT_SECONDS", 7.0
        )
        self.ENRICHER_USER_AGENT = self._get_optional(
            "ENRICHER_USER_AGENT",
            "Mozilla/5.0 (compatible; OutreachBot/0.1; +https://example.com/bot)",
        )
        self.PLACEHOLDER_WEBSITE_URL = self._get_optional(
            "PLACEHOLDER_WEBSITE_URL", "https://www.kirnconstruction.com/"
        )

        # Site / deploy Configuration
        self.SITE_OUTPUT_DIR = self._get_optional("SITE_OUTPUT_DIR", tempfile.gettempdir())
        self.DEMO_ROOT = self._get_optional(
            "DEMO_ROOT", os.path.join(os.getcwd(), "public", "demo")
        )
        self.DEPLOY_PROVIDER = self._get_optional("DEPLOY_PROVIDER", "local").lower()

        # Image pool Configuration
        self.IMAGE_STYLE = self._get_optional("IMAGE_STYLE", "clean-local")
        self.IMAGE_HERO_POOL_SIZE = self._get_int("IMAGE_HERO_POOL_SIZE", 50)
        self.IMAGE_SERVICE_POOL_SIZE = self._get_int("IMAGE_SERVICE_POOL_SIZE", 100)
        self.IMAGE_POOL_MAX_ENTRIES = self._get_int("IMAGE_POOL_MAX_ENTRIES", 32)

        # OpenAI Configuration
        self.OPENAI_API_KEY = self._get_optional("OPENAI_API_KEY")
        self.OPENAI_MODEL = self._get_optional("OPENAI_MODEL", "gpt-4o")
        self.OPENAI_IMAGE_MODEL = self._get_optional("OPENAI_IMAGE_MODEL", "dall-e-3")

        # Google Maps Configuration
        self.GOOGLE_MAPS_API_KEY = self._get_optional("GOOGLE_MAPS_API_KEY")

        # SendGrid Configuration
        self.SENDGRID_API_KEY = self._get_optional("SENDGRID_API_KEY")
        self.SENDGRID_FROM_EMAIL = self._get_optional("SENDGRID_FROM_EMAIL")
        self.SENDGRID_FROM_NAME = self._get_optional("SENDGRID_FROM_NAME")

        # Twilio Configuration
        self.TWILIO_ACCOUNT_SID = self._get_optional("TWILIO_ACCOUNT_SID")
        self.TWILIO_AUTH_TOKEN = self._get_optional("TWILIO_AUTH_TOKEN")
        self.TWILIO_PHONE_NUMBER = self._get_optional("TWILIO_PHONE_NUMBER")

        # Vercel Configuration
        self.VERCEL_TOKEN = self._get_optional("VERCEL_TOKEN")
        self.VERCEL_TEAM_ID = self._get_optional("VERCEL_TEAM_ID")
        self.VERCEL_SCOPE = self._get_optional("VERCEL_SCOPE")

        # API Server Configuration
        self.API_HOST = self._get_optional("API_HOST", "0.0.0.0")
        self.API_PORT = self._get_int("API_PORT", 3000)

    def _get_required(self, name: str, default: Optional[str] = None) -> str:
        """Get a required configuration value from environment variables.

        Args:
            name: The name of the environment variable.
            default: Optional default value if not found.

        Returns:
            The value of the environment variable or default if provided.

        Raises:
            ConfigError: If the environment variable is not found and no default provided.
        """
        if name in os.environ:
            return os.environ[name]
        if default is not None:
            self.logger.warning(
                "Environment variable %s not found, using default value", name
            )
            return default
        raise ConfigError(
            f"Required environment variable {name} not found and no default provided"
        )

    def _get_optional(self, name: str, default: str = "") -> str:
        """Get an optional configuration value from environment variables.

        Args:
            name: The name of the environment variable.
            default: Default value if not found (default: "").

        Returns:
            The value of the environment variable or the default value.
        """
        if name in os.environ:
            return os.environ[name]
        return default

    def _get_bool(self, name: str) -> bool:
        """Get a boolean configuration value from environment variables.

        Args:
            name: The name of the environment variable.

        Returns:
            True if the environment variable exists and is set to 'true' or '1'.
        """
        return name in os.environ and os.environ[name].lower() in ["true", "1"]

    def _get_int(self, name: str, default: int) -> int:
        """Get an integer configuration value.

        Raises:
            ConfigError: If the value is not a valid integer.
        """
        raw = self._get_optional(name, str(default))
        try:
            return int(raw)
        except ValueError as e:
            raise ConfigError(f"{name} must be an integer, got {raw!r}") from e

    def _get_float(self, name: str, default: float) -> float:
        """Get a float configuration value.

        Raises:
            ConfigError: If the value is not a valid number.
        """
        raw = self._get_optional(name, str(default))
        try:
            return float(raw)
        except ValueError as e:
            raise ConfigError(f"{name} must be a number, got {raw!r}") from e

    def concurrency_for(self, queue_name: str) -> int:
        """Get the worker concurrency for a stage queue.

        Args:
            queue_name: Queue name (scrape, enrich, site, image, deploy, email, call).

        Returns:
            Configured concurrency, at least 1.
        """
        return max(1, self.STAGE_CONCURRENCY.get(queue_name, DEFAULT_CONCURRENCY))

    def validate_for_database(self) -> None:
        """Validate configuration required for database operations.

        Raises:
            ConfigError: If the database URL is missing or unsupported.
        """
        if not self.DATABASE_URL:
            raise ConfigError("DATABASE_URL is required for database operations")
        if not self.DATABASE_URL.startswith(("postgresql", "sqlite")):
            raise ConfigError(
                "DATABASE_URL must be a postgresql:// or sqlite+aiosqlite:// URL"
            )

    def validate_for_queue(self) -> None:
        """Validate configuration required for the work queue.

        Raises:
            ConfigError: If the queue backend is unknown or misconfigured.
        """
        if self.QUEUE_BACKEND not in ("memory", "redis"):
            raise ConfigError(
                f"QUEUE_BACKEND must be 'memory' or 'redis', got {self.QUEUE_BACKEND!r}"
            )
        if self.QUEUE_BACKEND == "redis" and not self.REDIS_URL:
            raise ConfigError("REDIS_URL is required when QUEUE_BACKEND=redis")
        if self.JOB_ATTEMPTS < 1:
            raise ConfigError("JOB_ATTEMPTS must be at least 1")

    def validate_for_production(self) -> None:
        """Validate credentials needed by the production providers.

        Raises:
            ConfigError: If a production provider is missing credentials.
        """
        if not self.SENDGRID_API_KEY:
            raise ConfigError("SENDGRID_API_KEY is required for email delivery")
        if not self.SENDGRID_FROM_EMAIL:
            raise ConfigError("SENDGRID_FROM_EMAIL is required for email delivery")
        if not self.TWILIO_ACCOUNT_SID or not self.TWILIO_AUTH_TOKEN:
            raise ConfigError("Twilio credentials required for outbound calls")
        if not self.TWILIO_PHONE_NUMBER:
            raise ConfigError("TWILIO_PHONE_NUMBER is required for outbound calls")
        if not self.OPENAI_API_KEY:
            raise ConfigError("OPENAI_API_KEY is required for site copy and images")
        if self.SCRAPER_PROVIDER == "google_maps" and not self.GOOGLE_MAPS_API_KEY:
            raise ConfigError("GOOGLE_MAPS_API_KEY is required for google_maps listings")
        if self.DEPLOY_PROVIDER == "vercel" and not self.VERCEL_TOKEN:
            raise ConfigError("VERCEL_TOKEN is required for vercel deployments")

    def validate_all(self) -> None:
        """Validate all configuration for the selected environment.

        Raises:
            ConfigError: If any required configuration is missing.
        """
        self.validate_for_database()
        self.validate_for_queue()
        if self.is_production():
            self.validate_for_production()

    def get_database_connection_args(self) -> dict:
        """Get database connection arguments for SQLAlchemy.

        Returns:
            Dictionary of connection arguments.
        """
        return {
            "pool_size": self.DATABASE_POOL_SIZE,
            "max_overflow": self.DATABASE_MAX_OVERFLOW,
            "pool_pre_ping": True,
        }

    def is_production(self) -> bool:
        """Check if running in production environment.

        Returns:
            True if APP_ENV or ENV is 'prod' or 'production'.
        """
        return (
            self.APP_ENV.lower() in ["prod", "production"]
            or self.ENV.lower() in ["prod", "production"]
        )

    def is_development(self) -> bool:
        """Check if running in development environment.

        Returns:
            True if APP_ENV is 'dev' or 'development'.
        """
        return self.APP_ENV.lower() in ["dev", "development"]

    def get_log_level(self) -> str:
        """Log level name, forced to DEBUG when ``DEBUG`` is set."""
        return "DEBUG" if self.DEBUG else self.LOG_LEVEL.upper()

    def structured_logs(self) -> bool:
        """Whether logs are JSON lines.

        ``LOG_STRUCTURED`` wins when set; otherwise JSON is used everywhere
        except development.
        """
        if self.LOG_STRUCTURED:
            return self.LOG_STRUCTURED.lower() in ("true", "1", "yes")
        return not self.is_development()


# Create global singleton instance
config = Config()
