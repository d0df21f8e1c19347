# logging_utils.py
"""Structured logging utilities for the outreach pipeline."""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, MutableMapping, Optional


# LogRecord attributes that are not user-supplied extras
_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName",
}


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per log record."""

    def __init__(
        self,
        service_name: str = "outreach",
        include_timestamp: bool = True,
        include_extra: bool = True,
    ):
        """Initialize the structured formatter.

        Args:
            service_name: Name of the service to include in logs
            include_timestamp: Whether to include timestamp in output
            include_extra: Whether to include extra fields from log record
        """
        super().__init__()
        self.service_name = service_name
        self.include_timestamp = include_timestamp
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as a JSON string.

        Args:
            record: The log record to format

        Returns:
            JSON-formatted log string
        """
        log_data: Dict[str, Any] = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "service": self.service_name,
        }

        if self.include_timestamp:
            log_data["timestamp"] = datetime.now(timezone.utc).isoformat()

        log_data["source"] = {
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_extra:
            extra_fields = {}
            for key, value in record.__dict__.items():
                if key in _STANDARD_ATTRS or key.startswith("_"):
                    continue
                try:
                    json.dumps(value)
                    extra_fields[key] = value
                except (TypeError, ValueError):
                    extra_fields[key] = str(value)

            if extra_fields:
                log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable formatter for development environments."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname
        message = record.getMessage()

        if self.use_colors:
            color = self.COLORS.get(level, "")
            level_str = f"{color}{level:8}{self.RESET}"
        else:
            level_str = f"{level:8}"

        formatted = f"[{timestamp}] {level_str} [{record.name}] {message}"

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


def setup_logging(
    level: Optional[str] = None,
    structured: Optional[bool] = None,
    service_name: str = "outreach",
) -> logging.Logger:
    """Set up logging configuration for the outreach pipeline.

    Configures the root logger and returns the ``outreach`` package logger.
    Structured (JSON) output is used outside development, human-readable
    output in development.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to LOG_LEVEL env var or INFO.
        structured: Whether to use structured JSON logging.
                   Defaults to LOG_STRUCTURED, else True when APP_ENV != 'dev'.
        service_name: Service name to include in structured logs.

    Returns:
        Logger instance for the outreach package

    Example:
        >>> logger = setup_logging(level="DEBUG", structured=False)
        >>> logger.info("Starting workers")
    """
    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO")
    level = level.upper()

    log_level = getattr(logging, level, logging.INFO)

    if structured is None:
        forced = os.environ.get("LOG_STRUCTURED", "")
        if forced:
            structured = forced.lower() in ["true", "1"]
        else:
            structured = os.environ.get("APP_ENV", "dev") != "dev"

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    if structured:
        formatter: logging.Formatter = StructuredFormatter(service_name=service_name)
    else:
        formatter = HumanReadableFormatter(use_colors=True)

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    _configure_third_party_loggers(log_level)

    logger = logging.getLogger("outreach")
    logger.info(
        "Logging initialized",
        extra={
            "log_level": level,
            "structured": structured,
            "service": service_name,
        },
    )

    return logger


def _configure_third_party_loggers(log_level: int) -> None:
    """Quiet noisy third-party loggers unless running at DEBUG."""
    noisy_loggers = [
        "httpx",
        "httpcore",
        "urllib3",
        "sqlalchemy.engine",
        "twilio.http_client",
        "openai",
        "uvicorn.access",
    ]

    third_party_level = logging.WARNING if log_level > logging.DEBUG else log_level

    for logger_name in noisy_loggers:
        logging.getLogger(logger_name).setLevel(third_party_level)


class StageLogger(logging.LoggerAdapter):
    """Logger adapter that tags messages with campaign, lead and worker.

    Every message is prefixed ``[campaignId][leadId][worker]`` and the same
    identifiers are attached as extra fields for the JSON formatter.

    Example:
        >>> log = StageLogger(logging.getLogger(__name__), "emailer", "c1", "l1")
        >>> log.info("step %d sent", 1)
        # [c1][l1][emailer] step 1 sent
    """

    def __init__(
        self,
        logger: logging.Logger,
        worker_name: str,
        campaign_id: Optional[str] = None,
        lead_id: Optional[str] = None,
    ):
        super().__init__(logger, {})
        self.worker_name = worker_name
        self.campaign_id = campaign_id or "-"
        self.lead_id = lead_id or "-"

    def bind(
        self,
        campaign_id: Optional[str] = None,
        lead_id: Optional[str] = None,
    ) -> "StageLogger":
        """Return a copy of this adapter with updated identifiers."""
        return StageLogger(
            self.logger,
            self.worker_name,
            campaign_id or self.campaign_id,
            lead_id or self.lead_id,
        )

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("campaign_id", self.campaign_id)
        extra.setdefault("lead_id", self.lead_id)
        extra.setdefault("worker", self.worker_name)
        kwargs["extra"] = extra
        prefix = f"[{self.campaign_id}][{self.lead_id}][{self.worker_name}]"
        return f"{prefix} {msg}", kwargs
