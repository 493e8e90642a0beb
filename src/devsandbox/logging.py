"""Logging configuration for dev-sandbox.

Supports two formats:
- text: Human-readable for interactive shells
- json: Structured logging for tooling built on top

Logs go to stderr so that stdout stays reserved for command output
(`list`, `status`, `env`).
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any

from pythonjsonlogger import json as jsonlogger

from devsandbox.config import LoggingConfig


class SandboxJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with standard fields.

    Adds:
    - timestamp: ISO 8601 format with timezone
    - level: Log level name
    - logger: Logger name
    - pid: Process ID
    """

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(
            record.created, tz=timezone.utc
        ).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["pid"] = record.process

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        log_record.pop("levelname", None)
        log_record.pop("name", None)


def setup_logging(config: LoggingConfig) -> None:
    """Configure logging for the CLI.

    Args:
        config: Logging configuration settings.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)

    formatter: logging.Formatter
    if config.format == "json":
        formatter = SandboxJsonFormatter()
    else:
        formatter = logging.Formatter("%(levelname)s: %(message)s")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
