"""Application logging: JSON lines in production, plain text in development."""

import logging
import sys

from pythonjsonlogger import jsonlogger

from src.core.config import settings


class BillingJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps level, logger and environment on every record."""

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["environment"] = settings.app_env
        if hasattr(record, "trace_id"):
            log_record["trace_id"] = record.trace_id


def setup_logging() -> None:
    """Configure the root logger once (API startup and scripts)."""
    root_logger = logging.getLogger()
    if any(getattr(h, "_school_billing", False) for h in root_logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        formatter: logging.Formatter = BillingJsonFormatter(
            fmt="%(asctime)s %(level)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    handler.setFormatter(formatter)
    handler._school_billing = True  # type: ignore[attr-defined]

    root_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
