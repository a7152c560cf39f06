import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.models import ExecutionLog

logger = logging.getLogger(__name__)


class ExecutionLevel(StrEnum):
    """Execution log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class ExecutionEvent(StrEnum):
    """Standard execution event types."""

    BILLING_RUN = "billing_run"
    BILLING_RUN_SUMMARY = "billing_run_summary"
    INVOICE_CREATED = "invoice_created"
    INVOICE_FAILED = "invoice_failed"
    SIMULATION_GENERATE = "simulation_generate_year"
    SIMULATION_CLEANUP = "simulation_cleanup"
    SNAPSHOT_BACKFILL = "snapshot_backfill"
    SEPA_BATCH = "sepa_batch"
    BACKUP = "backup"
    RESTORE = "restore"
    LOG_CLEANUP = "execution_log_cleanup"


_PY_LEVELS = {
    ExecutionLevel.DEBUG: logging.DEBUG,
    ExecutionLevel.INFO: logging.INFO,
    ExecutionLevel.WARN: logging.WARNING,
    ExecutionLevel.ERROR: logging.ERROR,
}


def new_trace_id(prefix: str = "cron") -> str:
    """Trace id shared by every entry of one run: ``cron-<epoch ms>-<random>``."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


async def log_execution(
    session: AsyncSession,
    *,
    title: str,
    message: str | None = None,
    event_type: str | ExecutionEvent = ExecutionEvent.BILLING_RUN,
    level: str | ExecutionLevel = ExecutionLevel.INFO,
    module: str = "cron",
    trace_id: str | None = None,
    status_code: int | None = None,
    duration_ms: int | None = None,
    user_id: str = "system",
    payload: dict[str, Any] | None = None,
) -> ExecutionLog | None:
    """
    Append an execution log entry and mirror it to the application logger.

    Writing the trail must never abort the operation being logged: on a
    database error the entry is dropped (logged to stderr), the session is
    rolled back and None is returned. Call it at a transaction boundary
    (right after a commit) so that rollback only discards the entry itself.

    The caller commits.
    """
    level = ExecutionLevel(str(level))
    logger.log(
        _PY_LEVELS[level],
        "%s: %s",
        title,
        message or "",
        extra={"trace_id": trace_id} if trace_id else None,
    )
    entry = ExecutionLog(
        trace_id=trace_id or new_trace_id(module),
        title=title[:255],
        message=message,
        module=module,
        event_type=str(event_type),
        level=str(level),
        status_code=status_code,
        duration_ms=duration_ms,
        user_id=user_id,
        payload=payload,
    )
    try:
        session.add(entry)
        await session.flush()
    except SQLAlchemyError:
        logger.exception("Could not write execution log entry %r", title)
        await session.rollback()
        return None
    return entry


async def list_execution_logs(
    session: AsyncSession,
    *,
    module: str | None = None,
    event_type: str | None = None,
    level: str | None = None,
    trace_id: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[ExecutionLog], int]:
    """
    List execution log entries, newest first.
    Returns (entries, total_count).
    """
    q = select(ExecutionLog).order_by(ExecutionLog.created_at.desc(), ExecutionLog.id.desc())
    count_q = select(func.count()).select_from(ExecutionLog)
    filters = []
    if module is not None:
        filters.append(ExecutionLog.module == module)
    if event_type is not None:
        filters.append(ExecutionLog.event_type == event_type)
    if level is not None:
        filters.append(ExecutionLog.level == level)
    if trace_id is not None:
        filters.append(ExecutionLog.trace_id == trace_id)
    if date_from is not None:
        filters.append(ExecutionLog.created_at >= date_from)
    if date_to is not None:
        filters.append(ExecutionLog.created_at <= date_to)
    if filters:
        q = q.where(*filters)
        count_q = count_q.where(*filters)

    total = (await session.execute(count_q)).scalar_one()
    result = await session.execute(q.offset((page - 1) * limit).limit(limit))
    return list(result.scalars().all()), total


async def clean_old_execution_logs(
    session: AsyncSession,
    days_to_keep: int = 90,
    now: datetime | None = None,
) -> int:
    """Delete entries older than ``days_to_keep`` days. Returns deleted count."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=days_to_keep)
    result = await session.execute(delete(ExecutionLog).where(ExecutionLog.created_at < cutoff))
    deleted = result.rowcount or 0
    await log_execution(
        session,
        title="Execution log cleanup",
        message=f"Deleted {deleted} entries older than {days_to_keep} days",
        event_type=ExecutionEvent.LOG_CLEANUP,
        level=ExecutionLevel.INFO if deleted else ExecutionLevel.DEBUG,
        payload={"days_to_keep": days_to_keep, "deleted": deleted},
    )
    return deleted
