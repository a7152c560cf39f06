#!/usr/bin/env python3
"""
Run recurring billing from cron / a scheduler.

By default it only bills when the configured schedule says the run is due
(BILLING_DAY / BILLING_HOUR / BILLING_MINUTE in BILLING_TIMEZONE), using the
last execution recorded in the execution log. ``--force`` bills right away.

Usage:
  python3 scripts/run_billing.py
  python3 scripts/run_billing.py --force --mode enrollments
  python3 scripts/run_billing.py --force --now 2024-03-25T05:00:00
"""

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import select

from src.core.audit.models import ExecutionLog
from src.core.audit.service import ExecutionEvent
from src.core.config import settings
from src.core.database.session import async_session
from src.core.exceptions import ConflictError
from src.core.logging import setup_logging
from src.modules.billing.config import BillingConfig
from src.modules.billing.schemas import BillingMode
from src.modules.billing.service import BillingService

logger = logging.getLogger("scripts.run_billing")


async def _last_execution(session) -> datetime | None:
    """Time of the last finished run (its summary entry)."""
    result = await session.execute(
        select(ExecutionLog.created_at)
        .where(ExecutionLog.event_type == ExecutionEvent.BILLING_RUN_SUMMARY.value)
        .order_by(ExecutionLog.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def main() -> int:
    import argparse

    parser = argparse.ArgumentParser(description="Run recurring billing")
    parser.add_argument("--force", action="store_true", help="Bill now, ignoring the schedule")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in BillingMode],
        default=BillingMode.ALL.value,
        help="What to bill",
    )
    parser.add_argument("--now", type=datetime.fromisoformat, default=None, help="Override the current time (ISO)")
    args = parser.parse_args()

    setup_logging()
    logger.info("Billing run requested (env=%s, force=%s, mode=%s)", settings.app_env, args.force, args.mode)

    async with async_session() as session:
        config = BillingConfig.from_settings(last_execution=await _last_execution(session))
        service = BillingService(session)
        try:
            if args.force:
                result = await service.run(now=args.now, mode=BillingMode(args.mode), config=config)
            else:
                result = await service.run_scheduled(now=args.now, mode=BillingMode(args.mode), config=config)
        except ConflictError as e:
            logger.warning("Billing run not started: %s", e.message)
            return 2

    if not result.ran:
        logger.info("Nothing to do: %s (next: %s)", result.reason, result.next_execution)
        return 0
    logger.info(
        "Billing finished: created=%d skipped=%d errors=%d next=%s",
        result.created,
        result.skipped,
        len(result.errors),
        result.next_execution,
    )
    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
