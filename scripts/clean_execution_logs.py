#!/usr/bin/env python3
"""
Delete execution log entries older than N days (default EXECUTION_LOG_RETENTION_DAYS).

Usage:
  python3 scripts/clean_execution_logs.py
  python3 scripts/clean_execution_logs.py --days 30
"""

import asyncio
import sys
from pathlib import Path

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.core.audit.service import clean_old_execution_logs
from src.core.config import settings
from src.core.database.session import async_session
from src.core.logging import setup_logging


async def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Clean old execution log entries")
    parser.add_argument(
        "--days",
        type=int,
        default=settings.execution_log_retention_days,
        help="Keep entries newer than this many days",
    )
    args = parser.parse_args()
    if args.days < 1:
        print("❌ ERROR: --days must be at least 1")
        sys.exit(1)

    setup_logging()
    async with async_session() as session:
        deleted = await clean_old_execution_logs(session, days_to_keep=args.days)
        await session.commit()
    print(f"✅ Deleted {deleted} execution log entries older than {args.days} days")


if __name__ == "__main__":
    asyncio.run(main())
