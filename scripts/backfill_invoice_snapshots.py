#!/usr/bin/env python3
"""
Fill the party snapshot of invoices created before snapshots existed.

Safe + idempotent: only invoices with an empty snapshot are touched, so the
script can be re-run until nothing is left. Party data is taken from the
invoice's current relations.

Usage:
  python3 scripts/backfill_invoice_snapshots.py --dry-run
  python3 scripts/backfill_invoice_snapshots.py --confirm --batch-size 200
"""

import asyncio
import sys
from pathlib import Path

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.core.config import settings
from src.core.database.session import async_session
from src.core.logging import setup_logging
from src.modules.invoices.service import InvoiceService


async def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Backfill invoice party snapshots")
    parser.add_argument("--dry-run", action="store_true", help="Only count invoices without snapshot")
    parser.add_argument("--confirm", action="store_true", help="Write snapshots (COMMIT)")
    parser.add_argument("--batch-size", type=int, default=settings.billing_batch_size, help="Invoices per page")
    args = parser.parse_args()

    if not args.dry_run and not args.confirm:
        print("❌ ERROR: specify --dry-run or --confirm")
        sys.exit(1)
    if args.dry_run and args.confirm:
        print("❌ ERROR: choose only one of --dry-run / --confirm")
        sys.exit(1)

    setup_logging()
    print("\n" + "=" * 70)
    print("BACKFILL INVOICE SNAPSHOTS")
    print("=" * 70)
    print(f"\n🌍 Environment: {settings.app_env}")
    print(f"🔧 Mode: {'DRY-RUN' if args.dry_run else 'APPLY (COMMIT)'}")

    async with async_session() as session:
        result = await InvoiceService(session).backfill_snapshots(
            batch_size=args.batch_size, dry_run=args.dry_run
        )

    print(f"\n🔎 Invoices without snapshot: {result.scanned}")
    if not args.dry_run:
        print(f"✅ Updated: {result.updated}")
        if result.failed:
            print(f"❌ Failed: {result.failed}")
            for error in result.errors[:20]:
                print(f"  - {error}")
            sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
