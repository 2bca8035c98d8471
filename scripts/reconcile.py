#!/usr/bin/env python3
"""Intent Reconciliation Script.

Replays pending reconciliation records onto their intents and lists intents
stuck in a non-terminal state. Run after a database outage, or whenever an
operator has been alerted that an intent requires reconciliation.

Usage:
    python scripts/reconcile.py [--limit 10] [--dry-run] [--stuck-minutes 30]

Options:
    --limit          Records per batch (default: 10)
    --all            Keep processing batches until none remain
    --dry-run        Show what would be done without making changes
    --stuck-minutes  Report non-terminal intents idle this long
"""

import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv

from swaprelay.ledger.database import close_db, init_db
from swaprelay.ledger.models import IntentStatus
from swaprelay.services.reconciliation import Reconciler

load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def main():
    parser = argparse.ArgumentParser(description="Intent Reconciliation")
    parser.add_argument("--limit", type=int, default=10, help="Records per batch")
    parser.add_argument("--all", action="store_true", help="Process batches until none remain")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be done")
    parser.add_argument("--stuck-minutes", type=int, default=30, help="Idle time for stuck intents")

    args = parser.parse_args()

    # Initialize database
    await init_db()

    logger.info("=" * 60)
    logger.info("INTENT RECONCILIATION")
    logger.info("=" * 60)

    if args.dry_run:
        logger.info("DRY RUN MODE - No changes will be made")

    reconciler = Reconciler()
    reconciled = failed = 0

    while True:
        report = await reconciler.run_once(limit=args.limit, dry_run=args.dry_run)
        reconciled += report.reconciled
        failed += report.failed
        for error in report.errors:
            logger.error(f"  record {error['record_id']} (intent {error['intent_id']}): {error['error']}")

        # Failed records stay pending, so stop once a batch makes no progress
        if not args.all or args.dry_run or report.reconciled == 0:
            break

    stuck = await reconciler.find_stuck_intents(timedelta(minutes=args.stuck_minutes))

    # Summary
    logger.info("=" * 60)
    logger.info("SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Reconciled: {reconciled}")
    logger.info(f"Failed:     {failed}")
    logger.info(f"Stuck:      {len(stuck)}")
    for intent in stuck:
        logger.info(
            f"  {intent.id}: {IntentStatus(intent.status).value} since {intent.updated_at} "
            f"({intent.input_amount} {intent.input_asset})"
        )

    await close_db()
    return failed


if __name__ == "__main__":
    sys.exit(1 if asyncio.run(main()) else 0)
