#!/usr/bin/env python3
"""Eligibility Reset — delete all orders and recompute every employee's eligibility.

DESTRUCTIVE. For every active employee with a designation:
  - aggregate the matching designation rules (exact gender, then unisex)
  - set eligibility + cycle durations to the aggregated entitlement
  - clear eligibility reset dates

Usage:
    python scripts/reset_eligibility.py               # countdown, then reset
    python scripts/reset_eligibility.py --dry-run     # report only, roll back
    python scripts/reset_eligibility.py --keep-orders # recompute without deleting orders
    python scripts/reset_eligibility.py --yes         # skip the countdown (cron)

Press Ctrl+C during the countdown to cancel.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import time
from pathlib import Path

# ── Path setup ────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv

load_dotenv(PROJECT_ROOT / ".env")

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "info").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("reset_eligibility")

import backend.models  # noqa: E402,F401
from backend.config import settings  # noqa: E402
from backend.database import engine, session_scope  # noqa: E402
from backend.eligibility.schemas import BatchResultOut  # noqa: E402
from backend.eligibility.service import EligibilityService  # noqa: E402


def countdown(seconds: int) -> None:
    """Give the operator a window to abort with Ctrl+C."""
    print(f"\n⚠️  This will DELETE ALL ORDERS and reset eligibility for every employee.")
    for remaining in range(seconds, 0, -1):
        print(f"   Starting in {remaining}s… (Ctrl+C to cancel)", end="\r", flush=True)
        time.sleep(1)
    print()


async def run(purge_orders: bool, dry_run: bool) -> BatchResultOut:
    async with session_scope(dry_run=dry_run) as db:
        result = await EligibilityService.reset_all_eligibility(
            db, purge_orders=purge_orders, dry_run=dry_run, actor="reset_eligibility.py",
        )
    await engine.dispose()
    return result


def main() -> None:
    parser = argparse.ArgumentParser(description="Reset all employee eligibility")
    parser.add_argument("--dry-run", action="store_true", help="Compute and roll back")
    parser.add_argument("--keep-orders", action="store_true", help="Do not delete orders")
    parser.add_argument("--yes", action="store_true", help="Skip the confirmation countdown")
    args = parser.parse_args()

    if not args.yes and not args.dry_run:
        try:
            countdown(settings.RESET_CONFIRM_DELAY_SECONDS)
        except KeyboardInterrupt:
            print("\n❌ Cancelled — nothing was changed.")
            sys.exit(130)

    start_time = time.time()
    result = asyncio.run(run(purge_orders=not args.keep_orders, dry_run=args.dry_run))
    elapsed = time.time() - start_time

    print(f"""
{'=' * 60}
  ELIGIBILITY RESET {'(DRY RUN) ' if result.dry_run else ''}— {elapsed:.1f}s elapsed
  Orders deleted : {result.orders_deleted}
  Processed      : {result.processed}
  Updated        : {result.updated}
  Defaulted      : {result.defaulted} (no matching rule)
  Skipped        : {result.skipped} (no designation)
{'=' * 60}
""")


if __name__ == "__main__":
    main()
