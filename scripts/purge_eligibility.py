#!/usr/bin/env python3
"""Eligibility Purge — zero every employee's eligibility.

Sets eligibility to 0 for all categories, restores default cycle durations
(6/6/6/12 months) and clears reset dates. Orders are left untouched.

Usage:
    python scripts/purge_eligibility.py            # countdown, then purge
    python scripts/purge_eligibility.py --dry-run  # report only, roll back
    python scripts/purge_eligibility.py --yes      # skip the countdown
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
logger = logging.getLogger("purge_eligibility")

import backend.models  # noqa: E402,F401
from backend.config import settings  # noqa: E402
from backend.database import engine, session_scope  # noqa: E402
from backend.eligibility.schemas import BatchResultOut  # noqa: E402
from backend.eligibility.service import EligibilityService  # noqa: E402


async def run(dry_run: bool) -> BatchResultOut:
    async with session_scope(dry_run=dry_run) as db:
        result = await EligibilityService.purge_all_eligibility(
            db, dry_run=dry_run, actor="purge_eligibility.py",
        )
    await engine.dispose()
    return result


def main() -> None:
    parser = argparse.ArgumentParser(description="Zero all employee eligibility")
    parser.add_argument("--dry-run", action="store_true", help="Compute and roll back")
    parser.add_argument("--yes", action="store_true", help="Skip the confirmation countdown")
    args = parser.parse_args()

    if not args.yes and not args.dry_run:
        print("\n⚠️  This will set eligibility to 0 for EVERY employee.")
        try:
            for remaining in range(settings.RESET_CONFIRM_DELAY_SECONDS, 0, -1):
                print(f"   Starting in {remaining}s… (Ctrl+C to cancel)", end="\r", flush=True)
                time.sleep(1)
        except KeyboardInterrupt:
            print("\n❌ Cancelled — nothing was changed.")
            sys.exit(130)
        print()

    result = asyncio.run(run(dry_run=args.dry_run))
    logger.info(
        "Purge %scomplete: %d employees processed, %d updated",
        "(dry run) " if result.dry_run else "", result.processed, result.updated,
    )


if __name__ == "__main__":
    main()
