#!/usr/bin/env python3
"""Eligibility Renewal — scheduled cron entry point.

Designed to run once a day:
    15 2 * * *

For each active employee and each category, restores the remaining quantity
to the aggregated entitlement when the category's cycle has rolled over since
its last reset stamp. Running it twice in the same cycle changes nothing.

Usage:
    python scripts/renew_eligibility.py
    python scripts/renew_eligibility.py --dry-run
    python scripts/renew_eligibility.py --as-of 2026-04-01T00:00:00+00:00
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

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
logger = logging.getLogger("renew_eligibility")

import backend.models  # noqa: E402,F401
from backend.database import engine, session_scope  # noqa: E402
from backend.eligibility.renewal import RenewalService, RenewalSummary  # noqa: E402


async def run(now: Optional[datetime], dry_run: bool) -> RenewalSummary:
    async with session_scope(dry_run=dry_run) as db:
        summary = await RenewalService.run_scheduled_renewal(db, now, dry_run=dry_run)
    await engine.dispose()
    return summary


def main() -> None:
    parser = argparse.ArgumentParser(description="Renew eligibility for due categories")
    parser.add_argument("--dry-run", action="store_true", help="Compute and roll back")
    parser.add_argument(
        "--as-of", type=datetime.fromisoformat, default=None,
        help="Evaluate cycles at this ISO timestamp instead of now",
    )
    args = parser.parse_args()

    now = args.as_of
    if now is not None and now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    summary = asyncio.run(run(now, dry_run=args.dry_run))
    print(
        f"  ✅ {summary.processed} employees checked, "
        f"{summary.renewed_employees} renewed ({summary.renewed_categories} categories), "
        f"{summary.skipped} skipped"
    )


if __name__ == "__main__":
    main()
