#!/usr/bin/env python3
"""Integrity Check — report broken references and eligibility drift.

Designed to run nightly after the renewal job:
    45 2 * * *

Usage:
    python scripts/check_integrity.py          # human-readable report
    python scripts/check_integrity.py --json   # machine-readable output

Exit codes:
    0 = no issues
    1 = one or more issues found
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
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
logger = logging.getLogger("check_integrity")

import backend.models  # noqa: E402,F401
from backend.database import engine, session_scope  # noqa: E402
from backend.eligibility.integrity import IntegrityChecker, IntegrityReport  # noqa: E402


async def run() -> IntegrityReport:
    async with session_scope(dry_run=True) as db:
        report = await IntegrityChecker().run(db)
    await engine.dispose()
    return report


def main() -> None:
    parser = argparse.ArgumentParser(description="Check eligibility data integrity")
    parser.add_argument("--json", action="store_true", help="Output JSON")
    args = parser.parse_args()

    report = asyncio.run(run())

    if args.json:
        print(json.dumps(
            {
                "ok": report.ok,
                "counts": report.counts(),
                "issues": [
                    {
                        "check": i.check,
                        "entity_type": i.entity_type,
                        "entity_id": str(i.entity_id) if i.entity_id else None,
                        "detail": i.detail,
                    }
                    for i in report.issues
                ],
            },
            indent=2,
        ))
    else:
        for issue in report.issues:
            print(f"  ❌ {issue.check:<28} {issue.entity_type}:{issue.entity_id}  {issue.detail}")
        if report.ok:
            print("  ✅ No integrity issues found")
        else:
            print(f"\n  {len(report.issues)} issue(s): {report.counts()}")

    sys.exit(0 if report.ok else 1)


if __name__ == "__main__":
    main()
