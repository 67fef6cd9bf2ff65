#!/usr/bin/env python3
"""
Residency Desk — Recurring problem detection job

Runs one detection pass and alerts the committee. Meant to be invoked by
cron (or a Kubernetes CronJob) once a day:

    0 7 * * *  python scripts/run-recurring-detection.py

Usage:
    python scripts/run-recurring-detection.py
    python scripts/run-recurring-detection.py --window-months 6 --dry-run
"""

import argparse
import asyncio
import json
import logging

import config
from database import close_db, get_db_context
from dispatch import build_dispatcher
from geocoding import NominatimGeocoder
from recurring import RecurringProblemDetector
from store import SqlRecordStore

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("residency-desk.jobs")


async def run(window_months: int, notify: bool) -> int:
    async with get_db_context() as db:
        store = SqlRecordStore(db)
        detector = RecurringProblemDetector(store, store, build_dispatcher(db), NominatimGeocoder())
        groups = await detector.detect_recurring_problems(window_months, notify=notify)

    failed = [d for d in detector.last_deliveries if not d.success and not d.skipped]
    logger.info(
        f"Detection finished: {len(groups)} recurring problems, "
        f"{len(detector.last_deliveries) - len(failed)} alerts delivered, {len(failed)} failed"
    )
    for group in groups:
        print(json.dumps(group.to_dict(), default=str))
    await close_db()
    return 1 if failed else 0


def main():
    parser = argparse.ArgumentParser(description="Residency Desk recurring problem detection")
    parser.add_argument("--window-months", type=int, default=config.RECURRING_WINDOW_MONTHS)
    parser.add_argument("--dry-run", action="store_true", help="Detect only; send no alerts")
    args = parser.parse_args()
    raise SystemExit(asyncio.run(run(args.window_months, notify=not args.dry_run)))


if __name__ == "__main__":
    main()
