#!/usr/bin/env python3
"""
Run the periodic notification checks once. Meant for cron, e.g.

    0 * * * * cd /app/backend && python run_automation.py
"""
import argparse
import logging
import os
import sys
from datetime import datetime

from database import SessionLocal, engine, Base
import models  # noqa: F401
from utils.dates import to_naive_utc
from utils.notifications import NotificationAutomation

logger = logging.getLogger("run_automation")

CHECKS = ("expiring_subscriptions", "overdue_payments", "password_rotation")


def parse_now(value: str) -> datetime:
    """ISO 8601 timestamp; offsets are converted to naive UTC."""
    return to_naive_utc(datetime.fromisoformat(value))


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run Dividee notification automation")
    parser.add_argument(
        "--check",
        choices=CHECKS,
        help="Run a single check instead of all of them"
    )
    parser.add_argument(
        "--now",
        type=parse_now,
        help="Reference time (ISO 8601; naive values are read as UTC) instead of the current time"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        automation = NotificationAutomation(db)
        if args.check:
            results = {args.check: getattr(automation, f"check_{args.check}")(args.now)}
        else:
            results = automation.run_all_checks(args.now)
    finally:
        db.close()

    for name, count in results.items():
        print(f"{name}: {count}")

    failed = [name for name, count in results.items() if count < 0]
    if failed:
        logger.error(f"Failed checks: {', '.join(failed)}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
