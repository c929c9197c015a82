"""Expired course access cleanup.

Run periodically (cron) via the ``course-cleanup`` console script::

    course-cleanup                   # purge expired entitlements
    course-cleanup --migrate-legacy  # convert slug lists first, then purge
"""

import argparse
import asyncio
import json
import logging

import config
from access import cleanup_expired_entitlements, migrate_legacy_entitlements
from database import connect

logger = logging.getLogger(__name__)


async def run(migrate_legacy: bool = False, db=None) -> dict:
    db = db if db is not None else connect()
    summary = {}
    if migrate_legacy:
        summary["migration"] = await migrate_legacy_entitlements(db)
    summary["cleanup"] = await cleanup_expired_entitlements(db)
    return summary


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Purge expired course entitlements")
    parser.add_argument(
        "--migrate-legacy",
        action="store_true",
        help="Convert legacy slug-list purchases into entitlements before cleaning up",
    )
    args = parser.parse_args(argv)

    config.configure_logging(config.LOG_LEVEL)
    logger.info("Starting expired course cleanup on %s", config.DATABASE_NAME)
    try:
        summary = asyncio.run(run(migrate_legacy=args.migrate_legacy))
    except Exception:
        logger.exception("Cleanup failed")
        return 1
    print(json.dumps(summary, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
