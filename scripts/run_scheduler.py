#!/usr/bin/env python3
"""Run the publish scheduler from cron or a systemd timer.

Each tick sweeps expired OAuth states, reclaims stale jobs, enqueues due
schedules and runs every due job.

Usage:
    python scripts/run_scheduler.py
    python scripts/run_scheduler.py --loop --interval 60

Environment:
    DATABASE_URL, TOKEN_ENCRYPTION_KEY and the platform credentials
    (FACEBOOK_CLIENT_ID, LINKEDIN_CLIENT_ID, ...) as for the API.
"""

import argparse
import asyncio
import json
import os
import sys

# Ensure we can import from the project
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from socialsync.config import load_settings
from socialsync.db.engine import get_session
from socialsync.logging import get_logger
from socialsync.platforms import AdapterRegistry
from socialsync.publishing import PublishScheduler

logger = get_logger("run_scheduler")


async def run_tick(registry: AdapterRegistry, limit: int | None) -> dict:
    with get_session() as session:
        scheduler = PublishScheduler(session, registry.settings, registry)
        report = await scheduler.tick(limit=limit)
    return report.to_dict()


async def run(loop: bool, interval: float, limit: int | None) -> None:
    registry = AdapterRegistry(load_settings())
    while True:
        report = await run_tick(registry, limit)
        print(json.dumps(report, indent=2))
        if not loop:
            return
        await asyncio.sleep(interval)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the publish scheduler")
    parser.add_argument("--loop", action="store_true", help="Keep ticking until interrupted")
    parser.add_argument(
        "--interval", type=float, default=60.0, help="Seconds between ticks with --loop"
    )
    parser.add_argument("--limit", type=int, default=None, help="Max jobs to run per tick")
    args = parser.parse_args()

    try:
        asyncio.run(run(args.loop, args.interval, args.limit))
    except KeyboardInterrupt:
        logger.info("scheduler_stopped")


if __name__ == "__main__":
    main()
