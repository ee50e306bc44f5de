#!/usr/bin/env python3
"""
One-off light command cleanup.
Runs a single janitor sweep against the configured command queues,
e.g. from cron when the API server is not running.
"""

import argparse
import asyncio
import sys

from lightrelay.core.config import settings
from lightrelay.db.database import SessionLocal, create_tables
from lightrelay.services.command_queue import DocumentCommandQueue, RealtimeCommandQueue
from lightrelay.services.queue_janitor import QueueJanitor


async def run_cleanup(older_than_hours: float, realtime_max_age: float, skip_realtime: bool) -> bool:
    create_tables()
    buffered = DocumentCommandQueue(SessionLocal, timeout=settings.STORE_TIMEOUT_SECONDS)
    realtime = None if skip_realtime else RealtimeCommandQueue.from_settings(settings)

    janitor = QueueJanitor(
        buffered,
        realtime,
        retention_hours=older_than_hours,
        realtime_max_age_seconds=realtime_max_age,
    )

    print(f"🧹 Cleaning up light commands (retention: {older_than_hours}h)")
    try:
        reports = await janitor.sweep_now()
    finally:
        if realtime is not None:
            await realtime.close()

    ok = True
    for name, report in reports.items():
        if report.complete:
            print(f"   ✓ {name}: {report.deleted} commands deleted")
        else:
            ok = False
            print(f"   ⚠️  {name}: {report.deleted} deleted, {report.failed} left ({report.error})")

    return ok


def main():
    parser = argparse.ArgumentParser(description="Delete resolved and stale light commands")
    parser.add_argument("--older-than-hours", type=float, default=settings.COMMAND_RETENTION_HOURS,
                        help="Age after which completed/failed buffered commands are deleted")
    parser.add_argument("--realtime-max-age", type=float, default=settings.REALTIME_MAX_AGE_SECONDS,
                        help="Age in seconds after which any realtime command is deleted")
    parser.add_argument("--skip-realtime", action="store_true",
                        help="Only sweep the buffered queue")
    args = parser.parse_args()

    ok = asyncio.run(run_cleanup(args.older_than_hours, args.realtime_max_age, args.skip_realtime))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
