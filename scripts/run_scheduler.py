#!/usr/bin/env python3
"""
Run the automation scheduler (time_elapsed / inactivity triggers + health sweep).

Usage:
    python scripts/run_scheduler.py                 # tick every SCHEDULER_INTERVAL_SECONDS
    python scripts/run_scheduler.py --interval 60   # tick every minute
    python scripts/run_scheduler.py --once          # single tick, e.g. from cron

Requires: DATABASE_URL set (or defaults to sqlite:///local.db). Redis is used
to deduplicate events; without it every tick re-emits.
"""
import sys
import os
import argparse
import signal
import threading

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import SCHEDULER_INTERVAL_SECONDS
from app.database import import_models
from app.extensions import redis_client
from app.logging_config import configure_logging
from app.automation.engine import get_engine
from app.automation.scheduler import AutomationScheduler


def main(argv=None):
    parser = argparse.ArgumentParser(description='Run the pipeline automation scheduler')
    parser.add_argument('--once', action='store_true', help='Run a single tick and exit')
    parser.add_argument('--interval', type=int, default=SCHEDULER_INTERVAL_SECONDS,
                        help='Seconds between ticks (default: %(default)s)')
    args = parser.parse_args(argv)

    configure_logging()
    import_models()
    scheduler = AutomationScheduler(get_engine(), redis_client=redis_client)

    if args.once:
        result = scheduler.tick()
        print(f"health_updated={result['health_updated']} emitted={result['emitted']} skipped={result['skipped']} failed={result['failed']}")
        return result

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    scheduler.run_forever(interval=args.interval, stop_event=stop)


if __name__ == '__main__':
    main()
