#!/usr/bin/env python3
"""
Inspect or reset a session's recalculation lock.

A correction that crashed mid-flight leaves its session in 'running'. Such a
lock is taken over automatically once it is older than
RALLYELO_RECALC_LOCK_STALE_SECONDS; this script is for doing it by hand.

Show the lock:
    python scripts/recalc_lock.py SESSION_ID

Force it back to idle:
    python scripts/recalc_lock.py SESSION_ID --reset
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add src to path so this script can be run directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rallyelo.config import settings
from rallyelo.db import default_session_factory
from rallyelo.errors import RatingError
from rallyelo.tasks.locks import RecalculationLock


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Inspect or reset a session's recalculation lock.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("session_id", help="Session whose lock to inspect.")
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Force the lock back to idle (only when no recalculation is running).",
    )
    return parser


def main() -> int:
    args = _build_parser().parse_args()
    logging.basicConfig(
        level=settings.log_level,
        format=settings.log_format,
        datefmt="%H:%M:%S",
    )
    lock = RecalculationLock(default_session_factory)

    try:
        if args.reset:
            lock.reset(args.session_id)
        status = lock.status(args.session_id)
    except RatingError as exc:
        print(f"ERROR: {exc.message} {exc.details}")
        return 1

    print(f"Session:     {status.session_id}")
    print(f"Status:      {status.status}")
    print(f"Token:       {status.token or '-'}")
    print(f"Started at:  {status.started_at or '-'}")
    print(f"Finished at: {status.finished_at or '-'}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
