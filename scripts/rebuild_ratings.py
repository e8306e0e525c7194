#!/usr/bin/env python3
"""
Rebuild every rating from the match log, or check stored ratings against it.

Full rebuild (after data repair or a failed recalculation):
    python scripts/rebuild_ratings.py

Dry run (replay and report, roll everything back):
    python scripts/rebuild_ratings.py --dry-run

Replay completed sessions only (drops rounds submitted in active sessions):
    python scripts/rebuild_ratings.py --completed-only

Consistency check only (exit code 1 on any mismatch):
    python scripts/rebuild_ratings.py --check
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from time import perf_counter

# Add src to path so this script can be run directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rallyelo.config import settings
from rallyelo.db import get_session
from rallyelo.elo.rebuild import check_consistency, rebuild_all
from rallyelo.errors import RatingIntegrityError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Rebuild ratings from the ordered match log.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Replay everything but do not write to the database.",
    )
    parser.add_argument(
        "--completed-only",
        action="store_true",
        help="Skip active sessions instead of replaying their submitted rounds.",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only compare stored ratings with a fresh replay.",
    )
    return parser


def main() -> int:
    args = _build_parser().parse_args()
    logging.basicConfig(
        level=settings.log_level,
        format=settings.log_format,
        datefmt="%H:%M:%S",
    )

    if args.check:
        with get_session() as session:
            try:
                mismatches = check_consistency(session, raise_on_mismatch=True)
            except RatingIntegrityError as exc:
                print(f"MISMATCH: {len(exc.details['mismatches'])} participants differ")
                for item in exc.details["mismatches"]:
                    print(f"  {item}")
                return 1
        print(f"OK: stored ratings match replay ({len(mismatches)} mismatches)")
        return 0

    print(f"RATING REBUILD  dry_run={args.dry_run}  completed_only={args.completed_only}")
    print("-" * 60)
    t_start = perf_counter()

    with get_session() as session:
        result = rebuild_all(session, completed_only=args.completed_only)
        if args.dry_run:
            session.rollback()
            print("(dry run - changes rolled back)")

    elapsed = perf_counter() - t_start

    print("-" * 60)
    print(f"Sessions replayed:      {result.sessions_replayed}")
    print(f"Matches applied:        {result.matches_applied}")
    print(f"Matches skipped:        {result.matches_skipped}")
    print(f"Ratings written:        {result.ratings_written}")
    for kind, count in result.participants.items():
        print(f"  {kind.value:<22}{count}")
    print(f"Elapsed:                {elapsed:.2f}s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
