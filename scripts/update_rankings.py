#!/usr/bin/env python3
"""
Recalculate player rankings.

Normal usage (replay only rounds after the stored watermark):
    python scripts/update_rankings.py

Full rebuild (after game edits, roster changes or a parameter change):
    python scripts/update_rankings.py --rebuild

Dry run (compute everything, write nothing but the calculation record):
    python scripts/update_rankings.py --dry-run

Exit code is 0 on success and 1 when the calculation failed.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add src to path so this script can be run directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from leaguerank.config import configure_logging
from leaguerank.db import get_session_factory
from leaguerank.rankings import RankingsJob

configure_logging()
logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Recalculate player rankings.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Full rebuild: replay every round from an empty rating map.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute rankings but do not write them to the database.",
    )
    parser.add_argument(
        "--triggered-by",
        default="cli",
        help="Recorded on the calculation record (default: cli).",
    )
    parser.add_argument(
        "--metrics-json",
        default=None,
        help="Write a JSON summary to this path on completion.",
    )
    return parser


def main() -> int:
    args = _build_parser().parse_args()

    mode = "full" if args.rebuild else "incremental"
    started_at = _utc_now_iso()
    print(f"RANKINGS UPDATE  mode={mode}  dry_run={args.dry_run}  started={started_at}")
    print("-" * 60)

    job = RankingsJob(get_session_factory())
    if args.rebuild:
        result = job.run_full(args.triggered_by, persist=not args.dry_run)
    else:
        result = job.run_incremental(args.triggered_by, persist=not args.dry_run)

    metrics = result.metrics
    print("-" * 60)
    print(f"Calculation:       {result.calculation_id}")
    print(f"Status:            {result.status}")
    if result.ok:
        print(f"Rounds processed:  {metrics['rounds_processed']} / {metrics['total_rounds']}")
        print(f"Rounds remaining:  {metrics['rounds_remaining']}")
        print(f"Players rated:     {metrics['players']}")
        print(f"Watermark:         {metrics['watermark']}")
        if args.dry_run:
            print("(dry run, rankings not written)")
        else:
            print(
                f"Rankings written:  +{metrics['rankings_inserted']} "
                f"~{metrics['rankings_updated']} -{metrics['rankings_deleted']}"
            )
            print(
                f"Snapshots written: +{metrics['snapshots_inserted']} "
                f"~{metrics['snapshots_replaced']} -{metrics['snapshots_deleted']} "
                f"(failed {metrics['snapshots_failed']})"
            )
    else:
        print(f"Error:             {result.error}")
    print(f"Elapsed:           {result.duration_s:.2f}s")

    if metrics.get("rounds_remaining"):
        logger.warning("Time budget ran out; run again to continue from the new watermark")

    # Write metrics JSON if requested
    if args.metrics_json:
        payload = {**result.to_dict(), "dry_run": args.dry_run, "started_at": started_at}
        metrics_path = Path(args.metrics_json)
        metrics_path.parent.mkdir(parents=True, exist_ok=True)
        metrics_path.write_text(json.dumps(payload, indent=2, default=str) + "\n", encoding="utf-8")

    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
