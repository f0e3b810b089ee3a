#!/usr/bin/env python3
"""
List rankings calculations left pending or running past the stall threshold.

A run killed by the platform's execution timeout never records its own
failure. Anything listed here should be treated as failed and re-run
(an incremental update is enough; the store only ever holds whole rounds).
"""
from __future__ import annotations

import argparse
import sys
from datetime import timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from leaguerank.config import settings
from leaguerank.db import get_session
from leaguerank.rankings import find_stalled_calculations


def main() -> int:
    parser = argparse.ArgumentParser(description="List stalled rankings calculations")
    parser.add_argument(
        "--older-than",
        type=int,
        default=settings.rankings_stalled_after_seconds,
        help="Age in seconds after which an unfinished run counts as stalled",
    )
    args = parser.parse_args()

    with get_session() as session:
        stalled = find_stalled_calculations(session, timedelta(seconds=args.older_than))
        if not stalled:
            print("No stalled calculations.")
            return 0
        for calc in stalled:
            step = (calc.progress or {}).get("currentStep")
            print(
                f"{calc.id}  mode={calc.mode}  status={calc.status}  "
                f"started={calc.started_at:%Y-%m-%d %H:%M:%S}  step={step}"
            )
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
