"""
Set difficulty='medium' on question entries stored before difficulty existed.

Usage:
  python scripts/backfill_difficulty.py [--difficulty medium]
"""

from __future__ import annotations

import argparse

from skillcoach.models.schemas import Difficulty
from skillcoach.utils.qbank_store import get_qbank_store


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument(
        "--difficulty",
        default=Difficulty.MEDIUM.value,
        choices=[d.value for d in Difficulty],
    )
    args = ap.parse_args()

    store = get_qbank_store()
    updated = store.backfill_difficulty(Difficulty(args.difficulty))
    print(f"Updated {updated} question(s) to difficulty={args.difficulty!r}.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
