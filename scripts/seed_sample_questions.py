"""
Seed a few sample questions for local development.

Usage:
  python scripts/seed_sample_questions.py [--tag arrays] [--type 1]
"""

from __future__ import annotations

import argparse
from typing import List, Optional

from skillcoach.models.schemas import Difficulty, QuestionEntry
from skillcoach.services.tag_registry import register_tags
from skillcoach.utils.qbank_store import BaseQBankStore, get_qbank_store

SAMPLE_QUESTIONS = [
    (
        "What is an array?",
        "Ans: An array is a collection of items stored at contiguous memory locations.",
        Difficulty.EASY,
    ),
    (
        "How do you access the third element of an array in JavaScript?",
        "Ans: By using array[2], since indexing is zero-based.",
        Difficulty.MEDIUM,
    ),
    (
        "How would you loop through every element in a JavaScript array?",
        "Ans: Using for/for...of/map/forEach, e.g. for (const el of array) { ... }.",
        Difficulty.MEDIUM,
    ),
]


def seed(
    store: BaseQBankStore, *, tag: str = "arrays", topic_type_code: Optional[int] = 1
) -> List[QuestionEntry]:
    register_tags([tag], store)
    entries = [
        QuestionEntry(
            topic_type_code=topic_type_code,
            question_text=q,
            answer_text=a,
            tags=[tag],
            difficulty=d,
        )
        for q, a, d in SAMPLE_QUESTIONS
    ]
    return store.insert_entries(entries)


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--tag", default="arrays")
    ap.add_argument("--type", type=int, default=1)
    args = ap.parse_args()

    saved = seed(get_qbank_store(), tag=args.tag, topic_type_code=args.type)
    print(f'Seeded {len(saved)} questions for tag "{args.tag}".')
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
