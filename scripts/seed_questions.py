"""Load a practice question template into the database."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional, Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db
from question_bank import QuestionBank, QuestionValidationError, default_template_path


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--questions",
        type=str,
        default=None,
        help=f"Path to the question template JSON (default: {default_template_path()})",
    )
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="SQLite database path (default: DB_PATH or data.db)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate the template and print a summary without writing",
    )
    return parser


def _summary(bank: QuestionBank) -> dict:
    per_category: dict[str, dict[str, int]] = {}
    for question in bank.questions:
        entry = per_category.setdefault(question["category"], {"count": 0})
        entry["count"] += 1
        entry[question["difficulty"]] = entry.get(question["difficulty"], 0) + 1
    return {"template": str(bank.path), "total": len(bank.questions), "categories": per_category}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        bank = QuestionBank(args.questions, auto_sync=False)
    except (FileNotFoundError, QuestionValidationError, json.JSONDecodeError) as exc:
        print(f"Invalid question template: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(_summary(bank), indent=2))
    if args.dry_run:
        return 0

    if args.db:
        db.configure(args.db)
    db.init()
    seeded = bank.sync()
    print(f"Seeded {seeded} practice questions into {db.DB_PATH}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
