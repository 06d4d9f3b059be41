#!/usr/bin/env python3
"""
Inspect and manage clone progress records.
Usage: python scripts/clone_progress.py {list,show,next,archive,discard} [slug]
"""
import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.core.exceptions import PreconditionError, ProgressStoreError
from app.services.progress_store import ProgressStore


def cmd_list(store: ProgressStore, args) -> int:
    records = store.list_active()
    if not records:
        print("No active clones.")
        return 0
    for record in records:
        next_phase = record.next_phase()
        print(f"{record.page_slug:<30} {record.status.value:<20} next={next_phase.value if next_phase else '-'}")
    return 0


def cmd_show(store: ProgressStore, args) -> int:
    record = store.read(args.slug)
    if record is None:
        print(f"No progress record for '{args.slug}'", file=sys.stderr)
        return 1
    print(json.dumps(record.model_dump(mode="json"), indent=2))
    return 0


def cmd_next(store: ProgressStore, args) -> int:
    last = store.last_completed_phase(args.slug)
    upcoming = store.next_phase(args.slug)
    print(f"Last completed: {last.value if last else '-'}")
    print(f"Next phase: {upcoming.value if upcoming else '- (all phases completed)'}")
    return 0


def cmd_archive(store: ProgressStore, args) -> int:
    archive_id = store.archive(args.slug)
    print(f"Archived '{args.slug}' as {archive_id}")
    return 0


def cmd_discard(store: ProgressStore, args) -> int:
    if not args.yes:
        print(f"Refusing to discard '{args.slug}' without --yes", file=sys.stderr)
        return 2
    store.discard(args.slug)
    print(f"Discarded '{args.slug}'")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and manage clone progress records")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List active clones").set_defaults(func=cmd_list)
    for name, func, help_text in (
        ("show", cmd_show, "Print the full progress record"),
        ("next", cmd_next, "Show the last completed and next phase"),
        ("archive", cmd_archive, "Archive a completed clone"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("slug")
        p.set_defaults(func=func)

    p = sub.add_parser("discard", help="Drop an active record so the clone can start over")
    p.add_argument("slug")
    p.add_argument("--yes", action="store_true", help="Confirm the discard")
    p.set_defaults(func=cmd_discard)
    return parser


def main(argv: Optional[List[str]] = None, store: Optional[ProgressStore] = None) -> int:
    args = build_parser().parse_args(argv)
    store = store or ProgressStore()
    try:
        return args.func(store, args)
    except (ProgressStoreError, PreconditionError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
