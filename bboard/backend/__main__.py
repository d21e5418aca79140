"""CLI entry point: bboard <project_id>

Generates (or reuses) the day's stand-up summary for a project and prints a
digest to stdout.

Usage:
    bboard --demo                              # Seed the demo project and print its digest
    bboard <project_id> --date 2026-02-16      # Digest for a specific day
    bboard <project_id> --digest stakeholder   # stakeholder | team-detailed | sprint-snapshot
    bboard <project_id> --json                 # Structured summary as JSON
    bboard <project_id> --force                # Regenerate even if entries are unchanged
"""

import os
os.environ.pop("CLAUDECODE", None)  # Allow nested Claude SDK calls

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

# Ensure the backend directory is on the path (for imports when run as module)
sys.path.insert(0, str(Path(__file__).parent))

import database as db
from config import settings
from demo_data import DEMO_PROJECT_ID, seed_demo_project
from permissions import PROJECT_ADMIN_ROLES
from standup_digest import DIGEST_TYPES, render_digest
from standup_quality import calculate_standup_quality
from standup_summary import load_entries, save_project_standup_summary
from standup_window import format_date_only, parse_date_only


BANNER = """\033[1;36m
  ╔╗   ╔╗ ┌─┐┌─┐┬─┐┌┬┐
  ╠╩╗  ╠╩╗│ │├─┤├┬┘ ││
  ╚═╝  ╚═╝└─┘┴ ┴┴└──┴┘
\033[0m\033[90m  Daily stand-up summaries\033[0m
"""


def _progress(msg: str) -> None:
    """Print a progress message to stderr (keeps stdout clean for output)."""
    print(f"\033[90m  → {msg}\033[0m", file=sys.stderr)


def _error(msg: str) -> None:
    print(f"\033[31m  ✗ {msg}\033[0m", file=sys.stderr)


def _success(msg: str) -> None:
    print(f"\033[32m  ✓ {msg}\033[0m", file=sys.stderr)


def _pick_author(members: list[dict]) -> str | None:
    """The member recorded as creator of CLI-generated versions: first ADMIN/PO, else anyone."""
    for member in members:
        if member["role"] in PROJECT_ADMIN_ROLES:
            return member["user_id"]
    return members[0]["user_id"] if members else None


async def main() -> int:
    parser = argparse.ArgumentParser(
        prog="bboard",
        description="Summarize a project's daily stand-ups for Product Owners and Admins.",
    )
    parser.add_argument(
        "project_id",
        nargs="?",
        default=None,
        help="Project id (optional with --demo)",
    )
    parser.add_argument(
        "--date",
        type=str,
        default=None,
        help="Stand-up date as YYYY-MM-DD (default: today, UTC)",
    )
    parser.add_argument(
        "--demo",
        action="store_true",
        help="Seed the demo project for the date and use it",
    )
    parser.add_argument(
        "--digest",
        choices=DIGEST_TYPES,
        default="team-detailed",
        help="Digest layout (default: team-detailed)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Print the structured summary as JSON instead of a digest",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Generate a new version even if the entries have not changed",
    )
    parser.add_argument(
        "--refs",
        action="store_true",
        help="Include linked work references in the digest",
    )
    args = parser.parse_args()

    day = parse_date_only(args.date) if args.date else datetime.now(timezone.utc).date()
    if day is None:
        _error(f"Invalid date: {args.date}")
        _error("Expected: YYYY-MM-DD (e.g. 2026-02-16)")
        return 1
    day_str = format_date_only(day)

    project_id = DEMO_PROJECT_ID if args.demo else args.project_id
    if not project_id:
        _error("A project id is required (or use --demo)")
        return 1

    print(BANNER, file=sys.stderr)
    await db.init_db()

    if args.demo:
        _progress(f"Seeding demo project for {day_str}...")
        await seed_demo_project(day)

    project = await db.get_project(project_id)
    if not project:
        _error(f"Project {project_id} not found")
        return 1
    _progress(f"Project: {project['name']} ({day_str})")

    members = await db.list_project_members(project_id)
    author_id = _pick_author(members)
    if not author_id:
        _error(f"Project {project_id} has no members")
        return 1

    if not settings.ANTHROPIC_API_KEY:
        _progress("ANTHROPIC_API_KEY not set; using the deterministic summary")

    entries = load_entries(await db.list_standup_entries(project_id, day_str))
    _progress(f"{len(entries)} of {len(members)} members submitted")

    version = await save_project_standup_summary(project_id, day, entries, author_id, force=args.force)
    confidence = (version.get("metadata_json") or {}).get("confidence") or {}
    flags = await db.list_validation_flags(version["id"])
    _success(
        f"Summary v{version['version']} via {version['model']} "
        f"(confidence {confidence.get('confidence_score', 'n/a')}, {len(flags)} flag(s))"
    )

    quality = calculate_standup_quality(entries, len(members))
    await db.upsert_quality_daily(project_id, day_str, quality["quality_score"], quality["metrics"])

    if args.json_output:
        print(json.dumps({
            "project_id": project_id,
            "date": day_str,
            "version": version["version"],
            "model": version["model"],
            "confidence": confidence,
            "validation_flags": [flag["flag_type"] for flag in flags],
            "data_quality": quality,
            "summary": version["output_json"],
        }, indent=2))
        return 0

    summary_json = version["output_json"]
    print(render_digest(
        args.digest,
        {
            "date": day_str,
            "generated_at": version["created_at"],
            "summary_json": summary_json,
            "summary_rendered": {"overall_progress": summary_json["overall_progress"]},
            "signals": {
                "quality_score": quality["quality_score"],
                "metrics": {key: value / 100 for key, value in quality["metrics"].items()},
            },
        },
        include_references=args.refs,
    ))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
