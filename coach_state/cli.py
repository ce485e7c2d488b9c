#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
CLI interface for coach-state.

Inspect and modify versioned state files, the project phase and the error
memory from the shell. Every write goes through AtomicStateStore, so the CLI
can run alongside other sessions touching the same files.

Usage:
    coach-state <command> [args]
    python3 -m coach_state.cli <command> [args]
"""

import argparse
import json as json_module
import sys
from pathlib import Path
from typing import Optional

from coach_state.config import (
    PHASE_STATE_FILE,
    get_project_root,
    project_state_path,
)
from coach_state.error_memory import ErrorMemory
from coach_state.errors import CoachStateError
from coach_state.models import UpdateResult
from coach_state.phase import PhaseTracker, format_phase
from coach_state.store import AtomicStateStore


def _empty_payload() -> dict:
    return {}


def _parse_json_arg(raw: str, name: str):
    try:
        return json_module.loads(raw)
    except json_module.JSONDecodeError as e:
        raise ValueError(f"{name} is not valid JSON: {e}") from e


def _resolve_path(raw: Optional[str], project_root: Path) -> Path:
    if raw:
        return Path(raw)
    return project_state_path(project_root, PHASE_STATE_FILE)


def _report(result: UpdateResult) -> None:
    """Print the write summary; a failed write exits 1."""
    print(result.format())
    if result.success:
        return
    print(
        f"Warning: change may not have been saved: {result.result.error}",
        file=sys.stderr,
    )
    sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="coach-state - versioned, conflict-resolving JSON state files"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # show command
    show_parser = subparsers.add_parser("show", help="Print a state file (envelope and payload)")
    show_parser.add_argument("path", nargs="?", help=f"State file (default: .midas/{PHASE_STATE_FILE})")

    # set command
    set_parser = subparsers.add_parser("set", help="Set one payload field")
    set_parser.add_argument("path", help="State file")
    set_parser.add_argument("key", help="Payload field")
    set_parser.add_argument("value", help="New value as JSON")
    set_parser.add_argument(
        "--array-key",
        action="append",
        default=[],
        dest="array_keys",
        help="Field to union-merge on conflict (repeatable)",
    )

    # append command
    append_parser = subparsers.add_parser("append", help="Append an item to an array field")
    append_parser.add_argument("path", help="State file")
    append_parser.add_argument("key", help="Array field")
    append_parser.add_argument("item", help="Item as JSON")
    append_parser.add_argument("--unique-key", default="id", help="Item identity field (default: id)")

    # phase command
    phase_parser = subparsers.add_parser("phase", help="Project phase")
    phase_subparsers = phase_parser.add_subparsers(dest="phase_command")
    phase_subparsers.add_parser("show", help="Show the current phase")
    phase_set_parser = phase_subparsers.add_parser("set", help="Move to a phase")
    phase_set_parser.add_argument("phase", help="IDLE, PLAN, BUILD, SHIP or GROW")
    phase_set_parser.add_argument("step", nargs="?", help="Step within the phase")

    # error command
    error_parser = subparsers.add_parser("error", help="Error memory")
    error_subparsers = error_parser.add_subparsers(dest="error_command")
    error_add_parser = error_subparsers.add_parser("add", help="Record an error")
    error_add_parser.add_argument("message", help="Error message")
    error_add_parser.add_argument("--file", help="File the error occurred in")
    error_add_parser.add_argument("--line", type=int, help="Line number")
    error_fix_parser = error_subparsers.add_parser("fix", help="Record a fix attempt")
    error_fix_parser.add_argument("id", help="Error ID")
    error_fix_parser.add_argument("approach", help="What was tried")
    error_fix_parser.add_argument("--worked", action="store_true", help="The fix resolved the error")
    error_list_parser = error_subparsers.add_parser("list", help="List unresolved errors")
    error_list_parser.add_argument("--stuck", action="store_true", help="Only errors with 2+ failed fixes")

    # monitor command
    monitor_parser = subparsers.add_parser("monitor", help="Live view of a state file")
    monitor_parser.add_argument("path", nargs="?", help=f"State file (default: .midas/{PHASE_STATE_FILE})")
    monitor_parser.add_argument("--interval", type=float, default=2.0, help="Refresh seconds")

    return parser


def main(argv=None):
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    project_root = get_project_root()

    try:
        if args.command == "show":
            store = AtomicStateStore()
            record = store.read(_resolve_path(args.path, project_root), _empty_payload)
            print(json_module.dumps(record.to_dict(), indent=2, ensure_ascii=False))

        elif args.command == "set":
            value = _parse_json_arg(args.value, "value")
            store = AtomicStateStore()

            def set_field(payload):
                payload[args.key] = value

            result = store.update(
                args.path,
                _empty_payload,
                set_field,
                store.options(array_keys=list(args.array_keys)),
            )
            _report(result)

        elif args.command == "append":
            item = _parse_json_arg(args.item, "item")
            store = AtomicStateStore()

            def append_item(payload):
                items = payload.get(args.key)
                if not isinstance(items, list):
                    items = []
                items.append(item)
                payload[args.key] = items

            result = store.update(
                args.path,
                _empty_payload,
                append_item,
                store.options(array_keys=[args.key], unique_key=args.unique_key),
            )
            _report(result)

        elif args.command == "phase":
            tracker = PhaseTracker(project_root)
            if args.phase_command == "set":
                result = tracker.set_phase(args.phase, args.step)
                if result.success:
                    print(f"Phase: {format_phase(result.payload['current'])}")
                _report(result)
            elif args.phase_command in (None, "show"):
                state = tracker.load()
                print(f"Phase: {format_phase(state['current'])}")
                print(f"Started: {state['startedAt']}")
                print(f"Transitions: {len(state['history'])}")
                docs = ", ".join(f"{name}={'yes' if present else 'no'}" for name, present in state["docs"].items())
                print(f"Docs: {docs}")

        elif args.command == "error":
            memory = ErrorMemory(project_root)
            if args.error_command == "add":
                entry = memory.record_error(args.message, file=args.file, line=args.line)
                print(f"Recorded {entry['id']}: {entry['error']}")
            elif args.error_command == "fix":
                entry = memory.record_fix_attempt(args.id, args.approach, args.worked)
                status = "resolved" if entry.get("resolved") else "unresolved"
                print(f"Recorded fix attempt for {args.id} ({status}, {len(entry['fixAttempts'])} attempt(s))")
            elif args.error_command in (None, "list"):
                errors = memory.get_stuck_errors() if getattr(args, "stuck", False) else memory.get_unresolved_errors()
                if not errors:
                    print("(no errors found)")
                else:
                    for entry in errors:
                        location = ""
                        if entry.get("file"):
                            line = f":{entry['line']}" if entry.get("line") else ""
                            location = f" ({entry['file']}{line})"
                        print(f"[{entry['id']}] {entry['error']}{location}")
                        for attempt in entry.get("fixAttempts") or []:
                            mark = "+" if attempt.get("worked") else "-"
                            print(f"    {mark} {attempt.get('approach')}")
                    print(f"\nTotal: {len(errors)} error(s)")

        elif args.command == "monitor":
            from coach_state.tui import run_app

            run_app(_resolve_path(args.path, project_root), refresh_interval=args.interval)

    except (ValueError, OSError, CoachStateError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
