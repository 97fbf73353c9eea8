"""Command-line entry point.

Usage::

    python3 main.py run "make the header blue" --files ./my-app --write
    python3 main.py run "build a pomodoro timer" --json
    python3 main.py show-config
    python3 main.py config-set max_debug_cycles 5
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

from rich.console import Console
from rich.table import Table

from core.config_manager import config
from core.events import EventType, PipelineEvent
from core.exceptions import ConfigurationError
from core.logging_utils import log_json
from core.orchestrator import OPERATIONS, PipelineOrchestrator
from core.sanitizer import mask_secrets, sanitize_path
from core.types import ChangeRequest, PipelineResult

SOURCE_SUFFIXES = {".js", ".jsx", ".ts", ".tsx", ".mjs", ".css", ".html", ".json", ".py", ".md"}
SKIP_DIRS = {"node_modules", ".git", "dist", "build", "__pycache__", ".venv"}
MAX_FILE_BYTES = 200_000

_EVENT_STYLES = {
    EventType.PHASE: "cyan",
    EventType.PLAN: "magenta",
    EventType.REVIEW: "blue",
    EventType.FILE_OPERATION: "white",
    EventType.SUCCESS: "green bold",
    EventType.WARNING: "yellow",
    EventType.ERROR: "red bold",
}


def load_project_files(root: Path) -> Dict[str, str]:
    """Read the source files under *root*, keyed by POSIX path relative to it."""
    files: Dict[str, str] = {}
    for path in sorted(root.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in SOURCE_SUFFIXES:
            continue
        rel = path.relative_to(root)
        if any(part in SKIP_DIRS for part in rel.parts):
            continue
        if path.stat().st_size > MAX_FILE_BYTES:
            log_json("WARN", "cli_file_skipped_too_large", details={"file": str(rel)})
            continue
        files[rel.as_posix()] = path.read_text(encoding="utf-8", errors="replace")
    return files


def write_operations(result: PipelineResult, root: Path) -> List[Path]:
    written = []
    for op in result.file_operations:
        if op.error:
            continue
        target = sanitize_path(op.filename, root)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(op.content, encoding="utf-8")
        written.append(target)
    return written


class EventPrinter:
    def __init__(self, console: Console):
        self.console = console

    def __call__(self, event: PipelineEvent):
        style = _EVENT_STYLES.get(event.type, "white")
        self.console.print(f"[{style}]{event.type.value:>14}[/] {event.message}")


def render_result(result: PipelineResult, console: Console):
    table = Table(title="File operations")
    table.add_column("File")
    table.add_column("Type")
    table.add_column("Quality", justify="right")
    table.add_column("Validated")
    for op in result.file_operations:
        quality = "-" if op.quality_score is None else f"{op.quality_score:.0f}"
        table.add_row(op.filename, op.type, quality, "yes" if op.validated else "no")
    console.print(table)
    meta = result.metadata
    console.print(f"operation={meta.get('operation')} tests_run={meta.get('tests_run')} "
                  f"tests_passed={meta.get('tests_passed')} debug_cycles={meta.get('debug_cycles')}")
    if result.friendly_error:
        console.print(f"[red]{result.friendly_error['message']}[/] {result.friendly_error['suggestion']}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="patchwright", description="Turn change requests into validated file edits.")
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Run one change request through the pipeline")
    run.add_argument("message", help="The change request")
    run.add_argument("--files", type=Path, default=None, help="Project directory to read existing files from")
    run.add_argument("--write", action="store_true", help="Write resulting files back into --files")
    run.add_argument("--no-tests", action="store_true", help="Skip the validate/repair loop")
    run.add_argument("--test-mode", choices=("auto", "sandbox", "command"), default=None)
    run.add_argument("--test-command", action="append", dest="test_commands", default=None)
    run.add_argument("--max-debug-cycles", type=int, default=None)
    run.add_argument("--intent", default=None, help="Skip intent classification and use this intent")
    run.add_argument("--operation", choices=OPERATIONS, default=None)
    run.add_argument("--json", action="store_true", help="Print the result as JSON")

    sub.add_parser("show-config", help="Print the effective configuration")
    config_set = sub.add_parser("config-set", help="Persist one setting to the config file")
    config_set.add_argument("key")
    config_set.add_argument("value", help="JSON value; anything that is not valid JSON is stored as a string")
    sub.add_parser("bootstrap", help="Write a starter patchwright.config.json")
    return parser


def _request_options(args) -> Dict:
    options = {
        "run_tests": False if args.no_tests else None,
        "test_mode": args.test_mode,
        "test_commands": args.test_commands,
        "max_debug_cycles": args.max_debug_cycles,
        "intent": args.intent,
        "operation": args.operation,
    }
    return {k: v for k, v in options.items() if v is not None}


def _parse_value(raw: str):
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _config_set(args, console: Console) -> int:
    try:
        config.persist_to_file(args.key, _parse_value(args.value))
    except ConfigurationError as e:
        console.print(f"[red]{e}[/]")
        return 2
    console.print(f"Saved {args.key} to {config.config_file}")
    return 0


def _run(args, console: Console, completion=None) -> int:
    if args.write and args.files is None:
        console.print("[red]--write requires --files[/]")
        return 2
    files = load_project_files(args.files) if args.files else {}
    request = ChangeRequest(args.message, files, _request_options(args))

    if completion is None:
        from core.model_adapter import ModelAdapter
        completion = ModelAdapter(config)
    orchestrator = PipelineOrchestrator(completion, config)
    printer = None if args.json else EventPrinter(console)
    result = asyncio.run(orchestrator.run(request, on_update=printer))

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        render_result(result, console)

    if args.write and result.success:
        written = write_operations(result, args.files)
        if not args.json:
            console.print(f"Wrote {len(written)} file(s) to {args.files}")
    return 0 if result.success else 1


def main(argv: Optional[List[str]] = None, completion=None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(sys.argv[1:] if argv is None else argv))
    console = Console(stderr=bool(getattr(args, "json", False)))

    if args.command == "run":
        return _run(args, console, completion)
    if args.command == "show-config":
        print(json.dumps(mask_secrets(config.show_config()), indent=2, default=str))
        return 0
    if args.command == "config-set":
        return _config_set(args, console)
    if args.command == "bootstrap":
        config.bootstrap()
        return 0
    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
