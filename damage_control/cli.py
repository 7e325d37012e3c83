"""Command line interface for inspecting damage-control decisions.

Examples::

    damage-control check "git push --force origin main"
    damage-control path ~/.ssh/id_rsa --operation access
    damage-control rules --paths
    damage-control config --project ./my-project

``check`` and ``path`` exit with 0 (allow), 1 (block) or 2 (ask).
"""

import argparse
import json
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .config_loader import apply_config, load_config
from .models import Decision, EffectiveRuleSet, Operation, Outcome
from .paths import DEFAULT_PROTECTED_PATHS
from .patterns import DEFAULT_PATTERNS
from .protection import check_file_operation, check_shell_command

EXIT_CODES = {
    Outcome.ALLOW: 0,
    Outcome.BLOCK: 1,
    Outcome.ASK: 2,
}

OUTCOME_STYLES = {
    Outcome.ALLOW: "bold green",
    Outcome.BLOCK: "bold red",
    Outcome.ASK: "bold yellow",
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="damage-control",
        description="Check shell commands and file paths against damage-control rules"
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to .env file (default: .env)"
    )
    parser.add_argument(
        "--project",
        default=None,
        metavar="DIR",
        help="Project directory holding .damage-control/config.json (default: cwd)"
    )
    parser.add_argument(
        "--home",
        default=None,
        help="Home directory used for ~ expansion (default: $HOME)"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON instead of tables"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Evaluate a shell command")
    check.add_argument("shell_command", nargs="+", help="Command to evaluate")

    path = sub.add_parser("path", help="Evaluate a direct file operation")
    path.add_argument("file_path", help="Targeted file path")
    path.add_argument(
        "--operation", "-o",
        choices=[op.value for op in Operation],
        default=Operation.ACCESS.value,
        help="Operation performed on the path (default: access)"
    )

    rules = sub.add_parser("rules", help="List the effective rules")
    group = rules.add_mutually_exclusive_group()
    group.add_argument("--patterns", action="store_true", help="Only command patterns")
    group.add_argument("--paths", action="store_true", help="Only protected paths")

    sub.add_parser("config", help="Show the merged config overlay and its warnings")

    return parser


def _render_decision(console: Console, decision: Decision, as_json: bool) -> None:
    if as_json:
        console.print_json(json.dumps(decision.to_dict()))
        return

    line = Text()
    line.append(decision.outcome.value.upper(), style=OUTCOME_STYLES[decision.outcome])
    line.append(f"  {decision.reason}")
    console.print(line)
    if decision.matched_text:
        console.print(Text(f"  matched: {decision.matched_text}", style="dim"))
    if decision.protected_path is not None:
        console.print(Text(
            f"  path rule: {decision.protected_path.path} "
            f"({decision.protected_path.level.value})",
            style="dim",
        ))
    if decision.operation is not None:
        console.print(Text(f"  operation: {decision.operation.value}", style="dim"))


def _render_rules(console: Console, rule_set: EffectiveRuleSet, which: str) -> None:
    if which in ("all", "patterns"):
        table = Table(title=f"Command patterns ({len(rule_set.patterns)})")
        table.add_column("#", justify="right", style="dim")
        table.add_column("action")
        table.add_column("reason")
        table.add_column("pattern", style="cyan")
        for i, rule in enumerate(rule_set.patterns, 1):
            style = "red" if rule.action.value == "block" else "yellow"
            table.add_row(str(i), Text(rule.action.value, style=style), rule.reason, rule.pattern)
        console.print(table)

    if which in ("all", "paths"):
        table = Table(title=f"Protected paths ({len(rule_set.paths)})")
        table.add_column("#", justify="right", style="dim")
        table.add_column("level")
        table.add_column("path", style="cyan")
        table.add_column("kind", style="dim")
        for i, rule in enumerate(rule_set.paths, 1):
            table.add_row(str(i), rule.level.value, rule.path, rule.kind.value)
        console.print(table)


def main(argv: Optional[List[str]] = None, console: Optional[Console] = None) -> int:
    args = _build_parser().parse_args(argv)
    console = console or Console(highlight=False)

    if args.env_file and os.path.exists(args.env_file):
        load_dotenv(args.env_file)

    project_dir = args.project or os.getcwd()
    overlay, warnings = load_config(project_dir, home=args.home)
    rule_set = apply_config(overlay, DEFAULT_PATTERNS, DEFAULT_PROTECTED_PATHS)

    if args.command != "config":
        err_console = Console(stderr=True, highlight=False)
        for warning in warnings:
            err_console.print(Text(f"warning: {warning}", style="yellow"))

    if args.command == "check":
        decision = check_shell_command(" ".join(args.shell_command), rule_set, args.home)
        _render_decision(console, decision, args.json)
        return EXIT_CODES[decision.outcome]

    if args.command == "path":
        decision = check_file_operation(
            args.file_path, Operation(args.operation), rule_set, args.home
        )
        _render_decision(console, decision, args.json)
        return EXIT_CODES[decision.outcome]

    if args.command == "rules":
        which = "patterns" if args.patterns else "paths" if args.paths else "all"
        if args.json:
            payload = {}
            if which in ("all", "patterns"):
                payload["patterns"] = [r.to_dict() for r in rule_set.patterns]
            if which in ("all", "paths"):
                payload["paths"] = [r.to_dict() for r in rule_set.paths]
            console.print_json(json.dumps(payload))
        else:
            _render_rules(console, rule_set, which)
        return 0

    # config
    if args.json:
        console.print_json(json.dumps({"overlay": overlay.to_dict(), "warnings": warnings}))
    else:
        if overlay.is_empty():
            console.print(Text("No config overlay (using built-in defaults)", style="dim"))
        else:
            console.print_json(json.dumps(overlay.to_dict()))
        for warning in warnings:
            console.print(Text(f"warning: {warning}", style="yellow"))
    return 1 if warnings else 0


if __name__ == "__main__":
    sys.exit(main())
