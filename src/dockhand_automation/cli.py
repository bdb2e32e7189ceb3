from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from pathlib import Path
from typing import Any, Optional, Sequence

from .config import DEFAULT_CONFIG, load_config
from .handlers import HandlerOutcome
from .inventory import InventoryLoader
from .runner import HostReport, PlaybookRunner, RunReport
from .types import TaskResult


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    RESET = "\033[0m"


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Dockhand provisioning runner")
    parser.add_argument(
        "plan",
        nargs="?",
        default=None,
        type=Path,
        help="Path to a plan file (default from config or /etc/dockhand/site.toml)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to dockhand config file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument("--limit", help="Comma separated host globs to run against")
    parser.add_argument(
        "-e",
        "--extra-vars",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Set a variable with the highest precedence (repeatable)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Calculate changes without executing")
    parser.add_argument("--forks", type=int, help="Number of hosts to run in parallel")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    args = parser.parse_args(argv)
    try:
        args.extra_vars = parse_extra_vars(args.extra_vars)
    except ValueError as exc:
        parser.error(str(exc))
    return args


def parse_extra_vars(pairs: Sequence[str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"extra vars must look like KEY=VALUE, got '{pair}'")
        lowered = raw.strip().lower()
        if lowered in {"true", "yes"}:
            values[key] = True
        elif lowered in {"false", "no"}:
            values[key] = False
        else:
            values[key] = raw
    return values


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s - %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    cfg = load_config(args.config)
    plan_path = args.plan or cfg.plan
    loader = InventoryLoader(roles_path=cfg.roles_path)
    effective_level = logging.getLogger().getEffectiveLevel()
    output_lock = threading.Lock()

    def print_progress(result: TaskResult) -> None:
        if not should_display_result(result, effective_level):
            return
        with output_lock:
            print(format_result(result), flush=True)

    try:
        plan = loader.load(plan_path)
        cfg.apply_host_defaults(plan)
        runner = PlaybookRunner(
            plan,
            dry_run=args.dry_run,
            forks=args.forks or cfg.forks,
            task_timeout=cfg.task_timeout,
            extra_vars=args.extra_vars,
            limit=args.limit,
            progress_callback=print_progress,
        )
    except (ValueError, OSError) as exc:
        print(colorize(f"Plan validation failed: {exc}", Ansi.RED), file=sys.stderr)
        return 1

    try:
        report = runner.run()
    except Exception as exc:  # noqa: BLE001
        if logging.getLogger().isEnabledFor(logging.DEBUG):
            raise
        print(colorize(f"Execution failed: {exc}", Ansi.RED), file=sys.stderr)
        return 1

    for host_report in report.hosts.values():
        for outcome in host_report.handlers:
            print(format_handler(host_report.host, outcome))
    print(Summary(report).render())
    return report.exit_code


def format_result(result: TaskResult) -> str:
    if result.failed:
        status, color = "failed", Ansi.RED
    elif result.skipped:
        status, color = "skipped", Ansi.BLUE
    elif result.changed:
        status, color = "changed", Ansi.GREEN
    else:
        status, color = "ok", Ansi.BLUE
    resource = f"[{result.resource}]" if result.resource else ""
    line = f"{result.host}::{result.action}{resource} {status} - {result.task}"
    if result.details and result.details != "skipped":
        line += f": {result.details}"
    return colorize(line, color)


def format_handler(host: str, outcome: HandlerOutcome) -> str:
    if outcome.failed:
        status, color = "failed", Ansi.RED
    else:
        status, color = ("changed" if outcome.changed else "ok"), Ansi.YELLOW
    line = f"{host}::handler[{outcome.name}] {status}"
    if outcome.details:
        line += f" - {outcome.details}"
    return colorize(line, color)


def should_display_result(result: TaskResult, log_level: int) -> bool:
    if result.failed or result.changed:
        return True
    return log_level <= logging.DEBUG


class Summary:
    def __init__(self, report: RunReport) -> None:
        self.report = report

    def render(self) -> str:
        lines = [self._render_host(host) for host in self.report.hosts.values()]
        failed = len(self.report.failed_hosts)
        color = Ansi.GREEN if failed == 0 else Ansi.RED
        lines.append(colorize(f"Hosts: {len(self.report.hosts)} | Failed hosts: {failed}", color))
        return "\n".join(lines)

    @staticmethod
    def _render_host(host: HostReport) -> str:
        parts = [
            f"attempted={host.attempted}",
            f"ok={host.attempted - host.failed}",
            f"changed={host.changed}",
            f"failed={host.failed}",
            f"skipped={host.skipped}",
            f"handlers={len(host.handlers)}",
        ]
        text = f"{host.host}: " + " ".join(parts)
        if host.failure:
            text += f" - {host.failure}"
        elif host.handler_errors:
            text += f" - {host.handler_errors[0]}"
        color = Ansi.GREEN if host.ok else Ansi.RED
        return colorize(text, color)


if __name__ == "__main__":
    raise SystemExit(main())
