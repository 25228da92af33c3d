"""Entry point for the cpu-performance command line tool."""

from __future__ import annotations

import argparse
from dataclasses import asdict
import json
import logging
import os
import sys
from typing import Any, Dict, Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler

from .formatting import (
    RenderConfig,
    format_ghz,
    format_memory,
    format_percent,
    render_error,
    render_notice,
    render_report,
)
from .logbook import DEFAULT_LOG_FILE, LogManager
from .system_state import GOVERNORS, SystemReport, apply_governor, gather_report, staging_directory

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Switch CPU cores to the performance governor and summarize CPU and memory state.",
    )
    parser.add_argument("--log-file", default=str(DEFAULT_LOG_FILE), help="event log path (rotated at 10 MiB)")
    parser.add_argument("--governor", choices=GOVERNORS, default="performance", help="governor to apply to every core")
    parser.add_argument("--skip-governor", action="store_true", help="only report, do not change the governor")
    parser.add_argument("--no-color", action="store_true", help="disable colored output")
    parser.add_argument("--json", action="store_true", help="print the collected report as JSON")
    parser.add_argument("--verbose", action="store_true", help="show debug diagnostics on stderr")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    config = RenderConfig(color=False) if args.no_color else RenderConfig.detect(sys.stdout)
    with LogManager(args.log_file) as log:
        if not is_root():
            sys.stdout.write(render_error("This script must be run as root", config))
            log.log_message("ERROR: Script was not run as root")
            return 1

        log.log_message("Script started")
        with staging_directory() as workdir:
            try:
                governor_applied = False
                if not args.skip_governor:
                    if not args.json:
                        sys.stdout.write(render_notice(f"Setting all cores to {args.governor} mode...", config))
                    log.log_message(f"Setting all cores to {args.governor} mode")
                    governor_applied = apply_governor(args.governor)
                    if not governor_applied:
                        log.log_message(f"ERROR: Could not set cores to {args.governor} mode")

                report = gather_report(workdir, governor_applied=governor_applied)
                _log_report(log, report)

                if args.json:
                    print(_to_json(report))
                else:
                    sys.stdout.write(render_report(report, config))
            finally:
                log.log_message("Temporary files cleaned up")
    return 0


def run() -> None:
    sys.exit(main())


def is_root() -> bool:
    return os.geteuid() == 0


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_time=False, show_path=False)],
    )


def _log_report(log: LogManager, report: SystemReport) -> None:
    counts = report.governors.as_dict()
    log.log_message(
        "Core counts - " + ", ".join(f"{name.capitalize()}: {count}" for name, count in counts.items())
    )
    if report.cpu.boost_active:
        log.log_message("Boost is active")
    else:
        log.log_message(f"Boost is not active ({report.cpu.boost.value})")
    log.log_message(f"Average CPU frequency: {format_ghz(report.cpu.avg_freq_ghz)}")
    log.log_message(f"CPU utilization: {format_percent(report.cpu.utilization_percent)}")
    log.log_message(f"Memory Usage: {format_memory(report.memory)}")


def _to_json(report: SystemReport) -> str:
    payload: Dict[str, Any] = asdict(report)
    payload["timestamp"] = report.timestamp.isoformat()
    payload["cpu"]["boost_active"] = report.cpu.boost_active
    payload["governors"]["total"] = report.governors.total
    return json.dumps(payload, ensure_ascii=False, indent=2)


if __name__ == "__main__":
    run()
