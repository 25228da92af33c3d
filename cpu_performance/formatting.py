"""Console-friendly formatting utilities."""

from __future__ import annotations

from dataclasses import dataclass
import io
import os
from typing import IO, Optional, Sequence, Tuple

from rich.console import Console
from rich.text import Text

from .system_state import BoostStatus, GovernorCounts, MemoryReport, SystemReport

LABEL_WIDTH = 28
RULE_WIDTH = 40
UNAVAILABLE = "N/A"

_BOOST_LABELS = {
    BoostStatus.ACTIVE: "Active",
    BoostStatus.INACTIVE: "Not active",
    BoostStatus.UNSUPPORTED: "Not supported",
}


@dataclass(frozen=True)
class RenderConfig:
    color: bool = False

    @classmethod
    def detect(cls, stream: IO[str]) -> "RenderConfig":
        """Enable color only for interactive terminals that can show it."""
        if "NO_COLOR" in os.environ or os.environ.get("TERM") == "dumb":
            return cls(color=False)
        isatty = getattr(stream, "isatty", None)
        return cls(color=bool(isatty and isatty()))


def format_value(value: object) -> str:
    if value is None or value == "":
        return UNAVAILABLE
    return str(value)


def format_ghz(value: Optional[float]) -> str:
    return UNAVAILABLE if value is None else f"{value:.2f} GHz"


def format_percent(value: Optional[float]) -> str:
    return UNAVAILABLE if value is None else f"{value:.2f}%"


def format_memory(memory: Optional[MemoryReport]) -> str:
    if memory is None:
        return UNAVAILABLE
    return f"{memory.used_mb}/{memory.total_mb}MB ({memory.used_percent:.2f}%)"


def render_report(report: SystemReport, config: RenderConfig) -> str:
    console = _console(config)
    cpu = report.cpu

    console.print()
    console.print(Text("CPU Performance Summary", style="bold yellow"))
    console.print(Text("=" * RULE_WIDTH, style="yellow"))

    _section(
        console,
        "1. System Overview",
        [
            ("CPU Model:", format_value(cpu.model)),
            ("Total CPU Threads:", format_value(cpu.thread_count)),
            ("Architecture:", format_value(cpu.architecture)),
            ("Uptime:", format_value(cpu.uptime)),
        ],
    )
    _section(
        console,
        "2. CPU Specifications",
        [
            ("Sockets:", format_value(cpu.sockets)),
            ("Cores per Socket:", format_value(cpu.cores_per_socket)),
            ("Threads per Core:", format_value(cpu.threads_per_core)),
            ("NUMA Nodes:", format_value(cpu.numa_nodes)),
            ("Minimum Clock Speed:", format_ghz(cpu.min_freq_ghz)),
            ("Maximum Clock Speed:", format_ghz(cpu.max_freq_ghz)),
            ("Average CPU Frequency:", format_ghz(cpu.avg_freq_ghz), "green"),
            ("Current CPU Utilization:", format_percent(cpu.utilization_percent)),
            ("Boost:", _BOOST_LABELS[cpu.boost], "green" if cpu.boost_active else "white"),
        ],
    )
    _section(
        console,
        "3. Cache Information",
        [
            ("L1 Data Cache:", format_value(cpu.l1d_cache)),
            ("L1 Instruction Cache:", format_value(cpu.l1i_cache)),
            ("L2 Cache:", format_value(cpu.l2_cache)),
            ("L3 Cache:", format_value(cpu.l3_cache)),
        ],
    )
    _section(console, "4. Governor Mode Distribution", _governor_rows(report.governors))
    _section(console, "5. Memory Usage", [("Memory Usage:", format_memory(report.memory))])

    return console.file.getvalue()


def render_error(message: str, config: RenderConfig) -> str:
    return _render_line(message, "red", config)


def render_notice(message: str, config: RenderConfig) -> str:
    return _render_line(message, "blue", config)


def _render_line(message: str, style: str, config: RenderConfig) -> str:
    console = _console(config)
    console.print(Text(message, style=style), soft_wrap=True)
    return console.file.getvalue()


def _governor_rows(governors: GovernorCounts) -> list:
    rows = [(f"{name.capitalize()} Cores:", str(count)) for name, count in governors.as_dict().items()]
    rows.append(("Cores Scanned:", str(governors.scanned)))
    return rows


def _section(console: Console, title: str, rows: Sequence[Tuple[str, ...]]) -> None:
    console.print()
    console.print(Text(title, style="bold cyan"))
    console.print(Text("=" * RULE_WIDTH, style="cyan"))
    for row in rows:
        label, value = row[0], row[1]
        style = row[2] if len(row) > 2 else "white"
        line = Text()
        line.append(label.ljust(LABEL_WIDTH), style="blue")
        line.append(value, style=style)
        console.print(line, soft_wrap=True)


def _console(config: RenderConfig) -> Console:
    return Console(
        file=io.StringIO(),
        force_terminal=config.color,
        color_system="standard" if config.color else None,
        no_color=not config.color,
        highlight=False,
        emoji=False,
    )
