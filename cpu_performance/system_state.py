"""Collect CPU, governor and memory state from system utilities and sysfs."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import logging
import os
from pathlib import Path
import re
import signal
import subprocess
import tempfile
import time
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import psutil

logger = logging.getLogger(__name__)

SYSFS_CPU_ROOT = Path("/sys/devices/system/cpu")
GOVERNORS = ("performance", "powersave", "ondemand", "conservative", "schedutil")

GOVERNOR_FILE = "governor_count"
CPU_INFO_FILE = "cpu_info"
MEMORY_INFO_FILE = "memory_info"

_CORE_DIR = re.compile(r"cpu\d+")
_CPU_TIME_FIELD = re.compile(r"(\d+(?:\.\d+)?)\s*%?\s*(us|sy|ni|id|wa|hi|si|st)\b")

Runner = Callable[[Sequence[str]], Optional[str]]


class BoostStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class GovernorCounts:
    """Number of cores found in each known governor mode."""

    performance: int = 0
    powersave: int = 0
    ondemand: int = 0
    conservative: int = 0
    schedutil: int = 0
    scanned: int = 0  # governor files read, including unrecognized modes

    @property
    def total(self) -> int:
        return sum(self.as_dict().values())

    def as_dict(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in GOVERNORS}


@dataclass(frozen=True)
class MemoryReport:
    used_mb: int
    total_mb: int
    used_percent: float


@dataclass(frozen=True)
class CpuReport:
    model: str = ""
    architecture: str = ""
    thread_count: Optional[int] = None
    threads_per_core: Optional[int] = None
    cores_per_socket: Optional[int] = None
    sockets: Optional[int] = None
    numa_nodes: Optional[int] = None
    min_freq_ghz: Optional[float] = None
    max_freq_ghz: Optional[float] = None
    avg_freq_ghz: Optional[float] = None
    utilization_percent: Optional[float] = None
    l1d_cache: str = ""
    l1i_cache: str = ""
    l2_cache: str = ""
    l3_cache: str = ""
    uptime: str = ""
    boost: BoostStatus = BoostStatus.UNSUPPORTED

    @property
    def boost_active(self) -> bool:
        return self.boost is BoostStatus.ACTIVE


@dataclass(frozen=True)
class SystemReport:
    timestamp: datetime
    cpu: CpuReport
    memory: Optional[MemoryReport]
    governors: GovernorCounts
    governor_applied: bool = False
    staged_files: Tuple[str, ...] = ()


def run_command(args: Sequence[str]) -> Optional[str]:
    """Run a system utility and return its stdout, or None if it is unavailable or fails."""
    env = dict(os.environ, LC_ALL="C")
    try:
        result = subprocess.run(
            list(args), capture_output=True, text=True, errors="replace", check=True, env=env
        )
    except FileNotFoundError:
        logger.debug("%s is not installed", args[0])
        return None
    except subprocess.CalledProcessError as exc:
        logger.debug("%s exited with %s: %s", " ".join(args), exc.returncode, exc.stderr.strip())
        return None
    except OSError as exc:
        logger.debug("Could not run %s: %s", args[0], exc)
        return None
    return result.stdout


def apply_governor(governor: str = "performance", runner: Runner = run_command) -> bool:
    """Switch every core to ``governor`` through cpupower."""
    return runner(["cpupower", "frequency-set", "-g", governor]) is not None


def scan_governors(cpu_root: Union[str, Path] = SYSFS_CPU_ROOT) -> GovernorCounts:
    counts = dict.fromkeys(GOVERNORS, 0)
    scanned = 0
    for path in _per_core_files(cpu_root, "scaling_governor"):
        try:
            mode = path.read_text().strip()
        except (OSError, ValueError):
            continue
        scanned += 1
        if mode in counts:
            counts[mode] += 1
    return GovernorCounts(scanned=scanned, **counts)


def parse_boost_status(text: Optional[str]) -> BoostStatus:
    """
    Read the boost state from ``cpupower frequency-info`` output.

    Only the ``boost state support:`` block is recognized. Output without it,
    or reporting ``Supported: no``, is treated as unsupported.
    """
    if not text:
        return BoostStatus.UNSUPPORTED
    start = text.find("boost state support:")
    if start == -1:
        return BoostStatus.UNSUPPORTED
    section = text[start:]

    supported = re.search(r"Supported:\s*(yes|no)", section)
    if supported and supported.group(1) == "no":
        return BoostStatus.UNSUPPORTED
    active = re.search(r"Active:\s*(yes|no)", section)
    if active is None:
        return BoostStatus.UNSUPPORTED
    return BoostStatus.ACTIVE if active.group(1) == "yes" else BoostStatus.INACTIVE


def parse_lscpu(text: Optional[str]) -> Dict[str, str]:
    """Map ``lscpu`` labels to their values. The first occurrence of a label wins."""
    fields: Dict[str, str] = {}
    for line in (text or "").splitlines():
        label, sep, value = line.partition(":")
        if not sep:
            continue
        fields.setdefault(label.strip(), value.strip())
    return fields


def mhz_to_ghz(value: Optional[str]) -> Optional[float]:
    try:
        return round(float(value) / 1000, 2)
    except (TypeError, ValueError):
        return None


def average_frequency_ghz(cpu_root: Union[str, Path] = SYSFS_CPU_ROOT) -> Optional[float]:
    """Average current frequency across cores, or None when no core reports one."""
    readings: List[int] = []
    for path in _per_core_files(cpu_root, "scaling_cur_freq"):
        try:
            readings.append(int(path.read_text().strip()))
        except (OSError, ValueError):
            continue
    if not readings:
        return None
    # scaling_cur_freq is in kHz
    return round(sum(readings) / len(readings) / 1_000_000, 2)


def parse_cpu_utilization(text: Optional[str]) -> Optional[float]:
    """Non-idle share of CPU time from one ``top -bn1`` snapshot."""
    for line in (text or "").splitlines():
        if "Cpu(s)" not in line:
            continue
        values = {name: float(number) for number, name in _CPU_TIME_FIELD.findall(line)}
        if "id" in values:
            return round(max(0.0, 100.0 - values["id"]), 2)
        if "us" in values:
            return round(values["us"] + values.get("sy", 0.0), 2)
        return None
    return None


def memory_report(used_mb: int, total_mb: int) -> Optional[MemoryReport]:
    if total_mb <= 0:
        return None
    return MemoryReport(used_mb=used_mb, total_mb=total_mb, used_percent=round(used_mb * 100 / total_mb, 2))


def parse_memory(text: Optional[str]) -> Optional[MemoryReport]:
    """Parse the ``Mem:`` row of ``free -m``."""
    for line in (text or "").splitlines():
        if not line.startswith("Mem:"):
            continue
        fields = line.split()
        try:
            return memory_report(used_mb=int(fields[2]), total_mb=int(fields[1]))
        except (IndexError, ValueError):
            return None
    return None


def parse_uptime(text: Optional[str]) -> str:
    return (text or "").strip()


def format_uptime(seconds: float) -> str:
    """Render seconds the way ``uptime -p`` does."""
    minutes = int(seconds // 60)
    days, minutes = divmod(minutes, 24 * 60)
    hours, minutes = divmod(minutes, 60)
    parts = [
        f"{value} {unit}{'' if value == 1 else 's'}"
        for value, unit in ((days, "day"), (hours, "hour"), (minutes, "minute"))
        if value
    ]
    return "up " + ", ".join(parts or ["0 minutes"])


@contextmanager
def staging_directory() -> Iterator[Path]:
    """
    Temporary directory for raw probe output, removed on every exit path.

    SIGTERM and SIGHUP are turned into SystemExit while the directory is held
    so that the removal also runs when the process is killed.
    """
    previous = {}

    def _exit_on_signal(signum: int, _frame: object) -> None:
        raise SystemExit(128 + signum)

    for signum in (signal.SIGTERM, signal.SIGHUP):
        previous[signum] = signal.signal(signum, _exit_on_signal)
    try:
        with tempfile.TemporaryDirectory(prefix="cpu-performance-") as workdir:
            yield Path(workdir)
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def gather_report(
    workdir: Union[str, Path],
    cpu_root: Union[str, Path] = SYSFS_CPU_ROOT,
    runner: Runner = run_command,
    governor_applied: bool = False,
) -> SystemReport:
    """Probe every metric source once and stage the raw output in ``workdir``."""
    workdir = Path(workdir)
    staged: List[str] = []

    governors = scan_governors(cpu_root)
    _stage(workdir, GOVERNOR_FILE, "".join(f"{name} {count}\n" for name, count in governors.as_dict().items()), staged)

    frequency_info = runner(["cpupower", "frequency-info"])
    boost = parse_boost_status(frequency_info)

    lscpu_text = runner(["lscpu"])
    lscpu = parse_lscpu(lscpu_text)
    thread_count = _to_int(lscpu.get("CPU(s)"))
    if lscpu_text is None:
        thread_count = psutil.cpu_count()

    top_text = runner(["top", "-bn1"])
    utilization = parse_cpu_utilization(top_text)
    if top_text is None:
        utilization = round(psutil.cpu_percent(interval=0.3), 2)

    uptime_text = runner(["uptime", "-p"])
    uptime = parse_uptime(uptime_text)
    if uptime_text is None:
        uptime = format_uptime(time.time() - psutil.boot_time())

    free_text = runner(["free", "-m"])
    memory = parse_memory(free_text)
    if free_text is None:
        virtual = psutil.virtual_memory()
        memory = memory_report(used_mb=virtual.used // 1024**2, total_mb=virtual.total // 1024**2)

    cpu = CpuReport(
        model=lscpu.get("Model name", ""),
        architecture=lscpu.get("Architecture", ""),
        thread_count=thread_count,
        threads_per_core=_to_int(lscpu.get("Thread(s) per core")),
        cores_per_socket=_to_int(lscpu.get("Core(s) per socket")),
        sockets=_to_int(lscpu.get("Socket(s)")),
        numa_nodes=_to_int(lscpu.get("NUMA node(s)")),
        min_freq_ghz=mhz_to_ghz(lscpu.get("CPU min MHz")),
        max_freq_ghz=mhz_to_ghz(lscpu.get("CPU max MHz")),
        avg_freq_ghz=average_frequency_ghz(cpu_root),
        utilization_percent=utilization,
        l1d_cache=lscpu.get("L1d cache", ""),
        l1i_cache=lscpu.get("L1i cache", ""),
        l2_cache=lscpu.get("L2 cache", ""),
        l3_cache=lscpu.get("L3 cache", ""),
        uptime=uptime,
        boost=boost,
    )

    _stage(
        workdir,
        CPU_INFO_FILE,
        "\n".join(
            [
                f"boost {cpu.boost.value}",
                frequency_info or "",
                lscpu_text or "",
                f"avg_freq_ghz {cpu.avg_freq_ghz}",
                f"cpu_util {cpu.utilization_percent}",
                f"uptime {cpu.uptime}",
            ]
        ),
        staged,
    )
    _stage(workdir, MEMORY_INFO_FILE, free_text or "", staged)

    return SystemReport(
        timestamp=datetime.now(),
        cpu=cpu,
        memory=memory,
        governors=governors,
        governor_applied=governor_applied,
        staged_files=tuple(staged),
    )


def _per_core_files(cpu_root: Union[str, Path], name: str) -> List[Path]:
    return sorted(
        path
        for path in Path(cpu_root).glob(f"cpu*/cpufreq/{name}")
        if _CORE_DIR.fullmatch(path.parent.parent.name) and path.is_file()
    )


def _stage(workdir: Path, name: str, content: str, staged: List[str]) -> None:
    try:
        (workdir / name).write_text(content)
    except OSError as exc:
        logger.debug("Could not stage %s: %s", name, exc)
        return
    staged.append(name)


def _to_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
