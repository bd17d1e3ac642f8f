"""
Energy telemetry around a single benchmark invocation.

RAPL (Linux powercap) is read directly before and after the run. Intel Power
Gadget (Windows/macOS) runs as a logging subprocess for the duration of the
run and its CSV is parsed afterwards.
"""

from __future__ import annotations

import csv
import os
import platform
import re
import subprocess
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from randomx_runner.runner_common import is_windows

POWERCAP_ROOT = Path("/sys/class/powercap")

POWER_GADGET_CANDIDATES = [
    Path(r"C:\Program Files\Intel\Power Gadget 3.6\PowerLog3.0.exe"),
    Path(r"C:\Program Files\Intel\Power Gadget 3.5\PowerLog3.0.exe"),
    Path("/Applications/Intel Power Gadget/PowerLog"),
]


class EnergyMeter:
    """Measures energy over one benchmark invocation, between start() and stop()."""

    name = "none"

    def start(self) -> None:
        pass

    def stop(self) -> Optional[int]:
        """Energy consumed since start() in microjoules, or None."""
        return None


class NullMeter(EnergyMeter):
    """Used when no energy source is available."""


class RaplEnergyMeter(EnergyMeter):
    name = "rapl"

    def __init__(self, domains: List[Path]):
        self.domains = domains
        self._start: Dict[Path, int] = {}

    @staticmethod
    def find_domains(root: Path = POWERCAP_ROOT) -> List[Path]:
        """Top-level package domains (intel-rapl:0, amd-rapl:1, ...), not sub-zones."""
        domains = []
        for pattern in ("intel-rapl:*", "amd-rapl:*"):
            for path in sorted(root.glob(pattern)):
                if path.name.count(":") == 1 and (path / "energy_uj").exists():
                    domains.append(path)
        return domains

    @classmethod
    def detect(cls, root: Path = POWERCAP_ROOT) -> Optional["RaplEnergyMeter"]:
        domains = cls.find_domains(root)
        if not domains:
            return None
        meter = cls(domains)
        try:
            meter._read()
        except (OSError, ValueError) as e:
            print(f"  [WARN] RAPL present but not readable: {e}")
            print("  [INFO] Try: sudo chmod o+r /sys/class/powercap/intel-rapl:*/energy_uj")
            return None
        return meter

    def _read(self) -> Dict[Path, int]:
        return {d: int((d / "energy_uj").read_text().strip()) for d in self.domains}

    def _max_range(self, domain: Path) -> int:
        try:
            return int((domain / "max_energy_range_uj").read_text().strip())
        except (OSError, ValueError):
            return 0

    def start(self) -> None:
        self._start = self._read()

    def stop(self) -> Optional[int]:
        if not self._start:
            return None
        try:
            end = self._read()
        except (OSError, ValueError) as e:
            print(f"  [WARN] RAPL read failed: {e}")
            return None

        total = 0
        for domain, begin in self._start.items():
            finish = end[domain]
            if finish >= begin:
                total += finish - begin
            else:
                # Counter wrapped around
                total += finish + self._max_range(domain) - begin
        self._start = {}
        return total


def parse_power_gadget_csv(text: str) -> Optional[float]:
    """Cumulative package energy in joules from a PowerLog CSV."""
    footer = re.search(r'Cumulative (?:Processor|IA) Energy_0 \(Joules\)\s*=\s*([\d.]+)', text)
    if footer:
        return float(footer.group(1))

    # Logger was stopped before writing its footer; use the last data row
    rows = list(csv.reader(text.splitlines()))
    if not rows:
        return None
    header = [h.strip() for h in rows[0]]
    column = next((i for i, h in enumerate(header) if h.startswith("Cumulative Processor Energy_0")), None)
    if column is None:
        return None
    for row in reversed(rows[1:]):
        if len(row) > column:
            try:
                return float(row[column])
            except ValueError:
                continue
    return None


class PowerGadgetLogger(EnergyMeter):
    name = "power-gadget"

    def __init__(self, executable: Path):
        self.executable = executable
        self._process: Optional[subprocess.Popen] = None
        self._csv_path: Optional[Path] = None

    @classmethod
    def detect(cls) -> Optional["PowerGadgetLogger"]:
        env_path = os.environ.get("POWER_GADGET_PATH")
        candidates = [Path(env_path)] if env_path else POWER_GADGET_CANDIDATES
        for path in candidates:
            if path.is_file():
                return cls(path)
        return None

    def start(self) -> None:
        fd, name = tempfile.mkstemp(prefix="powerlog_", suffix=".csv")
        os.close(fd)
        self._csv_path = Path(name)
        try:
            self._process = subprocess.Popen(
                [str(self.executable), "-resolution", "100", "-duration", "86400", "-file", name],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError:
            self._csv_path.unlink(missing_ok=True)
            self._csv_path = None
            raise

    def stop(self) -> Optional[int]:
        try:
            if self._process is not None:
                self._process.terminate()
                try:
                    self._process.wait(timeout=10)
                except subprocess.TimeoutExpired:
                    self._process.kill()
                    self._process.wait()
            if self._csv_path is None or not self._csv_path.exists():
                return None
            joules = parse_power_gadget_csv(self._csv_path.read_text(errors="ignore"))
            return int(joules * 1_000_000) if joules is not None else None
        finally:
            self._process = None
            if self._csv_path is not None:
                self._csv_path.unlink(missing_ok=True)
                self._csv_path = None


def select_energy_meter(enabled: bool = True) -> EnergyMeter:
    if not enabled:
        print("  [INFO] Energy telemetry disabled")
        return NullMeter()

    if is_windows() or platform.system() == "Darwin":
        meter = PowerGadgetLogger.detect()
        if meter:
            print(f"  [OK] Energy telemetry: Intel Power Gadget ({meter.executable})")
            return meter
    else:
        meter = RaplEnergyMeter.detect()
        if meter:
            names = ", ".join(d.name for d in meter.domains)
            print(f"  [OK] Energy telemetry: RAPL ({names})")
            return meter

    print("  [INFO] No energy telemetry source available")
    return NullMeter()


def average_power_watts(energy_uj: Optional[int], seconds: float) -> Optional[float]:
    if energy_uj is None or seconds <= 0:
        return None
    return energy_uj / 1_000_000 / seconds


def energy_summary(runs: List[Tuple[Optional[int], float]]) -> Tuple[Optional[int], float]:
    """Total microjoules and seconds over runs that have an energy reading."""
    measured = [(e, s) for e, s in runs if e is not None]
    if not measured:
        return None, 0.0
    return sum(e for e, _ in measured), sum(s for _, s in measured)
