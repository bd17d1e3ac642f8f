"""
Privileges, hugepages and MSR register tuning.

MSR presets disable hardware prefetchers that hurt RandomX's random
scratchpad access pattern. Register values are fixed per CPU family.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from randomx_runner import RunnerError
from randomx_runner.runner_common import command_exists, is_windows, print_stage, run_cmd

DEFAULT_HUGEPAGES = 1250
MSR_ALLOW_WRITES = Path("/sys/module/msr/parameters/allow_writes")


class PrivilegeError(RunnerError):
    """Root or Administrator rights are required."""


@dataclass(frozen=True)
class MsrPreset:
    name: str
    registers: Tuple[Tuple[str, str], ...]


ZEN4_REGISTERS = (
    ("0xc0011020", "0x4400000000000"),
    ("0xc0011021", "0x4000000000040"),
    ("0xc0011022", "0x8680000401570000"),
    ("0xc001102b", "0x2040cc10"),
)

MSR_PRESETS = {
    "zen1_zen2": MsrPreset("Zen1/Zen2", (
        ("0xc0011020", "0"),
        ("0xc0011021", "0x40"),
        ("0xc0011022", "0x1510000"),
        ("0xc001102b", "0x2000cc16"),
    )),
    "zen3": MsrPreset("Zen3", (
        ("0xc0011020", "0x4480000000000"),
        ("0xc0011021", "0x1c000200000040"),
        ("0xc0011022", "0xc000000401570000"),
        ("0xc001102b", "0x2000cc10"),
    )),
    "zen4": MsrPreset("Zen4", ZEN4_REGISTERS),
    "zen5": MsrPreset("Zen5", ZEN4_REGISTERS),
    "intel": MsrPreset("Intel", (
        ("0x1a4", "0xf"),
    )),
}

ZEN4_MODELS = {97, 117}


def is_privileged() -> bool:
    if is_windows():
        try:
            import ctypes
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    return os.geteuid() == 0


def check_root() -> None:
    if not is_privileged():
        who = "Administrator" if is_windows() else "root"
        raise PrivilegeError(
            f"{who} privileges are required for MSR access, hugepages and package installation. "
            f"Re-run elevated (e.g. sudo randomx-runner) or pass --skip-msr --skip-deps --hugepages 0."
        )


def setup_hugepages(count: int = DEFAULT_HUGEPAGES) -> bool:
    print_stage("Setting up hugepages")
    if count <= 0:
        print("  [SKIP] Hugepages disabled")
        return False
    if is_windows():
        print("  [WARN] Large pages on Windows need the 'Lock pages in memory' privilege")
        print("  [INFO] Grant it with secpol.msc and log in again; the benchmark requests them itself")
        return False

    result = run_cmd(["sysctl", "-w", f"vm.nr_hugepages={count}"])
    if result.returncode == 0:
        print(f"  [OK] vm.nr_hugepages={count}")
        return True
    print(f"  [WARN] Failed to set hugepages: {result.stderr.strip()}")
    return False


def _first_int_field(cpuinfo: str, name: str) -> Optional[int]:
    match = re.search(rf'^{name}\s+:\s*(\d+)', cpuinfo, re.MULTILINE)
    return int(match.group(1)) if match else None


def select_msr_preset(cpuinfo: str) -> Optional[MsrPreset]:
    """Pick the MSR preset matching the CPU described by /proc/cpuinfo text."""
    if re.search(r'AMD Ryzen|AMD EPYC|AuthenticAMD', cpuinfo):
        family = _first_int_field(cpuinfo, "cpu family")
        model = _first_int_field(cpuinfo, "model")
        if family == 25:
            return MSR_PRESETS["zen4"] if model in ZEN4_MODELS else MSR_PRESETS["zen3"]
        if family == 26:
            return MSR_PRESETS["zen5"]
        return MSR_PRESETS["zen1_zen2"]
    if "Intel" in cpuinfo:
        return MSR_PRESETS["intel"]
    return None


def enable_msr_writes(allow_writes: Path = MSR_ALLOW_WRITES) -> None:
    if allow_writes.exists():
        try:
            allow_writes.write_text("on")
            return
        except OSError as e:
            print(f"  [WARN] Could not enable MSR writes via {allow_writes}: {e}")
    run_cmd(["modprobe", "msr", "allow_writes=on"])


def wrmsr_commands(preset: MsrPreset) -> List[List[str]]:
    return [["wrmsr", "-a", register, value] for register, value in preset.registers]


def apply_msr_boost(cpuinfo: str) -> Optional[MsrPreset]:
    print_stage("Applying MSR optimizations")
    if is_windows():
        print("  [WARN] MSR tuning is not supported on Windows, skipping")
        return None

    preset = select_msr_preset(cpuinfo)
    if preset is None:
        print("  [INFO] No supported CPU detected for MSR optimization")
        return None
    print(f"  [INFO] Detected {preset.name} CPU")

    if not command_exists("wrmsr"):
        print("  [WARN] wrmsr not found (install msr-tools), skipping")
        return None

    enable_msr_writes()
    failed = 0
    for cmd in wrmsr_commands(preset):
        result = run_cmd(cmd)
        if result.returncode != 0:
            failed += 1
            print(f"  [WARN] {' '.join(cmd)} failed: {result.stderr.strip()}")

    if failed:
        print(f"  [WARN] {failed} MSR write(s) failed for {preset.name}")
    else:
        print(f"  [OK] MSR register values for {preset.name} applied")
    return preset
