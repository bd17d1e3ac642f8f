"""
CPU topology and capability discovery.

Linux data comes from sysfs (/sys/devices/system/cpu), lscpu and
/proc/cpuinfo. On Windows the topology is synthesized from Win32_Processor
counts: SMT siblings are assumed adjacent and each socket is treated as one
last-level-cache domain.
"""

from __future__ import annotations

import json
import os
import platform
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from randomx_runner.affinity import CpuTopologyEntry, InvalidTopology
from randomx_runner.runner_common import is_windows

SYSFS_CPU = Path("/sys/devices/system/cpu")
PROC_CPUINFO = Path("/proc/cpuinfo")


@dataclass
class SystemInfo:
    cpu_model: str
    logical_cpus: int
    physical_cores: int
    sockets: int
    l3_cache_mb: Optional[int]
    has_avx2: bool
    topology: List[CpuTopologyEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cpu_model": self.cpu_model,
            "logical_cpus": self.logical_cpus,
            "physical_cores": self.physical_cores,
            "sockets": self.sockets,
            "l3_cache_mb": self.l3_cache_mb,
            "has_avx2": self.has_avx2,
            "llc_domains": len({e.llc_domain_id for e in self.topology}),
        }


def parse_cpu_list(text: str) -> set[int]:
    """Parse Linux cpulist format like ``0-3,8``."""
    cpus: set[int] = set()
    for part in text.strip().split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start_str, end_str = part.split("-")
            cpus.update(range(int(start_str), int(end_str) + 1))
        else:
            cpus.add(int(part))
    return cpus


def read_int(path: Path, default: Optional[int] = None) -> Optional[int]:
    try:
        return int(path.read_text().strip())
    except (OSError, ValueError):
        return default


def list_logical_cpus(sysfs_root: Path = SYSFS_CPU) -> List[int]:
    try:
        return sorted(parse_cpu_list((sysfs_root / "online").read_text()))
    except (OSError, ValueError):
        pass

    cpus = []
    for cpu_dir in sysfs_root.glob("cpu[0-9]*"):
        try:
            cpus.append(int(cpu_dir.name[3:]))
        except ValueError:
            continue
    return sorted(cpus)


def read_linux_topology(sysfs_root: Path = SYSFS_CPU) -> List[CpuTopologyEntry]:
    """
    One entry per online logical CPU that exposes a core_id.

    Core ids are only unique within a package, so (package, core_id) pairs
    are renumbered into system-wide core ids. A missing L3 id maps to
    domain 0.
    """
    core_ids: Dict[tuple, int] = {}
    entries = []
    for cpu in list_logical_cpus(sysfs_root):
        base = sysfs_root / f"cpu{cpu}"
        core = read_int(base / "topology" / "core_id")
        if core is None:
            continue
        package = read_int(base / "topology" / "physical_package_id", 0)
        llc = read_int(base / "cache" / "index3" / "id", 0)
        core_id = core_ids.setdefault((package, core), len(core_ids))
        entries.append(CpuTopologyEntry(cpu, core_id, llc))
    return entries


def count_sockets(sysfs_root: Path = SYSFS_CPU) -> int:
    packages = set()
    for cpu in list_logical_cpus(sysfs_root):
        package = read_int(sysfs_root / f"cpu{cpu}" / "topology" / "physical_package_id")
        if package is not None:
            packages.add(package)
    return max(1, len(packages))


def parse_size_kb(text: str) -> Optional[int]:
    """Parse cache sizes such as '32768K', '64 MiB' or '1.5 MB' into KiB."""
    match = re.match(r'\s*([\d.]+)\s*([KMG])?', text.strip(), re.IGNORECASE)
    if not match:
        return None
    value = float(match.group(1))
    unit = (match.group(2) or "K").upper()
    factor = {"K": 1, "M": 1024, "G": 1024 * 1024}[unit]
    return int(value * factor)


def read_sysfs_l3_kb(topology: List[CpuTopologyEntry], sysfs_root: Path = SYSFS_CPU) -> Optional[int]:
    """Total L3 size summed over distinct cache domains."""
    sizes: Dict[int, int] = {}
    for entry in topology:
        if entry.llc_domain_id in sizes:
            continue
        size_file = sysfs_root / f"cpu{entry.logical_id}" / "cache" / "index3" / "size"
        try:
            size_kb = parse_size_kb(size_file.read_text())
        except OSError:
            continue
        if size_kb:
            sizes[entry.llc_domain_id] = size_kb
    if not sizes:
        return None
    return sum(sizes.values())


def parse_lscpu_l3_kb(lscpu_output: str) -> Optional[int]:
    for line in lscpu_output.splitlines():
        if line.strip().startswith("L3 cache"):
            _, _, value = line.partition(":")
            return parse_size_kb(value)
    return None


def parse_lscpu_field(lscpu_output: str, name: str) -> Optional[str]:
    for line in lscpu_output.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() == name:
            return value.strip()
    return None


def run_lscpu() -> str:
    try:
        result = subprocess.run(["lscpu"], capture_output=True, text=True)
        if result.returncode == 0:
            return result.stdout
    except OSError:
        pass
    return ""


def read_cpuinfo(path: Path = PROC_CPUINFO) -> str:
    try:
        return path.read_text(errors="ignore")
    except OSError:
        return ""


def cpuinfo_has_flag(cpuinfo: str, flag: str) -> Optional[bool]:
    """True/False from the first 'flags' line, None if cpuinfo has none."""
    for line in cpuinfo.splitlines():
        if line.startswith("flags"):
            _, _, flags = line.partition(":")
            return flag in flags.split()
    return None


def detect_cpu_model(lscpu_output: str = "", cpuinfo: str = "") -> str:
    model = parse_lscpu_field(lscpu_output, "Model name")
    if model:
        return model
    for line in cpuinfo.splitlines():
        if line.startswith("model name"):
            return line.partition(":")[2].strip()
    return platform.processor() or "Unknown CPU"


# Windows


def query_win32_processors() -> List[Dict[str, Any]]:
    cmd = [
        "powershell", "-NoProfile", "-Command",
        "Get-CimInstance Win32_Processor | "
        "Select-Object Name,NumberOfCores,NumberOfLogicalProcessors,L3CacheSize | "
        "ConvertTo-Json",
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        print(f"  [WARN] PowerShell not available: {e}")
        return []
    if result.returncode != 0 or not result.stdout.strip():
        print(f"  [WARN] Win32_Processor query failed: {result.stderr.strip()}")
        return []
    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        print(f"  [WARN] Could not parse Win32_Processor output: {e}")
        return []
    return data if isinstance(data, list) else [data]


def synthesize_topology(processors: List[Dict[str, Any]]) -> List[CpuTopologyEntry]:
    """Build a topology from per-socket core/logical counts, siblings adjacent."""
    entries = []
    logical_id = 0
    core_id = 0
    for socket, proc in enumerate(processors):
        cores = int(proc.get("NumberOfCores") or 0)
        logical = int(proc.get("NumberOfLogicalProcessors") or cores)
        if cores <= 0:
            continue
        per_core = max(1, logical // cores)
        for _ in range(cores):
            for _ in range(per_core):
                entries.append(CpuTopologyEntry(logical_id, core_id, socket))
                logical_id += 1
            core_id += 1
    return entries


def fallback_topology(logical_cpus: int) -> List[CpuTopologyEntry]:
    """Every logical CPU is its own core in one cache domain."""
    return [CpuTopologyEntry(cpu, cpu, 0) for cpu in range(logical_cpus)]


def detect_windows_system() -> SystemInfo:
    processors = query_win32_processors()
    topology = synthesize_topology(processors)
    if not topology:
        topology = fallback_topology(os.cpu_count() or 1)

    l3_kb = sum(int(p.get("L3CacheSize") or 0) for p in processors)
    model = next((p.get("Name") for p in processors if p.get("Name")), None)

    return SystemInfo(
        cpu_model=(model or platform.processor() or "Unknown CPU").strip(),
        logical_cpus=len(topology),
        physical_cores=len({e.core_id for e in topology}),
        sockets=max(1, len(processors)),
        l3_cache_mb=(l3_kb // 1024) if l3_kb else None,
        has_avx2=True,
        topology=topology,
    )


def detect_linux_system(sysfs_root: Path = SYSFS_CPU, cpuinfo_path: Path = PROC_CPUINFO) -> SystemInfo:
    topology = read_linux_topology(sysfs_root)
    if not topology:
        print("  [WARN] No topology in sysfs, assuming one core per logical CPU")
        topology = fallback_topology(os.cpu_count() or 1)

    lscpu_output = run_lscpu()
    cpuinfo = read_cpuinfo(cpuinfo_path)

    l3_kb = read_sysfs_l3_kb(topology, sysfs_root)
    if l3_kb is None:
        l3_kb = parse_lscpu_l3_kb(lscpu_output)

    has_avx2 = cpuinfo_has_flag(cpuinfo, "avx2")

    return SystemInfo(
        cpu_model=detect_cpu_model(lscpu_output, cpuinfo),
        logical_cpus=len(topology),
        physical_cores=len({e.core_id for e in topology}),
        sockets=count_sockets(sysfs_root),
        l3_cache_mb=(l3_kb // 1024) if l3_kb else None,
        has_avx2=True if has_avx2 is None else has_avx2,
        topology=topology,
    )


def detect_system() -> SystemInfo:
    info = detect_windows_system() if is_windows() else detect_linux_system()
    if not info.topology:
        raise InvalidTopology("no logical CPUs detected")
    return info
