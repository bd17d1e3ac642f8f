"""
Topology-aware CPU affinity selection.

Physical cores are taken first (one logical CPU per core), spread
round-robin across last-level-cache domains so that each CCX/CCD gets an
even share of threads. SMT siblings are used only once every physical
core is taken.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from randomx_runner import RunnerError


class InvalidTopology(RunnerError):
    """Topology input is empty or malformed."""


@dataclass(frozen=True)
class CpuTopologyEntry:
    logical_id: int
    core_id: int
    llc_domain_id: int = 0


@dataclass(frozen=True)
class AffinityPlan:
    selected_logical_ids: Tuple[int, ...]
    bitmask: int

    @property
    def hex_mask(self) -> str:
        """Mask in the form accepted by randomx-benchmark --affinity."""
        return f"0x{self.bitmask:X}"

    @property
    def cpu_list(self) -> str:
        return ",".join(str(cpu) for cpu in self.selected_logical_ids)


def validate_topology(topology: Sequence[CpuTopologyEntry]) -> None:
    if not topology:
        raise InvalidTopology("topology is empty")

    seen = set()
    for entry in topology:
        if entry.logical_id < 0:
            raise InvalidTopology(f"negative logical CPU id: {entry.logical_id}")
        if entry.logical_id in seen:
            raise InvalidTopology(f"duplicate logical CPU id: {entry.logical_id}")
        seen.add(entry.logical_id)


def primary_candidates(topology: Iterable[CpuTopologyEntry]) -> List[CpuTopologyEntry]:
    """First logical CPU of every (cache domain, core) pair, sorted by domain then id."""
    seen_cores = set()
    primaries = []
    for entry in topology:
        key = (entry.llc_domain_id, entry.core_id)
        if key in seen_cores:
            continue
        seen_cores.add(key)
        primaries.append(entry)

    primaries.sort(key=lambda e: (e.llc_domain_id, e.logical_id))
    return primaries


def build_bitmask(logical_ids: Iterable[int]) -> int:
    mask = 0
    for cpu in logical_ids:
        mask |= 1 << cpu
    return mask


def plan_affinity(topology: Sequence[CpuTopologyEntry], num_threads: int) -> AffinityPlan:
    """
    Select which logical CPUs the benchmark threads are bound to.

    Args:
        topology: One entry per logical CPU
        num_threads: Requested thread count (values below 1 are treated as 1)

    Returns:
        AffinityPlan with min(num_threads, len(topology)) CPUs in selection order

    Raises:
        InvalidTopology: topology is empty or has negative/duplicate logical ids
    """
    validate_topology(topology)
    num_threads = max(1, num_threads)

    primaries = primary_candidates(topology)
    by_domain = {}
    for entry in primaries:
        by_domain.setdefault(entry.llc_domain_id, []).append(entry.logical_id)
    domains = sorted(by_domain)

    selected: List[int] = []
    cursors = {domain: 0 for domain in domains}

    # Round-robin sweeps across cache domains
    while len(selected) < num_threads and len(selected) < len(primaries):
        for domain in domains:
            if len(selected) >= num_threads:
                break
            cursor = cursors[domain]
            if cursor < len(by_domain[domain]):
                selected.append(by_domain[domain][cursor])
                cursors[domain] = cursor + 1

    # SMT siblings, lowest id first
    if len(selected) < num_threads:
        taken = set(selected)
        for cpu in sorted(entry.logical_id for entry in topology):
            if len(selected) >= num_threads:
                break
            if cpu not in taken:
                selected.append(cpu)
                taken.add(cpu)

    return AffinityPlan(tuple(selected), build_bitmask(selected))
