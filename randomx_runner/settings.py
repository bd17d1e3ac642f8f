"""Derive thread count, init threads and affinity from the detected system."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from randomx_runner.affinity import AffinityPlan, plan_affinity
from randomx_runner.runner_common import print_stage
from randomx_runner.topology import SystemInfo

# Each RandomX hashing thread wants 2 MB of L3 for its scratchpad
L3_MB_PER_THREAD = 2


@dataclass
class BenchmarkSettings:
    threads: int
    init_threads: int
    max_threads_by_cache: int
    plan: AffinityPlan

    @property
    def affinity_mask(self) -> str:
        return self.plan.hex_mask

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threads": self.threads,
            "init_threads": self.init_threads,
            "max_threads_by_cache": self.max_threads_by_cache,
            "affinity_mask": self.affinity_mask,
            "affinity_cpus": list(self.plan.selected_logical_ids),
        }


def max_threads_by_cache(l3_cache_mb: Optional[int], logical_cpus: int) -> int:
    """Threads the L3 can feed; undetectable L3 is assumed to fit every CPU."""
    if not l3_cache_mb:
        return logical_cpus
    return l3_cache_mb // L3_MB_PER_THREAD


def detect_optimal_settings(system: SystemInfo, threads: Optional[int] = None,
                            init_threads: Optional[int] = None) -> BenchmarkSettings:
    print_stage("Detecting optimal settings")

    by_cache = max_threads_by_cache(system.l3_cache_mb, system.logical_cpus)
    if threads is None:
        threads = max(1, min(system.logical_cpus, by_cache))
    elif threads > system.logical_cpus:
        print(f"  [WARN] Requested {threads} threads but only {system.logical_cpus} logical CPUs; "
              f"clamping to {system.logical_cpus}")
        threads = system.logical_cpus
    else:
        print(f"  [INFO] Thread count overridden: {threads}")
    if init_threads is None:
        init_threads = system.logical_cpus

    plan = plan_affinity(system.topology, threads)
    settings = BenchmarkSettings(
        threads=max(1, threads),
        init_threads=max(1, init_threads),
        max_threads_by_cache=by_cache,
        plan=plan,
    )

    l3_text = f"{system.l3_cache_mb} MB" if system.l3_cache_mb else "unknown"
    print("System detected:")
    print(f"  CPU: {system.cpu_model}")
    print(f"  Logical CPUs: {system.logical_cpus}")
    print(f"  Physical cores: {system.physical_cores}")
    print(f"  Sockets: {system.sockets}")
    print(f"  L3 Cache: {l3_text}")
    print(f"  Max threads by cache: {by_cache}")
    print(f"  Optimal mining threads: {settings.threads}")
    print(f"  Init threads: {settings.init_threads}")
    print(f"  Affinity CPUs: {plan.cpu_list}")
    print(f"  Affinity mask: {settings.affinity_mask}")
    return settings
