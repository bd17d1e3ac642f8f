"""Per-run results and their aggregation."""

from __future__ import annotations

import math
import statistics
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from randomx_runner.telemetry import average_power_watts, energy_summary

VARIANTS = ("v2", "v1")


@dataclass(frozen=True)
class RunResult:
    variant: str
    exit_code: int
    hashrate: Optional[float]
    energy_microjoules: Optional[int]
    wall_time_seconds: float

    @property
    def crashed(self) -> bool:
        return self.exit_code != 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AggregateStats:
    mean: float = 0.0
    stddev: float = 0.0
    min: float = 0.0
    max: float = 0.0
    count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def aggregate(values: Iterable[float]) -> AggregateStats:
    """Mean, sample standard deviation (n-1), min, max and count."""
    data = [float(v) for v in values if v is not None and not math.isnan(v)]
    if not data:
        return AggregateStats()
    stddev = statistics.stdev(data) if len(data) > 1 else 0.0
    return AggregateStats(
        mean=statistics.fmean(data),
        stddev=stddev,
        min=min(data),
        max=max(data),
        count=len(data),
    )


@dataclass
class VariantSummary:
    variant: str
    runs: int
    crashes: int
    successes: int
    hashrate: AggregateStats
    avg_power_watts: Optional[float] = None
    hashes_per_joule: Optional[float] = None
    exit_codes: Dict[int, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["exit_codes"] = {str(k): v for k, v in self.exit_codes.items()}
        return data


def summarize_variant(variant: str, results: Iterable[RunResult]) -> VariantSummary:
    runs = [r for r in results if r.variant == variant]
    crashes = [r for r in runs if r.crashed]
    successes = [r for r in runs if not r.crashed]

    hashrate = aggregate(r.hashrate for r in successes if r.hashrate is not None)

    energy_uj, seconds = energy_summary((r.energy_microjoules, r.wall_time_seconds) for r in successes)
    power = average_power_watts(energy_uj, seconds)
    hashes_per_joule = None
    if power and hashrate.count:
        hashes_per_joule = hashrate.mean / power

    return VariantSummary(
        variant=variant,
        runs=len(runs),
        crashes=len(crashes),
        successes=len(successes),
        hashrate=hashrate,
        avg_power_watts=power,
        hashes_per_joule=hashes_per_joule,
        exit_codes=dict(Counter(r.exit_code for r in crashes)),
    )


@dataclass
class Comparison:
    diff: Optional[float]
    diff_pct: Optional[float]

    @property
    def verdict(self) -> str:
        if self.diff is None:
            return "N/A"
        if self.diff > 0:
            return "V2 is FASTER than V1"
        if self.diff < 0:
            return "V2 is SLOWER than V1"
        return "V2 and V1 have the same performance"

    def to_dict(self) -> Dict[str, Any]:
        return {"diff": self.diff, "diff_pct": self.diff_pct, "verdict": self.verdict}


def compare(v2: VariantSummary, v1: VariantSummary) -> Comparison:
    """V2 relative to V1; undefined unless both variants produced hashrate samples."""
    if not v2.hashrate.count or not v1.hashrate.count or not v1.hashrate.mean:
        return Comparison(None, None)
    diff = v2.hashrate.mean - v1.hashrate.mean
    return Comparison(diff, diff / v1.hashrate.mean * 100)


def summarize(results: List[RunResult]) -> Dict[str, VariantSummary]:
    return {variant: summarize_variant(variant, results) for variant in VARIANTS}
