"""Console report, GitHub Markdown summary and results files."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from tabulate import tabulate

from randomx_runner import VERSION
from randomx_runner.settings import BenchmarkSettings
from randomx_runner.stats import Comparison, RunResult, VariantSummary, compare, summarize
from randomx_runner.topology import SystemInfo

RULE = "=" * 38


def fmt(value: Optional[float], unit: str = "") -> str:
    if value is None:
        return "N/A"
    return f"{value:.2f}{' ' + unit if unit else ''}"


@dataclass
class BenchmarkReport:
    system: SystemInfo
    settings: BenchmarkSettings
    results: List[RunResult]
    runs_per_variant: int
    machine: str = ""
    os_name: str = ""
    source: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now().strftime("%Y%m%d_%H%M%S"))

    def __post_init__(self):
        self.summaries: Dict[str, VariantSummary] = summarize(self.results)
        self.comparison: Comparison = compare(self.summaries["v2"], self.summaries["v1"])

    @property
    def has_energy(self) -> bool:
        return any(s.avg_power_watts is not None for s in self.summaries.values())

    def config_line(self) -> str:
        return (f"threads={self.settings.threads}, affinity={self.settings.affinity_mask}, "
                f"init={self.settings.init_threads}")

    def metric_rows(self) -> List[List[str]]:
        v1, v2 = self.summaries["v1"], self.summaries["v2"]
        rows = [
            ["Crashes", f"{v1.crashes}/{v1.runs}", f"{v2.crashes}/{v2.runs}"],
            ["Success", f"{v1.successes}/{v1.runs}", f"{v2.successes}/{v2.runs}"],
            ["Avg Hashrate", fmt(v1.hashrate.mean, "H/s"), fmt(v2.hashrate.mean, "H/s")],
            ["Std Dev", fmt(v1.hashrate.stddev, "H/s"), fmt(v2.hashrate.stddev, "H/s")],
            ["Min", fmt(v1.hashrate.min, "H/s"), fmt(v2.hashrate.min, "H/s")],
            ["Max", fmt(v1.hashrate.max, "H/s"), fmt(v2.hashrate.max, "H/s")],
            ["Samples", str(v1.hashrate.count), str(v2.hashrate.count)],
        ]
        if self.has_energy:
            rows.append(["Avg Power", fmt(v1.avg_power_watts, "W"), fmt(v2.avg_power_watts, "W")])
            rows.append(["Efficiency", fmt(v1.hashes_per_joule, "H/J"), fmt(v2.hashes_per_joule, "H/J")])
        return rows

    def difference_line(self) -> str:
        c = self.comparison
        if c.diff is None:
            return f"Hashrate Difference: N/A - {c.verdict}"
        return f"Hashrate Difference: {c.diff:.2f} H/s ({c.diff_pct:.2f}%) - {c.verdict}"

    def console_text(self) -> str:
        lines = [
            "",
            RULE,
            "FINAL RESULTS",
            RULE,
            f"System: {self.system.cpu_model}",
            f"Threads: {self.settings.threads} | Affinity: {self.settings.affinity_mask} "
            f"| Init: {self.settings.init_threads}",
            "",
            tabulate(self.metric_rows(), headers=["Metric", "V1", "V2 (--v2)"], tablefmt="grid", disable_numparse=True),
        ]
        crash_codes = {v: s.exit_codes for v, s in self.summaries.items() if s.exit_codes}
        for variant, codes in crash_codes.items():
            detail = ", ".join(f"{code} x{count}" for code, count in sorted(codes.items()))
            lines.append(f"  {variant.upper()} crash exit codes: {detail}")
        lines += [
            "",
            RULE,
            "COMPARISON (V2 vs V1)",
            RULE,
            f"  {self.difference_line()}",
            RULE,
        ]
        return "\n".join(lines)

    def markdown_text(self) -> str:
        lines = [
            "### RandomX v2 Benchmark Results",
            "",
            f"**CPU:** {self.system.cpu_model}",
            f"**Config:** {self.config_line()}",
            "",
            tabulate(self.metric_rows(), headers=["Metric", "V1", "V2"], tablefmt="github", disable_numparse=True),
            "",
            f"**Difference:** {self.difference_line().split(': ', 1)[1]}",
        ]
        return "\n".join(lines)

    def raw_hashrates(self, variant: str) -> List[float]:
        return [r.hashrate for r in self.results
                if r.variant == variant and not r.crashed and r.hashrate is not None]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generation_log": {
                "version": VERSION,
                "date": self.timestamp,
            },
            "machine": self.machine,
            "os": self.os_name,
            "system": self.system.to_dict(),
            "source": self.source,
            "settings": self.settings.to_dict(),
            "runs_per_variant": self.runs_per_variant,
            "summary": {v: s.to_dict() for v, s in self.summaries.items()},
            "comparison": self.comparison.to_dict(),
            "runs": [r.to_dict() for r in self.results],
        }

    def write(self, results_dir: Path) -> Dict[str, Path]:
        """Write the text and JSON results files, returning their paths."""
        results_dir.mkdir(parents=True, exist_ok=True)
        text_file = results_dir / f"benchmark_results_{self.timestamp}.txt"
        json_file = results_dir / f"benchmark_results_{self.timestamp}.json"

        with open(text_file, 'w') as f:
            f.write(self.console_text() + "\n\n")
            f.write(self.markdown_text() + "\n")
            for variant in ("v2", "v1"):
                f.write(f"\nRaw {variant.upper()} Hashrates:\n")
                for value in self.raw_hashrates(variant):
                    f.write(f"{value}\n")

        with open(json_file, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        return {"text": text_file, "json": json_file}

    def show(self) -> None:
        print(self.console_text())
        print("")
        print(RULE)
        print("GITHUB COPY-PASTE SUMMARY (Markdown)")
        print(RULE)
        print("")
        print(self.markdown_text())
        print("")
        print(RULE)
