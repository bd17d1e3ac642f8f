#!/usr/bin/env python3
#
# results_summary.py
#
# Compares benchmark_results_*.json files collected from several hosts
# (Linux and Windows) and prints one grid table, best V2 hashrate first.
#
#   $> randomx-compare host1/benchmark_results_*.json host2/benchmark_results_*.json
#   $> randomx-compare results/*/*/*.json --output merged.json
#
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from tabulate import tabulate

REQUIRED_KEYS = ("machine", "os", "system", "settings", "summary", "comparison")

HEADERS = [
    "Machine", "OS", "CPU", "Threads", "Affinity",
    "V1 H/s", "V2 H/s", "Diff %", "V1 crash", "V2 crash", "V1 H/J", "V2 H/J",
]


def load_result(path: Path) -> Optional[Dict[str, Any]]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (json.JSONDecodeError, OSError) as exc:
        print(f"Invalid JSON file {path}: {exc}", file=sys.stderr)
        return None

    missing = [key for key in REQUIRED_KEYS if key not in data]
    if missing:
        print(f"Invalid results file {path}: missing {', '.join(missing)}", file=sys.stderr)
        return None
    return data


def _num(value: Optional[float]) -> str:
    return "N/A" if value is None else f"{value:.2f}"


def result_row(data: Dict[str, Any]) -> List[str]:
    summary = data["summary"]
    v1 = summary.get("v1", {})
    v2 = summary.get("v2", {})
    settings = data["settings"]
    return [
        data["machine"],
        data["os"],
        data["system"].get("cpu_model", "unknown"),
        str(settings.get("threads", "")),
        settings.get("affinity_mask", ""),
        _num(v1.get("hashrate", {}).get("mean") if v1.get("runs") else None),
        _num(v2.get("hashrate", {}).get("mean") if v2.get("runs") else None),
        _num(data["comparison"].get("diff_pct")),
        f"{v1.get('crashes', 0)}/{v1.get('runs', 0)}",
        f"{v2.get('crashes', 0)}/{v2.get('runs', 0)}",
        _num(v1.get("hashes_per_joule")),
        _num(v2.get("hashes_per_joule")),
    ]


def sort_key(data: Dict[str, Any]) -> float:
    v2 = data["summary"].get("v2", {})
    return -(v2.get("hashrate", {}).get("mean") or 0.0)


def build_table(results: List[Dict[str, Any]]) -> str:
    rows = [result_row(data) for data in sorted(results, key=sort_key)]
    return tabulate(rows, headers=HEADERS, tablefmt="grid", disable_numparse=True)


def merge_results(results: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Group results by machine, keeping every run per machine."""
    merged: Dict[str, Any] = {}
    for data in results:
        machine = merged.setdefault(data["machine"], {"os": {}})
        machine["os"].setdefault(data["os"], []).append(data)
    return merged


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Compare RandomX benchmark results across hosts."
    )
    parser.add_argument("files", nargs="+", type=Path, help="benchmark_results_*.json files")
    parser.add_argument("--output", type=Path, help="Write merged results JSON to this file")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    results = [data for data in (load_result(path) for path in args.files) if data is not None]
    if not results:
        print("No valid results files", file=sys.stderr)
        return 1

    print(build_table(results))

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        with open(args.output, "w", encoding="utf-8") as handle:
            json.dump(merge_results(results), handle, indent=2)
        print(f"Merged results -> {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
