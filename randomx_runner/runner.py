#!/usr/bin/env python3
"""
RandomX v1/v2 benchmark runner.

Pipeline:
- Privilege check, hugepages
- Toolchain detection/installation, RandomX clone and build
- MSR tuning for the detected CPU family
- Thread count and topology-aware affinity detection
- N sequential randomx-benchmark runs per variant (v2 first, then v1)
- Statistics, console/Markdown report, text and JSON results files
"""

from __future__ import annotations

import re
import subprocess
import time
from pathlib import Path
from typing import List, Optional

from randomx_runner.report import BenchmarkReport
from randomx_runner.runner_common import (
    get_machine_name,
    get_os_name,
    is_wsl,
    print_command,
    print_stage,
    stream_command,
)
from randomx_runner.settings import BenchmarkSettings, detect_optimal_settings
from randomx_runner.stats import VARIANTS, RunResult
from randomx_runner.telemetry import EnergyMeter, NullMeter, select_energy_meter
from randomx_runner.toolchain import RandomXBuild, ensure_dependencies
from randomx_runner.topology import SystemInfo, detect_system, read_cpuinfo
from randomx_runner.tuning import DEFAULT_HUGEPAGES, apply_msr_boost, check_root, setup_hugepages

HASHRATE_RE = re.compile(r'Performance:\s*([\d.]+)')
DEFAULT_RUNS = 100
DEFAULT_NONCES = 1000000


def parse_hashrate(output: str) -> Optional[float]:
    """Hashrate from randomx-benchmark's 'Performance: X hashes per second' line."""
    match = HASHRATE_RE.search(output)
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


def build_benchmark_command(binary: Path, settings: BenchmarkSettings, variant: str,
                            nonces: int = DEFAULT_NONCES, avx2: bool = True) -> List[str]:
    cmd = [
        str(binary),
        "--mine", "--jit", "--largePages",
        "--threads", str(settings.threads),
        "--affinity", settings.affinity_mask,
        "--init", str(settings.init_threads),
        "--nonces", str(nonces),
    ]
    if avx2:
        cmd.append("--avx2")
    if variant == "v2":
        cmd.append("--v2")
    return cmd


class RandomXRunner:
    def __init__(self, work_dir: Path, runs: int = DEFAULT_RUNS, threads: Optional[int] = None,
                 init_threads: Optional[int] = None, nonces: int = DEFAULT_NONCES,
                 variants=VARIANTS, avx2: Optional[bool] = None, hugepages: int = DEFAULT_HUGEPAGES,
                 skip_msr: bool = False, skip_deps: bool = False, rebuild: bool = False,
                 energy: bool = True, build: Optional[RandomXBuild] = None):
        """
        Initialize RandomX runner.

        Args:
            work_dir: Directory holding the RandomX checkout and results
            runs: Repetitions per variant
            threads: Mining thread override (None = derive from L3 size)
            init_threads: Dataset init thread override (None = all logical CPUs)
            variants: Variants to run, in order
            avx2: Pass --avx2 (None = follow CPU flags)
            hugepages: vm.nr_hugepages to request (0 disables)
        """
        self.work_dir = Path(work_dir)
        self.runs = max(1, runs)
        self.threads_arg = threads
        self.init_threads_arg = init_threads
        self.nonces = nonces
        self.variants = tuple(variants)
        self.avx2_arg = avx2
        self.hugepages = hugepages
        self.skip_msr = skip_msr
        self.skip_deps = skip_deps
        self.rebuild = rebuild
        self.energy = energy

        self.build = build or RandomXBuild(self.work_dir)
        self.machine_name = get_machine_name()
        self.os_name = get_os_name()
        self.results_dir = self.work_dir / "results" / self.machine_name / self.os_name
        self.log_dir = self.results_dir / "logs"

        self.system: Optional[SystemInfo] = None
        self.settings: Optional[BenchmarkSettings] = None
        self.meter: EnergyMeter = NullMeter()
        self.results: List[RunResult] = []

        if is_wsl():
            print("  [INFO] Running on WSL environment (MSR and RAPL are usually unavailable)")

    @property
    def use_avx2(self) -> bool:
        if self.avx2_arg is not None:
            return self.avx2_arg
        return self.system.has_avx2 if self.system else True

    def detect_settings(self) -> BenchmarkSettings:
        self.system = detect_system()
        self.settings = detect_optimal_settings(self.system, self.threads_arg, self.init_threads_arg)
        return self.settings

    @property
    def needs_privileges(self) -> bool:
        return self.hugepages > 0 or not self.skip_msr or not self.skip_deps

    def prepare(self) -> None:
        if self.needs_privileges:
            check_root()
        else:
            print("  [INFO] No privileged stage requested; running unprivileged")
        if self.hugepages > 0:
            setup_hugepages(self.hugepages)

        if self.skip_deps:
            print("\n  [SKIP] Dependency check skipped")
        else:
            ensure_dependencies()

        self.build.ensure_built(self.rebuild)

        if self.skip_msr:
            print("\n  [SKIP] MSR tuning skipped")
        else:
            apply_msr_boost(read_cpuinfo())

    def command_for(self, variant: str) -> List[str]:
        return build_benchmark_command(self.build.binary, self.settings, variant, self.nonces, self.use_avx2)

    def start_meter(self) -> bool:
        try:
            self.meter.start()
        except (OSError, ValueError) as e:
            print(f"  [WARN] Energy meter '{self.meter.name}' failed to start: {e}")
            return False
        return True

    def run_once(self, variant: str, index: int) -> RunResult:
        """Run randomx-benchmark once; a crash is recorded, never raised."""
        cmd = self.command_for(variant)
        print(f"--- Run {index}/{self.runs} ({variant}) ---")
        print(f"Command: {' '.join(cmd)}")

        log_file = self.log_dir / f"{variant}_run{index:03d}.log"
        start = time.monotonic()
        metering = self.start_meter()
        try:
            exit_code = stream_command(cmd, log_file, self.results_dir / "stdout.log",
                                       cwd=self.build.build_dir)
        except OSError as e:
            print(f"  [ERROR] Failed to launch benchmark: {e}")
            exit_code = 127
        finally:
            energy = self.meter.stop() if metering else None
        wall_time = time.monotonic() - start

        hashrate = None
        if exit_code == 0:
            try:
                hashrate = parse_hashrate(log_file.read_text(encoding="utf-8", errors="ignore"))
            except OSError:
                hashrate = None

        result = RunResult(variant, exit_code, hashrate, energy, wall_time)
        if result.crashed:
            print(f">>> Result: CRASH (exit code: {exit_code})")
        else:
            shown = f"{hashrate:.2f}" if hashrate is not None else "N/A"
            print(f">>> Result: OK (Hashrate: {shown} H/s)")
        print("")
        return result

    def run_variant(self, variant: str) -> List[RunResult]:
        flag = "with --v2 flag" if variant == "v2" else "without --v2 flag"
        print_stage(f"Testing {flag} ({self.runs} runs)")

        variant_results = []
        for i in range(1, self.runs + 1):
            result = self.run_once(variant, i)
            variant_results.append(result)
            self.results.append(result)

        crashes = sum(1 for r in variant_results if r.crashed)
        print(f"\n[INFO] {variant.upper()} testing complete. Crashes: {crashes} / {self.runs}")
        return variant_results

    def source_info(self) -> dict:
        info = {"repo_url": self.build.repo_url, "branch": self.build.branch}
        try:
            result = subprocess.run(
                ["git", "rev-parse", "--short", "HEAD"],
                cwd=self.build.source_dir, capture_output=True, text=True,
            )
            if result.returncode == 0:
                info["commit"] = result.stdout.strip()
        except OSError:
            pass
        return info

    def run_benchmarks(self) -> BenchmarkReport:
        print_stage("Running benchmarks")
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.meter = select_energy_meter(self.energy)

        print_command("BASE COMMAND", " ".join(self.command_for("v1")))
        print(f"  [INFO] Results directory: {self.results_dir}")

        self.results = []
        for variant in self.variants:
            self.run_variant(variant)

        report = BenchmarkReport(
            system=self.system,
            settings=self.settings,
            results=list(self.results),
            runs_per_variant=self.runs,
            machine=self.machine_name,
            os_name=self.os_name,
            source=self.source_info(),
        )
        report.show()
        paths = report.write(self.results_dir)
        print(f"\n  [OK] Results saved to: {paths['text']}")
        print(f"  [OK] Machine-readable results: {paths['json']}")
        return report

    def plan_only(self) -> None:
        self.detect_settings()
        for variant in self.variants:
            print_command(f"{variant.upper()} COMMAND", " ".join(self.command_for(variant)))

    def run(self) -> BenchmarkReport:
        """Main execution flow."""
        print(f"\n{'#'*80}")
        print("# RandomX v2 Benchmark Suite")
        print(f"# Machine: {self.machine_name}")
        print(f"# OS: {self.os_name}")
        print(f"# Work dir: {self.work_dir}")
        print(f"# Runs per variant: {self.runs}")
        print(f"# Variants: {', '.join(self.variants)}")
        print(f"{'#'*80}\n")

        self.prepare()
        self.detect_settings()
        report = self.run_benchmarks()

        print_stage("Benchmark complete!")
        return report
