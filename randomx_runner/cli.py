#!/usr/bin/env python3

import argparse
import os
import sys
from pathlib import Path

from randomx_runner import RunnerError
from randomx_runner.runner import DEFAULT_NONCES, DEFAULT_RUNS, RandomXRunner
from randomx_runner.runner_common import get_real_home
from randomx_runner.stats import VARIANTS
from randomx_runner.toolchain import DEFAULT_BRANCH, DEFAULT_REPO_URL, RandomXBuild
from randomx_runner.tuning import DEFAULT_HUGEPAGES


def default_work_dir() -> Path:
    env_dir = os.environ.get("RANDOMX_WORK_DIR", "").strip()
    if env_dir:
        return Path(env_dir).expanduser()
    return get_real_home() / "randomx_benchmark"


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Build RandomX and compare v1/v2 hashrate, power and stability",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sudo %(prog)s                         # Full run: 100 runs of v2, then v1
  sudo %(prog)s --runs 10 --threads 8   # Quick comparison with 8 threads
  %(prog)s --plan-only                  # Show detected threads/affinity only
        """
    )
    parser.add_argument('--runs', type=int, default=DEFAULT_RUNS,
                        help=f'Runs per variant (default: {DEFAULT_RUNS})')
    parser.add_argument('--threads', type=int, help='Mining threads (default: derived from L3 size)')
    parser.add_argument('--init-threads', type=int, help='Dataset init threads (default: all logical CPUs)')
    parser.add_argument('--nonces', type=int, default=DEFAULT_NONCES,
                        help=f'Nonces per run (default: {DEFAULT_NONCES})')
    parser.add_argument('--variant', choices=['v1', 'v2', 'both'], default='both',
                        help='Variant(s) to benchmark (default: both, v2 first)')
    parser.add_argument('--avx2', action=argparse.BooleanOptionalAction, default=None,
                        help='Pass --avx2 to the benchmark (default: when the CPU supports it)')
    parser.add_argument('--hugepages', type=int, default=DEFAULT_HUGEPAGES,
                        help=f'vm.nr_hugepages to reserve, 0 to skip (default: {DEFAULT_HUGEPAGES})')
    parser.add_argument('--skip-msr', action='store_true', help='Do not write MSR registers')
    parser.add_argument('--skip-deps', action='store_true', help='Do not check/install build dependencies')
    parser.add_argument('--rebuild', action='store_true', help='Update and rebuild RandomX even if built')
    parser.add_argument('--no-energy', action='store_true', help='Disable RAPL/Power Gadget telemetry')
    parser.add_argument('--work-dir', type=Path, default=default_work_dir(),
                        help='Work directory (default: $RANDOMX_WORK_DIR or ~/randomx_benchmark)')
    parser.add_argument('--repo-url', default=os.environ.get("RANDOMX_REPO_URL", DEFAULT_REPO_URL),
                        help='RandomX git repository')
    parser.add_argument('--branch', default=os.environ.get("RANDOMX_BRANCH", DEFAULT_BRANCH),
                        help='RandomX branch to build')
    parser.add_argument('--plan-only', action='store_true',
                        help='Print detected settings and commands without running anything')
    return parser.parse_args(argv)


def selected_variants(choice: str) -> tuple:
    if choice == 'both':
        return VARIANTS
    return (choice,)


def main(argv=None) -> int:
    args = parse_args(argv)

    if args.runs < 1:
        print(f"[ERROR] --runs must be at least 1 (got {args.runs})")
        return 2

    runner = RandomXRunner(
        work_dir=args.work_dir,
        runs=args.runs,
        threads=args.threads,
        init_threads=args.init_threads,
        nonces=args.nonces,
        variants=selected_variants(args.variant),
        avx2=args.avx2,
        hugepages=args.hugepages,
        skip_msr=args.skip_msr,
        skip_deps=args.skip_deps,
        rebuild=args.rebuild,
        energy=not args.no_energy,
        build=RandomXBuild(args.work_dir, args.repo_url, args.branch),
    )

    try:
        if args.plan_only:
            runner.plan_only()
        else:
            runner.run()
    except RunnerError as e:
        print(f"\n[ERROR] {e}")
        return 1
    except KeyboardInterrupt:
        print("\n[WARN] Interrupted by user")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
