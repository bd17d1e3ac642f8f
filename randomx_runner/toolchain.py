"""
Build toolchain provisioning and RandomX compilation.

Linux package managers are tried in the order apt-get, dnf, yum, pacman,
zypper; Windows uses winget, then Chocolatey.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from randomx_runner import RunnerError
from randomx_runner.runner_common import command_exists, is_windows, print_command, print_stage, run_cmd

DEFAULT_REPO_URL = "https://github.com/SChernykh/RandomX.git"
DEFAULT_BRANCH = "v2"


class DependencyError(RunnerError):
    """Toolchain dependencies are missing and could not be installed."""


class BuildError(RunnerError):
    """RandomX could not be cloned or compiled."""


@dataclass(frozen=True)
class PackageManager:
    name: str
    install_cmd: List[str]
    packages: List[str]
    update_cmd: Optional[List[str]] = None


LINUX_PACKAGE_MANAGERS = [
    PackageManager("apt-get", ["apt-get", "install", "-y"],
                   ["git", "cmake", "build-essential", "msr-tools"], ["apt-get", "update"]),
    PackageManager("dnf", ["dnf", "install", "-y"], ["git", "cmake", "gcc", "gcc-c++", "make", "msr-tools"]),
    PackageManager("yum", ["yum", "install", "-y"], ["git", "cmake", "gcc", "gcc-c++", "make", "msr-tools"]),
    PackageManager("pacman", ["pacman", "-S", "--noconfirm"], ["git", "cmake", "base-devel", "msr-tools"]),
    PackageManager("zypper", ["zypper", "install", "-y"], ["git", "cmake", "gcc", "gcc-c++", "make", "msr-tools"]),
]

WINDOWS_PACKAGE_MANAGERS = [
    PackageManager(
        "winget",
        ["winget", "install", "-e", "--accept-package-agreements", "--accept-source-agreements", "--id"],
        ["Git.Git", "Kitware.CMake", "Microsoft.VisualStudio.2022.BuildTools"],
    ),
    PackageManager("choco", ["choco", "install", "-y"], ["git", "cmake", "visualstudio2022buildtools"]),
]


def required_tools(windows: bool) -> Dict[str, List[str]]:
    """Tool label -> executables, any one of which satisfies it."""
    if windows:
        return {
            "git": ["git"],
            "cmake": ["cmake"],
            "C++ compiler": ["cl", "g++", "clang++"],
        }
    return {
        "git": ["git"],
        "cmake": ["cmake"],
        "C++ compiler": ["g++", "c++"],
        "make": ["make"],
        "msr-tools (wrmsr)": ["wrmsr"],
    }


def check_dependencies_installed(windows: Optional[bool] = None) -> bool:
    print_stage("Checking if dependencies are installed")
    if windows is None:
        windows = is_windows()

    missing = False
    for label, candidates in required_tools(windows).items():
        if any(command_exists(c) for c in candidates):
            print(f"  {label}: OK")
        else:
            print(f"  {label}: NOT FOUND")
            missing = True
    return not missing


def detect_package_manager(windows: Optional[bool] = None) -> PackageManager:
    if windows is None:
        windows = is_windows()
    candidates = WINDOWS_PACKAGE_MANAGERS if windows else LINUX_PACKAGE_MANAGERS
    for manager in candidates:
        if command_exists(manager.name):
            print(f"  [INFO] Detected package manager: {manager.name}")
            return manager
    raise DependencyError("No supported package manager found")


def install_dependencies(manager: PackageManager) -> None:
    print_stage("Installing dependencies")

    if manager.update_cmd:
        run_cmd(manager.update_cmd, capture=False)

    # winget takes one package id per invocation
    if manager.name == "winget":
        commands = [manager.install_cmd + [pkg] for pkg in manager.packages]
    else:
        commands = [manager.install_cmd + manager.packages]

    for cmd in commands:
        result = run_cmd(cmd, capture=False)
        if result.returncode != 0:
            raise DependencyError(f"{manager.name} install failed with return code {result.returncode}")

    print("  [OK] Dependencies installed")


def ensure_dependencies() -> None:
    if check_dependencies_installed():
        print("\n  [OK] All dependencies already installed. Skipping installation.")
        return
    print("\n  [INFO] Some dependencies missing. Installing...")
    install_dependencies(detect_package_manager())


class RandomXBuild:
    """Checkout and build directory layout under the work directory."""

    def __init__(self, work_dir: Path, repo_url: str = DEFAULT_REPO_URL,
                 branch: str = DEFAULT_BRANCH, windows: Optional[bool] = None):
        self.work_dir = Path(work_dir)
        self.repo_url = repo_url
        self.branch = branch
        self.windows = is_windows() if windows is None else windows
        self.source_dir = self.work_dir / "RandomX"
        self.build_dir = self.source_dir / "build"

    @property
    def binary(self) -> Path:
        if self.windows:
            return self.build_dir / "Release" / "randomx-benchmark.exe"
        return self.build_dir / "randomx-benchmark"

    def is_built(self) -> bool:
        if not self.binary.is_file():
            return False
        return self.windows or os.access(self.binary, os.X_OK)

    def _git(self, *args: str, cwd: Path) -> None:
        result = run_cmd(["git", *args], capture=False, cwd=cwd)
        if result.returncode != 0:
            raise BuildError(f"git {' '.join(args)} failed with return code {result.returncode}")

    def checkout(self) -> None:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        if self.source_dir.is_dir():
            print("  [INFO] RandomX directory exists, updating...")
            self._git("fetch", "origin", cwd=self.source_dir)
            self._git("checkout", self.branch, cwd=self.source_dir)
            self._git("pull", "origin", self.branch, cwd=self.source_dir)
        else:
            print("  [INFO] Cloning RandomX repository...")
            self._git("clone", self.repo_url, str(self.source_dir), cwd=self.work_dir)
            self._git("checkout", self.branch, cwd=self.source_dir)

    def build_commands(self) -> List[List[str]]:
        nproc = os.cpu_count() or 1
        configure = ["cmake", "-DARCH=native", ".."]
        if self.windows:
            return [configure, ["cmake", "--build", ".", "--config", "Release", "--parallel", str(nproc)]]
        return [configure, ["make", f"-j{nproc}"]]

    def compile(self) -> None:
        self.build_dir.mkdir(parents=True, exist_ok=True)
        for cmd in self.build_commands():
            print_command("BUILD COMMAND", " ".join(cmd))
            try:
                result = subprocess.run(cmd, cwd=self.build_dir)
            except FileNotFoundError as e:
                raise BuildError(f"{cmd[0]} not found: {e}") from e
            if result.returncode != 0:
                raise BuildError(f"{cmd[0]} failed with return code {result.returncode}")

        if not self.is_built():
            raise BuildError(f"Build finished but binary not found: {self.binary}")
        print(f"  [OK] Build complete: {self.binary}")

    def clone_and_build(self) -> Path:
        print_stage("Cloning and building RandomX")
        self.checkout()
        self.compile()
        return self.binary

    def ensure_built(self, rebuild: bool = False) -> Path:
        if self.is_built() and not rebuild:
            print(f"\n  [OK] RandomX benchmark already built at: {self.binary}")
            print("  [SKIP] Skipping clone and build.")
            return self.binary
        if rebuild:
            print("\n  [INFO] Rebuild requested.")
        else:
            print("\n  [INFO] RandomX benchmark not found. Building...")
        return self.clone_and_build()
