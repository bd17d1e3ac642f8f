#!/usr/bin/env python3

import os
import platform
import shutil
import subprocess
from pathlib import Path

BANNER_WIDTH = 80


def is_windows() -> bool:
    return platform.system() == "Windows"


def print_stage(title: str) -> None:
    print(f"\n{'='*BANNER_WIDTH}")
    print(f">>> {title}")
    print(f"{'='*BANNER_WIDTH}")


def print_command(label: str, cmd: str) -> None:
    print(f"\n{'>'*BANNER_WIDTH}")
    print(f"[{label}]")
    print(f"  {cmd}")
    print(f"{'<'*BANNER_WIDTH}\n")


def run_cmd(cmd: list[str], check: bool = False, capture: bool = True, cwd=None) -> subprocess.CompletedProcess:
    """Run a command, echoing it first. Missing executables yield returncode 127."""
    print(f"  [CMD] {' '.join(str(c) for c in cmd)}")
    try:
        return subprocess.run(cmd, capture_output=capture, text=True, errors="replace",
                              check=check, cwd=cwd)
    except FileNotFoundError:
        if check:
            raise
        return subprocess.CompletedProcess(cmd, 127, "", f"{cmd[0]}: command not found")


def stream_command(cmd: list[str], log_file: Path, stdout_log: Path | None = None, cwd=None) -> int:
    """
    Run cmd, streaming combined stdout/stderr to the console and log files.

    Returns the process exit code. A crashing child is reported through its
    return code; only failure to launch raises.
    """
    with open(log_file, 'w', encoding='utf-8') as log_f:
        stdout_f = open(stdout_log, 'a', encoding='utf-8') if stdout_log else None
        try:
            if stdout_f:
                stdout_f.write(f"\n{'='*BANNER_WIDTH}\n")
                stdout_f.write(f"{' '.join(cmd)}\n")
                stdout_f.write(f"{'='*BANNER_WIDTH}\n\n")
                stdout_f.flush()

            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                bufsize=1,
                cwd=cwd,
            )
            try:
                for line in process.stdout:
                    print(line, end='')
                    log_f.write(line)
                    log_f.flush()
                    if stdout_f:
                        stdout_f.write(line)
                        stdout_f.flush()
                process.wait()
            finally:
                if process.poll() is None:
                    process.kill()
                    process.wait()
                process.stdout.close()
            return process.returncode
        finally:
            if stdout_f:
                stdout_f.close()


def command_exists(name: str) -> bool:
    return shutil.which(name) is not None


def get_real_home() -> Path:
    """Home directory of the invoking user, even when running under sudo."""
    sudo_user = os.environ.get("SUDO_USER")
    if sudo_user and not is_windows():
        try:
            import pwd
            return Path(pwd.getpwnam(sudo_user).pw_dir)
        except (ImportError, KeyError):
            pass
    return Path.home()


def get_machine_name() -> str:
    return os.environ.get('MACHINE_NAME', platform.node() or "unknown")


def get_os_name() -> str:
    """Get OS name and version formatted as <Distro>_<Version>."""
    if is_windows():
        release = platform.release() or "Unknown"
        return f"Windows_{release.replace('.', '_')}"

    try:
        result = subprocess.run(["lsb_release", "-d", "-s"], capture_output=True, text=True)
        if result.returncode == 0:
            parts = result.stdout.strip().split()
            if len(parts) >= 2:
                distro = parts[0]
                version = parts[1].replace('.', '_')
                return f"{distro}_{version}"
    except (OSError, subprocess.SubprocessError):
        pass

    try:
        info = {}
        with open('/etc/os-release', 'r') as f:
            for line in f:
                if '=' in line:
                    k, v = line.strip().split('=', 1)
                    info[k] = v.strip('"')

        if 'NAME' in info and 'VERSION_ID' in info:
            distro = info['NAME'].split()[0]
            version = info['VERSION_ID'].replace('.', '_')
            return f"{distro}_{version}"
    except OSError:
        pass

    return "Unknown_OS"


def is_wsl() -> bool:
    """Detect if running in WSL environment."""
    try:
        with open('/proc/version', 'r') as f:
            content = f.read().lower()
        return 'microsoft' in content or 'wsl' in content
    except OSError:
        return False
