import io
import os
import subprocess
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

from randomx_runner.toolchain import (
    BuildError,
    DependencyError,
    LINUX_PACKAGE_MANAGERS,
    RandomXBuild,
    WINDOWS_PACKAGE_MANAGERS,
    check_dependencies_installed,
    detect_package_manager,
    install_dependencies,
)

OK = subprocess.CompletedProcess([], 0, "", "")
FAIL = subprocess.CompletedProcess([], 100, "", "E: Unable to locate package")


class DependencyTest(unittest.TestCase):
    def test_all_tools_present(self):
        with mock.patch("randomx_runner.toolchain.command_exists", return_value=True), \
                redirect_stdout(io.StringIO()):
            self.assertTrue(check_dependencies_installed(windows=False))

    def test_missing_wrmsr(self):
        with mock.patch("randomx_runner.toolchain.command_exists", side_effect=lambda n: n != "wrmsr"), \
                redirect_stdout(io.StringIO()) as out:
            self.assertFalse(check_dependencies_installed(windows=False))
        self.assertIn("msr-tools (wrmsr): NOT FOUND", out.getvalue())

    def test_any_compiler_satisfies(self):
        present = {"git", "cmake", "c++", "make", "wrmsr"}
        with mock.patch("randomx_runner.toolchain.command_exists", side_effect=lambda n: n in present), \
                redirect_stdout(io.StringIO()):
            self.assertTrue(check_dependencies_installed(windows=False))

    def test_windows_does_not_need_wrmsr(self):
        present = {"git", "cmake", "cl"}
        with mock.patch("randomx_runner.toolchain.command_exists", side_effect=lambda n: n in present), \
                redirect_stdout(io.StringIO()):
            self.assertTrue(check_dependencies_installed(windows=True))

    def test_detect_package_manager_order(self):
        with mock.patch("randomx_runner.toolchain.command_exists", side_effect=lambda n: n in {"yum", "dnf"}), \
                redirect_stdout(io.StringIO()):
            self.assertEqual(detect_package_manager(windows=False).name, "dnf")

    def test_no_package_manager(self):
        with mock.patch("randomx_runner.toolchain.command_exists", return_value=False):
            with self.assertRaises(DependencyError):
                detect_package_manager(windows=False)

    def test_apt_updates_then_installs(self):
        apt = LINUX_PACKAGE_MANAGERS[0]
        with mock.patch("randomx_runner.toolchain.run_cmd", return_value=OK) as run_cmd, \
                redirect_stdout(io.StringIO()):
            install_dependencies(apt)
        calls = [c.args[0] for c in run_cmd.call_args_list]
        self.assertEqual(calls[0], ["apt-get", "update"])
        self.assertEqual(calls[1], ["apt-get", "install", "-y", "git", "cmake", "build-essential", "msr-tools"])

    def test_winget_installs_one_package_per_call(self):
        winget = WINDOWS_PACKAGE_MANAGERS[0]
        with mock.patch("randomx_runner.toolchain.run_cmd", return_value=OK) as run_cmd, \
                redirect_stdout(io.StringIO()):
            install_dependencies(winget)
        self.assertEqual(run_cmd.call_count, len(winget.packages))
        self.assertEqual(run_cmd.call_args_list[0].args[0][-1], "Git.Git")

    def test_install_failure(self):
        with mock.patch("randomx_runner.toolchain.run_cmd", return_value=FAIL), \
                redirect_stdout(io.StringIO()):
            with self.assertRaises(DependencyError):
                install_dependencies(LINUX_PACKAGE_MANAGERS[1])


class BuildTest(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.work_dir = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def test_binary_paths(self):
        linux = RandomXBuild(self.work_dir, windows=False)
        windows = RandomXBuild(self.work_dir, windows=True)
        self.assertEqual(linux.binary, self.work_dir / "RandomX" / "build" / "randomx-benchmark")
        self.assertEqual(windows.binary, self.work_dir / "RandomX" / "build" / "Release" / "randomx-benchmark.exe")

    def test_build_commands(self):
        linux = RandomXBuild(self.work_dir, windows=False).build_commands()
        self.assertEqual(linux[0], ["cmake", "-DARCH=native", ".."])
        self.assertTrue(linux[1][0] == "make" and linux[1][1].startswith("-j"))

        windows = RandomXBuild(self.work_dir, windows=True).build_commands()
        self.assertEqual(windows[1][:5], ["cmake", "--build", ".", "--config", "Release"])

    def test_is_built_requires_executable(self):
        build = RandomXBuild(self.work_dir, windows=False)
        self.assertFalse(build.is_built())
        build.build_dir.mkdir(parents=True)
        build.binary.write_text("#!/bin/sh\n")
        os.chmod(build.binary, 0o755)
        self.assertTrue(build.is_built())

    def test_ensure_built_skips_existing(self):
        build = RandomXBuild(self.work_dir, windows=False)
        with mock.patch.object(RandomXBuild, "is_built", return_value=True), \
                mock.patch.object(RandomXBuild, "clone_and_build") as clone_and_build, \
                redirect_stdout(io.StringIO()):
            self.assertEqual(build.ensure_built(), build.binary)
        clone_and_build.assert_not_called()

    def test_ensure_built_rebuild(self):
        build = RandomXBuild(self.work_dir, windows=False)
        with mock.patch.object(RandomXBuild, "is_built", return_value=True), \
                mock.patch.object(RandomXBuild, "clone_and_build", return_value=build.binary) as clone_and_build, \
                redirect_stdout(io.StringIO()):
            build.ensure_built(rebuild=True)
        clone_and_build.assert_called_once()

    def test_checkout_clones_fresh(self):
        build = RandomXBuild(self.work_dir, repo_url="https://example.invalid/RandomX.git",
                             branch="v2", windows=False)
        with mock.patch("randomx_runner.toolchain.run_cmd", return_value=OK) as run_cmd, \
                redirect_stdout(io.StringIO()):
            build.checkout()
        calls = [c.args[0] for c in run_cmd.call_args_list]
        self.assertEqual(calls[0], ["git", "clone", "https://example.invalid/RandomX.git", str(build.source_dir)])
        self.assertEqual(calls[1], ["git", "checkout", "v2"])

    def test_checkout_updates_existing(self):
        build = RandomXBuild(self.work_dir, branch="v2", windows=False)
        build.source_dir.mkdir(parents=True)
        with mock.patch("randomx_runner.toolchain.run_cmd", return_value=OK) as run_cmd, \
                redirect_stdout(io.StringIO()):
            build.checkout()
        calls = [c.args[0] for c in run_cmd.call_args_list]
        self.assertEqual(calls, [
            ["git", "fetch", "origin"],
            ["git", "checkout", "v2"],
            ["git", "pull", "origin", "v2"],
        ])

    def test_git_failure_raises(self):
        build = RandomXBuild(self.work_dir, windows=False)
        with mock.patch("randomx_runner.toolchain.run_cmd", return_value=FAIL), \
                redirect_stdout(io.StringIO()):
            with self.assertRaises(BuildError):
                build.checkout()

    def test_compile_failure_raises(self):
        build = RandomXBuild(self.work_dir, windows=False)
        with mock.patch("randomx_runner.toolchain.subprocess.run", return_value=FAIL), \
                redirect_stdout(io.StringIO()):
            with self.assertRaises(BuildError):
                build.compile()

    def test_compile_missing_binary_raises(self):
        build = RandomXBuild(self.work_dir, windows=False)
        with mock.patch("randomx_runner.toolchain.subprocess.run", return_value=OK), \
                redirect_stdout(io.StringIO()):
            with self.assertRaises(BuildError):
                build.compile()


if __name__ == "__main__":
    unittest.main()
