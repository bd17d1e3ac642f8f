import io
import unittest
from contextlib import redirect_stdout

from randomx_runner.affinity import CpuTopologyEntry
from randomx_runner.settings import detect_optimal_settings, max_threads_by_cache
from randomx_runner.topology import SystemInfo


def make_system(l3_mb, logical=16, domains=2):
    per_domain = logical // domains
    topology = [
        CpuTopologyEntry(cpu, cpu // 2, cpu // per_domain) for cpu in range(logical)
    ]
    return SystemInfo(
        cpu_model="Test CPU",
        logical_cpus=logical,
        physical_cores=logical // 2,
        sockets=1,
        l3_cache_mb=l3_mb,
        has_avx2=True,
        topology=topology,
    )


class SettingsTest(unittest.TestCase):
    def detect(self, *args, **kwargs):
        with redirect_stdout(io.StringIO()):
            return detect_optimal_settings(*args, **kwargs)

    def test_cache_limits_threads(self):
        settings = self.detect(make_system(8))
        self.assertEqual(settings.threads, 4)
        self.assertEqual(settings.init_threads, 16)
        self.assertEqual(settings.max_threads_by_cache, 4)
        # One primary per core, alternating between the two L3 domains
        self.assertEqual(settings.plan.selected_logical_ids, (0, 8, 2, 10))
        self.assertEqual(settings.affinity_mask, "0x505")

    def test_logical_cpus_limit_threads(self):
        settings = self.detect(make_system(64))
        self.assertEqual(settings.threads, 16)
        self.assertEqual(settings.affinity_mask, "0xFFFF")

    def test_unknown_cache_assumes_all_cpus(self):
        self.assertEqual(max_threads_by_cache(None, 12), 12)
        settings = self.detect(make_system(None))
        self.assertEqual(settings.threads, 16)

    def test_tiny_cache_still_runs_one_thread(self):
        settings = self.detect(make_system(1))
        self.assertEqual(settings.threads, 1)
        self.assertEqual(settings.plan.selected_logical_ids, (0,))

    def test_overrides(self):
        settings = self.detect(make_system(64), threads=6, init_threads=3)
        self.assertEqual(settings.threads, 6)
        self.assertEqual(settings.init_threads, 3)
        self.assertEqual(len(settings.plan.selected_logical_ids), 6)

    def test_override_above_logical_cpus_is_clamped(self):
        with redirect_stdout(io.StringIO()) as out:
            settings = detect_optimal_settings(make_system(64), threads=64)
        self.assertEqual(settings.threads, 16)
        self.assertEqual(settings.affinity_mask, "0xFFFF")
        self.assertIn("[WARN] Requested 64 threads but only 16 logical CPUs", out.getvalue())

    def test_to_dict(self):
        data = self.detect(make_system(8)).to_dict()
        self.assertEqual(data["affinity_cpus"], [0, 8, 2, 10])
        self.assertEqual(data["affinity_mask"], "0x505")


if __name__ == "__main__":
    unittest.main()
