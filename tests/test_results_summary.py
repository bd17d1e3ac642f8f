import io
import json
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

from randomx_runner.results_summary import build_table, load_result, main, merge_results


def result_data(machine, os_name, v1_mean, v2_mean):
    return {
        "machine": machine,
        "os": os_name,
        "system": {"cpu_model": f"{machine} CPU"},
        "settings": {"threads": 8, "affinity_mask": "0xFF"},
        "summary": {
            "v1": {"runs": 10, "crashes": 0, "hashrate": {"mean": v1_mean}, "hashes_per_joule": None},
            "v2": {"runs": 10, "crashes": 1, "hashrate": {"mean": v2_mean}, "hashes_per_joule": 42.0},
        },
        "comparison": {"diff_pct": (v2_mean - v1_mean) / v1_mean * 100},
    }


class ResultsSummaryTest(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def write(self, name, data):
        path = self.dir / name
        path.write_text(json.dumps(data) if not isinstance(data, str) else data)
        return path

    def test_table_sorted_by_v2_hashrate(self):
        table = build_table([
            result_data("slowbox", "Ubuntu_24_04", 1000.0, 1100.0),
            result_data("fastbox", "Windows_11", 5000.0, 5500.0),
        ])
        self.assertLess(table.index("fastbox"), table.index("slowbox"))
        self.assertIn("10.00", table)
        self.assertIn("1/10", table)

    def test_invalid_files_rejected(self):
        with redirect_stderr(io.StringIO()):
            self.assertIsNone(load_result(self.write("broken.json", "{not json")))
            self.assertIsNone(load_result(self.write("partial.json", {"machine": "x"})))

    def test_merge_groups_by_machine_and_os(self):
        merged = merge_results([
            result_data("box", "Ubuntu_24_04", 1.0, 2.0),
            result_data("box", "Windows_11", 1.0, 2.0),
            result_data("box", "Windows_11", 1.0, 3.0),
        ])
        self.assertEqual(set(merged["box"]["os"]), {"Ubuntu_24_04", "Windows_11"})
        self.assertEqual(len(merged["box"]["os"]["Windows_11"]), 2)

    def test_main_writes_merged_output(self):
        a = self.write("a.json", result_data("a", "Ubuntu_24_04", 1000.0, 1200.0))
        b = self.write("b.json", "{")
        output = self.dir / "out" / "merged.json"
        with redirect_stdout(io.StringIO()) as out, redirect_stderr(io.StringIO()):
            rc = main([str(a), str(b), "--output", str(output)])
        self.assertEqual(rc, 0)
        self.assertIn("a CPU", out.getvalue())
        self.assertIn("a", json.loads(output.read_text()))

    def test_main_without_valid_files(self):
        with redirect_stderr(io.StringIO()):
            self.assertEqual(main([str(self.write("x.json", "[]"))]), 1)


if __name__ == "__main__":
    unittest.main()
