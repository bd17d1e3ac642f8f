import io
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

from randomx_runner.telemetry import (
    NullMeter,
    PowerGadgetLogger,
    RaplEnergyMeter,
    average_power_watts,
    energy_summary,
    parse_power_gadget_csv,
    select_energy_meter,
)

POWERLOG_WITH_FOOTER = """System Time,RDTSC,Elapsed Time (sec),CPU Utilization(%),Processor Power_0(Watt),Cumulative Processor Energy_0(Joules)
10:00:00:100,1,0.100,90,95.0,9.5
10:00:00:200,2,0.200,91,96.0,19.1

Total Elapsed Time (sec) = 0.200
Cumulative Processor Energy_0 (Joules) = 19.100000
Average Processor Power_0 (Watt) = 95.500000
"""

POWERLOG_TRUNCATED = """System Time,RDTSC,Elapsed Time (sec),CPU Utilization(%),Processor Power_0(Watt),Cumulative Processor Energy_0(Joules)
10:00:00:100,1,0.100,90,95.0,9.5
10:00:00:200,2,0.200,91,96.0,19.1
10:00:00:300,3,0.3
"""


class RaplTest(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.package = self.root / "intel-rapl:0"
        self.package.mkdir()
        (self.package / "energy_uj").write_text("1000\n")
        (self.package / "max_energy_range_uj").write_text("262143328850\n")
        sub = self.root / "intel-rapl:0:0"
        sub.mkdir()
        (sub / "energy_uj").write_text("500\n")

    def tearDown(self):
        self.tmp.cleanup()

    def test_only_package_domains(self):
        self.assertEqual(RaplEnergyMeter.find_domains(self.root), [self.package])

    def test_delta(self):
        meter = RaplEnergyMeter.detect(self.root)
        meter.start()
        (self.package / "energy_uj").write_text("2501000\n")
        self.assertEqual(meter.stop(), 2500000)

    def test_wraparound(self):
        (self.package / "energy_uj").write_text("262143328000\n")
        meter = RaplEnergyMeter.detect(self.root)
        meter.start()
        (self.package / "energy_uj").write_text("150\n")
        self.assertEqual(meter.stop(), 1000)

    def test_stop_without_start(self):
        self.assertIsNone(RaplEnergyMeter([self.package]).stop())

    def test_no_domains(self):
        with tempfile.TemporaryDirectory() as empty:
            self.assertIsNone(RaplEnergyMeter.detect(Path(empty)))


class PowerGadgetTest(unittest.TestCase):
    def test_footer(self):
        self.assertAlmostEqual(parse_power_gadget_csv(POWERLOG_WITH_FOOTER), 19.1)

    def test_last_row_when_footer_missing(self):
        self.assertAlmostEqual(parse_power_gadget_csv(POWERLOG_TRUNCATED), 19.1)

    def test_empty(self):
        self.assertIsNone(parse_power_gadget_csv(""))
        self.assertIsNone(parse_power_gadget_csv("a,b,c\n1,2,3\n"))


class HelpersTest(unittest.TestCase):
    def test_disabled_meter(self):
        with redirect_stdout(io.StringIO()):
            meter = select_energy_meter(enabled=False)
        self.assertIsInstance(meter, NullMeter)
        meter.start()
        self.assertIsNone(meter.stop())

    def test_average_power(self):
        self.assertAlmostEqual(average_power_watts(5_000_000, 2.0), 2.5)
        self.assertIsNone(average_power_watts(None, 2.0))
        self.assertIsNone(average_power_watts(100, 0.0))

    def test_energy_summary(self):
        self.assertEqual(energy_summary([(100, 1.0), (None, 5.0), (300, 2.0)]), (400, 3.0))
        self.assertEqual(energy_summary([(None, 1.0)]), (None, 0.0))


class PowerGadgetLoggerTest(unittest.TestCase):
    def test_launch_failure_removes_csv(self):
        with tempfile.TemporaryDirectory() as tmp:
            csv_path = Path(tmp) / "powerlog_test.csv"
            fd = os.open(csv_path, os.O_CREAT | os.O_WRONLY)
            logger = PowerGadgetLogger(Path("/nonexistent/PowerLog3.0.exe"))
            with mock.patch("randomx_runner.telemetry.tempfile.mkstemp", return_value=(fd, str(csv_path))), \
                    mock.patch("randomx_runner.telemetry.subprocess.Popen",
                               side_effect=FileNotFoundError("PowerLog3.0.exe")):
                with self.assertRaises(FileNotFoundError):
                    logger.start()
            self.assertFalse(csv_path.exists())
            self.assertIsNone(logger.stop())


if __name__ == "__main__":
    unittest.main()
