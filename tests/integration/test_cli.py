#!/usr/bin/env python3
"""
Command-line Integration Tests

Runs the CLI against a temporary SQLite file so that state carries over
between invocations, as it does for a real user.
"""

import io
import os
import tempfile
import unittest
from contextlib import redirect_stdout

from smartpark.config import LedgerSettings
from smartpark.application.parking_ledger import ParkingLedgerFactory
from smartpark.main import main, build_parser, ParkingApplication
from tests import FakeClock


class TestParkingApplication(unittest.TestCase):
    """Integration tests for command dispatch over an in-memory ledger"""

    def setUp(self):
        self.clock = FakeClock()
        self.ledger = ParkingLedgerFactory.create_in_memory_ledger(
            LedgerSettings(capacity=2), clock=self.clock
        )
        self.out = io.StringIO()
        self.app = ParkingApplication(self.ledger, out=self.out)
        self.parser = build_parser()

    def run_command(self, *argv):
        return self.app.run(self.parser.parse_args(list(argv)))

    def test_enter_and_exit(self):
        self.assertEqual(self.run_command("enter", "rad 1", "Jane"), 0)
        self.clock.advance(minutes=125)
        self.assertEqual(self.run_command("exit", "RAD 1"), 0)

        output = self.out.getvalue()
        self.assertIn("Car RAD 1 assigned to slot 1", output)
        self.assertIn("Car RAD 1 exited successfully", output)
        self.assertIn("Total:    1,100 RWF", output)

    def test_failures_exit_with_one(self):
        self.assertEqual(self.run_command("exit", "NOPE"), 1)
        self.assertEqual(self.run_command("slot", "9"), 1)
        self.assertEqual(self.run_command("find", "NOPE"), 1)
        self.assertIn("Car not found in parking", self.out.getvalue())

    def test_status_and_list(self):
        self.run_command("enter", "A", "Owner")
        self.run_command("enter", "B", "Owner")

        self.assertEqual(self.run_command("status"), 0)
        self.assertEqual(self.run_command("list"), 0)

        output = self.out.getvalue()
        self.assertIn("Occupied:  2/2 (100.0%)", output)
        self.assertIn("Parking is full.", output)
        self.assertIn("[  2] B", output)


class TestMain(unittest.TestCase):
    """Integration tests for the smartpark entry point"""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.temp_dir.cleanup)
        self.database_url = f"sqlite:///{os.path.join(self.temp_dir.name, 'lot.db')}"

    def smartpark(self, *argv):
        out = io.StringIO()
        with redirect_stdout(out):
            code = main(["--database-url", self.database_url, *argv])
        return code, out.getvalue()

    def test_state_persists_between_invocations(self):
        code, output = self.smartpark("enter", "RAD 123A", "Jane Doe")
        self.assertEqual(code, 0)
        self.assertIn("assigned to slot 1", output)

        code, output = self.smartpark("enter", "rad 123a", "Jane Doe")
        self.assertEqual(code, 1)
        self.assertIn("already parked", output)

        code, output = self.smartpark("find", "RAD 123A")
        self.assertEqual(code, 0)
        self.assertIn("Jane Doe", output)

        code, output = self.smartpark("exit", "RAD 123A")
        self.assertEqual(code, 0)

        code, output = self.smartpark("receipts", "--limit", "1")
        self.assertEqual(code, 0)
        self.assertIn("RAD 123A", output)

    def test_config_file(self):
        config = os.path.join(self.temp_dir.name, "smartpark.yaml")
        with open(config, "w", encoding="utf-8") as f:
            f.write("ledger:\n  capacity: 1\n")

        self.smartpark("--config", config, "enter", "A", "Owner")
        code, output = self.smartpark("--config", config, "enter", "B", "Owner")

        self.assertEqual(code, 1)
        self.assertIn("Parking is full. No available slots.", output)

    def test_missing_config_file(self):
        code, _ = self.smartpark("--config", os.path.join(self.temp_dir.name, "nope.yaml"), "status")
        self.assertEqual(code, 2)


if __name__ == '__main__':
    unittest.main()
