#!/usr/bin/env python3
"""
Configuration Unit Tests
"""

import os
import tempfile
import unittest
from decimal import Decimal

from pydantic import ValidationError

from smartpark.config import LedgerSettings


class TestLedgerSettings(unittest.TestCase):
    """Unit tests for LedgerSettings"""

    def test_defaults(self):
        settings = LedgerSettings()
        self.assertEqual(settings.capacity, 50)
        self.assertEqual(settings.base_rate, Decimal('500'))
        self.assertEqual(settings.extra_rate, Decimal('300'))
        self.assertEqual(settings.currency, "RWF")
        self.assertEqual(settings.max_entry_attempts, 3)

    def test_validation(self):
        for bad in ({"capacity": 0}, {"base_rate": -1}, {"currency": "RW"},
                    {"max_entry_attempts": 0}, {"unknown": 1}):
            with self.assertRaises(ValidationError, msg=f"Accepted {bad}"):
                LedgerSettings(**bad)

    def test_currency_normalized(self):
        self.assertEqual(LedgerSettings(currency=" usd ").currency, "USD")

    def test_frozen(self):
        settings = LedgerSettings()
        with self.assertRaises(ValidationError):
            settings.capacity = 10

    def test_from_dict_nested(self):
        settings = LedgerSettings.from_dict({"ledger": {"capacity": 12}})
        self.assertEqual(settings.capacity, 12)


class TestYamlLoading(unittest.TestCase):
    """Unit tests for YAML configuration files"""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.temp_dir.cleanup)

    def write(self, content):
        path = os.path.join(self.temp_dir.name, "smartpark.yaml")
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        return path

    def test_load_yaml(self):
        path = self.write("ledger:\n  capacity: 20\n  base_rate: 400\n  currency: usd\n")

        settings = LedgerSettings.from_yaml(path)

        self.assertEqual(settings.capacity, 20)
        self.assertEqual(settings.base_rate, Decimal('400'))
        self.assertEqual(settings.extra_rate, Decimal('300'))
        self.assertEqual(settings.currency, "USD")

    def test_empty_yaml_gives_defaults(self):
        self.assertEqual(LedgerSettings.from_yaml(self.write("")), LedgerSettings())

    def test_non_mapping_rejected(self):
        with self.assertRaises(ValueError):
            LedgerSettings.from_yaml(self.write("- 1\n- 2\n"))


if __name__ == '__main__':
    unittest.main()
