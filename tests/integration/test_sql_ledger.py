#!/usr/bin/env python3
"""
SQL Integration Tests

Runs the ledger against SQLAlchemy over an in-memory SQLite database,
including the partial unique indexes that guard concurrent writers.
"""

import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import Mock

from sqlalchemy.exc import OperationalError

from smartpark.config import LedgerSettings
from smartpark.domain.models import ErrorKind, ParkedCar, Receipt
from smartpark.domain.strategies import StandardPricingStrategy
from smartpark.application.parking_ledger import ParkingLedger
from smartpark.infrastructure.repositories import (
    RepositoryFactory, SQLAlchemyParkedCarRepository,
    StorageConflictError, BackendUnavailableError
)
from tests import FakeClock, START_TIME
from tests.integration import IntegrationTestConfig, SampleDataGenerator


class SQLTestCase(unittest.TestCase):

    def setUp(self):
        self.repository = RepositoryFactory.create_sqlalchemy_repository(
            IntegrationTestConfig.TEST_DATABASE_URL
        )
        self.clock = FakeClock()
        self.ledger = ParkingLedger(
            self.repository,
            settings=LedgerSettings.from_dict(SampleDataGenerator.create_settings_data()),
            clock=self.clock
        )


class TestSQLRepository(SQLTestCase):
    """Integration tests for SQLAlchemyParkedCarRepository"""

    def test_active_plate_is_unique(self):
        self.repository.persist_entry(ParkedCar("A", "Owner", 1, START_TIME))
        with self.assertRaises(StorageConflictError):
            self.repository.persist_entry(ParkedCar("A", "Owner", 2, START_TIME))

    def test_active_slot_is_unique(self):
        self.repository.persist_entry(ParkedCar("A", "Owner", 1, START_TIME))
        with self.assertRaises(StorageConflictError):
            self.repository.persist_entry(ParkedCar("B", "Owner", 1, START_TIME))

    def test_exited_rows_do_not_block_reuse(self):
        car = ParkedCar("A", "Owner", 1, START_TIME)
        self.repository.persist_entry(car)
        exit_time = START_TIME + timedelta(minutes=90)
        receipt = Receipt.for_car(
            car, exit_time, StandardPricingStrategy().calculate_fee(START_TIME, exit_time)
        )
        self.assertTrue(self.repository.persist_exit("A", receipt))

        self.repository.persist_entry(ParkedCar("A", "Owner", 1, exit_time))
        self.assertEqual(self.repository.count_active(), 1)
        self.assertFalse(self.repository.persist_exit("NOPE", receipt))

    def test_driver_errors_become_backend_unavailable(self):
        session = Mock()
        session.query.side_effect = OperationalError("SELECT 1", {}, Exception("gone"))
        repository = SQLAlchemyParkedCarRepository(lambda: session)

        with self.assertRaises(BackendUnavailableError):
            repository.count_active()
        session.rollback.assert_called_once()
        session.close.assert_called_once()


class TestSQLLedger(SQLTestCase):
    """Integration tests for the ledger over SQLite"""

    def test_full_cycle(self):
        """Test entry, slot reuse, receipts and the lot-full path"""
        cars = SampleDataGenerator.SAMPLE_CARS

        slots = [self.ledger.enter(plate, owner).slot_number for plate, owner in cars[:3]]
        self.assertEqual(slots, [1, 2, 3])
        self.assertEqual(self.ledger.enter(*cars[3]).error, ErrorKind.LOT_FULL)

        self.clock.advance(minutes=125)
        result = self.ledger.exit("rae 456b")
        self.assertTrue(result.success)
        self.assertEqual(result.receipt.total_amount, Decimal('1100'))

        self.assertEqual(self.ledger.enter(*cars[3]).slot_number, 2)
        self.assertEqual(self.ledger.exit("RAE 456B").error, ErrorKind.NOT_FOUND)

    def test_queries(self):
        self.ledger.enter("RAD 123A", "Alice")
        self.clock.advance(minutes=1)
        self.ledger.enter("RAE 456B", "Bob")

        self.assertEqual(
            [c.plate_number for c in self.ledger.list_active()], ["RAD 123A", "RAE 456B"]
        )
        self.assertEqual(self.ledger.find_by_plate(" rad 123a ").owner_name, "Alice")
        self.assertEqual(self.ledger.slot_info(2).car.plate_number, "RAE 456B")
        self.assertFalse(self.ledger.slot_info(3).is_occupied)
        self.assertEqual(self.ledger.get_stats().available_slots, 1)

    def test_receipts_persist_across_ledgers(self):
        self.ledger.enter("A", "Owner")
        self.clock.advance(minutes=61)
        self.ledger.exit("A")

        other = ParkingLedger(self.repository, settings=self.ledger.settings)
        receipts = other.list_receipts()

        self.assertEqual(len(receipts), 1)
        self.assertEqual(receipts[0].plate_number, "A")
        self.assertEqual(receipts[0].total_amount, Decimal('800'))
        self.assertIsNone(other.last_receipt)


class TestSQLTimestamps(SQLTestCase):
    """Integration tests for clock readings stored in SQLite DateTime columns"""

    def test_timezone_aware_clock(self):
        kigali = timezone(timedelta(hours=2))
        clock = FakeClock(START_TIME.replace(tzinfo=kigali))
        ledger = ParkingLedger(self.repository, settings=LedgerSettings(capacity=3), clock=clock)

        entry = ledger.enter("RAD 1", "Jane")
        self.assertTrue(entry.success)
        self.assertEqual(entry.entry_time, datetime(2024, 1, 1, 6, 0))

        clock.advance(minutes=125)
        result = ledger.exit("RAD 1")

        self.assertTrue(result.success)
        self.assertEqual(result.receipt.total_amount, Decimal('1100'))
        self.assertEqual(result.receipt.exit_time, datetime(2024, 1, 1, 8, 5))
        self.assertEqual(ledger.list_receipts()[0].entry_time, entry.entry_time)

    def test_entry_time_matches_stored_value(self):
        self.clock.now = START_TIME.replace(microsecond=654321)

        entry = self.ledger.enter("RAD 1", "Jane")

        self.assertEqual(entry.entry_time.microsecond, 654000)
        self.assertEqual(self.ledger.list_active()[0].entry_time, entry.entry_time)


class TestSQLStoreReopenedSmaller(SQLTestCase):
    """Integration tests for a database reopened with a smaller capacity"""

    def test_cars_leave_from_slots_beyond_capacity(self):
        for plate in ("A", "B", "C"):
            self.assertTrue(self.ledger.enter(plate, "Owner").success)
        self.clock.advance(minutes=61)

        small = ParkingLedger(self.repository, settings=LedgerSettings(capacity=1), clock=self.clock)

        self.assertEqual(small.available_count(), 0)
        self.assertEqual(small.enter("Z", "Owner").error, ErrorKind.LOT_FULL)

        result = small.exit("C")
        self.assertTrue(result.success)
        self.assertEqual(result.receipt.slot_number, 3)
        self.assertEqual(result.receipt.total_amount, Decimal('800'))
        self.assertEqual(self.repository.count_active(), 2)


if __name__ == '__main__':
    unittest.main()
