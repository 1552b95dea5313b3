#!/usr/bin/env python3
"""
Pricing Unit Tests

Tests for the standard tariff and slot allocation strategies.
"""

import unittest
from datetime import timedelta
from decimal import Decimal

from smartpark.domain.models import Money
from smartpark.domain.strategies import (
    StandardPricingStrategy, LowestAvailableSlotStrategy, compute_fee
)
from tests import START_TIME


def stay(**kwargs):
    return START_TIME, START_TIME + timedelta(**kwargs)


class TestStandardPricing(unittest.TestCase):
    """Unit tests for the 500/300 tariff"""

    def setUp(self):
        self.pricing = StandardPricingStrategy(Decimal('500'), Decimal('300'))

    def assertTotal(self, expected, **duration):
        quote = self.pricing.calculate_fee(*stay(**duration))
        self.assertEqual(quote.total_amount.amount, Decimal(expected),
                         msg=f"Wrong total for {duration}")
        return quote

    def test_short_stay_charges_base_rate(self):
        """Test that anything under an hour costs the base rate"""
        self.assertTotal(500, minutes=30)
        self.assertTotal(500, seconds=1)
        self.assertTotal(500, minutes=0)

    def test_exactly_one_hour(self):
        quote = self.assertTotal(500, minutes=60)
        self.assertEqual(quote.duration.hours, 1)
        self.assertEqual(quote.duration.minutes, 0)
        self.assertEqual(quote.duration.total_hours, 1)
        self.assertEqual(quote.charges.extra_hours.amount, Decimal('0'))

    def test_one_minute_past_the_hour(self):
        quote = self.assertTotal(800, minutes=61)
        self.assertEqual(quote.duration.hours, 1)
        self.assertEqual(quote.duration.minutes, 1)
        self.assertEqual(quote.duration.total_hours, 2)

    def test_two_hours_five_minutes(self):
        """Test 2h5m: base + one full extra hour + one partial extra hour"""
        quote = self.assertTotal(1100, minutes=125)
        self.assertEqual(quote.duration.hours, 2)
        self.assertEqual(quote.duration.minutes, 5)
        self.assertEqual(quote.duration.total_hours, 3)
        self.assertEqual(quote.charges.base_hour.amount, Decimal('500'))
        self.assertEqual(quote.charges.extra_hours.amount, Decimal('600'))

    def test_whole_hours_do_not_add_a_partial_hour(self):
        quote = self.assertTotal(800, minutes=120)
        self.assertEqual(quote.duration.minutes, 0)
        self.assertEqual(quote.charges.extra_hours.amount, Decimal('300'))

    def test_partial_second_rounds_minutes_up(self):
        quote = self.assertTotal(800, hours=1, milliseconds=1)
        self.assertEqual(quote.duration.minutes, 1)

    def test_display_extra_hours_matches_accumulated_total(self):
        """Test base + extra_hours == total across many durations"""
        for minutes in range(0, 600, 7):
            quote = self.pricing.calculate_fee(*stay(minutes=minutes, seconds=13))
            self.assertEqual(
                quote.charges.base_hour + quote.charges.extra_hours,
                quote.total_amount,
                msg=f"Mismatch at {minutes}m13s"
            )

    def test_total_never_below_base_rate(self):
        for minutes in (0, 1, 59, 60, 61, 1440):
            quote = self.pricing.calculate_fee(*stay(minutes=minutes))
            self.assertGreaterEqual(quote.total_amount.amount, self.pricing.base_rate.amount)

    def test_negative_elapsed_time_is_clamped(self):
        """Test that an exit before entry is billed as zero time and flagged"""
        entry, exit_time = START_TIME, START_TIME - timedelta(minutes=5)

        with self.assertLogs('StandardPricingStrategy', level='WARNING'):
            quote = self.pricing.calculate_fee(entry, exit_time)

        self.assertTrue(quote.clock_skew_detected)
        self.assertEqual(quote.total_amount.amount, Decimal('500'))
        self.assertEqual(quote.duration.elapsed, timedelta(0))
        self.assertEqual(quote.duration.total_hours, 0)

    def test_normal_stay_is_not_flagged(self):
        quote = self.pricing.calculate_fee(*stay(minutes=10))
        self.assertFalse(quote.clock_skew_detected)

    def test_custom_rates_and_currency(self):
        pricing = StandardPricingStrategy(1000, 250, currency="USD")
        quote = pricing.calculate_fee(*stay(minutes=200))
        self.assertEqual(quote.total_amount, Money(Decimal('1750'), "USD"))

    def test_compute_fee_uses_default_tariff(self):
        quote = compute_fee(*stay(minutes=61))
        self.assertEqual(quote.total_amount.amount, Decimal('800'))
        self.assertEqual(quote.total_amount.currency, "RWF")


class TestLowestAvailableSlot(unittest.TestCase):
    """Unit tests for lowest-index-first allocation"""

    def setUp(self):
        self.strategy = LowestAvailableSlotStrategy()

    def test_empty_lot_starts_at_one(self):
        self.assertEqual(self.strategy.select_slot(5, []), 1)

    def test_reuses_lowest_gap(self):
        self.assertEqual(self.strategy.select_slot(5, [1, 3, 4]), 2)

    def test_full_lot_returns_none(self):
        self.assertIsNone(self.strategy.select_slot(3, [1, 2, 3]))


if __name__ == '__main__':
    unittest.main()
