"""
Strategy Pattern Implementation for the SmartPark Ledger

This module encapsulates the two algorithms the ledger depends on:
1. Slot Allocation Strategies - which free slot an entering car receives
2. Pricing Strategies - how a stay is turned into a charge

Both are plain, stateless objects so they can be tested in isolation and
swapped at construction time without touching the ledger's decision policy.
"""

from abc import ABC, abstractmethod
from typing import Optional, Iterable, Union
from datetime import datetime, timedelta
from decimal import Decimal
import logging

from .models import Money, ParkingDuration, FeeBreakdown, FeeQuote


MILLISECONDS_PER_MINUTE = 60_000
MILLISECONDS_PER_HOUR = 3_600_000

DEFAULT_BASE_RATE = Decimal('500')
DEFAULT_EXTRA_RATE = Decimal('300')


# ============================================================================
# STRATEGY INTERFACES
# ============================================================================

class SlotAllocationStrategy(ABC):
    """
    Abstract base class for slot allocation
    Picks one slot out of the free ones, or None when the lot is full
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def select_slot(self, capacity: int, occupied_slots: Iterable[int]) -> Optional[int]:
        """
        Choose a slot number in [1, capacity] not present in occupied_slots
        Returns: slot number, or None if every slot is taken
        """
        pass


class PricingStrategy(ABC):
    """
    Abstract base class for pricing strategies
    Defines the interface for fee calculation algorithms
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    @abstractmethod
    def base_rate(self) -> Money:
        """Minimum charge for any stay"""
        pass

    @abstractmethod
    def calculate_fee(self, entry_time: datetime, exit_time: datetime) -> FeeQuote:
        """
        Price a stay from entry to exit
        Returns: duration, itemised charges and total
        """
        pass


# ============================================================================
# SLOT ALLOCATION STRATEGIES
# ============================================================================

class LowestAvailableSlotStrategy(SlotAllocationStrategy):
    """
    Lowest-index-first allocation
    Freed slots are reused before higher-numbered ones, so the result is
    deterministic for any sequence of entries and exits.
    """

    def select_slot(self, capacity: int, occupied_slots: Iterable[int]) -> Optional[int]:
        taken = set(occupied_slots)
        for number in range(1, capacity + 1):
            if number not in taken:
                return number
        return None


# ============================================================================
# PRICING STRATEGIES
# ============================================================================

def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


class StandardPricingStrategy(PricingStrategy):
    """
    Linear tariff: the first hour (or any part of it) costs base_rate, every
    further hour or fraction of an hour costs extra_rate. Rounding always
    favours the operator.

    Durations are handled as integer milliseconds so floor and ceiling are
    exact at hour and minute boundaries.
    """

    def __init__(
        self,
        base_rate: Union[Decimal, int] = DEFAULT_BASE_RATE,
        extra_rate: Union[Decimal, int] = DEFAULT_EXTRA_RATE,
        currency: str = "RWF"
    ):
        super().__init__()
        self._base_rate = Money(Decimal(base_rate), currency)
        self._extra_rate = Money(Decimal(extra_rate), currency)

    @property
    def base_rate(self) -> Money:
        return self._base_rate

    @property
    def extra_rate(self) -> Money:
        return self._extra_rate

    def calculate_fee(self, entry_time: datetime, exit_time: datetime) -> FeeQuote:
        elapsed = exit_time - entry_time
        clock_skew = elapsed < timedelta(0)
        if clock_skew:
            self.logger.warning(
                f"Exit time {exit_time.isoformat()} precedes entry time "
                f"{entry_time.isoformat()}; billing as zero elapsed time"
            )
            elapsed = timedelta(0)

        elapsed_ms = elapsed // timedelta(milliseconds=1)
        full_hours, remainder_ms = divmod(elapsed_ms, MILLISECONDS_PER_HOUR)
        extra_minutes = _ceil_div(remainder_ms, MILLISECONDS_PER_MINUTE)
        total_hours = _ceil_div(elapsed_ms, MILLISECONDS_PER_HOUR)

        # Accumulated charge
        total = self._base_rate
        if full_hours >= 1:
            total = total + self._extra_rate * (full_hours - 1)
            if extra_minutes > 0:
                total = total + self._extra_rate

        # Display value, derived independently of the accumulation above
        extra_hours = self._extra_rate * max(0, total_hours - 1)

        self.logger.debug(
            f"Priced {elapsed_ms}ms as {full_hours}h {extra_minutes}m: {total.format()}"
        )

        return FeeQuote(
            duration=ParkingDuration(
                hours=full_hours,
                minutes=extra_minutes,
                total_hours=total_hours,
                elapsed=elapsed
            ),
            charges=FeeBreakdown(
                base_hour=self._base_rate,
                extra_hours=extra_hours,
                total_amount=total
            ),
            total_amount=total,
            clock_skew_detected=clock_skew
        )


def compute_fee(
    entry_time: datetime,
    exit_time: datetime,
    base_rate: Union[Decimal, int] = DEFAULT_BASE_RATE,
    extra_rate: Union[Decimal, int] = DEFAULT_EXTRA_RATE,
    currency: str = "RWF"
) -> FeeQuote:
    """Price a single stay with the standard tariff"""
    return StandardPricingStrategy(base_rate, extra_rate, currency).calculate_fee(
        entry_time, exit_time
    )
