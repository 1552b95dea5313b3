"""
Test package for the SmartPark Ledger

Shared helpers:
- FakeClock: deterministic time source injected into ledgers
- START_TIME: fixed instant used as "now" across the suite
"""

from datetime import datetime, timedelta


START_TIME = datetime(2024, 1, 1, 8, 0, 0)


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: datetime = START_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        """Move forward by timedelta(**kwargs), e.g. advance(minutes=61)"""
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def rewind(self, **kwargs) -> datetime:
        self.now = self.now - timedelta(**kwargs)
        return self.now
