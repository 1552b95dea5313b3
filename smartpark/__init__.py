"""
SmartPark Ledger

Occupancy ledger for a fixed-capacity parking lot: slot allocation on entry,
time-based fees and receipts on exit.
"""

from .config import LedgerSettings
from .application.parking_ledger import (
    ParkingLedger, AsyncParkingLedger, ParkingLedgerFactory
)
from .domain.models import ErrorKind

__version__ = "1.0.0"

__all__ = [
    'LedgerSettings',
    'ParkingLedger',
    'AsyncParkingLedger',
    'ParkingLedgerFactory',
    'ErrorKind',
]
