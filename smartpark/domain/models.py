"""
Domain Models for the SmartPark Ledger

This module contains:
1. Value Objects: PlateNumber, Money, ParkingDuration, FeeBreakdown, FeeQuote
2. Entities: ParkedCar (an active car) and Receipt (the outcome of an exit)
3. Enums: ErrorKind, the taxonomy of expected business outcomes
4. Domain Exceptions: raised by the aggregate, translated by the ledger
5. Domain Events: CarEnteredEvent and CarExitedEvent

Value objects validate themselves on construction.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Dict, Any, Union
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
import uuid


# ============================================================================
# ENUMS FOR DOMAIN TYPES
# ============================================================================

class ErrorKind(str, Enum):
    """
    Expected business outcomes of ledger operations.
    None of these is a crash: callers branch on them and show a message.
    """
    DUPLICATE_PLATE = "duplicate_plate"
    LOT_FULL = "lot_full"
    NOT_FOUND = "not_found"
    INVALID_SLOT = "invalid_slot"
    INVALID_INPUT = "invalid_input"
    BACKEND_UNAVAILABLE = "backend_unavailable"

    def __str__(self) -> str:
        return self.value


# ============================================================================
# DOMAIN EXCEPTIONS
# ============================================================================

class ParkingDomainError(Exception):
    """Base exception for rule violations detected by the domain layer"""
    error_kind: ErrorKind = ErrorKind.INVALID_INPUT


class InvalidInputError(ParkingDomainError, ValueError):
    """Plate number or owner name is empty after trimming"""
    error_kind = ErrorKind.INVALID_INPUT


class DuplicatePlateError(ParkingDomainError):
    """A car with the same plate number is already parked"""
    error_kind = ErrorKind.DUPLICATE_PLATE


class LotFullError(ParkingDomainError):
    """Every slot is occupied"""
    error_kind = ErrorKind.LOT_FULL


class CarNotFoundError(ParkingDomainError, LookupError):
    """No active car matches the plate number"""
    error_kind = ErrorKind.NOT_FOUND


class InvalidSlotError(ParkingDomainError, LookupError):
    """Slot number lies outside [1, capacity]"""
    error_kind = ErrorKind.INVALID_SLOT


class InconsistentLotError(ParkingDomainError):
    """Stored active cars share a plate number or a slot number"""
    error_kind = ErrorKind.BACKEND_UNAVAILABLE


# ============================================================================
# DOMAIN PRIMITIVES / VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)  # Value objects are immutable
class PlateNumber:
    """
    Value Object: normalised plate number

    The plate is the natural key of a parked car. Surrounding whitespace is
    removed and letters are upper-cased before any comparison or storage, so
    "  rad 123a " and "RAD 123A" are the same plate.
    """
    value: str

    def __post_init__(self):
        normalized = (self.value or "").strip().upper()
        if not normalized:
            raise InvalidInputError("Plate number cannot be empty")
        object.__setattr__(self, 'value', normalized)

    @classmethod
    def parse(cls, raw: Optional[str]) -> 'PlateNumber':
        """Build a plate from raw user input"""
        return cls(raw or "")

    def __str__(self) -> str:
        return self.value


def normalize_owner_name(raw: Optional[str]) -> str:
    """Trim an owner name, rejecting blank input"""
    name = (raw or "").strip()
    if not name:
        raise InvalidInputError("Owner name cannot be empty")
    return name


def normalize_timestamp(value: datetime) -> datetime:
    """
    Bring a timestamp to the form every storage backend returns it in.

    Aware values are converted to naive UTC, since SQL DateTime columns and
    BSON dates both come back without tzinfo. Microseconds are truncated to
    whole milliseconds, the resolution of BSON dates.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


@dataclass(frozen=True)
class Money:
    """
    Value Object: Monetary amount with currency
    Provides arithmetic operations with validation
    """
    amount: Decimal
    currency: str = "RWF"

    def __post_init__(self):
        """Validate money amount"""
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

        if self.amount < Decimal('0'):
            raise ValueError("Money amount cannot be negative")

        if len(self.currency) != 3:
            raise ValueError(f"Currency must be 3-letter code: {self.currency}")

    @classmethod
    def zero(cls, currency: str = "RWF") -> 'Money':
        return cls(Decimal('0'), currency)

    def __add__(self, other: 'Money') -> 'Money':
        """Add two money amounts (same currency only)"""
        if self.currency != other.currency:
            raise ValueError(f"Cannot add {self.currency} to {other.currency}")
        return Money(self.amount + other.amount, self.currency)

    def __mul__(self, multiplier: Union[int, Decimal]) -> 'Money':
        """Multiply money by a non-negative count or decimal"""
        if multiplier < 0:
            raise ValueError("Multiplier cannot be negative")
        return Money(self.amount * Decimal(multiplier), self.currency)

    def format(self) -> str:
        """Format money for display"""
        return f"{self.amount:,.0f} {self.currency}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": str(self.amount),
            "currency": self.currency
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Money':
        return cls(Decimal(str(data["amount"])), data.get("currency", "RWF"))


@dataclass(frozen=True)
class ParkingDuration:
    """
    Value Object: billed length of a stay

    hours       - whole hours elapsed (floor)
    minutes     - minutes beyond the whole hours, rounded up
    total_hours - hours rounded up, as billed
    """
    hours: int
    minutes: int
    total_hours: int
    elapsed: timedelta = timedelta(0)

    def format(self) -> str:
        return f"{self.hours}h {self.minutes}m"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hours": self.hours,
            "minutes": self.minutes,
            "total_hours": self.total_hours,
            "elapsed_seconds": self.elapsed.total_seconds()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ParkingDuration':
        return cls(
            hours=int(data["hours"]),
            minutes=int(data["minutes"]),
            total_hours=int(data["total_hours"]),
            elapsed=timedelta(seconds=float(data.get("elapsed_seconds", 0)))
        )


@dataclass(frozen=True)
class FeeBreakdown:
    """Value Object: itemised charges printed on a receipt"""
    base_hour: Money
    extra_hours: Money
    total_amount: Money

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_hour": self.base_hour.to_dict(),
            "extra_hours": self.extra_hours.to_dict(),
            "total_amount": self.total_amount.to_dict()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FeeBreakdown':
        return cls(
            base_hour=Money.from_dict(data["base_hour"]),
            extra_hours=Money.from_dict(data["extra_hours"]),
            total_amount=Money.from_dict(data["total_amount"])
        )


@dataclass(frozen=True)
class FeeQuote:
    """Value Object: result of pricing a stay"""
    duration: ParkingDuration
    charges: FeeBreakdown
    total_amount: Money
    clock_skew_detected: bool = False


# ============================================================================
# DOMAIN ENTITIES
# ============================================================================

@dataclass(frozen=True)
class ParkedCar:
    """
    Entity: a car currently occupying a slot

    Identified by its plate number while active. Created on entry and turned
    into a Receipt on exit.
    """
    plate_number: str
    owner_name: str
    slot_number: int
    entry_time: datetime

    def __post_init__(self):
        object.__setattr__(self, 'plate_number', PlateNumber(self.plate_number).value)
        object.__setattr__(self, 'owner_name', normalize_owner_name(self.owner_name))
        object.__setattr__(self, 'entry_time', normalize_timestamp(self.entry_time))
        if self.slot_number < 1:
            raise ValueError(f"Slot number must be positive, got: {self.slot_number}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plate_number": self.plate_number,
            "owner_name": self.owner_name,
            "slot_number": self.slot_number,
            "entry_time": self.entry_time.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ParkedCar':
        entry_time = data["entry_time"]
        if isinstance(entry_time, str):
            entry_time = datetime.fromisoformat(entry_time)
        return cls(
            plate_number=data["plate_number"],
            owner_name=data["owner_name"],
            slot_number=int(data["slot_number"]),
            entry_time=entry_time
        )

    def __str__(self) -> str:
        return f"{self.plate_number} in slot {self.slot_number}"


@dataclass(frozen=True)
class Receipt:
    """
    Immutable snapshot produced when a car exits.
    Carries the fee breakdown; never modified after creation.
    """
    plate_number: str
    owner_name: str
    slot_number: int
    entry_time: datetime
    exit_time: datetime
    duration: ParkingDuration
    charges: FeeBreakdown
    total_amount: Money
    clock_skew_detected: bool = False

    @classmethod
    def for_car(cls, car: ParkedCar, exit_time: datetime, quote: FeeQuote) -> 'Receipt':
        return cls(
            plate_number=car.plate_number,
            owner_name=car.owner_name,
            slot_number=car.slot_number,
            entry_time=car.entry_time,
            exit_time=exit_time,
            duration=quote.duration,
            charges=quote.charges,
            total_amount=quote.total_amount,
            clock_skew_detected=quote.clock_skew_detected
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "plate_number": self.plate_number,
            "owner_name": self.owner_name,
            "slot_number": self.slot_number,
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat(),
            "duration": self.duration.to_dict(),
            "charges": self.charges.to_dict(),
            "total_amount": self.total_amount.to_dict(),
            "clock_skew_detected": self.clock_skew_detected
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Receipt':
        return cls(
            plate_number=data["plate_number"],
            owner_name=data["owner_name"],
            slot_number=int(data["slot_number"]),
            entry_time=datetime.fromisoformat(data["entry_time"]),
            exit_time=datetime.fromisoformat(data["exit_time"]),
            duration=ParkingDuration.from_dict(data["duration"]),
            charges=FeeBreakdown.from_dict(data["charges"]),
            total_amount=Money.from_dict(data["total_amount"]),
            clock_skew_detected=bool(data.get("clock_skew_detected", False))
        )

    def __str__(self) -> str:
        return (
            f"Receipt {self.plate_number}: slot {self.slot_number}, "
            f"{self.duration.format()}, {self.total_amount.format()}"
        )


# ============================================================================
# DOMAIN EVENTS (for event-driven architecture)
# ============================================================================

class DomainEvent(ABC):
    """
    Base class for all domain events
    Events represent something that happened in the domain
    """
    event_type: str = "domain.event"

    def __init__(self):
        self.event_id = str(uuid.uuid4())
        self.timestamp = datetime.now()
        self.version = "1.0"

    @abstractmethod
    def payload(self) -> Dict[str, Any]:
        """Event-specific data"""
        pass

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization"""
        return {
            "event_type": self.event_type,
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "version": self.version,
            "data": self.payload()
        }

    def __str__(self) -> str:
        return f"{self.__class__.__name__} at {self.timestamp}"


class CarEnteredEvent(DomainEvent):
    """Event raised when a car is assigned a slot"""
    event_type = "car.entered"

    def __init__(self, car: ParkedCar, available_slots: int):
        super().__init__()
        self.car = car
        self.available_slots = available_slots
        self.timestamp = car.entry_time

    def payload(self) -> Dict[str, Any]:
        data = self.car.to_dict()
        data["available_slots"] = self.available_slots
        return data


class CarExitedEvent(DomainEvent):
    """Event raised when a car leaves and its receipt is issued"""
    event_type = "car.exited"

    def __init__(self, receipt: Receipt, available_slots: int):
        super().__init__()
        self.receipt = receipt
        self.available_slots = available_slots
        self.timestamp = receipt.exit_time

    def payload(self) -> Dict[str, Any]:
        data = self.receipt.to_dict()
        data["available_slots"] = self.available_slots
        return data
