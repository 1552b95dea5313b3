"""
Data Transfer Objects (DTOs) for the SmartPark Ledger

DTOs are the plain values the ledger hands to the presentation layer:
1. Value DTOs - ParkedCarDTO, ReceiptDTO and their parts
2. Result DTOs - success flag plus either a payload or a typed ErrorKind
3. Status DTOs - aggregate occupancy figures for dashboards

DTO Principles:
- Immutable (frozen pydantic models)
- No business logic, only data and conversion from domain objects
- Serialization/deserialization support
"""

from typing import Dict, List, Optional, Any
from datetime import datetime
from decimal import Decimal
import json

from pydantic import BaseModel, ConfigDict

from ..domain.models import (
    ErrorKind, ParkedCar, Receipt, ParkingDuration, FeeBreakdown
)


# ============================================================================
# BASE DTO CLASSES
# ============================================================================

class BaseDTO(BaseModel):
    """Base DTO with common functionality"""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        frozen=True
    )

    def to_dict(self, exclude_none: bool = False, **kwargs) -> Dict[str, Any]:
        """Convert DTO to dictionary"""
        data = self.model_dump(**kwargs)
        if exclude_none:
            data = {k: v for k, v in data.items() if v is not None}
        return data

    def to_json(self, **kwargs) -> str:
        """Convert DTO to JSON string"""
        return self.model_dump_json(**kwargs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaseDTO':
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> 'BaseDTO':
        data = json.loads(json_str)
        return cls(**data)


class ResultDTO(BaseDTO):
    """Base DTO for operation results"""
    success: bool
    error: Optional[ErrorKind] = None
    message: Optional[str] = None


# ============================================================================
# VALUE DTOs
# ============================================================================

class ParkedCarDTO(BaseDTO):
    """DTO for an active car"""
    plate_number: str
    owner_name: str
    slot_number: int
    entry_time: datetime

    @classmethod
    def from_domain(cls, car: ParkedCar) -> 'ParkedCarDTO':
        return cls(
            plate_number=car.plate_number,
            owner_name=car.owner_name,
            slot_number=car.slot_number,
            entry_time=car.entry_time
        )


class DurationDTO(BaseDTO):
    hours: int
    minutes: int
    total_hours: int

    @classmethod
    def from_domain(cls, duration: ParkingDuration) -> 'DurationDTO':
        return cls(
            hours=duration.hours,
            minutes=duration.minutes,
            total_hours=duration.total_hours
        )


class ChargesDTO(BaseDTO):
    base_hour: Decimal
    extra_hours: Decimal
    total_amount: Decimal

    @classmethod
    def from_domain(cls, charges: FeeBreakdown) -> 'ChargesDTO':
        return cls(
            base_hour=charges.base_hour.amount,
            extra_hours=charges.extra_hours.amount,
            total_amount=charges.total_amount.amount
        )


class ReceiptDTO(BaseDTO):
    """DTO for an exit receipt"""
    plate_number: str
    owner_name: str
    slot_number: int
    entry_time: datetime
    exit_time: datetime
    duration: DurationDTO
    charges: ChargesDTO
    total_amount: Decimal
    currency: str = "RWF"
    clock_skew_detected: bool = False

    @classmethod
    def from_domain(cls, receipt: Receipt) -> 'ReceiptDTO':
        return cls(
            plate_number=receipt.plate_number,
            owner_name=receipt.owner_name,
            slot_number=receipt.slot_number,
            entry_time=receipt.entry_time,
            exit_time=receipt.exit_time,
            duration=DurationDTO.from_domain(receipt.duration),
            charges=ChargesDTO.from_domain(receipt.charges),
            total_amount=receipt.total_amount.amount,
            currency=receipt.total_amount.currency,
            clock_skew_detected=receipt.clock_skew_detected
        )


# ============================================================================
# RESULT DTOs
# ============================================================================

class EntryResultDTO(ResultDTO):
    """Result of a car entry"""
    plate_number: Optional[str] = None
    slot_number: Optional[int] = None
    entry_time: Optional[datetime] = None


class ExitResultDTO(ResultDTO):
    """Result of a car exit"""
    receipt: Optional[ReceiptDTO] = None


class SlotInfoResultDTO(ResultDTO):
    """Result of a slot lookup; car is None for a free slot"""
    slot_number: Optional[int] = None
    car: Optional[ParkedCarDTO] = None

    @property
    def is_occupied(self) -> bool:
        return self.car is not None


# ============================================================================
# STATUS DTOs
# ============================================================================

class ParkingStatsDTO(BaseDTO):
    """Occupancy summary for dashboards"""
    total_slots: int
    occupied_slots: int
    available_slots: int
    occupancy_rate: float
    is_full: bool

    @classmethod
    def from_counts(cls, total_slots: int, occupied_slots: int) -> 'ParkingStatsDTO':
        return cls(
            total_slots=total_slots,
            occupied_slots=occupied_slots,
            available_slots=max(0, total_slots - occupied_slots),
            occupancy_rate=round(occupied_slots / total_slots * 100, 2),
            is_full=occupied_slots >= total_slots
        )


def receipts_to_dtos(receipts: List[Receipt]) -> List[ReceiptDTO]:
    return [ReceiptDTO.from_domain(receipt) for receipt in receipts]
