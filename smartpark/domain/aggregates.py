"""
Aggregate Root for the SmartPark Ledger
Following Domain-Driven Design (DDD) Aggregate Pattern

ParkingLot is the consistency boundary for slot occupancy. It is rebuilt from
the set of active cars held by the storage backend, applies the entry and exit
policy, and records domain events for every state change. The set of active
cars is the only source of occupancy: a slot is free exactly when no active
car references it.

Key Concepts:
- The aggregate root enforces the uniqueness invariants (plate, slot)
- Rule violations are raised as typed domain exceptions
- Domain events are collected and drained by the application layer
"""

from typing import List, Optional, Dict, Iterable
from datetime import datetime
import logging

from .models import (
    ParkedCar, Receipt, PlateNumber, DomainEvent,
    CarEnteredEvent, CarExitedEvent, normalize_owner_name,
    DuplicatePlateError, LotFullError, CarNotFoundError, InconsistentLotError
)
from .strategies import (
    SlotAllocationStrategy, PricingStrategy, LowestAvailableSlotStrategy
)


DEFAULT_CAPACITY = 50


# ============================================================================
# BASE AGGREGATE ROOT
# ============================================================================

class AggregateRoot:
    """
    Base class for all aggregate roots
    Provides domain event collection
    """

    def __init__(self):
        self._changes: List[DomainEvent] = []
        self._logger = logging.getLogger(self.__class__.__name__)

    def _add_domain_event(self, event: DomainEvent) -> None:
        """Add a domain event to the list of changes"""
        self._changes.append(event)
        self._logger.debug(f"Added domain event: {event.__class__.__name__}")

    def clear_events(self) -> List[DomainEvent]:
        """Clear and return all domain events"""
        events = self._changes.copy()
        self._changes.clear()
        return events

    def _validate_invariants(self) -> None:
        """Validate aggregate invariants - to be overridden by subclasses"""
        pass


# ============================================================================
# PARKING LOT AGGREGATE
# ============================================================================

class ParkingLot(AggregateRoot):
    """
    Aggregate Root: fixed-capacity lot with numbered slots 1..capacity
    Enforces business rules and invariants for entry and exit
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        active_cars: Iterable[ParkedCar] = (),
        allocation_strategy: Optional[SlotAllocationStrategy] = None
    ):
        super().__init__()
        if capacity < 1:
            raise ValueError(f"Capacity must be at least 1, got: {capacity}")

        self.capacity = capacity
        self.allocation_strategy = allocation_strategy or LowestAvailableSlotStrategy()

        self._cars_by_plate: Dict[str, ParkedCar] = {}
        self._plates_by_slot: Dict[int, str] = {}
        for car in active_cars:
            self._cars_by_plate[car.plate_number] = car
            self._plates_by_slot[car.slot_number] = car.plate_number

        self._validate_invariants()

    def _validate_invariants(self) -> None:
        """
        Validate lot invariants against the loaded active cars

        Cars stored under a larger capacity may sit beyond the current one.
        They stay releasable; the lot simply admits nobody until enough of
        them have left.
        Raises: InconsistentLotError if two active cars share a plate or slot
        """
        if len(self._cars_by_plate) != len(self._plates_by_slot):
            raise InconsistentLotError("Active cars share a plate number or a slot number")

        if self.occupied_slots > self.capacity:
            self._logger.warning(
                f"{self.occupied_slots} active cars exceed capacity {self.capacity}"
            )

        outside = sorted(s for s in self._plates_by_slot if s > self.capacity)
        if outside:
            self._logger.warning(f"Active cars occupy slots {outside} outside the lot")

    # ========================================================================
    # PUBLIC BUSINESS METHODS
    # ========================================================================

    def admit(self, plate_number: str, owner_name: str, entry_time: datetime) -> ParkedCar:
        """
        Assign a slot to an entering car

        Checks run in a fixed order, which decides the reported error when
        several conditions hold: duplicate plate first, then full lot.

        Returns: the new ParkedCar
        Raises: InvalidInputError, DuplicatePlateError, LotFullError
        """
        plate = PlateNumber.parse(plate_number).value
        owner = normalize_owner_name(owner_name)

        if plate in self._cars_by_plate:
            raise DuplicatePlateError(f"Car {plate} is already parked")

        if self.is_full:
            raise LotFullError(f"All {self.capacity} slots are occupied")

        slot_number = self.allocation_strategy.select_slot(
            self.capacity, self._plates_by_slot.keys()
        )
        if slot_number is None:
            raise LotFullError(f"All {self.capacity} slots are occupied")

        car = ParkedCar(
            plate_number=plate,
            owner_name=owner,
            slot_number=slot_number,
            entry_time=entry_time
        )
        self._cars_by_plate[plate] = car
        self._plates_by_slot[slot_number] = plate

        self._add_domain_event(CarEnteredEvent(car, self.available_slots))
        self._logger.info(f"Car {plate} assigned to slot {slot_number}")
        return car

    def release(
        self,
        plate_number: str,
        exit_time: datetime,
        pricing: PricingStrategy
    ) -> Receipt:
        """
        Remove a car from its slot and price the stay
        Returns: Receipt
        Raises: CarNotFoundError
        """
        plate = (plate_number or "").strip().upper()
        car = self._cars_by_plate.get(plate)
        if car is None:
            raise CarNotFoundError(f"Car {plate or '<blank>'} not found in parking")

        quote = pricing.calculate_fee(car.entry_time, exit_time)
        receipt = Receipt.for_car(car, exit_time, quote)

        del self._cars_by_plate[plate]
        del self._plates_by_slot[car.slot_number]

        self._add_domain_event(CarExitedEvent(receipt, self.available_slots))
        self._logger.info(
            f"Car {plate} left slot {car.slot_number}. Fee: {receipt.total_amount.format()}"
        )
        return receipt

    # ========================================================================
    # QUERY METHODS (Read-only)
    # ========================================================================

    @property
    def occupied_slots(self) -> int:
        return len(self._cars_by_plate)

    @property
    def available_slots(self) -> int:
        return max(0, self.capacity - self.occupied_slots)

    @property
    def is_full(self) -> bool:
        return self.occupied_slots >= self.capacity
