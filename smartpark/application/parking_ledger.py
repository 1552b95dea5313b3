"""
Parking Ledger Application Service

The ledger is the single entry point the presentation layer talks to. It owns
no occupancy state of its own: every mutating call loads the active cars from
the storage collaborator into a ParkingLot aggregate, lets the aggregate
decide, and writes the outcome back in one storage call.

Responsibilities:
1. Serialise entry and exit so no slot is ever assigned twice
2. Translate domain and storage errors into typed result DTOs
3. Retry an entry when a concurrent writer wins a uniqueness race
4. Publish domain events after the write succeeds

Two variants share the same decision policy:
- ParkingLedger       - synchronous, guarded by a threading.RLock
- AsyncParkingLedger  - asyncio, guarded by an asyncio.Lock

Business outcomes (full lot, duplicate plate, unknown plate, bad slot, storage
failure) are returned, never raised, by enter(), exit() and slot_info().
"""

from typing import Dict, List, Optional, Callable, Any
from datetime import datetime
import asyncio
import logging
import threading

from ..config import LedgerSettings
from ..domain.models import (
    ErrorKind, ParkedCar, Receipt, PlateNumber, DomainEvent,
    ParkingDomainError, CarNotFoundError, InvalidSlotError,
    normalize_owner_name, normalize_timestamp
)
from ..domain.aggregates import ParkingLot
from ..domain.strategies import (
    PricingStrategy, SlotAllocationStrategy, StandardPricingStrategy
)
from ..infrastructure.repositories import (
    ParkedCarRepository, AsyncParkedCarRepository, RepositoryFactory,
    RepositoryError, StorageConflictError
)
from ..infrastructure.messaging import EventBus
from .dtos import (
    EntryResultDTO, ExitResultDTO, SlotInfoResultDTO, ParkedCarDTO,
    ReceiptDTO, ParkingStatsDTO, receipts_to_dtos
)


ENTRY_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.INVALID_INPUT: "Plate number and owner name are required",
    ErrorKind.DUPLICATE_PLATE: "Car with this plate number is already parked",
    ErrorKind.LOT_FULL: "Parking is full. No available slots.",
    ErrorKind.BACKEND_UNAVAILABLE: "Failed to enter car. Please try again.",
}

EXIT_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.NOT_FOUND: "Car not found in parking",
    ErrorKind.BACKEND_UNAVAILABLE: "Failed to exit car. Please try again.",
}


def _normalize_plate(plate_number: Optional[str]) -> str:
    return (plate_number or "").strip().upper()


# ============================================================================
# SHARED LEDGER BEHAVIOUR
# ============================================================================

class BaseParkingLedger:
    """Configuration, result building and event publishing shared by both ledgers"""

    def __init__(
        self,
        settings: Optional[LedgerSettings] = None,
        pricing: Optional[PricingStrategy] = None,
        allocation_strategy: Optional[SlotAllocationStrategy] = None,
        clock: Optional[Callable[[], datetime]] = None,
        event_bus: Optional[EventBus] = None
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.settings = settings or LedgerSettings()
        self.pricing = pricing or StandardPricingStrategy(
            self.settings.base_rate, self.settings.extra_rate, self.settings.currency
        )
        self.allocation_strategy = allocation_strategy
        self.event_bus = event_bus
        self._clock = clock or datetime.now
        self._last_receipt: Optional[Receipt] = None

    @property
    def capacity(self) -> int:
        return self.settings.capacity

    @property
    def last_receipt(self) -> Optional[ReceiptDTO]:
        """Receipt of the most recent exit handled by this ledger"""
        if self._last_receipt is None:
            return None
        return ReceiptDTO.from_domain(self._last_receipt)

    def _now(self) -> datetime:
        """Clock reading in the form the storage backends hand back"""
        return normalize_timestamp(self._clock())

    def _build_lot(self, active_cars: List[ParkedCar]) -> ParkingLot:
        return ParkingLot(self.capacity, active_cars, self.allocation_strategy)

    def _check_slot_number(self, slot_number: Any) -> None:
        if isinstance(slot_number, bool) or not isinstance(slot_number, int) \
                or not 1 <= slot_number <= self.capacity:
            raise InvalidSlotError(f"Slot must be between 1 and {self.capacity}")

    def _publish(self, events: List[DomainEvent]) -> None:
        if self.event_bus is not None:
            self.event_bus.publish_all(events)

    # Result builders

    def _entry_rejected(self, plate: str, kind: ErrorKind, reason: Any) -> EntryResultDTO:
        self.logger.warning(f"Entry rejected for {plate or '<blank>'} ({kind}): {reason}")
        return EntryResultDTO(success=False, error=kind, message=ENTRY_MESSAGES[kind])

    def _entry_accepted(self, car: ParkedCar) -> EntryResultDTO:
        return EntryResultDTO(
            success=True,
            plate_number=car.plate_number,
            slot_number=car.slot_number,
            entry_time=car.entry_time,
            message=f"Car {car.plate_number} assigned to slot {car.slot_number}"
        )

    def _exit_rejected(self, plate: str, kind: ErrorKind, reason: Any) -> ExitResultDTO:
        self.logger.warning(f"Exit rejected for {plate or '<blank>'} ({kind}): {reason}")
        return ExitResultDTO(success=False, error=kind, message=EXIT_MESSAGES[kind])

    def _exit_accepted(self, receipt: Receipt) -> ExitResultDTO:
        self._last_receipt = receipt
        return ExitResultDTO(
            success=True,
            receipt=ReceiptDTO.from_domain(receipt),
            message=f"Car {receipt.plate_number} exited successfully"
        )

    def _slot_rejected(self, slot_number: Any, kind: ErrorKind, reason: Any) -> SlotInfoResultDTO:
        self.logger.warning(f"Slot lookup failed for {slot_number!r} ({kind}): {reason}")
        return SlotInfoResultDTO(success=False, error=kind, message=str(reason))

    @staticmethod
    def _slot_found(slot_number: int, car: Optional[ParkedCar]) -> SlotInfoResultDTO:
        return SlotInfoResultDTO(
            success=True,
            slot_number=slot_number,
            car=ParkedCarDTO.from_domain(car) if car else None,
            message=f"Slot {slot_number} is {'occupied' if car else 'available'}"
        )


# ============================================================================
# SYNCHRONOUS LEDGER
# ============================================================================

class ParkingLedger(BaseParkingLedger):
    """
    Synchronous parking ledger

    Entry and exit hold one re-entrant lock for the whole
    read-decide-write sequence.
    """

    def __init__(self, repository: ParkedCarRepository, **kwargs):
        super().__init__(**kwargs)
        self.repository = repository
        self._lock = threading.RLock()
        self.logger.info(f"ParkingLedger initialized with {self.capacity} slots")

    def enter(self, plate_number: str, owner_name: str) -> EntryResultDTO:
        """
        Admit a car and assign it the lowest free slot

        Use Case: Car Entry
        1. Normalise and validate plate and owner
        2. Reject a plate that is already parked
        3. Reject when every slot is taken
        4. Persist the car in the lowest free slot

        Returns: EntryResultDTO with slot number and entry time on success
        """
        plate = _normalize_plate(plate_number)
        self.logger.info(f"Processing entry for {plate or '<blank>'}")

        try:
            plate = PlateNumber.parse(plate_number).value
            owner = normalize_owner_name(owner_name)
        except ParkingDomainError as e:
            return self._entry_rejected(plate, e.error_kind, e)

        attempts = self.settings.max_entry_attempts
        with self._lock:
            for attempt in range(1, attempts + 1):
                try:
                    lot = self._build_lot(self.repository.query_active())
                    car = lot.admit(plate, owner, self._now())
                    self.repository.persist_entry(car)
                except ParkingDomainError as e:
                    return self._entry_rejected(plate, e.error_kind, e)
                except StorageConflictError as e:
                    self.logger.warning(f"Entry attempt {attempt}/{attempts} for {plate} lost a race: {e}")
                    continue
                except RepositoryError as e:
                    return self._entry_rejected(plate, e.error_kind, e)

                self._publish(lot.clear_events())
                return self._entry_accepted(car)

        return self._entry_rejected(
            plate, ErrorKind.BACKEND_UNAVAILABLE,
            f"gave up after {attempts} conflicting attempts"
        )

    def exit(self, plate_number: str) -> ExitResultDTO:
        """
        Release a car's slot and issue its receipt

        A second exit for the same plate fails with NOT_FOUND.
        """
        plate = _normalize_plate(plate_number)
        self.logger.info(f"Processing exit for {plate or '<blank>'}")

        with self._lock:
            try:
                lot = self._build_lot(self.repository.query_active())
                receipt = lot.release(plate, self._now(), self.pricing)
                if not self.repository.persist_exit(receipt.plate_number, receipt):
                    raise CarNotFoundError(f"Car {plate} was removed by another writer")
            except ParkingDomainError as e:
                return self._exit_rejected(plate, e.error_kind, e)
            except RepositoryError as e:
                return self._exit_rejected(plate, e.error_kind, e)

            self._publish(lot.clear_events())
            return self._exit_accepted(receipt)

    # ========================================================================
    # QUERY METHODS (Read-only)
    # ========================================================================

    def available_count(self) -> int:
        return max(0, self.capacity - self.repository.count_active())

    def is_full(self) -> bool:
        return self.available_count() == 0

    def list_active(self) -> List[ParkedCarDTO]:
        """Active cars ordered by entry time, ties broken by slot number"""
        return [ParkedCarDTO.from_domain(car) for car in self.repository.query_active()]

    def find_by_plate(self, plate_number: str) -> Optional[ParkedCarDTO]:
        plate = _normalize_plate(plate_number)
        if not plate:
            return None
        car = self.repository.query_by_plate(plate)
        return ParkedCarDTO.from_domain(car) if car else None

    def slot_info(self, slot_number: int) -> SlotInfoResultDTO:
        """Look up the car in a slot; INVALID_SLOT outside [1, capacity]"""
        try:
            self._check_slot_number(slot_number)
            car = self.repository.query_by_slot(slot_number)
        except ParkingDomainError as e:
            return self._slot_rejected(slot_number, e.error_kind, e)
        except RepositoryError as e:
            return self._slot_rejected(slot_number, e.error_kind, e)
        return self._slot_found(slot_number, car)

    def get_stats(self) -> ParkingStatsDTO:
        return ParkingStatsDTO.from_counts(self.capacity, self.repository.count_active())

    def list_receipts(self, limit: int = 20) -> List[ReceiptDTO]:
        """Most recent receipts first"""
        return receipts_to_dtos(self.repository.list_receipts(limit))


# ============================================================================
# ASYNCHRONOUS LEDGER
# ============================================================================

class AsyncParkingLedger(BaseParkingLedger):
    """
    Asyncio parking ledger for remote backends

    Same policy as ParkingLedger; the only suspension points inside the
    critical section are the awaited storage calls.
    """

    def __init__(self, repository: AsyncParkedCarRepository, **kwargs):
        super().__init__(**kwargs)
        self.repository = repository
        self._lock = asyncio.Lock()
        self.logger.info(f"AsyncParkingLedger initialized with {self.capacity} slots")

    async def enter(self, plate_number: str, owner_name: str) -> EntryResultDTO:
        plate = _normalize_plate(plate_number)
        self.logger.info(f"Processing entry for {plate or '<blank>'}")

        try:
            plate = PlateNumber.parse(plate_number).value
            owner = normalize_owner_name(owner_name)
        except ParkingDomainError as e:
            return self._entry_rejected(plate, e.error_kind, e)

        attempts = self.settings.max_entry_attempts
        async with self._lock:
            for attempt in range(1, attempts + 1):
                try:
                    lot = self._build_lot(await self.repository.query_active())
                    car = lot.admit(plate, owner, self._now())
                    await self.repository.persist_entry(car)
                except ParkingDomainError as e:
                    return self._entry_rejected(plate, e.error_kind, e)
                except StorageConflictError as e:
                    self.logger.warning(f"Entry attempt {attempt}/{attempts} for {plate} lost a race: {e}")
                    continue
                except RepositoryError as e:
                    return self._entry_rejected(plate, e.error_kind, e)

                self._publish(lot.clear_events())
                return self._entry_accepted(car)

        return self._entry_rejected(
            plate, ErrorKind.BACKEND_UNAVAILABLE,
            f"gave up after {attempts} conflicting attempts"
        )

    async def exit(self, plate_number: str) -> ExitResultDTO:
        plate = _normalize_plate(plate_number)
        self.logger.info(f"Processing exit for {plate or '<blank>'}")

        async with self._lock:
            try:
                lot = self._build_lot(await self.repository.query_active())
                receipt = lot.release(plate, self._now(), self.pricing)
                if not await self.repository.persist_exit(receipt.plate_number, receipt):
                    raise CarNotFoundError(f"Car {plate} was removed by another writer")
            except ParkingDomainError as e:
                return self._exit_rejected(plate, e.error_kind, e)
            except RepositoryError as e:
                return self._exit_rejected(plate, e.error_kind, e)

            self._publish(lot.clear_events())
            return self._exit_accepted(receipt)

    async def available_count(self) -> int:
        return max(0, self.capacity - await self.repository.count_active())

    async def is_full(self) -> bool:
        return await self.available_count() == 0

    async def list_active(self) -> List[ParkedCarDTO]:
        return [ParkedCarDTO.from_domain(car) for car in await self.repository.query_active()]

    async def find_by_plate(self, plate_number: str) -> Optional[ParkedCarDTO]:
        plate = _normalize_plate(plate_number)
        if not plate:
            return None
        car = await self.repository.query_by_plate(plate)
        return ParkedCarDTO.from_domain(car) if car else None

    async def slot_info(self, slot_number: int) -> SlotInfoResultDTO:
        try:
            self._check_slot_number(slot_number)
            car = await self.repository.query_by_slot(slot_number)
        except ParkingDomainError as e:
            return self._slot_rejected(slot_number, e.error_kind, e)
        except RepositoryError as e:
            return self._slot_rejected(slot_number, e.error_kind, e)
        return self._slot_found(slot_number, car)

    async def get_stats(self) -> ParkingStatsDTO:
        return ParkingStatsDTO.from_counts(self.capacity, await self.repository.count_active())

    async def list_receipts(self, limit: int = 20) -> List[ReceiptDTO]:
        return receipts_to_dtos(await self.repository.list_receipts(limit))


# ============================================================================
# LEDGER FACTORY
# ============================================================================

class ParkingLedgerFactory:
    """Factory for creating ledgers wired to a storage backend"""

    @staticmethod
    def create_in_memory_ledger(
        settings: Optional[LedgerSettings] = None,
        **kwargs
    ) -> ParkingLedger:
        return ParkingLedger(
            RepositoryFactory.create_in_memory_repository(), settings=settings, **kwargs
        )

    @staticmethod
    def create_sql_ledger(
        database_url: str = "sqlite:///smartpark.db",
        settings: Optional[LedgerSettings] = None,
        **kwargs
    ) -> ParkingLedger:
        return ParkingLedger(
            RepositoryFactory.create_sqlalchemy_repository(database_url),
            settings=settings,
            **kwargs
        )

    @staticmethod
    def create_async_in_memory_ledger(
        settings: Optional[LedgerSettings] = None,
        **kwargs
    ) -> AsyncParkingLedger:
        return AsyncParkingLedger(
            RepositoryFactory.create_async_in_memory_repository(), settings=settings, **kwargs
        )

    @staticmethod
    async def create_mongo_ledger(
        mongo_url: str = "mongodb://localhost:27017",
        database: str = "smartpark",
        settings: Optional[LedgerSettings] = None,
        **kwargs
    ) -> AsyncParkingLedger:
        repository = RepositoryFactory.create_mongo_repository(mongo_url, database)
        await repository.ensure_indexes()
        return AsyncParkingLedger(repository, settings=settings, **kwargs)

    @staticmethod
    def create_ledger_with_config(config: Dict[str, Any], **kwargs) -> ParkingLedger:
        """
        Create a synchronous ledger from a configuration mapping

            {"backend": "sql", "database_url": "...", "ledger": {...}}
        """
        settings = LedgerSettings.from_dict(config.get("ledger", {}))
        backend = config.get("backend", "memory")
        if backend == "memory":
            return ParkingLedgerFactory.create_in_memory_ledger(settings, **kwargs)
        if backend == "sql":
            return ParkingLedgerFactory.create_sql_ledger(
                config.get("database_url", "sqlite:///smartpark.db"), settings, **kwargs
            )
        raise ValueError(f"Unknown ledger backend: {backend}")
