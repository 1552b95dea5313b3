"""
Repository Pattern Implementation for the SmartPark Ledger

Repositories are the storage collaborator of the ledger. They hold the set of
active cars (the single source of slot occupancy) and the append-only log of
receipts, behind one capability set:

    persist_entry(car)             - record a new active car
    persist_exit(plate, receipt)   - deactivate the car and log its receipt
    query_active()                 - active cars by entry time, then slot
    query_by_slot(n)               - active car in slot n, if any
    query_by_plate(plate)          - active car with that plate, if any
    count_active()                 - number of active cars
    list_receipts(limit)           - most recent receipts first

Storage Implementations:
- InMemoryParkedCarRepository - For testing and single-process use
- SQLAlchemyParkedCarRepository - For relational databases
- AsyncInMemoryParkedCarRepository - Async facade over the in-memory store
- MongoParkedCarRepository - Async document store via motor

Every persistent backend enforces "one active car per plate" and "one active
car per slot" with partial unique indexes, so concurrent writers cannot
double-assign a slot. A violated constraint is reported as
StorageConflictError; driver failures are reported as BackendUnavailableError.
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any, Callable, AsyncIterator, Iterator
from datetime import datetime
from decimal import Decimal
from contextlib import contextmanager, asynccontextmanager
import logging
import threading
from uuid import uuid4

from sqlalchemy import (
    create_engine, Column, Integer, String, Boolean, DateTime,
    DECIMAL, JSON, Index, true, false
)
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy.pool import StaticPool
import pymongo
from pymongo.errors import PyMongoError, DuplicateKeyError
from bson.decimal128 import Decimal128
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection

from ..domain.models import ParkedCar, Receipt, ErrorKind, normalize_timestamp


# ============================================================================
# REPOSITORY ERRORS
# ============================================================================

class RepositoryError(Exception):
    """Base exception for storage failures"""
    error_kind: ErrorKind = ErrorKind.BACKEND_UNAVAILABLE


class BackendUnavailableError(RepositoryError):
    """The storage backend failed or timed out"""
    error_kind = ErrorKind.BACKEND_UNAVAILABLE


class StorageConflictError(RepositoryError):
    """A write would give two active cars the same plate or slot"""
    error_kind = ErrorKind.BACKEND_UNAVAILABLE


# ============================================================================
# REPOSITORY INTERFACES
# ============================================================================

class ParkedCarRepository(ABC):
    """Synchronous storage capability consumed by the ledger"""

    @abstractmethod
    def persist_entry(self, car: ParkedCar) -> ParkedCar:
        """
        Store a newly admitted car
        Raises: StorageConflictError if its plate or slot is already active
        """
        pass

    @abstractmethod
    def persist_exit(self, plate_number: str, receipt: Receipt) -> bool:
        """
        Deactivate the car and append its receipt to the log
        Returns: False if no active car has that plate
        """
        pass

    @abstractmethod
    def query_active(self) -> List[ParkedCar]:
        pass

    @abstractmethod
    def query_by_slot(self, slot_number: int) -> Optional[ParkedCar]:
        pass

    @abstractmethod
    def query_by_plate(self, plate_number: str) -> Optional[ParkedCar]:
        pass

    @abstractmethod
    def count_active(self) -> int:
        pass

    @abstractmethod
    def list_receipts(self, limit: int = 100) -> List[Receipt]:
        pass


class AsyncParkedCarRepository(ABC):
    """Asynchronous storage capability consumed by the async ledger"""

    @abstractmethod
    async def persist_entry(self, car: ParkedCar) -> ParkedCar:
        pass

    @abstractmethod
    async def persist_exit(self, plate_number: str, receipt: Receipt) -> bool:
        pass

    @abstractmethod
    async def query_active(self) -> List[ParkedCar]:
        pass

    @abstractmethod
    async def query_by_slot(self, slot_number: int) -> Optional[ParkedCar]:
        pass

    @abstractmethod
    async def query_by_plate(self, plate_number: str) -> Optional[ParkedCar]:
        pass

    @abstractmethod
    async def count_active(self) -> int:
        pass

    @abstractmethod
    async def list_receipts(self, limit: int = 100) -> List[Receipt]:
        pass


def _sort_active(cars: List[ParkedCar]) -> List[ParkedCar]:
    return sorted(cars, key=lambda car: (car.entry_time, car.slot_number))


# ============================================================================
# IN-MEMORY REPOSITORIES (For Testing)
# ============================================================================

class InMemoryParkedCarRepository(ParkedCarRepository):
    """In-memory repository; thread-safe on its own"""

    def __init__(self):
        self._active: Dict[str, ParkedCar] = {}
        self._receipts: List[Receipt] = []
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def persist_entry(self, car: ParkedCar) -> ParkedCar:
        with self._lock:
            if car.plate_number in self._active:
                raise StorageConflictError(f"Plate {car.plate_number} is already active")
            if any(c.slot_number == car.slot_number for c in self._active.values()):
                raise StorageConflictError(f"Slot {car.slot_number} is already occupied")

            self._active[car.plate_number] = car
            self._logger.debug(f"Stored {car}")
            return car

    def persist_exit(self, plate_number: str, receipt: Receipt) -> bool:
        with self._lock:
            if self._active.pop(plate_number, None) is None:
                return False
            self._receipts.append(receipt)
            self._logger.debug(f"Stored receipt for {plate_number}")
            return True

    def query_active(self) -> List[ParkedCar]:
        with self._lock:
            return _sort_active(list(self._active.values()))

    def query_by_slot(self, slot_number: int) -> Optional[ParkedCar]:
        with self._lock:
            for car in self._active.values():
                if car.slot_number == slot_number:
                    return car
            return None

    def query_by_plate(self, plate_number: str) -> Optional[ParkedCar]:
        with self._lock:
            return self._active.get(plate_number)

    def count_active(self) -> int:
        with self._lock:
            return len(self._active)

    def list_receipts(self, limit: int = 100) -> List[Receipt]:
        with self._lock:
            return list(reversed(self._receipts))[:limit]


class AsyncInMemoryParkedCarRepository(AsyncParkedCarRepository):
    """Async facade over InMemoryParkedCarRepository"""

    def __init__(self, store: Optional[InMemoryParkedCarRepository] = None):
        self.store = store or InMemoryParkedCarRepository()

    async def persist_entry(self, car: ParkedCar) -> ParkedCar:
        return self.store.persist_entry(car)

    async def persist_exit(self, plate_number: str, receipt: Receipt) -> bool:
        return self.store.persist_exit(plate_number, receipt)

    async def query_active(self) -> List[ParkedCar]:
        return self.store.query_active()

    async def query_by_slot(self, slot_number: int) -> Optional[ParkedCar]:
        return self.store.query_by_slot(slot_number)

    async def query_by_plate(self, plate_number: str) -> Optional[ParkedCar]:
        return self.store.query_by_plate(plate_number)

    async def count_active(self) -> int:
        return self.store.count_active()

    async def list_receipts(self, limit: int = 100) -> List[Receipt]:
        return self.store.list_receipts(limit)


# ============================================================================
# SQLALCHEMY ORM MODELS
# ============================================================================

Base = declarative_base()


class ParkedCarModel(Base):
    """
    SQLAlchemy model for a stay

    A row is active from entry until exit. On exit it is kept as history with
    its exit time, amount and serialised receipt.
    """
    __tablename__ = 'parked_cars'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    plate_number = Column(String(20), nullable=False, index=True)
    owner_name = Column(String(100), nullable=False)
    slot_number = Column(Integer, nullable=False)
    entry_time = Column(DateTime, nullable=False)

    # Set on exit
    exit_time = Column(DateTime)
    total_amount = Column(DECIMAL(10, 2))
    receipt = Column(JSON)

    is_active = Column(Boolean, nullable=False, default=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


# One active row per plate and per slot
Index(
    'uq_parked_cars_active_plate',
    ParkedCarModel.plate_number,
    unique=True,
    sqlite_where=ParkedCarModel.is_active == true(),
    postgresql_where=ParkedCarModel.is_active == true()
)
Index(
    'uq_parked_cars_active_slot',
    ParkedCarModel.slot_number,
    unique=True,
    sqlite_where=ParkedCarModel.is_active == true(),
    postgresql_where=ParkedCarModel.is_active == true()
)


class Mapper:
    """Maps between domain objects and ORM models"""

    @staticmethod
    def parked_car_to_orm(car: ParkedCar) -> ParkedCarModel:
        return ParkedCarModel(
            plate_number=car.plate_number,
            owner_name=car.owner_name,
            slot_number=car.slot_number,
            entry_time=car.entry_time,
            is_active=True
        )

    @staticmethod
    def parked_car_to_domain(model: ParkedCarModel) -> ParkedCar:
        return ParkedCar(
            plate_number=model.plate_number,
            owner_name=model.owner_name,
            slot_number=model.slot_number,
            entry_time=model.entry_time
        )


# ============================================================================
# SQLALCHEMY REPOSITORIES
# ============================================================================

class SQLAlchemyParkedCarRepository(ParkedCarRepository):
    """Relational repository; one transaction per call"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self._logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def _session_scope(self, operation: str) -> Iterator[Session]:
        """Run one transaction, translating driver errors"""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            self._logger.error(f"Integrity error during {operation}: {e}")
            raise StorageConflictError(f"Uniqueness conflict during {operation}") from e
        except SQLAlchemyError as e:
            session.rollback()
            self._logger.error(f"Database error during {operation}: {e}")
            raise BackendUnavailableError(f"Database unavailable during {operation}") from e
        finally:
            session.close()

    def _active_query(self, session: Session):
        return session.query(ParkedCarModel).filter(ParkedCarModel.is_active == true())

    def persist_entry(self, car: ParkedCar) -> ParkedCar:
        with self._session_scope("persist_entry") as session:
            session.add(Mapper.parked_car_to_orm(car))
            session.flush()
        self._logger.debug(f"Stored {car}")
        return car

    def persist_exit(self, plate_number: str, receipt: Receipt) -> bool:
        with self._session_scope("persist_exit") as session:
            updated = self._active_query(session).filter(
                ParkedCarModel.plate_number == plate_number
            ).update({
                'is_active': False,
                'exit_time': normalize_timestamp(receipt.exit_time),
                'total_amount': receipt.total_amount.amount,
                'receipt': receipt.to_dict(),
                'updated_at': datetime.now()
            }, synchronize_session=False)
        return updated > 0

    def query_active(self) -> List[ParkedCar]:
        with self._session_scope("query_active") as session:
            models = self._active_query(session).order_by(
                ParkedCarModel.entry_time, ParkedCarModel.slot_number
            ).all()
            return [Mapper.parked_car_to_domain(model) for model in models]

    def query_by_slot(self, slot_number: int) -> Optional[ParkedCar]:
        with self._session_scope("query_by_slot") as session:
            model = self._active_query(session).filter(
                ParkedCarModel.slot_number == slot_number
            ).one_or_none()
            return Mapper.parked_car_to_domain(model) if model else None

    def query_by_plate(self, plate_number: str) -> Optional[ParkedCar]:
        with self._session_scope("query_by_plate") as session:
            model = self._active_query(session).filter(
                ParkedCarModel.plate_number == plate_number
            ).one_or_none()
            return Mapper.parked_car_to_domain(model) if model else None

    def count_active(self) -> int:
        with self._session_scope("count_active") as session:
            return self._active_query(session).count()

    def list_receipts(self, limit: int = 100) -> List[Receipt]:
        with self._session_scope("list_receipts") as session:
            models = session.query(ParkedCarModel).filter(
                ParkedCarModel.is_active == false(),
                ParkedCarModel.receipt.isnot(None)
            ).order_by(ParkedCarModel.exit_time.desc()).limit(limit).all()
            return [Receipt.from_dict(model.receipt) for model in models]


# ============================================================================
# MONGODB REPOSITORY (async, motor)
# ============================================================================

class MongoParkedCarRepository(AsyncParkedCarRepository):
    """
    Document repository for a hosted MongoDB
    Call ensure_indexes() once before use to install the uniqueness guards.
    """

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection
        self._logger = logging.getLogger(self.__class__.__name__)

    @classmethod
    def from_url(
        cls,
        mongo_url: str = "mongodb://localhost:27017",
        database: str = "smartpark",
        collection: str = "parked_cars",
        **kwargs
    ) -> 'MongoParkedCarRepository':
        kwargs.setdefault("serverSelectionTimeoutMS", 5000)
        client = AsyncIOMotorClient(mongo_url, **kwargs)
        return cls(client[database][collection])

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except DuplicateKeyError as e:
            self._logger.error(f"Duplicate key during {operation}: {e}")
            raise StorageConflictError(f"Uniqueness conflict during {operation}") from e
        except PyMongoError as e:
            self._logger.error(f"MongoDB error during {operation}: {e}")
            raise BackendUnavailableError(f"MongoDB unavailable during {operation}") from e

    async def ensure_indexes(self) -> None:
        active_only = {"is_active": True}
        async with self._guard("ensure_indexes"):
            await self.collection.create_index(
                [("plate_number", pymongo.ASCENDING)],
                name="uq_active_plate",
                unique=True,
                partialFilterExpression=active_only
            )
            await self.collection.create_index(
                [("slot_number", pymongo.ASCENDING)],
                name="uq_active_slot",
                unique=True,
                partialFilterExpression=active_only
            )
            await self.collection.create_index(
                [("entry_time", pymongo.ASCENDING), ("slot_number", pymongo.ASCENDING)],
                name="ix_entry_order"
            )

    @staticmethod
    def _to_document(car: ParkedCar) -> Dict[str, Any]:
        return {
            "plate_number": car.plate_number,
            "owner_name": car.owner_name,
            "slot_number": car.slot_number,
            "entry_time": car.entry_time,
            "exit_time": None,
            "total_amount": None,
            "receipt": None,
            "is_active": True,
            "created_at": datetime.now()
        }

    @staticmethod
    def _to_domain(doc: Dict[str, Any]) -> ParkedCar:
        return ParkedCar(
            plate_number=doc["plate_number"],
            owner_name=doc["owner_name"],
            slot_number=int(doc["slot_number"]),
            entry_time=doc["entry_time"]
        )

    async def persist_entry(self, car: ParkedCar) -> ParkedCar:
        async with self._guard("persist_entry"):
            await self.collection.insert_one(self._to_document(car))
        self._logger.debug(f"Stored {car}")
        return car

    async def persist_exit(self, plate_number: str, receipt: Receipt) -> bool:
        async with self._guard("persist_exit"):
            result = await self.collection.update_one(
                {"plate_number": plate_number, "is_active": True},
                {"$set": {
                    "is_active": False,
                    "exit_time": normalize_timestamp(receipt.exit_time),
                    "total_amount": Decimal128(Decimal(receipt.total_amount.amount)),
                    "receipt": receipt.to_dict(),
                    "updated_at": datetime.now()
                }}
            )
        return result.modified_count > 0

    async def query_active(self) -> List[ParkedCar]:
        async with self._guard("query_active"):
            cursor = self.collection.find({"is_active": True}).sort(
                [("entry_time", pymongo.ASCENDING), ("slot_number", pymongo.ASCENDING)]
            )
            docs = await cursor.to_list(length=None)
        return [self._to_domain(doc) for doc in docs]

    async def query_by_slot(self, slot_number: int) -> Optional[ParkedCar]:
        async with self._guard("query_by_slot"):
            doc = await self.collection.find_one({"slot_number": slot_number, "is_active": True})
        return self._to_domain(doc) if doc else None

    async def query_by_plate(self, plate_number: str) -> Optional[ParkedCar]:
        async with self._guard("query_by_plate"):
            doc = await self.collection.find_one({"plate_number": plate_number, "is_active": True})
        return self._to_domain(doc) if doc else None

    async def count_active(self) -> int:
        async with self._guard("count_active"):
            return await self.collection.count_documents({"is_active": True})

    async def list_receipts(self, limit: int = 100) -> List[Receipt]:
        async with self._guard("list_receipts"):
            cursor = self.collection.find(
                {"is_active": False, "receipt": {"$ne": None}}
            ).sort("exit_time", pymongo.DESCENDING).limit(limit)
            docs = await cursor.to_list(length=limit)
        return [Receipt.from_dict(doc["receipt"]) for doc in docs]


# ============================================================================
# REPOSITORY FACTORY
# ============================================================================

class RepositoryFactory:
    """Factory for creating repositories"""

    @staticmethod
    def create_in_memory_repository() -> InMemoryParkedCarRepository:
        return InMemoryParkedCarRepository()

    @staticmethod
    def create_async_in_memory_repository() -> AsyncInMemoryParkedCarRepository:
        return AsyncInMemoryParkedCarRepository()

    @staticmethod
    def create_sqlalchemy_repository(
        database_url: str,
        echo: bool = False
    ) -> SQLAlchemyParkedCarRepository:
        """Create a relational repository, creating tables if missing"""
        engine_kwargs: Dict[str, Any] = {"echo": echo}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # A single shared connection keeps the in-memory database alive
            engine_kwargs.update(
                poolclass=StaticPool,
                connect_args={"check_same_thread": False}
            )
        elif database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}

        engine = create_engine(database_url, **engine_kwargs)
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        try:
            Base.metadata.create_all(bind=engine)
        except SQLAlchemyError as e:
            logging.getLogger(__name__).error(f"Could not prepare schema at {engine.url!r}: {e}")
            raise BackendUnavailableError(f"Database not reachable: {e}") from e

        return SQLAlchemyParkedCarRepository(SessionLocal)

    @staticmethod
    def create_mongo_repository(
        mongo_url: str = "mongodb://localhost:27017",
        database: str = "smartpark",
        collection: str = "parked_cars",
        **kwargs
    ) -> MongoParkedCarRepository:
        return MongoParkedCarRepository.from_url(mongo_url, database, collection, **kwargs)
