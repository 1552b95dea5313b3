"""
Command-line entry point for the SmartPark Ledger

    smartpark enter "RAD 123A" "Jane Doe"
    smartpark exit RAD123A
    smartpark status
    smartpark list
    smartpark slot 3
    smartpark find RAD123A
    smartpark receipts --limit 5

State lives in a SQL database (SQLite file by default) so consecutive
invocations see the same lot.
"""

from typing import List, Optional
import argparse
import logging
import sys

import yaml

from .config import LedgerSettings
from .application.parking_ledger import ParkingLedger, ParkingLedgerFactory
from .application.dtos import ReceiptDTO, ResultDTO, ParkedCarDTO
from .infrastructure.messaging import MessageBrokerFactory
from .infrastructure.repositories import BackendUnavailableError


DEFAULT_DATABASE_URL = "sqlite:///smartpark.db"


def setup_logging(log_file: Optional[str] = None, verbose: bool = False) -> logging.Logger:
    """Setup application logging configuration"""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )
    return logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="smartpark", description="Parking lot ledger")
    parser.add_argument("--database-url", default=DEFAULT_DATABASE_URL,
                        help=f"SQLAlchemy database URL (default: {DEFAULT_DATABASE_URL})")
    parser.add_argument("--config", help="YAML file with ledger settings")
    parser.add_argument("--redis-url", help="Forward ledger events to this Redis server")
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level")

    commands = parser.add_subparsers(dest="command", required=True)

    enter = commands.add_parser("enter", help="Register a car entering the lot")
    enter.add_argument("plate")
    enter.add_argument("owner")

    exit_ = commands.add_parser("exit", help="Register a car leaving and print its receipt")
    exit_.add_argument("plate")

    commands.add_parser("status", help="Show occupancy")
    commands.add_parser("list", help="List parked cars")

    slot = commands.add_parser("slot", help="Show who occupies a slot")
    slot.add_argument("number", type=int)

    find = commands.add_parser("find", help="Find a parked car by plate")
    find.add_argument("plate")

    receipts = commands.add_parser("receipts", help="Show recent receipts")
    receipts.add_argument("--limit", type=int, default=10)

    return parser


def format_receipt(receipt: ReceiptDTO) -> str:
    lines = [
        f"Plate:    {receipt.plate_number}",
        f"Owner:    {receipt.owner_name}",
        f"Slot:     {receipt.slot_number}",
        f"Entry:    {receipt.entry_time:%Y-%m-%d %H:%M:%S}",
        f"Exit:     {receipt.exit_time:%Y-%m-%d %H:%M:%S}",
        f"Duration: {receipt.duration.hours}h {receipt.duration.minutes}m",
        f"Base:     {receipt.charges.base_hour:,} {receipt.currency}",
        f"Extra:    {receipt.charges.extra_hours:,} {receipt.currency}",
        f"Total:    {receipt.total_amount:,} {receipt.currency}",
    ]
    if receipt.clock_skew_detected:
        lines.append("Warning:  exit time preceded entry time; duration clamped to zero")
    return "\n".join(lines)


def format_car(car: ParkedCarDTO) -> str:
    return (f"[{car.slot_number:>3}] {car.plate_number:<12} {car.owner_name:<24} "
            f"since {car.entry_time:%Y-%m-%d %H:%M}")


class ParkingApplication:
    """Runs one CLI command against a ledger and reports the outcome"""

    def __init__(self, ledger: ParkingLedger, out=None):
        self.ledger = ledger
        self.out = out or sys.stdout

    def _print(self, text: str = "") -> None:
        print(text, file=self.out)

    def _report(self, result: ResultDTO) -> int:
        self._print(result.message or "")
        return 0 if result.success else 1

    def run(self, args: argparse.Namespace) -> int:
        handler = getattr(self, f"do_{args.command}")
        return handler(args)

    def do_enter(self, args) -> int:
        return self._report(self.ledger.enter(args.plate, args.owner))

    def do_exit(self, args) -> int:
        result = self.ledger.exit(args.plate)
        code = self._report(result)
        if result.receipt:
            self._print(format_receipt(result.receipt))
        return code

    def do_status(self, args) -> int:
        stats = self.ledger.get_stats()
        self._print(f"Occupied:  {stats.occupied_slots}/{stats.total_slots} ({stats.occupancy_rate}%)")
        self._print(f"Available: {stats.available_slots}")
        if stats.is_full:
            self._print("Parking is full.")
        return 0

    def do_list(self, args) -> int:
        cars = self.ledger.list_active()
        if not cars:
            self._print("No cars parked")
        for car in cars:
            self._print(format_car(car))
        return 0

    def do_slot(self, args) -> int:
        result = self.ledger.slot_info(args.number)
        code = self._report(result)
        if result.car:
            self._print(format_car(result.car))
        return code

    def do_find(self, args) -> int:
        car = self.ledger.find_by_plate(args.plate)
        if car is None:
            self._print("Car not found in parking")
            return 1
        self._print(format_car(car))
        return 0

    def do_receipts(self, args) -> int:
        receipts = self.ledger.list_receipts(args.limit)
        if not receipts:
            self._print("No receipts yet")
        for receipt in receipts:
            self._print(format_receipt(receipt))
            self._print()
        return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    logger = setup_logging(args.log_file, args.verbose)

    try:
        settings = LedgerSettings.from_yaml(args.config) if args.config else LedgerSettings()
        event_bus = MessageBrokerFactory.create_event_bus(redis_url=args.redis_url)
        ledger = ParkingLedgerFactory.create_sql_ledger(
            args.database_url, settings, event_bus=event_bus
        )
        return ParkingApplication(ledger).run(args)
    except BackendUnavailableError as e:
        logger.error(f"Storage unavailable: {e}")
        return 2
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
