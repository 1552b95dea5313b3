"""
Unit Tests Package for the SmartPark Ledger

Unit tests exercise one layer at a time:
1. Domain value objects, pricing and the ParkingLot aggregate
2. The ledger service over an in-memory repository
3. Configuration loading and event messaging with mocked Redis
"""
