"""
Integration Tests Package for the SmartPark Ledger

Integration tests verify the ledger against real storage adapters:
1. SQLAlchemy over an in-memory SQLite database
2. MongoDB repository over a mocked motor collection
3. The command-line front end end to end
"""

from typing import Dict, Any


class IntegrationTestConfig:
    """Configuration for integration tests"""

    # Shared in-memory SQLite database
    TEST_DATABASE_URL = "sqlite://"

    SMALL_LOT = {"capacity": 3, "base_rate": 500, "extra_rate": 300}


class SampleDataGenerator:
    """Generate test data for integration tests"""

    SAMPLE_CARS = [
        ("RAD 123A", "Alice Uwase"),
        ("RAE 456B", "Bob Mugisha"),
        ("RAF 789C", "Claire Ingabire"),
        ("RAG 012D", "David Habimana"),
    ]

    @staticmethod
    def create_settings_data(overrides: Dict[str, Any] = None) -> Dict[str, Any]:
        data = dict(IntegrationTestConfig.SMALL_LOT)
        if overrides:
            data.update(overrides)
        return data


__all__ = [
    'IntegrationTestConfig',
    'SampleDataGenerator',
]
