"""
Ledger configuration

Settings are fixed when a ledger is constructed and never change afterwards.
They can be built directly, from a mapping, or from a YAML file:

    ledger:
      capacity: 50
      base_rate: 500
      extra_rate: 300
      currency: RWF
"""

from typing import Dict, Any, Union
from decimal import Decimal
from pathlib import Path
import logging

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


logger = logging.getLogger(__name__)


class LedgerSettings(BaseModel):
    """Immutable configuration surface of a parking ledger"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    capacity: int = Field(default=50, ge=1, description="Number of slots")
    base_rate: Decimal = Field(default=Decimal('500'), ge=0, description="Charge for the first hour")
    extra_rate: Decimal = Field(default=Decimal('300'), ge=0, description="Charge per further hour")
    currency: str = Field(default="RWF", description="ISO currency code")
    max_entry_attempts: int = Field(
        default=3, ge=1,
        description="Entry retries after a storage uniqueness conflict"
    )

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v: str) -> str:
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError(f"Currency must be 3-letter code: {v}")
        return v

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LedgerSettings':
        """Build settings from a mapping, optionally nested under 'ledger'"""
        if "ledger" in data and isinstance(data["ledger"], dict):
            data = data["ledger"]
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> 'LedgerSettings':
        """Load settings from a YAML file"""
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Expected a mapping in {path}, got {type(data).__name__}")

        settings = cls.from_dict(data)
        logger.info(f"Loaded ledger settings from {path}")
        return settings
