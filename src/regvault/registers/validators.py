"""
Register value validators.

Pure, stateless checks keyed by the value type a guard rule declares.
Every validator either returns the value unchanged or raises
InvalidValueFormat; values are never normalised, so whatever passes
validation is exactly what a later ``get`` returns.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from enum import Enum
from typing import Any

from eth_utils import is_checksum_address
from pydantic import BaseModel, Field

from regvault.config import AddressStrictness, RegVaultConfig
from regvault.core.models import ValueKind
from regvault.exceptions import InvalidValueFormat

_HEX_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")
_CANONICAL_INT = re.compile(r"^(0|[1-9][0-9]*)$")


class ValueType(str, Enum):
    """Declared value type of a register."""
    ADDRESS = "address"
    AMOUNT = "amount"
    TEXT = "text"
    OPAQUE_JSON = "opaque_json"


VALUE_KINDS = {
    ValueType.ADDRESS: ValueKind.STRING,
    ValueType.AMOUNT: ValueKind.INTEGER_STRING,
    ValueType.TEXT: ValueKind.STRING,
    ValueType.OPAQUE_JSON: ValueKind.JSON,
}


class ValidatorSettings(BaseModel):
    """Per-deployment validator strictness."""
    address_strictness: AddressStrictness = AddressStrictness.CHECKSUM_IF_MIXED
    max_amount_digits: int = Field(default=78, ge=1)
    max_text_length: int = Field(default=4096, ge=1)

    @classmethod
    def from_config(cls, config: RegVaultConfig) -> ValidatorSettings:
        return cls(
            address_strictness=config.address_strictness,
            max_amount_digits=config.max_amount_digits,
            max_text_length=config.max_text_length,
        )


def validate_address(key: str, value: Any, settings: ValidatorSettings) -> str:
    """Fixed-length 0x hex address, checksum-verified according to settings."""
    if not isinstance(value, str):
        raise InvalidValueFormat(key, "address", f"expected a string, got {type(value).__name__}")
    if not _HEX_ADDRESS.match(value):
        raise InvalidValueFormat(key, "address", "expected 0x followed by 40 hex digits")

    digits = value[2:]
    mixed_case = digits != digits.lower() and digits != digits.upper()
    strictness = settings.address_strictness

    if strictness == AddressStrictness.STRICT and not is_checksum_address(value):
        raise InvalidValueFormat(key, "address", "address is not EIP-55 checksum-cased")
    if strictness == AddressStrictness.CHECKSUM_IF_MIXED and mixed_case and not is_checksum_address(value):
        raise InvalidValueFormat(key, "address", "mixed-case address has an invalid EIP-55 checksum")
    return value


def validate_amount(key: str, value: Any, settings: ValidatorSettings) -> str:
    """Canonical base-10 integer string in smallest units.

    Rejects numbers passed as JSON numbers, signs, decimals, exponents,
    whitespace, leading zeros and anything longer than the configured
    digit limit.
    """
    if isinstance(value, bool) or not isinstance(value, str):
        raise InvalidValueFormat(
            key, "amount", f"expected an integer string, got {type(value).__name__}"
        )
    if not _CANONICAL_INT.match(value):
        raise InvalidValueFormat(
            key, "amount", "expected a non-negative base-10 integer string without sign, "
            "decimal point, exponent or leading zeros"
        )
    if len(value) > settings.max_amount_digits:
        raise InvalidValueFormat(
            key, "amount", f"exceeds the maximum of {settings.max_amount_digits} digits"
        )
    return value


def validate_text(key: str, value: Any, settings: ValidatorSettings) -> str:
    if not isinstance(value, str):
        raise InvalidValueFormat(key, "text", f"expected a string, got {type(value).__name__}")
    if len(value) > settings.max_text_length:
        raise InvalidValueFormat(
            key, "text", f"longer than {settings.max_text_length} characters"
        )
    return value


def validate_opaque_json(key: str, value: Any, settings: ValidatorSettings) -> Any:
    """Any well-formed JSON value; no further constraint."""
    try:
        json.dumps(value, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise InvalidValueFormat(key, "opaque_json", f"not JSON-serializable: {e}") from e
    return value


VALIDATORS: dict[ValueType, Callable[[str, Any, ValidatorSettings], Any]] = {
    ValueType.ADDRESS: validate_address,
    ValueType.AMOUNT: validate_amount,
    ValueType.TEXT: validate_text,
    ValueType.OPAQUE_JSON: validate_opaque_json,
}


def validate(value_type: ValueType, key: str, value: Any, settings: ValidatorSettings | None = None) -> Any:
    """Run the validator declared for ``value_type``."""
    return VALIDATORS[value_type](key, value, settings or ValidatorSettings())
