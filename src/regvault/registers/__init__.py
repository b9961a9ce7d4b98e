"""
RegVault Registers

Session-scoped registers, the validators that guard their values and
the static guard policy deciding which tools may write which keys.
"""

from regvault.registers.policy import (
    GuardPolicy,
    GuardRule,
    RegisterCategory,
    default_policy,
)
from regvault.registers.store import RegisterStore, RegisterView, parse_reference
from regvault.registers.validators import ValidatorSettings, ValueType, validate

__all__ = [
    "GuardPolicy",
    "GuardRule",
    "RegisterCategory",
    "RegisterStore",
    "RegisterView",
    "ValidatorSettings",
    "ValueType",
    "default_policy",
    "parse_reference",
    "validate",
]
