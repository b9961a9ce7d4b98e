"""
Register Guard Policy

Static, immutable table declaring for each register key which tool
kinds may originate a write and which value type it holds. Consulted
by every register write; read-only after construction, so it is
shared across sessions without locking.

Categories:
- AGENT_SETTABLE: ``allowed_origins == "any"``; the generic setter may write
- TOOL_RESTRICTED: only the named producer tools may write
- DERIVED_ONLY: only ``preset:<name>`` origins, i.e. the gate itself after
  resolving that preset
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from types import MappingProxyType
from typing import Any, Literal

from pydantic import BaseModel, field_validator

from regvault.exceptions import ForbiddenRegisterWrite
from regvault.registers.validators import ValueType

ANY_ORIGIN = "any"
PRESET_ORIGIN_PREFIX = "preset:"
GENERIC_WRITERS = frozenset({"register_set"})


class RegisterCategory(str, Enum):
    """Who may originate writes to a register."""
    AGENT_SETTABLE = "AGENT_SETTABLE"
    TOOL_RESTRICTED = "TOOL_RESTRICTED"
    DERIVED_ONLY = "DERIVED_ONLY"


class GuardRule(BaseModel):
    """One policy entry: ``{register_key, allowed_origins, value_type}``."""
    model_config = {"frozen": True}

    register_key: str
    allowed_origins: tuple[str, ...] | Literal["any"] = ANY_ORIGIN
    value_type: ValueType = ValueType.OPAQUE_JSON
    description: str = ""

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _normalise_origins(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            if ANY_ORIGIN in value:
                return ANY_ORIGIN
            if not value:
                raise ValueError("allowed_origins must name at least one origin or be 'any'")
            return tuple(value)
        return value

    @property
    def category(self) -> RegisterCategory:
        if self.allowed_origins == ANY_ORIGIN:
            return RegisterCategory.AGENT_SETTABLE
        if all(o.startswith(PRESET_ORIGIN_PREFIX) for o in self.allowed_origins):
            return RegisterCategory.DERIVED_ONLY
        return RegisterCategory.TOOL_RESTRICTED

    def allows(self, origin_tool: str) -> bool:
        return self.allowed_origins == ANY_ORIGIN or origin_tool in self.allowed_origins

    @property
    def producers(self) -> list[str]:
        """Origins that may write this key; empty for agent-settable keys."""
        if self.allowed_origins == ANY_ORIGIN:
            return []
        return list(self.allowed_origins)


class GuardPolicy:
    """Immutable guard table with a fallback rule for unlisted keys."""

    def __init__(
        self,
        rules: Iterable[GuardRule] = (),
        default_value_type: ValueType = ValueType.OPAQUE_JSON,
        generic_writers: Iterable[str] = GENERIC_WRITERS,
    ):
        table: dict[str, GuardRule] = {}
        for rule in rules:
            if rule.register_key in table:
                raise ValueError(f"Duplicate guard rule for register '{rule.register_key}'")
            table[rule.register_key] = rule
        self._rules: Mapping[str, GuardRule] = MappingProxyType(table)
        self._default_value_type = default_value_type
        self._generic_writers = frozenset(generic_writers)

    @classmethod
    def from_config(cls, entries: list[dict[str, Any]], **kwargs: Any) -> GuardPolicy:
        """Build a policy from ``[{register_key, allowed_origins, value_type}]``."""
        return cls((GuardRule.model_validate(e) for e in entries), **kwargs)

    @property
    def rules(self) -> Mapping[str, GuardRule]:
        return self._rules

    @property
    def generic_writers(self) -> frozenset[str]:
        return self._generic_writers

    def rule_for(self, key: str) -> GuardRule:
        """The rule governing ``key``; unlisted keys are agent-settable."""
        rule = self._rules.get(key)
        if rule is None:
            return GuardRule(register_key=key, value_type=self._default_value_type)
        return rule

    def check_write(self, key: str, origin_tool: str) -> GuardRule:
        """Return the rule if ``origin_tool`` may write ``key``.

        Raises ForbiddenRegisterWrite naming the allowed producers otherwise.
        """
        rule = self.rule_for(key)
        if not rule.allows(origin_tool):
            raise ForbiddenRegisterWrite(key, origin_tool, list(rule.producers))
        return rule

    def producers_for(self, keys: Iterable[str]) -> dict[str, list[str]]:
        return {k: self.rule_for(k).producers for k in keys}

    def is_generic_writer(self, origin_tool: str) -> bool:
        return origin_tool in self._generic_writers

    def describe(self) -> list[dict[str, Any]]:
        return [
            {
                "register_key": r.register_key,
                "category": r.category.value,
                "allowed_origins": [ANY_ORIGIN] if r.allowed_origins == ANY_ORIGIN else list(r.allowed_origins),
                "value_type": r.value_type.value,
                "description": r.description,
            }
            for r in self._rules.values()
        ]


def _token_rules(base: str, side: str) -> list[GuardRule]:
    return [
        GuardRule(register_key=base, allowed_origins=("token_lookup",), value_type=ValueType.ADDRESS,
                  description=f"Contract address of the token to {side}"),
        GuardRule(register_key=f"{base}_symbol", allowed_origins=("token_lookup",), value_type=ValueType.TEXT,
                  description=f"Symbol of the token to {side}"),
        GuardRule(register_key=f"{base}_decimals", allowed_origins=("token_lookup",), value_type=ValueType.AMOUNT,
                  description=f"Decimals of the token to {side}"),
    ]


DEFAULT_RULES: list[GuardRule] = [
    GuardRule(register_key="wallet_address", allowed_origins=("wallet_address",),
              value_type=ValueType.ADDRESS, description="The agent's own wallet address"),
    *_token_rules("sell_token", "sell"),
    *_token_rules("buy_token", "buy"),
    GuardRule(register_key="sell_amount", allowed_origins=("to_raw_amount",),
              value_type=ValueType.AMOUNT, description="Amount to sell in smallest units"),
    GuardRule(register_key="swap_price", allowed_origins=("preset:swap_price",),
              value_type=ValueType.OPAQUE_JSON, description="Indicative swap price"),
    GuardRule(register_key="swap_price_chain_id", allowed_origins=("preset:swap_price",),
              value_type=ValueType.AMOUNT, description="Chain ID the price was requested for"),
    GuardRule(register_key="swap_quote", allowed_origins=("preset:swap_quote",),
              value_type=ValueType.OPAQUE_JSON, description="Firm swap quote transaction"),
    GuardRule(register_key="swap_quote_chain_id", allowed_origins=("preset:swap_quote",),
              value_type=ValueType.AMOUNT, description="Chain ID the quote transaction is built for"),
    GuardRule(register_key="token_balance", allowed_origins=("preset:token_balance",),
              value_type=ValueType.OPAQUE_JSON, description="Wallet token balances"),
    GuardRule(register_key="tx_hash", allowed_origins=("web3_tx",),
              value_type=ValueType.TEXT, description="Hash of the last submitted transaction"),
    GuardRule(register_key="slippage_bps", allowed_origins=ANY_ORIGIN, value_type=ValueType.AMOUNT,
              description="Accepted slippage in basis points"),
    GuardRule(register_key="network", allowed_origins=ANY_ORIGIN, value_type=ValueType.TEXT,
              description="Preferred network name"),
    GuardRule(register_key="note", allowed_origins=ANY_ORIGIN, value_type=ValueType.TEXT,
              description="Free-form agent note"),
]


def default_policy() -> GuardPolicy:
    return GuardPolicy(DEFAULT_RULES)
