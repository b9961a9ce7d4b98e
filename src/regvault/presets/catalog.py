"""
RegVault Preset Catalog

Static table mapping a preset name to the registers it requires, a
request template and the register its result may be cached under.
Loaded once at startup and read-only afterwards.

A template can only reference registers (as ``{key}`` placeholders in
the URL or as query parameter sources) and literals fixed in the
catalog. Nothing in a template can come from the agent.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from regvault.config import load_json_file
from regvault.exceptions import PresetNotFound
from regvault.registers.store import KEY_PATTERN

PLACEHOLDER = re.compile(r"\{([A-Za-z0-9_]+)\}")
_PRESET_NAME = re.compile(r"^[a-z0-9_]{1,64}$")


class RequestTemplate(BaseModel):
    """Shape of the outbound request; query values name registers."""
    model_config = ConfigDict(frozen=True)

    method: Literal["GET", "POST"] = "GET"
    url_pattern: str
    query_params: dict[str, str] = Field(default_factory=dict)
    static_params: dict[str, str] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    def referenced_registers(self) -> list[str]:
        """Every register the template substitutes, in first-use order."""
        seen: list[str] = []
        for key in [*PLACEHOLDER.findall(self.url_pattern), *self.query_params.values()]:
            if key not in seen:
                seen.append(key)
        return seen


class PresetDefinition(BaseModel):
    """A named request template resolved purely from register contents."""
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    required_registers: list[str]
    request_template: RequestTemplate
    result_register: str | None = None
    default_filter: str | None = None

    @model_validator(mode="after")
    def _check_declarations(self) -> PresetDefinition:
        if not _PRESET_NAME.match(self.name):
            raise ValueError(f"Invalid preset name '{self.name}'")
        for key in self.required_registers:
            if not KEY_PATTERN.match(key):
                raise ValueError(f"Preset '{self.name}' requires invalid register key '{key}'")
        undeclared = [
            k for k in self.request_template.referenced_registers()
            if k not in self.required_registers
        ]
        if undeclared:
            raise ValueError(
                f"Preset '{self.name}' template references undeclared registers: {', '.join(undeclared)}"
            )
        overlap = set(self.request_template.query_params) & set(self.request_template.static_params)
        if overlap:
            raise ValueError(
                f"Preset '{self.name}' sets {', '.join(sorted(overlap))} both from registers and statically"
            )
        if self.result_register is not None and not KEY_PATTERN.match(self.result_register):
            raise ValueError(f"Preset '{self.name}' has invalid result register '{self.result_register}'")
        return self


class PresetCatalog:
    """Immutable name → PresetDefinition table."""

    def __init__(self, presets: Iterable[PresetDefinition] = ()):
        table: dict[str, PresetDefinition] = {}
        for preset in presets:
            if preset.name in table:
                raise ValueError(f"Preset '{preset.name}' is already defined")
            table[preset.name] = preset
        self._presets: Mapping[str, PresetDefinition] = MappingProxyType(table)

    @classmethod
    def from_config(cls, entries: list[dict[str, Any]]) -> PresetCatalog:
        return cls(PresetDefinition.model_validate(e) for e in entries)

    @classmethod
    def from_file(cls, path: str | Path) -> PresetCatalog:
        data = load_json_file(path)
        if isinstance(data, dict):
            data = data.get("presets", [])
        return cls.from_config(data)

    def get(self, name: str) -> PresetDefinition | None:
        return self._presets.get(name)

    def require(self, name: str) -> PresetDefinition:
        preset = self._presets.get(name)
        if preset is None:
            raise PresetNotFound(name, self.names())
        return preset

    def names(self) -> list[str]:
        return sorted(self._presets)

    def describe(self) -> list[dict[str, Any]]:
        return [p.model_dump() for p in self._presets.values()]

    def __len__(self) -> int:
        return len(self._presets)

    def __contains__(self, name: str) -> bool:
        return name in self._presets


ZEROX_BASE_URL = "https://api.0x.org"
BASE_CHAIN_ID = "8453"


def _swap_template(endpoint: str) -> RequestTemplate:
    return RequestTemplate(
        method="GET",
        url_pattern=f"{ZEROX_BASE_URL}/swap/allowance-holder/{endpoint}",
        query_params={
            "sellToken": "sell_token",
            "buyToken": "buy_token",
            "sellAmount": "sell_amount",
            "taker": "wallet_address",
        },
        static_params={"chainId": BASE_CHAIN_ID},
        headers={"0x-version": "v2"},
    )


_SWAP_REGISTERS = ["wallet_address", "sell_token", "buy_token", "sell_amount"]

DEFAULT_PRESETS: list[PresetDefinition] = [
    PresetDefinition(
        name="swap_price",
        description="Indicative price for selling sell_amount of sell_token for buy_token",
        required_registers=_SWAP_REGISTERS,
        request_template=_swap_template("price"),
        result_register="swap_price",
    ),
    PresetDefinition(
        name="swap_quote",
        description="Firm quote with a ready-to-sign transaction for the swap",
        required_registers=_SWAP_REGISTERS,
        request_template=_swap_template("quote"),
        result_register="swap_quote",
        default_filter="transaction",
    ),
    PresetDefinition(
        name="token_balance",
        description="Token balances held by the agent wallet",
        required_registers=["wallet_address"],
        request_template=RequestTemplate(
            method="GET",
            url_pattern="https://base.blockscout.com/api/v2/addresses/{wallet_address}/token-balances",
        ),
        result_register="token_balance",
    ),
]


def default_catalog() -> PresetCatalog:
    return PresetCatalog(DEFAULT_PRESETS)
