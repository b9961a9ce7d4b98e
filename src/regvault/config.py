"""
RegVault Configuration

Deployment settings for validator strictness, deadlines and the
optional JSON files that override the built-in static tables
(guard policy, preset catalog, token list).

Usage:
    config = RegVaultConfig.from_env()
    vault = RegVault(config=config)
"""

from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class AddressStrictness(str, Enum):
    """How strictly address registers are validated."""
    HEX = "hex"
    CHECKSUM_IF_MIXED = "checksum_if_mixed"
    STRICT = "strict"


_ENV_FIELDS = {
    "REGVAULT_ADDRESS_STRICTNESS": "address_strictness",
    "REGVAULT_MAX_AMOUNT_DIGITS": "max_amount_digits",
    "REGVAULT_MAX_TEXT_LENGTH": "max_text_length",
    "REGVAULT_INVOCATION_TIMEOUT": "invocation_timeout_seconds",
    "REGVAULT_LANE_TIMEOUT": "lane_acquire_timeout_seconds",
    "REGVAULT_SESSION_IDLE_TIMEOUT": "session_idle_timeout_seconds",
    "REGVAULT_PRUNE_INTERVAL": "prune_interval_seconds",
    "REGVAULT_HTTP_TIMEOUT": "http_timeout_seconds",
    "REGVAULT_PRESETS": "presets_path",
    "REGVAULT_POLICY": "policy_path",
    "REGVAULT_TOKENS": "tokens_path",
    "REGVAULT_LOG_LEVEL": "log_level",
    "REGVAULT_JSON_LOGS": "json_logs",
}


class RegVaultConfig(BaseModel):
    """Configuration for a RegVault instance."""

    address_strictness: AddressStrictness = AddressStrictness.CHECKSUM_IF_MIXED
    max_amount_digits: int = Field(default=78, ge=1, le=1000)
    max_text_length: int = Field(default=4096, ge=1)
    invocation_timeout_seconds: float = Field(default=30.0, gt=0.0, le=3600.0)
    lane_acquire_timeout_seconds: float = Field(default=60.0, gt=0.0, le=3600.0)
    session_idle_timeout_seconds: float = Field(default=1800.0, gt=0.0)
    prune_interval_seconds: float = Field(default=60.0, gt=0.0)
    http_timeout_seconds: float = Field(default=15.0, gt=0.0, le=300.0)
    presets_path: str | None = None
    policy_path: str | None = None
    tokens_path: str | None = None
    log_level: str = "INFO"
    json_logs: bool = False

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, **overrides: Any) -> RegVaultConfig:
        """Build a config from REGVAULT_* environment variables.

        Explicit keyword overrides win over the environment.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for var, field_name in _ENV_FIELDS.items():
            raw = env.get(var)
            if raw is None or raw == "":
                continue
            if field_name == "json_logs":
                values[field_name] = raw.strip().lower() in ("1", "true", "yes", "on")
            else:
                values[field_name] = raw
        values.update(overrides)
        return cls.model_validate(values)


def load_json_file(path: str | Path) -> Any:
    """Read a static configuration table from a JSON file.

    Raises ValueError with the file name when the content is not valid JSON.
    """
    p = Path(path)
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {p}: {e}") from e
