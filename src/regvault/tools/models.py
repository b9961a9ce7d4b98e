"""
RegVault Tool System Models

Declarations and runtime types for tools behind the gate. Every
registered tool carries a ToolContract saying whether it is sensitive,
which reserved fields it accepts and which registers it may read or
requires.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from regvault.core.models import ResolvedRequest
from regvault.registers.store import RegisterView


@dataclass
class ToolDefinition:
    """Agent-facing tool description in JSON-Schema tool_use format."""
    name: str
    description: str
    input_schema: dict = field(default_factory=dict)


class ToolContract(BaseModel):
    """Gate policy attached to every registered tool.

    Sensitive tools must be driven by ``from_register`` (if
    ``accepts_register``) or ``preset`` (if ``preset_driven``) and never
    accept ``sensitive_fields`` directly.
    """
    sensitive: bool = False
    sensitive_fields: list[str] = Field(default_factory=list)
    accepts_register: bool = False
    preset_driven: bool = False
    cacheable: bool = False
    companion_suffixes: list[str] = Field(default_factory=list)
    readable_registers: list[str] | None = None
    required_registers: list[str] = Field(default_factory=list)

    @property
    def reference_hint(self) -> str:
        options = []
        if self.accepts_register:
            options.append("from_register")
        if self.preset_driven:
            options.append("preset")
        return " or ".join(options) or "a register reference"


@dataclass
class ToolContext:
    """What a handler receives besides its own parameters.

    ``registers`` is read-only; handlers return values to cache instead
    of writing registers themselves.
    """
    session_id: str
    invocation_id: str
    registers: RegisterView
    register_reference: str | None = None
    register_value: Any = None
    request: ResolvedRequest | None = None
    response: Any = None


@dataclass
class ToolOutput:
    """Handler result.

    ``content`` is what the agent sees. ``value`` is cached under the
    invocation's ``cache_as``; ``companions`` under ``<cache_as>_<suffix>``;
    ``writes`` are explicit register writes (used by the generic setter).
    All of them are committed by the gate, atomically, after execution.
    """
    content: str
    value: Any = None
    companions: dict[str, Any] = field(default_factory=dict)
    writes: dict[str, Any] = field(default_factory=dict)
