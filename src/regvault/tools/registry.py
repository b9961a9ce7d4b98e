"""
RegVault Tool Registry

Central registry for all tools behind the gate. Each tool is registered
with its ToolContract, which the ToolGate enforces on every call.

The set of tools is fixed configuration: tools are registered once at
startup and looked up per invocation.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Awaitable, Callable
from typing import Any

from regvault.tools.models import ToolContract, ToolDefinition

_TOOL_NAME = re.compile(r"^[a-z][a-z0-9_]{0,63}$")


class RegisteredTool:
    """A tool registered in the system with its gate contract.

    Combines the agent-facing definition, the contract, and the handler
    ``handler(ctx: ToolContext, **params)`` (sync or async).
    """

    def __init__(
        self,
        definition: ToolDefinition,
        contract: ToolContract,
        handler: Callable[..., Any] | Callable[..., Awaitable[Any]],
    ):
        self.definition = definition
        self.contract = contract
        self.handler = handler

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def sensitive(self) -> bool:
        return self.contract.sensitive


class ToolRegistry:
    """Central registry for all available tools."""

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def register(self, tool: RegisteredTool) -> None:
        """Register a tool with its contract.

        Raises ValueError on duplicate names, names that could collide
        with ``preset:`` origins, or incoherent contracts.
        """
        if not _TOOL_NAME.match(tool.name):
            raise ValueError(f"Invalid tool name '{tool.name}': use lowercase letters, digits, underscores")
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        contract = tool.contract
        if contract.sensitive and not (contract.accepts_register or contract.preset_driven):
            raise ValueError(
                f"Sensitive tool '{tool.name}' must accept from_register or be preset-driven"
            )
        if contract.companion_suffixes and not contract.cacheable:
            raise ValueError(f"Tool '{tool.name}' declares companion registers but is not cacheable")
        properties = tool.definition.input_schema.get("properties", {})
        leaked = set(contract.sensitive_fields) & set(properties)
        if leaked:
            raise ValueError(
                f"Tool '{tool.name}' declares sensitive fields in its input schema: {', '.join(sorted(leaked))}"
            )
        self._tools[tool.name] = tool

    def get(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def get_all(self) -> list[RegisteredTool]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return sorted(self._tools)

    def get_schemas(
        self,
        tools: list[RegisteredTool] | None = None,
        preset_names: list[str] | None = None,
    ) -> list[dict]:
        """Agent-facing tool schemas.

        Reserved fields are advertised only where the contract accepts
        them; sensitive raw fields are never advertised.
        """
        source = tools if tools is not None else list(self._tools.values())
        return [
            {
                "name": t.definition.name,
                "description": t.definition.description,
                "input_schema": _agent_schema(t, preset_names),
            }
            for t in source
        ]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools


def _agent_schema(tool: RegisteredTool, preset_names: list[str] | None) -> dict:
    schema = copy.deepcopy(tool.definition.input_schema) or {"type": "object"}
    schema.setdefault("type", "object")
    properties = schema.setdefault("properties", {})
    contract = tool.contract

    if contract.cacheable:
        properties["cache_as"] = {
            "type": "string",
            "description": "Register name to store the result in (e.g. 'sell_token')",
        }
    if contract.accepts_register:
        description = "Register holding this tool's input (e.g. 'swap_quote' or 'swap_quote.transaction')"
        if contract.readable_registers:
            description += f"; readable: {', '.join(contract.readable_registers)}"
        properties["from_register"] = {"type": "string", "description": description}
    if contract.preset_driven:
        preset_schema: dict[str, Any] = {
            "type": "string",
            "description": "Preset whose request is built from registers",
        }
        if preset_names:
            preset_schema["enum"] = list(preset_names)
        properties["preset"] = preset_schema

    schema["additionalProperties"] = False
    return schema
