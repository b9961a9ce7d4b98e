"""Generic register tools: the agent's own setter and an audit listing."""

from __future__ import annotations

import json
from typing import Any

from regvault.tools.models import ToolContext, ToolContract, ToolDefinition, ToolOutput
from regvault.tools.registry import RegisteredTool


def _register_set(ctx: ToolContext, key: str, value: Any) -> ToolOutput:
    # The gate commits the write under origin "register_set"; guarded keys are refused there
    return ToolOutput(content=f"Register '{key}' set.", writes={key: value})


def _register_list(ctx: ToolContext) -> str:
    """List register metadata. Values are never echoed back."""
    keys = ctx.registers.keys()
    if not keys:
        return "No registers set in this session."
    listing = []
    for key in keys:
        entry = ctx.registers.get(key)
        listing.append({
            "key": entry.key,
            "kind": entry.kind.value,
            "origin_tool": entry.origin_tool,
            "written_at": entry.written_at.isoformat(),
        })
    return json.dumps(listing, indent=2)


REGISTER_SET_TOOL = RegisteredTool(
    definition=ToolDefinition(
        name="register_set",
        description=(
            "Set a register to a value you choose (e.g. 'slippage_bps' or 'note'). "
            "Registers holding addresses, amounts or quotes are written by their "
            "producing tools and cannot be set here."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "key": {
                    "type": "string",
                    "description": "Register name (letters, digits, underscores)",
                },
                "value": {"description": "Value to store"},
            },
            "required": ["key", "value"],
        },
    ),
    contract=ToolContract(),
    handler=_register_set,
)

REGISTER_LIST_TOOL = RegisteredTool(
    definition=ToolDefinition(
        name="register_list",
        description="List the registers set in this session with their producing tool.",
        input_schema={"type": "object", "properties": {}},
    ),
    contract=ToolContract(),
    handler=_register_list,
)
