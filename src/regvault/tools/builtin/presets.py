"""Preset fetch tool: runs a preset request built purely from registers."""

from __future__ import annotations

import json
from typing import Any

from regvault.tools.models import ToolContext, ToolContract, ToolDefinition, ToolOutput
from regvault.tools.registry import RegisteredTool

# Request fields the agent could otherwise forge
PRESET_SENSITIVE_FIELDS = [
    "url", "method", "query", "headers",
    "sellToken", "buyToken", "sellAmount", "taker", "chainId",
]

CHAIN_ID_PARAM = "chainId"
# Cached as <cache_as>_chain_id next to a result whose request named a chain
CHAIN_ID_SUFFIX = "chain_id"


def _preset_fetch(ctx: ToolContext, **params: Any) -> ToolOutput:
    # The gate has already executed ctx.request and applied the filter
    result = ctx.response
    companions = {}
    chain_id = ctx.request.query.get(CHAIN_ID_PARAM)
    if chain_id is not None:
        companions[CHAIN_ID_SUFFIX] = chain_id
    return ToolOutput(
        content=f"Preset '{ctx.request.preset}' result:\n{json.dumps(result, indent=2)}",
        value=result,
        companions=companions,
    )


def create_preset_fetch_tool(preset_names: list[str] | None = None) -> RegisteredTool:
    description = (
        "Fetch data with a preset request built only from registers (e.g. preset='swap_quote' "
        "after token_lookup, to_raw_amount and wallet_address have filled the registers). "
        "Use cache_as to store the result (e.g. cache_as='swap_quote'); the chain the request "
        "was made for is kept under <cache_as>_chain_id."
    )
    if preset_names:
        description += f" Presets: {', '.join(preset_names)}."
    return RegisteredTool(
        definition=ToolDefinition(
            name="preset_fetch",
            description=description,
            input_schema={
                "type": "object",
                "properties": {
                    "filter": {
                        "type": "string",
                        "description": "Dotted field path to keep from the response (overrides the preset default)",
                    },
                },
            },
        ),
        contract=ToolContract(
            sensitive=True,
            sensitive_fields=PRESET_SENSITIVE_FIELDS,
            preset_driven=True,
            cacheable=True,
            companion_suffixes=[CHAIN_ID_SUFFIX],
        ),
        handler=_preset_fetch,
    )
