"""
RegVault Gated Tool Execution

Every tool call from the agent is routed through the gate before
execution:

    Agent → {tool, params} → SessionLaneManager → ToolGate → handler → registers

Components:
- ToolRegistry: Central registry for all tools with their contracts
- ToolGate: Five-stage pipeline (schema, sensitivity, resolution, execution, caching)
- HookPipeline: Observer/middleware stages around the gate and sessions
- RegisteredTool: Tool definition + contract + handler
- Built-in tools: register_set, register_list, token_lookup, wallet_address,
  to_raw_amount, preset_fetch, web3_tx
"""

from regvault.tools.gate import ToolGate
from regvault.tools.hooks import HookAction, HookContext, HookDecision, HookPipeline, HookStage
from regvault.tools.models import ToolContext, ToolContract, ToolDefinition, ToolOutput
from regvault.tools.registry import RegisteredTool, ToolRegistry

__all__ = [
    "HookAction",
    "HookContext",
    "HookDecision",
    "HookPipeline",
    "HookStage",
    "RegisteredTool",
    "ToolContext",
    "ToolContract",
    "ToolDefinition",
    "ToolGate",
    "ToolOutput",
    "ToolRegistry",
]
