"""Wallet address tool: reports the agent wallet's address.

The address comes from an integrator-supplied provider; the vault never
holds keys.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable

from regvault.exceptions import ExecutorFailure
from regvault.tools.models import ToolContext, ToolContract, ToolDefinition, ToolOutput
from regvault.tools.registry import RegisteredTool

WalletProvider = Callable[[], str | Awaitable[str]]


def create_wallet_tool(wallet_provider: WalletProvider | None = None) -> RegisteredTool:
    async def _wallet_address(ctx: ToolContext) -> ToolOutput:
        if wallet_provider is None:
            raise ExecutorFailure("wallet_address", "no wallet provider configured")
        address = wallet_provider()
        if inspect.isawaitable(address):
            address = await address
        return ToolOutput(content=f"Wallet address: {address}", value=address)

    return RegisteredTool(
        definition=ToolDefinition(
            name="wallet_address",
            description=(
                "Get the agent wallet's address. Use cache_as='wallet_address' before "
                "fetching quotes or sending transactions."
            ),
            input_schema={"type": "object", "properties": {}},
        ),
        contract=ToolContract(cacheable=True),
        handler=_wallet_address,
    )
