"""
RegVault Built-in Tools

The swap workflow tools registered automatically when tools=True in the
RegVault constructor. Tools needing integrator callables (wallet
provider, transaction submitter) are built by factories.
"""

from regvault.registers.validators import ValidatorSettings
from regvault.tools.registry import RegisteredTool, ToolRegistry

from regvault.tools.builtin.amounts import TO_RAW_AMOUNT_TOOL
from regvault.tools.builtin.broadcast import TxSubmitter, create_web3_tx_tool
from regvault.tools.builtin.presets import create_preset_fetch_tool
from regvault.tools.builtin.register_tools import REGISTER_LIST_TOOL, REGISTER_SET_TOOL
from regvault.tools.builtin.token_lookup import TokenTable, create_token_lookup_tool
from regvault.tools.builtin.wallet import WalletProvider, create_wallet_tool


def create_builtin_tools(
    wallet_provider: WalletProvider | None = None,
    tx_submitter: TxSubmitter | None = None,
    tokens: TokenTable | None = None,
    preset_names: list[str] | None = None,
    settings: ValidatorSettings | None = None,
) -> list[RegisteredTool]:
    return [
        REGISTER_SET_TOOL,
        REGISTER_LIST_TOOL,
        create_token_lookup_tool(tokens),
        create_wallet_tool(wallet_provider),
        TO_RAW_AMOUNT_TOOL,
        create_preset_fetch_tool(preset_names),
        create_web3_tx_tool(tx_submitter, settings),
    ]


def register_all_builtins(registry: ToolRegistry, **kwargs) -> None:
    """Register all built-in tools with the given registry."""
    for tool in create_builtin_tools(**kwargs):
        registry.register(tool)
