"""Token lookup tool: resolves token symbols to contract addresses.

Addresses come from a static table so the agent never types them. The
table is loaded from a JSON file (``{network: {SYMBOL: {address,
decimals, name}}}``) or falls back to the built-in Base/Mainnet tokens.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

from regvault.config import load_json_file
from regvault.exceptions import InvalidToolParams
from regvault.logging import get_logger
from regvault.tools.models import ToolContext, ToolContract, ToolDefinition, ToolOutput
from regvault.tools.registry import RegisteredTool

logger = get_logger("regvault.tools.token_lookup")

DEFAULT_NETWORK = "base"


class TokenInfo(BaseModel):
    address: str
    decimals: int = Field(ge=0, le=77)
    name: str


DEFAULT_TOKENS: dict[str, dict[str, TokenInfo]] = {
    "base": {
        "ETH": TokenInfo(address="0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE", decimals=18, name="Ethereum"),
        "WETH": TokenInfo(address="0x4200000000000000000000000000000000000006", decimals=18, name="Wrapped Ether"),
        "USDC": TokenInfo(address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", decimals=6, name="USD Coin"),
    },
    "mainnet": {
        "ETH": TokenInfo(address="0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE", decimals=18, name="Ethereum"),
        "WETH": TokenInfo(address="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", decimals=18, name="Wrapped Ether"),
        "USDC": TokenInfo(address="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", decimals=6, name="USD Coin"),
    },
}


class TokenTable:
    """Known tokens per network. Symbols are matched case-insensitively."""

    def __init__(self, networks: dict[str, dict[str, TokenInfo]] | None = None):
        source = networks if networks is not None else DEFAULT_TOKENS
        self._networks = {
            network.lower(): {symbol.upper(): info for symbol, info in tokens.items()}
            for network, tokens in source.items()
        }

    @classmethod
    def from_file(cls, path: str | Path) -> TokenTable:
        data = load_json_file(path)
        networks = {
            network: {symbol: TokenInfo.model_validate(info) for symbol, info in tokens.items()}
            for network, tokens in data.items()
        }
        total = sum(len(t) for t in networks.values())
        logger.info("Loaded %d tokens across %d networks from %s", total, len(networks), path)
        return cls(networks)

    def resolve_network(self, network: str) -> str:
        """The network a lookup on ``network`` actually uses; unknown ones fall back to base."""
        name = network.lower()
        return name if name in self._networks else DEFAULT_NETWORK

    def _network(self, network: str) -> dict[str, TokenInfo]:
        return self._networks.get(self.resolve_network(network), {})

    def lookup(self, symbol: str, network: str = DEFAULT_NETWORK) -> TokenInfo | None:
        return self._network(network).get(symbol.upper())

    def available(self, network: str = DEFAULT_NETWORK) -> list[str]:
        return sorted(self._network(network))

    def networks(self) -> list[str]:
        return sorted(self._networks)


def create_token_lookup_tool(tokens: TokenTable | None = None) -> RegisteredTool:
    table = tokens or TokenTable()

    def _token_lookup(ctx: ToolContext, symbol: str, network: str = DEFAULT_NETWORK) -> ToolOutput:
        network = table.resolve_network(network)
        token = table.lookup(symbol, network)
        if token is None:
            available = table.available(network)
            raise InvalidToolParams(
                "token_lookup",
                f"Token '{symbol}' not found on {network}. Available tokens: {', '.join(available)}",
                details={"symbol": symbol, "network": network, "available": available},
            )
        upper = symbol.upper()
        return ToolOutput(
            content=(
                f"{token.name} ({upper}) on {network}\n"
                f"Address: {token.address}\n"
                f"Decimals: {token.decimals}"
            ),
            value=token.address,
            companions={"symbol": upper, "decimals": str(token.decimals)},
        )

    return RegisteredTool(
        definition=ToolDefinition(
            name="token_lookup",
            description=(
                "Look up a token's contract address by its symbol. Supports common tokens on "
                "Base and Mainnet. Use cache_as to store the address in a register for use "
                "with swap presets."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "symbol": {
                        "type": "string",
                        "minLength": 1,
                        "description": "Token symbol (e.g., 'ETH', 'USDC', 'WETH'). Case-insensitive.",
                    },
                    "network": {
                        "type": "string",
                        "description": "Network: 'base' or 'mainnet' (default 'base')",
                    },
                },
                "required": ["symbol"],
            },
        ),
        contract=ToolContract(cacheable=True, companion_suffixes=["symbol", "decimals"]),
        handler=_token_lookup,
    )
