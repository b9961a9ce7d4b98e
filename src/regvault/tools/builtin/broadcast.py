"""Transaction broadcast tool.

Sends the transaction held in a register (by default the ``swap_quote``
cached from a preset) through the integrator-supplied submitter. Every
field the submitter receives comes from registers, including the chain,
which is read from the ``<key>_chain_id`` register the preset wrote
alongside the quote. The agent may name the network only to confirm it.
"""

from __future__ import annotations

import inspect
import re
from collections.abc import Awaitable, Callable
from typing import Any

from eth_utils import to_hex

from regvault.exceptions import (
    ConflictingRawAndRegisterParams,
    ExecutorFailure,
    ForbiddenRegisterRead,
    InvalidValueFormat,
    RegisterNotFound,
    ToolRequiresRegister,
)
from regvault.registers.policy import PRESET_ORIGIN_PREFIX
from regvault.registers.store import parse_reference
from regvault.registers.validators import ValidatorSettings, ValueType, validate
from regvault.tools.builtin.presets import CHAIN_ID_SUFFIX
from regvault.tools.models import ToolContext, ToolContract, ToolDefinition, ToolOutput
from regvault.tools.registry import RegisteredTool

TxSubmitter = Callable[[dict[str, Any], str], str | bytes | Awaitable[str | bytes]]

CHAIN_IDS = {"base": 8453, "mainnet": 1}
_NETWORKS = {str(chain_id): name for name, chain_id in CHAIN_IDS.items()}

TX_SENSITIVE_FIELDS = ["to", "data", "value", "gas", "gasPrice", "from", "nonce", "chainId"]

_HEX_DATA = re.compile(r"^0x([0-9a-fA-F]{2})*$")
_NUMERIC_FIELDS = ("value", "gas", "gasPrice")


def prepare_transaction(
    tx: Any,
    sender: str,
    chain_id: int,
    settings: ValidatorSettings | None = None,
) -> dict[str, Any]:
    """Validate a transaction object and pin its sender and chain."""
    if not isinstance(tx, dict):
        raise InvalidValueFormat("transaction", "transaction", "expected an object with 'to' and 'data'")

    prepared: dict[str, Any] = {
        "to": validate(ValueType.ADDRESS, "transaction.to", tx.get("to"), settings),
    }
    data = tx.get("data")
    if not isinstance(data, str) or not _HEX_DATA.match(data):
        raise InvalidValueFormat("transaction.data", "transaction", "data must be 0x-prefixed hex bytes")
    prepared["data"] = data

    for name in _NUMERIC_FIELDS:
        if tx.get(name) is not None:
            prepared[name] = validate(ValueType.AMOUNT, f"transaction.{name}", str(tx[name]), settings)

    tx_from = tx.get("from")
    if tx_from is not None and str(tx_from).lower() != sender.lower():
        raise InvalidValueFormat("transaction.from", "transaction", "sender does not match wallet_address")
    prepared["from"] = sender
    prepared["chainId"] = chain_id
    return prepared


def register_network(ctx: ToolContext) -> tuple[str, int]:
    """Network and chain ID recorded for the referenced transaction register."""
    if ctx.register_reference is None:
        raise ToolRequiresRegister("web3_tx", "from_register")
    key = parse_reference(ctx.register_reference)[0]
    chain_key = f"{key}_{CHAIN_ID_SUFFIX}"

    entry = ctx.registers.get(chain_key)
    if entry is None:
        raise RegisterNotFound([chain_key], ctx.registers.producers_for([chain_key]))
    if not entry.origin_tool.startswith(PRESET_ORIGIN_PREFIX):
        raise ForbiddenRegisterRead(
            "web3_tx", chain_key, f"it was written by {entry.origin_tool}, not by a preset"
        )
    network = _NETWORKS.get(str(entry.value))
    if network is None:
        raise InvalidValueFormat(
            chain_key, "chain_id",
            f"unsupported chain {entry.value}; supported: {', '.join(sorted(_NETWORKS))}",
        )
    return network, CHAIN_IDS[network]


def create_web3_tx_tool(
    tx_submitter: TxSubmitter | None = None,
    settings: ValidatorSettings | None = None,
) -> RegisteredTool:
    async def _web3_tx(ctx: ToolContext, network: str | None = None) -> ToolOutput:
        sender = ctx.registers.get("wallet_address").value
        chain_network, chain_id = register_network(ctx)
        if network is not None and network != chain_network:
            raise ConflictingRawAndRegisterParams(
                "web3_tx", ["network"], f"from_register='{ctx.register_reference}'",
                details={"network": network, "register_network": chain_network, "chain_id": chain_id},
            )
        tx = prepare_transaction(ctx.register_value, sender, chain_id, settings)
        if tx_submitter is None:
            raise ExecutorFailure("web3_tx", "no transaction submitter configured")
        tx_hash = tx_submitter(tx, chain_network)
        if inspect.isawaitable(tx_hash):
            tx_hash = await tx_hash
        # web3 clients commonly hand back the hash as raw bytes
        if isinstance(tx_hash, (bytes, bytearray)):
            tx_hash = to_hex(bytes(tx_hash))
        return ToolOutput(content=f"Transaction submitted on {chain_network}: {tx_hash}", value=tx_hash)

    return RegisteredTool(
        definition=ToolDefinition(
            name="web3_tx",
            description=(
                "Send the transaction held in a register. Call with from_register='swap_quote' "
                "after fetching a quote with preset_fetch. Raw transaction fields are not accepted "
                "and the chain is the one the quote was fetched for. "
                "Use cache_as='tx_hash' to keep the hash."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "network": {
                        "type": "string",
                        "enum": sorted(CHAIN_IDS),
                        "description": "Optional; must match the network the quote was built for",
                    },
                },
            },
        ),
        contract=ToolContract(
            sensitive=True,
            sensitive_fields=TX_SENSITIVE_FIELDS,
            accepts_register=True,
            cacheable=True,
            readable_registers=["swap_quote"],
            required_registers=["wallet_address"],
        ),
        handler=_web3_tx,
    )
