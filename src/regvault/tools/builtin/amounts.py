"""Amount conversion: human-readable token amounts to smallest units.

Decimals are taken from the ``<token>_decimals`` register written by
token_lookup, never from the agent.
"""

from __future__ import annotations

import re

from regvault.exceptions import ForbiddenRegisterRead, InvalidValueFormat, RegisterNotFound
from regvault.tools.models import ToolContext, ToolContract, ToolDefinition, ToolOutput
from regvault.tools.registry import RegisteredTool

DECIMALS_PRODUCER = "token_lookup"

_DECIMAL_AMOUNT = re.compile(r"^[0-9]+(\.[0-9]+)?$")


def to_raw_units(amount: str, decimals: int) -> str:
    """Scale a decimal string by ``10**decimals`` exactly, as a canonical integer string.

    Raises ValueError when the amount is malformed or carries more
    fractional digits than ``decimals`` allows.
    """
    text = amount.strip()
    if not _DECIMAL_AMOUNT.match(text):
        raise ValueError("expected a non-negative decimal number such as '1.5'")
    whole, _, fraction = text.partition(".")
    fraction = fraction.rstrip("0")
    if len(fraction) > decimals:
        raise ValueError(f"at most {decimals} decimal places are supported")
    return str(int(whole + fraction.ljust(decimals, "0")))


def _to_raw_amount(ctx: ToolContext, amount: str, token_register: str = "sell_token") -> ToolOutput:
    decimals_key = f"{token_register}_decimals"
    entry = ctx.registers.get(decimals_key)
    if entry is None:
        raise RegisterNotFound([decimals_key], {decimals_key: [DECIMALS_PRODUCER]})
    if entry.origin_tool != DECIMALS_PRODUCER:
        raise ForbiddenRegisterRead(
            "to_raw_amount", decimals_key, f"decimals must be written by {DECIMALS_PRODUCER}"
        )

    decimals = int(entry.value)
    try:
        raw = to_raw_units(amount, decimals)
    except ValueError as e:
        raise InvalidValueFormat("amount", "amount", str(e)) from e
    if raw == "0":
        raise InvalidValueFormat("amount", "amount", "amount must be greater than zero")

    symbol = ctx.registers.get(f"{token_register}_symbol")
    label = symbol.value if symbol is not None else token_register
    return ToolOutput(
        content=f"{amount} {label} = {raw} base units ({decimals} decimals)",
        value=raw,
    )


TO_RAW_AMOUNT_TOOL = RegisteredTool(
    definition=ToolDefinition(
        name="to_raw_amount",
        description=(
            "Convert a human-readable amount (e.g. '1.5') into the token's smallest units "
            "using the decimals cached by token_lookup. Use cache_as='sell_amount'."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "amount": {
                    "type": "string",
                    "description": "Decimal amount, e.g. '1.5'",
                },
                "token_register": {
                    "type": "string",
                    "pattern": "^[A-Za-z0-9_]{1,54}$",
                    "description": "Register holding the token (default 'sell_token')",
                },
            },
            "required": ["amount"],
        },
    ),
    contract=ToolContract(cacheable=True),
    handler=_to_raw_amount,
)
