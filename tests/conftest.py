"""Shared test fixtures for the RegVault test suite."""

import asyncio
import copy

import pytest

from regvault import RegVault
from regvault.core.models import ResolvedRequest
from regvault.presets.executor import RequestExecutor
from regvault.registers.policy import default_policy
from regvault.registers.store import RegisterStore

USDC_BASE = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
USDC_BASE_LOWER = "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"
USDC_BASE_BAD_CHECKSUM = "0x833589FCD6eDb6E08f4c7C32D4f71b54bdA02913"
ETH = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
WETH_BASE = "0x4200000000000000000000000000000000000006"
WALLET = "0x1111111111111111111111111111111111111111"
ROUTER = "0x2222222222222222222222222222222222222222"
TX_HASH = "0x" + "ab" * 32

QUOTE_RESPONSE = {
    "buyAmount": "1000000",
    "sellAmount": "500000000000000",
    "transaction": {
        "to": ROUTER,
        "data": "0xdeadbeef",
        "value": "500000000000000",
        "gas": "210000",
        "gasPrice": "1000000",
    },
}


class FakeExecutor(RequestExecutor):
    """Records resolved requests and returns a canned JSON response."""

    def __init__(self, response=None, delay: float = 0.0, error: Exception | None = None):
        self.response = QUOTE_RESPONSE if response is None else response
        self.delay = delay
        self.error = error
        self.requests: list[ResolvedRequest] = []

    async def execute(self, request: ResolvedRequest):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.response)


class FakeSubmitter:
    """Transaction submitter that records what it was asked to send."""

    def __init__(self, tx_hash: str = TX_HASH):
        self.tx_hash = tx_hash
        self.sent: list[tuple[dict, str]] = []

    def __call__(self, tx: dict, network: str) -> str:
        self.sent.append((tx, network))
        return self.tx_hash


@pytest.fixture
def policy():
    return default_policy()


@pytest.fixture
def store(policy):
    return RegisterStore(policy, session_id="s1")


@pytest.fixture
def swap_ready_store(store):
    """A store holding every register the swap presets need."""
    store.set("wallet_address", WALLET, "wallet_address")
    store.set_many(
        {"sell_token": ETH, "sell_token_symbol": "ETH", "sell_token_decimals": "18"},
        "token_lookup",
    )
    store.set_many(
        {"buy_token": USDC_BASE, "buy_token_symbol": "USDC", "buy_token_decimals": "6"},
        "token_lookup",
    )
    store.set("sell_amount", "500000000000000", "to_raw_amount")
    return store


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def submitter():
    return FakeSubmitter()


@pytest.fixture
def vault(executor, submitter):
    return RegVault(executor=executor, wallet_provider=lambda: WALLET, tx_submitter=submitter)


async def prepare_swap(vault: RegVault, session_id: str = "s1") -> None:
    """Drive the tool calls that fill every swap register."""
    calls = [
        {"tool": "wallet_address", "params": {"cache_as": "wallet_address"}},
        {"tool": "token_lookup", "params": {"symbol": "eth", "cache_as": "sell_token"}},
        {"tool": "token_lookup", "params": {"symbol": "USDC", "cache_as": "buy_token"}},
        {"tool": "to_raw_amount", "params": {"amount": "0.0005", "cache_as": "sell_amount"}},
    ]
    for call in calls:
        result = await vault.dispatch(session_id, call)
        assert not result.is_error, result.content
