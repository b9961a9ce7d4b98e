"""Tests for the Tool Gate.

Walks each of the five stages (schema, sensitivity, resolution,
execution, caching) and checks that no register changes unless
execution succeeded.
"""

import asyncio

import pytest

from conftest import ETH, QUOTE_RESPONSE, ROUTER, TX_HASH, WALLET, FakeExecutor, FakeSubmitter
from regvault.core.models import ToolCallRequest
from regvault.exceptions import ExecutorFailure
from regvault.presets.catalog import default_catalog
from regvault.presets.resolver import PresetResolver
from regvault.sessions.session import Session
from regvault.tools.builtin import register_all_builtins
from regvault.tools.builtin.broadcast import TX_SENSITIVE_FIELDS
from regvault.tools.gate import ToolGate
from regvault.tools.hooks import HookDecision, HookPipeline, HookStage
from regvault.tools.models import ToolContract, ToolDefinition, ToolOutput
from regvault.tools.registry import RegisteredTool, ToolRegistry


def call(tool: str, **params) -> ToolCallRequest:
    return ToolCallRequest(tool=tool, params=params)


def _custom_tool(name, handler, contract=None, properties=None) -> RegisteredTool:
    return RegisteredTool(
        definition=ToolDefinition(
            name=name,
            description=name,
            input_schema={"type": "object", "properties": properties or {}},
        ),
        contract=contract or ToolContract(),
        handler=handler,
    )


@pytest.fixture
def registry(submitter):
    registry = ToolRegistry()
    register_all_builtins(
        registry,
        wallet_provider=lambda: WALLET,
        tx_submitter=submitter,
        preset_names=default_catalog().names(),
    )
    return registry


@pytest.fixture
def hooks():
    return HookPipeline()


@pytest.fixture
def gate(registry, executor, policy, hooks):
    return ToolGate(registry, PresetResolver(default_catalog(), policy), executor, hooks=hooks)


@pytest.fixture
def session(policy):
    return Session("s1", policy)


async def _fill_swap_registers(gate, session):
    for request in [
        call("wallet_address", cache_as="wallet_address"),
        call("token_lookup", symbol="ETH", cache_as="sell_token"),
        call("token_lookup", symbol="USDC", cache_as="buy_token"),
        call("to_raw_amount", amount="0.0005", cache_as="sell_amount"),
    ]:
        result = await gate.invoke(session, request)
        assert not result.is_error, result.content


class TestUnknownTool:
    async def test_unknown_tool(self, gate, session):
        result = await gate.invoke(session, call("teleport"))
        assert result.is_error
        assert result.error_code == "UnknownTool"
        assert "token_lookup" in result.details["available"]
        assert session.invocation_count == 1


class TestSchemaStage:
    async def test_missing_required_param(self, gate, session):
        result = await gate.invoke(session, call("token_lookup"))
        assert result.error_code == "InvalidToolParams"
        assert "symbol" in result.content

    async def test_unknown_field_rejected(self, gate, session):
        result = await gate.invoke(session, call("token_lookup", symbol="ETH", address=ETH))
        assert result.error_code == "InvalidToolParams"

    async def test_reserved_field_must_be_string(self, gate, session):
        result = await gate.invoke(session, call("token_lookup", symbol="ETH", cache_as=5))
        assert result.error_code == "InvalidToolParams"

    async def test_cache_as_must_be_valid_key(self, gate, session):
        result = await gate.invoke(session, call("token_lookup", symbol="ETH", cache_as="sell token"))
        assert result.error_code == "InvalidKey"

    async def test_cache_as_refused_by_non_cacheable_tool(self, gate, session):
        result = await gate.invoke(session, call("register_list", cache_as="note"))
        assert result.error_code == "InvalidToolParams"
        assert "cache_as" in result.content

    async def test_from_register_refused_by_plain_tool(self, gate, session):
        result = await gate.invoke(session, call("token_lookup", symbol="ETH", from_register="note"))
        assert result.error_code == "InvalidToolParams"

    async def test_from_register_and_preset_together(self, gate, session):
        gate.registry.register(_custom_tool(
            "both", lambda ctx: "ok", ToolContract(accepts_register=True, preset_driven=True)
        ))
        result = await gate.invoke(session, call("both", from_register="note", preset="swap_quote"))
        assert result.error_code == "InvalidToolParams"
        assert "either" in result.content

    async def test_invalid_filter(self, gate, session):
        result = await gate.invoke(session, call("preset_fetch", preset="swap_quote", filter="a..b"))
        assert result.error_code == "InvalidToolParams"


class TestSensitivityStage:
    async def test_web3_tx_requires_register(self, gate, session, submitter):
        result = await gate.invoke(session, call("web3_tx"))
        assert result.error_code == "ToolRequiresRegister"
        assert "from_register" in result.content
        assert submitter.sent == []

    async def test_raw_fields_without_reference(self, gate, session, submitter):
        result = await gate.invoke(session, call("web3_tx", to=ROUTER, data="0x"))
        assert result.error_code == "ToolRequiresRegister"
        assert result.details["raw_fields"] == ["data", "to"]
        assert submitter.sent == []

    async def test_raw_to_with_from_register_rejected_store_unchanged(self, gate, session, submitter):
        await _fill_swap_registers(gate, session)
        await gate.invoke(session, call("preset_fetch", preset="swap_quote", cache_as="swap_quote"))
        before = session.registers.snapshot().entries

        result = await gate.invoke(session, call("web3_tx", from_register="swap_quote", to=ROUTER))
        assert result.error_code == "ConflictingRawAndRegisterParams"
        assert result.details["raw_fields"] == ["to"]
        assert submitter.sent == []
        assert session.registers.snapshot().entries == before

    @pytest.mark.parametrize("field", TX_SENSITIVE_FIELDS)
    async def test_every_sensitive_field_blocked(self, gate, session, submitter, field):
        for params in ({field: "0x1"}, {field: "0x1", "from_register": "swap_quote"}):
            result = await gate.invoke(session, call("web3_tx", **params))
            assert result.error_code in ("ToolRequiresRegister", "ConflictingRawAndRegisterParams")
        assert submitter.sent == []

    async def test_preset_fetch_requires_preset(self, gate, session, executor):
        result = await gate.invoke(session, call("preset_fetch"))
        assert result.error_code == "ToolRequiresRegister"
        assert "preset" in result.content
        assert executor.requests == []

    async def test_preset_fetch_rejects_raw_request_fields(self, gate, session, executor):
        await _fill_swap_registers(gate, session)
        result = await gate.invoke(
            session, call("preset_fetch", preset="swap_quote", sellAmount="999999999999")
        )
        assert result.error_code == "ConflictingRawAndRegisterParams"
        assert executor.requests == []


class TestResolutionStage:
    async def test_required_registers(self, gate, session):
        result = await gate.invoke(session, call("web3_tx", from_register="swap_quote"))
        assert result.error_code == "RegisterNotFound"
        assert result.details["missing"] == ["wallet_address"]
        assert result.details["producers"] == {"wallet_address": ["wallet_address"]}

    async def test_missing_referenced_register(self, gate, session):
        await gate.invoke(session, call("wallet_address", cache_as="wallet_address"))
        result = await gate.invoke(session, call("web3_tx", from_register="swap_quote"))
        assert result.error_code == "RegisterNotFound"
        assert result.details["producers"] == {"swap_quote": ["preset:swap_quote"]}

    async def test_unreadable_register(self, gate, session):
        await gate.invoke(session, call("wallet_address", cache_as="wallet_address"))
        await gate.invoke(session, call("register_set", key="note", value="hello"))
        result = await gate.invoke(session, call("web3_tx", from_register="note"))
        assert result.error_code == "ForbiddenRegisterRead"

    async def test_sensitive_tool_refuses_agent_set_register(self, gate, session):
        seen = []
        gate.registry.register(_custom_tool(
            "sign", lambda ctx: seen.append(ctx.register_value),
            ToolContract(sensitive=True, accepts_register=True, sensitive_fields=["payload"]),
        ))
        await gate.invoke(session, call("register_set", key="note", value="forged"))
        result = await gate.invoke(session, call("sign", from_register="note"))
        assert result.error_code == "ForbiddenRegisterRead"
        assert "register_set" in result.content
        assert seen == []

    async def test_field_projection(self, gate, session):
        seen = []
        gate.registry.register(_custom_tool(
            "inspect", lambda ctx: seen.append(ctx.register_value) or "ok",
            ToolContract(accepts_register=True),
        ))
        await gate.invoke(session, call("register_set", key="blob", value={"a": {"b": [10, 20]}}))
        result = await gate.invoke(session, call("inspect", from_register="blob.a.b.1"))
        assert not result.is_error
        assert seen == [20]

        result = await gate.invoke(session, call("inspect", from_register="blob.a.c"))
        assert result.error_code == "RegisterNotFound"
        assert result.details["field_path"] == "a.c"

    async def test_preset_requirements_unmet(self, gate, session, executor):
        await gate.invoke(session, call("wallet_address", cache_as="wallet_address"))
        await gate.invoke(session, call("token_lookup", symbol="ETH", cache_as="sell_token"))
        await gate.invoke(session, call("token_lookup", symbol="USDC", cache_as="buy_token"))
        result = await gate.invoke(session, call("preset_fetch", preset="swap_quote"))
        assert result.error_code == "PresetRequirementUnmet"
        assert result.details["missing"] == ["sell_amount"]
        assert result.recoverable is True
        assert executor.requests == []

    async def test_unknown_preset(self, gate, session):
        result = await gate.invoke(session, call("preset_fetch", preset="nope"))
        assert result.error_code == "PresetNotFound"

    async def test_cache_target_preflight(self, gate, session, executor):
        await _fill_swap_registers(gate, session)
        result = await gate.invoke(session, call("preset_fetch", preset="swap_quote", cache_as="sell_amount"))
        assert result.error_code == "ForbiddenRegisterWrite"
        assert executor.requests == []
        assert session.registers.get("sell_amount").origin_tool == "to_raw_amount"


class TestExecutionStage:
    async def test_executor_failure_writes_nothing(self, registry, policy, session):
        failing = FakeExecutor(error=ExecutorFailure("preset:swap_quote", "HTTP 500"))
        gate = ToolGate(registry, PresetResolver(default_catalog(), policy), failing)
        await _fill_swap_registers(gate, session)
        keys = session.registers.keys()
        result = await gate.invoke(session, call("preset_fetch", preset="swap_quote", cache_as="swap_quote"))
        assert result.error_code == "ExecutorFailure"
        assert result.recoverable is False
        assert session.registers.keys() == keys

    async def test_response_without_filtered_field(self, registry, policy, session):
        gate = ToolGate(registry, PresetResolver(default_catalog(), policy), FakeExecutor(response={"x": 1}))
        await _fill_swap_registers(gate, session)
        result = await gate.invoke(session, call("preset_fetch", preset="swap_quote", cache_as="swap_quote"))
        assert result.error_code == "ExecutorFailure"
        assert "swap_quote" not in session.registers

    async def test_handler_exception_wrapped(self, gate, session):
        def boom(ctx):
            raise RuntimeError("kaboom")

        gate.registry.register(_custom_tool("boom", boom, ToolContract(cacheable=True)))
        result = await gate.invoke(session, call("boom", cache_as="note"))
        assert result.error_code == "ExecutorFailure"
        assert "kaboom" in result.content
        assert "note" not in session.registers

    async def test_invocation_timeout(self, registry, policy, session):
        async def slow(ctx):
            await asyncio.sleep(5)
            return ToolOutput(content="late", value="x")

        registry.register(_custom_tool("slow", slow, ToolContract(cacheable=True)))
        gate = ToolGate(registry, PresetResolver(default_catalog(), policy), FakeExecutor(), invocation_timeout=0.05)
        result = await gate.invoke(session, call("slow", cache_as="note"))
        assert result.error_code == "InvocationTimeout"
        assert result.retryable is True
        assert "note" not in session.registers

    async def test_no_executor_configured(self, registry, policy, session):
        gate = ToolGate(registry, PresetResolver(default_catalog(), policy))
        await _fill_swap_registers(gate, session)
        result = await gate.invoke(session, call("preset_fetch", preset="swap_quote"))
        assert result.error_code == "ExecutorFailure"

    async def test_reserved_fields_not_forwarded(self, gate, session):
        seen = []
        gate.registry.register(_custom_tool(
            "echo", lambda ctx, **params: seen.append(params) or "ok",
            ToolContract(cacheable=True), properties={"x": {"type": "integer"}},
        ))
        await gate.invoke(session, call("echo", x=1, cache_as="note"))
        assert seen == [{"x": 1}]


class TestCachingStage:
    async def test_token_lookup_writes_companions(self, gate, session):
        result = await gate.invoke(session, call("token_lookup", symbol="usdc", cache_as="buy_token"))
        assert not result.is_error
        assert result.registers_written == ["buy_token", "buy_token_symbol", "buy_token_decimals"]
        assert session.registers.get("buy_token_symbol").value == "USDC"
        assert session.registers.get("buy_token_decimals").value == "6"
        assert session.registers.get("buy_token").origin_tool == "token_lookup"

    async def test_without_cache_as_nothing_written(self, gate, session):
        result = await gate.invoke(session, call("token_lookup", symbol="ETH"))
        assert not result.is_error
        assert result.registers_written == []
        assert len(session.registers) == 0

    async def test_generic_setter_cannot_write_guarded_key(self, gate, session):
        result = await gate.invoke(session, call("register_set", key="sell_token", value=ETH))
        assert result.error_code == "ForbiddenRegisterWrite"
        assert "token_lookup" in result.content
        assert "sell_token" not in session.registers

    async def test_lookup_tool_can_write_same_value(self, gate, session):
        result = await gate.invoke(session, call("token_lookup", symbol="ETH", cache_as="sell_token"))
        assert not result.is_error
        assert session.registers.get("sell_token").value == ETH

    async def test_preset_result_cached_with_preset_origin(self, gate, session, executor):
        await _fill_swap_registers(gate, session)
        result = await gate.invoke(session, call("preset_fetch", preset="swap_quote", cache_as="swap_quote"))
        assert not result.is_error
        assert result.registers_written == ["swap_quote", "swap_quote_chain_id"]
        assert session.registers.get("swap_quote_chain_id").value == "8453"
        entry = session.registers.get("swap_quote")
        assert entry.value == QUOTE_RESPONSE["transaction"]
        assert entry.origin_tool == "preset:swap_quote"
        assert executor.requests[0].query["sellAmount"] == "500000000000000"

    async def test_filter_override(self, gate, session):
        await _fill_swap_registers(gate, session)
        result = await gate.invoke(session, call("preset_fetch", preset="swap_quote", filter="buyAmount"))
        assert not result.is_error
        assert '"1000000"' in result.content

    async def test_full_swap_flow(self, gate, session, submitter):
        await _fill_swap_registers(gate, session)
        await gate.invoke(session, call("preset_fetch", preset="swap_quote", cache_as="swap_quote"))
        result = await gate.invoke(session, call("web3_tx", from_register="swap_quote", cache_as="tx_hash"))
        assert not result.is_error, result.content
        tx, network = submitter.sent[0]
        assert network == "base"
        assert tx["to"] == ROUTER
        assert tx["from"] == WALLET
        assert tx["chainId"] == 8453
        assert session.registers.get("tx_hash").value == TX_HASH

    async def test_network_cannot_override_quote_chain(self, gate, session, submitter):
        await _fill_swap_registers(gate, session)
        await gate.invoke(session, call("preset_fetch", preset="swap_quote", cache_as="swap_quote"))
        result = await gate.invoke(
            session, call("web3_tx", from_register="swap_quote", network="mainnet", cache_as="tx_hash")
        )
        assert result.error_code == "ConflictingRawAndRegisterParams"
        assert "network" in result.content
        assert submitter.sent == []
        assert "tx_hash" not in session.registers

    async def test_agent_cannot_set_quote_chain(self, gate, session):
        result = await gate.invoke(session, call("register_set", key="swap_quote_chain_id", value="1"))
        assert result.error_code == "ForbiddenRegisterWrite"
        assert "swap_quote_chain_id" not in session.registers


class TestCommitAfterSideEffect:
    def _gate(self, policy, tx_submitter) -> ToolGate:
        registry = ToolRegistry()
        register_all_builtins(registry, wallet_provider=lambda: WALLET, tx_submitter=tx_submitter)
        return ToolGate(registry, PresetResolver(default_catalog(), policy), FakeExecutor())

    async def _send(self, gate, session):
        await _fill_swap_registers(gate, session)
        await gate.invoke(session, call("preset_fetch", preset="swap_quote", cache_as="swap_quote"))
        return await gate.invoke(session, call("web3_tx", from_register="swap_quote", cache_as="tx_hash"))

    async def test_failed_commit_is_not_recoverable(self, policy, session):
        submitter = FakeSubmitter(tx_hash=12345)
        result = await self._send(self._gate(policy, submitter), session)
        assert result.error_code == "SideEffectNotCached"
        assert result.recoverable is False
        assert result.retryable is False
        assert result.details["cause"] == "InvalidValueFormat"
        assert "Transaction submitted on base: 12345" in result.content
        assert "Do not call it again" in result.content
        assert len(submitter.sent) == 1
        assert "tx_hash" not in session.registers

    async def test_bytes_hash_cached_as_hex(self, policy, session):
        submitter = FakeSubmitter(tx_hash=bytes.fromhex("ab" * 32))
        result = await self._send(self._gate(policy, submitter), session)
        assert not result.is_error, result.content
        assert session.registers.get("tx_hash").value == TX_HASH

    async def test_hook_abort_after_broadcast(self, policy, session, submitter):
        gate = self._gate(policy, submitter)
        gate.hooks.register(
            HookStage.BEFORE_COMMIT,
            lambda ctx: HookDecision.abort("review") if ctx.tool_name == "web3_tx" else None,
        )
        result = await self._send(gate, session)
        assert result.error_code == "SideEffectNotCached"
        assert result.details["cause"] == "HookAborted"
        assert TX_HASH in result.content
        assert len(submitter.sent) == 1

    async def test_plain_tool_commit_error_unchanged(self, gate, session):
        gate.registry.register(_custom_tool(
            "blob", lambda ctx: ToolOutput(content="made", value={"a": 1}), ToolContract(cacheable=True)
        ))
        result = await gate.invoke(session, call("blob", cache_as="note"))
        assert result.error_code == "InvalidValueFormat"
        assert result.recoverable is True
        assert "note" not in session.registers


class TestGateHooks:
    async def test_abort_before_execute(self, gate, session, hooks):
        hooks.register(HookStage.BEFORE_EXECUTE, lambda ctx: HookDecision.abort("paused"))
        result = await gate.invoke(session, call("token_lookup", symbol="ETH", cache_as="sell_token"))
        assert result.error_code == "HookAborted"
        assert len(session.registers) == 0

    async def test_abort_before_commit_writes_nothing(self, gate, session, hooks):
        seen = []

        def hook(ctx):
            seen.append(ctx.pending_writes)
            return HookDecision.abort("review")

        hooks.register(HookStage.BEFORE_COMMIT, hook)
        result = await gate.invoke(session, call("token_lookup", symbol="ETH", cache_as="sell_token"))
        assert result.error_code == "HookAborted"
        assert seen == [["sell_token", "sell_token_symbol", "sell_token_decimals"]]
        assert len(session.registers) == 0

    async def test_modify_params(self, gate, session, hooks):
        hooks.register(
            HookStage.BEFORE_EXECUTE,
            lambda ctx: HookDecision.modify({**ctx.params, "network": "mainnet"}),
        )
        result = await gate.invoke(session, call("token_lookup", symbol="WETH", cache_as="buy_token"))
        assert not result.is_error
        assert session.registers.get("buy_token").value == "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"

    async def test_modify_filter_reresolves_preset(self, gate, session, hooks, executor):
        await _fill_swap_registers(gate, session)
        hooks.register(
            HookStage.BEFORE_EXECUTE,
            lambda ctx: HookDecision.modify({**ctx.params, "filter": "buyAmount"})
            if ctx.tool_name == "preset_fetch" else None,
        )
        result = await gate.invoke(session, call("preset_fetch", preset="swap_quote"))
        assert not result.is_error, result.content
        assert executor.requests[0].filter == "buyAmount"
        assert '"1000000"' in result.content

    async def test_modify_cannot_inject_sensitive_fields(self, gate, session, hooks, submitter):
        await _fill_swap_registers(gate, session)
        await gate.invoke(session, call("preset_fetch", preset="swap_quote", cache_as="swap_quote"))
        hooks.register(
            HookStage.BEFORE_EXECUTE,
            lambda ctx: HookDecision.modify({**ctx.params, "to": WALLET}) if ctx.tool_name == "web3_tx" else None,
        )
        result = await gate.invoke(session, call("web3_tx", from_register="swap_quote"))
        assert result.error_code == "ConflictingRawAndRegisterParams"
        assert submitter.sent == []

    async def test_after_commit_sees_written_keys(self, gate, session, hooks):
        seen = []
        hooks.register(HookStage.AFTER_COMMIT, lambda ctx: seen.append((ctx.pending_writes, ctx.register_keys)))
        await gate.invoke(session, call("wallet_address", cache_as="wallet_address"))
        assert seen == [(["wallet_address"], ["wallet_address"])]
