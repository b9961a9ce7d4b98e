"""
RegVault Tool Gate

The dispatch point every tool invocation passes through. Stages, in
order, each a potential failure point:

1. Schema check: reserved fields split off, plain params validated
   against the tool's JSON schema, unknown fields rejected
2. Sensitivity check: sensitive tools need from_register/preset and
   must not receive raw sensitive fields
3. Resolution: required registers checked, from_register fetched (and
   field-projected), presets resolved, cache targets pre-flighted
   against the guard policy
4. Execution: request executor (presets) and tool handler run under the
   per-invocation deadline; the only stage with real-world side effects
5. Caching: tool outputs committed to the session's registers, all or
   nothing. When the commit fails after a sensitive tool ran, the
   error is SideEffectNotCached and carries the tool's output

No register is mutated before stage 4 succeeds. The gate holds the
session only for the duration of one invocation, always under the
session's lane.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import time
from typing import Any

import jsonschema

from regvault.core.models import RESERVED_PARAMS, ToolCallRequest, ToolInvocation, ToolResult
from regvault.exceptions import (
    ConflictingRawAndRegisterParams,
    ExecutorFailure,
    ForbiddenRegisterRead,
    InvalidToolParams,
    InvocationTimeout,
    RegisterNotFound,
    RegVaultError,
    SideEffectNotCached,
    ToolRequiresRegister,
    UnknownTool,
)
from regvault.logging import get_logger
from regvault.presets.executor import RequestExecutor
from regvault.presets.resolver import FILTER_PATTERN, PresetResolver, apply_filter
from regvault.registers.store import check_key, parse_reference
from regvault.sessions.session import Session
from regvault.tools.hooks import HookContext, HookPipeline, HookStage
from regvault.tools.models import ToolContext, ToolOutput
from regvault.tools.registry import RegisteredTool, ToolRegistry

logger = get_logger("regvault.gate")

PRESET_FILTER_PARAM = "filter"


class ToolGate:
    """Enforces tool contracts and the register discipline on every call."""

    def __init__(
        self,
        registry: ToolRegistry,
        resolver: PresetResolver,
        executor: RequestExecutor | None = None,
        hooks: HookPipeline | None = None,
        invocation_timeout: float = 30.0,
    ):
        self._registry = registry
        self._resolver = resolver
        self._executor = executor
        self._hooks = hooks or HookPipeline()
        self._timeout = invocation_timeout

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def resolver(self) -> PresetResolver:
        return self._resolver

    @property
    def hooks(self) -> HookPipeline:
        return self._hooks

    async def invoke(self, session: Session, request: ToolCallRequest) -> ToolResult:
        """Run one invocation through all five stages.

        Every RegVaultError becomes a structured error ToolResult; the
        caller (agent loop) decides whether to retry.
        """
        start = time.monotonic()
        log_extra = {"session_id": session.id, "tool_name": request.tool}
        try:
            result = await self._run(session, request)
        except RegVaultError as e:
            duration_ms = round((time.monotonic() - start) * 1000, 2)
            level = logger.error if isinstance(e, (ExecutorFailure, SideEffectNotCached)) else logger.warning
            level(
                "Invocation failed: %s",
                e.message,
                extra={**log_extra, "error_code": e.code, "duration_ms": duration_ms},
            )
            result = ToolResult.from_error(request.tool, e, invocation_id=request.id)
        else:
            logger.info(
                "Invocation completed",
                extra={**log_extra, "duration_ms": round((time.monotonic() - start) * 1000, 2),
                       "_extra": {"registers_written": result.registers_written}},
            )
        finally:
            session.invocation_count += 1
            session.touch()
        return result

    async def _run(self, session: Session, request: ToolCallRequest) -> ToolResult:
        tool = self._registry.get(request.tool)
        if tool is None:
            raise UnknownTool(request.tool, self._registry.names())

        invocation = self._check_schema(tool, request)
        self._check_sensitivity(tool, invocation)
        ctx, origin = self._resolve(session, tool, invocation)

        params = {k: v for k, v in invocation.raw_params.items()}
        params = await self._hooks.run(HookContext(
            stage=HookStage.BEFORE_EXECUTE,
            session_id=session.id,
            tool_name=tool.name,
            params=params,
            register_keys=session.registers.keys(),
        ))
        if params != invocation.raw_params:
            self._validate_plain(tool, params)
            if ctx.request is not None:
                # A hook may have changed the filter the request carries
                ctx.request = self._resolver.resolve(
                    invocation.preset,
                    session.registers,
                    filter_override=params.get(PRESET_FILTER_PARAM),
                )

        output = await self._execute(tool, ctx, params)

        try:
            written = await self._commit(session, tool, invocation, params, output, origin)
        except RegVaultError as e:
            if not tool.contract.sensitive:
                raise
            raise SideEffectNotCached(tool.name, e, output.content) from e

        await self._hooks.run(HookContext(
            stage=HookStage.AFTER_COMMIT,
            session_id=session.id,
            tool_name=tool.name,
            params=params,
            register_keys=session.registers.keys(),
            pending_writes=written,
            content=output.content,
        ))

        return ToolResult(
            invocation_id=request.id,
            tool_name=tool.name,
            content=output.content,
            registers_written=written,
        )

    # ─── Stage 1: schema ────────────────────────────────────

    def _check_schema(self, tool: RegisteredTool, request: ToolCallRequest) -> ToolInvocation:
        params = dict(request.params)
        reserved: dict[str, str] = {}
        for name in RESERVED_PARAMS:
            if name not in params:
                continue
            value = params.pop(name)
            if not isinstance(value, str) or not value:
                raise InvalidToolParams(tool.name, f"'{name}' must be a non-empty string")
            reserved[name] = value

        contract = tool.contract
        if "cache_as" in reserved:
            if not contract.cacheable:
                raise InvalidToolParams(tool.name, "this tool does not accept cache_as")
            check_key(reserved["cache_as"])
        if "from_register" in reserved:
            if not contract.accepts_register:
                raise InvalidToolParams(tool.name, "this tool does not accept from_register")
            check_key(parse_reference(reserved["from_register"])[0])
        if "preset" in reserved and not contract.preset_driven:
            raise InvalidToolParams(tool.name, "this tool does not accept preset")
        if "from_register" in reserved and "preset" in reserved:
            raise InvalidToolParams(tool.name, "use either from_register or preset, not both")

        # Raw sensitive fields are left for stage 2 to reject with a precise error
        plain = {k: v for k, v in params.items() if k not in contract.sensitive_fields}
        self._validate_plain(tool, plain)

        return ToolInvocation(id=request.id, tool_name=tool.name, raw_params=params, **reserved)

    def _validate_plain(self, tool: RegisteredTool, params: dict[str, Any]) -> None:
        leaked = [k for k in params if k in RESERVED_PARAMS]
        if leaked:
            raise InvalidToolParams(tool.name, f"reserved fields cannot be tool parameters: {', '.join(leaked)}")
        raw = [k for k in params if k in tool.contract.sensitive_fields]
        if raw:
            raise ConflictingRawAndRegisterParams(tool.name, raw, tool.contract.reference_hint)

        schema = dict(tool.definition.input_schema) or {"type": "object"}
        schema.setdefault("type", "object")
        schema["additionalProperties"] = False
        try:
            jsonschema.validate(params, schema)
        except jsonschema.ValidationError as e:
            raise InvalidToolParams(tool.name, e.message, details={"path": list(e.absolute_path)}) from e

        flt = params.get(PRESET_FILTER_PARAM)
        if tool.contract.preset_driven and flt is not None and not FILTER_PATTERN.match(str(flt)):
            raise InvalidToolParams(tool.name, f"invalid filter '{flt}': use a dotted field path")

    # ─── Stage 2: sensitivity ───────────────────────────────

    def _check_sensitivity(self, tool: RegisteredTool, invocation: ToolInvocation) -> None:
        contract = tool.contract
        raw = [f for f in contract.sensitive_fields if f in invocation.raw_params]
        reference = invocation.reference

        if contract.sensitive and reference is None:
            raise ToolRequiresRegister(tool.name, contract.reference_hint, raw)
        if raw:
            raise ConflictingRawAndRegisterParams(tool.name, raw, reference or contract.reference_hint)

    # ─── Stage 3: resolution ────────────────────────────────

    def _resolve(
        self,
        session: Session,
        tool: RegisteredTool,
        invocation: ToolInvocation,
    ) -> tuple[ToolContext, str]:
        registers = session.registers
        policy = registers.policy
        contract = tool.contract

        missing = [k for k in contract.required_registers if k not in registers]
        if missing:
            raise RegisterNotFound(missing, policy.producers_for(missing))

        ctx = ToolContext(
            session_id=session.id,
            invocation_id=invocation.id,
            registers=registers.view(),
        )
        origin = tool.name

        if invocation.from_register is not None:
            key, path = parse_reference(invocation.from_register)
            if contract.readable_registers is not None and key not in contract.readable_registers:
                raise ForbiddenRegisterRead(
                    tool.name, key, f"readable registers are {', '.join(contract.readable_registers)}"
                )
            entry = registers.get(key)
            if entry is None:
                raise RegisterNotFound([key], policy.producers_for([key]))
            if contract.sensitive and policy.is_generic_writer(entry.origin_tool):
                raise ForbiddenRegisterRead(
                    tool.name, key,
                    f"it was set directly by {entry.origin_tool}; sensitive tools only read tool-produced registers",
                )
            if path is None:
                value = entry.value
            elif registers.has_field(key, path):
                value = registers.get_field(key, path)
            else:
                raise RegisterNotFound([key], field_path=path)
            ctx.register_reference = invocation.from_register
            ctx.register_value = value

        if invocation.preset is not None:
            ctx.request = self._resolver.resolve(
                invocation.preset,
                registers,
                filter_override=invocation.raw_params.get(PRESET_FILTER_PARAM),
            )
            origin = f"preset:{invocation.preset}"
            if invocation.cache_as and ctx.request.result_register is None:
                raise InvalidToolParams(
                    tool.name, f"preset '{invocation.preset}' does not produce a cacheable result"
                )

        if invocation.cache_as:
            # Guard policy is checked before any side effect; values are checked at commit
            targets = [invocation.cache_as] + [
                f"{invocation.cache_as}_{s}" for s in contract.companion_suffixes
            ]
            for key in targets:
                registers.check_write(key, origin)

        return ctx, origin

    # ─── Stage 4: execution ─────────────────────────────────

    async def _execute(self, tool: RegisteredTool, ctx: ToolContext, params: dict[str, Any]) -> ToolOutput:
        async def _call() -> Any:
            if ctx.request is not None:
                if self._executor is None:
                    raise ExecutorFailure(f"preset:{ctx.request.preset}", "no request executor configured")
                response = await self._executor.execute(ctx.request)
                ctx.response = apply_filter(ctx.request, response)
            result = tool.handler(ctx, **params)
            if inspect.isawaitable(result):
                result = await result
            return result

        try:
            result = await asyncio.wait_for(_call(), timeout=self._timeout)
        except TimeoutError as e:
            raise InvocationTimeout(tool.name, self._timeout) from e
        except RegVaultError:
            raise
        except Exception as e:
            logger.exception(
                "Tool handler raised", extra={"session_id": ctx.session_id, "tool_name": tool.name}
            )
            raise ExecutorFailure(tool.name, f"{type(e).__name__}: {e}") from e
        return _as_output(result)

    # ─── Stage 5: caching ───────────────────────────────────

    async def _commit(
        self,
        session: Session,
        tool: RegisteredTool,
        invocation: ToolInvocation,
        params: dict[str, Any],
        output: ToolOutput,
        origin: str,
    ) -> list[str]:
        writes = self._collect_writes(invocation, output)
        await self._hooks.run(HookContext(
            stage=HookStage.BEFORE_COMMIT,
            session_id=session.id,
            tool_name=tool.name,
            params=params,
            register_keys=session.registers.keys(),
            pending_writes=list(writes),
            content=output.content,
        ))
        if not writes:
            return []
        return [e.key for e in session.registers.set_many(writes, origin)]

    def _collect_writes(self, invocation: ToolInvocation, output: ToolOutput) -> dict[str, Any]:
        writes = dict(output.writes)
        if invocation.cache_as:
            if output.value is None:
                logger.warning(
                    "cache_as requested but tool produced no value",
                    extra={"tool_name": invocation.tool_name, "register_key": invocation.cache_as},
                )
            else:
                writes[invocation.cache_as] = output.value
                for suffix, value in output.companions.items():
                    writes[f"{invocation.cache_as}_{suffix}"] = value
        return writes


def _as_output(result: Any) -> ToolOutput:
    if isinstance(result, ToolOutput):
        return result
    if isinstance(result, str):
        return ToolOutput(content=result)
    return ToolOutput(content=json.dumps(result, indent=2, default=str), value=result)
