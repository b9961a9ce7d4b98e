"""
RegVault Gate Hooks

Ordered observer/middleware stages invoked around the ToolGate and the
session lifecycle. Each hook returns a HookDecision:

- CONTINUE: proceed unchanged
- MODIFY:   replace the tool's plain parameters (BEFORE_EXECUTE only)
- ABORT:    stop the invocation with HookAborted

Hooks see key names and plain parameters, never the register store.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel

from regvault.exceptions import HookAborted
from regvault.logging import get_logger

logger = get_logger("regvault.hooks")


class HookStage(str, Enum):
    """Points at which hooks run."""
    SESSION_START = "SESSION_START"
    BEFORE_EXECUTE = "BEFORE_EXECUTE"
    BEFORE_COMMIT = "BEFORE_COMMIT"
    AFTER_COMMIT = "AFTER_COMMIT"
    SESSION_END = "SESSION_END"


class HookAction(str, Enum):
    CONTINUE = "CONTINUE"
    MODIFY = "MODIFY"
    ABORT = "ABORT"


class HookDecision(BaseModel):
    action: HookAction = HookAction.CONTINUE
    params: dict[str, Any] | None = None
    reason: str = ""

    @classmethod
    def proceed(cls) -> HookDecision:
        return cls()

    @classmethod
    def modify(cls, params: dict[str, Any], reason: str = "") -> HookDecision:
        return cls(action=HookAction.MODIFY, params=params, reason=reason)

    @classmethod
    def abort(cls, reason: str) -> HookDecision:
        return cls(action=HookAction.ABORT, reason=reason)


@dataclass
class HookContext:
    """Snapshot handed to each hook."""
    stage: HookStage
    session_id: str
    tool_name: str = ""
    params: dict[str, Any] = field(default_factory=dict)
    register_keys: list[str] = field(default_factory=list)
    pending_writes: list[str] = field(default_factory=list)
    content: str = ""


Hook = Callable[[HookContext], HookDecision | None | Awaitable[HookDecision | None]]


class HookPipeline:
    """Runs registered hooks in registration order per stage."""

    def __init__(self) -> None:
        self._hooks: dict[HookStage, list[Hook]] = {stage: [] for stage in HookStage}

    def register(self, stage: HookStage, hook: Hook) -> None:
        self._hooks[stage].append(hook)

    def hooks_for(self, stage: HookStage) -> list[Hook]:
        return list(self._hooks[stage])

    async def run(self, ctx: HookContext) -> dict[str, Any]:
        """Run the stage's hooks and return the (possibly modified) params.

        Raises HookAborted on the first ABORT. MODIFY outside
        BEFORE_EXECUTE is ignored with a warning.
        """
        params = dict(ctx.params)
        for hook in self._hooks[ctx.stage]:
            ctx.params = dict(params)
            decision = hook(ctx)
            if asyncio.iscoroutine(decision):
                decision = await decision
            if decision is None or decision.action == HookAction.CONTINUE:
                continue
            if decision.action == HookAction.ABORT:
                logger.warning(
                    "Hook aborted invocation: %s",
                    decision.reason,
                    extra={"session_id": ctx.session_id, "tool_name": ctx.tool_name, "stage": ctx.stage.value},
                )
                raise HookAborted(ctx.stage.value, decision.reason or "aborted by hook")
            if ctx.stage != HookStage.BEFORE_EXECUTE:
                logger.warning(
                    "Hook MODIFY ignored outside BEFORE_EXECUTE",
                    extra={"session_id": ctx.session_id, "tool_name": ctx.tool_name, "stage": ctx.stage.value},
                )
                continue
            params = dict(decision.params or {})
        return params
