"""
RegVault Custom Exceptions

Structured exception hierarchy for the register vault. Every error the
agent can trigger is a RegVaultError subclass carrying a stable ``code``
and enough structure in ``details`` for the agent to self-correct.

Exception hierarchy:
    RegVaultError
    +-- InvalidKey                       (malformed register name)
    +-- InvalidValueFormat               (validator rejection)
    +-- ForbiddenRegisterWrite           (guard policy rejection, names the producer)
    +-- ForbiddenRegisterRead            (tool may not read that register)
    +-- RegisterNotFound                 (read of absent register(s))
    +-- PresetNotFound                   (unknown preset name)
    +-- PresetRequirementUnmet           (lists every missing register)
    +-- UnknownTool                      (tool not in the registry)
    +-- InvalidToolParams                (schema check failure)
    +-- ToolRequiresRegister             (sensitive tool called with raw params only)
    +-- ConflictingRawAndRegisterParams  (raw sensitive fields + register reference)
    +-- ExecutorFailure                  (opaque downstream failure)
    +-- InvocationTimeout                (per-invocation deadline exceeded, retryable)
    +-- LaneTimeout                      (session lane wait exceeded, retryable)
    +-- HookAborted                      (a gate hook aborted the invocation)
    +-- SideEffectNotCached              (sensitive tool ran, result commit failed)

``recoverable`` marks errors the agent can fix by calling something
first or by changing its parameters. ``retryable`` marks transient
errors where the same call may succeed later. The vault never retries
on its own.
"""

from __future__ import annotations


class RegVaultError(Exception):
    """Base exception for all register vault errors."""

    code = "RegVaultError"
    recoverable = True
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


def _producer_hint(key: str, producers: list[str]) -> str:
    if not producers:
        return f"'{key}'"
    return f"'{key}' (written by {', '.join(producers)})"


class InvalidKey(RegVaultError):
    """Raised when a register name is not alphanumeric/underscore."""

    code = "InvalidKey"

    def __init__(self, key: str, details: dict | None = None):
        super().__init__(
            f"Invalid register key '{key}': use 1-64 letters, digits or underscores",
            details={"key": key, **(details or {})},
        )
        self.key = key


class InvalidValueFormat(RegVaultError):
    """Raised when a value fails the validator declared for its register."""

    code = "InvalidValueFormat"

    def __init__(self, key: str, value_type: str, reason: str, details: dict | None = None):
        super().__init__(
            f"Invalid {value_type} value for register '{key}': {reason}",
            details={"key": key, "value_type": value_type, "reason": reason, **(details or {})},
        )
        self.key = key
        self.value_type = value_type
        self.reason = reason


class ForbiddenRegisterWrite(RegVaultError):
    """Raised when the guard policy forbids an origin from writing a register.

    The message names the allowed origins so the agent can call the
    correct producer instead of typing the value itself.
    """

    code = "ForbiddenRegisterWrite"

    def __init__(
        self,
        key: str,
        origin_tool: str,
        allowed_origins: list[str],
        details: dict | None = None,
    ):
        producers = [o for o in allowed_origins if not o.startswith("preset:")]
        presets = [o.split(":", 1)[1] for o in allowed_origins if o.startswith("preset:")]
        if producers:
            hint = (
                f"can only be written by {', '.join(producers)} "
                f"(call {producers[0]} with cache_as='{key}')"
            )
        elif presets:
            hint = (
                f"is derived-only and written by preset {', '.join(presets)} "
                f"(call a preset tool with preset='{presets[0]}' and cache_as='{key}')"
            )
        else:
            hint = "cannot be written by any tool"
        super().__init__(
            f"Register '{key}' {hint}; '{origin_tool}' is not allowed to write it",
            details={
                "key": key,
                "origin_tool": origin_tool,
                "allowed_origins": list(allowed_origins),
                **(details or {}),
            },
        )
        self.key = key
        self.origin_tool = origin_tool
        self.allowed_origins = list(allowed_origins)


class ForbiddenRegisterRead(RegVaultError):
    """Raised when a tool references a register it may not consume."""

    code = "ForbiddenRegisterRead"

    def __init__(self, tool_name: str, key: str, reason: str, details: dict | None = None):
        super().__init__(
            f"Tool '{tool_name}' cannot read register '{key}': {reason}",
            details={"tool_name": tool_name, "key": key, "reason": reason, **(details or {})},
        )
        self.tool_name = tool_name
        self.key = key


class RegisterNotFound(RegVaultError):
    """Raised when one or more referenced registers are absent.

    Lists every missing key, with the tools that produce each one.
    """

    code = "RegisterNotFound"

    def __init__(
        self,
        keys: list[str],
        producers: dict[str, list[str]] | None = None,
        field_path: str | None = None,
        details: dict | None = None,
    ):
        producers = producers or {}
        if field_path:
            message = f"Register '{keys[0]}' has no field '{field_path}'"
        else:
            listed = ", ".join(_producer_hint(k, producers.get(k, [])) for k in keys)
            message = f"Register(s) not found: {listed}. Populate them first"
        super().__init__(
            message,
            details={
                "missing": list(keys),
                "producers": {k: producers.get(k, []) for k in keys},
                "field_path": field_path,
                **(details or {}),
            },
        )
        self.keys = list(keys)
        self.field_path = field_path


class PresetNotFound(RegVaultError):
    """Raised when a preset name is not in the catalog."""

    code = "PresetNotFound"

    def __init__(self, name: str, available: list[str], details: dict | None = None):
        super().__init__(
            f"Unknown preset '{name}'. Available presets: {', '.join(available) or 'none'}",
            details={"preset": name, "available": list(available), **(details or {})},
        )
        self.name = name


class PresetRequirementUnmet(RegVaultError):
    """Raised when a preset is resolved with required registers absent."""

    code = "PresetRequirementUnmet"

    def __init__(
        self,
        preset: str,
        missing: list[str],
        producers: dict[str, list[str]] | None = None,
        details: dict | None = None,
    ):
        producers = producers or {}
        listed = ", ".join(_producer_hint(k, producers.get(k, [])) for k in missing)
        super().__init__(
            f"Preset '{preset}' is missing required registers: {listed}",
            details={
                "preset": preset,
                "missing": list(missing),
                "producers": {k: producers.get(k, []) for k in missing},
                **(details or {}),
            },
        )
        self.preset = preset
        self.missing = list(missing)


class UnknownTool(RegVaultError):
    """Raised when the agent invokes a tool that is not registered."""

    code = "UnknownTool"

    def __init__(self, tool_name: str, available: list[str], details: dict | None = None):
        super().__init__(
            f"Unknown tool '{tool_name}'. Available tools: {', '.join(available) or 'none'}",
            details={"tool_name": tool_name, "available": list(available), **(details or {})},
        )
        self.tool_name = tool_name


class InvalidToolParams(RegVaultError):
    """Raised when parameters do not match the tool's declared shape."""

    code = "InvalidToolParams"

    def __init__(self, tool_name: str, message: str, details: dict | None = None):
        super().__init__(
            f"Invalid parameters for tool '{tool_name}': {message}",
            details={"tool_name": tool_name, **(details or {})},
        )
        self.tool_name = tool_name


class ToolRequiresRegister(RegVaultError):
    """Raised when a sensitive tool is invoked without a register/preset reference."""

    code = "ToolRequiresRegister"

    def __init__(
        self,
        tool_name: str,
        reference: str,
        raw_fields: list[str] | None = None,
        details: dict | None = None,
    ):
        message = f"Tool '{tool_name}' is sensitive and must be called with {reference}"
        if raw_fields:
            message += f"; raw parameters {', '.join(sorted(raw_fields))} are not accepted"
        super().__init__(
            message,
            details={
                "tool_name": tool_name,
                "reference": reference,
                "raw_fields": sorted(raw_fields or []),
                **(details or {}),
            },
        )
        self.tool_name = tool_name
        self.raw_fields = sorted(raw_fields or [])


class ConflictingRawAndRegisterParams(RegVaultError):
    """Raised when raw sensitive fields accompany a register/preset reference."""

    code = "ConflictingRawAndRegisterParams"

    def __init__(
        self,
        tool_name: str,
        raw_fields: list[str],
        reference: str,
        details: dict | None = None,
    ):
        super().__init__(
            f"Tool '{tool_name}' got raw parameters {', '.join(sorted(raw_fields))} "
            f"together with {reference}; remove the raw parameters",
            details={
                "tool_name": tool_name,
                "raw_fields": sorted(raw_fields),
                "reference": reference,
                **(details or {}),
            },
        )
        self.tool_name = tool_name
        self.raw_fields = sorted(raw_fields)


class ExecutorFailure(RegVaultError):
    """Raised when the external tool or request executor fails.

    Opaque downstream failure, not caused by the agent's parameters.
    """

    code = "ExecutorFailure"
    recoverable = False

    def __init__(self, source: str, message: str, details: dict | None = None):
        super().__init__(
            f"'{source}' failed: {message}",
            details={"source": source, **(details or {})},
        )
        self.source = source


class InvocationTimeout(RegVaultError):
    """Raised when a tool invocation exceeds its deadline."""

    code = "InvocationTimeout"
    recoverable = False
    retryable = True

    def __init__(self, tool_name: str, timeout: float, details: dict | None = None):
        super().__init__(
            f"Tool '{tool_name}' did not finish within {timeout:g}s",
            details={"tool_name": tool_name, "timeout": timeout, **(details or {})},
        )
        self.tool_name = tool_name
        self.timeout = timeout


class LaneTimeout(RegVaultError):
    """Raised when waiting for a session lane exceeds the deadline."""

    code = "LaneTimeout"
    recoverable = False
    retryable = True

    def __init__(self, session_id: str, timeout: float, details: dict | None = None):
        super().__init__(
            f"Session '{session_id}' is busy: lane not acquired within {timeout:g}s",
            details={"session_id": session_id, "timeout": timeout, **(details or {})},
        )
        self.session_id = session_id
        self.timeout = timeout


class HookAborted(RegVaultError):
    """Raised when a gate hook aborts an invocation."""

    code = "HookAborted"

    def __init__(self, stage: str, reason: str, details: dict | None = None):
        super().__init__(
            f"Invocation aborted at {stage}: {reason}",
            details={"stage": stage, "reason": reason, **(details or {})},
        )
        self.stage = stage
        self.reason = reason


class SideEffectNotCached(RegVaultError):
    """Raised when a sensitive tool ran but its result could not be committed.

    The side effect already happened, so the agent must not repeat the
    call. The tool's own output is kept in the message and in
    ``details["content"]``.
    """

    code = "SideEffectNotCached"
    recoverable = False

    def __init__(self, tool_name: str, cause: RegVaultError, content: str, details: dict | None = None):
        super().__init__(
            f"Tool '{tool_name}' already ran but its result was not cached: {cause.message}. "
            f"Do not call it again. Tool output: {content}",
            details={
                "tool_name": tool_name,
                "cause": cause.code,
                "cause_details": cause.details,
                "content": content,
                **(details or {}),
            },
        )
        self.tool_name = tool_name
        self.cause = cause
        self.content = content
