"""
RegVault Core Data Models

Shared types used across the vault: register entries, snapshots, the
agent-facing invocation envelope, resolved outbound requests and tool
results. This module must have zero internal dependencies beyond
pydantic and the exception taxonomy.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from regvault.exceptions import RegVaultError

RESERVED_PARAMS = ("cache_as", "from_register", "preset")


# ─── Enums ───────────────────────────────────────────────────

class ValueKind(str, Enum):
    """Tag of the value held by a register."""
    STRING = "STRING"
    INTEGER_STRING = "INTEGER_STRING"
    JSON = "JSON"


# ─── Registers ───────────────────────────────────────────────

class RegisterEntry(BaseModel):
    """A single validated register value with write-origin metadata."""
    model_config = ConfigDict(frozen=True)

    key: str
    value: Any
    kind: ValueKind
    origin_tool: str
    written_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RegisterSnapshot(BaseModel):
    """Serializable copy of one session's registers, in write order."""
    session_id: str
    entries: list[RegisterEntry] = Field(default_factory=list)
    taken_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ─── Invocations ─────────────────────────────────────────────

class ToolCallRequest(BaseModel):
    """The agent-facing envelope: ``{"tool": ..., "params": {...}}``."""
    id: str = Field(default_factory=lambda: f"inv-{uuid.uuid4().hex[:8]}")
    tool: str
    params: dict[str, Any] = Field(default_factory=dict)


class ToolInvocation(BaseModel):
    """A tool call with the reserved gate fields split from the tool payload.

    ``raw_params`` is exactly what the tool itself receives; the reserved
    fields are consumed by the gate and never forwarded.
    """
    id: str = ""
    tool_name: str
    raw_params: dict[str, Any] = Field(default_factory=dict)
    cache_as: str | None = None
    from_register: str | None = None
    preset: str | None = None

    @property
    def reference(self) -> str | None:
        """Human-readable description of the register/preset reference, if any."""
        if self.from_register is not None:
            return f"from_register='{self.from_register}'"
        if self.preset is not None:
            return f"preset='{self.preset}'"
        return None


# ─── Outbound requests ───────────────────────────────────────

class ResolvedRequest(BaseModel):
    """A fully formed outbound request built only from register contents.

    Frozen, so no field can be reassigned once resolved. ``query`` and
    ``headers`` are plain dicts: executors copy them before use and
    never modify them in place.
    """
    model_config = ConfigDict(frozen=True)

    preset: str
    method: str
    url: str
    query: dict[str, str] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    result_register: str | None = None
    filter: str | None = None

    def canonical_json(self) -> str:
        """Stable JSON encoding used for fingerprints and dry-run output."""
        return json.dumps(
            {
                "preset": self.preset,
                "method": self.method,
                "url": self.url,
                "query": list(self.query.items()),
                "headers": list(self.headers.items()),
                "result_register": self.result_register,
                "filter": self.filter,
            },
            separators=(",", ":"),
        )

    def fingerprint(self) -> str:
        return hashlib.sha256(self.canonical_json().encode()).hexdigest()


# ─── Results ─────────────────────────────────────────────────

class ToolResult(BaseModel):
    """What the agent gets back from one invocation.

    On success ``content`` holds only what the tool chose to disclose
    (ordinarily register key names). On failure it holds the structured,
    human-readable error.
    """
    invocation_id: str = ""
    tool_name: str
    content: str = ""
    is_error: bool = False
    error_code: str | None = None
    recoverable: bool | None = None
    retryable: bool | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    registers_written: list[str] = Field(default_factory=list)

    @classmethod
    def from_error(cls, tool_name: str, error: RegVaultError, invocation_id: str = "") -> ToolResult:
        return cls(
            invocation_id=invocation_id,
            tool_name=tool_name,
            content=error.message,
            is_error=True,
            error_code=error.code,
            recoverable=error.recoverable,
            retryable=error.retryable,
            details=error.details,
        )
