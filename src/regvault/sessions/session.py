"""
RegVault Session

A session owns exactly one register store and one serialization lane.
No register is ever visible across sessions.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone

from regvault.registers.policy import GuardPolicy
from regvault.registers.store import RegisterStore
from regvault.registers.validators import ValidatorSettings


class Session:
    """Per-conversation state: registers plus the lane guarding them."""

    def __init__(
        self,
        session_id: str,
        policy: GuardPolicy | None = None,
        settings: ValidatorSettings | None = None,
    ):
        self.id = session_id
        self.registers = RegisterStore(policy, settings, session_id=session_id)
        self.lane = asyncio.Lock()
        self.created_at = datetime.now(timezone.utc)
        self.last_active = time.monotonic()
        self.invocation_count = 0
        self.started = False
        self.closing = False

    @property
    def busy(self) -> bool:
        return self.lane.locked()

    def touch(self) -> None:
        self.last_active = time.monotonic()

    def idle_for(self, now: float | None = None) -> float:
        return (now if now is not None else time.monotonic()) - self.last_active

    def teardown(self) -> None:
        """Discard the registers; the session must not be reused."""
        self.closing = True
        self.registers.clear()
