"""
RegVault Session Lane Manager

One mutual-exclusion lane per session plus a global lane for
cross-session administration (pruning, snapshots, ending everything).

Invocations for the same session are strictly serialized: ``acquire``
waits (FIFO) until the previous invocation has released the lane, so
invocation N's register writes are visible before N+1 starts. The lane
is released on every exit path; a wait longer than the configured
deadline fails with LaneTimeout and leaves the lane untouched.

Idle sessions are pruned by a background task; pruning a session tears
down its register store.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import AsyncIterator

from regvault.core.models import RegisterSnapshot
from regvault.exceptions import LaneTimeout
from regvault.logging import get_logger
from regvault.registers.policy import GuardPolicy
from regvault.registers.validators import ValidatorSettings
from regvault.sessions.session import Session

logger = get_logger("regvault.lanes")

GLOBAL_LANE = "*global*"


class SessionLaneManager:
    """Owns every live session and serializes access to each one."""

    def __init__(
        self,
        policy: GuardPolicy | None = None,
        settings: ValidatorSettings | None = None,
        acquire_timeout: float = 60.0,
        idle_timeout: float = 1800.0,
        prune_interval: float = 60.0,
    ):
        self._policy = policy
        self._settings = settings
        self._acquire_timeout = acquire_timeout
        self._idle_timeout = idle_timeout
        self._prune_interval = prune_interval
        self._sessions: dict[str, Session] = {}
        self._global = asyncio.Lock()
        self._pruner: asyncio.Task | None = None

    # ─── Lookup ─────────────────────────────────────────────

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(session_id, self._policy, self._settings)
            self._sessions[session_id] = session
            logger.debug("Session created", extra={"session_id": session_id})
        return session

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    # ─── Lanes ──────────────────────────────────────────────

    @contextlib.asynccontextmanager
    async def acquire(self, session_id: str, timeout: float | None = None) -> AsyncIterator[Session]:
        """Exclusive access to a session for the duration of the block.

        Raises LaneTimeout if the lane is not granted within ``timeout``
        (default: the manager's acquire timeout).
        """
        wait = self._acquire_timeout if timeout is None else timeout
        deadline = time.monotonic() + wait
        while True:
            session = self.get_or_create(session_id)
            remaining = deadline - time.monotonic()
            try:
                await asyncio.wait_for(session.lane.acquire(), timeout=max(remaining, 0))
            except TimeoutError as e:
                logger.warning(
                    "Lane wait exceeded %ss", wait, extra={"session_id": session_id, "error_code": "LaneTimeout"}
                )
                raise LaneTimeout(session_id, wait) from e
            if not session.closing:
                break
            # Ended while we waited; retry on the replacement session
            session.lane.release()

        session.touch()
        try:
            yield session
        finally:
            session.touch()
            session.lane.release()
            if session.closing:
                session.teardown()
                logger.info("Deferred session teardown completed", extra={"session_id": session_id})

    @contextlib.asynccontextmanager
    async def acquire_global(self, timeout: float | None = None) -> AsyncIterator[None]:
        """The global lane, for operations declared cross-session."""
        wait = self._acquire_timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(self._global.acquire(), timeout=wait)
        except TimeoutError as e:
            raise LaneTimeout(GLOBAL_LANE, wait) from e
        try:
            yield
        finally:
            self._global.release()

    # ─── Lifecycle ──────────────────────────────────────────

    def end_session(self, session_id: str) -> bool:
        """Remove a session and discard its registers.

        If an invocation currently holds the lane, the session is marked
        closing and torn down when that invocation releases it.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        if session.busy:
            session.closing = True
            logger.info("Session end deferred until in-flight invocation finishes", extra={"session_id": session_id})
        else:
            session.teardown()
            logger.info("Session ended", extra={"session_id": session_id})
        return True

    async def end_all(self) -> list[str]:
        async with self.acquire_global():
            ended = self.session_ids()
            for session_id in ended:
                self.end_session(session_id)
        return ended

    async def prune_idle(self, now: float | None = None) -> list[str]:
        """Tear down sessions idle longer than the idle timeout. Busy sessions are skipped."""
        async with self.acquire_global():
            current = time.monotonic() if now is None else now
            idle = [
                sid for sid, s in self._sessions.items()
                if not s.busy and s.idle_for(current) >= self._idle_timeout
            ]
            for session_id in idle:
                self._sessions.pop(session_id).teardown()
        if idle:
            logger.info("Pruned %d idle sessions", len(idle), extra={"_extra": {"sessions": idle}})
        return idle

    async def snapshot_all(self) -> dict[str, RegisterSnapshot]:
        async with self.acquire_global():
            return {sid: s.registers.snapshot() for sid, s in self._sessions.items()}

    # ─── Pruner ─────────────────────────────────────────────

    @property
    def pruner_running(self) -> bool:
        return self._pruner is not None and not self._pruner.done()

    def start_pruner(self) -> None:
        if self.pruner_running:
            return
        self._pruner = asyncio.create_task(self._prune_loop())
        logger.debug("Idle-session pruner started")

    async def stop_pruner(self) -> None:
        if self._pruner is None:
            return
        self._pruner.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._pruner
        self._pruner = None
        logger.debug("Idle-session pruner stopped")

    async def _prune_loop(self) -> None:
        while True:
            await asyncio.sleep(self._prune_interval)
            try:
                await self.prune_idle()
            except LaneTimeout:
                logger.warning("Prune skipped: global lane busy")
