"""
RegVault: Register-Gated Tool Execution for Crypto Agents

Sensitive values (token addresses, amounts, quotes, transactions) never
travel through agent-generated text. Tools write them into validated,
session-scoped registers; presets and sensitive tools read them back
from there.

Usage:
    from regvault import RegVault

    vault = RegVault(wallet_provider=lambda: "0x...", tx_submitter=submit)
    await vault.dispatch("session-1", {
        "tool": "token_lookup",
        "params": {"symbol": "USDC", "cache_as": "sell_token"},
    })
    await vault.dispatch("session-1", {
        "tool": "preset_fetch",
        "params": {"preset": "swap_quote", "cache_as": "swap_quote"},
    })
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from regvault.config import AddressStrictness, RegVaultConfig, load_json_file
from regvault.core.models import (
    RegisterEntry,
    RegisterSnapshot,
    ResolvedRequest,
    ToolCallRequest,
    ToolResult,
)
from regvault.exceptions import HookAborted, InvalidToolParams, LaneTimeout, RegVaultError
from regvault.logging import configure_logging, get_logger
from regvault.presets import (
    HttpRequestExecutor,
    PresetCatalog,
    PresetResolver,
    RequestExecutor,
    default_catalog,
)
from regvault.registers import (
    GuardPolicy,
    RegisterStore,
    ValidatorSettings,
    default_policy,
)
from regvault.sessions import Session, SessionLaneManager
from regvault.tools import (
    HookContext,
    HookPipeline,
    HookStage,
    ToolGate,
    ToolRegistry,
)
from regvault.tools.builtin import register_all_builtins
from regvault.tools.builtin.broadcast import TxSubmitter
from regvault.tools.builtin.token_lookup import TokenTable
from regvault.tools.builtin.wallet import WalletProvider

__version__ = "0.3.0"

__all__ = [
    # Main API
    "RegVault",
    "__version__",
    # Config
    "AddressStrictness",
    "RegVaultConfig",
    # Models
    "RegisterEntry",
    "RegisterSnapshot",
    "ResolvedRequest",
    "ToolCallRequest",
    "ToolResult",
    # Registers
    "GuardPolicy",
    "RegisterStore",
    # Presets
    "PresetCatalog",
    "PresetResolver",
    "RequestExecutor",
    # Gate
    "HookPipeline",
    "HookStage",
    "ToolGate",
    "ToolRegistry",
    # Sessions
    "Session",
    "SessionLaneManager",
    # Errors
    "RegVaultError",
]

logger = get_logger("regvault")


def load_policy(path: str) -> GuardPolicy:
    """Guard policy from a JSON file: a list of rules or ``{"rules": [...]}``."""
    data = load_json_file(path)
    if isinstance(data, dict):
        data = data.get("rules", [])
    return GuardPolicy.from_config(data)


class RegVault:
    """Main RegVault entry point: sessions, lanes and the tool gate.

    Pipeline per dispatch:
    1. Validate the ``{tool, params}`` envelope
    2. Acquire the session's lane (LaneTimeout if it stays busy)
    3. Run SESSION_START hooks on the session's first invocation
    4. Pass the invocation through the ToolGate
    5. Release the lane and return the ToolResult
    """

    def __init__(
        self,
        config: RegVaultConfig | None = None,
        registry: ToolRegistry | None = None,
        catalog: PresetCatalog | None = None,
        policy: GuardPolicy | None = None,
        executor: RequestExecutor | None = None,
        hooks: HookPipeline | None = None,
        wallet_provider: WalletProvider | None = None,
        tx_submitter: TxSubmitter | None = None,
        tokens: TokenTable | None = None,
        tools: bool = True,
    ):
        """Initialize RegVault.

        Args:
            config: Deployment settings. If None, defaults are used.
            registry: Tool registry. If None, an empty one is created.
            catalog: Preset catalog. If None, loaded from config.presets_path or the defaults.
            policy: Guard policy. If None, loaded from config.policy_path or the defaults.
            executor: Request executor for presets. If None, an httpx-backed one.
            hooks: Hook pipeline run around the gate and session lifecycle.
            wallet_provider: Callable returning the agent wallet address.
            tx_submitter: Callable ``(tx, network) -> tx_hash`` that signs and broadcasts.
            tokens: Token table for token_lookup. If None, loaded from config.tokens_path or the defaults.
            tools: If True, registers the built-in tools.
        """
        self._config = config or RegVaultConfig()
        if config is not None:
            configure_logging(self._config.log_level, self._config.json_logs)

        self._settings = ValidatorSettings.from_config(self._config)
        self._policy = policy or (
            load_policy(self._config.policy_path) if self._config.policy_path else default_policy()
        )
        self._catalog = catalog or (
            PresetCatalog.from_file(self._config.presets_path) if self._config.presets_path else default_catalog()
        )
        self._check_catalog_against_policy()

        self._registry = registry or ToolRegistry()
        if tools:
            token_table = tokens or (
                TokenTable.from_file(self._config.tokens_path) if self._config.tokens_path else TokenTable()
            )
            register_all_builtins(
                self._registry,
                wallet_provider=wallet_provider,
                tx_submitter=tx_submitter,
                tokens=token_table,
                preset_names=self._catalog.names(),
                settings=self._settings,
            )

        self._hooks = hooks or HookPipeline()
        self._resolver = PresetResolver(self._catalog, self._policy)
        self._gate = ToolGate(
            registry=self._registry,
            resolver=self._resolver,
            executor=executor or HttpRequestExecutor(timeout_seconds=self._config.http_timeout_seconds),
            hooks=self._hooks,
            invocation_timeout=self._config.invocation_timeout_seconds,
        )
        self._lanes = SessionLaneManager(
            policy=self._policy,
            settings=self._settings,
            acquire_timeout=self._config.lane_acquire_timeout_seconds,
            idle_timeout=self._config.session_idle_timeout_seconds,
            prune_interval=self._config.prune_interval_seconds,
        )

    def _check_catalog_against_policy(self) -> None:
        for name in self._catalog.names():
            preset = self._catalog.require(name)
            if preset.result_register is None:
                continue
            rule = self._policy.rule_for(preset.result_register)
            if not rule.allows(f"preset:{name}"):
                logger.warning(
                    "Preset result register is not writable by the preset",
                    extra={"preset": name, "register_key": preset.result_register},
                )

    # ─── Accessors ──────────────────────────────────────────

    @property
    def config(self) -> RegVaultConfig:
        return self._config

    @property
    def policy(self) -> GuardPolicy:
        return self._policy

    @property
    def catalog(self) -> PresetCatalog:
        return self._catalog

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def hooks(self) -> HookPipeline:
        return self._hooks

    @property
    def gate(self) -> ToolGate:
        return self._gate

    @property
    def lanes(self) -> SessionLaneManager:
        return self._lanes

    # ─── Dispatch ───────────────────────────────────────────

    async def dispatch(self, session_id: str, payload: dict[str, Any] | ToolCallRequest) -> ToolResult:
        """Run one agent tool call for a session and return its result.

        Never raises for agent-caused errors: they come back as error
        ToolResults the agent can act on.
        """
        if isinstance(payload, ToolCallRequest):
            request = payload
        else:
            try:
                request = ToolCallRequest.model_validate(payload)
            except ValidationError as e:
                tool_name = str(payload.get("tool", "")) if isinstance(payload, dict) else ""
                error = InvalidToolParams(
                    tool_name or "<missing>",
                    "invocation must be an object {tool: string, params: object}",
                    details={"errors": [err["msg"] for err in e.errors()]},
                )
                return ToolResult.from_error(tool_name, error)

        try:
            async with self._lanes.acquire(session_id) as session:
                if not session.started:
                    try:
                        await self._hooks.run(HookContext(stage=HookStage.SESSION_START, session_id=session_id))
                    except HookAborted as e:
                        return ToolResult.from_error(request.tool, e, invocation_id=request.id)
                    session.started = True
                return await self._gate.invoke(session, request)
        except LaneTimeout as e:
            return ToolResult.from_error(request.tool, e, invocation_id=request.id)

    # ─── Sessions ───────────────────────────────────────────

    async def end_session(self, session_id: str) -> bool:
        """End a session, running SESSION_END hooks first. Returns False if unknown."""
        session = self._lanes.get(session_id)
        if session is None:
            return False
        try:
            await self._hooks.run(HookContext(
                stage=HookStage.SESSION_END,
                session_id=session_id,
                register_keys=session.registers.keys(),
            ))
        except HookAborted as e:
            # A session end cannot be vetoed
            logger.warning("SESSION_END hook abort ignored: %s", e.reason, extra={"session_id": session_id})
        return self._lanes.end_session(session_id)

    def registers(self, session_id: str) -> list[dict[str, Any]]:
        """Key metadata for a session (no values)."""
        session = self._lanes.get(session_id)
        if session is None:
            return []
        return [
            {
                "key": e.key,
                "kind": e.kind.value,
                "origin_tool": e.origin_tool,
                "written_at": e.written_at.isoformat(),
            }
            for e in session.registers.entries()
        ]

    async def snapshot(self, session_id: str) -> RegisterSnapshot | None:
        if session_id not in self._lanes:
            return None
        async with self._lanes.acquire(session_id) as session:
            return session.registers.snapshot()

    async def restore(self, session_id: str, snapshot: RegisterSnapshot) -> None:
        async with self._lanes.acquire(session_id) as session:
            session.registers.restore(snapshot)

    def dry_run(self, preset_name: str, snapshot: RegisterSnapshot) -> ResolvedRequest:
        """Resolve a preset against a snapshot without executing anything."""
        store = RegisterStore(self._policy, self._settings, session_id=snapshot.session_id)
        store.restore(snapshot)
        return self._resolver.resolve(preset_name, store)

    # ─── Introspection ──────────────────────────────────────

    def tool_schemas(self) -> list[dict]:
        return self._registry.get_schemas(preset_names=self._catalog.names())

    def status(self) -> dict[str, Any]:
        return {
            "version": __version__,
            "sessions": len(self._lanes),
            "tools": self._registry.names(),
            "presets": self._catalog.names(),
            "guarded_registers": sorted(self._policy.rules),
            "address_strictness": self._config.address_strictness.value,
        }

    # ─── Lifecycle ──────────────────────────────────────────

    async def start(self) -> None:
        self._lanes.start_pruner()

    async def stop(self) -> None:
        await self._lanes.stop_pruner()
        await self._lanes.end_all()
