"""
RegVault Register Store

Session-scoped mapping from register key to validated value with
write-origin metadata. It is the only channel through which sensitive
values travel between tools.

Every write goes through the guard policy and the validator declared
for the key before anything is mutated; multi-key writes are
all-or-nothing. Reads of absent keys return None. The store itself is
not locked: it is only ever reached under its session's lane.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Mapping
from typing import Any

from regvault.core.models import RegisterEntry, RegisterSnapshot, ValueKind
from regvault.exceptions import InvalidKey, RegVaultError
from regvault.logging import get_logger
from regvault.registers.policy import GuardPolicy, GuardRule, default_policy
from regvault.registers.validators import VALUE_KINDS, ValidatorSettings, validate

logger = get_logger("regvault.registers")

KEY_PATTERN = re.compile(r"^[A-Za-z0-9_]{1,64}$")

_MISSING = object()


def parse_reference(reference: str) -> tuple[str, str | None]:
    """Split ``"swap_quote.transaction.to"`` into ``("swap_quote", "transaction.to")``."""
    key, _, path = reference.partition(".")
    return key, (path or None)


def lookup_path(value: Any, path: str) -> Any:
    """Follow a dotted path through dicts and lists.

    Integer segments index into lists; a leading dot is ignored.
    Returns the module-private ``_MISSING`` sentinel when any segment
    does not resolve, so JSON ``null`` stays distinguishable from absence.
    """
    current = value
    for segment in path.lstrip(".").split("."):
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return _MISSING
    return current


def path_exists(value: Any, path: str) -> bool:
    return lookup_path(value, path) is not _MISSING


def check_key(key: Any) -> str:
    if not isinstance(key, str) or not KEY_PATTERN.match(key):
        raise InvalidKey(str(key))
    return key


class RegisterStore:
    """Validated key/value registers for one session."""

    def __init__(
        self,
        policy: GuardPolicy | None = None,
        settings: ValidatorSettings | None = None,
        session_id: str = "",
    ):
        self._policy = policy or default_policy()
        self._settings = settings or ValidatorSettings()
        self._session_id = session_id
        self._entries: dict[str, RegisterEntry] = {}

    @property
    def policy(self) -> GuardPolicy:
        return self._policy

    @property
    def session_id(self) -> str:
        return self._session_id

    def check_write(self, key: str, origin_tool: str) -> GuardRule:
        """Pre-flight: raise if ``origin_tool`` could never write ``key``. Does not mutate."""
        check_key(key)
        return self._policy.check_write(key, origin_tool)

    def _prepare(self, key: str, value: Any, origin_tool: str, written_at=None) -> RegisterEntry:
        rule = self.check_write(key, origin_tool)
        validated = validate(rule.value_type, key, value, self._settings)
        entry = RegisterEntry(
            key=key,
            value=copy.deepcopy(validated),
            kind=VALUE_KINDS[rule.value_type],
            origin_tool=origin_tool,
        )
        if written_at is not None:
            entry = entry.model_copy(update={"written_at": written_at})
        return entry

    def set(self, key: str, value: Any, origin_tool: str) -> RegisterEntry:
        """Validate and write one register (last write wins)."""
        return self.set_many({key: value}, origin_tool)[0]

    def set_many(self, values: Mapping[str, Any], origin_tool: str) -> list[RegisterEntry]:
        """Validate every value first, then commit all of them.

        If any key, policy check or validator fails nothing is written.
        """
        try:
            prepared = [self._prepare(k, v, origin_tool) for k, v in values.items()]
        except RegVaultError as e:
            logger.warning(
                "Register write rejected: %s",
                e.message,
                extra={
                    "session_id": self._session_id,
                    "origin_tool": origin_tool,
                    "error_code": e.code,
                    "register_key": e.details.get("key"),
                },
            )
            raise

        for entry in prepared:
            # Overwrite moves the key to the end of audit order
            self._entries.pop(entry.key, None)
            self._entries[entry.key] = entry
            logger.info(
                "Register written",
                extra={
                    "session_id": self._session_id,
                    "register_key": entry.key,
                    "origin_tool": origin_tool,
                    "_extra": {"kind": entry.kind.value},
                },
            )
        return [e.model_copy(deep=True) for e in prepared]

    def get(self, key: str) -> RegisterEntry | None:
        entry = self._entries.get(key)
        return entry.model_copy(deep=True) if entry is not None else None

    def get_field(self, key: str, field_path: str) -> Any | None:
        """Nested field of a JSON-valued register, or None if absent."""
        entry = self._entries.get(key)
        if entry is None or entry.kind != ValueKind.JSON:
            return None
        found = lookup_path(entry.value, field_path)
        if found is _MISSING:
            return None
        return copy.deepcopy(found)

    def has_field(self, key: str, field_path: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.kind == ValueKind.JSON and path_exists(entry.value, field_path)

    def keys(self) -> list[str]:
        return list(self._entries)

    def entries(self) -> list[RegisterEntry]:
        """All entries in write order."""
        return [e.model_copy(deep=True) for e in self._entries.values()]

    def clear(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        if count:
            logger.info(
                "Registers cleared",
                extra={"session_id": self._session_id, "_extra": {"count": count}},
            )

    def snapshot(self) -> RegisterSnapshot:
        return RegisterSnapshot(session_id=self._session_id, entries=self.entries())

    def restore(self, snapshot: RegisterSnapshot) -> None:
        """Replace the contents with a snapshot, re-validating every entry.

        Each entry's recorded origin must still be allowed by the policy.
        All-or-nothing, like ``set_many``.
        """
        prepared = [
            self._prepare(e.key, e.value, e.origin_tool, written_at=e.written_at)
            for e in snapshot.entries
        ]
        self._entries = {entry.key: entry for entry in prepared}

    def view(self) -> RegisterView:
        return RegisterView(self)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries


class RegisterView:
    """Read-only access handed to tool handlers.

    Tools never write registers directly; their outputs are committed
    by the gate after execution succeeds.
    """

    def __init__(self, store: RegisterStore):
        self._store = store

    def get(self, key: str) -> RegisterEntry | None:
        return self._store.get(key)

    def get_field(self, key: str, field_path: str) -> Any | None:
        return self._store.get_field(key, field_path)

    def keys(self) -> list[str]:
        return self._store.keys()

    def producers_for(self, keys: list[str]) -> dict[str, list[str]]:
        return self._store.policy.producers_for(keys)

    def __contains__(self, key: str) -> bool:
        return key in self._store
