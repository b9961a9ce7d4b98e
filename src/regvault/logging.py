"""
RegVault log output.

Every ``regvault.*`` logger writes to stderr through RegVaultFormatter,
as one line per record or as JSON lines. Call sites pass context such
as the session, tool or register key through ``extra``. Register values
never go into a record; only key names, origins and value kinds do.

    logger = get_logger("regvault.gate")
    logger.info("Register written", extra={"session_id": "s-1", "register_key": "sell_token"})
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Record attributes copied into the output; anything else set on a
# record is dropped unless it arrives in the ``_extra`` dict.
STRUCTURED_FIELDS = (
    "session_id",
    "tool_name",
    "register_key",
    "origin_tool",
    "preset",
    "stage",
    "error_code",
    "duration_ms",
)

_HEADER_FIELDS = ("timestamp", "level", "logger", "message", "exception")


class RegVaultFormatter(logging.Formatter):
    """Renders vault records as ``key=value`` lines or as JSON objects."""

    def __init__(self, json_output: bool = False):
        super().__init__()
        self._json_output = json_output

    def _collect(self, record: logging.LogRecord) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        data.update(
            (key, getattr(record, key)) for key in STRUCTURED_FIELDS
            if getattr(record, key, None) is not None
        )
        extra = getattr(record, "_extra", None)
        if isinstance(extra, dict):
            data.update(extra)
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return data

    def format(self, record: logging.LogRecord) -> str:
        data = self._collect(record)
        if self._json_output:
            return json.dumps(data, default=str)

        context = " ".join(f"{k}={v}" for k, v in data.items() if k not in _HEADER_FIELDS)
        line = f"[{data['timestamp']}] {record.levelname:8s} {record.name}: {data['message']}"
        if context:
            line += f" | {context}"
        if "exception" in data:
            line += "\n" + data["exception"]
        return line


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Point the ``regvault`` logger tree at a fresh stderr handler.

    Unknown level names fall back to INFO. Records do not propagate to
    the root logger.
    """
    vault_logger = logging.getLogger("regvault")
    vault_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    vault_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(RegVaultFormatter(json_output=json_output))
    vault_logger.addHandler(handler)
    vault_logger.propagate = False


def get_logger(name: str = "regvault") -> logging.Logger:
    return logging.getLogger(name)


configure_logging()
