"""
RegVault Preset Resolver

Builds outbound requests exclusively from register contents:

1. Look up the PresetDefinition (unknown name → PresetNotFound)
2. Read every required register; collect ALL missing keys
3. Fail closed with PresetRequirementUnmet if any are missing
4. Substitute register values verbatim into the template

Resolution is a pure function of the register snapshot: resolving the
same preset twice against an unchanged store yields identical requests
(same ``ResolvedRequest.fingerprint()``).
"""

from __future__ import annotations

import json
import re
from typing import Any
from urllib.parse import quote

from regvault.core.models import ResolvedRequest
from regvault.exceptions import ExecutorFailure, PresetRequirementUnmet
from regvault.logging import get_logger
from regvault.presets.catalog import PLACEHOLDER, PresetCatalog
from regvault.registers.policy import GuardPolicy
from regvault.registers.store import RegisterStore, RegisterView, lookup_path, path_exists

logger = get_logger("regvault.presets")

FILTER_PATTERN = re.compile(r"^\.?[A-Za-z0-9_\-]+(\.[A-Za-z0-9_\-]+)*$")


def render_value(value: Any) -> str:
    """Render a register value for a URL or query string without altering it."""
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


class PresetResolver:
    """Resolves presets against a session's registers."""

    def __init__(self, catalog: PresetCatalog, policy: GuardPolicy | None = None):
        self._catalog = catalog
        self._policy = policy

    @property
    def catalog(self) -> PresetCatalog:
        return self._catalog

    def resolve(
        self,
        preset_name: str,
        registers: RegisterStore | RegisterView,
        filter_override: str | None = None,
    ) -> ResolvedRequest:
        preset = self._catalog.require(preset_name)

        values: dict[str, Any] = {}
        missing: list[str] = []
        for key in preset.required_registers:
            entry = registers.get(key)
            if entry is None:
                missing.append(key)
            else:
                values[key] = entry.value

        if missing:
            producers = self._policy.producers_for(missing) if self._policy else {}
            logger.warning(
                "Preset requirements unmet",
                extra={"preset": preset_name, "_extra": {"missing": missing}},
            )
            raise PresetRequirementUnmet(preset_name, missing, producers)

        template = preset.request_template
        url = PLACEHOLDER.sub(
            lambda m: quote(render_value(values[m.group(1)]), safe=""),
            template.url_pattern,
        )
        query = {param: render_value(values[key]) for param, key in template.query_params.items()}
        query.update(template.static_params)

        request = ResolvedRequest(
            preset=preset.name,
            method=template.method,
            url=url,
            query=query,
            headers=dict(template.headers),
            result_register=preset.result_register,
            filter=filter_override or preset.default_filter,
        )
        logger.debug(
            "Preset resolved",
            extra={"preset": preset_name, "_extra": {"fingerprint": request.fingerprint()}},
        )
        return request


def apply_filter(request: ResolvedRequest, response: Any) -> Any:
    """Narrow an executor response with the request's declarative filter.

    A response that lacks the declared path is treated as a downstream
    failure: the service did not return the shape the preset promises.
    """
    if not request.filter:
        return response
    if not path_exists(response, request.filter):
        raise ExecutorFailure(
            f"preset:{request.preset}",
            f"response has no field '{request.filter}'",
            details={"filter": request.filter},
        )
    return lookup_path(response, request.filter)
