"""
RegVault Presets

Named request templates resolved purely from register contents:

    PresetCatalog (static) → PresetResolver → ResolvedRequest → RequestExecutor
"""

from regvault.presets.catalog import (
    PresetCatalog,
    PresetDefinition,
    RequestTemplate,
    default_catalog,
)
from regvault.presets.executor import HttpRequestExecutor, RequestExecutor
from regvault.presets.resolver import PresetResolver, apply_filter

__all__ = [
    "HttpRequestExecutor",
    "PresetCatalog",
    "PresetDefinition",
    "PresetResolver",
    "RequestExecutor",
    "RequestTemplate",
    "apply_filter",
    "default_catalog",
]
