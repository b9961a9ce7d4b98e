"""
RegVault CLI

Command-line interface for inspecting and serving a vault.

Commands:
    regvault tools                                Agent-facing tool schemas
    regvault presets                              Preset catalog
    regvault policy                               Guard policy table
    regvault resolve PRESET --snapshot FILE       Dry-run a preset against a snapshot
    regvault status                               Show configuration and dependencies
    regvault serve                                Start the API server

Configuration comes from REGVAULT_* environment variables.
"""

from __future__ import annotations

import json
import sys

import click
from pydantic import ValidationError

from regvault import RegVault, __version__
from regvault.config import RegVaultConfig, load_json_file
from regvault.core.models import RegisterSnapshot
from regvault.exceptions import RegVaultError


def _vault() -> RegVault:
    return RegVault(config=RegVaultConfig.from_env())


@click.group()
@click.version_option(version=__version__, prog_name="regvault")
def app() -> None:
    """RegVault: Register-Gated Tool Execution for Crypto Agents"""


@app.command()
@click.option("--json-output", is_flag=True, help="Output as JSON")
def tools(json_output: bool) -> None:
    """List the agent-facing tool schemas."""
    schemas = _vault().tool_schemas()
    if json_output:
        print(json.dumps(schemas, indent=2))
        return
    _print_header("Tools")
    for schema in schemas:
        fields = ", ".join(schema["input_schema"].get("properties", {})) or "-"
        print(f"  {schema['name']:16s} {fields}")


@app.command()
@click.option("--json-output", is_flag=True, help="Output as JSON")
def presets(json_output: bool) -> None:
    """List the preset catalog."""
    catalog = _vault().catalog
    if json_output:
        print(json.dumps(catalog.describe(), indent=2))
        return
    _print_header("Presets")
    for name in catalog.names():
        preset = catalog.require(name)
        print(f"  {name:16s} {preset.request_template.method:5s} {preset.request_template.url_pattern}")
        print(f"  {'':16s} requires: {', '.join(preset.required_registers) or '-'}")
        if preset.default_filter:
            print(f"  {'':16s} filter: {preset.default_filter}")


@app.command()
@click.option("--json-output", is_flag=True, help="Output as JSON")
def policy(json_output: bool) -> None:
    """Show the guard policy."""
    rules = _vault().policy.describe()
    if json_output:
        print(json.dumps(rules, indent=2))
        return
    _print_header("Guard Policy")
    for rule in rules:
        origins = ", ".join(rule["allowed_origins"])
        print(f"  {rule['register_key']:20s} {rule['category']:16s} {rule['value_type']:12s} {origins}")


@app.command()
@click.argument("preset")
@click.option("--snapshot", "snapshot_path", required=True, type=click.Path(exists=True, dir_okay=False),
              help="Register snapshot JSON file")
def resolve(preset: str, snapshot_path: str) -> None:
    """Resolve PRESET against a register snapshot without executing it."""
    try:
        snapshot = RegisterSnapshot.model_validate(load_json_file(snapshot_path))
    except (ValueError, ValidationError) as e:
        print(f"Error: invalid snapshot: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        request = _vault().dry_run(preset, snapshot)
    except RegVaultError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(json.loads(request.canonical_json()), indent=2))
    print(f"fingerprint: {request.fingerprint()}")


@app.command()
def status() -> None:
    """Show configuration and dependency status."""
    _status()


@app.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8000, type=int, help="Port number")
@click.option("--reload", is_flag=True, help="Auto-reload on changes")
def serve(host: str, port: int, reload: bool) -> None:
    """Start the API server."""
    _serve(host, port, reload)


def cli() -> None:
    """Main CLI entry point."""
    app()


def _serve(host: str, port: int, reload: bool) -> None:
    import uvicorn

    _print_header("RegVault API Server")
    print(f"  Binding: {host}:{port}")
    print(f"  Reload: {'enabled' if reload else 'disabled'}")
    print()

    uvicorn.run(
        "regvault.api.server:app",
        host=host,
        port=port,
        reload=reload,
    )


def _status() -> None:
    import importlib
    import os

    _print_header("RegVault Status")
    print(f"  Version: {__version__}")
    print(f"  Python: {sys.version.split()[0]}")

    config = RegVaultConfig.from_env()
    print("\n  Configuration:")
    for name, value in config.model_dump(mode="json").items():
        print(f"    {name:32s} {value}")

    deps = {
        "pydantic": "Models",
        "jsonschema": "Tool schema checks",
        "eth_utils": "EIP-55 checksums",
        "httpx": "Preset requests",
        "fastapi": "API Server",
        "uvicorn": "ASGI server",
    }
    print("\n  Dependencies:")
    for pkg, label in deps.items():
        try:
            mod = importlib.import_module(pkg)
            version = getattr(mod, "__version__", "installed")
            print(f"    {label:24s} {pkg:20s} {version}")
        except ImportError:
            print(f"    {label:24s} {pkg:20s} NOT INSTALLED")

    print("\n  Environment:")
    for var in ["ZEROX_API_KEY"]:
        value = os.environ.get(var)
        if value:
            masked = value[:4] + "..." + value[-4:] if len(value) > 10 else "***"
            print(f"    {var:30s} {masked}")
        else:
            print(f"    {var:30s} NOT SET")


def _print_header(title: str) -> None:
    """Print a formatted header."""
    print(f"\n  {'=' * 60}")
    print(f"  {title}")
    print(f"  {'=' * 60}\n")


if __name__ == "__main__":
    cli()
