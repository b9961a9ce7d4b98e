"""
RegVault API Server

FastAPI dispatch layer in front of the vault. Agent loops post tool
calls per session and get structured ToolResults back; gate errors are
returned in the body with HTTP 200 so the agent can self-correct.

Usage:
    uvicorn regvault.api.server:app
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from regvault import RegVault, __version__
from regvault.config import RegVaultConfig
from regvault.core.models import ToolCallRequest, ToolResult


# ─── Request/Response Models ────────────────────────────────

class InvokeRequest(BaseModel):
    tool: str
    params: dict = Field(default_factory=dict)
    id: str | None = None


class StatusResponse(BaseModel):
    version: str = __version__
    sessions: int
    tools: list[str]
    presets: list[str]
    guarded_registers: list[str]
    address_strictness: str


# ─── App ─────────────────────────────────────────────────────

def create_app(vault: RegVault | None = None) -> FastAPI:
    """Build the API around ``vault`` (default: configured from REGVAULT_* env vars)."""
    vault = vault or RegVault(config=RegVaultConfig.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await vault.start()
        yield
        await vault.stop()

    app = FastAPI(
        title="RegVault API",
        description="Register-gated tool execution for crypto agents",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.vault = vault

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ─── REST Endpoints ──────────────────────────────────────

    @app.get("/api/status")
    async def get_status() -> StatusResponse:
        return StatusResponse(**vault.status())

    @app.get("/api/tools")
    async def get_tools() -> dict:
        schemas = vault.tool_schemas()
        return {"tools": schemas, "total": len(schemas)}

    @app.get("/api/presets")
    async def get_presets() -> dict:
        presets = vault.catalog.describe()
        return {"presets": presets, "total": len(presets)}

    @app.post("/api/sessions/{session_id}/invoke")
    async def invoke(session_id: str, body: InvokeRequest) -> ToolResult:
        request = ToolCallRequest(tool=body.tool, params=body.params)
        if body.id:
            request.id = body.id
        return await vault.dispatch(session_id, request)

    @app.get("/api/sessions/{session_id}/registers")
    async def get_registers(session_id: str) -> dict:
        registers = vault.registers(session_id)
        return {"session_id": session_id, "registers": registers, "total": len(registers)}

    @app.delete("/api/sessions/{session_id}")
    async def end_session(session_id: str) -> dict:
        ended = await vault.end_session(session_id)
        if not ended:
            return {"error": "Session not found", "session_id": session_id}
        return {"status": "ended", "session_id": session_id}

    return app


app = create_app()
