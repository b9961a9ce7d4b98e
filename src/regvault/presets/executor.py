"""
RegVault Request Executors

The vault never opens sockets itself: a resolved preset request is
handed to a RequestExecutor. Integrators may supply their own;
HttpRequestExecutor is the default adapter built on httpx.

Secrets (API keys) are attached per host from environment variables at
request time, so they never pass through registers or the agent.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import urlparse

import httpx

from regvault.core.models import ResolvedRequest
from regvault.exceptions import ExecutorFailure
from regvault.logging import get_logger

logger = get_logger("regvault.executor")

DEFAULT_SECRET_HEADERS: dict[str, dict[str, str]] = {
    "api.0x.org": {"0x-api-key": "ZEROX_API_KEY"},
}

_MAX_ERROR_BODY = 500


class RequestExecutor(ABC):
    """Performs the real network call for a fully resolved request."""

    @abstractmethod
    async def execute(self, request: ResolvedRequest) -> Any:
        """Return the decoded JSON response or raise ExecutorFailure."""


class HttpRequestExecutor(RequestExecutor):
    """httpx-backed executor for JSON HTTP APIs.

    GET requests carry the resolved parameters as the query string;
    POST requests send them as a JSON body.
    """

    def __init__(
        self,
        timeout_seconds: float = 15.0,
        secret_headers: dict[str, dict[str, str]] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        user_agent: str = "regvault/0.3",
    ):
        """Initialize the executor.

        Args:
            timeout_seconds: Per-request timeout.
            secret_headers: host -> {header name: environment variable name}.
            transport: Optional httpx transport (tests use httpx.MockTransport).
            user_agent: User-Agent header sent with every request.
        """
        self._timeout = timeout_seconds
        self._secret_headers = DEFAULT_SECRET_HEADERS if secret_headers is None else secret_headers
        self._transport = transport
        self._user_agent = user_agent

    def _headers_for(self, request: ResolvedRequest) -> dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": self._user_agent, **request.headers}
        host = urlparse(request.url).hostname or ""
        for header, env_var in self._secret_headers.get(host, {}).items():
            secret = os.environ.get(env_var)
            if secret:
                headers[header] = secret
            else:
                logger.warning(
                    "Secret for outbound request not configured",
                    extra={"preset": request.preset, "_extra": {"env_var": env_var, "host": host}},
                )
        return headers

    async def execute(self, request: ResolvedRequest) -> Any:
        source = f"preset:{request.preset}"
        kwargs: dict[str, Any] = {"headers": self._headers_for(request)}
        if request.method == "GET":
            kwargs["params"] = dict(request.query)
        else:
            kwargs["json"] = dict(request.query)

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(request.method, request.url, **kwargs)
        except httpx.TimeoutException as e:
            raise ExecutorFailure(source, f"request timed out after {self._timeout:g}s") from e
        except httpx.HTTPError as e:
            raise ExecutorFailure(source, f"request failed: {type(e).__name__}: {e}") from e

        if response.is_error:
            raise ExecutorFailure(
                source,
                f"HTTP {response.status_code}",
                details={"status_code": response.status_code, "body": response.text[:_MAX_ERROR_BODY]},
            )
        try:
            return response.json()
        except ValueError as e:
            raise ExecutorFailure(source, "response is not valid JSON") from e
