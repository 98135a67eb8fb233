"""Pooled, authenticated provider transports.

Replaces per-request client construction with one long-lived
``ProviderClient`` per model id. Each client binds the provider's
endpoint, credential and API version to a shared ``httpx.AsyncClient``
and applies a bounded retry policy underneath the routing core.

Usage:
    pool = ClientPool(config)
    client = pool.get_or_create("openai/gpt-4.1")
    data = await client.post_json("/chat/completions", body)

    await pool.aclose()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from chatrelay.errors import ConfigurationError, UpstreamError, classify_error
from chatrelay.models.catalog import ProviderKind

if TYPE_CHECKING:
    from chatrelay.config import RelayConfig
    from chatrelay.runtime.catalog import ModelCatalog

log = logging.getLogger(__name__)

_RETRYABLE_STATUS: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: initial delay doubling toward a cap."""

    max_retries: int = 3
    initial_delay_ms: int = 300
    max_delay_ms: int = 2000

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (0-based)."""
        delay_ms = min(self.initial_delay_ms * (2**attempt), self.max_delay_ms)
        return delay_ms / 1000


def _error_message(response: httpx.Response) -> str:
    """Best-effort extraction of an upstream error message."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:500] or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
        if data.get("message"):
            return str(data["message"])
    return f"HTTP {response.status_code}"


class ProviderClient:
    """An authenticated transport bound to (endpoint, credential, api version)."""

    def __init__(
        self,
        provider: ProviderKind,
        endpoint: str,
        credential: str,
        *,
        api_version: str | None = None,
        retry: RetryPolicy | None = None,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.provider = provider
        self.endpoint = endpoint.rstrip("/")
        self.api_version = api_version
        self.retry = retry or RetryPolicy()
        self.timeout_seconds = timeout_seconds
        self._credential = credential
        self._requests = 0
        self._closed = False
        # Groq goes through litellm, which owns its own connections.
        self._http: httpx.AsyncClient | None = None
        if provider is ProviderKind.GROQ:
            return

        headers = {"Content-Type": "application/json"}
        params: dict[str, str] = {}
        if provider is ProviderKind.GEMINI:
            params["key"] = credential
        elif provider is ProviderKind.HOSTED:
            headers["Authorization"] = f"Bearer {credential}"
            if api_version:
                params["api-version"] = api_version

        self._http = httpx.AsyncClient(
            base_url=self.endpoint,
            headers=headers,
            params=params,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    @property
    def credential(self) -> str:
        return self._credential

    @property
    def closed(self) -> bool:
        if self._http is None:
            return self._closed
        return self._http.is_closed

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError(f"{self.provider.value} client has no HTTP transport")
        return self._http

    def sdk_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for SDK-based providers sharing this binding."""
        kwargs: dict[str, Any] = {
            "api_key": self._credential,
            "num_retries": self.retry.max_retries,
            "timeout": self.timeout_seconds,
        }
        if self.endpoint:
            kwargs["api_base"] = self.endpoint
        return kwargs

    async def post_json(
        self,
        path: str,
        body: dict[str, Any],
    ) -> dict[str, Any]:
        """POST a JSON body and decode the JSON reply, retrying transient failures."""
        attempts = 1 + self.retry.max_retries
        last_error: UpstreamError | None = None

        for attempt in range(attempts):
            self._requests += 1
            try:
                response = await self._client().post(path, json=body)
            except httpx.TransportError as exc:
                last_error = classify_error(exc, provider=self.provider.value)  # type: ignore[assignment]
            else:
                if response.is_success:
                    try:
                        data = response.json()
                    except ValueError as exc:
                        raise UpstreamError(
                            "Upstream returned a non-JSON payload",
                            provider=self.provider.value,
                            status_code=response.status_code,
                        ) from exc
                    if not isinstance(data, dict):
                        raise UpstreamError(
                            "Upstream returned an unexpected payload",
                            provider=self.provider.value,
                            status_code=response.status_code,
                        )
                    return data

                last_error = UpstreamError(
                    _error_message(response),
                    provider=self.provider.value,
                    status_code=response.status_code,
                )
                if response.status_code not in _RETRYABLE_STATUS:
                    raise last_error

            if attempt < self.retry.max_retries:
                delay = self.retry.delay_for(attempt)
                log.warning(
                    "client.retry provider=%s path=%s attempt=%d/%d error=%s delay=%.2fs",
                    self.provider.value,
                    path,
                    attempt + 1,
                    attempts,
                    last_error,
                    delay,
                )
                await asyncio.sleep(delay)

        assert last_error is not None
        raise last_error

    @asynccontextmanager
    async def stream_lines(
        self,
        path: str,
        body: dict[str, Any],
    ) -> AsyncIterator[AsyncIterator[str]]:
        """Open a streamed POST and yield an iterator over its text lines.

        Non-2xx replies are read in full and raised as UpstreamError before
        any line is yielded. Streams are not retried.
        """
        self._requests += 1
        try:
            async with self._client().stream("POST", path, json=body) as response:
                if not response.is_success:
                    await response.aread()
                    raise UpstreamError(
                        _error_message(response),
                        provider=self.provider.value,
                        status_code=response.status_code,
                    )
                yield response.aiter_lines()
        except httpx.TransportError as exc:
            raise classify_error(exc, provider=self.provider.value) from exc

    async def aclose(self) -> None:
        self._closed = True
        if self._http is not None:
            await self._http.aclose()

    def stats(self) -> dict[str, Any]:
        return {
            "provider": self.provider.value,
            "endpoint": self.endpoint,
            "requests": self._requests,
            "closed": self.closed,
        }


class ClientPool:
    """One ProviderClient per model id, created lazily and kept for the process.

    Construction is synchronous and completes before the caller's next
    await, so concurrent requests for the same model cannot race to
    create duplicate clients on a single event loop.
    """

    def __init__(
        self,
        config: RelayConfig,
        catalog: ModelCatalog,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._catalog = catalog
        self._transport = transport
        self._clients: dict[str, ProviderClient] = {}
        self._total_created = 0
        self._retry = RetryPolicy(
            max_retries=config.transport.max_retries,
            initial_delay_ms=config.transport.retry_delay_ms,
            max_delay_ms=config.transport.max_retry_delay_ms,
        )

    def _binding(self, kind: ProviderKind) -> tuple[str, str, str | None, str]:
        """(endpoint, credential, api_version, credential env name) for a provider."""
        if kind is ProviderKind.GEMINI:
            cfg = self._config.gemini
            return cfg.api_url, cfg.api_key, None, "GEMINI_API_KEY"
        if kind is ProviderKind.GROQ:
            cfg_groq = self._config.groq
            return cfg_groq.base_url or "", cfg_groq.api_key, None, "GROQ_API_KEY"
        cfg_hosted = self._config.hosted
        return (
            cfg_hosted.endpoint,
            cfg_hosted.token,
            cfg_hosted.api_version,
            "GITHUB_TOKEN",
        )

    def get_or_create(self, model_id: str) -> ProviderClient:
        """Return the pooled client for ``model_id``, creating it on first use.

        Raises ConfigurationError when the provider family's credential is
        not configured; nothing is cached in that case.
        """
        client = self._clients.get(model_id)
        if client is not None and not client.closed:
            return client

        kind = self._catalog.provider_for(model_id)
        endpoint, credential, api_version, env_name = self._binding(kind)
        if not credential:
            raise ConfigurationError(
                f"No credential configured for provider '{kind.value}'. "
                f"Set the {env_name} environment variable.",
                context={"provider": kind.value, "model_id": model_id},
            )

        client = ProviderClient(
            kind,
            endpoint,
            credential,
            api_version=api_version,
            retry=self._retry,
            timeout_seconds=self._config.transport.timeout_seconds,
            transport=self._transport,
        )
        self._clients[model_id] = client
        self._total_created += 1
        log.debug(
            "client_pool.created model=%s provider=%s pool_size=%d",
            model_id,
            kind.value,
            len(self._clients),
        )
        return client

    def prewarm(self, model_ids: Iterable[str]) -> list[str]:
        """Create clients ahead of time, skipping models without credentials."""
        warmed: list[str] = []
        for model_id in model_ids:
            try:
                self.get_or_create(model_id)
            except ConfigurationError as exc:
                log.warning("client_pool.prewarm_skipped model=%s reason=%s", model_id, exc)
                continue
            warmed.append(model_id)
        return warmed

    async def aclose(self) -> None:
        """Close every pooled client."""
        for client in self._clients.values():
            await client.aclose()
        closed = len(self._clients)
        self._clients.clear()
        log.debug("client_pool.closed clients=%d", closed)

    def stats(self) -> dict[str, Any]:
        return {
            "clients": {
                model_id: client.stats() for model_id, client in self._clients.items()
            },
            "pool_size": len(self._clients),
            "total_created": self._total_created,
        }

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._clients

    def __len__(self) -> int:
        return len(self._clients)
