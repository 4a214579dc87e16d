"""HTTP request execution with rate limiting and egress rotation."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from threading import Lock
from typing import Any, Callable, Dict

import httpx
import structlog

from ..config import ClientMode
from ..errors import BlockedError, ConfigurationError, RateLimitError, UpstreamHTTPError
from ..infra import Proxy, ProxyPool, UserAgentPool
from .egress import RequestContext, build_chain
from .rate_limiter import TokenBucket

DEFAULT_RETRY_AFTER_MS = 60_000
DEFAULT_HEADERS = {
    "Accept": "application/json, text/html, */*",
    "Accept-Language": "en-US,en;q=0.9",
}

TransportFactory = Callable[[Proxy | None], httpx.BaseTransport]


def default_transport(proxy: Proxy | None) -> httpx.BaseTransport:
    return httpx.HTTPTransport(proxy=proxy.url if proxy else None)


def parse_retry_after(value: str | None, default_ms: int = DEFAULT_RETRY_AFTER_MS) -> int:
    """Convert a ``Retry-After`` header (seconds or HTTP date) to milliseconds."""

    if not value:
        return default_ms
    value = value.strip()
    try:
        return max(0, int(float(value) * 1000))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default_ms
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    delta = (when - datetime.now(timezone.utc)).total_seconds()
    return max(0, int(delta * 1000))


@dataclass(slots=True)
class ClientRequest:
    """Input for the client."""

    url: str
    method: str = "GET"
    params: dict[str, Any] | None = None
    json: Any = None
    data: dict[str, Any] | None = None
    headers: dict[str, str] | None = None
    timeout: float | None = None


@dataclass(slots=True)
class ClientResponse:
    """Standardised response wrapper."""

    source: str
    url: str
    status_code: int
    text: str
    headers: Dict[str, str]
    proxy: str | None = None
    raw: httpx.Response | None = field(repr=False, default=None)

    def json(self) -> Any:
        try:
            return json.loads(self.text)
        except ValueError as exc:
            raise UpstreamHTTPError(
                self.source,
                self.status_code,
                f"{self.source} returned malformed JSON from {self.url}",
                retryable=False,
            ) from exc


class ResilientClient:
    """Execute requests through the strategy chain and classify failures.

    API mode only waits on the rate limiter. Scraping mode additionally picks
    a proxy per request, reports its health, and rotates the User-Agent.
    """

    def __init__(
        self,
        source: str,
        mode: ClientMode = ClientMode.API,
        *,
        rate_limiter: TokenBucket | None = None,
        proxy_pool: ProxyPool | None = None,
        ua_pool: UserAgentPool | None = None,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        transport_factory: TransportFactory = default_transport,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.source = source
        self.mode = mode
        self.rate_limiter = rate_limiter
        self.proxy_pool = proxy_pool
        self.base_url = base_url
        self.headers = {**DEFAULT_HEADERS, **(headers or {})}
        self.timeout = timeout
        self._transport_factory = transport_factory
        self._chain = build_chain(mode, rate_limiter, proxy_pool, ua_pool)
        self._clients: dict[str | None, httpx.Client] = {}
        self._lock = Lock()
        self.logger = logger or structlog.get_logger("leadscrape.client").bind(source=source)

    def _client_for(self, proxy: Proxy | None) -> httpx.Client:
        key = proxy.url if proxy else None
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                client = httpx.Client(
                    base_url=self.base_url,
                    headers=self.headers,
                    timeout=self.timeout,
                    follow_redirects=True,
                    transport=self._transport_factory(proxy),
                )
                self._clients[key] = client
            return client

    # ------------------------------------------------------------------
    def request(self, request: ClientRequest) -> ClientResponse:
        context = RequestContext(source=self.source, mode=self.mode)
        directive = self._chain.prepare(context)
        headers = dict(request.headers or {})
        headers.update(directive.headers)
        client = self._client_for(directive.proxy)
        try:
            response = client.request(
                request.method,
                request.url,
                params=request.params,
                json=request.json,
                data=request.data,
                headers=headers,
                timeout=request.timeout or directive.timeout or self.timeout,
            )
        except httpx.HTTPError as exc:
            self.logger.warning(
                "request_error",
                url=request.url,
                proxy=context.proxy.url if context.proxy else None,
                error=str(exc),
            )
            self._chain.notify_failure(context, None, exc)
            raise

        if self._is_failure(response):
            self._chain.notify_failure(context, response, None)
        else:
            self._chain.notify_success(context, response)
        self._raise_for_status(response)
        return ClientResponse(
            source=self.source,
            url=str(response.url),
            status_code=response.status_code,
            text=response.text,
            headers=dict(response.headers),
            proxy=context.proxy.url if context.proxy else None,
            raw=response,
        )

    def get(self, url: str, **kwargs: Any) -> ClientResponse:
        return self.request(ClientRequest(url=url, method="GET", **kwargs))

    def post(self, url: str, **kwargs: Any) -> ClientResponse:
        return self.request(ClientRequest(url=url, method="POST", **kwargs))

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        if status == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            self.logger.warning("rate_limited", url=str(response.url), retry_after_ms=retry_after)
            raise RateLimitError(self.source, retry_after)
        if status == 403 and self.mode is ClientMode.SCRAPING:
            self.logger.warning("request_blocked", url=str(response.url), status=status)
            raise BlockedError(self.source, "forbidden")
        if self.mode is ClientMode.API and (
            status in {401, 403} or (status == 400 and "API_KEY_INVALID" in response.text)
        ):
            self.logger.error("credential_rejected", url=str(response.url), status=status)
            raise ConfigurationError(
                f"{self.source} rejected the API key (HTTP {status})",
                config_key=f"sources.{self.source}.api_key",
            )
        snippet = response.text[:200] if response.text else ""
        raise UpstreamHTTPError(
            self.source,
            status,
            f"{self.source} responded with HTTP {status}: {snippet}".rstrip(": "),
        )

    @staticmethod
    def _is_failure(response: httpx.Response) -> bool:
        status_code = response.status_code
        if status_code >= 500:
            return True
        return status_code in {401, 403, 429}

    # ------------------------------------------------------------------
    def close(self) -> None:
        with self._lock:
            for client in self._clients.values():
                client.close()
            self._clients.clear()

    def __enter__(self) -> "ResilientClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def create_api_client(
    source: str,
    rate_limiter: TokenBucket | None,
    **kwargs: Any,
) -> ResilientClient:
    """Rate limited client with no proxy and no identity rotation."""

    return ResilientClient(source, ClientMode.API, rate_limiter=rate_limiter, **kwargs)


def create_scraping_client(
    source: str,
    rate_limiter: TokenBucket | None,
    proxy_pool: ProxyPool | None = None,
    ua_pool: UserAgentPool | None = None,
    **kwargs: Any,
) -> ResilientClient:
    """Rate limited, proxied and identity rotated client."""

    return ResilientClient(
        source,
        ClientMode.SCRAPING,
        rate_limiter=rate_limiter,
        proxy_pool=proxy_pool,
        ua_pool=ua_pool or UserAgentPool.default(),
        **kwargs,
    )


__all__ = [
    "ClientRequest",
    "ClientResponse",
    "ResilientClient",
    "create_api_client",
    "create_scraping_client",
    "parse_retry_after",
    "default_transport",
]
