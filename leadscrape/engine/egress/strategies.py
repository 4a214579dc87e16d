"""Concrete request strategies: rate limiting, proxy rotation, identity rotation."""

from __future__ import annotations

import httpx
import structlog

from ...config import ClientMode
from ...infra import ProxyPool, UserAgentPool
from ..rate_limiter import TokenBucket
from .chain import RequestChain, RequestContext, RequestDirective, Strategy

logger = structlog.get_logger("leadscrape.egress")


class RateLimitStrategy(Strategy):
    """Block until the source's token bucket admits the request."""

    def __init__(self, bucket: TokenBucket | None) -> None:
        self.bucket = bucket

    def before_request(self, context: RequestContext, directive: RequestDirective) -> None:
        if self.bucket is not None:
            context.waited = self.bucket.acquire()

    def after_success(self, context: RequestContext, response: httpx.Response) -> None:
        return

    def after_failure(self, context: RequestContext, response: httpx.Response | None, error: Exception | None) -> None:
        return


class ProxyStrategy(Strategy):
    """Route scraping traffic through the pool and feed back proxy health."""

    def __init__(self, pool: ProxyPool | None) -> None:
        self.pool = pool

    def before_request(self, context: RequestContext, directive: RequestDirective) -> None:
        context.proxy = None
        if context.mode is not ClientMode.SCRAPING or self.pool is None or not self.pool.has_proxies():
            return
        proxy = self.pool.next()
        if proxy is None:
            logger.debug("proxy_pool_cooling_down", source=context.source)
            return
        directive.proxy = proxy
        context.proxy = proxy

    def after_success(self, context: RequestContext, response: httpx.Response) -> None:
        if self.pool is not None and context.proxy is not None:
            self.pool.mark_success(context.proxy)

    def after_failure(self, context: RequestContext, response: httpx.Response | None, error: Exception | None) -> None:
        if self.pool is not None and context.proxy is not None:
            self.pool.mark_failure(context.proxy)


class UserAgentStrategy(Strategy):
    """Rotate the User-Agent header in scraping mode."""

    def __init__(self, pool: UserAgentPool | None) -> None:
        self.pool = pool

    def before_request(self, context: RequestContext, directive: RequestDirective) -> None:
        if context.mode is not ClientMode.SCRAPING or self.pool is None:
            return
        ua = self.pool.get()
        if ua:
            directive.headers["User-Agent"] = ua

    def after_success(self, context: RequestContext, response: httpx.Response) -> None:
        return

    def after_failure(self, context: RequestContext, response: httpx.Response | None, error: Exception | None) -> None:
        return


def build_chain(
    mode: ClientMode,
    bucket: TokenBucket | None,
    proxy_pool: ProxyPool | None = None,
    ua_pool: UserAgentPool | None = None,
) -> RequestChain:
    """API mode only rate limits; scraping mode also rotates proxy and identity."""

    strategies: list[Strategy] = [RateLimitStrategy(bucket)]
    if mode is ClientMode.SCRAPING:
        strategies.append(ProxyStrategy(proxy_pool))
        strategies.append(UserAgentStrategy(ua_pool))
    return RequestChain(strategies)


__all__ = [
    "RateLimitStrategy",
    "ProxyStrategy",
    "UserAgentStrategy",
    "build_chain",
]
