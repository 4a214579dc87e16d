from __future__ import annotations

import httpx

from leadscrape.config import ClientMode
from leadscrape.engine.egress import (
    ProxyStrategy,
    RateLimitStrategy,
    RequestContext,
    RequestDirective,
    UserAgentStrategy,
    build_chain,
)
from leadscrape.engine.rate_limiter import TokenBucket
from leadscrape.infra import ProxyPool, UserAgentPool


def test_api_chain_only_rate_limits(clock) -> None:
    bucket = TokenBucket(1, 1, clock=clock, sleep=clock.sleep)
    chain = build_chain(ClientMode.API, bucket, ProxyPool(["http://p1"]), UserAgentPool(["UA"]))
    assert [type(s) for s in chain.strategies] == [RateLimitStrategy]

    context = RequestContext(source="Yelp", mode=ClientMode.API)
    chain.prepare(context)
    directive = chain.prepare(context)

    assert directive.proxy is None
    assert "User-Agent" not in directive.headers
    assert context.waited > 0


def test_scraping_chain_sets_proxy_and_user_agent(clock) -> None:
    pool = ProxyPool(["http://p1"], cooldown_ms=0, clock=clock)
    chain = build_chain(ClientMode.SCRAPING, None, pool, UserAgentPool(["UA-1"]))
    assert [type(s) for s in chain.strategies] == [RateLimitStrategy, ProxyStrategy, UserAgentStrategy]

    context = RequestContext(source="BBB", mode=ClientMode.SCRAPING)
    directive = chain.prepare(context)
    assert directive.proxy is context.proxy
    assert directive.proxy.url == "http://p1"
    assert directive.headers["User-Agent"] == "UA-1"

    chain.notify_success(context, httpx.Response(200))
    chain.notify_failure(context, httpx.Response(503), None)
    assert (context.proxy.success_count, context.proxy.fail_count) == (1, 1)


def test_proxy_strategy_goes_direct_when_pool_is_cooling_down(clock) -> None:
    pool = ProxyPool(["http://p1"], cooldown_ms=5000, clock=clock)
    strategy = ProxyStrategy(pool)
    context = RequestContext(source="BBB", mode=ClientMode.SCRAPING)

    strategy.before_request(context, RequestDirective())
    assert context.proxy is not None

    second = RequestDirective()
    strategy.before_request(context, second)
    assert second.proxy is None and context.proxy is None
