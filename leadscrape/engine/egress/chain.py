"""Strategy chain applied around every outbound request."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol

import httpx

from ...config import ClientMode
from ...infra.proxy_pool import Proxy


@dataclass
class RequestDirective:
    """Mutable set of options to apply to an outgoing request."""

    headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None
    proxy: Proxy | None = None


@dataclass
class RequestContext:
    """Shared state for all strategies in the chain for one request."""

    source: str
    mode: ClientMode
    proxy: Proxy | None = None
    waited: float = 0.0


class Strategy(Protocol):
    """Strategy behaviour expected by the chain."""

    def before_request(self, context: RequestContext, directive: RequestDirective) -> None:
        """Mutate directive ahead of an HTTP request."""

    def after_success(self, context: RequestContext, response: httpx.Response) -> None:
        """Observe a successful response."""

    def after_failure(
        self,
        context: RequestContext,
        response: httpx.Response | None,
        error: Exception | None,
    ) -> None:
        """React when a request fails."""


class RequestChain:
    """Compose strategies and expose a simple API for the client."""

    def __init__(self, strategies: Optional[List[Strategy]] = None) -> None:
        self.strategies = strategies or []

    def add_strategy(self, strategy: Strategy) -> None:
        self.strategies.append(strategy)

    # ------------------------------------------------------------------
    def prepare(self, context: RequestContext) -> RequestDirective:
        directive = RequestDirective()
        for strategy in self.strategies:
            strategy.before_request(context, directive)
        return directive

    def notify_success(self, context: RequestContext, response: httpx.Response) -> None:
        for strategy in self.strategies:
            strategy.after_success(context, response)

    def notify_failure(
        self,
        context: RequestContext,
        response: httpx.Response | None,
        error: Exception | None,
    ) -> None:
        for strategy in self.strategies:
            strategy.after_failure(context, response, error)


__all__ = ["RequestChain", "RequestContext", "RequestDirective", "Strategy"]
