"""Request strategy chain used by the resilient client."""

from .chain import RequestChain, RequestContext, RequestDirective, Strategy
from .strategies import ProxyStrategy, RateLimitStrategy, UserAgentStrategy, build_chain

__all__ = [
    "RequestChain",
    "RequestContext",
    "RequestDirective",
    "Strategy",
    "ProxyStrategy",
    "RateLimitStrategy",
    "UserAgentStrategy",
    "build_chain",
]
