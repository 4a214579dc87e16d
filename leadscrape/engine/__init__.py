"""Resilience engine: pacing, breaking, retrying, fetching and deduplicating."""

from .circuit_breaker import CircuitBreaker, CircuitState, CircuitStats
from .client import (
    ClientRequest,
    ClientResponse,
    ResilientClient,
    create_api_client,
    create_scraping_client,
)
from .dedup import DedupAction, DedupDecision, DeduplicationEngine, LeadMatcher
from .rate_limiter import TokenBucket
from .registry import ResilienceRegistry
from .retry import RetryExecutor, is_retryable, with_retry
from .thread_pool import ThreadPoolManager

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "CircuitStats",
    "ClientRequest",
    "ClientResponse",
    "DedupAction",
    "DedupDecision",
    "DeduplicationEngine",
    "LeadMatcher",
    "ResilienceRegistry",
    "ResilientClient",
    "RetryExecutor",
    "ThreadPoolManager",
    "TokenBucket",
    "create_api_client",
    "create_scraping_client",
    "is_retryable",
    "with_retry",
]
