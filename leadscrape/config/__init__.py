"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository, resolve_credential
from .models import (
    CircuitBreakerConfig,
    ClientMode,
    DirectoryConfig,
    GlobalConfig,
    ProxyPoolConfig,
    RateLimitConfig,
    RetryConfig,
    SourceConfig,
    default_sources,
)

__all__ = [
    "CircuitBreakerConfig",
    "ClientMode",
    "ConfigLocator",
    "ConfigRepository",
    "DirectoryConfig",
    "GlobalConfig",
    "ProxyPoolConfig",
    "RateLimitConfig",
    "RetryConfig",
    "SourceConfig",
    "default_sources",
    "resolve_credential",
]
