"""Pydantic models describing the resilience and source configuration."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from ..records import LeadSource, Trade


class ClientMode(str, Enum):
    """How a source is reached: keyed API, or scraping behind rotating egress."""

    API = "api"
    SCRAPING = "scraping"


class RateLimitConfig(BaseModel):
    """Token bucket expressed as ``max_requests`` per ``window_ms``."""

    max_requests: int = Field(default=10, gt=0)
    window_ms: int = Field(default=1000, gt=0)

    @property
    def refill_rate(self) -> float:
        return self.max_requests / (self.window_ms / 1000)


class CircuitBreakerConfig(BaseModel):
    timeout_ms: int | None = Field(default=30000, ge=0)
    error_threshold_percentage: float = Field(default=50, gt=0, le=100)
    reset_timeout_ms: int = Field(default=60000, ge=0)
    volume_threshold: int = Field(default=5, ge=1)
    rolling_window_ms: int = Field(default=10000, gt=0)
    half_open_max_calls: int = Field(default=1, ge=1)

    @classmethod
    def for_mode(cls, mode: ClientMode) -> "CircuitBreakerConfig":
        if mode is ClientMode.SCRAPING:
            return cls(
                timeout_ms=60000,
                error_threshold_percentage=30,
                reset_timeout_ms=120000,
                volume_threshold=3,
            )
        return cls()


class RetryConfig(BaseModel):
    """Exponential backoff policy; delays are milliseconds."""

    max_retries: int = Field(default=3, ge=0)
    base_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=30000, ge=0)
    jitter_percent: float = Field(default=0.2, ge=0, le=1)
    retryable_status_codes: list[int] = Field(
        default_factory=lambda: [408, 429, 500, 502, 503, 504]
    )

    @model_validator(mode="after")
    def _validate_delays(self) -> "RetryConfig":
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        return self

    @classmethod
    def for_mode(cls, mode: ClientMode) -> "RetryConfig":
        if mode is ClientMode.SCRAPING:
            return cls(max_retries=5, base_delay_ms=2000, max_delay_ms=60000, jitter_percent=0.3)
        return cls()


class ProxyPoolConfig(BaseModel):
    """Egress proxies used by scraping-mode clients."""

    enabled: bool = False
    proxies: list[str] = Field(default_factory=list)
    source: str | None = Field(default=None, description="Newline separated proxy file.")
    cooldown_ms: int = Field(default=1000, ge=0)
    max_fail_rate: float = Field(default=0.5, gt=0, le=1)
    min_samples: int = Field(default=5, ge=1)
    auto_remove: bool = True
    shuffle: bool = True


class DirectoryConfig(BaseModel):
    """Selectors for an HTML business directory.

    ``search_url`` is formatted with ``term``, ``location`` and ``page``.
    Field selectors follow the ``css ::text`` / ``css ::attr:name`` convention.
    """

    search_url: str
    listing_selector: str
    fields: dict[str, str] = Field(default_factory=dict)
    next_page_selector: str | None = None
    max_pages: int = Field(default=5, ge=1)
    block_markers: list[str] = Field(
        default_factory=lambda: ["captcha", "unusual traffic", "access denied"]
    )

    @model_validator(mode="after")
    def _validate_fields(self) -> "DirectoryConfig":
        if "company_name" not in self.fields:
            raise ValueError("directory fields must include a company_name selector")
        return self


class SourceConfig(BaseModel):
    """Everything needed to reach one upstream provider."""

    name: str
    enabled: bool = True
    mode: ClientMode = ClientMode.API
    base_url: str = ""
    api_key_env: str | None = None
    api_key: str | None = Field(default=None, repr=False)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    circuit_breaker: CircuitBreakerConfig | None = None
    retry: RetryConfig | None = None
    page_size: int = Field(default=20, gt=0)
    max_page_offset: int | None = Field(default=None, gt=0)
    request_timeout_ms: int = Field(default=30000, gt=0)
    search_terms: dict[str, list[str]] = Field(default_factory=dict)
    directory: DirectoryConfig | None = None

    @field_validator("search_terms", mode="before")
    @classmethod
    def _coerce_trade_keys(cls, value: Any) -> dict[str, list[str]]:
        if not value:
            return {}
        return {Trade.parse(key).value: list(terms) for key, terms in dict(value).items()}

    @model_validator(mode="after")
    def _apply_mode_defaults(self) -> "SourceConfig":
        if self.circuit_breaker is None:
            self.circuit_breaker = CircuitBreakerConfig.for_mode(self.mode)
        if self.retry is None:
            self.retry = RetryConfig.for_mode(self.mode)
        if self.directory is not None and self.mode is not ClientMode.SCRAPING:
            raise ValueError("directory sources must use scraping mode")
        return self

    @property
    def requires_credentials(self) -> bool:
        return bool(self.api_key_env) or self.api_key is not None

    def terms_for(self, trade: Trade) -> list[str] | None:
        return self.search_terms.get(trade.value)


def default_sources() -> dict[str, dict[str, Any]]:
    """Built-in provider settings that user configuration is merged onto."""

    return {
        LeadSource.YELP.value: {
            "name": LeadSource.YELP.value,
            "mode": ClientMode.API.value,
            "base_url": "https://api.yelp.com/v3",
            "api_key_env": "YELP_API_KEY",
            "rate_limit": {"max_requests": 5, "window_ms": 1000},
            "page_size": 50,
            "max_page_offset": 1000,
        },
        LeadSource.GOOGLE_MAPS.value: {
            "name": LeadSource.GOOGLE_MAPS.value,
            "mode": ClientMode.API.value,
            "base_url": "https://places.googleapis.com/v1",
            "api_key_env": "GOOGLE_PLACES_API_KEY",
            "rate_limit": {"max_requests": 10, "window_ms": 1000},
            "page_size": 20,
        },
    }


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _source_key(name: str) -> str:
    try:
        return LeadSource.parse(name).value
    except ValueError:
        return name


class GlobalConfig(BaseModel):
    """Global controls shared across sources."""

    database_path: Path = Field(default=Path("data/leads.db"))
    proxy_pool: ProxyPoolConfig = Field(default_factory=ProxyPoolConfig)
    user_agent_list: list[str] | Path | None = None
    thread_pool_workers: int = Field(default=8, ge=1)
    max_concurrent_sources: int = Field(default=1, ge=1)
    default_max_results_per_source: int = Field(default=100, gt=0)
    fuzzy_match_threshold: float = Field(default=0.7, gt=0, le=1)
    enable_progress_bar: bool = True
    sources: dict[str, SourceConfig] = Field(default_factory=dict, validate_default=True)

    @field_validator("database_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    @field_validator("sources", mode="before")
    @classmethod
    def _merge_default_sources(cls, value: Any) -> dict[str, Any]:
        merged: dict[str, Any] = default_sources()
        for name, payload in dict(value or {}).items():
            key = _source_key(name)
            if isinstance(payload, SourceConfig):
                payload = payload.model_dump(mode="json", exclude_none=True)
            payload = {**dict(payload or {}), "name": key}
            merged[key] = _deep_merge(merged.get(key, {}), payload)
        return merged

    @model_validator(mode="after")
    def _apply_user_agents(self) -> "GlobalConfig":
        if isinstance(self.user_agent_list, Path):
            if not self.user_agent_list.exists():
                raise ValueError(f"UA file not found: {self.user_agent_list}")
            content = self.user_agent_list.read_text(encoding="utf-8").splitlines()
            self.user_agent_list = [line.strip() for line in content if line.strip()]
        return self

    def get_source(self, name: str) -> SourceConfig | None:
        return self.sources.get(_source_key(name))


__all__ = [
    "ClientMode",
    "RateLimitConfig",
    "CircuitBreakerConfig",
    "RetryConfig",
    "ProxyPoolConfig",
    "DirectoryConfig",
    "SourceConfig",
    "GlobalConfig",
    "default_sources",
]
