from __future__ import annotations

import pytest
from pydantic import ValidationError

from leadscrape.config import (
    CircuitBreakerConfig,
    ClientMode,
    DirectoryConfig,
    GlobalConfig,
    RateLimitConfig,
    RetryConfig,
    SourceConfig,
)
from leadscrape.records import Trade


def test_global_config_ships_builtin_sources() -> None:
    config = GlobalConfig()
    yelp = config.get_source("yelp")
    places = config.get_source("google-maps")

    assert yelp is not None and places is not None
    assert yelp.api_key_env == "YELP_API_KEY"
    assert yelp.rate_limit == RateLimitConfig(max_requests=5, window_ms=1000)
    assert places.base_url == "https://places.googleapis.com/v1"
    assert config.fuzzy_match_threshold == 0.7


def test_user_overrides_merge_onto_defaults() -> None:
    config = GlobalConfig(
        sources={
            "Yelp": {"rate_limit": {"max_requests": 2}, "search_terms": {"plumbing": ["plumbing"]}},
            "BBB": {
                "mode": "scraping",
                "directory": {
                    "search_url": "https://bbb.example/search?q={term}&l={location}&p={page}",
                    "listing_selector": ".result",
                    "fields": {"company_name": "h3"},
                },
            },
        }
    )
    yelp = config.get_source("Yelp")
    assert yelp.rate_limit.max_requests == 2
    assert yelp.rate_limit.window_ms == 1000
    assert yelp.base_url == "https://api.yelp.com/v3"
    assert yelp.terms_for(Trade.PLUMBING) == ["plumbing"]
    assert yelp.terms_for(Trade.ROOFING) is None

    bbb = config.get_source("bbb")
    assert bbb.mode is ClientMode.SCRAPING
    assert bbb.directory.max_pages == 5


def test_mode_drives_resilience_defaults() -> None:
    api = SourceConfig(name="Yelp")
    scraping = SourceConfig(name="Angi", mode=ClientMode.SCRAPING)

    assert api.circuit_breaker == CircuitBreakerConfig()
    assert api.retry.max_retries == 3
    assert scraping.circuit_breaker.error_threshold_percentage == 30
    assert scraping.circuit_breaker.volume_threshold == 3
    assert scraping.retry.max_retries == 5
    assert scraping.retry.base_delay_ms == 2000


def test_invalid_settings_are_rejected() -> None:
    with pytest.raises(ValidationError):
        RetryConfig(base_delay_ms=5000, max_delay_ms=1000)
    with pytest.raises(ValidationError):
        RateLimitConfig(max_requests=0)
    with pytest.raises(ValidationError):
        DirectoryConfig(search_url="https://x", listing_selector="li", fields={"phone": ".tel"})
    with pytest.raises(ValidationError):
        SourceConfig(
            name="Angi",
            mode=ClientMode.API,
            directory={"search_url": "https://x", "listing_selector": "li", "fields": {"company_name": "h2"}},
        )
    with pytest.raises(ValidationError):
        SourceConfig(name="Yelp", search_terms={"woodworking": ["x"]})


def test_requires_credentials() -> None:
    assert SourceConfig(name="Yelp", api_key_env="YELP_API_KEY").requires_credentials
    assert not SourceConfig(name="Angi", mode=ClientMode.SCRAPING).requires_credentials
