"""Map configured source names to integration instances."""

from __future__ import annotations

from typing import Any, Callable

import structlog

from ..config import GlobalConfig, SourceConfig
from ..engine.registry import ResilienceRegistry
from ..errors import ConfigurationError
from ..records import LeadSource
from .base import SourceIntegration, build_kit
from .directory import DirectoryIntegration
from .google_places import GooglePlacesIntegration
from .yelp import YelpIntegration

IntegrationFactory = Callable[..., SourceIntegration]

BUILTIN_INTEGRATIONS: dict[LeadSource, IntegrationFactory] = {
    LeadSource.YELP: YelpIntegration,
    LeadSource.GOOGLE_MAPS: GooglePlacesIntegration,
}


class SourceCatalog:
    """Build integrations on demand from the global configuration."""

    def __init__(
        self,
        config: GlobalConfig,
        registry: ResilienceRegistry,
        factories: dict[LeadSource, IntegrationFactory] | None = None,
        logger_factory: Callable[[str], Any] | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.factories = dict(BUILTIN_INTEGRATIONS if factories is None else factories)
        self.logger_factory = logger_factory
        self.logger = structlog.get_logger("leadscrape.catalog")

    def _factory_for(self, source: SourceConfig) -> IntegrationFactory | None:
        if source.directory is not None:
            return DirectoryIntegration
        try:
            return self.factories.get(LeadSource.parse(source.name))
        except ValueError:
            return None

    def available(self) -> list[str]:
        """Names of enabled sources that have an integration."""

        return [
            name
            for name, source in self.config.sources.items()
            if source.enabled and self._factory_for(source) is not None
        ]

    def source_config(self, name: str) -> SourceConfig:
        source = self.config.get_source(name)
        if source is None:
            raise ConfigurationError(f"Unknown source: {name}", config_key=f"sources.{name}")
        return source

    def create(self, name: str) -> SourceIntegration:
        source = self.source_config(name)
        if not source.enabled:
            raise ConfigurationError(
                f"Source {source.name} is disabled", config_key=f"sources.{source.name}.enabled"
            )
        factory = self._factory_for(source)
        if factory is None:
            raise ConfigurationError(
                f"No integration available for {source.name}", config_key=f"sources.{source.name}"
            )
        self.logger.debug("integration_created", source=source.name, mode=source.mode.value)
        if self.logger_factory is None:
            return factory(source, self.registry)
        kit = build_kit(source, self.registry, logger=self.logger_factory(source.name))
        return factory(source, self.registry, kit)


__all__ = ["SourceCatalog", "BUILTIN_INTEGRATIONS", "IntegrationFactory"]
