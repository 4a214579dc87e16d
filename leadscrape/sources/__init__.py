"""Upstream lead providers."""

from .base import (
    DEFAULT_LOCATION,
    IntegrationKit,
    Location,
    Page,
    SourceIntegration,
    SourceQuery,
    build_kit,
    paginate,
)
from .catalog import SourceCatalog
from .directory import DirectoryIntegration
from .google_places import GooglePlacesIntegration
from .yelp import YelpIntegration

__all__ = [
    "DEFAULT_LOCATION",
    "DirectoryIntegration",
    "GooglePlacesIntegration",
    "IntegrationKit",
    "Location",
    "Page",
    "SourceCatalog",
    "SourceIntegration",
    "SourceQuery",
    "YelpIntegration",
    "build_kit",
    "paginate",
]
