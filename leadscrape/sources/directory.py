"""Selector-driven scraper for HTML business directories (scraping mode)."""

from __future__ import annotations

import re
from typing import Any, Iterator
from urllib.parse import quote_plus, urljoin

from selectolax.parser import HTMLParser, Node

from ..config import DirectoryConfig, SourceConfig
from ..engine.registry import ResilienceRegistry
from ..errors import BlockedError, ConfigurationError
from ..records import CandidateRecord, LeadSource, Trade
from .base import IntegrationKit, Page, SourceQuery, build_kit, paginate

_NUMBER = re.compile(r"\d+(?:[.,]\d+)?")


def split_selector(selector: str) -> tuple[str, str]:
    if "::" in selector:
        css, mode = selector.split("::", 1)
        return css.strip(), mode.strip().lower()
    return selector.strip(), "text"


def extract(node: Node, selector: str) -> str | None:
    """Apply a ``css ::text`` / ``css ::attr:name`` / ``css ::html`` selector to ``node``."""

    css, mode = split_selector(selector)
    target = node.css_first(css) if css else node
    if target is None:
        return None
    if mode == "html":
        value = target.html
    elif mode.startswith("attr:"):
        value = target.attributes.get(mode.split(":", 1)[1])
    else:
        value = target.text(separator=" ", strip=True)
    if value is None or not value.strip():
        return None
    return value.strip()


def _to_float(value: str | None) -> float | None:
    match = _NUMBER.search(value or "")
    return float(match.group().replace(",", ".")) if match else None


def _to_int(value: str | None) -> int | None:
    digits = re.sub(r"\D", "", value or "")
    return int(digits) if digits else None


def detect_block(html: str, markers: list[str]) -> str | None:
    lowered = html.lower()
    for marker in markers:
        if marker.lower() in lowered:
            return marker
    return None


def parse_listings(
    html: str,
    directory: DirectoryConfig,
    *,
    page_url: str,
    trade: Trade,
    source: LeadSource,
) -> tuple[list[CandidateRecord], bool]:
    """Return candidates on the page and whether a next-page link exists."""

    tree = HTMLParser(html)
    records: list[CandidateRecord] = []
    for node in tree.css(directory.listing_selector):
        values: dict[str, Any] = {
            name: extract(node, selector) for name, selector in directory.fields.items()
        }
        if not values.get("company_name"):
            continue
        if values.get("source_url"):
            values["source_url"] = urljoin(page_url, values["source_url"])
        if values.get("website") and values["website"].startswith("/"):
            values["website"] = None
        records.append(
            CandidateRecord(
                company_name=values["company_name"],
                trade=trade,
                source=source,
                contact_name=values.get("contact_name"),
                email=values.get("email"),
                phone=values.get("phone"),
                website=values.get("website"),
                address=values.get("address"),
                city=values.get("city"),
                state=values.get("state"),
                zip_code=values.get("zip_code"),
                source_url=values.get("source_url"),
                source_id=values.get("source_id") or values.get("source_url"),
                rating=_to_float(values.get("rating")),
                review_count=_to_int(values.get("review_count")),
            )
        )
    has_next = bool(directory.next_page_selector and tree.css_first(directory.next_page_selector))
    return records, has_next


class DirectoryIntegration:
    """Walk a directory's search result pages through proxies and rotated identities."""

    def __init__(
        self,
        config: SourceConfig,
        registry: ResilienceRegistry,
        kit: IntegrationKit | None = None,
    ) -> None:
        if config.directory is None:
            raise ConfigurationError(
                f"{config.name} has no directory selectors configured",
                config_key=f"sources.{config.name}.directory",
            )
        self.config = config
        self.directory = config.directory
        try:
            self.name = LeadSource.parse(config.name)
        except ValueError:
            self.name = LeadSource.DIRECTORY
        self.kit = kit or build_kit(config, registry)

    def search_terms(self, trade: Trade) -> list[str]:
        return self.config.terms_for(trade) or [trade.value.lower()]

    def page_url(self, term: str, location: str, page: int) -> str:
        return self.directory.search_url.format(
            term=quote_plus(term), location=quote_plus(location), page=page
        )

    def _fetch(self, url: str) -> str:
        response = self.kit.client.get(url)
        marker = detect_block(response.text, self.directory.block_markers)
        if marker:
            self.kit.logger.warning("block_page_detected", url=url, marker=marker)
            raise BlockedError(self.config.name, marker)
        return response.text

    # ------------------------------------------------------------------
    def scrape(self, query: SourceQuery) -> Iterator[CandidateRecord]:
        location = query.location.describe()

        def fetch_page(page: int) -> Page:
            url = self.page_url(query.term, location, page)
            html = self._fetch(url)
            records, has_next = parse_listings(
                html, self.directory, page_url=url, trade=query.trade, source=self.name
            )
            more = has_next if self.directory.next_page_selector else bool(records)
            if not records or not more or page >= self.directory.max_pages:
                return Page(records=records, next_cursor=None)
            return Page(records=records, next_cursor=page + 1)

        yield from paginate(
            self.kit,
            fetch_page,
            first_cursor=1,
            max_results=query.max_results,
            label=f"{query.term} @ {location}",
        )

    def test_connection(self) -> bool:
        try:
            self._fetch(self.page_url("contractor", "New York, NY", 1))
        except Exception as exc:
            self.kit.logger.error("connection_test_failed", error=str(exc))
            return False
        return True

    def close(self) -> None:
        self.kit.close()


__all__ = [
    "DirectoryIntegration",
    "parse_listings",
    "extract",
    "split_selector",
    "detect_block",
]
