"""Yelp Fusion business search integration (keyed API)."""

from __future__ import annotations

from typing import Any, Iterator

from ..config import SourceConfig, resolve_credential
from ..engine.registry import ResilienceRegistry
from ..records import CandidateRecord, LeadSource, Trade
from .base import IntegrationKit, Page, SourceQuery, build_kit, paginate

TRADE_CATEGORIES: dict[Trade, list[str]] = {
    Trade.HVAC: ["hvac", "heating", "airconditioning", "hvacr"],
    Trade.PLUMBING: ["plumbing", "waterheaterinstallation"],
    Trade.ELECTRICAL: ["electricians", "lighting", "electricalrepair"],
    Trade.ROOFING: ["roofing", "gutterservices"],
    Trade.GENERAL: ["contractors", "homeservices"],
    Trade.UNKNOWN: ["homeservices"],
}

MAX_PAGE_SIZE = 50
MAX_OFFSET = 1000


class YelpIntegration:
    """Search Yelp businesses by category; one query per trade."""

    name = LeadSource.YELP

    def __init__(
        self,
        config: SourceConfig,
        registry: ResilienceRegistry,
        kit: IntegrationKit | None = None,
    ) -> None:
        self.config = config
        self.kit = kit or build_kit(config, registry)
        self.page_size = min(config.page_size, MAX_PAGE_SIZE)
        self.max_offset = min(config.max_page_offset or MAX_OFFSET, MAX_OFFSET)
        self._api_key: str | None = None

    def _auth_headers(self) -> dict[str, str]:
        if self._api_key is None:
            self._api_key = resolve_credential(self.config)
        return {"Authorization": f"Bearer {self._api_key}"}

    def search_terms(self, trade: Trade) -> list[str]:
        categories = self.config.terms_for(trade) or TRADE_CATEGORIES.get(trade, ["homeservices"])
        return [",".join(categories)]

    # ------------------------------------------------------------------
    def scrape(self, query: SourceQuery) -> Iterator[CandidateRecord]:
        headers = self._auth_headers()
        location = query.location.describe()

        def fetch_page(offset: int) -> Page:
            response = self.kit.client.get(
                "/businesses/search",
                params={
                    "location": location,
                    "categories": query.term,
                    "limit": self.page_size,
                    "offset": offset,
                },
                headers=headers,
            )
            payload = response.json()
            businesses = payload.get("businesses") or []
            records = [
                self._to_candidate(business, query.trade)
                for business in businesses
                if not business.get("is_closed")
            ]
            next_offset = offset + len(businesses)
            total = int(payload.get("total") or 0)
            exhausted = not businesses or next_offset >= min(total, self.max_offset)
            return Page(records=records, next_cursor=None if exhausted else next_offset)

        self.kit.logger.info("yelp_search", location=location, trade=query.trade.value)
        yield from paginate(
            self.kit,
            fetch_page,
            first_cursor=0,
            max_results=query.max_results,
            label=f"{query.term} @ {location}",
        )

    def _to_candidate(self, business: dict[str, Any], trade: Trade) -> CandidateRecord:
        location = business.get("location") or {}
        return CandidateRecord(
            company_name=business.get("name") or "",
            trade=trade,
            source=self.name,
            phone=business.get("phone") or None,
            address=location.get("address1") or None,
            city=location.get("city") or None,
            state=location.get("state") or None,
            zip_code=location.get("zip_code") or None,
            source_url=business.get("url") or None,
            source_id=business.get("id") or None,
            rating=business.get("rating"),
            review_count=business.get("review_count"),
        )

    # ------------------------------------------------------------------
    def test_connection(self) -> bool:
        try:
            self.kit.client.get(
                "/autocomplete", params={"text": "plumber"}, headers=self._auth_headers()
            )
        except Exception as exc:
            self.kit.logger.error("connection_test_failed", error=str(exc))
            return False
        self.kit.logger.info("connection_test_ok")
        return True

    def close(self) -> None:
        self.kit.close()


__all__ = ["YelpIntegration", "TRADE_CATEGORIES"]
