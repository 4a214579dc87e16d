"""Google Places Text Search integration (keyed API)."""

from __future__ import annotations

from threading import Lock
from typing import Any, Iterator

from ..config import SourceConfig, resolve_credential
from ..engine.registry import ResilienceRegistry
from ..records import CandidateRecord, LeadSource, Trade
from .base import IntegrationKit, Page, SourceQuery, build_kit, paginate

TRADE_SEARCH_TERMS: dict[Trade, list[str]] = {
    Trade.HVAC: [
        "HVAC contractor",
        "heating and cooling",
        "air conditioning repair",
        "furnace repair",
    ],
    Trade.PLUMBING: ["plumber", "plumbing contractor", "plumbing repair", "emergency plumber"],
    Trade.ELECTRICAL: ["electrician", "electrical contractor", "electrical repair"],
    Trade.ROOFING: ["roofing contractor", "roof repair", "roofer"],
    Trade.GENERAL: ["general contractor", "home services"],
    Trade.UNKNOWN: ["contractor"],
}

FIELD_MASK = ",".join(
    [
        "places.id",
        "places.displayName",
        "places.formattedAddress",
        "places.addressComponents",
        "places.nationalPhoneNumber",
        "places.internationalPhoneNumber",
        "places.websiteUri",
        "places.googleMapsUri",
        "places.rating",
        "places.userRatingCount",
        "places.types",
        "places.primaryType",
        "nextPageToken",
    ]
)

MAX_PAGE_SIZE = 20


def parse_address_components(components: list[dict[str, Any]] | None) -> dict[str, str | None]:
    parts: dict[str, str] = {}
    for component in components or []:
        types = component.get("types") or []
        if "street_number" in types:
            parts["street_number"] = component.get("longText", "")
        elif "route" in types:
            parts["route"] = component.get("longText", "")
        elif "locality" in types:
            parts["city"] = component.get("longText", "")
        elif "administrative_area_level_1" in types:
            parts["state"] = component.get("shortText", "")
        elif "postal_code" in types:
            parts["zip_code"] = component.get("longText", "")
    street = parts.get("route")
    if street and parts.get("street_number"):
        street = f"{parts['street_number']} {street}"
    return {
        "street": street or None,
        "city": parts.get("city") or None,
        "state": parts.get("state") or None,
        "zip_code": parts.get("zip_code") or None,
    }


class GooglePlacesIntegration:
    """Text search per trade term, following ``nextPageToken``.

    Places already yielded during the life of this instance are skipped, so
    overlapping terms ("plumber", "plumbing repair") do not repeat results.
    """

    name = LeadSource.GOOGLE_MAPS

    def __init__(
        self,
        config: SourceConfig,
        registry: ResilienceRegistry,
        kit: IntegrationKit | None = None,
    ) -> None:
        self.config = config
        self.kit = kit or build_kit(config, registry)
        self.page_size = min(config.page_size, MAX_PAGE_SIZE)
        self._api_key: str | None = None
        self._seen_ids: set[str] = set()
        self._seen_lock = Lock()

    def _headers(self, field_mask: str = FIELD_MASK) -> dict[str, str]:
        if self._api_key is None:
            self._api_key = resolve_credential(self.config)
        return {"X-Goog-Api-Key": self._api_key, "X-Goog-FieldMask": field_mask}

    def search_terms(self, trade: Trade) -> list[str]:
        return self.config.terms_for(trade) or TRADE_SEARCH_TERMS.get(trade, ["contractor"])

    # ------------------------------------------------------------------
    def scrape(self, query: SourceQuery) -> Iterator[CandidateRecord]:
        headers = self._headers()
        text_query = f"{query.term} in {query.location.describe()}"

        def fetch_page(page_token: str | None) -> Page:
            body: dict[str, Any] = {
                "textQuery": text_query,
                "maxResultCount": self.page_size,
                "languageCode": "en",
                "regionCode": "US",
            }
            if page_token:
                body["pageToken"] = page_token
            payload = self.kit.client.post("/places:searchText", json=body, headers=headers).json()
            places = payload.get("places") or []
            next_token = payload.get("nextPageToken") if places else None
            return Page(records=places, next_cursor=next_token or None)

        self.kit.logger.info("places_search", text_query=text_query)
        yield from paginate(
            self.kit,
            fetch_page,
            max_results=query.max_results,
            label=text_query,
            transform=lambda place: self._to_candidate(place, query.trade),
        )

    def _to_candidate(self, place: dict[str, Any], trade: Trade) -> CandidateRecord | None:
        place_id = place.get("id")
        display_name = (place.get("displayName") or {}).get("text")
        if not display_name:
            self.kit.logger.debug("place_skipped", place_id=place_id, reason="missing display name")
            return None
        with self._seen_lock:
            if place_id and place_id in self._seen_ids:
                return None
            if place_id:
                self._seen_ids.add(place_id)
        address = parse_address_components(place.get("addressComponents"))
        return CandidateRecord(
            company_name=display_name,
            trade=trade,
            source=self.name,
            phone=place.get("nationalPhoneNumber") or place.get("internationalPhoneNumber") or None,
            website=place.get("websiteUri") or None,
            address=address["street"] or place.get("formattedAddress") or None,
            city=address["city"],
            state=address["state"],
            zip_code=address["zip_code"],
            source_url=place.get("googleMapsUri") or None,
            source_id=place_id,
            rating=place.get("rating"),
            review_count=place.get("userRatingCount"),
        )

    # ------------------------------------------------------------------
    def test_connection(self) -> bool:
        try:
            self.kit.client.post(
                "/places:searchText",
                json={"textQuery": "plumber in New York", "maxResultCount": 1},
                headers=self._headers("places.id"),
            )
        except Exception as exc:
            self.kit.logger.error("connection_test_failed", error=str(exc))
            return False
        self.kit.logger.info("connection_test_ok")
        return True

    def close(self) -> None:
        self.kit.close()


__all__ = ["GooglePlacesIntegration", "TRADE_SEARCH_TERMS", "parse_address_components"]
