"""Lead record types flowing from source integrations into storage."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import ValidationError
from .normalize import extract_domain, normalize_address, normalize_company_name, normalize_phone


def _slug(value: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "-" for ch in value).strip("-")


class _LookupEnum(str, Enum):
    """String enum that also resolves from member names and slugs."""

    @classmethod
    def parse(cls, value: "str | _LookupEnum"):
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for member in cls:
            if text in (member.value, member.name) or _slug(text) in (
                _slug(member.value),
                _slug(member.name),
            ):
                return member
        raise ValueError(f"Unknown {cls.__name__}: {value!r}")

    @property
    def slug(self) -> str:
        return _slug(self.value)


class Trade(_LookupEnum):
    HVAC = "HVAC"
    PLUMBING = "Plumbing"
    ELECTRICAL = "Electrical"
    ROOFING = "Roofing"
    GENERAL = "General Contractor"
    UNKNOWN = "Unknown"


class LeadSource(_LookupEnum):
    GOOGLE_MAPS = "Google Maps"
    YELP = "Yelp"
    LINKEDIN = "LinkedIn"
    HOMEADVISOR = "HomeAdvisor"
    ANGI = "Angi"
    THUMBTACK = "Thumbtack"
    BBB = "BBB"
    MANUAL = "Manual"
    DIRECTORY = "Directory"


class LeadStatus(_LookupEnum):
    NEW = "New"
    ENRICHED = "Enriched"
    VERIFIED = "Verified"
    EXPORTED = "Exported"
    INVALID = "Invalid"
    DUPLICATE = "Duplicate"


class MatchReason(str, Enum):
    """Dedup rules, declared in priority order."""

    EXACT_PHONE = "exact_phone"
    EXACT_WEBSITE = "exact_website"
    EXACT_SOURCE_ID = "exact_source_id"
    FUZZY_NAME = "fuzzy_name"

    @property
    def priority(self) -> int:
        return list(MatchReason).index(self)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class CandidateRecord:
    """Facts about a business as reported by one source, before acceptance."""

    company_name: str
    trade: Trade
    source: LeadSource
    scraped_at: datetime = field(default_factory=utcnow)
    contact_name: str | None = None
    email: str | None = None
    phone: str | None = None
    website: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    source_url: str | None = None
    source_id: str | None = None
    rating: float | None = None
    review_count: int | None = None

    def validate(self) -> "CandidateRecord":
        if not self.company_name or not self.company_name.strip():
            raise ValidationError("Candidate has no company name", field="company_name")
        if self.rating is not None and not 0 <= self.rating <= 5:
            raise ValidationError(f"Rating out of range: {self.rating}", field="rating")
        if self.review_count is not None and self.review_count < 0:
            raise ValidationError(
                f"Negative review count: {self.review_count}", field="review_count"
            )
        return self


# Display fields a merge may fill in on a stored record.
MERGEABLE_FIELDS: tuple[str, ...] = (
    "contact_name",
    "email",
    "phone",
    "website",
    "address",
    "city",
    "state",
    "zip_code",
    "source_url",
    "rating",
    "review_count",
    "enriched_at",
    "verified_at",
)


@dataclass(slots=True)
class StoredRecord:
    """An accepted lead with identity, normalized keys and lifecycle status."""

    id: str
    company_name: str
    trade: Trade
    source: LeadSource
    normalized_name: str
    normalized_phone: str | None = None
    normalized_address: str | None = None
    contact_name: str | None = None
    email: str | None = None
    phone: str | None = None
    website: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    source_url: str | None = None
    source_id: str | None = None
    rating: float | None = None
    review_count: int | None = None
    status: LeadStatus = LeadStatus.NEW
    notes: str = ""
    confidence: float = 0.0
    duplicate_of: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    scraped_at: datetime = field(default_factory=utcnow)
    enriched_at: datetime | None = None
    verified_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_candidate(cls, candidate: CandidateRecord, record_id: str) -> "StoredRecord":
        values = {f.name: getattr(candidate, f.name) for f in fields(candidate)}
        return cls(
            id=record_id,
            normalized_name=normalize_company_name(candidate.company_name),
            normalized_phone=normalize_phone(candidate.phone),
            normalized_address=normalize_address(candidate.address),
            **values,
        )

    @property
    def website_domain(self) -> str | None:
        return extract_domain(self.website)

    @property
    def is_active(self) -> bool:
        return self.status is not LeadStatus.DUPLICATE

    def with_changes(self, changes: dict[str, Any]) -> "StoredRecord":
        return replace(self, **changes) if changes else self


@dataclass(frozen=True, slots=True)
class MatchResult:
    matched_record: StoredRecord
    confidence: float
    reason: MatchReason


__all__ = [
    "Trade",
    "LeadSource",
    "LeadStatus",
    "MatchReason",
    "CandidateRecord",
    "StoredRecord",
    "MatchResult",
    "MERGEABLE_FIELDS",
    "utcnow",
]
