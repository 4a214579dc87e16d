"""Duplicate detection and record merging for incoming leads."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

import structlog

from ..infra.lead_repository import LeadRepository
from ..normalize import (
    dice_coefficient,
    extract_domain,
    normalize_address,
    normalize_company_name,
    normalize_phone,
)
from ..records import (
    MERGEABLE_FIELDS,
    CandidateRecord,
    LeadStatus,
    MatchReason,
    MatchResult,
    StoredRecord,
)

FUZZY_NAME_THRESHOLD = 0.7
EXACT_MATCH_CONFIDENCE = 1.0


class DedupAction(str, Enum):
    NEW = "new"
    DUPLICATE = "duplicate"
    MERGE = "merge"


@dataclass(slots=True)
class DedupDecision:
    """Outcome for one candidate; ``changes`` is the partial update a merge applies."""

    action: DedupAction
    match: MatchResult | None = None
    changes: dict[str, Any] = field(default_factory=dict)

    @property
    def is_duplicate(self) -> bool:
        return self.action is not DedupAction.NEW


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def merge_fields(existing: StoredRecord, incoming: CandidateRecord | StoredRecord) -> dict[str, Any]:
    """Fields of ``existing`` that ``incoming`` can fill in.

    The stored value wins whenever it is non-empty, so an empty incoming value
    never erases data and a merge without new information yields ``{}``.
    """

    changes: dict[str, Any] = {}
    for name in MERGEABLE_FIELDS:
        current = getattr(existing, name, None)
        offered = getattr(incoming, name, None)
        if _is_empty(current) and not _is_empty(offered):
            changes[name] = offered
    if "phone" in changes:
        changes["normalized_phone"] = normalize_phone(changes["phone"])
    if "address" in changes:
        changes["normalized_address"] = normalize_address(changes["address"])
    return changes


def merge_stored(canonical: StoredRecord, duplicate: StoredRecord) -> tuple[dict[str, Any], dict[str, Any]]:
    """Fold ``duplicate`` into ``canonical``.

    Returns the changes for the canonical record and for the duplicate, which
    is marked ``Duplicate`` and pointed at the canonical id.
    """

    changes = merge_fields(canonical, duplicate)
    merged_from = list(canonical.metadata.get("merged_from", []))
    if duplicate.id not in merged_from:
        merged_from.append(duplicate.id)
        changes["metadata"] = {**canonical.metadata, "merged_from": merged_from}
    duplicate_changes = {"status": LeadStatus.DUPLICATE, "duplicate_of": canonical.id}
    return changes, duplicate_changes


class LeadMatcher:
    """Indexes over a snapshot of stored records for the exact-key rules."""

    def __init__(self, records: Iterable[StoredRecord] = (), fuzzy_threshold: float = FUZZY_NAME_THRESHOLD) -> None:
        self.fuzzy_threshold = fuzzy_threshold
        self._records: list[StoredRecord] = []
        self._by_phone: dict[str, list[StoredRecord]] = {}
        self._by_domain: dict[str, list[StoredRecord]] = {}
        self._by_source_id: dict[tuple[str, str], list[StoredRecord]] = {}
        for record in records:
            self.add(record)

    def add(self, record: StoredRecord) -> None:
        if not record.is_active:
            return
        self._records.append(record)
        if record.normalized_phone:
            self._by_phone.setdefault(record.normalized_phone, []).append(record)
        domain = record.website_domain
        if domain:
            self._by_domain.setdefault(domain, []).append(record)
        if record.source_id:
            key = (record.source.value, record.source_id)
            self._by_source_id.setdefault(key, []).append(record)

    def __len__(self) -> int:
        return len(self._records)

    def matches(self, candidate: CandidateRecord) -> list[MatchResult]:
        """Every rule hit against every indexed record."""

        results: list[MatchResult] = []
        phone = normalize_phone(candidate.phone)
        if phone:
            results.extend(
                MatchResult(record, EXACT_MATCH_CONFIDENCE, MatchReason.EXACT_PHONE)
                for record in self._by_phone.get(phone, [])
            )
        domain = extract_domain(candidate.website)
        if domain:
            results.extend(
                MatchResult(record, EXACT_MATCH_CONFIDENCE, MatchReason.EXACT_WEBSITE)
                for record in self._by_domain.get(domain, [])
            )
        if candidate.source_id:
            key = (candidate.source.value, candidate.source_id)
            results.extend(
                MatchResult(record, EXACT_MATCH_CONFIDENCE, MatchReason.EXACT_SOURCE_ID)
                for record in self._by_source_id.get(key, [])
            )
        name = normalize_company_name(candidate.company_name)
        if name:
            for record in self._records:
                if not record.normalized_name:
                    continue
                similarity = dice_coefficient(name, record.normalized_name)
                if similarity > self.fuzzy_threshold:
                    results.append(MatchResult(record, round(similarity, 4), MatchReason.FUZZY_NAME))
        return results

    def best_match(self, candidate: CandidateRecord) -> MatchResult | None:
        """Highest confidence wins; ties go to the higher-priority rule, then the older record."""

        best: MatchResult | None = None
        for result in self.matches(candidate):
            if best is None or (
                (result.confidence, -result.reason.priority)
                > (best.confidence, -best.reason.priority)
            ):
                best = result
        return best


class DeduplicationEngine:
    """Decide whether a candidate is new, a duplicate, or a duplicate worth merging."""

    def __init__(
        self,
        repository: LeadRepository | None = None,
        *,
        fuzzy_threshold: float = FUZZY_NAME_THRESHOLD,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.repository = repository
        self.fuzzy_threshold = fuzzy_threshold
        self.logger = logger or structlog.get_logger("leadscrape.dedup")

    def find_match(
        self,
        candidate: CandidateRecord,
        existing: Iterable[StoredRecord] | None = None,
    ) -> MatchResult | None:
        if existing is None:
            if self.repository is None:
                return None
            existing = self.repository.find_active_matching(candidate)
        return LeadMatcher(existing, self.fuzzy_threshold).best_match(candidate)

    def decide(
        self,
        candidate: CandidateRecord,
        existing: Iterable[StoredRecord] | None = None,
        *,
        merge: bool = True,
    ) -> DedupDecision:
        match = self.find_match(candidate, existing)
        if match is None:
            return DedupDecision(DedupAction.NEW)
        changes = merge_fields(match.matched_record, candidate) if merge else {}
        self.logger.debug(
            "duplicate_detected",
            company=candidate.company_name,
            matched_id=match.matched_record.id,
            reason=match.reason.value,
            confidence=match.confidence,
            merge_fields=sorted(changes),
        )
        action = DedupAction.MERGE if changes else DedupAction.DUPLICATE
        return DedupDecision(action, match, changes)


__all__ = [
    "DeduplicationEngine",
    "DedupAction",
    "DedupDecision",
    "LeadMatcher",
    "merge_fields",
    "merge_stored",
    "FUZZY_NAME_THRESHOLD",
]
