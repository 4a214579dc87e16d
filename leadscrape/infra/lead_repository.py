"""Lead storage: the repository contract plus SQLite and in-memory backends."""

from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import fields, replace
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Protocol

from ..errors import StorageError
from ..normalize import (
    extract_domain,
    normalize_address,
    normalize_company_name,
    normalize_phone,
)
from ..records import CandidateRecord, LeadSource, LeadStatus, StoredRecord, Trade, utcnow
from .storage import SQLiteManager

RECORD_FIELDS = tuple(f.name for f in fields(StoredRecord))
_DATETIME_FIELDS = {"scraped_at", "enriched_at", "verified_at", "created_at", "updated_at"}
_IMMUTABLE_FIELDS = {"id", "created_at"}


class LeadRepository(Protocol):
    """Storage collaborator consulted by deduplication and the coordinator."""

    def find_active_matching(self, candidate: CandidateRecord) -> list[StoredRecord]:
        """Active (non-duplicate) records that may match ``candidate``."""

    def create(self, candidate: CandidateRecord) -> StoredRecord:
        ...

    def update(self, record_id: str, changes: dict[str, Any]) -> bool:
        ...

    def get(self, record_id: str) -> StoredRecord | None:
        ...

    def list_active(self) -> list[StoredRecord]:
        ...

    def count_by_status(self) -> dict[str, int]:
        ...


def _new_id() -> str:
    return uuid.uuid4().hex


def _renormalize(changes: dict[str, Any]) -> dict[str, Any]:
    """Keep normalized keys consistent with the display fields being changed."""

    derived = dict(changes)
    if "company_name" in changes:
        derived["normalized_name"] = normalize_company_name(changes["company_name"])
    if "phone" in changes:
        derived["normalized_phone"] = normalize_phone(changes["phone"])
    if "address" in changes:
        derived["normalized_address"] = normalize_address(changes["address"])
    return derived


def _check_changes(changes: dict[str, Any]) -> None:
    unknown = set(changes) - set(RECORD_FIELDS)
    if unknown:
        raise StorageError(f"Unknown lead fields: {sorted(unknown)}", operation="update")
    frozen = set(changes) & _IMMUTABLE_FIELDS
    if frozen:
        raise StorageError(f"Lead fields cannot change: {sorted(frozen)}", operation="update")


# ----------------------------------------------------------------------
# In-memory backend
# ----------------------------------------------------------------------
class InMemoryLeadRepository:
    """Dictionary backed repository; returns every active record as a match candidate."""

    def __init__(self, id_factory: Callable[[], str] = _new_id) -> None:
        self._records: dict[str, StoredRecord] = {}
        self._lock = Lock()
        self._id_factory = id_factory

    def find_active_matching(self, candidate: CandidateRecord) -> list[StoredRecord]:
        with self._lock:
            return [record for record in self._records.values() if record.is_active]

    def create(self, candidate: CandidateRecord) -> StoredRecord:
        record = StoredRecord.from_candidate(candidate, self._id_factory())
        with self._lock:
            self._records[record.id] = record
        return record

    def update(self, record_id: str, changes: dict[str, Any]) -> bool:
        _check_changes(changes)
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                return False
            self._records[record_id] = replace(
                record, **_renormalize(changes), updated_at=utcnow()
            )
            return True

    def get(self, record_id: str) -> StoredRecord | None:
        with self._lock:
            return self._records.get(record_id)

    def list_active(self) -> list[StoredRecord]:
        with self._lock:
            return [record for record in self._records.values() if record.is_active]

    def count_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        with self._lock:
            for record in self._records.values():
                counts[record.status.value] = counts.get(record.status.value, 0) + 1
        return counts

    def __len__(self) -> int:
        return len(self._records)


# ----------------------------------------------------------------------
# SQLite backend
# ----------------------------------------------------------------------
def _to_column(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in _DATETIME_FIELDS:
        return value.isoformat()
    if name == "metadata":
        return json.dumps(value, ensure_ascii=False, default=str)
    if isinstance(value, (Trade, LeadSource, LeadStatus)):
        return value.value
    return value


def _from_row(row: sqlite3.Row) -> StoredRecord:
    values: dict[str, Any] = {}
    for name in RECORD_FIELDS:
        raw = row[name]
        if raw is not None and name in _DATETIME_FIELDS:
            raw = datetime.fromisoformat(raw)
        values[name] = raw
    values["trade"] = Trade.parse(values["trade"])
    values["source"] = LeadSource.parse(values["source"])
    values["status"] = LeadStatus.parse(values["status"])
    values["metadata"] = json.loads(values["metadata"] or "{}")
    values["notes"] = values["notes"] or ""
    return StoredRecord(**values)


class SQLiteLeadRepository:
    """SQLite backed repository with indexed lookups on the dedup keys.

    A named candidate is compared against every active record; an unnamed
    one only against the phone, domain and source indexes.
    """

    def __init__(
        self,
        manager: SQLiteManager,
        path: Path,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self.manager = manager
        self.path = path
        self._id_factory = id_factory
        self._lock = Lock()

    @property
    def conn(self) -> sqlite3.Connection:
        return self.manager.connect(self.path)

    def _query(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        try:
            with self._lock:
                return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Lead query failed: {exc}", operation="query") from exc

    def find_active_matching(self, candidate: CandidateRecord) -> list[StoredRecord]:
        # The fuzzy rule can match any active name.
        if normalize_company_name(candidate.company_name):
            return self.list_active()
        clauses: list[str] = []
        params: list[Any] = []
        phone = normalize_phone(candidate.phone)
        if phone:
            clauses.append("normalized_phone = ?")
            params.append(phone)
        domain = extract_domain(candidate.website)
        if domain:
            clauses.append("website_domain = ?")
            params.append(domain)
        if candidate.source_id:
            clauses.append("(source = ? AND source_id = ?)")
            params.extend([candidate.source.value, candidate.source_id])
        if not clauses:
            return []
        sql = (
            "SELECT * FROM leads WHERE status != ? AND ("
            + " OR ".join(clauses)
            + ") ORDER BY created_at, rowid"
        )
        rows = self._query(sql, (LeadStatus.DUPLICATE.value, *params))
        return [_from_row(row) for row in rows]

    def create(self, candidate: CandidateRecord) -> StoredRecord:
        record = StoredRecord.from_candidate(candidate, self._id_factory())
        columns = list(RECORD_FIELDS) + ["website_domain"]
        values = [_to_column(name, getattr(record, name)) for name in RECORD_FIELDS]
        values.append(record.website_domain)
        sql = (
            f"INSERT INTO leads ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        try:
            with self._lock:
                self.conn.execute(sql, values)
                self.conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"Lead insert failed: {exc}", operation="create") from exc
        return record

    def update(self, record_id: str, changes: dict[str, Any]) -> bool:
        _check_changes(changes)
        if not changes:
            return self.get(record_id) is not None
        payload = _renormalize(changes)
        payload["updated_at"] = utcnow()
        assignments = {name: _to_column(name, value) for name, value in payload.items()}
        if "website" in payload:
            assignments["website_domain"] = extract_domain(payload["website"])
        sql = (
            "UPDATE leads SET "
            + ", ".join(f"{name} = ?" for name in assignments)
            + " WHERE id = ?"
        )
        try:
            with self._lock:
                cursor = self.conn.execute(sql, (*assignments.values(), record_id))
                self.conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"Lead update failed: {exc}", operation="update") from exc
        return cursor.rowcount > 0

    def get(self, record_id: str) -> StoredRecord | None:
        rows = self._query("SELECT * FROM leads WHERE id = ?", (record_id,))
        return _from_row(rows[0]) if rows else None

    def list_active(self) -> list[StoredRecord]:
        rows = self._query(
            "SELECT * FROM leads WHERE status != ? ORDER BY created_at, rowid",
            (LeadStatus.DUPLICATE.value,),
        )
        return [_from_row(row) for row in rows]

    def count_by_status(self) -> dict[str, int]:
        rows = self._query("SELECT status, count(*) AS total FROM leads GROUP BY status")
        return {row["status"]: row["total"] for row in rows}


__all__ = [
    "LeadRepository",
    "InMemoryLeadRepository",
    "SQLiteLeadRepository",
    "RECORD_FIELDS",
]
