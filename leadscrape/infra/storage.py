"""SQLite connection management for the lead store."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import Lock
from typing import Dict

LEADS_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS leads (
        id TEXT PRIMARY KEY,
        company_name TEXT NOT NULL,
        normalized_name TEXT NOT NULL,
        contact_name TEXT,
        email TEXT,
        phone TEXT,
        normalized_phone TEXT,
        website TEXT,
        website_domain TEXT,
        address TEXT,
        normalized_address TEXT,
        city TEXT,
        state TEXT,
        zip_code TEXT,
        trade TEXT NOT NULL,
        source TEXT NOT NULL,
        source_url TEXT,
        source_id TEXT,
        rating REAL,
        review_count INTEGER,
        status TEXT NOT NULL DEFAULT 'New',
        notes TEXT NOT NULL DEFAULT '',
        confidence REAL NOT NULL DEFAULT 0,
        duplicate_of TEXT,
        metadata TEXT NOT NULL DEFAULT '{}',
        scraped_at TEXT NOT NULL,
        enriched_at TEXT,
        verified_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_leads_phone ON leads(normalized_phone)",
    "CREATE INDEX IF NOT EXISTS idx_leads_domain ON leads(website_domain)",
    "CREATE INDEX IF NOT EXISTS idx_leads_source ON leads(source, source_id)",
    "CREATE INDEX IF NOT EXISTS idx_leads_name ON leads(normalized_name)",
    "CREATE INDEX IF NOT EXISTS idx_leads_status ON leads(status)",
)


class SQLiteManager:
    """Manage SQLite connections with schema guarantees."""

    def __init__(self) -> None:
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                conn = sqlite3.connect(path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                self._connections[path] = conn
                self._ensure_schema(conn)
            return self._connections[path]

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        for statement in LEADS_SCHEMA:
            conn.execute(statement)
        conn.commit()

    def reset(self, path: Path) -> None:
        with self._lock:
            if path in self._connections:
                self._connections[path].close()
                del self._connections[path]
        if path.exists():
            path.unlink()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


__all__ = ["SQLiteManager", "LEADS_SCHEMA"]
