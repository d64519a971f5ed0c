# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
SQLite storage shared by the queue, similar-items cache, search log,
audit trail and job locks.

Connections are short-lived (one per operation) and opened in autocommit
mode; multi-statement work goes through transaction(), which takes the
write lock up front (BEGIN IMMEDIATE) so concurrent claimers serialize.
"""
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS embedding_queue (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        content_type TEXT NOT NULL,
        content_id TEXT NOT NULL,
        priority INTEGER NOT NULL DEFAULT 2,
        status TEXT NOT NULL DEFAULT 'pending',
        attempts INTEGER NOT NULL DEFAULT 0,
        processing_token TEXT,
        lease_expires_at REAL,
        error_message TEXT,
        created_at REAL NOT NULL,
        processed_at REAL,
        UNIQUE (content_type, content_id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_embedding_queue_claim
    ON embedding_queue(status, priority DESC, created_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS similar_items (
        source_type TEXT NOT NULL,
        source_id TEXT NOT NULL,
        target_type TEXT NOT NULL,
        target_id TEXT NOT NULL,
        similarity_score REAL NOT NULL,
        rank INTEGER NOT NULL CHECK (rank BETWEEN 1 AND 10),
        computed_at REAL NOT NULL,
        PRIMARY KEY (source_type, source_id, rank)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS search_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        query TEXT NOT NULL,
        mode TEXT NOT NULL,
        weights TEXT,
        threshold REAL,
        result_limit INTEGER,
        target_types TEXT,
        results_count INTEGER NOT NULL,
        top_score REAL,
        is_low_quality INTEGER NOT NULL,
        created_at REAL NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_search_logs_created
    ON search_logs(created_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        action TEXT NOT NULL,
        details TEXT,
        created_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_locks (
        name TEXT PRIMARY KEY,
        holder TEXT NOT NULL,
        expires_at REAL NOT NULL
    )
    """,
]


def to_iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, timezone.utc).isoformat()


class Database:
    def __init__(self, path: str):
        self.path = path
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        with self.connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            for statement in SCHEMA:
                conn.execute(statement)

    @contextmanager
    def connection(self):
        conn = sqlite3.connect(self.path, timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self):
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    @staticmethod
    def audit(conn: sqlite3.Connection, action: str, details: dict, now: float):
        conn.execute(
            "INSERT INTO audit_log (action, details, created_at) VALUES (?, ?, ?)",
            (action, json.dumps(details), now),
        )

    def audit_entries(self, limit: int = 50) -> list[dict]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT action, details, created_at FROM audit_log ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [
            {
                "action": r["action"],
                "details": json.loads(r["details"]) if r["details"] else {},
                "created_at": to_iso(r["created_at"]),
            }
            for r in rows
        ]

    # ── Job locks ────────────────────────────────────

    def acquire_job_lock(self, name: str, holder: str, lease_seconds: float, now: float) -> bool:
        """Take (or renew) a named lease; False while someone else holds it."""
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT holder, expires_at FROM job_locks WHERE name = ?", (name,),
            ).fetchone()
            if row and row["holder"] != holder and row["expires_at"] > now:
                return False
            conn.execute(
                """
                INSERT INTO job_locks (name, holder, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET holder = excluded.holder,
                                                expires_at = excluded.expires_at
                """,
                (name, holder, now + lease_seconds),
            )
            return True

    def release_job_lock(self, name: str, holder: str):
        with self.connection() as conn:
            conn.execute(
                "DELETE FROM job_locks WHERE name = ? AND holder = ?", (name, holder),
            )
