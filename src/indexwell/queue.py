# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Durable embedding queue with lease-based claims.

States: pending -> processing -> completed | failed; failed -> pending via
retry_failed() while attempts < cap.

claim() picks pending items and processing items whose lease expired,
highest priority first then FIFO, inside one BEGIN IMMEDIATE transaction,
so two claimers never get the same row. Each claim gets a fresh token.
complete() only applies when the caller still holds that token; a
mismatch means the claim was superseded and returns False.
"""
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .content import ContentType
from .db import Database, to_iso
from .log import get_logger

log = get_logger(__name__)

PRIORITIES = {"high": 3, "normal": 2, "low": 1}
PRIORITY_NAMES = {v: k for k, v in PRIORITIES.items()}
MAX_ATTEMPTS = 3
DEFAULT_LEASE_SECONDS = 120
TERMINAL_STATUSES = ("completed", "failed")


@dataclass
class ClaimedItem:
    content_type: str
    content_id: str
    processing_token: str
    lease_expires_at: float
    attempts: int

    def to_dict(self) -> dict:
        return {
            "content_type": self.content_type,
            "content_id": self.content_id,
            "processing_token": self.processing_token,
            "lease_expires_at": to_iso(self.lease_expires_at),
            "attempts": self.attempts,
        }


def _priority_value(priority: str) -> int:
    try:
        return PRIORITIES[priority]
    except KeyError:
        raise ValueError(f"Unknown priority: {priority!r} (expected high, normal or low)") from None


def _row_to_dict(row) -> dict:
    return {
        "content_type": row["content_type"],
        "content_id": row["content_id"],
        "priority": PRIORITY_NAMES.get(row["priority"], str(row["priority"])),
        "status": row["status"],
        "attempts": row["attempts"],
        "processing_token": row["processing_token"],
        "lease_expires_at": to_iso(row["lease_expires_at"]),
        "error_message": row["error_message"],
        "created_at": to_iso(row["created_at"]),
        "processed_at": to_iso(row["processed_at"]),
    }


class EmbeddingQueue:
    def __init__(
        self,
        db: Database,
        max_attempts: int = MAX_ATTEMPTS,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.max_attempts = max_attempts
        self._clock = clock

    # ── Enqueue ──────────────────────────────────────

    _UPSERT = """
        INSERT INTO embedding_queue (content_type, content_id, priority, status, attempts, created_at)
        VALUES (?, ?, ?, 'pending', 0, ?)
        ON CONFLICT(content_type, content_id) DO UPDATE SET
            priority = excluded.priority,
            status = 'pending',
            attempts = 0,
            processing_token = NULL,
            lease_expires_at = NULL,
            error_message = NULL,
            processed_at = NULL,
            created_at = excluded.created_at
    """

    def enqueue(self, content_type: str, content_id: str, priority: str = "normal"):
        """Insert or refresh one item. Re-enqueueing never duplicates a row."""
        content_type = ContentType(content_type).value
        with self.db.connection() as conn:
            conn.execute(
                self._UPSERT,
                (content_type, str(content_id), _priority_value(priority), self._clock()),
            )
        log.debug("enqueued", content_type=content_type, content_id=content_id, priority=priority)

    def enqueue_batch(self, items: Iterable[tuple[str, str]], priority: str = "normal") -> int:
        prio = _priority_value(priority)
        now = self._clock()
        rows = [(ContentType(t).value, str(i), prio, now) for t, i in items]
        if not rows:
            return 0
        with self.db.transaction() as conn:
            conn.executemany(self._UPSERT, rows)
        log.info("enqueued_batch", count=len(rows), priority=priority)
        return len(rows)

    # ── Lease protocol ───────────────────────────────

    def claim(self, limit: int = 10, lease_seconds: int = DEFAULT_LEASE_SECONDS) -> list[ClaimedItem]:
        """Atomically lease up to `limit` items to the caller."""
        if limit <= 0:
            return []
        now = self._clock()
        expires = now + lease_seconds
        claimed: list[ClaimedItem] = []

        with self.db.transaction() as conn:
            self._fail_exhausted(conn, now)
            rows = conn.execute(
                """
                SELECT id, content_type, content_id, attempts FROM embedding_queue
                WHERE (status = 'pending'
                       OR (status = 'processing' AND lease_expires_at < ?))
                  AND attempts < ?
                ORDER BY priority DESC, created_at ASC, id ASC
                LIMIT ?
                """,
                (now, self.max_attempts, limit),
            ).fetchall()

            for row in rows:
                token = str(uuid.uuid4())
                conn.execute(
                    """
                    UPDATE embedding_queue
                    SET status = 'processing',
                        processing_token = ?,
                        lease_expires_at = ?,
                        attempts = attempts + 1,
                        error_message = NULL
                    WHERE id = ?
                    """,
                    (token, expires, row["id"]),
                )
                claimed.append(ClaimedItem(
                    content_type=row["content_type"],
                    content_id=row["content_id"],
                    processing_token=token,
                    lease_expires_at=expires,
                    attempts=row["attempts"] + 1,
                ))

        if claimed:
            log.debug("claimed", count=len(claimed), lease_seconds=lease_seconds)
        return claimed

    def _fail_exhausted(self, conn, now: float):
        # An expired lease on the last allowed attempt can never be reclaimed
        cur = conn.execute(
            """
            UPDATE embedding_queue
            SET status = 'failed',
                error_message = 'Lease expired on final attempt',
                processing_token = NULL,
                lease_expires_at = NULL,
                processed_at = ?
            WHERE status = 'processing' AND lease_expires_at < ? AND attempts >= ?
            """,
            (now, now, self.max_attempts),
        )
        if cur.rowcount:
            log.warning("leases_exhausted", count=cur.rowcount)

    def complete(
        self,
        content_type: str,
        content_id: str,
        processing_token: str,
        status: str = "completed",
        error_message: Optional[str] = None,
    ) -> bool:
        """Report the outcome of a claim.

        Returns False (and changes nothing) when the token no longer matches:
        the lease was reclaimed by another worker or the item was re-enqueued.
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Invalid completion status: {status!r}")
        with self.db.connection() as conn:
            cur = conn.execute(
                """
                UPDATE embedding_queue
                SET status = ?,
                    error_message = ?,
                    processed_at = ?,
                    processing_token = NULL,
                    lease_expires_at = NULL
                WHERE content_type = ? AND content_id = ? AND processing_token = ?
                """,
                (status, error_message, self._clock(), content_type, content_id, processing_token),
            )
            applied = cur.rowcount > 0
        if not applied:
            log.info("completion_superseded", content_type=content_type, content_id=content_id)
        return applied

    def fail(self, content_type: str, content_id: str, processing_token: str, error_message: str) -> bool:
        return self.complete(content_type, content_id, processing_token, "failed", error_message)

    # ── Admin ────────────────────────────────────────

    def retry_failed(self) -> int:
        """Failed items below the attempt cap go back to pending."""
        with self.db.connection() as conn:
            cur = conn.execute(
                """
                UPDATE embedding_queue
                SET status = 'pending',
                    error_message = NULL,
                    processing_token = NULL,
                    lease_expires_at = NULL
                WHERE status = 'failed' AND attempts < ?
                """,
                (self.max_attempts,),
            )
            retried = cur.rowcount
        if retried:
            log.info("retry_failed", retried=retried)
        return retried

    def purge_failed(self) -> int:
        """Delete every failed item, whatever its attempt count. Audited."""
        now = self._clock()
        with self.db.transaction() as conn:
            cur = conn.execute("DELETE FROM embedding_queue WHERE status = 'failed'")
            purged = cur.rowcount
            self.db.audit(conn, "queue.purge_failed", {"purged": purged}, now)
        log.warning("purge_failed", purged=purged)
        return purged

    def clear_completed(self, older_than_days: int = 7) -> int:
        now = self._clock()
        cutoff = now - older_than_days * 86400
        with self.db.transaction() as conn:
            cur = conn.execute(
                "DELETE FROM embedding_queue WHERE status = 'completed' AND processed_at < ?",
                (cutoff,),
            )
            cleared = cur.rowcount
            self.db.audit(
                conn, "queue.clear_completed",
                {"cleared": cleared, "older_than_days": older_than_days}, now,
            )
        log.info("clear_completed", cleared=cleared, older_than_days=older_than_days)
        return cleared

    # ── Inspection ───────────────────────────────────

    def get(self, content_type: str, content_id: str) -> Optional[dict]:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM embedding_queue WHERE content_type = ? AND content_id = ?",
                (content_type, str(content_id)),
            ).fetchone()
        return _row_to_dict(row) if row else None

    def stats(self, content_type: Optional[str] = None) -> dict:
        with self.db.connection() as conn:
            if content_type is None:
                rows = conn.execute(
                    "SELECT status, COUNT(*) AS n FROM embedding_queue GROUP BY status"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT status, COUNT(*) AS n FROM embedding_queue WHERE content_type = ? GROUP BY status",
                    (content_type,),
                ).fetchall()
        counts = {"pending": 0, "processing": 0, "completed": 0, "failed": 0}
        for row in rows:
            counts[row["status"]] = row["n"]
        counts["total"] = sum(counts.values())
        return counts

    def throughput(self) -> dict:
        now = self._clock()
        with self.db.connection() as conn:
            last_1h = conn.execute(
                "SELECT COUNT(*) FROM embedding_queue WHERE status = 'completed' AND processed_at >= ?",
                (now - 3600,),
            ).fetchone()[0]
            last_24h = conn.execute(
                "SELECT COUNT(*) FROM embedding_queue WHERE status = 'completed' AND processed_at >= ?",
                (now - 86400,),
            ).fetchone()[0]
            recent = conn.execute(
                """
                SELECT created_at, processed_at FROM embedding_queue
                WHERE status = 'completed' AND processed_at IS NOT NULL
                ORDER BY processed_at DESC LIMIT 100
                """
            ).fetchall()
        avg_ms = None
        if recent:
            total = sum(r["processed_at"] - r["created_at"] for r in recent)
            avg_ms = round(total / len(recent) * 1000)
        return {"last_1h": last_1h, "last_24h": last_24h, "avg_processing_time_ms": avg_ms}

    def error_logs(self, limit: int = 20) -> list[dict]:
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM embedding_queue
                WHERE status = 'failed' AND error_message IS NOT NULL
                ORDER BY processed_at DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [_row_to_dict(r) for r in rows]
