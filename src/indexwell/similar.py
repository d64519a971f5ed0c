# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Precomputed "similar items" edges.

For every item whose chunk 0 passed the quality gate, the refresher finds
the nearest chunk-0 vectors of the same type and stores the top 10 as
ranked edges. Edges of a source are replaced atomically, so readers see
either the old list or the new one.

Only one refresh runs at a time: an in-process lock plus a lease row in
job_locks (for several processes sharing the database).
"""
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from .content import ContentType
from .db import Database, to_iso
from .log import get_logger
from .queue import EmbeddingQueue
from .store import ChunkStore

log = get_logger(__name__)

SIMILAR_TYPES = (ContentType.PRODUCT, ContentType.POST, ContentType.GALLERY_ITEM)
MAX_EDGES = 10
MIN_SIMILARITY = 0.5
BATCH_SIZE = 50
JOB_NAME = "similar_refresh"


@dataclass
class SimilarEdge:
    target_type: str
    target_id: str
    similarity_score: float
    rank: int

    def to_dict(self) -> dict:
        return {
            "target_type": self.target_type,
            "target_id": self.target_id,
            "similarity_score": round(self.similarity_score, 4),
            "rank": self.rank,
        }


@dataclass
class RefreshResult:
    processed: int = 0
    errors: int = 0
    edges: int = 0
    retried: int = 0
    skipped: bool = False
    by_type: dict = field(default_factory=dict)
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "errors": self.errors,
            "edges": self.edges,
            "retried": self.retried,
            "skipped": self.skipped,
            "by_type": dict(self.by_type),
            "duration_ms": self.duration_ms,
        }


class SimilarItemsStore:
    def __init__(self, db: Database, clock: Callable[[], float] = time.time):
        self.db = db
        self._clock = clock

    def replace_edges(self, source_type: str, source_id: str, edges: list[SimilarEdge]):
        now = self._clock()
        with self.db.transaction() as conn:
            conn.execute(
                "DELETE FROM similar_items WHERE source_type = ? AND source_id = ?",
                (source_type, source_id),
            )
            conn.executemany(
                """
                INSERT INTO similar_items (source_type, source_id, target_type, target_id,
                                           similarity_score, rank, computed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (source_type, source_id, e.target_type, e.target_id, e.similarity_score, e.rank, now)
                    for e in edges
                ],
            )

    def get_similar(self, source_type: str, source_id: str, limit: int = 4) -> list[dict]:
        limit = min(MAX_EDGES, max(1, limit))
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT target_type, target_id, similarity_score, rank, computed_at
                FROM similar_items
                WHERE source_type = ? AND source_id = ?
                ORDER BY rank ASC
                LIMIT ?
                """,
                (ContentType(source_type).value, str(source_id), limit),
            ).fetchall()
        return [
            {
                "target_type": r["target_type"],
                "target_id": r["target_id"],
                "similarity_score": round(r["similarity_score"], 4),
                "rank": r["rank"],
                "computed_at": to_iso(r["computed_at"]),
            }
            for r in rows
        ]

    def delete_edges_for(self, content_type: str, content_id: str) -> int:
        """Drop edges from and to an item (e.g. after it was removed)."""
        with self.db.transaction() as conn:
            cur = conn.execute(
                """
                DELETE FROM similar_items
                WHERE (source_type = ? AND source_id = ?)
                   OR (target_type = ? AND target_id = ?)
                """,
                (content_type, content_id, content_type, content_id),
            )
            return cur.rowcount

    def stats(self) -> dict:
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT source_type, COUNT(DISTINCT source_id) AS sources, COUNT(*) AS edges,
                       MAX(computed_at) AS last_computed
                FROM similar_items GROUP BY source_type
                """
            ).fetchall()
        return {
            r["source_type"]: {
                "sources": r["sources"],
                "edges": r["edges"],
                "last_computed": to_iso(r["last_computed"]),
            }
            for r in rows
        }


class SimilarItemsRefresher:
    def __init__(
        self,
        queue: EmbeddingQueue,
        store: ChunkStore,
        similar: SimilarItemsStore,
        db: Database,
        min_similarity: float = MIN_SIMILARITY,
        batch_size: int = BATCH_SIZE,
        job_lease_seconds: float = 1800,
        clock: Callable[[], float] = time.time,
    ):
        self.queue = queue
        self.store = store
        self.similar = similar
        self.db = db
        self.min_similarity = min_similarity
        self.batch_size = batch_size
        self.job_lease_seconds = job_lease_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._holder = f"refresher-{uuid.uuid4().hex[:8]}"

    def neighbours(self, content_type: str, content_id: str) -> Optional[list[SimilarEdge]]:
        """Top same-type neighbours of an item; None when it has no stored vector."""
        vector = self.store.get_vector(content_type, content_id, 0)
        if vector is None:
            return None
        hits = self.store.vector_search(
            vector, [content_type], MAX_EDGES + 1,
            min_similarity=self.min_similarity, chunk_index=0,
        )
        hits = [h for h in hits if h.content_id != content_id][:MAX_EDGES]
        return [
            SimilarEdge(h.content_type, h.content_id, h.score, rank)
            for rank, h in enumerate(hits, 1)
        ]

    def refresh_item(self, content_type: str, content_id: str) -> int:
        edges = self.neighbours(content_type, content_id)
        if edges is None:
            return 0
        self.similar.replace_edges(content_type, content_id, edges)
        return len(edges)

    def _refresh_type(self, content_type: str, result: RefreshResult):
        processed = errors = 0
        offset = 0
        while True:
            batch = self.store.sources(content_type, offset=offset, limit=self.batch_size)
            if not batch:
                break
            for content_id in batch:
                try:
                    result.edges += self.refresh_item(content_type, content_id)
                    processed += 1
                except Exception as e:
                    errors += 1
                    log.warning(
                        "similar_item_failed",
                        content_type=content_type,
                        content_id=content_id,
                        error=str(e),
                    )
            offset += len(batch)
            if len(batch) < self.batch_size:
                break
        result.processed += processed
        result.errors += errors
        result.by_type[content_type] = {"processed": processed, "errors": errors}

    def refresh(self, content_type: Optional[str] = None) -> RefreshResult:
        if content_type is not None and ContentType(content_type) not in SIMILAR_TYPES:
            raise ValueError(f"Similar items are not computed for {content_type!r}")

        if not self._lock.acquire(blocking=False):
            log.info("similar_refresh_skipped", reason="already_running")
            return RefreshResult(skipped=True)
        try:
            if not self.db.acquire_job_lock(JOB_NAME, self._holder, self.job_lease_seconds, self._clock()):
                log.info("similar_refresh_skipped", reason="locked_by_other_process")
                return RefreshResult(skipped=True)
            try:
                return self._run(content_type)
            finally:
                self.db.release_job_lock(JOB_NAME, self._holder)
        finally:
            self._lock.release()

    def _run(self, content_type: Optional[str]) -> RefreshResult:
        started = time.monotonic()
        result = RefreshResult()
        result.retried = self.queue.retry_failed()

        types = [ContentType(content_type)] if content_type else list(SIMILAR_TYPES)
        for ct in types:
            self._refresh_type(ct.value, result)

        result.duration_ms = round((time.monotonic() - started) * 1000)
        log.info("similar_refresh_done", **result.to_dict())
        return result
