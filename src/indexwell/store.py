# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Chunk store: ChromaDB vectors + an in-memory BM25 keyword index.

One Chroma record per chunk, id "<type>:<id>:<index>". Vectors are always
supplied by the caller (the collection has no embedding function), so the
store never calls an embedding model itself.

The BM25 index covers passed chunks only. It is rebuilt lazily from
Chroma on the first keyword search after any write.
"""
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

import bm25s
import chromadb

from .idempotency import ExistingChunk
from .log import get_logger

log = get_logger(__name__)

DEFAULT_COLLECTION = "content_chunks"


def chunk_id(content_type: str, content_id: str, chunk_index: int) -> str:
    return f"{content_type}:{content_id}:{chunk_index}"


def _where(*conditions: dict) -> dict:
    # Chroma rejects $and with fewer than two operands
    conditions = [c for c in conditions if c]
    if len(conditions) == 1:
        return conditions[0]
    return {"$and": list(conditions)}


def _types_filter(types: Optional[Iterable[str]]) -> Optional[dict]:
    if types is None:
        return None
    return {"content_type": {"$in": [str(getattr(t, "value", t)) for t in types]}}


@dataclass
class ChunkRecord:
    index: int
    text: str
    embedding: list[float]
    content_hash: str
    quality_status: str
    quality_score: float
    heading: Optional[str] = None
    judged: bool = False
    judge_reason: Optional[str] = None


@dataclass
class ChunkHit:
    content_type: str
    content_id: str
    chunk_index: int
    score: float
    text: str = ""


class ChunkStore:
    def __init__(self, vectorstore_path: str, collection_name: str = DEFAULT_COLLECTION):
        self._collection_name = collection_name
        self.chroma = chromadb.PersistentClient(path=vectorstore_path)
        self.collection = self.chroma.get_or_create_collection(
            collection_name,
            embedding_function=None,
            metadata={"hnsw:space": "cosine"},
        )
        self._bm25_lock = threading.Lock()
        self._bm25_index = None
        self._bm25_entries: list[tuple[str, str, int, str]] = []
        self._bm25_dirty = True
        # bumped on every write; a rebuild only clears the dirty flag when
        # no write happened since its snapshot
        self._bm25_generation = 0

    def _mark_written(self):
        with self._bm25_lock:
            self._bm25_generation += 1
            self._bm25_dirty = True

    # ── Writes ───────────────────────────────────────

    def upsert_chunks(self, content_type: str, content_id: str, records: list[ChunkRecord]):
        if not records:
            return
        computed_at = datetime.now(timezone.utc).isoformat()
        total = len(records)
        self.collection.upsert(
            ids=[chunk_id(content_type, content_id, r.index) for r in records],
            embeddings=[r.embedding for r in records],
            documents=[r.text for r in records],
            metadatas=[
                {
                    "content_type": content_type,
                    "content_id": content_id,
                    "chunk_index": r.index,
                    "chunk_total": total,
                    "content_hash": r.content_hash,
                    "quality_status": r.quality_status,
                    "quality_score": float(r.quality_score),
                    "heading": r.heading or "",
                    "judged": r.judged,
                    "judge_reason": r.judge_reason or "",
                    "quality_check_at": computed_at if r.judged else "",
                    "computed_at": computed_at,
                }
                for r in records
            ],
        )
        self._mark_written()

    def delete_stale(self, content_type: str, content_id: str, count: int) -> int:
        """Delete chunks of an item whose index is >= count."""
        result = self.collection.get(
            where=_where(
                {"content_type": content_type},
                {"content_id": content_id},
                {"chunk_index": {"$gte": count}},
            ),
            include=[],
        )
        ids = result["ids"]
        if ids:
            self.collection.delete(ids=ids)
            self._mark_written()
        return len(ids)

    def delete_item(self, content_type: str, content_id: str) -> int:
        return self.delete_stale(content_type, content_id, 0)

    # ── Reads ────────────────────────────────────────

    def existing_chunks(self, content_type: str, content_id: str) -> list[ExistingChunk]:
        result = self.collection.get(
            where=_where({"content_type": content_type}, {"content_id": content_id}),
            include=["metadatas"],
        )
        chunks = [
            ExistingChunk(
                index=int(meta["chunk_index"]),
                content_hash=meta.get("content_hash", ""),
                quality_status=meta.get("quality_status", ""),
                judged=bool(meta.get("judged", False)),
            )
            for meta in result["metadatas"] or []
        ]
        return sorted(chunks, key=lambda c: c.index)

    def get_vector(self, content_type: str, content_id: str, chunk_index: int = 0) -> Optional[list[float]]:
        result = self.collection.get(
            ids=[chunk_id(content_type, content_id, chunk_index)],
            include=["embeddings"],
        )
        embs = result.get("embeddings")
        if embs is None or len(embs) == 0 or embs[0] is None:
            return None
        return [float(x) for x in embs[0]]

    def indexed_ids(self, content_type: str) -> set[str]:
        """Ids of items of a type that have a chunk 0, whatever its status."""
        result = self.collection.get(
            where=_where({"content_type": content_type}, {"chunk_index": 0}),
            include=["metadatas"],
        )
        return {m["content_id"] for m in result["metadatas"] or []}

    def item_count(self, content_type: str) -> int:
        return len(self.indexed_ids(content_type))

    def sources(self, content_type: str, offset: int = 0, limit: int = 50) -> list[str]:
        """A page of items of a type whose chunk 0 passed the quality gate."""
        result = self.collection.get(
            where=_where(
                {"content_type": content_type},
                {"chunk_index": 0},
                {"quality_status": "passed"},
            ),
            offset=offset,
            limit=limit,
            include=["metadatas"],
        )
        return [m["content_id"] for m in result["metadatas"] or []]

    # ── Search ───────────────────────────────────────

    def vector_search(
        self,
        vector: list[float],
        types: Optional[Iterable[str]],
        k: int,
        min_similarity: float = 0.0,
        chunk_index: Optional[int] = None,
    ) -> list[ChunkHit]:
        """Nearest passed chunks by cosine similarity (1 - distance)."""
        total = self.collection.count()
        if total == 0 or k <= 0:
            return []
        results = self.collection.query(
            query_embeddings=[vector],
            n_results=min(k, total),
            where=_where(
                {"quality_status": "passed"},
                _types_filter(types),
                {"chunk_index": chunk_index} if chunk_index is not None else None,
            ),
            include=["metadatas", "distances", "documents"],
        )
        if not results["ids"] or not results["ids"][0]:
            return []
        hits = []
        for meta, dist, doc in zip(
            results["metadatas"][0],
            results["distances"][0],
            results["documents"][0],
        ):
            similarity = 1.0 - float(dist)
            if similarity < min_similarity:
                continue
            hits.append(ChunkHit(
                content_type=meta["content_type"],
                content_id=meta["content_id"],
                chunk_index=int(meta["chunk_index"]),
                score=similarity,
                text=doc or "",
            ))
        return hits

    def _load_bm25_corpus(self) -> list[tuple[str, str, int, str]]:
        result = self.collection.get(
            where={"quality_status": "passed"},
            include=["documents", "metadatas"],
        )
        entries = []
        for doc, meta in zip(result["documents"] or [], result["metadatas"] or []):
            if not doc:
                continue
            entries.append((meta["content_type"], meta["content_id"], int(meta["chunk_index"]), doc))
        return entries

    def _current_bm25(self):
        """Return (index, entries), rebuilding from a fresh snapshot when writes happened.

        The snapshot and indexing run outside the lock. The dirty flag is only
        cleared when no write landed while the rebuild was in flight.
        """
        with self._bm25_lock:
            if not self._bm25_dirty:
                return self._bm25_index, self._bm25_entries
            generation = self._bm25_generation

        entries = self._load_bm25_corpus()
        index = None
        if entries:
            index = bm25s.BM25()
            index.index(
                bm25s.tokenize([e[3] for e in entries], stopwords="en", show_progress=False),
                show_progress=False,
            )

        with self._bm25_lock:
            self._bm25_index = index
            self._bm25_entries = entries
            if self._bm25_generation == generation:
                self._bm25_dirty = False
        log.debug("bm25_rebuilt", chunks=len(entries), generation=generation)
        return index, entries

    def keyword_search(self, query: str, types: Optional[Iterable[str]], k: int) -> list[ChunkHit]:
        """BM25 over passed chunks; scores are raw BM25 values.

        Every chunk is scored, then the type filter is applied before the
        top k is taken, so a type that is rare in the corpus still surfaces.
        """
        if not query.strip() or k <= 0:
            return []
        allowed = None
        if types is not None:
            allowed = {str(getattr(t, "value", t)) for t in types}

        index, entries = self._current_bm25()
        if index is None or not entries:
            return []

        query_tokens = bm25s.tokenize([query], stopwords="en", show_progress=False)
        results, scores = index.retrieve(query_tokens, k=len(entries), show_progress=False)
        hits: list[ChunkHit] = []
        for i in range(results.shape[1]):
            idx = int(results[0, i])
            score = float(scores[0, i])
            if idx < 0 or idx >= len(entries) or score <= 0:
                continue
            content_type, content_id, chunk_index, text = entries[idx]
            if allowed is not None and content_type not in allowed:
                continue
            hits.append(ChunkHit(content_type, content_id, chunk_index, score, text))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:k]

    # ── Admin views ──────────────────────────────────

    def failed_samples(self, limit: int = 20) -> list[dict]:
        """Stored chunks the judge did not pass, for review."""
        result = self.collection.get(
            where={"quality_status": {"$in": ["failed", "incomplete"]}},
            limit=limit,
            include=["documents", "metadatas"],
        )
        return [
            {
                "content_type": meta["content_type"],
                "content_id": meta["content_id"],
                "chunk_index": meta["chunk_index"],
                "quality_status": meta["quality_status"],
                "quality_score": meta.get("quality_score"),
                "judged": bool(meta.get("judged", False)),
                "judge_reason": meta.get("judge_reason") or None,
                "quality_check_at": meta.get("quality_check_at") or None,
                "text": (doc or "")[:500],
            }
            for doc, meta in zip(result["documents"] or [], result["metadatas"] or [])
        ]

    def quality_metrics(self) -> dict:
        result = self.collection.get(include=["metadatas"])
        metrics: dict[str, dict] = {}
        for meta in result["metadatas"] or []:
            per_type = metrics.setdefault(
                meta["content_type"],
                {
                    "passed": 0, "incomplete": 0, "failed": 0, "total": 0,
                    "with_quality_score": 0, "score_sum": 0.0,
                },
            )
            status = meta.get("quality_status", "")
            if status in per_type:
                per_type[status] += 1
            per_type["total"] += 1
            if meta.get("judged"):
                per_type["with_quality_score"] += 1
            per_type["score_sum"] += float(meta.get("quality_score") or 0.0)
        for per_type in metrics.values():
            score_sum = per_type.pop("score_sum")
            per_type["avg_score"] = round(score_sum / per_type["total"], 3) if per_type["total"] else 0.0
            per_type["pass_rate"] = round(per_type["passed"] / per_type["total"], 3) if per_type["total"] else 0.0
        return metrics

    def stats(self) -> dict:
        return {
            "collection": self._collection_name,
            "chunks": self.collection.count(),
            "bm25_chunks": len(self._bm25_entries),
        }
