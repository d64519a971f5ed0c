# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Search over passed chunks.

Modes:
- "semantic": query vector vs chunk vectors, similarity = 1 - cosine distance
- "keyword":  BM25 over chunk text, scores normalized to the best hit
- "hybrid":   both paths in parallel, merged per item:
              combined = semantic * w_s + keyword_normalized * w_k
              over the union of items, filtered by threshold

Results are per item (content_type, content_id): several matching chunks
of one item collapse to the best one. A failing path contributes nothing
instead of failing the query.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Optional

from .analytics import SearchLog
from .content import SEARCHABLE_TYPES, ContentType
from .health import HealthTracker
from .log import get_logger
from .providers import EmbeddingProvider
from .store import ChunkHit, ChunkStore

log = get_logger(__name__)

SEARCH_MODES = ("semantic", "keyword", "hybrid")
DEFAULT_LIMIT = 20
SEMANTIC_THRESHOLD = 0.7
HYBRID_THRESHOLD = 0.5
HYBRID_SEMANTIC_FLOOR = 0.4
DEFAULT_WEIGHTS = {"semantic": 0.7, "keyword": 0.3}


@dataclass
class SearchResult:
    content_type: str
    content_id: str
    score: float
    semantic_score: Optional[float] = None
    keyword_score: Optional[float] = None
    chunk_index: Optional[int] = None
    snippet: str = ""

    def to_dict(self) -> dict:
        return {
            "content_type": self.content_type,
            "content_id": self.content_id,
            "score": round(self.score, 4),
            "semantic_score": round(self.semantic_score, 4) if self.semantic_score is not None else None,
            "keyword_score": round(self.keyword_score, 4) if self.keyword_score is not None else None,
            "chunk_index": self.chunk_index,
            "snippet": self.snippet,
        }


def collapse_hits(hits: Iterable[ChunkHit]) -> dict[tuple[str, str], ChunkHit]:
    """Best-scoring chunk per item."""
    best: dict[tuple[str, str], ChunkHit] = {}
    for hit in hits:
        key = (hit.content_type, hit.content_id)
        if key not in best or hit.score > best[key].score:
            best[key] = hit
    return best


def _sort_key(result: SearchResult):
    return (-result.score, result.content_type, result.content_id)


def _snippet(text: str, length: int = 200) -> str:
    return text if len(text) <= length else text[:length].rstrip() + "…"


def merge_hybrid(
    semantic: list[ChunkHit],
    keyword: list[ChunkHit],
    weights: dict | None = None,
    threshold: float = HYBRID_THRESHOLD,
    limit: int = DEFAULT_LIMIT,
) -> list[SearchResult]:
    weights = weights or DEFAULT_WEIGHTS
    ws = weights.get("semantic", DEFAULT_WEIGHTS["semantic"])
    wk = weights.get("keyword", DEFAULT_WEIGHTS["keyword"])

    sem = collapse_hits(semantic)
    kw = collapse_hits(keyword)
    max_kw = max((h.score for h in kw.values()), default=0.0)

    results = []
    for key in sem.keys() | kw.keys():
        s_hit, k_hit = sem.get(key), kw.get(key)
        s_score = s_hit.score if s_hit else None
        k_score = k_hit.score / max_kw if k_hit and max_kw > 0 else (0.0 if k_hit else None)
        combined = (s_score or 0.0) * ws + (k_score or 0.0) * wk
        if combined < threshold:
            continue
        source = s_hit or k_hit
        results.append(SearchResult(
            content_type=key[0],
            content_id=key[1],
            score=combined,
            semantic_score=s_score,
            keyword_score=k_score,
            chunk_index=source.chunk_index,
            snippet=_snippet(source.text),
        ))
    results.sort(key=_sort_key)
    return results[:limit]


class HybridSearchEngine:
    def __init__(
        self,
        provider: EmbeddingProvider,
        store: ChunkStore,
        search_log: SearchLog | None = None,
        health: HealthTracker | None = None,
        weights: dict | None = None,
        semantic_threshold: float = SEMANTIC_THRESHOLD,
        hybrid_threshold: float = HYBRID_THRESHOLD,
        default_limit: int = DEFAULT_LIMIT,
    ):
        self.provider = provider
        self.store = store
        self.search_log = search_log
        self.health = health
        self.weights = dict(weights or DEFAULT_WEIGHTS)
        self.semantic_threshold = semantic_threshold
        self.hybrid_threshold = hybrid_threshold
        self.default_limit = default_limit
        self._pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="search")

    @classmethod
    def from_config(cls, config, provider, store, search_log=None, health=None) -> "HybridSearchEngine":
        return cls(
            provider,
            store,
            search_log=search_log,
            health=health,
            weights={"semantic": config.hybrid_semantic_weight, "keyword": config.hybrid_keyword_weight},
            semantic_threshold=config.semantic_threshold,
            hybrid_threshold=config.hybrid_threshold,
            default_limit=config.search_limit,
        )

    # ── Paths ────────────────────────────────────────

    def _semantic_hits(self, query: str, types: list[str], k: int, floor: float) -> list[ChunkHit]:
        try:
            vector = self.provider.embed_query(query)
            return self.store.vector_search(vector, types, k, min_similarity=floor)
        except Exception as e:
            log.warning("semantic_search_failed", error=str(e))
            return []

    def _keyword_hits(self, query: str, types: list[str], k: int) -> list[ChunkHit]:
        try:
            return self.store.keyword_search(query, types, k)
        except Exception as e:
            log.warning("keyword_search_failed", error=str(e))
            return []

    # ── Entry point ──────────────────────────────────

    def search(
        self,
        query: str,
        mode: str = "hybrid",
        target_types: Optional[list[str]] = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        weights: Optional[dict] = None,
    ) -> list[SearchResult]:
        if mode not in SEARCH_MODES:
            raise ValueError(f"Unknown search mode: {mode!r} (expected one of {', '.join(SEARCH_MODES)})")
        query = (query or "").strip()
        if not query:
            return []
        types = [ContentType(t).value for t in (target_types or SEARCHABLE_TYPES)]
        limit = max(1, limit or self.default_limit)

        if mode == "semantic":
            threshold = self.semantic_threshold if threshold is None else threshold
            hits = collapse_hits(self._semantic_hits(query, types, limit * 2, threshold))
            results = [
                SearchResult(t, i, h.score, semantic_score=h.score,
                             chunk_index=h.chunk_index, snippet=_snippet(h.text))
                for (t, i), h in hits.items()
            ]
            results.sort(key=_sort_key)
            results = results[:limit]
            weights = None
        elif mode == "keyword":
            threshold = 0.0 if threshold is None else threshold
            results = merge_hybrid(
                [], self._keyword_hits(query, types, limit * 2),
                weights={"semantic": 0.0, "keyword": 1.0}, threshold=threshold, limit=limit,
            )
            weights = None
        else:
            threshold = self.hybrid_threshold if threshold is None else threshold
            weights = {**self.weights, **(weights or {})}
            sem_future = self._pool.submit(
                self._semantic_hits, query, types, limit * 2, HYBRID_SEMANTIC_FLOOR,
            )
            kw_future = self._pool.submit(self._keyword_hits, query, types, limit * 2)
            results = merge_hybrid(
                sem_future.result(), kw_future.result(),
                weights=weights, threshold=threshold, limit=limit,
            )

        self._record(query, mode, results, weights, threshold, limit, types)
        return results

    def _record(self, query, mode, results, weights, threshold, limit, types):
        if self.health:
            self.health.record_search(mode, hit=bool(results))
        if self.search_log is None:
            return
        try:
            self.search_log.record(
                query,
                mode,
                results_count=len(results),
                top_score=results[0].score if results else None,
                weights=weights,
                threshold=threshold,
                limit=limit,
                target_types=types,
            )
        except Exception as e:
            log.warning("search_log_failed", error=str(e))

    def close(self):
        self._pool.shutdown(wait=False)
