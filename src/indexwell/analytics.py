# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Search log – one row per served query, used to spot queries that return
nothing useful. A query is low quality when it returned no results or its
best score is below LOW_QUALITY_SCORE.
"""
import json
import time
from typing import Callable, Optional

from .db import Database, to_iso
from .log import get_logger

log = get_logger(__name__)

LOW_QUALITY_SCORE = 0.5
STATS_WINDOW = 1000


def _row_to_dict(row) -> dict:
    return {
        "id": row["id"],
        "query": row["query"],
        "mode": row["mode"],
        "weights": json.loads(row["weights"]) if row["weights"] else None,
        "threshold": row["threshold"],
        "limit": row["result_limit"],
        "target_types": json.loads(row["target_types"]) if row["target_types"] else [],
        "results_count": row["results_count"],
        "top_score": row["top_score"],
        "is_low_quality": bool(row["is_low_quality"]),
        "created_at": to_iso(row["created_at"]),
    }


class SearchLog:
    def __init__(self, db: Database, clock: Callable[[], float] = time.time):
        self.db = db
        self._clock = clock

    def record(
        self,
        query: str,
        mode: str,
        results_count: int,
        top_score: Optional[float] = None,
        weights: Optional[dict] = None,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
        target_types: Optional[list[str]] = None,
    ) -> bool:
        is_low_quality = results_count == 0 or top_score is None or top_score < LOW_QUALITY_SCORE
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO search_logs (query, mode, weights, threshold, result_limit,
                                         target_types, results_count, top_score,
                                         is_low_quality, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    query,
                    mode,
                    json.dumps(weights) if weights else None,
                    threshold,
                    limit,
                    json.dumps(list(target_types or [])),
                    results_count,
                    top_score,
                    int(is_low_quality),
                    self._clock(),
                ),
            )
        return is_low_quality

    def list_logs(self, limit: int = 50, low_quality_only: bool = False) -> list[dict]:
        sql = "SELECT * FROM search_logs"
        if low_quality_only:
            sql += " WHERE is_low_quality = 1"
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        with self.db.connection() as conn:
            rows = conn.execute(sql, (limit,)).fetchall()
        return [_row_to_dict(r) for r in rows]

    def stats(self) -> dict:
        with self.db.connection() as conn:
            total = conn.execute("SELECT COUNT(*) FROM search_logs").fetchone()[0]
            by_mode = conn.execute(
                "SELECT mode, COUNT(*) AS n FROM search_logs GROUP BY mode"
            ).fetchall()
            window = conn.execute(
                """
                SELECT AVG(results_count) AS avg_results,
                       AVG(top_score) AS avg_top_score,
                       AVG(is_low_quality) AS low_quality_rate
                FROM (SELECT * FROM search_logs ORDER BY created_at DESC, id DESC LIMIT ?)
                """,
                (STATS_WINDOW,),
            ).fetchone()
        return {
            "total": total,
            "by_mode": {r["mode"]: r["n"] for r in by_mode},
            "avg_results": round(window["avg_results"] or 0.0, 2),
            "avg_top_score": round(window["avg_top_score"], 3) if window["avg_top_score"] is not None else None,
            "low_quality_rate": round(window["low_quality_rate"] or 0.0, 3),
        }

    def low_quality_queries(self, limit: int = 20) -> list[dict]:
        """Distinct low-quality queries (case and surrounding space ignored), most frequent first."""
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT LOWER(TRIM(query)) AS normalized,
                       COUNT(*) AS occurrences,
                       MAX(created_at) AS last_seen,
                       AVG(results_count) AS avg_results
                FROM search_logs
                WHERE is_low_quality = 1
                GROUP BY normalized
                ORDER BY occurrences DESC, last_seen DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [
            {
                "query": r["normalized"],
                "occurrences": r["occurrences"],
                "last_seen": to_iso(r["last_seen"]),
                "avg_results": round(r["avg_results"] or 0.0, 2),
            }
            for r in rows
        ]

    def cleanup(self, retention_days: int = 30) -> int:
        cutoff = self._clock() - retention_days * 86400
        with self.db.connection() as conn:
            deleted = conn.execute(
                "DELETE FROM search_logs WHERE created_at < ?", (cutoff,),
            ).rowcount
        log.info("search_logs_cleaned", deleted=deleted, retention_days=retention_days)
        return deleted
