# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Centralized health/status tracker – shared across worker, scheduler,
search engine and web API. Thread-safe, no external dependencies.
"""
import threading
from datetime import datetime, timezone

SEARCH_MODES = ("semantic", "keyword", "hybrid")
ITEM_OUTCOMES = ("completed", "skipped", "failed", "superseded")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class HealthTracker:
    def __init__(self):
        self._lock = threading.Lock()
        self._data = {
            "started_at": _now(),

            "last_batch_at": None,
            "last_batch_size": 0,
            "last_worker_error": None,
            "items": {outcome: 0 for outcome in ITEM_OUTCOMES},

            "searches_total": 0,
            "searches_hits": 0,
            "searches_misses": 0,
            "searches_by_mode": {mode: 0 for mode in SEARCH_MODES},
            "last_search_at": None,

            "last_similar_refresh_at": None,
            "last_similar_refresh": None,
            "last_similar_refresh_error": None,

            "last_log_cleanup_at": None,
            "last_log_cleanup_deleted": 0,
        }

    def record_batch(self, size: int, error: str | None = None):
        with self._lock:
            self._data["last_batch_at"] = _now()
            self._data["last_batch_size"] = size
            self._data["last_worker_error"] = error

    def record_item(self, outcome: str):
        with self._lock:
            items = self._data["items"]
            if outcome in items:
                items[outcome] += 1

    def record_search(self, mode: str, hit: bool):
        with self._lock:
            self._data["searches_total"] += 1
            if hit:
                self._data["searches_hits"] += 1
            else:
                self._data["searches_misses"] += 1
            by_mode = self._data["searches_by_mode"]
            if mode in by_mode:
                by_mode[mode] += 1
            self._data["last_search_at"] = _now()

    def record_similar_refresh(self, result: dict | None = None, error: str | None = None):
        with self._lock:
            self._data["last_similar_refresh_at"] = _now()
            self._data["last_similar_refresh"] = result
            self._data["last_similar_refresh_error"] = error

    def record_log_cleanup(self, deleted: int):
        with self._lock:
            self._data["last_log_cleanup_at"] = _now()
            self._data["last_log_cleanup_deleted"] = deleted

    @property
    def status(self) -> dict:
        with self._lock:
            data = dict(self._data)
            data["items"] = dict(self._data["items"])
            data["searches_by_mode"] = dict(self._data["searches_by_mode"])
            return data

    @property
    def is_healthy(self) -> bool:
        with self._lock:
            return self._data["last_worker_error"] is None
