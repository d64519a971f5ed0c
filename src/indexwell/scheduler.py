# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Maintenance scheduler – periodic similar-items refresh and search-log
retention. Runs as a background daemon thread.
"""
import threading

from .analytics import SearchLog
from .config import Config
from .health import HealthTracker
from .log import get_logger
from .similar import SimilarItemsRefresher

log = get_logger(__name__)


class MaintenanceScheduler:
    def __init__(
        self,
        config: Config,
        refresher: SimilarItemsRefresher,
        search_log: SearchLog,
        health: HealthTracker | None = None,
    ):
        self.config = config
        self.refresher = refresher
        self.search_log = search_log
        self.health = health
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self) -> dict:
        summary: dict = {}
        try:
            result = self.refresher.refresh()
            summary["similar"] = result.to_dict()
            if self.health and not result.skipped:
                self.health.record_similar_refresh(result.to_dict())
        except Exception as e:
            log.exception("similar_refresh_failed")
            if self.health:
                self.health.record_similar_refresh(error=str(e))
            summary["similar_error"] = str(e)

        try:
            deleted = self.search_log.cleanup(self.config.search_log_retention_days)
            summary["search_logs_deleted"] = deleted
            if self.health:
                self.health.record_log_cleanup(deleted)
        except Exception as e:
            log.exception("search_log_cleanup_failed")
            summary["search_log_error"] = str(e)
        return summary

    def start(self):
        if self.config.similar_refresh_interval <= 0:
            log.info("scheduler_disabled", reason="similar_refresh_interval <= 0")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="maintenance")
        self._thread.start()
        log.info("scheduler_started", interval=self.config.similar_refresh_interval)

    def stop(self):
        self._stop.set()

    def _loop(self):
        while not self._stop.wait(self.config.similar_refresh_interval):
            self.run_once()
