"""Tests for the maintenance scheduler."""
from unittest.mock import MagicMock

from indexwell.scheduler import MaintenanceScheduler
from indexwell.similar import RefreshResult


def _scheduler(config, health, refresher=None, search_log=None):
    refresher = refresher or MagicMock()
    if not isinstance(refresher.refresh.return_value, RefreshResult):
        refresher.refresh.return_value = RefreshResult(processed=2, edges=5)
    search_log = search_log or MagicMock()
    search_log.cleanup.return_value = 3
    return MaintenanceScheduler(config, refresher, search_log, health)


class TestRunOnce:
    def test_refresh_and_cleanup(self, config, health):
        scheduler = _scheduler(config, health)
        summary = scheduler.run_once()
        assert summary["similar"]["processed"] == 2
        assert summary["search_logs_deleted"] == 3
        scheduler.search_log.cleanup.assert_called_once_with(config.search_log_retention_days)
        assert health.status["last_similar_refresh"]["edges"] == 5
        assert health.status["last_log_cleanup_deleted"] == 3

    def test_skipped_refresh_not_recorded(self, config, health):
        refresher = MagicMock()
        refresher.refresh.return_value = RefreshResult(skipped=True)
        _scheduler(config, health, refresher=refresher).run_once()
        assert health.status["last_similar_refresh_at"] is None

    def test_refresh_error_does_not_stop_cleanup(self, config, health):
        refresher = MagicMock()
        refresher.refresh.side_effect = RuntimeError("vector store unavailable")
        scheduler = _scheduler(config, health, refresher=refresher)
        summary = scheduler.run_once()
        assert summary["similar_error"] == "vector store unavailable"
        assert summary["search_logs_deleted"] == 3
        assert health.status["last_similar_refresh_error"] == "vector store unavailable"


class TestStart:
    def test_disabled_interval(self, config, health):
        config.similar_refresh_interval = 0
        scheduler = _scheduler(config, health)
        scheduler.start()
        assert scheduler._thread is None

    def test_start_and_stop(self, config, health):
        scheduler = _scheduler(config, health)
        scheduler.start()
        assert scheduler._thread.is_alive()
        scheduler.stop()
        scheduler._thread.join(timeout=5)
        assert not scheduler._thread.is_alive()
