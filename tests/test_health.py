"""Tests for the HealthTracker."""
import threading


class TestRecordSearch:
    def test_hit_increments(self, health):
        health.record_search("hybrid", True)
        s = health.status
        assert s["searches_total"] == 1
        assert s["searches_hits"] == 1
        assert s["searches_misses"] == 0
        assert s["searches_by_mode"]["hybrid"] == 1

    def test_miss_increments(self, health):
        health.record_search("keyword", False)
        s = health.status
        assert s["searches_hits"] == 0
        assert s["searches_misses"] == 1

    def test_unknown_mode_not_tracked_per_mode(self, health):
        health.record_search("fuzzy", True)
        s = health.status
        assert s["searches_total"] == 1
        assert "fuzzy" not in s["searches_by_mode"]

    def test_last_search_at_set(self, health):
        assert health.status["last_search_at"] is None
        health.record_search("semantic", True)
        assert health.status["last_search_at"] is not None


class TestWorkerState:
    def test_item_outcomes(self, health):
        for outcome in ("completed", "completed", "skipped", "failed", "superseded", "bogus"):
            health.record_item(outcome)
        assert health.status["items"] == {"completed": 2, "skipped": 1, "failed": 1, "superseded": 1}

    def test_batch_error_makes_unhealthy(self, health):
        assert health.is_healthy is True
        health.record_batch(0, error="database is locked")
        assert health.is_healthy is False
        assert health.status["last_worker_error"] == "database is locked"

    def test_successful_batch_recovers(self, health):
        health.record_batch(0, error="boom")
        health.record_batch(5)
        assert health.is_healthy is True
        assert health.status["last_batch_size"] == 5


class TestMaintenance:
    def test_similar_refresh(self, health):
        health.record_similar_refresh({"processed": 3})
        s = health.status
        assert s["last_similar_refresh"] == {"processed": 3}
        assert s["last_similar_refresh_error"] is None
        assert s["last_similar_refresh_at"] is not None

    def test_similar_refresh_error(self, health):
        health.record_similar_refresh(error="boom")
        assert health.status["last_similar_refresh_error"] == "boom"

    def test_log_cleanup(self, health):
        health.record_log_cleanup(12)
        assert health.status["last_log_cleanup_deleted"] == 12


class TestStatusCopy:
    def test_status_is_snapshot(self, health):
        snapshot = health.status
        snapshot["items"]["completed"] = 99
        snapshot["searches_by_mode"]["hybrid"] = 99
        assert health.status["items"]["completed"] == 0
        assert health.status["searches_by_mode"]["hybrid"] == 0


class TestThreadSafety:
    def test_concurrent_recording(self, health):
        def work():
            for _ in range(200):
                health.record_search("hybrid", True)
                health.record_item("completed")

        threads = [threading.Thread(target=work) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert health.status["searches_total"] == 800
        assert health.status["items"]["completed"] == 800
