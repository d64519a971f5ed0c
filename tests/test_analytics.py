"""Tests for the search log."""
import pytest

from indexwell.analytics import SearchLog


@pytest.fixture
def search_log(db, clock):
    return SearchLog(db, clock=clock)


class TestRecord:
    def test_low_quality_flag(self, search_log):
        assert search_log.record("green tea", "hybrid", 5, top_score=0.8) is False
        assert search_log.record("xyz", "hybrid", 0) is True
        assert search_log.record("tea", "semantic", 3, top_score=0.4) is True

    def test_fields_round_trip(self, search_log):
        search_log.record(
            "oolong", "hybrid", 2, top_score=0.9,
            weights={"semantic": 0.7, "keyword": 0.3}, threshold=0.5, limit=10,
            target_types=["product", "post"],
        )
        [entry] = search_log.list_logs()
        assert entry["weights"] == {"semantic": 0.7, "keyword": 0.3}
        assert entry["target_types"] == ["product", "post"]
        assert entry["limit"] == 10
        assert entry["is_low_quality"] is False
        assert entry["created_at"].endswith("+00:00")


class TestQueries:
    def test_list_newest_first(self, search_log, clock):
        search_log.record("first", "keyword", 1, top_score=0.9)
        clock.advance(1)
        search_log.record("second", "keyword", 0)
        assert [e["query"] for e in search_log.list_logs()] == ["second", "first"]
        assert [e["query"] for e in search_log.list_logs(low_quality_only=True)] == ["second"]

    def test_stats(self, search_log):
        search_log.record("a", "hybrid", 4, top_score=0.8)
        search_log.record("b", "keyword", 0)
        stats = search_log.stats()
        assert stats["total"] == 2
        assert stats["by_mode"] == {"hybrid": 1, "keyword": 1}
        assert stats["avg_results"] == 2.0
        assert stats["low_quality_rate"] == 0.5

    def test_stats_empty(self, search_log):
        assert search_log.stats() == {
            "total": 0, "by_mode": {}, "avg_results": 0.0, "avg_top_score": None, "low_quality_rate": 0.0,
        }

    def test_low_quality_grouped(self, search_log):
        search_log.record("Matcha Whisk", "hybrid", 0)
        search_log.record("  matcha whisk ", "hybrid", 0)
        search_log.record("teapot", "hybrid", 1, top_score=0.2)
        search_log.record("oolong", "hybrid", 5, top_score=0.9)
        queries = search_log.low_quality_queries()
        assert [q["query"] for q in queries] == ["matcha whisk", "teapot"]
        assert queries[0]["occurrences"] == 2

    def test_cleanup(self, search_log, clock):
        search_log.record("old", "hybrid", 1, top_score=0.9)
        clock.advance(31 * 86400)
        search_log.record("new", "hybrid", 1, top_score=0.9)
        assert search_log.cleanup(retention_days=30) == 1
        assert [e["query"] for e in search_log.list_logs()] == ["new"]
