"""Tests for the unchanged-content comparator."""
from indexwell.content import hash_content
from indexwell.idempotency import ChunkHash, ExistingChunk, is_unchanged, reusable_indices


def _fresh(*texts):
    return [ChunkHash.of(t) for t in texts]


def _existing(*texts, status="passed", judged=False):
    return [ExistingChunk(i, ChunkHash.of(t).hash, status, judged) for i, t in enumerate(texts)]


class TestIsUnchanged:
    def test_identical(self):
        assert is_unchanged(_existing("a", "b"), _fresh("a", "b")) is True

    def test_empty_vs_empty(self):
        assert is_unchanged([], []) is True

    def test_length_differs(self):
        assert is_unchanged(_existing("a"), _fresh("a", "b")) is False
        assert is_unchanged(_existing("a", "b"), _fresh("a")) is False

    def test_hash_differs(self):
        assert is_unchanged(_existing("a", "b"), _fresh("a", "c")) is False

    def test_not_passed(self):
        assert is_unchanged(_existing("a", status="incomplete"), _fresh("a")) is False

    def test_indices_must_be_contiguous(self):
        existing = [ExistingChunk(0, ChunkHash.of("a").hash, "passed"),
                    ExistingChunk(2, ChunkHash.of("b").hash, "passed")]
        assert is_unchanged(existing, _fresh("a", "b")) is False

    def test_order_matters(self):
        assert is_unchanged(_existing("a", "b"), _fresh("b", "a")) is False

    def test_deterministic(self):
        existing, fresh = _existing("x", "y"), _fresh("x", "y")
        assert all(is_unchanged(existing, fresh) for _ in range(5))


class TestChunkHash:
    def test_matches_content_hash(self):
        assert ChunkHash.of("tea").hash == hash_content("tea")

    def test_sha256(self):
        assert ChunkHash.of("tea").hash == ChunkHash.of("tea").hash
        assert len(ChunkHash.of("tea").hash) == 64


class TestReusable:
    def test_only_matching_judged_passed(self):
        existing = _existing("a", "b", "c", judged=True)
        existing[2] = ExistingChunk(2, existing[2].content_hash, "incomplete", judged=True)
        assert reusable_indices(existing, _fresh("a", "B", "c", "d")) == {0}

    def test_unjudged_chunks_not_reused(self):
        assert reusable_indices(_existing("a", "b"), _fresh("a", "b")) == set()
