"""Tests for the Chroma + BM25 chunk store."""
from indexwell.idempotency import ChunkHash
from indexwell.store import ChunkRecord, chunk_id


def _records(embedding_fn, texts, status="passed", judged=False, reason=None):
    vectors = embedding_fn(texts)
    return [
        ChunkRecord(
            index=i,
            text=t,
            embedding=v,
            content_hash=ChunkHash.of(t).hash,
            quality_status=status,
            quality_score=0.8,
            judged=judged,
            judge_reason=reason,
        )
        for i, (t, v) in enumerate(zip(texts, vectors))
    ]


class TestWrites:
    def test_chunk_id_format(self):
        assert chunk_id("product", "42", 3) == "product:42:3"

    def test_upsert_and_existing(self, store, embedding_fn):
        store.upsert_chunks("product", "1", _records(embedding_fn, ["green tea", "black tea"]))
        existing = store.existing_chunks("product", "1")
        assert [c.index for c in existing] == [0, 1]
        assert existing[0].content_hash == ChunkHash.of("green tea").hash
        assert existing[1].quality_status == "passed"

    def test_delete_stale(self, store, embedding_fn):
        store.upsert_chunks("product", "1", _records(embedding_fn, ["a one", "b two", "c three"]))
        assert store.delete_stale("product", "1", 1) == 2
        assert [c.index for c in store.existing_chunks("product", "1")] == [0]

    def test_delete_item_leaves_other_items(self, store, embedding_fn):
        store.upsert_chunks("product", "1", _records(embedding_fn, ["a one"]))
        store.upsert_chunks("product", "2", _records(embedding_fn, ["b two"]))
        assert store.delete_item("product", "1") == 1
        assert store.existing_chunks("product", "1") == []
        assert len(store.existing_chunks("product", "2")) == 1


class TestReads:
    def test_get_vector(self, store, embedding_fn):
        store.upsert_chunks("post", "7", _records(embedding_fn, ["oolong tea"]))
        vector = store.get_vector("post", "7")
        assert vector is not None
        assert len(vector) == len(embedding_fn(["x"])[0])
        assert store.get_vector("post", "missing") is None

    def test_indexed_ids_and_sources(self, store, embedding_fn):
        store.upsert_chunks("post", "1", _records(embedding_fn, ["alpha"]))
        store.upsert_chunks("post", "2", _records(embedding_fn, ["beta"], status="incomplete"))
        store.upsert_chunks("product", "3", _records(embedding_fn, ["gamma"]))
        assert store.indexed_ids("post") == {"1", "2"}
        assert store.item_count("post") == 2
        assert store.sources("post") == ["1"]


class TestSearch:
    def test_vector_search_ranks_by_similarity(self, store, embedding_fn):
        store.upsert_chunks("product", "tea", _records(embedding_fn, ["green tea leaves"]))
        store.upsert_chunks("product", "mug", _records(embedding_fn, ["ceramic coffee mug"]))
        [vector] = embedding_fn(["green tea"])
        hits = store.vector_search(vector, ["product"], 5, min_similarity=-1.0)
        assert hits[0].content_id == "tea"
        assert hits[0].score > hits[-1].score

    def test_vector_search_filters(self, store, embedding_fn):
        store.upsert_chunks("product", "1", _records(embedding_fn, ["green tea"]))
        store.upsert_chunks("post", "2", _records(embedding_fn, ["green tea"]))
        store.upsert_chunks("product", "3", _records(embedding_fn, ["green tea"], status="incomplete"))
        [vector] = embedding_fn(["green tea"])
        hits = store.vector_search(vector, ["product"], 10)
        assert [(h.content_type, h.content_id) for h in hits] == [("product", "1")]
        assert hits[0].score > 0.99

    def test_vector_search_min_similarity(self, store, embedding_fn):
        store.upsert_chunks("product", "1", _records(embedding_fn, ["ceramic coffee mug"]))
        [vector] = embedding_fn(["green tea"])
        assert store.vector_search(vector, ["product"], 5, min_similarity=0.9) == []

    def test_vector_search_empty_store(self, store, embedding_fn):
        [vector] = embedding_fn(["anything"])
        assert store.vector_search(vector, None, 5) == []

    def test_keyword_search(self, store, embedding_fn):
        store.upsert_chunks("product", "1", _records(embedding_fn, ["jasmine green tea from fujian"]))
        store.upsert_chunks("product", "2", _records(embedding_fn, ["ceramic coffee mug"]))
        hits = store.keyword_search("jasmine", ["product"], 5)
        assert [h.content_id for h in hits] == ["1"]
        assert hits[0].score > 0

    def test_keyword_index_follows_writes(self, store, embedding_fn):
        store.upsert_chunks("post", "1", _records(embedding_fn, ["matcha whisk guide"]))
        assert len(store.keyword_search("matcha", None, 5)) == 1
        store.delete_item("post", "1")
        assert store.keyword_search("matcha", None, 5) == []

    def test_keyword_search_excludes_types_and_unpassed(self, store, embedding_fn):
        store.upsert_chunks("post", "1", _records(embedding_fn, ["matcha whisk guide"]))
        store.upsert_chunks("product", "2", _records(embedding_fn, ["matcha tin"], status="failed"))
        hits = store.keyword_search("matcha", ["product"], 5)
        assert hits == []

    def test_keyword_search_finds_rare_type_in_skewed_corpus(self, store, embedding_fn):
        for i in range(20):
            store.upsert_chunks("product", str(i), _records(embedding_fn, [f"green tea blend number {i} tea"]))
        store.upsert_chunks("post", "p1", _records(embedding_fn, ["a short note about tea"]))
        hits = store.keyword_search("tea", ["post"], 2)
        assert [(h.content_type, h.content_id) for h in hits] == [("post", "p1")]

    def test_keyword_search_respects_k_after_filtering(self, store, embedding_fn):
        for i in range(6):
            store.upsert_chunks("product", str(i), _records(embedding_fn, [f"oolong tea {i}"]))
        hits = store.keyword_search("oolong", ["product"], 3)
        assert len(hits) == 3
        assert hits[0].score >= hits[-1].score

    def test_write_during_rebuild_keeps_index_dirty(self, store, embedding_fn):
        store.upsert_chunks("post", "1", _records(embedding_fn, ["sencha leaves"]))
        load = store._load_bm25_corpus
        calls = []

        def load_then_write():
            entries = load()
            if not calls:
                calls.append(1)
                store.upsert_chunks("post", "2", _records(embedding_fn, ["matcha powder whisk"]))
            return entries

        store._load_bm25_corpus = load_then_write
        assert [h.content_id for h in store.keyword_search("sencha", None, 5)] == ["1"]
        assert store._bm25_dirty is True
        hits = store.keyword_search("matcha", None, 5)
        assert [h.content_id for h in hits] == ["2"]
        assert store._bm25_dirty is False

    def test_keyword_blank_query(self, store):
        assert store.keyword_search("   ", None, 5) == []


class TestAdminViews:
    def test_failed_samples_and_metrics(self, store, embedding_fn):
        store.upsert_chunks("product", "1", _records(embedding_fn, ["good text"]))
        store.upsert_chunks("product", "2", _records(embedding_fn, ["bad text"], status="failed"))
        samples = store.failed_samples()
        assert [s["content_id"] for s in samples] == ["2"]
        metrics = store.quality_metrics()
        assert metrics["product"]["passed"] == 1
        assert metrics["product"]["failed"] == 1
        assert metrics["product"]["pass_rate"] == 0.5
        assert store.stats()["chunks"] == 2

    def test_judge_verdict_kept_in_metadata(self, store, embedding_fn):
        store.upsert_chunks(
            "product", "1", _records(embedding_fn, ["thin text"], status="failed", judged=True, reason="too vague")
        )
        store.upsert_chunks("product", "2", _records(embedding_fn, ["good text"]))
        [sample] = store.failed_samples()
        assert sample["judged"] is True
        assert sample["judge_reason"] == "too vague"
        assert sample["quality_check_at"]
        assert store.existing_chunks("product", "1")[0].judged is True
        assert store.existing_chunks("product", "2")[0].judged is False
        metrics = store.quality_metrics()
        assert metrics["product"]["with_quality_score"] == 1
        assert metrics["product"]["total"] == 2

    def test_unjudged_failure_has_no_check_time(self, store, embedding_fn):
        store.upsert_chunks("product", "1", _records(embedding_fn, ["x"], status="failed", reason="too_short"))
        [sample] = store.failed_samples()
        assert sample["judged"] is False
        assert sample["judge_reason"] == "too_short"
        assert sample["quality_check_at"] is None
