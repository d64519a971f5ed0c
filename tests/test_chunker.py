"""Tests for the chunker."""
import pytest

from indexwell.chunker import (
    apply_overlap,
    chunk_content,
    extract_headings,
    heading_at,
    split_by_fixed_size,
    split_by_paragraphs,
    split_by_sentences,
)
from indexwell.content import estimate_tokens
from indexwell.typeconfig import ChunkingConfig


def _config(**kwargs):
    defaults = dict(
        target_size=50, overlap=0, split_by="sentence",
        min_size=10, max_size=100, use_headings_as_boundary=False,
    )
    defaults.update(kwargs)
    return ChunkingConfig(**defaults)


class TestSplitters:
    def test_sentences_ascii_and_cjk(self):
        assert split_by_sentences("Hi there. How are you? 好。好！") == [
            "Hi there.", "How are you?", "好。", "好！",
        ]

    def test_paragraphs(self):
        assert split_by_paragraphs("a\n\nb\n\n\nc\n") == ["a", "b", "c"]

    def test_fixed_size_with_overlap(self):
        assert split_by_fixed_size("abcdefghij", 4, 1) == ["abcd", "defg", "ghij", "j"]

    def test_fixed_size_overlap_not_smaller_than_window(self):
        assert split_by_fixed_size("abcdefghij", 4, 4) == ["abcd"]

    def test_overlap_prefixes_tail_words(self):
        assert apply_overlap(["one two three", "four"], 1) == ["one two three", "three four"]

    def test_no_overlap_for_single_chunk(self):
        assert apply_overlap(["only"], 10) == ["only"]


class TestHeadings:
    def test_extract_and_lookup(self):
        text = "# Intro\nhello\n## Usage\nworld"
        headings = extract_headings(text)
        assert [h for _, h in headings] == ["Intro", "Usage"]
        assert heading_at(headings, text.index("hello")) == "Intro"
        assert heading_at(headings, text.index("world")) == "Usage"

    def test_no_heading_before_position(self):
        assert heading_at([(10, "Later")], 0) is None


class TestChunkContent:
    @pytest.fixture
    def long_text(self):
        return " ".join(f"Sentence number {i} talks about green tea leaves." for i in range(60))

    def test_indices_contiguous_from_zero(self, long_text):
        result = chunk_content(long_text, _config())
        assert [c.index for c in result.chunks] == list(range(len(result.chunks)))
        assert result.metadata.total_chunks == len(result.chunks)
        assert result.metadata.strategy == "sentence"

    def test_sizes_respect_bounds(self, long_text):
        config = _config()
        chunks = chunk_content(long_text, config).chunks
        assert len(chunks) > 1
        for chunk in chunks[:-1]:
            assert estimate_tokens(chunk.text) >= config.min_size
        for chunk in chunks:
            assert chunk.token_count <= config.max_size

    def test_short_text_single_semantic_chunk(self):
        result = chunk_content("A small product note.", _config(split_by="semantic"))
        assert len(result.chunks) == 1
        assert result.chunks[0].index == 0
        assert result.chunks[0].text == "A small product note."

    def test_semantic_splits_on_headings(self):
        intro = "Intro words about the product range. " * 8
        usage = "Usage words about brewing the leaves. " * 8
        text = f"# Intro\n\n{intro.strip()}\n\n# Usage\n\n{usage.strip()}"
        config = _config(split_by="semantic", min_size=1, use_headings_as_boundary=True)
        chunks = chunk_content(text, config).chunks
        assert len(chunks) == 2
        assert chunks[0].heading == "Intro"
        assert chunks[1].heading == "Usage"
        assert chunks[1].char_start > chunks[0].char_start

    def test_fixed_windows(self):
        config = _config(split_by="fixed", overlap=10, min_size=1)
        chunks = chunk_content("x" * 1000, config).chunks
        assert len(chunks) == 7
        assert chunks[0].token_count == 50
        assert chunks[-1].token_count == 10

    def test_small_tail_merges_into_previous(self):
        config = _config(min_size=20)
        text = ("Tea leaves are rolled by hand and dried slowly in the sun. " * 4) + "Done."
        chunks = chunk_content(text, config).chunks
        assert chunks[-1].text.endswith("Done.")
        assert all(estimate_tokens(c.text) >= 20 for c in chunks)

    def test_empty_text(self):
        result = chunk_content("", _config())
        assert result.chunks == []
        assert result.metadata.average_tokens == 0
