"""Tests for MCP server tools (search, similar items, queue stats)."""
import asyncio

import pytest

from indexwell.chunker import Chunk
from indexwell.embedder import EmbeddingGenerator
from indexwell.quality import QualifiedChunk
from indexwell.search import HybridSearchEngine
from indexwell.server import create_mcp_server
from indexwell.similar import SimilarEdge, SimilarItemsStore


@pytest.fixture
def server_env(provider, store, queue, db, clock):
    generator = EmbeddingGenerator(provider, store)
    for content_type, content_id, text in [
        ("product", "oolong", "Roasted oolong tea with honey notes."),
        ("post", "brewing", "Brewing guide for oolong and green tea."),
    ]:
        generator.generate(content_type, content_id, [QualifiedChunk(Chunk(index=0, text=text), "passed", 0.9)])
    engine = HybridSearchEngine(provider, store)
    similar = SimilarItemsStore(db, clock=clock)
    mcp = create_mcp_server(engine, similar, queue)
    yield {"mcp": mcp, "engine": engine, "similar": similar, "queue": queue}
    engine.close()


def _call_tool(mcp, name, **kwargs):
    """Call an MCP tool by name, passing kwargs as arguments."""
    tool = None
    for t in mcp._tool_manager._tools.values():
        if t.name == name:
            tool = t
            break
    assert tool is not None, f"Tool {name} not found"
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(tool.run(kwargs))
    finally:
        loop.close()


class TestToolRegistry:
    def test_tools_registered(self, server_env):
        names = {t.name for t in server_env["mcp"]._tool_manager._tools.values()}
        assert names == {"search_content", "find_similar_items", "get_queue_stats"}


class TestSearchContent:
    def test_keyword_results(self, server_env):
        result = _call_tool(server_env["mcp"], "search_content", query="honey", mode="keyword")
        assert "Found 1 item(s) (keyword)" in result
        assert "**product:oolong**" in result

    def test_type_filter(self, server_env):
        result = _call_tool(server_env["mcp"], "search_content",
                            query="oolong", mode="keyword", target_types="post")
        assert "post:brewing" in result
        assert "product:oolong" not in result

    def test_no_results(self, server_env):
        result = _call_tool(server_env["mcp"], "search_content", query="kettle", mode="keyword")
        assert "No matching content found" in result

    def test_unknown_mode(self, server_env):
        result = _call_tool(server_env["mcp"], "search_content", query="tea", mode="fuzzy")
        assert "Unknown mode" in result

    def test_unknown_type(self, server_env):
        result = _call_tool(server_env["mcp"], "search_content", query="tea", target_types="video")
        assert "Unknown content type" in result


class TestFindSimilar:
    def test_lists_edges(self, server_env):
        server_env["similar"].replace_edges("product", "oolong", [
            SimilarEdge("product", "sencha", 0.91, 1),
            SimilarEdge("product", "puerh", 0.82, 2),
        ])
        result = _call_tool(server_env["mcp"], "find_similar_items",
                            content_type="product", content_id="oolong")
        assert "1. product:sencha (similarity 0.91)" in result
        assert "2. product:puerh (similarity 0.82)" in result

    def test_no_edges(self, server_env):
        result = _call_tool(server_env["mcp"], "find_similar_items",
                            content_type="post", content_id="brewing")
        assert "No similar items stored" in result

    def test_unknown_type(self, server_env):
        result = _call_tool(server_env["mcp"], "find_similar_items",
                            content_type="video", content_id="1")
        assert "Unknown content type" in result


class TestQueueStats:
    def test_counts(self, server_env):
        queue = server_env["queue"]
        queue.enqueue_batch([("product", "1"), ("product", "2")])
        queue.claim(1)
        result = _call_tool(server_env["mcp"], "get_queue_stats")
        assert "- Pending: 1" in result
        assert "- Processing: 1" in result
        assert "avg time in queue: n/a" in result
