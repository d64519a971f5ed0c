# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
MCP Server factory – creates a FastMCP instance with tools that share
the search engine, similar-items cache and queue with the web API.

Tools:
  - search_content: Hybrid / semantic / keyword search over indexed items
  - find_similar_items: Precomputed similar items of one item
  - get_queue_stats: Indexing queue status and throughput
"""
from mcp.server.fastmcp import FastMCP

from .content import SEARCHABLE_TYPES, ContentType
from .queue import EmbeddingQueue
from .search import SEARCH_MODES, HybridSearchEngine
from .similar import SimilarItemsStore


def _parse_types(target_types: str) -> list[str] | None:
    if not target_types.strip():
        return None
    return [ContentType(t.strip()).value for t in target_types.split(",") if t.strip()]


def create_mcp_server(
    engine: HybridSearchEngine,
    similar: SimilarItemsStore,
    queue: EmbeddingQueue,
) -> FastMCP:
    """Factory: returns a configured FastMCP server that shares state with web.py."""

    mcp = FastMCP(
        "indexwell",
        instructions=(
            "Search over products, posts and gallery items.\n\n"
            "1. search_content() with mode 'hybrid' unless you need exact keywords\n"
            "2. find_similar_items() to recommend related items for a result\n"
            "3. get_queue_stats() to check whether recent edits are indexed yet"
        ),
    )

    @mcp.tool()
    def search_content(
        query: str,
        mode: str = "hybrid",
        target_types: str = "",
        limit: int = 10,
    ) -> str:
        """Search indexed content.

        Args:
            query: What you are looking for (natural language or keywords)
            mode: "hybrid" (default), "semantic" or "keyword"
            target_types: Comma-separated subset of "product,post,gallery_item"
                          (empty = all of them)
            limit: Maximum number of items (default: 10)

        Returns:
            Ranked items with type, id, score and a text snippet
        """
        if mode not in SEARCH_MODES:
            return f"Unknown mode '{mode}'. Use one of: {', '.join(SEARCH_MODES)}."
        try:
            types = _parse_types(target_types)
        except ValueError:
            valid = ", ".join(t.value for t in SEARCHABLE_TYPES)
            return f"Unknown content type in '{target_types}'. Use: {valid}."

        results = engine.search(query, mode=mode, target_types=types, limit=limit)
        if not results:
            return "No matching content found. Try other keywords or mode='keyword'."

        output = [f"Found {len(results)} item(s) ({mode})\n"]
        for r in results:
            parts = [f"score {r.score:.2f}"]
            if r.semantic_score is not None:
                parts.append(f"semantic {r.semantic_score:.2f}")
            if r.keyword_score is not None:
                parts.append(f"keyword {r.keyword_score:.2f}")
            output.append(
                f"**{r.content_type}:{r.content_id}** ({', '.join(parts)})\n\n"
                f"{r.snippet}\n\n---"
            )
        return "\n".join(output)

    @mcp.tool()
    def find_similar_items(content_type: str, content_id: str, limit: int = 4) -> str:
        """Items similar to the given one (precomputed, same content type).

        Args:
            content_type: "product", "post" or "gallery_item"
            content_id: Id of the source item
            limit: Number of items, 1-10 (default: 4)
        """
        try:
            ct = ContentType(content_type)
        except ValueError:
            return f"Unknown content type '{content_type}'."
        items = similar.get_similar(ct.value, content_id, limit)
        if not items:
            return (
                f"No similar items stored for {ct.value}:{content_id}. "
                "The item may not be indexed yet or has no close neighbours."
            )
        lines = [f"Similar to {ct.value}:{content_id}\n"]
        for item in items:
            lines.append(
                f"{item['rank']}. {item['target_type']}:{item['target_id']} "
                f"(similarity {item['similarity_score']:.2f})"
            )
        return "\n".join(lines)

    @mcp.tool()
    def get_queue_stats() -> str:
        """Indexing queue: items per status and recent throughput."""
        stats = queue.stats()
        tp = queue.throughput()
        avg = f"{tp['avg_processing_time_ms']} ms" if tp["avg_processing_time_ms"] is not None else "n/a"
        return (
            "## Indexing queue\n\n"
            f"- Pending: {stats['pending']}\n"
            f"- Processing: {stats['processing']}\n"
            f"- Completed: {stats['completed']}\n"
            f"- Failed: {stats['failed']}\n"
            f"- Total: {stats['total']}\n\n"
            f"Completed last hour: {tp['last_1h']}, last 24h: {tp['last_24h']}, "
            f"avg time in queue: {avg}"
        )

    return mcp
