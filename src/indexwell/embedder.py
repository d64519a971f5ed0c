# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Qualified chunks -> vectors -> chunk store.

All vectors are computed before the first write: a provider failure leaves
the stored chunks of the item exactly as they were.
"""
from .content import ContentType
from .idempotency import ChunkHash
from .log import get_logger
from .providers import EmbeddingProvider, EmbeddingRequest
from .quality import QualifiedChunk
from .store import ChunkRecord, ChunkStore

log = get_logger(__name__)


class EmbeddingGenerator:
    def __init__(self, provider: EmbeddingProvider, store: ChunkStore):
        self.provider = provider
        self.store = store

    def generate(self, content_type: ContentType, content_id: str, chunks: list[QualifiedChunk]) -> int:
        """Embed and store the chunks of one item; returns stale chunks removed."""
        content_type = ContentType(content_type).value
        total = len(chunks)
        requests = [
            EmbeddingRequest(
                text=qc.text,
                content_type=content_type,
                content_id=content_id,
                chunk_index=qc.index,
                chunk_total=total,
            )
            for qc in chunks
        ]
        # raises ProviderError; nothing has been written yet
        vectors = self.provider.embed_many(requests)

        records = [
            ChunkRecord(
                index=qc.index,
                text=qc.text,
                embedding=vector,
                content_hash=ChunkHash.of(qc.text).hash,
                quality_status=qc.status,
                quality_score=qc.score,
                heading=qc.chunk.heading,
                judged=qc.judged,
                judge_reason=qc.reason,
            )
            for qc, vector in zip(chunks, vectors)
        ]
        self.store.upsert_chunks(content_type, content_id, records)
        stale = self.store.delete_stale(content_type, content_id, total)
        log.info(
            "chunks_embedded",
            content_type=content_type,
            content_id=content_id,
            chunks=total,
            stale_deleted=stale,
        )
        return stale
