# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""Decides whether an item's stored chunks already match freshly computed ones."""
from dataclasses import dataclass

from .content import hash_content


@dataclass(frozen=True)
class ExistingChunk:
    index: int
    content_hash: str
    quality_status: str
    judged: bool = False


@dataclass(frozen=True)
class ChunkHash:
    text: str
    hash: str

    @classmethod
    def of(cls, text: str) -> "ChunkHash":
        return cls(text=text, hash=hash_content(text))


def is_unchanged(existing: list[ExistingChunk], fresh: list[ChunkHash]) -> bool:
    """True when re-embedding would produce exactly what is stored.

    Stored indices must be exactly 0..N-1, every hash must match the fresh
    chunk at that index and every stored chunk must have passed the gate
    (an 'incomplete' chunk is re-judged on the next pass).
    """
    if len(existing) != len(fresh):
        return False
    by_index = {c.index: c for c in existing}
    if sorted(by_index) != list(range(len(fresh))):
        return False
    for i, chunk in enumerate(fresh):
        stored = by_index[i]
        if stored.content_hash != chunk.hash or stored.quality_status != "passed":
            return False
    return True


def reusable_indices(existing: list[ExistingChunk], fresh: list[ChunkHash]) -> set[int]:
    """Indices whose text is unchanged and already passed by the judge.

    These keep their verdict without a judge call. Chunks that were passed
    without being sampled stay eligible for sampling on the next pass.
    """
    stored = {c.index: c for c in existing if c.quality_status == "passed" and c.judged}
    return {
        i for i, chunk in enumerate(fresh)
        if i in stored and stored[i].content_hash == chunk.hash
    }
