# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Prepared text -> ordered chunks.

Split strategies:
- "semantic":  whole text if it fits max_size, else split at #..### headings
               (or buffered paragraphs), long sections fall back to sentences
- "paragraph": split at blank lines
- "sentence":  split after 。！？ or after .!? followed by whitespace
- "fixed":     fixed character windows (target_size * 4 chars) with overlap

After splitting, overlap words from the previous chunk are prepended and
sizes are normalized (small pieces merged, oversized ones cut). Indices are
0-based and contiguous; only the last chunk may fall below min_size.
"""
import math
import re
from dataclasses import dataclass, field
from typing import Optional

from .content import estimate_tokens
from .typeconfig import ChunkingConfig

CHARS_PER_TOKEN = 4


@dataclass
class Chunk:
    index: int
    text: str
    char_start: int = 0
    char_end: int = 0
    token_count: int = 0
    heading: Optional[str] = None


@dataclass
class ChunkingMetadata:
    total_chunks: int
    average_tokens: int
    strategy: str
    original_length: int


@dataclass
class ChunkResult:
    chunks: list[Chunk] = field(default_factory=list)
    metadata: Optional[ChunkingMetadata] = None


# ── Basic splitters ──────────────────────────────────

def split_by_sentences(text: str) -> list[str]:
    parts = re.split(r"(?<=[。！？])|(?<=[.!?])\s+", text)
    return [p.strip() for p in parts if p and p.strip()]


def split_by_paragraphs(text: str) -> list[str]:
    return [p.strip() for p in re.split(r"\n\n+", text) if p.strip()]


def split_by_fixed_size(text: str, chunk_size: int, overlap: int) -> list[str]:
    chunks: list[str] = []
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        chunks.append(text[start:end])
        step = chunk_size - overlap
        if step <= 0:
            break
        start += step
    return chunks


# ── Headings ─────────────────────────────────────────

def extract_headings(text: str) -> list[tuple[int, str]]:
    """(position, heading text) for every markdown heading."""
    return [
        (m.start(), m.group(2).strip())
        for m in re.finditer(r"^(#{1,6})\s+(.+)$", text, flags=re.M)
    ]


def heading_at(headings: list[tuple[int, str]], position: int) -> Optional[str]:
    for pos, heading in reversed(headings):
        if pos <= position:
            return heading
    return None


# ── Semantic splitting ───────────────────────────────

def _split_long_section(section: str, config: ChunkingConfig) -> list[str]:
    chunks: list[str] = []
    buffer = ""
    for sentence in split_by_sentences(section):
        combined = f"{buffer} {sentence}" if buffer else sentence
        if estimate_tokens(combined) <= config.target_size:
            buffer = combined
            continue
        if buffer:
            chunks.append(buffer.strip())
        if estimate_tokens(sentence) > config.target_size:
            chunks.extend(split_by_fixed_size(
                sentence,
                config.target_size * CHARS_PER_TOKEN,
                config.overlap * CHARS_PER_TOKEN,
            ))
            buffer = ""
        else:
            buffer = sentence
    if buffer:
        chunks.append(buffer.strip())
    return [c for c in chunks if c]


def split_by_semantic(text: str, config: ChunkingConfig) -> list[str]:
    if estimate_tokens(text) <= config.max_size:
        return [text]

    chunks: list[str] = []
    if config.use_headings_as_boundary:
        sections = [s for s in re.split(r"(?=^#{1,3}\s)", text, flags=re.M) if s]
        for section in sections:
            if estimate_tokens(section) <= config.max_size:
                chunks.append(section.strip())
            else:
                chunks.extend(_split_long_section(section, config))
    else:
        buffer = ""
        for para in split_by_paragraphs(text):
            combined = f"{buffer}\n\n{para}" if buffer else para
            if estimate_tokens(combined) <= config.target_size:
                buffer = combined
                continue
            if buffer:
                chunks.append(buffer.strip())
            if estimate_tokens(para) > config.max_size:
                chunks.extend(_split_long_section(para, config))
                buffer = ""
            else:
                buffer = para
        if buffer:
            chunks.append(buffer.strip())

    return [c for c in chunks if c]


# ── Overlap + size normalization ─────────────────────

def apply_overlap(chunks: list[str], overlap_tokens: int) -> list[str]:
    """Prefix every chunk after the first with the tail words of its predecessor."""
    if overlap_tokens <= 0 or len(chunks) <= 1:
        return chunks
    word_count = math.ceil(overlap_tokens / 0.25 / CHARS_PER_TOKEN)
    result = [chunks[0]]
    for prev, current in zip(chunks, chunks[1:]):
        tail = " ".join(prev.split()[-word_count:])
        result.append(f"{tail} {current}".strip())
    return result


def normalize_chunk_sizes(segments: list[str], config: ChunkingConfig) -> list[str]:
    result: list[str] = []
    buffer = ""

    for segment in segments:
        segment_tokens = estimate_tokens(segment)
        buffer_tokens = estimate_tokens(buffer)
        combined = buffer_tokens + segment_tokens if buffer else segment_tokens

        if combined <= config.max_size:
            buffer = f"{buffer}\n\n{segment}" if buffer else segment
            if combined >= config.target_size:
                result.append(buffer.strip())
                buffer = ""
            continue

        if buffer and buffer_tokens >= config.min_size:
            result.append(buffer.strip())
        elif buffer:
            # too small to stand alone, glue it to the segment
            result.append(f"{buffer} {segment}".strip())
            buffer = ""
            continue

        if segment_tokens > config.max_size:
            pieces = split_by_fixed_size(
                segment,
                config.max_size * CHARS_PER_TOKEN,
                config.overlap * CHARS_PER_TOKEN,
            )
            result.extend(p.strip() for p in pieces if p.strip())
            buffer = ""
        else:
            buffer = segment

    if buffer:
        if estimate_tokens(buffer) >= config.min_size or not result:
            result.append(buffer.strip())
        else:
            result[-1] = f"{result[-1]}\n\n{buffer}".strip()

    return _merge_undersized([r for r in result if r], config.min_size)


def _merge_undersized(chunks: list[str], min_size: int) -> list[str]:
    merged: list[str] = []
    carry = ""
    for chunk in chunks:
        text = f"{carry}\n\n{chunk}" if carry else chunk
        if estimate_tokens(text) < min_size:
            carry = text
            continue
        merged.append(text)
        carry = ""
    if carry:
        if merged:
            merged[-1] = f"{merged[-1]}\n\n{carry}"
        else:
            merged.append(carry)
    return merged


# ── Main entry ───────────────────────────────────────

def _segments(text: str, config: ChunkingConfig) -> list[str]:
    if config.split_by == "sentence":
        return split_by_sentences(text)
    if config.split_by == "paragraph":
        return split_by_paragraphs(text)
    if config.split_by == "semantic":
        return split_by_semantic(text, config)
    return split_by_fixed_size(
        text,
        config.target_size * CHARS_PER_TOKEN,
        config.overlap * CHARS_PER_TOKEN,
    )


def chunk_content(text: str, config: ChunkingConfig) -> ChunkResult:
    segments = _segments(text, config)
    if config.split_by != "fixed" and config.overlap > 0:
        segments = apply_overlap(segments, config.overlap)
    segments = normalize_chunk_sizes(segments, config)

    headings = extract_headings(text) if config.use_headings_as_boundary else []
    chunks: list[Chunk] = []
    offset = 0
    for i, segment in enumerate(segments):
        start = text.find(segment, offset)
        end = start + len(segment) if start >= 0 else offset + len(segment)
        start = max(0, start)
        chunks.append(Chunk(
            index=i,
            text=segment,
            char_start=start,
            char_end=end,
            token_count=estimate_tokens(segment),
            heading=heading_at(headings, start) if headings else None,
        ))
        offset = end

    total_tokens = sum(c.token_count for c in chunks)
    return ChunkResult(
        chunks=chunks,
        metadata=ChunkingMetadata(
            total_chunks=len(chunks),
            average_tokens=round(total_tokens / len(chunks)) if chunks else 0,
            strategy=config.split_by,
            original_length=len(text),
        ),
    )
