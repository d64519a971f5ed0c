# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Chunk quality gate – two stages.

1. Heuristic gate (pure): validity (too_short / too_long / too_noisy /
   no_content), near-duplicate detection and a 0..1 score built from
   length, noise ratio and word density. Invalid or duplicate chunks are
   'failed' and never embedded.
2. Quality judge (external, sampled): a subset of new or changed chunks is
   sent to the judge, whose verdict is stored per chunk. Unsampled chunks
   are stored 'passed'. A judge error stores 'incomplete' so the chunk is
   picked up again on the next pass instead of blocking the item.

The sampling algorithm is a policy object (random, every-Nth, always, never).
"""
import random
import re
import threading
from dataclasses import dataclass, field
from typing import Optional

from .chunker import Chunk
from .content import ContentContext
from .errors import ProviderError
from .log import get_logger
from .typeconfig import QualityGateConfig

log = get_logger(__name__)

QUALITY_STATUSES = ("passed", "incomplete", "failed")

DUPLICATE_SIMILARITY = 0.95
DUPLICATE_WINDOW = 5

JUDGE_PASS_SCORE = 0.7
JUDGE_INCOMPLETE_SCORE = 0.5


@dataclass
class QualifiedChunk:
    chunk: Chunk
    status: str
    score: float
    reason: Optional[str] = None
    metrics: dict = field(default_factory=dict)
    judged: bool = False

    @property
    def index(self) -> int:
        return self.chunk.index

    @property
    def text(self) -> str:
        return self.chunk.text


# ── Heuristics ───────────────────────────────────────

def noise_ratio(text: str) -> float:
    """Share of characters that are neither letters nor digits."""
    if not text:
        return 1.0
    noise = sum(1 for ch in text if not (ch.isalpha() or ch.isnumeric()))
    return noise / len(text)


def count_words(text: str) -> int:
    """ASCII words plus CJK characters (each counts as a word)."""
    return len(re.findall(r"[a-zA-Z]+", text)) + len(re.findall(r"[一-鿿]", text))


def is_punctuation_only(text: str) -> bool:
    return not any(ch.isalpha() or ch.isnumeric() for ch in text)


def check_validity(text: str, config: QualityGateConfig) -> tuple[bool, Optional[str], dict]:
    metrics = {
        "char_count": len(text),
        "word_count": count_words(text),
        "noise_ratio": noise_ratio(text),
    }
    if metrics["char_count"] < config.min_length:
        return False, "too_short", metrics
    if metrics["char_count"] > config.max_length:
        return False, "too_long", metrics
    if metrics["noise_ratio"] > config.max_noise_ratio:
        return False, "too_noisy", metrics
    if is_punctuation_only(text) or metrics["word_count"] == 0:
        return False, "no_content", metrics
    return True, None, metrics


def quality_score(text: str, config: QualityGateConfig) -> float:
    chars = len(text)
    length_score = min(0.4, (chars / 500) * 0.4)
    if config.max_noise_ratio > 0:
        noise_score = max(0.0, 0.3 * (1 - noise_ratio(text) / config.max_noise_ratio))
    else:
        noise_score = 0.0
    density = count_words(text) / max(1, chars)
    density_score = min(0.3, density * 3)
    return min(1.0, length_score + noise_score + density_score)


def _normalized(text: str) -> str:
    return re.sub(r"\s+", " ", text.lower()).strip()


def jaccard_similarity(a: str, b: str) -> float:
    words_a = set(a.lower().split())
    words_b = set(b.lower().split())
    if not words_a and not words_b:
        return 1.0
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def detect_duplicates(texts: list[str]) -> set[int]:
    """Indices of later occurrences of (near-)duplicate chunks."""
    duplicates: set[int] = set()
    seen: set[str] = set()
    for i, text in enumerate(texts):
        key = _normalized(text)
        if key in seen:
            duplicates.add(i)
            continue
        seen.add(key)
        for j in range(max(0, i - DUPLICATE_WINDOW), i):
            if j in duplicates:
                continue
            if jaccard_similarity(text, texts[j]) >= DUPLICATE_SIMILARITY:
                duplicates.add(i)
                break
    return duplicates


def qualify_chunks(chunks: list[Chunk], config: QualityGateConfig) -> list[QualifiedChunk]:
    duplicates = detect_duplicates([c.text for c in chunks])
    qualified = []
    for i, chunk in enumerate(chunks):
        if i in duplicates:
            qualified.append(QualifiedChunk(chunk, "failed", 0.0, reason="duplicate"))
            continue
        valid, reason, metrics = check_validity(chunk.text, config)
        if not valid:
            qualified.append(QualifiedChunk(chunk, "failed", 0.0, reason=reason, metrics=metrics))
            continue
        score = quality_score(chunk.text, config)
        status = "passed" if score >= config.min_quality_score else "incomplete"
        qualified.append(QualifiedChunk(chunk, status, score, metrics=metrics))
    return qualified


def quality_summary(chunks: list[QualifiedChunk]) -> dict:
    return {
        "total": len(chunks),
        "passed": sum(1 for c in chunks if c.status == "passed"),
        "incomplete": sum(1 for c in chunks if c.status == "incomplete"),
        "failed": sum(1 for c in chunks if c.status == "failed"),
    }


# ── Sampling policies ────────────────────────────────

class SamplingPolicy:
    """Decides whether a chunk goes to the quality judge."""

    def should_sample(self, population: int, rate: float) -> bool:
        raise NotImplementedError


class RandomSampler(SamplingPolicy):
    """Uniform random at the per-type rate; everything while the type is small."""

    def __init__(self, min_population: int = 50, rng: random.Random | None = None):
        self.min_population = min_population
        self._rng = rng or random.Random()
        self._lock = threading.Lock()

    def should_sample(self, population: int, rate: float) -> bool:
        if population < self.min_population:
            return True
        with self._lock:
            return self._rng.random() < rate


class EveryNthSampler(SamplingPolicy):
    def __init__(self, n: int = 5):
        self.n = max(1, n)
        self._count = 0
        self._lock = threading.Lock()

    def should_sample(self, population: int, rate: float) -> bool:
        with self._lock:
            self._count += 1
            return self._count % self.n == 0


class AlwaysSampler(SamplingPolicy):
    def should_sample(self, population: int, rate: float) -> bool:
        return True


class NeverSampler(SamplingPolicy):
    def should_sample(self, population: int, rate: float) -> bool:
        return False


def make_sampler(name: str, every_nth: int = 5, min_population: int = 50) -> SamplingPolicy:
    if name == "random":
        return RandomSampler(min_population=min_population)
    if name == "every_nth":
        return EveryNthSampler(every_nth)
    if name == "always":
        return AlwaysSampler()
    if name == "never":
        return NeverSampler()
    raise ValueError(f"Unknown sampling policy: {name}")


# ── Judge boundary ───────────────────────────────────

@dataclass
class JudgeRequest:
    chunk_text: str
    content_type: str
    content_id: str
    chunk_index: int
    title: Optional[str] = None
    category: Optional[str] = None


@dataclass
class JudgeVerdict:
    status: str
    score: Optional[float] = None
    reason: Optional[str] = None


def status_from_score(score: float) -> str:
    if score >= JUDGE_PASS_SCORE:
        return "passed"
    if score >= JUDGE_INCOMPLETE_SCORE:
        return "incomplete"
    return "failed"


class QualityJudge:
    """External judge capability. Implementations raise ProviderError on failure."""

    def judge(self, request: JudgeRequest) -> JudgeVerdict:
        raise NotImplementedError


@dataclass
class JudgeStats:
    sampled: int = 0
    reused: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return {"sampled": self.sampled, "reused": self.reused, "errors": self.errors}


class QualityGate:
    def __init__(self, judge: Optional[QualityJudge], sampler: SamplingPolicy):
        self.judge = judge
        self.sampler = sampler

    def judge_chunks(
        self,
        chunks: list[QualifiedChunk],
        context: ContentContext,
        population: int,
        sample_rate: float,
        reusable: set[int] | None = None,
    ) -> JudgeStats:
        """Assign the stored quality status of every chunk, in place.

        reusable holds indices whose text is unchanged and was already passed
        by the judge; those keep that verdict without a judge call.
        """
        stats = JudgeStats()
        reusable = reusable or set()
        for qc in chunks:
            if qc.index in reusable:
                qc.status = "passed"
                qc.judged = True
                stats.reused += 1
                continue
            if self.judge is None or not self.sampler.should_sample(population, sample_rate):
                qc.status = "passed"
                continue

            stats.sampled += 1
            request = JudgeRequest(
                chunk_text=qc.text,
                content_type=context.content_type.value,
                content_id=context.content_id,
                chunk_index=qc.index,
                title=context.title,
                category=context.category,
            )
            try:
                verdict = self.judge.judge(request)
            except ProviderError as e:
                stats.errors += 1
                qc.status = "incomplete"
                qc.reason = f"judge_error: {e.message}"
                log.warning(
                    "judge_failed",
                    content_type=context.content_type.value,
                    content_id=context.content_id,
                    chunk_index=qc.index,
                    error=e.message,
                )
                continue

            qc.judged = True
            qc.status = verdict.status
            if verdict.score is not None:
                qc.score = verdict.score
            qc.reason = verdict.reason
        return stats
