# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Indexing worker – claims queue items and runs the pipeline:

  fetch -> prepare -> chunk -> heuristic gate -> idempotency check
        -> sampled judge -> embed + store -> complete

Runs as a background daemon thread. Several workers (threads or
processes) may share one queue; the lease token decides whose result
counts. A worker whose completion is rejected discards its result.
"""
import threading
import time
import uuid
from dataclasses import dataclass, replace
from typing import Callable, Optional

from .chunker import chunk_content
from .config import Config
from .content import ContentType, content_context, prepare_content
from .embedder import EmbeddingGenerator
from .errors import ContentNotFoundError, ProviderError
from .health import HealthTracker
from .idempotency import ChunkHash, is_unchanged, reusable_indices
from .log import get_logger
from .quality import QualityGate, qualify_chunks
from .queue import ClaimedItem, EmbeddingQueue
from .similar import SimilarItemsStore
from .sources import ContentSource
from .store import ChunkStore
from .typeconfig import TypeConfigStore

log = get_logger(__name__)


@dataclass
class ProcessOutcome:
    content_type: str
    content_id: str
    status: str
    applied: bool = True
    chunks: int = 0
    stale_deleted: int = 0
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "content_type": self.content_type,
            "content_id": self.content_id,
            "status": self.status,
            "applied": self.applied,
            "chunks": self.chunks,
            "stale_deleted": self.stale_deleted,
            "reason": self.reason,
        }


class IndexWorker:
    def __init__(
        self,
        config: Config,
        queue: EmbeddingQueue,
        source: ContentSource,
        type_configs: TypeConfigStore,
        store: ChunkStore,
        generator: EmbeddingGenerator,
        gate: QualityGate,
        health: HealthTracker | None = None,
        clock: Callable[[], float] = time.time,
        name: str = "",
        similar: SimilarItemsStore | None = None,
    ):
        self.config = config
        self.queue = queue
        self.source = source
        self.type_configs = type_configs
        self.store = store
        self.generator = generator
        self.gate = gate
        self.health = health
        self.similar = similar
        self.name = name or f"worker-{uuid.uuid4().hex[:6]}"
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # ── Pipeline ─────────────────────────────────────

    def _lease_expired(self, item: ClaimedItem, outcome: ProcessOutcome) -> bool:
        if self._clock() < item.lease_expires_at:
            return False
        # another worker may own the item by now; leave its chunks alone
        outcome.status = "failed"
        outcome.reason = "Lease expired before write"
        return True

    def _remove_item(self, content_type: str, content_id: str, outcome: ProcessOutcome, reason: str):
        outcome.stale_deleted = self.store.delete_item(content_type, content_id)
        outcome.reason = reason
        if self.similar is not None:
            self.similar.delete_edges_for(content_type, content_id)
        log.info("item_removed", content_type=content_type, content_id=content_id, reason=reason,
                 chunks=outcome.stale_deleted)

    def _run_pipeline(self, item: ClaimedItem) -> ProcessOutcome:
        content_type = ContentType(item.content_type)
        content_id = item.content_id
        outcome = ProcessOutcome(content_type.value, content_id, "completed")

        fields = self.source.get_content(content_type, content_id)
        if fields is None:
            raise ContentNotFoundError(content_type.value, content_id)

        effective = self.type_configs.resolve(content_type)
        prepared = prepare_content(
            content_type,
            fields,
            self.config.max_tokens,
            preserve_headings=effective.chunking.use_headings_as_boundary,
        )
        if not prepared.content:
            if not self._lease_expired(item, outcome):
                self._remove_item(content_type.value, content_id, outcome, "empty_content")
            return outcome

        chunked = chunk_content(prepared.content, effective.chunking)
        qualified = [
            qc for qc in qualify_chunks(chunked.chunks, effective.quality)
            if qc.status != "failed"
        ]
        if not qualified:
            if not self._lease_expired(item, outcome):
                self._remove_item(content_type.value, content_id, outcome, "no_qualified_chunks")
            return outcome

        for i, qc in enumerate(qualified):
            qc.chunk = replace(qc.chunk, index=i)

        fresh = [ChunkHash.of(qc.text) for qc in qualified]
        existing = self.store.existing_chunks(content_type.value, content_id)
        if is_unchanged(existing, fresh):
            outcome.status = "skipped"
            outcome.chunks = len(fresh)
            outcome.reason = "unchanged"
            return outcome

        judge_stats = self.gate.judge_chunks(
            qualified,
            content_context(content_type, content_id, fields),
            population=self.store.item_count(content_type.value),
            sample_rate=effective.quality.judge_sample_rate,
            reusable=reusable_indices(existing, fresh),
        )

        if self._lease_expired(item, outcome):
            return outcome

        outcome.stale_deleted = self.generator.generate(content_type, content_id, qualified)
        outcome.chunks = len(qualified)
        log.info(
            "item_indexed",
            content_type=content_type.value,
            content_id=content_id,
            chunks=len(qualified),
            truncated=prepared.truncated,
            **judge_stats.to_dict(),
        )
        return outcome

    def process(self, item: ClaimedItem) -> ProcessOutcome:
        """Run one claimed item through the pipeline and report the result."""
        try:
            outcome = self._run_pipeline(item)
        except ContentNotFoundError as e:
            outcome = ProcessOutcome(item.content_type, item.content_id, "failed", reason=e.message)
        except ProviderError as e:
            log.warning(
                "provider_failed",
                content_type=item.content_type,
                content_id=item.content_id,
                provider=e.provider,
                error=e.message,
                attempts=item.attempts,
            )
            outcome = ProcessOutcome(item.content_type, item.content_id, "failed", reason=e.message)
        except Exception as e:
            log.exception("pipeline_error", content_type=item.content_type, content_id=item.content_id)
            outcome = ProcessOutcome(item.content_type, item.content_id, "failed", reason=str(e))

        queue_status = "failed" if outcome.status == "failed" else "completed"
        error = outcome.reason if queue_status == "failed" else None
        outcome.applied = self.queue.complete(
            item.content_type, item.content_id, item.processing_token, queue_status, error,
        )
        if self.health:
            self.health.record_item(outcome.status if outcome.applied else "superseded")
        return outcome

    def run_once(self) -> list[ProcessOutcome]:
        items = self.queue.claim(self.config.claim_batch_size, self.config.lease_seconds)
        outcomes = [self.process(item) for item in items]
        if items:
            if self.health:
                self.health.record_batch(len(items))
            log.info(
                "batch_processed",
                worker=self.name,
                claimed=len(items),
                completed=sum(1 for o in outcomes if o.applied and o.status != "failed"),
                failed=sum(1 for o in outcomes if o.applied and o.status == "failed"),
                superseded=sum(1 for o in outcomes if not o.applied),
            )
        return outcomes

    # ── Loop ─────────────────────────────────────────

    def start(self):
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name=self.name)
        self._thread.start()
        log.info("worker_started", worker=self.name, poll_interval=self.config.worker_poll_interval)

    def stop(self, timeout: float | None = None):
        self._stop.set()
        if self._thread and timeout is not None:
            self._thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def _loop(self):
        while not self._stop.is_set():
            try:
                outcomes = self.run_once()
            except Exception as e:
                log.exception("worker_loop_error", worker=self.name)
                if self.health:
                    self.health.record_batch(0, error=str(e))
                outcomes = []
            if not outcomes:
                self._stop.wait(self.config.worker_poll_interval)


def initialize_type(
    queue: EmbeddingQueue,
    source: ContentSource,
    store: ChunkStore,
    content_type: ContentType,
    priority: str = "low",
) -> int:
    """Enqueue every item of a type that has no stored chunk 0 yet."""
    content_type = ContentType(content_type)
    indexed = store.indexed_ids(content_type.value)
    missing = [i for i in source.eligible_ids(content_type) if i not in indexed]
    queued = queue.enqueue_batch([(content_type.value, i) for i in missing], priority=priority)
    log.info("type_initialized", content_type=content_type.value, queued=queued)
    return queued


def initialize_all(
    queue: EmbeddingQueue,
    source: ContentSource,
    store: ChunkStore,
    priority: str = "low",
) -> dict[str, int]:
    """Run initialize_type for every content type; returns queued counts per type."""
    return {ct.value: initialize_type(queue, source, store, ct, priority) for ct in ContentType}


def indexing_stats(queue: EmbeddingQueue, source: ContentSource, store: ChunkStore) -> dict:
    """Per-type coverage: eligible items, items with stored chunks, queue backlog."""
    stats = {}
    for ct in ContentType:
        eligible = len(source.eligible_ids(ct))
        indexed = store.item_count(ct.value)
        queue_counts = queue.stats(ct.value)
        stats[ct.value] = {
            "eligible": eligible,
            "indexed": indexed,
            "coverage": round(min(indexed, eligible) / eligible, 3) if eligible else 0.0,
            "pending": queue_counts["pending"],
            "failed": queue_counts["failed"],
        }
    return stats
