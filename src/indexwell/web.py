# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Admin + search API (FastAPI) – queue control, per-type configuration,
quality review, search analytics and the public search endpoints.
Runs in a background thread alongside the MCP server.

All state is injected via create_web_app().
"""
import hmac
import threading
import time
from dataclasses import dataclass
from typing import Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from .analytics import SearchLog
from .config import LOCAL_MODELS, Config
from .content import ContentType
from .errors import ConfigValidationError
from .health import HealthTracker
from .queue import EmbeddingQueue
from .search import HybridSearchEngine
from .similar import SimilarItemsRefresher, SimilarItemsStore
from .sources import ContentSource
from .store import ChunkStore
from .typeconfig import TypeConfigStore
from .worker import indexing_stats, initialize_all, initialize_type

# Changing these only takes effect after a restart
RESTART_FIELDS = {"embedding_provider", "embedding_model", "openai_api_key", "openai_embedding_model", "judge_sampling"}


class EnqueueRequest(BaseModel):
    content_type: ContentType
    content_id: str
    priority: Literal["high", "normal", "low"] = "normal"


class ConfigUpdate(BaseModel):
    semantic_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    hybrid_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    hybrid_semantic_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    hybrid_keyword_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    search_limit: Optional[int] = Field(default=None, ge=1, le=100)
    search_log_retention_days: Optional[int] = Field(default=None, ge=1)
    similar_refresh_interval: Optional[int] = Field(default=None, ge=60)
    lease_seconds: Optional[int] = Field(default=None, ge=10)
    claim_batch_size: Optional[int] = Field(default=None, ge=1, le=500)
    worker_poll_interval: Optional[float] = Field(default=None, gt=0)
    judge_sampling: Optional[Literal["random", "every_nth", "always", "never"]] = None
    embedding_provider: Optional[Literal["local", "openai"]] = None
    embedding_model: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_embedding_model: Optional[str] = None


class SearchRequest(BaseModel):
    query: str
    mode: Literal["semantic", "keyword", "hybrid"] = "hybrid"
    target_types: Optional[list[ContentType]] = None
    limit: Optional[int] = Field(default=None, ge=1, le=100)
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    semantic_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    keyword_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class RefreshRequest(BaseModel):
    content_type: Optional[ContentType] = None


@dataclass
class AppState:
    config: Config
    queue: EmbeddingQueue
    store: ChunkStore
    type_configs: TypeConfigStore
    engine: HybridSearchEngine
    search_log: SearchLog
    similar: SimilarItemsStore
    refresher: SimilarItemsRefresher
    source: ContentSource
    health: HealthTracker | None = None


def _content_type(value: str) -> ContentType:
    try:
        return ContentType(value)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown content type: {value}") from None


def create_web_app(state: AppState) -> FastAPI:
    """Factory: returns a FastAPI app that shares state with the MCP server."""

    config = state.config
    config_lock = threading.Lock()
    app = FastAPI(
        title="Indexwell",
        description="Hybrid content indexing and retrieval service",
    )

    def require_admin(authorization: str = Header(default="")):
        if not config.admin_token:
            return
        expected = f"Bearer {config.admin_token}"
        if not hmac.compare_digest(authorization, expected):
            raise HTTPException(
                status_code=401,
                detail="Invalid admin token",
                headers={"WWW-Authenticate": "Bearer"},
            )

    # ── Health (no auth, used by container healthchecks) ──

    @app.get("/health")
    async def health_check():
        from . import __version__
        health = state.health
        status = health.status if health else {}
        return {
            "status": "ok" if (not health or health.is_healthy) else "degraded",
            "version": __version__,
            "chunks": state.store.collection.count(),
            "queue": state.queue.stats(),
            "last_batch_at": status.get("last_batch_at"),
            "last_similar_refresh_at": status.get("last_similar_refresh_at"),
        }

    @app.get("/api/health", dependencies=[Depends(require_admin)])
    async def health_detail():
        return state.health.status if state.health else {}

    # ── Queue ────────────────────────────────────────

    @app.get("/api/queue/stats", dependencies=[Depends(require_admin)])
    def queue_stats():
        return state.queue.stats()

    @app.get("/api/queue/throughput", dependencies=[Depends(require_admin)])
    def queue_throughput():
        return state.queue.throughput()

    @app.get("/api/queue/errors", dependencies=[Depends(require_admin)])
    def queue_errors(limit: int = 20):
        return {"errors": state.queue.error_logs(limit)}

    @app.post("/api/queue/retry", dependencies=[Depends(require_admin)])
    def queue_retry():
        return {"status": "success", "retried": state.queue.retry_failed()}

    @app.post("/api/queue/purge", dependencies=[Depends(require_admin)])
    def queue_purge():
        return {"status": "success", "purged": state.queue.purge_failed()}

    @app.post("/api/queue/clear-completed", dependencies=[Depends(require_admin)])
    def queue_clear_completed(older_than_days: int = 7):
        return {"status": "success", "cleared": state.queue.clear_completed(older_than_days)}

    @app.post("/api/queue/enqueue", dependencies=[Depends(require_admin)])
    def queue_enqueue(req: EnqueueRequest):
        state.queue.enqueue(req.content_type.value, req.content_id, req.priority)
        return {"status": "success", "item": state.queue.get(req.content_type.value, req.content_id)}

    @app.get("/api/queue/{content_type}/{content_id}", dependencies=[Depends(require_admin)])
    def queue_item(content_type: str, content_id: str):
        item = state.queue.get(_content_type(content_type).value, content_id)
        if item is None:
            raise HTTPException(status_code=404, detail="Item not queued")
        return item

    @app.post("/api/initialize/{content_type}", dependencies=[Depends(require_admin)])
    def initialize(content_type: str, priority: Literal["high", "normal", "low"] = "low"):
        ct = _content_type(content_type)
        queued = initialize_type(state.queue, state.source, state.store, ct, priority)
        return {"status": "success", "content_type": ct.value, "queued": queued}

    @app.post("/api/initialize", dependencies=[Depends(require_admin)])
    def initialize_every_type(priority: Literal["high", "normal", "low"] = "low"):
        queued = initialize_all(state.queue, state.source, state.store, priority)
        return {"status": "success", "queued": queued, "total": sum(queued.values())}

    @app.get("/api/index/stats", dependencies=[Depends(require_admin)])
    def index_stats():
        return {"types": indexing_stats(state.queue, state.source, state.store)}

    @app.get("/api/audit", dependencies=[Depends(require_admin)])
    def audit(limit: int = 50):
        return {"entries": state.queue.db.audit_entries(limit)}

    # ── Configuration ────────────────────────────────

    @app.get("/api/config", dependencies=[Depends(require_admin)])
    def get_config():
        return {"config": config.to_safe_dict(), "available_models": LOCAL_MODELS}

    @app.post("/api/config", dependencies=[Depends(require_admin)])
    def update_config(update: ConfigUpdate):
        updates = update.model_dump(exclude_none=True)
        with config_lock:
            changed = sorted(k for k, v in updates.items() if getattr(config, k) != v)
            for key in changed:
                setattr(config, key, updates[key])
            config.save()
        db = state.queue.db
        with db.transaction() as conn:
            db.audit(conn, "config.update", {"fields": changed}, time.time())
        return {
            "status": "success",
            "changed": changed,
            "restart_required": any(k in RESTART_FIELDS for k in changed),
            "config": config.to_safe_dict(),
        }

    @app.get("/api/type-config", dependencies=[Depends(require_admin)])
    def get_type_configs():
        return {t: e.model_dump() for t, e in state.type_configs.resolve_all().items()}

    @app.get("/api/type-config/{content_type}", dependencies=[Depends(require_admin)])
    def get_type_config(content_type: str):
        ct = _content_type(content_type)
        override = state.type_configs.get_override(ct)
        return {
            "effective": state.type_configs.resolve(ct).model_dump(),
            "override": override.model_dump(exclude_none=True) if override else None,
        }

    @app.put("/api/type-config/{content_type}", dependencies=[Depends(require_admin)])
    def update_type_config(content_type: str, payload: dict):
        ct = _content_type(content_type)
        try:
            effective = state.type_configs.update(ct, payload)
        except ConfigValidationError as e:
            raise HTTPException(status_code=400, detail={"message": e.message, "errors": e.errors}) from e
        return {"status": "success", "effective": effective.model_dump()}

    @app.delete("/api/type-config/{content_type}", dependencies=[Depends(require_admin)])
    def reset_type_config(content_type: str):
        effective = state.type_configs.reset(_content_type(content_type))
        return {"status": "success", "effective": effective.model_dump()}

    # ── Quality ──────────────────────────────────────

    @app.get("/api/quality/failed-samples", dependencies=[Depends(require_admin)])
    def failed_samples(limit: int = 20):
        return {"samples": state.store.failed_samples(limit)}

    @app.get("/api/quality/metrics", dependencies=[Depends(require_admin)])
    def quality_metrics():
        return {"by_type": state.store.quality_metrics(), "store": state.store.stats()}

    # ── Search ───────────────────────────────────────

    @app.post("/api/search")
    def search(req: SearchRequest):
        weights = None
        if req.semantic_weight is not None or req.keyword_weight is not None:
            weights = {}
            if req.semantic_weight is not None:
                weights["semantic"] = req.semantic_weight
            if req.keyword_weight is not None:
                weights["keyword"] = req.keyword_weight
        results = state.engine.search(
            req.query,
            mode=req.mode,
            target_types=[t.value for t in req.target_types] if req.target_types else None,
            limit=req.limit,
            threshold=req.threshold,
            weights=weights,
        )
        return {
            "query": req.query,
            "mode": req.mode,
            "count": len(results),
            "results": [r.to_dict() for r in results],
        }

    @app.get("/api/similar/{content_type}/{content_id}")
    def similar_items(content_type: str, content_id: str, limit: int = 4):
        ct = _content_type(content_type)
        items = state.similar.get_similar(ct.value, content_id, limit)
        return {"content_type": ct.value, "content_id": content_id, "items": items}

    @app.post("/api/similar/refresh", dependencies=[Depends(require_admin)])
    def refresh_similar(req: RefreshRequest | None = None):
        ct = req.content_type.value if req and req.content_type else None
        try:
            result = state.refresher.refresh(ct)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        if state.health and not result.skipped:
            state.health.record_similar_refresh(result.to_dict())
        return result.to_dict()

    @app.get("/api/similar/stats", dependencies=[Depends(require_admin)])
    def similar_stats():
        return state.similar.stats()

    # ── Search analytics ─────────────────────────────

    @app.get("/api/search-logs", dependencies=[Depends(require_admin)])
    def search_logs(limit: int = 50, low_quality_only: bool = False):
        return {"logs": state.search_log.list_logs(limit, low_quality_only)}

    @app.get("/api/search-logs/stats", dependencies=[Depends(require_admin)])
    def search_log_stats():
        return state.search_log.stats()

    @app.get("/api/search-logs/low-quality", dependencies=[Depends(require_admin)])
    def low_quality(limit: int = 20):
        return {"queries": state.search_log.low_quality_queries(limit)}

    @app.post("/api/search-logs/cleanup", dependencies=[Depends(require_admin)])
    def cleanup_logs(retention_days: Optional[int] = None):
        days = retention_days if retention_days is not None else config.search_log_retention_days
        return {"status": "success", "deleted": state.search_log.cleanup(days)}

    return app
