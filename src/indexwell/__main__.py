# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Unified entry point: python -m indexwell

Runs indexing workers, the maintenance scheduler, the admin/search API and
the MCP server in a single process with shared state. Workers, scheduler
and API run in background threads, the MCP server in the main thread.
"""
import threading

import uvicorn

from .analytics import SearchLog
from .config import Config
from .db import Database
from .embedder import EmbeddingGenerator
from .health import HealthTracker
from .log import get_logger, setup_logging
from .providers import EmbeddingProvider, make_judge
from .quality import QualityGate, make_sampler
from .queue import EmbeddingQueue
from .scheduler import MaintenanceScheduler
from .search import HybridSearchEngine
from .server import create_mcp_server
from .similar import SimilarItemsRefresher, SimilarItemsStore
from .sources import DirectoryContentSource
from .store import ChunkStore
from .typeconfig import TypeConfigStore
from .web import AppState, create_web_app
from .worker import IndexWorker


def main():
    config = Config.load()
    setup_logging(config.log_level, config.log_json)
    log = get_logger("indexwell")

    health = HealthTracker()
    db = Database(config.db_path)
    queue = EmbeddingQueue(db, max_attempts=config.max_attempts)
    store = ChunkStore(config.vectorstore_path, config.collection_name)
    type_configs = TypeConfigStore(config.type_config_path)
    source = DirectoryContentSource(config.content_path)
    provider = EmbeddingProvider.from_config(config)
    generator = EmbeddingGenerator(provider, store)
    gate = QualityGate(
        make_judge(config),
        make_sampler(config.judge_sampling, config.judge_every_nth, config.judge_min_population),
    )
    search_log = SearchLog(db)
    engine = HybridSearchEngine.from_config(config, provider, store, search_log, health)
    similar = SimilarItemsStore(db)
    refresher = SimilarItemsRefresher(
        queue, store, similar, db,
        min_similarity=config.similar_min_score,
        batch_size=config.similar_batch_size,
        job_lease_seconds=config.similar_job_lease_seconds,
    )

    workers = [
        IndexWorker(
            config, queue, source, type_configs, store, generator, gate, health,
            name=f"worker-{i}", similar=similar,
        )
        for i in range(max(1, config.worker_count))
    ]
    for worker in workers:
        worker.start()

    scheduler = MaintenanceScheduler(config, refresher, search_log, health)
    scheduler.start()

    web_app = create_web_app(AppState(
        config=config,
        queue=queue,
        store=store,
        type_configs=type_configs,
        engine=engine,
        search_log=search_log,
        similar=similar,
        refresher=refresher,
        source=source,
        health=health,
    ))
    mcp_server = create_mcp_server(engine, similar, queue)

    def run_web():
        uvicorn.run(
            web_app, host="0.0.0.0", port=config.web_port,
            log_level="warning",
        )

    web_thread = threading.Thread(target=run_web, daemon=True)
    web_thread.start()
    log.info("web_started", url=f"http://0.0.0.0:{config.web_port}")

    log.info("mcp_starting", transport=config.transport)
    if config.transport == "sse":
        uvicorn.run(mcp_server.sse_app(), host="0.0.0.0", port=config.sse_port, log_level="warning")
    else:
        mcp_server.run(transport="stdio")


if __name__ == "__main__":
    main()
