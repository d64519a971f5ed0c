# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Central configuration – configurable via:
1. Environment variables (INDEXWELL_ prefix)
2. .env file
3. Admin API (writes to config_path, /data/config.json by default)

Per-content-type chunking and quality settings live in typeconfig.py.
"""
import json
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings

from .log import get_logger

log = get_logger(__name__)

class Config(BaseSettings):
    # ── Storage ──────────────────────────────────
    db_path: str = "/data/indexwell.db"
    vectorstore_path: str = "/data/vectorstore"
    type_config_path: str = "/data/type_config.json"
    config_path: str = "/data/config.json"
    collection_name: str = "content_chunks"

    # ── Content source ───────────────────────────
    content_path: str = "/content"

    # ── Embeddings ───────────────────────────────
    embedding_provider: Literal["local", "openai"] = "local"
    embedding_model: str = "paraphrase-multilingual-MiniLM-L12-v2"
    openai_api_key: str = ""
    openai_embedding_model: str = "text-embedding-3-small"
    max_tokens: int = 8000

    # ── Queue / Worker ───────────────────────────
    lease_seconds: int = 120
    max_attempts: int = 3
    claim_batch_size: int = 10
    worker_count: int = 1
    worker_poll_interval: float = 5.0

    # ── Quality judge ────────────────────────────
    judge_url: str = ""
    judge_api_key: str = ""
    judge_timeout: float = 30.0
    judge_sampling: Literal["random", "every_nth", "always", "never"] = "random"
    judge_every_nth: int = 5
    judge_min_population: int = 50

    # ── Search ───────────────────────────────────
    semantic_threshold: float = 0.7
    hybrid_threshold: float = 0.5
    hybrid_semantic_weight: float = 0.7
    hybrid_keyword_weight: float = 0.3
    search_limit: int = 20
    search_log_retention_days: int = 30

    # ── Similar items ────────────────────────────
    similar_refresh_interval: int = 3600
    similar_min_score: float = 0.5
    similar_batch_size: int = 50
    similar_job_lease_seconds: int = 1800

    # ── Server / Transport ───────────────────────
    transport: Literal["stdio", "sse"] = "sse"
    sse_port: int = 8081
    web_port: int = 8080
    admin_token: str = ""  # empty = admin API open (trusted network only)

    # ── Logging ──────────────────────────────────
    log_level: str = "INFO"
    log_json: bool = False

    class Config:
        env_prefix = "INDEXWELL_"
        env_file = ".env"

    @classmethod
    def load(cls) -> "Config":
        """Load config: ENV -> .env -> config.json (admin overrides)."""
        config = cls()
        path = Path(config.config_path)

        if path.exists():
            try:
                overrides = json.loads(path.read_text())
                for key, value in overrides.items():
                    if hasattr(config, key) and value != "":
                        setattr(config, key, value)
            except (OSError, ValueError) as e:
                log.warning("config_file_error", path=str(path), error=str(e))

        return config

    def save(self):
        """Persist current config for the admin API."""
        path = Path(self.config_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(self.model_dump(), indent=2, default=str)
        )

    def to_safe_dict(self) -> dict:
        """Config without secrets (for admin display)."""
        d = self.model_dump()
        if d.get("openai_api_key"):
            d["openai_api_key"] = d["openai_api_key"][:8] + "..."
        if d.get("judge_api_key"):
            d["judge_api_key"] = "***set***"
        if d.get("admin_token"):
            d["admin_token"] = "***set***"
        return d

    @property
    def active_embedding_model(self) -> str:
        if self.embedding_provider == "local":
            return self.embedding_model
        return self.openai_embedding_model


LOCAL_MODELS = [
    {
        "id": "paraphrase-multilingual-MiniLM-L12-v2",
        "name": "Multilingual MiniLM-L12 v2",
        "dim": 384,
        "lang": "EN/ZH/Multi",
        "desc": "Small multilingual default, good for mixed EN/ZH content",
    },
    {
        "id": "all-MiniLM-L6-v2",
        "name": "MiniLM-L6 v2",
        "dim": 384,
        "lang": "EN",
        "desc": "Fastest, English only",
    },
    {
        "id": "intfloat/multilingual-e5-base",
        "name": "Multilingual E5 Base",
        "dim": 768,
        "lang": "EN/ZH/Multi",
        "desc": "Better recall on long product descriptions",
    },
    {
        "id": "BAAI/bge-m3",
        "name": "BGE-M3",
        "dim": 1024,
        "lang": "EN/ZH/Multi",
        "desc": "Best multilingual quality, needs ~2GB RAM",
    },
]
