# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
External capabilities behind request/response boundaries.

- Embedding provider: text -> vector. Backed by a Chroma embedding function
  (local sentence-transformers model or OpenAI). Query embeddings are
  ephemeral; only the chunk store persists vectors.
- Quality judge: chunk + context -> passed / incomplete / failed, called
  over HTTP.

Both raise ProviderError on any failure so callers see one error type.
"""
from dataclasses import dataclass

import httpx
from chromadb.utils import embedding_functions

from .config import Config
from .errors import ProviderError
from .log import get_logger
from .quality import QUALITY_STATUSES, JudgeRequest, JudgeVerdict, QualityJudge, status_from_score

log = get_logger(__name__)


@dataclass
class EmbeddingRequest:
    text: str
    content_type: str
    content_id: str
    chunk_index: int
    chunk_total: int


def make_embedding_function(config: Config):
    if config.embedding_provider == "local":
        return embedding_functions.SentenceTransformerEmbeddingFunction(
            model_name=config.embedding_model
        )
    return embedding_functions.OpenAIEmbeddingFunction(
        api_key=config.openai_api_key,
        model_name=config.openai_embedding_model,
    )


class EmbeddingProvider:
    """Wraps a Chroma-style embedding function (list[str] -> list[vector])."""

    def __init__(self, embedding_fn, name: str = ""):
        self._ef = embedding_fn
        self.name = name or type(embedding_fn).__name__

    @classmethod
    def from_config(cls, config: Config) -> "EmbeddingProvider":
        return cls(make_embedding_function(config), name=config.active_embedding_model)

    def _call(self, texts: list[str]) -> list[list[float]]:
        try:
            vectors = self._ef(texts)
        except Exception as e:
            raise ProviderError(f"Embedding call failed: {e}", provider=self.name) from e
        if vectors is None or len(vectors) != len(texts):
            raise ProviderError("Embedding provider returned wrong number of vectors", provider=self.name)
        return [[float(x) for x in v] for v in vectors]

    def embed(self, request: EmbeddingRequest) -> list[float]:
        return self._call([request.text])[0]

    def embed_many(self, requests: list[EmbeddingRequest]) -> list[list[float]]:
        if not requests:
            return []
        return self._call([r.text for r in requests])

    def embed_query(self, text: str) -> list[float]:
        """Embed a search query. Never written anywhere."""
        return self._call([text])[0]


class HttpQualityJudge(QualityJudge):
    """POSTs a chunk to a judge endpoint.

    The endpoint answers with either {"status": ..., "reason": ...} or
    {"success": true, "score": 0..1, "reason": ...}.
    """

    def __init__(self, url: str, api_key: str = "", timeout: float = 30.0):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout

    def judge(self, request: JudgeRequest) -> JudgeVerdict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {
            "chunk_content": request.chunk_text,
            "target_type": request.content_type,
            "target_id": request.content_id,
            "chunk_index": request.chunk_index,
            "title": request.title,
            "category": request.category,
        }
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise ProviderError(f"Judge request failed: {e}", provider="judge") from e
        except ValueError as e:
            raise ProviderError(f"Judge returned invalid JSON: {e}", provider="judge") from e

        return parse_verdict(data)


def parse_verdict(data: dict) -> JudgeVerdict:
    if not isinstance(data, dict) or data.get("success") is False:
        error = data.get("error") if isinstance(data, dict) else None
        raise ProviderError(f"Judge reported failure: {error or 'unknown error'}", provider="judge")

    reason = data.get("reason")
    score = data.get("score")
    status = data.get("status")
    if status in QUALITY_STATUSES:
        return JudgeVerdict(status=status, score=score, reason=reason)
    if isinstance(score, (int, float)):
        return JudgeVerdict(status=status_from_score(float(score)), score=float(score), reason=reason)
    raise ProviderError("Judge response has neither status nor score", provider="judge")


def make_judge(config: Config) -> QualityJudge | None:
    if not config.judge_url:
        log.info("quality_judge_disabled")
        return None
    return HttpQualityJudge(config.judge_url, config.judge_api_key, config.judge_timeout)
