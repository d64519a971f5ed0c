import hashlib
import json
import math
import re
import uuid
from pathlib import Path

import pytest

from indexwell.config import Config
from indexwell.db import Database
from indexwell.health import HealthTracker
from indexwell.providers import EmbeddingProvider
from indexwell.quality import JudgeVerdict, QualityJudge
from indexwell.queue import EmbeddingQueue
from indexwell.sources import DirectoryContentSource
from indexwell.store import ChunkStore
from indexwell.typeconfig import TypeConfigStore

DIM = 64


class HashEmbeddingFunction:
    """Deterministic bag-of-words vectors: texts sharing words point the same way."""

    def __call__(self, input):
        vectors = []
        for text in input:
            vec = [0.0] * DIM
            for word in re.findall(r"\w+", text.lower()):
                bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % DIM
                vec[bucket] += 1.0
            norm = math.sqrt(sum(v * v for v in vec)) or 1.0
            vectors.append([v / norm for v in vec])
        return vectors


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class StaticJudge(QualityJudge):
    def __init__(self, status="passed", score=0.9):
        self.status = status
        self.score = score
        self.requests = []

    def judge(self, request):
        self.requests.append(request)
        return JudgeVerdict(status=self.status, score=self.score, reason="static")


@pytest.fixture
def config(tmp_path):
    return Config(
        db_path=str(tmp_path / "indexwell.db"),
        vectorstore_path=str(tmp_path / "vectorstore"),
        type_config_path=str(tmp_path / "type_config.json"),
        config_path=str(tmp_path / "config.json"),
        content_path=str(tmp_path / "content"),
        collection_name=f"test_{uuid.uuid4().hex[:8]}",
        judge_url="",
        worker_poll_interval=0.05,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(config):
    return Database(config.db_path)


@pytest.fixture
def queue(db, clock):
    return EmbeddingQueue(db, max_attempts=3, clock=clock)


@pytest.fixture
def store(config):
    return ChunkStore(config.vectorstore_path, config.collection_name)


@pytest.fixture
def embedding_fn():
    return HashEmbeddingFunction()


@pytest.fixture
def provider(embedding_fn):
    return EmbeddingProvider(embedding_fn, name="hash")


@pytest.fixture
def type_configs(config):
    return TypeConfigStore(config.type_config_path)


@pytest.fixture
def health():
    return HealthTracker()


@pytest.fixture
def content_dir(config):
    """Writes items as <content>/<type>/<id>.json; returns the writer."""
    root = Path(config.content_path)
    root.mkdir(parents=True, exist_ok=True)

    def write(content_type: str, content_id: str, fields: dict):
        type_dir = root / content_type
        type_dir.mkdir(exist_ok=True)
        (type_dir / f"{content_id}.json").write_text(json.dumps(fields), encoding="utf-8")

    write.root = root
    return write


@pytest.fixture
def source(config, content_dir):
    return DirectoryContentSource(config.content_path)


@pytest.fixture
def static_judge():
    return StaticJudge
