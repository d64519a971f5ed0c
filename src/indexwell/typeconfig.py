# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Per-content-type chunking + quality gate configuration.

Built-in defaults per type, optionally overridden from the admin API.
Overrides are validated when they are written (field bounds + cross-field
checks) and persisted as JSON; resolve_type_config() merges defaults with
an override and is called per operation.
"""
import json
import threading
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .content import ContentType
from .errors import ConfigValidationError
from .log import get_logger

log = get_logger(__name__)

SplitStrategy = Literal["semantic", "paragraph", "sentence", "fixed"]


class ChunkingConfig(BaseModel):
    """Sizes are estimated tokens."""
    target_size: int = Field(ge=50, le=2000)
    overlap: int = Field(ge=0, le=500)
    split_by: SplitStrategy
    min_size: int = Field(ge=1, le=1000)
    max_size: int = Field(ge=100, le=5000)
    use_headings_as_boundary: bool


class QualityGateConfig(BaseModel):
    min_length: int = Field(ge=1, le=1000)
    max_length: int = Field(ge=100, le=10000)
    min_quality_score: float = Field(ge=0, le=1)
    max_noise_ratio: float = Field(ge=0, le=1)
    judge_sample_rate: float = Field(default=0.2, ge=0, le=1)


class ChunkingOverride(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_size: Optional[int] = Field(default=None, ge=50, le=2000)
    overlap: Optional[int] = Field(default=None, ge=0, le=500)
    split_by: Optional[SplitStrategy] = None
    min_size: Optional[int] = Field(default=None, ge=1, le=1000)
    max_size: Optional[int] = Field(default=None, ge=100, le=5000)
    use_headings_as_boundary: Optional[bool] = None


class QualityOverride(BaseModel):
    model_config = ConfigDict(extra="forbid")

    min_length: Optional[int] = Field(default=None, ge=1, le=1000)
    max_length: Optional[int] = Field(default=None, ge=100, le=10000)
    min_quality_score: Optional[float] = Field(default=None, ge=0, le=1)
    max_noise_ratio: Optional[float] = Field(default=None, ge=0, le=1)
    judge_sample_rate: Optional[float] = Field(default=None, ge=0, le=1)


class TypeConfigOverride(BaseModel):
    model_config = ConfigDict(extra="forbid")

    chunking: Optional[ChunkingOverride] = None
    quality: Optional[QualityOverride] = None


class EffectiveConfig(BaseModel):
    content_type: ContentType
    chunking: ChunkingConfig
    quality: QualityGateConfig


DEFAULT_CHUNKING: dict[ContentType, ChunkingConfig] = {
    ContentType.PRODUCT: ChunkingConfig(
        target_size=300, overlap=45, split_by="semantic",
        min_size=64, max_size=600, use_headings_as_boundary=True,
    ),
    ContentType.POST: ChunkingConfig(
        target_size=500, overlap=75, split_by="semantic",
        min_size=128, max_size=1000, use_headings_as_boundary=True,
    ),
    ContentType.GALLERY_ITEM: ChunkingConfig(
        target_size=128, overlap=20, split_by="sentence",
        min_size=32, max_size=256, use_headings_as_boundary=False,
    ),
    ContentType.COMMENT: ChunkingConfig(
        target_size=128, overlap=0, split_by="sentence",
        min_size=16, max_size=256, use_headings_as_boundary=False,
    ),
}

DEFAULT_QUALITY: dict[ContentType, QualityGateConfig] = {
    ContentType.PRODUCT: QualityGateConfig(
        min_length=20, max_length=5000, min_quality_score=0.6, max_noise_ratio=0.3,
    ),
    ContentType.POST: QualityGateConfig(
        min_length=50, max_length=10000, min_quality_score=0.6, max_noise_ratio=0.3,
    ),
    ContentType.GALLERY_ITEM: QualityGateConfig(
        min_length=10, max_length=2000, min_quality_score=0.5, max_noise_ratio=0.4,
    ),
    ContentType.COMMENT: QualityGateConfig(
        min_length=5, max_length=2000, min_quality_score=0.5, max_noise_ratio=0.4,
    ),
}


def resolve_type_config(
    content_type: ContentType, override: Optional[TypeConfigOverride] = None,
) -> EffectiveConfig:
    """Defaults for the type with the override's non-null fields applied."""
    content_type = ContentType(content_type)
    chunking = DEFAULT_CHUNKING[content_type]
    quality = DEFAULT_QUALITY[content_type]
    if override is not None:
        if override.chunking is not None:
            chunking = chunking.model_copy(update=override.chunking.model_dump(exclude_none=True))
        if override.quality is not None:
            quality = quality.model_copy(update=override.quality.model_dump(exclude_none=True))
    return EffectiveConfig(content_type=content_type, chunking=chunking, quality=quality)


def check_consistency(effective: EffectiveConfig) -> list[dict]:
    """Cross-field checks the per-field bounds can't express."""
    c, q = effective.chunking, effective.quality
    problems = []
    if c.min_size > c.max_size:
        problems.append({"loc": ["chunking", "min_size"], "msg": "min_size must not exceed max_size"})
    if c.target_size > c.max_size:
        problems.append({"loc": ["chunking", "target_size"], "msg": "target_size must not exceed max_size"})
    if c.overlap >= c.target_size:
        problems.append({"loc": ["chunking", "overlap"], "msg": "overlap must be smaller than target_size"})
    if q.min_length >= q.max_length:
        problems.append({"loc": ["quality", "min_length"], "msg": "min_length must be smaller than max_length"})
    return problems


def _validation_errors(e: ValidationError) -> list[dict]:
    return [
        {"loc": [str(p) for p in err["loc"]], "msg": err["msg"]}
        for err in e.errors()
    ]


class TypeConfigStore:
    """JSON-backed overrides, one entry per content type."""

    def __init__(self, path: str):
        self._path = Path(path)
        self._lock = threading.Lock()
        self._overrides: dict[ContentType, TypeConfigOverride] = self._load()

    def _load(self) -> dict[ContentType, TypeConfigOverride]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text())
        except (OSError, ValueError) as e:
            log.warning("type_config_unreadable", path=str(self._path), error=str(e))
            return {}
        overrides = {}
        for key, value in raw.items():
            try:
                overrides[ContentType(key)] = TypeConfigOverride.model_validate(value)
            except (ValueError, ValidationError) as e:
                log.warning("type_config_entry_ignored", content_type=key, error=str(e))
        return overrides

    def _save(self):
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            t.value: o.model_dump(exclude_none=True)
            for t, o in self._overrides.items()
        }
        self._path.write_text(json.dumps(data, indent=2))

    def get_override(self, content_type: ContentType) -> Optional[TypeConfigOverride]:
        with self._lock:
            return self._overrides.get(ContentType(content_type))

    def resolve(self, content_type: ContentType) -> EffectiveConfig:
        return resolve_type_config(content_type, self.get_override(content_type))

    def resolve_all(self) -> dict[str, EffectiveConfig]:
        return {t.value: self.resolve(t) for t in ContentType}

    def update(self, content_type: ContentType, payload: dict) -> EffectiveConfig:
        """Validate a partial override and merge it into the stored one.

        Raises ConfigValidationError without touching the stored override
        when any field is out of bounds or the merged result is inconsistent.
        """
        content_type = ContentType(content_type)
        try:
            incoming = TypeConfigOverride.model_validate(payload)
        except ValidationError as e:
            raise ConfigValidationError(
                f"Invalid configuration for {content_type.value}", _validation_errors(e),
            ) from e

        with self._lock:
            current = self._overrides.get(content_type) or TypeConfigOverride()
            merged = TypeConfigOverride(
                chunking=_merge_section(current.chunking, incoming.chunking, ChunkingOverride),
                quality=_merge_section(current.quality, incoming.quality, QualityOverride),
            )
            effective = resolve_type_config(content_type, merged)
            problems = check_consistency(effective)
            if problems:
                raise ConfigValidationError(
                    f"Inconsistent configuration for {content_type.value}", problems,
                )
            self._overrides[content_type] = merged
            self._save()

        log.info("type_config_updated", content_type=content_type.value)
        return effective

    def reset(self, content_type: ContentType) -> EffectiveConfig:
        content_type = ContentType(content_type)
        with self._lock:
            self._overrides.pop(content_type, None)
            self._save()
        return resolve_type_config(content_type)


def _merge_section(current, incoming, model):
    if current is None and incoming is None:
        return None
    data = current.model_dump(exclude_none=True) if current is not None else {}
    if incoming is not None:
        data.update(incoming.model_dump(exclude_none=True))
    return model(**data)
