"""Tests for per-type chunking / quality configuration."""
import json

import pytest

from indexwell.content import ContentType
from indexwell.errors import ConfigValidationError
from indexwell.typeconfig import (
    DEFAULT_CHUNKING,
    DEFAULT_QUALITY,
    TypeConfigOverride,
    TypeConfigStore,
    check_consistency,
    resolve_type_config,
)


class TestResolve:
    def test_defaults_without_override(self):
        effective = resolve_type_config(ContentType.POST)
        assert effective.chunking == DEFAULT_CHUNKING[ContentType.POST]
        assert effective.quality == DEFAULT_QUALITY[ContentType.POST]

    def test_override_fields_applied(self):
        override = TypeConfigOverride.model_validate({"chunking": {"target_size": 400}})
        effective = resolve_type_config(ContentType.POST, override)
        assert effective.chunking.target_size == 400
        assert effective.chunking.max_size == DEFAULT_CHUNKING[ContentType.POST].max_size

    def test_defaults_not_mutated(self):
        override = TypeConfigOverride.model_validate({"quality": {"min_length": 99}})
        resolve_type_config(ContentType.PRODUCT, override)
        assert DEFAULT_QUALITY[ContentType.PRODUCT].min_length == 20

    def test_default_tables(self):
        assert DEFAULT_CHUNKING[ContentType.GALLERY_ITEM].split_by == "sentence"
        assert DEFAULT_QUALITY[ContentType.COMMENT].min_length == 5
        assert all(not check_consistency(resolve_type_config(t)) for t in ContentType)


class TestStore:
    def test_update_persists(self, type_configs, config):
        effective = type_configs.update(ContentType.PRODUCT, {"chunking": {"overlap": 30}})
        assert effective.chunking.overlap == 30
        saved = json.loads(open(config.type_config_path).read())
        assert saved == {"product": {"chunking": {"overlap": 30}}}

        reloaded = TypeConfigStore(config.type_config_path)
        assert reloaded.resolve(ContentType.PRODUCT).chunking.overlap == 30

    def test_updates_merge(self, type_configs):
        type_configs.update(ContentType.POST, {"chunking": {"overlap": 10}})
        effective = type_configs.update(ContentType.POST, {"quality": {"judge_sample_rate": 0.5}})
        assert effective.chunking.overlap == 10
        assert effective.quality.judge_sample_rate == 0.5

    @pytest.mark.parametrize("payload", [
        {"chunking": {"target_size": 10}},
        {"chunking": {"max_size": 9000}},
        {"quality": {"max_noise_ratio": 1.5}},
        {"chunking": {"split_by": "word"}},
        {"chunking": {"unknown": 1}},
    ])
    def test_out_of_bounds_rejected(self, type_configs, payload):
        with pytest.raises(ConfigValidationError) as exc:
            type_configs.update(ContentType.PRODUCT, payload)
        assert exc.value.errors
        assert type_configs.get_override(ContentType.PRODUCT) is None

    def test_inconsistent_rejected(self, type_configs):
        with pytest.raises(ConfigValidationError) as exc:
            type_configs.update(ContentType.PRODUCT, {"chunking": {"overlap": 300}})
        assert exc.value.errors[0]["loc"] == ["chunking", "overlap"]
        assert type_configs.resolve(ContentType.PRODUCT).chunking.overlap == 45

    def test_reset(self, type_configs):
        type_configs.update(ContentType.COMMENT, {"quality": {"min_length": 8}})
        effective = type_configs.reset(ContentType.COMMENT)
        assert effective.quality.min_length == 5
        assert type_configs.get_override(ContentType.COMMENT) is None

    def test_corrupt_file_ignored(self, config):
        with open(config.type_config_path, "w") as f:
            f.write("{not json")
        store = TypeConfigStore(config.type_config_path)
        assert store.resolve(ContentType.POST).chunking == DEFAULT_CHUNKING[ContentType.POST]

    def test_resolve_all(self, type_configs):
        assert set(type_configs.resolve_all()) == {t.value for t in ContentType}
