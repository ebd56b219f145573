"""Tests for the derivative catalog."""

import pytest
from pydantic import ValidationError

from photos_pipeline.core.catalog import (
    DEFAULT_CATALOG,
    DerivativeCatalog,
    EncodingSpec,
    SizeSpec,
)
from photos_pipeline.core.paths import parse_key
from photos_pipeline.testing.fakes import TEST_CATALOG


class TestDefaultCatalog:
    """Tests for the production catalog."""

    def test_has_four_sizes_and_three_encodings(self):
        assert [size.label for size in DEFAULT_CATALOG.sizes] == ["small", "small@2x", "large", "large@2x"]
        assert [size.width for size in DEFAULT_CATALOG.sizes] == [333, 667, 1500, 3000]
        assert DEFAULT_CATALOG.encoding_names == ["avif", "webp", "jpeg"]
        assert len(DEFAULT_CATALOG) == 12

    def test_sunset_artifact_keys(self):
        keys = DEFAULT_CATALOG.artifact_keys(parse_key("2021/spain/madrid/sunset.jpg"))

        assert len(keys) == 12
        assert len(set(keys)) == 12
        assert "2021/spain/madrid/sunset_small.avif" in keys
        assert "2021/spain/madrid/sunset_large@2x.jpeg" in keys
        assert all(key.startswith("2021/spain/madrid/sunset_") for key in keys)

    def test_artifact_keys_are_deterministic(self):
        identity = parse_key("2021/spain/madrid/sunset.jpg")
        assert DEFAULT_CATALOG.artifact_keys(identity) == DEFAULT_CATALOG.artifact_keys(identity)

    def test_specs_are_size_major(self):
        specs = TEST_CATALOG.specs()
        assert [spec.size.label for spec in specs[:3]] == ["small"] * 3
        assert [spec.encoding.name for spec in specs[:3]] == ["webp", "jpeg", "png"]


class TestSpecs:
    """Tests for the individual spec models."""

    def test_encoding_name_is_lowercased(self):
        assert EncodingSpec(name="WEBP").name == "webp"

    def test_encoding_content_type(self):
        assert EncodingSpec(name="avif").content_type == "image/avif"

    def test_encoding_save_kwargs_merge_options(self):
        spec = EncodingSpec(name="jpeg", quality=70, options=(("progressive", True),))
        assert spec.save_kwargs() == {"quality": 70, "progressive": True}

    @pytest.mark.parametrize("quality", [0, 101])
    def test_encoding_quality_bounds(self, quality):
        with pytest.raises(ValidationError):
            EncodingSpec(name="webp", quality=quality)

    def test_size_width_must_be_positive(self):
        with pytest.raises(ValidationError):
            SizeSpec(label="tiny", width=0)

    def test_catalog_rejects_empty_dimension(self):
        with pytest.raises(ValidationError):
            DerivativeCatalog(sizes=(), encodings=(EncodingSpec(name="webp"),))
        with pytest.raises(ValidationError):
            DerivativeCatalog(sizes=(SizeSpec(label="small", width=10),), encodings=())
