"""Tests for storage key parsing."""

import pytest

from photos_pipeline.core.exceptions import HierarchyError, UnsupportedFormatError
from photos_pipeline.core.paths import (
    artifact_key,
    decode_key,
    ensure_supported_format,
    file_extension,
    is_directory_key,
    parse_key,
    split_key,
)


class TestParseKey:
    """Tests for parse_key."""

    def test_four_segment_key_with_sub_album(self):
        identity = parse_key("2021/spain/madrid/sunset.jpg")
        assert identity.year == 2021
        assert identity.album == "spain"
        assert identity.sub_album == "madrid"
        assert identity.base_name == "sunset"
        assert identity.directory == "2021/spain/madrid/"
        assert identity.extension == "jpg"

    def test_three_segment_key_has_no_sub_album(self):
        identity = parse_key("2019/iceland/glacier.png")
        assert identity.sub_album is None
        assert identity.directory == "2019/iceland/"
        assert identity.base_name == "glacier"

    def test_base_name_keeps_inner_dots(self):
        identity = parse_key("2020/italy/rome.at.night.jpeg")
        assert identity.base_name == "rome.at.night"
        assert identity.extension == "jpeg"

    @pytest.mark.parametrize(
        "key",
        [
            "sunset.jpg",
            "2021/sunset.jpg",
            "2021/spain/madrid/old/sunset.jpg",
            "2021//madrid/sunset.jpg",
        ],
    )
    def test_wrong_segment_count_raises_hierarchy_error(self, key):
        with pytest.raises(HierarchyError) as exc_info:
            parse_key(key)
        assert exc_info.value.key == key

    def test_non_numeric_year_raises_hierarchy_error(self):
        with pytest.raises(HierarchyError, match="non-numeric year"):
            parse_key("summer/spain/sunset.jpg")

    def test_missing_extension_raises_unsupported_format(self):
        with pytest.raises(UnsupportedFormatError):
            parse_key("2021/spain/sunset")


class TestKeyHelpers:
    """Tests for the smaller key helpers."""

    def test_decode_key_handles_plus_and_percent_escapes(self):
        assert decode_key("2021/spain/my+photo%C3%B1.jpg") == "2021/spain/my photoñ.jpg"

    def test_split_key_keeps_trailing_separator(self):
        assert split_key("2021/spain/sunset.jpg") == ("2021/spain/", "sunset.jpg")
        assert split_key("sunset.jpg") == ("", "sunset.jpg")

    def test_file_extension(self):
        assert file_extension("2021/spain/sunset.JPG") == "JPG"
        assert file_extension("2021/spain/") is None
        assert file_extension("2021/spain") is None

    @pytest.mark.parametrize(
        "key, expected",
        [("2021/spain/", True), ("2021/spain", True), ("2021/spain/sunset.jpg", False)],
    )
    def test_is_directory_key(self, key, expected):
        assert is_directory_key(key) is expected

    @pytest.mark.parametrize("key", ["a/b/c.jpg", "a/b/c.JPEG", "a/b/c.png"])
    def test_supported_formats(self, key):
        assert ensure_supported_format(key) in {"jpg", "jpeg", "png"}

    @pytest.mark.parametrize("key", ["a/b/c.gif", "a/b/c.txt", "a/b/c"])
    def test_unsupported_formats(self, key):
        with pytest.raises(UnsupportedFormatError):
            ensure_supported_format(key)

    def test_artifact_key_for_sunset(self):
        identity = parse_key("2021/spain/madrid/sunset.jpg")
        assert artifact_key(identity, "small", "webp") == "2021/spain/madrid/sunset_small.webp"
        assert artifact_key(identity, "large@2x", "avif") == "2021/spain/madrid/sunset_large@2x.avif"
