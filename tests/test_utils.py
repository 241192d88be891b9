"""
Utility Tests

Tests for identifier helpers, image inspection and the local cover cache.
"""

import pytest

from bookrec.services.local_covers import LocalCoverCache
from bookrec.utils.identifiers import (
    is_isbn,
    isbn_kind,
    looks_like_uuid,
    new_canonical_id,
    sanitize_isbn,
)
from bookrec.utils.images import ImageInfo, inspect_image, looks_like_placeholder
from tests.conftest import make_image_bytes

# =============================================================================
# Identifiers
# =============================================================================


class TestIdentifiers:
    """Tests for UUID and ISBN helpers."""

    def test_new_canonical_id_is_uuid(self):
        assert looks_like_uuid(new_canonical_id())

    @pytest.mark.parametrize("value", [None, "", "zyTCAlFPjgYC", "9780553293357", "1234-5678"])
    def test_not_uuid(self, value):
        assert looks_like_uuid(value) is False

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("978-0-553-29335-7", "9780553293357"),
            ("0 553 29335 4", "0553293354"),
            ("0-553-29335-x", "055329335X"),
            ("zyTCAlFPjgYC", None),
            ("12345", None),
            (None, None),
        ],
    )
    def test_sanitize_isbn(self, value, expected):
        assert sanitize_isbn(value) == expected

    def test_isbn_kind(self):
        assert is_isbn("9780553293357")
        assert isbn_kind("9780553293357") == "ISBN13"
        assert isbn_kind("0553293354") == "ISBN10"


# =============================================================================
# Image Inspection
# =============================================================================


class TestInspectImage:
    """Tests for Pillow-based image inspection."""

    def test_jpeg(self):
        info = inspect_image(make_image_bytes(300, 450))

        assert (info.width, info.height) == (300, 450)
        assert info.extension == "jpg"
        assert info.content_type == "image/jpeg"

    def test_png(self):
        info = inspect_image(make_image_bytes(20, 30, fmt="PNG"))

        assert info.extension == "png"
        assert info.content_type == "image/png"

    @pytest.mark.parametrize("data", [None, b"", b"<html>not found</html>"])
    def test_undecodable(self, data):
        assert inspect_image(data) is None

    def test_placeholder_detection(self):
        assert looks_like_placeholder(inspect_image(make_image_bytes(1, 1, fmt="GIF")))
        assert not looks_like_placeholder(ImageInfo(width=128, height=190, format="JPEG"))


# =============================================================================
# Local Cover Cache
# =============================================================================


class TestLocalCoverCache:
    """Tests for the on-disk cover cache."""

    def test_write_then_read(self, tmp_path):
        cache = LocalCoverCache(tmp_path / "book-covers")

        path = cache.write("book-1", b"jpeg bytes")

        assert path.name == "book-1.jpg"
        assert cache.read("book-1") == (path, b"jpeg bytes")
        assert cache.web_path(path) == "/book-covers/book-1.jpg"

    def test_read_missing(self, tmp_path):
        assert LocalCoverCache(tmp_path).read("book-1") is None

    def test_rewrite_replaces_other_extension(self, tmp_path):
        cache = LocalCoverCache(tmp_path)
        cache.write("book-1", b"jpeg bytes")

        path = cache.write("book-1", b"png bytes", "png")

        assert cache.find("book-1") == path
        assert not (tmp_path / "book-1.jpg").exists()

    def test_unsafe_characters_in_id(self, tmp_path):
        cache = LocalCoverCache(tmp_path)

        path = cache.write("../etc/passwd", b"x")

        assert path.parent == tmp_path
        assert path.name == ".._etc_passwd.jpg"
