"""Tests for image URL and path component validation."""

import pytest

from feedsync.url_validation import (
    UnsafePathError,
    URLValidationError,
    sanitize_url,
    validate_image_url,
    validate_path_component,
)


class TestValidateImageUrl:
    def test_feed_image_url(self):
        url = "http://images.williams-trading.com/product_images/A/AB123.jpg"
        assert validate_image_url(url) == url

    def test_strips_whitespace_and_control_characters(self):
        url = "  http://images.williams-trading.com/product_images/A/AB\x00123.jpg\n"
        assert validate_image_url(url) == (
            "http://images.williams-trading.com/product_images/A/AB123.jpg"
        )

    @pytest.mark.parametrize("url", [
        "",
        "ftp://images.williams-trading.com/a.jpg",
        "javascript:alert(1)",
        "file:///etc/product_images/a.jpg",
        "data:image/png;base64,AAAA",
        "http://other.example.com/a.jpg",
        "http://images.williams-trading.com/",
        "http://images.williams-trading.com/product_images/../secret.jpg",
    ])
    def test_rejected(self, url):
        with pytest.raises(URLValidationError):
            validate_image_url(url)

    def test_custom_allowed_hosts(self):
        url = "https://cdn.example.com/a.jpg"
        assert validate_image_url(url, allowed_hosts={"cdn.example.com"}) == url


class TestValidatePathComponent:
    def test_plain_sku(self):
        assert validate_path_component("AB-123_x") == "AB-123_x"

    @pytest.mark.parametrize("value", ["", "  ", ".", "..", "a/b", "a\\b", "a\x00b"])
    def test_rejected(self, value):
        with pytest.raises(UnsafePathError):
            validate_path_component(value)


def test_sanitize_url_empty():
    assert sanitize_url("") == ""
