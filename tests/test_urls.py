"""
Tests for URL canonicalization and page identity.
"""

import pytest

from site_explorer.session.urls import is_same_page, normalize_url, url_hash


class TestNormalizeUrl:
    """Tests for normalize_url."""

    def test_root_keeps_slash(self):
        """A bare domain should normalize to the root path."""
        assert normalize_url("https://example.com") == "https://example.com/"

    def test_lowercases_scheme_and_host(self):
        """Scheme and host are case-insensitive."""
        assert normalize_url("HTTPS://Example.COM/Path") == "https://example.com/Path"

    def test_removes_default_ports(self):
        """Default ports should be dropped, others kept."""
        assert normalize_url("https://example.com:443/a") == "https://example.com/a"
        assert normalize_url("http://example.com:80/a") == "http://example.com/a"
        assert normalize_url("http://example.com:8080/a") == "http://example.com:8080/a"

    def test_strips_trailing_slash(self):
        """Trailing slashes on non-root paths are removed."""
        assert normalize_url("https://example.com/contact/") == "https://example.com/contact"

    def test_drops_fragment(self):
        """Fragments do not change page identity."""
        assert normalize_url("https://example.com/faq#shipping") == "https://example.com/faq"

    def test_drops_volatile_params_and_sorts(self):
        """Tracking parameters are removed and the rest sorted."""
        url = "https://example.com/list?utm_source=x&b=2&gclid=abc&a=1"
        assert normalize_url(url) == "https://example.com/list?a=1&b=2"

    def test_custom_volatile_params(self):
        """Caller-supplied patterns replace the defaults."""
        url = "https://example.com/?ref=home&page=2"
        assert normalize_url(url, volatile_params=["ref"]) == "https://example.com/?page=2"

    def test_keeps_hash_routes_when_enabled(self):
        """SPA hash routes survive only when asked for."""
        url = "https://app.example.com/#/settings/"
        assert normalize_url(url) == "https://app.example.com/"
        assert normalize_url(url, keep_hash_routes=True) == "https://app.example.com/#/settings"

    def test_relative_url_unchanged(self):
        """Input without scheme and host is returned as is."""
        assert normalize_url("/contact") == "/contact"

    @pytest.mark.parametrize("variant", [
        "https://example.com/contact",
        "https://EXAMPLE.com/contact/",
        "https://example.com:443/contact#form",
        "https://example.com/contact?utm_campaign=spring",
    ])
    def test_variants_share_identity(self, variant):
        """URL variants should map to one page."""
        assert is_same_page(variant, "https://example.com/contact")


class TestUrlHash:
    """Tests for url_hash."""

    def test_shape(self):
        """Hash carries the domain and a readable slug."""
        value = url_hash("https://example.com/contact")

        assert value.startswith("example.com_contact_")
        assert len(value.rsplit("_", 1)[1]) == 8

    def test_root_slug(self):
        """The root path gets the 'root' slug."""
        assert url_hash("https://example.com/").startswith("example.com_root_")

    def test_stable_and_distinct(self):
        """Same URL hashes the same; different URLs differ."""
        assert url_hash("https://example.com/a") == url_hash("https://example.com/a")
        assert url_hash("https://example.com/a") != url_hash("https://example.com/b")
