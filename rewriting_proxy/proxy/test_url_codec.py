import pytest

from rewriting_proxy.errors import InvalidProxyPath, InvalidTargetURL
from rewriting_proxy.proxy.url_codec import (
    decode,
    describe_target,
    encode,
    proxied_url,
    rewrite_reference,
    split_proxy_path,
)

DEFAULT_TARGET = "https://www.google.com"


@pytest.fixture
def target():
    return describe_target("https://example.com/a/")


class TestEncodeDecode:
    def test_encode_escapes_the_whole_url(self):
        assert (
            encode("https://example.com/a?b=1&c=2")
            == "/proxy/https%3A%2F%2Fexample.com%2Fa%3Fb%3D1%26c%3D2"
        )

    def test_encode_keeps_component_safe_characters(self):
        assert encode("https://example.com/(x)!*~'") == (
            "/proxy/https%3A%2F%2Fexample.com%2F(x)!*~'"
        )

    @pytest.mark.parametrize(
        "url",
        [
            "https://example.com/",
            "http://example.com:8080/path/to/page?q=hello%20world&x=1#frag",
            "https://user:pw@example.com/a%2Fb",
            "https://例え.jp/パス?クエリ=値",
            "https://[::1]:8443/",
        ],
    )
    def test_round_trip(self, url):
        assert decode(encode(url)[len("/proxy/"):], DEFAULT_TARGET) == url

    def test_empty_value_selects_default_target(self):
        assert decode("", DEFAULT_TARGET) == DEFAULT_TARGET

    def test_missing_scheme_defaults_to_https(self):
        assert decode("example.com%2Fpath", DEFAULT_TARGET) == "https://example.com/path"

    def test_scheme_check_is_case_insensitive(self):
        assert decode("HTTP%3A%2F%2Fexample.com", DEFAULT_TARGET) == "HTTP://example.com"

    @pytest.mark.parametrize(
        "encoded",
        [
            "https%3A%2F%2F",  # no host
            "https%3A%2F%2Fexa%20mple.com",  # space in host
            "https%3A%2F%2Fexample.com%3Aabc",  # bad port
            "https%3A%2F%2F%5B%3A%3A1",  # unterminated IPv6 literal
            "%ZZexample.com",  # percent sign in host
            "%ff%fe",  # not UTF-8
        ],
    )
    def test_invalid_targets(self, encoded):
        with pytest.raises(InvalidTargetURL):
            decode(encoded, DEFAULT_TARGET)


class TestSplitProxyPath:
    def test_returns_encoded_part(self):
        assert split_proxy_path("/proxy/https%3A%2F%2Fexample.com") == "https%3A%2F%2Fexample.com"

    def test_later_segments_are_kept(self):
        assert split_proxy_path("/proxy/https:/example.com/a") == "https:/example.com/a"

    @pytest.mark.parametrize("path", ["/proxy", "/proxy/"])
    def test_bare_prefix_is_empty(self, path):
        assert split_proxy_path(path) == ""

    @pytest.mark.parametrize("path", ["/other/thing", "/", "", "/proxyx/abc", "/Proxy/abc"])
    def test_rejects_other_paths(self, path):
        with pytest.raises(InvalidProxyPath):
            split_proxy_path(path)


class TestDescribeTarget:
    def test_default_port_is_dropped(self):
        target = describe_target("https://Example.COM:443/a?b=1")

        assert target.scheme == "https"
        assert target.hostname == "example.com"
        assert target.host == "example.com"
        assert target.origin == "https://example.com"
        assert target.protocol == "https:"
        assert target.url == "https://Example.COM:443/a?b=1"

    def test_explicit_port_is_kept(self):
        target = describe_target("http://example.com:8080/x")

        assert target.host == "example.com:8080"
        assert target.origin == "http://example.com:8080"
        assert target.protocol == "http:"

    def test_credentials_are_not_part_of_host(self):
        assert describe_target("https://u:p@example.com/").host == "example.com"

    def test_ipv6_host_keeps_brackets(self):
        target = describe_target("https://[::1]:8443/")

        assert target.hostname == "::1"
        assert target.host == "[::1]:8443"


class TestRewriteReference:
    def test_root_relative(self, target):
        assert rewrite_reference("/b/c", target) == encode("https://example.com/b/c")

    def test_protocol_relative(self, target):
        assert rewrite_reference("//cdn.example.com/x", target) == encode(
            "https://cdn.example.com/x"
        )

    def test_path_relative(self, target):
        assert rewrite_reference("page.html", target) == encode("https://example.com/a/page.html")

    def test_query_only(self, target):
        assert rewrite_reference("?q=1", target) == encode("https://example.com/a/?q=1")

    def test_fragment_only(self, target):
        assert rewrite_reference("#top", target) == encode("https://example.com/a/#top")

    def test_absolute_other_host(self, target):
        assert rewrite_reference("http://other.org/x", target) == encode("http://other.org/x")

    def test_surrounding_whitespace_is_ignored(self, target):
        assert rewrite_reference("  /b  ", target) == encode("https://example.com/b")

    @pytest.mark.parametrize(
        "value",
        [
            "mailto:a@b.com",
            "javascript:void(0)",
            "data:image/png;base64,AAAA",
            "tel:+123456",
            "http://[::1",
        ],
    )
    def test_non_web_values_pass_through(self, target, value):
        assert rewrite_reference(value, target) == value


class TestProxiedUrl:
    def test_prefixes_proxy_origin(self):
        assert (
            proxied_url("https://example.com/x", "http://proxy.local/")
            == "http://proxy.local/proxy/https%3A%2F%2Fexample.com%2Fx"
        )
