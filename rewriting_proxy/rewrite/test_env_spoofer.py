import pytest

from rewriting_proxy.proxy.url_codec import describe_target
from rewriting_proxy.rewrite.env_spoofer import build_spoof_script, inject_spoof_script

PROXY_ORIGIN = "http://proxy.local"


@pytest.fixture
def target():
    return describe_target("https://shop.example.com:8443/cart?id=1")


class TestBuildSpoofScript:
    def test_target_values_embedded(self, target):
        script = build_spoof_script(target, PROXY_ORIGIN)

        assert 'var TARGET_URL = "https://shop.example.com:8443/cart?id=1";' in script
        assert 'var TARGET_HOST = "shop.example.com:8443";' in script
        assert 'var TARGET_HOSTNAME = "shop.example.com";' in script
        assert 'var TARGET_ORIGIN = "https://shop.example.com:8443";' in script
        assert 'var TARGET_PROTOCOL = "https:";' in script
        assert 'var PROXY_ORIGIN = "http://proxy.local";' in script
        assert 'var PROXY_PREFIX = "/proxy/";' in script

    def test_is_a_single_script_element(self, target):
        script = build_spoof_script(target, PROXY_ORIGIN).strip()

        assert script.startswith("<script>")
        assert script.endswith("</script>")
        assert script.count("</script>") == 1

    @pytest.mark.parametrize(
        "member",
        [
            "override(window.location, 'hostname'",
            "override(window.location, 'host'",
            "override(window.location, 'origin'",
            "override(window.location, 'protocol'",
            "override(document, 'domain'",
            "override(document, 'cookie'",
            "window.location.assign = function(url)",
            "window.location.replace = function(url)",
            "history.pushState = function(state, title, url)",
            "history.replaceState = function(state, title, url)",
        ],
    )
    def test_overrides_present(self, target, member):
        assert member in build_spoof_script(target, PROXY_ORIGIN)

    def test_cookie_delegates_to_original_accessor(self, target):
        script = build_spoof_script(target, PROXY_ORIGIN)

        assert "cookieDescriptor.get.call(document)" in script
        assert "cookieDescriptor.set.call(document, value)" in script

    def test_values_cannot_close_the_script(self):
        target = describe_target("https://example.com/</script><b>")

        script = build_spoof_script(target, PROXY_ORIGIN)

        assert script.count("</script>") == 1
        assert "<\\/script><b>" in script

    def test_trailing_slash_on_proxy_origin_dropped(self, target):
        script = build_spoof_script(target, "http://proxy.local/")

        assert 'var PROXY_ORIGIN = "http://proxy.local";' in script


class TestInjectSpoofScript:
    def test_injected_before_head_close(self, target):
        markup = "<html><head><title>x</title></head><body></body></html>"

        result = inject_spoof_script(markup, target, PROXY_ORIGIN)

        script = build_spoof_script(target, PROXY_ORIGIN)
        assert result == f"<html><head><title>x</title>{script}</head><body></body></html>"

    def test_head_close_matched_case_insensitively(self, target):
        result = inject_spoof_script("<HEAD></HEAD><p>x</p>", target, PROXY_ORIGIN)

        assert result.startswith("<HEAD>\n<script>")
        assert result.endswith("</script>\n</HEAD><p>x</p>")

    def test_only_first_head_close(self, target):
        result = inject_spoof_script("<head></head><pre>&lt;/head&gt;</head></pre>", target, PROXY_ORIGIN)

        assert result.count("<script>") == 1
        assert result.index("<script>") < result.index("</head>")

    def test_prepended_without_head(self, target):
        markup = "<p>fragment</p>"

        result = inject_spoof_script(markup, target, PROXY_ORIGIN)

        assert result == build_spoof_script(target, PROXY_ORIGIN) + markup
