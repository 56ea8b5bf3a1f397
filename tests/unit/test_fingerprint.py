"""指纹与资源拦截策略测试"""

import pytest

from adharvest.browser.fingerprint import Fingerprint, should_block


class TestFingerprint:
    def test_context_options(self):
        fp = Fingerprint("Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7)", {"width": 1440, "height": 900}, "en-GB,en;q=0.9")
        options = fp.context_options()
        assert options["viewport"] == {"width": 1440, "height": 900}
        assert options["extra_http_headers"] == {"accept-language": "en-GB,en;q=0.9"}
        assert fp.platform == "MacIntel"
        assert "'MacIntel'" in fp.init_script()


class TestResourceBlocking:
    @pytest.mark.parametrize("resource_type", ["document", "script", "xhr", "fetch"])
    def test_rendering_resources_always_allowed(self, resource_type):
        assert not should_block(resource_type, "https://www.google-analytics.com/collect")

    @pytest.mark.parametrize("resource_type", ["image", "font", "media"])
    def test_heavy_resources_blocked(self, resource_type):
        assert should_block(resource_type, "https://tpc.googlesyndication.com/x.png")

    def test_tracking_urls_blocked(self):
        assert should_block("ping", "https://www.google-analytics.com/g/collect")
        assert not should_block("stylesheet", "https://fonts.example/app.css")
