"""拦截检测测试"""

import pytest

from adharvest.browser.block_detector import BlockDetector
from adharvest.common.exceptions import BlockedError


@pytest.fixture
def detector():
    return BlockDetector()


class TestBlockDetector:
    def test_rate_limit_status(self, detector):
        assert detector.is_blocked(429, "<html>ok</html>")

    @pytest.mark.parametrize(
        "body",
        [
            "Our systems have detected Unusual Traffic from your network",
            "<div class='g-recaptcha'></div>",
            "Please verify you are human",
            "Too Many Requests",
        ],
    )
    def test_keywords(self, detector, body):
        assert detector.is_blocked(200, body)

    def test_normal_page(self, detector):
        assert not detector.is_blocked(200, "<html><h1>Puzzle Quest</h1></html>")
        assert not detector.is_blocked(None, None)

    def test_matched_keyword(self, detector):
        assert detector.matched_keyword("solve this CAPTCHA") == "captcha"
        assert detector.matched_keyword("") is None

    def test_custom_keywords(self):
        detector = BlockDetector(keywords=["access denied"], status_codes=[403])
        assert detector.is_blocked(403, "")
        assert detector.is_blocked(200, "Access Denied")
        assert not detector.is_blocked(429, "captcha")

    def test_check_raises_with_status(self, detector):
        with pytest.raises(BlockedError) as exc_info:
            detector.check("https://ads.example/1", 429, "<html>ok</html>")
        assert exc_info.value.status == 429
        assert exc_info.value.url == "https://ads.example/1"

        detector.check("https://ads.example/1", 200, "<html><h1>Puzzle Quest</h1></html>")
