"""单条目重试控制器测试"""

from unittest.mock import MagicMock

import pytest

from adharvest.browser.block_detector import BlockDetector
from adharvest.common.exceptions import PageTimeoutError, SessionCrashError
from adharvest.common.types import APP_NAME, STORE_LINK, ExtractionResult, Outcome, Sentinel
from adharvest.crawler.retry import RetryController
from adharvest.extraction.extractor import FieldExtractor

URL = "https://adstransparency.example/creative/1"
PLAY_URL = "https://play.google.com/store/apps/details?id=com.example.app"


def make_controller(no_sleep, **kwargs) -> RetryController:
    kwargs.setdefault("max_attempts", 3)
    kwargs.setdefault("required_fields", [STORE_LINK, APP_NAME])
    return RetryController(sleep=no_sleep, settle_min=0, settle_max=0, jitter=0, **kwargs)


class TestResolve:
    @pytest.mark.asyncio
    async def test_resolved_on_first_attempt(self, no_sleep, fake_session_cls, page_factory, work_item_factory):
        page = page_factory(body=f'<a data-asoch-targets="ochAppName" href="{PLAY_URL}">Foo Bar</a>')
        session = fake_session_cls({URL: page})
        result = await make_controller(no_sleep).resolve(work_item_factory(URL), session)

        assert result.outcome is Outcome.RESOLVED
        assert result.get(STORE_LINK) == PLAY_URL
        assert result.get(APP_NAME) == "Foo Bar"
        assert result.attempts == 1
        assert session.calls == [URL]
        no_sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_later_attempt_fills_missing_field(self, no_sleep, fake_session_cls, page_factory, work_item_factory):
        first = page_factory(body='<script>var p = "com.example.app";</script>')
        second = page_factory(body="<h2>Puzzle Quest</h2>")
        session = fake_session_cls({URL: [first, second]})
        result = await make_controller(no_sleep).resolve(work_item_factory(URL), session)

        assert result.outcome is Outcome.RESOLVED
        assert result.get(STORE_LINK) == PLAY_URL
        assert result.get(APP_NAME) == "Puzzle Quest"
        assert result.attempts == 2
        assert no_sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_attempts_are_bounded(self, no_sleep, fake_session_cls, page_factory, work_item_factory):
        session = fake_session_cls(default=page_factory(body="<p>nothing here</p>"))
        result = await make_controller(no_sleep, max_attempts=4).resolve(work_item_factory(URL), session)

        assert result.outcome is Outcome.NOT_FOUND
        assert len(session.calls) == 4
        assert result.values == {STORE_LINK: Sentinel.NOT_FOUND, APP_NAME: Sentinel.NOT_FOUND}

    @pytest.mark.asyncio
    async def test_partial(self, no_sleep, fake_session_cls, page_factory, work_item_factory):
        session = fake_session_cls(default=page_factory(body="<h2>Puzzle Quest</h2>"))
        result = await make_controller(no_sleep, max_attempts=2).resolve(work_item_factory(URL), session)
        assert result.outcome is Outcome.PARTIAL
        assert result.get(APP_NAME) == "Puzzle Quest"
        assert result.get(STORE_LINK) is Sentinel.NOT_FOUND

    @pytest.mark.asyncio
    async def test_required_fields_follow_item(self, no_sleep, fake_session_cls, page_factory, work_item_factory):
        session = fake_session_cls(default=page_factory(body='<script>var p = "com.example.app";</script>'))
        item = work_item_factory(URL, fields=[STORE_LINK])
        result = await make_controller(no_sleep).resolve(item, session)
        assert result.outcome is Outcome.RESOLVED
        assert len(session.calls) == 1


class TestBlocked:
    @pytest.mark.asyncio
    async def test_block_short_circuits_extraction(self, no_sleep, fake_session_cls, page_factory, work_item_factory):
        blocked_page = page_factory(body="Our systems have detected unusual traffic from your computer network.")
        session = fake_session_cls({URL: blocked_page})
        extractor = MagicMock(spec=FieldExtractor)
        extractor.fields = frozenset({STORE_LINK, APP_NAME})
        normalizer = MagicMock()
        extractor.normalizer = normalizer

        controller = make_controller(no_sleep, extractor=extractor, detector=BlockDetector())
        result = await controller.resolve(work_item_factory(URL), session)

        assert result.outcome is Outcome.BLOCKED
        assert result.values == {STORE_LINK: Sentinel.BLOCKED, APP_NAME: Sentinel.BLOCKED}
        assert len(session.calls) == 1
        extractor.extract.assert_not_called()
        assert normalizer.mock_calls == []

    @pytest.mark.asyncio
    async def test_block_keeps_earlier_values(self, no_sleep, fake_session_cls, page_factory, work_item_factory):
        first = page_factory(body="<h2>Puzzle Quest</h2>")
        blocked = page_factory(status=429)
        session = fake_session_cls({URL: [first, blocked]})
        result = await make_controller(no_sleep).resolve(work_item_factory(URL), session)

        assert result.outcome is Outcome.BLOCKED
        assert result.get(APP_NAME) == "Puzzle Quest"
        assert result.get(STORE_LINK) is Sentinel.BLOCKED


class TestFailures:
    @pytest.mark.asyncio
    async def test_all_timeouts_become_error(self, no_sleep, fake_session_cls, work_item_factory):
        session = fake_session_cls({URL: PageTimeoutError(URL, 100)})
        result = await make_controller(no_sleep).resolve(work_item_factory(URL), session)

        assert result.outcome is Outcome.ERROR
        assert result.values == {STORE_LINK: Sentinel.ERROR, APP_NAME: Sentinel.ERROR}
        assert len(session.calls) == 3

    @pytest.mark.asyncio
    async def test_timeout_then_success(self, no_sleep, fake_session_cls, page_factory, work_item_factory):
        page = page_factory(body=f'<a data-asoch-targets="ochAppName" href="{PLAY_URL}">Foo Bar</a>')
        session = fake_session_cls({URL: [PageTimeoutError(URL), page]})
        result = await make_controller(no_sleep).resolve(work_item_factory(URL), session)
        assert result.outcome is Outcome.RESOLVED
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_crash_propagates(self, no_sleep, fake_session_cls, work_item_factory):
        session = fake_session_cls({URL: SessionCrashError("s1", "Target closed")})
        with pytest.raises(SessionCrashError):
            await make_controller(no_sleep).resolve(work_item_factory(URL), session)

    @pytest.mark.asyncio
    async def test_advertiser_passed_as_blacklist(self, no_sleep, fake_session_cls, page_factory, work_item_factory):
        extractor = MagicMock(spec=FieldExtractor)
        extractor.fields = frozenset({APP_NAME})
        found = ExtractionResult()
        found.set(APP_NAME, "Puzzle Quest", False, "heading")
        extractor.extract.return_value = found
        session = fake_session_cls(default=page_factory(body="<p>ok</p>"))
        item = work_item_factory(URL, fields=[APP_NAME], existing={"advertiser": "Acme"})

        await make_controller(no_sleep, extractor=extractor).resolve(item, session)

        _, kwargs = extractor.extract.call_args
        assert kwargs["blacklist"] == ["Acme"]
        assert kwargs["fields"] == frozenset({APP_NAME})
