"""浏览器会话测试（Playwright 对象全部替换为 Mock）"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from adharvest.browser.fingerprint import Fingerprint
from adharvest.browser.session import BrowserSession, is_crash_error
from adharvest.common.exceptions import PageTimeoutError, SessionCrashError

URL = "https://adstransparency.example/creative/1"
MAIN_HTML = "<html><head><title>Ad details</title></head><body><h1>Acme</h1></body></html>"


def _frame(url, html=None, size=(300, 250), error=None):
    frame = MagicMock()
    frame.url = url
    frame.content = AsyncMock(side_effect=error) if error else AsyncMock(return_value=html)
    frame.evaluate = AsyncMock(return_value=list(size))
    return frame


@pytest.fixture
def mock_page():
    """模拟 Playwright Page 对象"""
    page = AsyncMock()
    page.set_default_timeout = MagicMock()
    page.goto = AsyncMock(return_value=MagicMock(status=200))
    page.content = AsyncMock(return_value=MAIN_HTML)
    page.title = AsyncMock(return_value="Ad details")
    main = _frame(URL, size=(1280, 720))
    ad = _frame("https://tpc.googlesyndication.com/x", html="<html><body><a>Foo</a></body></html>")
    cross_origin = _frame("https://other.example/x", error=PlaywrightError("Frame was detached"))
    page.main_frame = main
    page.frames = [main, ad, cross_origin]
    page.close = AsyncMock()
    page.evaluate = AsyncMock(return_value=2)
    return page


@pytest.fixture
def engine(mock_page):
    context = MagicMock()
    context.new_page = AsyncMock(return_value=mock_page)
    context.route = AsyncMock()
    context.close = AsyncMock()
    engine = MagicMock()
    engine.is_connected = True
    engine.new_context = AsyncMock(return_value=context)
    return engine


@pytest.fixture
def fingerprint():
    return Fingerprint("Mozilla/5.0 (Windows NT 10.0; Win64; x64)", {"width": 1366, "height": 768})


class TestBrowserSession:
    @pytest.mark.asyncio
    async def test_start_installs_resource_blocking(self, engine, fingerprint):
        session = await BrowserSession(engine, fingerprint, proxy="http://p1:8080").start()
        engine.new_context.assert_awaited_once_with(fingerprint, "http://p1:8080")
        session.context.route.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_render_snapshots_frames(self, engine, fingerprint, mock_page):
        session = await BrowserSession(engine, fingerprint).start()
        snapshot = await session.render(URL)

        assert session.pages_loaded == 1
        assert session.items_handled == 0
        assert snapshot.status == 200
        assert snapshot.title == "Ad details"
        assert snapshot.main.html == MAIN_HTML
        frames = {frame.url: frame for frame in snapshot.frames}
        assert frames["https://tpc.googlesyndication.com/x"].readable
        assert frames["https://other.example/x"].html is None
        mock_page.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_timeout(self, engine, fingerprint, mock_page):
        mock_page.goto.side_effect = PlaywrightTimeoutError("Timeout 60000ms exceeded")
        session = await BrowserSession(engine, fingerprint).start()
        with pytest.raises(PageTimeoutError):
            await session.render(URL)
        assert session.healthy
        mock_page.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_crash_marks_unhealthy(self, engine, fingerprint, mock_page):
        mock_page.goto.side_effect = PlaywrightError("Target page, context or browser has been closed")
        session = await BrowserSession(engine, fingerprint).start()
        with pytest.raises(SessionCrashError):
            await session.render(URL)
        assert not session.healthy

    @pytest.mark.asyncio
    async def test_render_before_start(self, engine, fingerprint):
        with pytest.raises(SessionCrashError):
            await BrowserSession(engine, fingerprint).render(URL)

    @pytest.mark.asyncio
    async def test_health_check(self, engine, fingerprint, mock_page):
        session = await BrowserSession(engine, fingerprint).start()
        assert await session.health_check(1000) is True

        mock_page.evaluate.side_effect = PlaywrightError("Target closed")
        assert await session.health_check(1000) is False
        assert not session.healthy

    @pytest.mark.asyncio
    async def test_close(self, engine, fingerprint):
        session = await BrowserSession(engine, fingerprint).start()
        context = session.context
        await session.close()
        context.close.assert_awaited_once()
        assert session.context is None


def test_is_crash_error():
    assert is_crash_error(Exception("Browser has disconnected"))
    assert not is_crash_error(Exception("net::ERR_NAME_NOT_RESOLVED"))
