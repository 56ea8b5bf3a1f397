"""Result Sink 测试"""

import pytest

from adharvest.common.types import (
    APP_NAME,
    STORE_LINK,
    ExtractionResult,
    RunStats,
    Sentinel,
)
from adharvest.storage.memory_store import MemoryTableStore
from adharvest.storage.sink import ResultSink, chunked

PLAY_URL = "https://play.google.com/store/apps/details?id=com.example.app"


class RateLimitError(Exception):
    status = 429


class FlakyStore(MemoryTableStore):
    """前 failures 次 batch_update 抛出指定异常"""

    def __init__(self, sheets, error: Exception, failures: int = 1):
        super().__init__(sheets)
        self.error = error
        self.failures = failures
        self.update_calls = []

    async def batch_update(self, sheet, updates):
        self.update_calls.append(sorted({u.row for u in updates}))
        if self.failures > 0:
            self.failures -= 1
            raise self.error
        await super().batch_update(sheet, updates)


def result_with(**values) -> ExtractionResult:
    result = ExtractionResult()
    for name, value in values.items():
        result.set(name, value, False, "test")
    return result


@pytest.fixture
def five_rows(row_factory):
    return [row_factory(f"https://ads.example/{i}") for i in range(1, 6)]


@pytest.fixture
def five_items(work_item_factory):
    return [work_item_factory(f"https://ads.example/{i}", row=i + 1) for i in range(1, 6)]


class TestWrite:
    @pytest.mark.asyncio
    async def test_rate_limited_chunk_is_retried(self, memory_store_factory, five_rows, five_items, no_sleep):
        store = FlakyStore(memory_store_factory({"Sheet1": five_rows}).sheets, RateLimitError("rate limit exceeded"))
        sink = ResultSink(store, chunk_size=2, max_retries=3, base_delay=5, sleep=no_sleep)
        requests = [
            sink.build_request(item, result_with(store_link=PLAY_URL, app_name=f"App {item.row_key.row}"))
            for item in five_items
        ]
        stats = RunStats()

        failed = await sink.write(requests, stats)

        assert failed == []
        assert store.update_calls[0] == [2, 3]
        assert store.update_calls[1] == [2, 3]
        assert len(store.update_calls) == 4
        no_sleep.assert_awaited_once_with(5)
        assert stats.written_rows == [f"Sheet1!{row}" for row in range(2, 7)]
        assert len(store.sheets["Sheet1"]) == 6
        for row in range(2, 7):
            assert store.cell("Sheet1", row, 2) == PLAY_URL
            assert store.cell("Sheet1", row, 3) == f"App {row}"

    @pytest.mark.asyncio
    async def test_exhausted_retries_record_failed_rows(self, memory_store_factory, five_rows, five_items, no_sleep):
        store = FlakyStore(memory_store_factory({"Sheet1": five_rows}).sheets, RateLimitError("429"), failures=10)
        sink = ResultSink(store, chunk_size=3, max_retries=2, base_delay=1, sleep=no_sleep)
        requests = [sink.build_request(item, result_with(app_name="Foo")) for item in five_items]
        stats = RunStats()

        failed = await sink.write(requests, stats)

        # 第一块重试 2 次后放弃，第二块同样失败
        assert failed == ["Sheet1!2", "Sheet1!3", "Sheet1!4", "Sheet1!5", "Sheet1!6"]
        assert stats.failed_rows == failed
        assert [call.args[0] for call in no_sleep.await_args_list] == [1, 2, 1, 2]

    @pytest.mark.asyncio
    async def test_fatal_error_skips_to_next_chunk(self, memory_store_factory, five_rows, five_items, no_sleep):
        store = FlakyStore(memory_store_factory({"Sheet1": five_rows}).sheets, PermissionError("forbidden"))
        sink = ResultSink(store, chunk_size=2, sleep=no_sleep)
        requests = [sink.build_request(item, result_with(app_name="Foo")) for item in five_items]
        stats = RunStats()

        failed = await sink.write(requests, stats)

        assert failed == ["Sheet1!2", "Sheet1!3"]
        assert stats.written_rows == ["Sheet1!4", "Sheet1!5", "Sheet1!6"]
        no_sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_write_is_idempotent(self, memory_store_factory, five_rows, five_items):
        store = memory_store_factory({"Sheet1": five_rows})
        sink = ResultSink(store)
        requests = [sink.build_request(item, result_with(app_name="Foo")) for item in five_items]

        await sink.write(requests)
        snapshot = [list(row) for row in store.sheets["Sheet1"]]
        await sink.write(requests)
        assert store.sheets["Sheet1"] == snapshot

    @pytest.mark.asyncio
    async def test_empty_requests_are_not_written(self, memory_store_factory, five_rows):
        store = FlakyStore(memory_store_factory({"Sheet1": five_rows}).sheets, RuntimeError("unused"), failures=0)
        assert await ResultSink(store).write([]) == []
        assert store.update_calls == []


class TestSentinelGuard:
    def test_empty_cell_gets_sentinel(self, work_item_factory):
        sink = ResultSink(MemoryTableStore())
        request = sink.build_request(work_item_factory(), ExtractionResult.empty([STORE_LINK, APP_NAME]))
        assert request.field_values == {STORE_LINK: "NOT_FOUND", APP_NAME: "NOT_FOUND"}

    def test_sentinel_never_overwrites_value(self, work_item_factory):
        sink = ResultSink(MemoryTableStore())
        item = work_item_factory(existing={APP_NAME: "Foo"})
        request = sink.build_request(item, result_with(app_name=Sentinel.ERROR, store_link=PLAY_URL))
        assert request.field_values == {STORE_LINK: PLAY_URL}

    def test_value_replaces_stored_sentinel(self, work_item_factory):
        sink = ResultSink(MemoryTableStore())
        item = work_item_factory(existing={APP_NAME: "NOT_FOUND"})
        assert sink.build_request(item, result_with(app_name="Foo")).field_values == {APP_NAME: "Foo"}
        assert sink.build_request(item, result_with(app_name=Sentinel.ERROR)).is_empty()

    def test_force_overwrites(self, work_item_factory):
        sink = ResultSink(MemoryTableStore(), force=True)
        item = work_item_factory(existing={APP_NAME: "Foo"})
        assert sink.build_request(item, result_with(app_name="Bar")).field_values == {APP_NAME: "Bar"}

    def test_unmapped_fields_ignored(self, work_item_factory):
        sink = ResultSink(MemoryTableStore())
        assert sink.build_request(work_item_factory(), result_with(unknown="x")).is_empty()


class TestAppend:
    @pytest.mark.asyncio
    async def test_append_in_chunks(self, memory_store_factory, no_sleep):
        store = memory_store_factory({"Master": []})
        sink = ResultSink(store, chunk_size=2, sleep=no_sleep)
        rows = [["", f"https://ads.example/{i}"] for i in range(5)]
        assert await sink.append("Master", rows) == 5
        assert len(store.sheets["Master"]) == 6


def test_chunked():
    assert [list(c) for c in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]
