import asyncio

import pytest

from leadsync.services.batching import chunked, fan_out
from leadsync.services.reconciler import filter_calls_for_processing, is_terminal


class TestFilterCallsForProcessing:
    def test_new_calls_pass(self, retell_call):
        calls = [retell_call("c1"), retell_call("c2", call_status="ongoing")]
        assert [c.call_id for c in filter_calls_for_processing(calls, {})] == ["c1", "c2"]

    def test_stored_terminal_calls_are_skipped(self, retell_call):
        calls = [retell_call("c1"), retell_call("c2"), retell_call("c3")]
        existing = {"c1": "ended", "c2": "failed"}
        assert [c.call_id for c in filter_calls_for_processing(calls, existing)] == ["c3"]

    def test_stored_non_terminal_calls_are_refreshed(self, retell_call):
        calls = [retell_call("c1", call_status="ended"), retell_call("c2", call_status="ongoing")]
        existing = {"c1": "ongoing", "c2": "registered"}
        assert [c.call_id for c in filter_calls_for_processing(calls, existing)] == ["c1", "c2"]

    def test_stored_without_status_is_refreshed(self, retell_call):
        assert len(filter_calls_for_processing([retell_call("c1")], {"c1": None})) == 1

    def test_preserves_input_order(self, retell_call):
        calls = [retell_call(f"c{i}") for i in (5, 1, 4, 2)]
        existing = {"c1": "ended"}
        assert [c.call_id for c in filter_calls_for_processing(calls, existing)] == ["c5", "c4", "c2"]

    def test_is_terminal(self):
        assert is_terminal("ended")
        assert is_terminal("failed")
        assert not is_terminal("ongoing")
        assert not is_terminal(None)


class TestBatching:
    def test_chunked(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
        assert list(chunked([], 3)) == []

    @pytest.mark.asyncio
    async def test_fan_out_bounds_concurrency_and_keeps_order(self):
        in_flight = 0
        peak = 0

        async def worker(item):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1
            return item * 10

        results = await fan_out(list(range(7)), 3, worker, label="test")

        assert results == [0, 10, 20, 30, 40, 50, 60]
        assert peak == 3
