"""
Unit Tests for RequestDeduplicator
"""

import asyncio

import pytest

from data_resilience.core.exceptions import BackendNetworkError
from tests.test_fixtures import BackendTestFactory, ScriptedBackend


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.unit
class TestRequestDeduplicator:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_call(self, deduplicator, metrics):
        backend = BackendTestFactory.gated([{"id": 1}])
        waiters = [asyncio.create_task(deduplicator.acquire("k", backend)) for _ in range(5)]
        await _settle()

        assert deduplicator.is_in_flight("k")
        assert deduplicator.in_flight_count() == 1
        backend.gate.set()
        results = await asyncio.gather(*waiters)

        assert backend.calls == 1
        assert all(result == [{"id": 1}] for result in results)
        assert deduplicator.get_stats()["joined"] == 4
        assert metrics.get_sample_value("data_access_dedup_joined_requests_total") == 4.0

    @pytest.mark.asyncio
    async def test_error_is_shared(self, deduplicator):
        error = BackendNetworkError("reset")
        backend = ScriptedBackend(error, gate=asyncio.Event())
        waiters = [asyncio.create_task(deduplicator.acquire("k", backend)) for _ in range(3)]
        await _settle()
        backend.gate.set()

        results = await asyncio.gather(*waiters, return_exceptions=True)
        assert all(result is error for result in results)
        assert backend.calls == 1

    @pytest.mark.asyncio
    async def test_registration_removed_after_settlement(self, deduplicator):
        backend = ScriptedBackend("first", "second")
        assert await deduplicator.acquire("k", backend) == "first"
        assert not deduplicator.is_in_flight("k")

        assert await deduplicator.acquire("k", backend) == "second"
        assert backend.calls == 2
        assert deduplicator.get_stats()["started"] == 2

    @pytest.mark.asyncio
    async def test_different_keys_do_not_share(self, deduplicator):
        backend = BackendTestFactory.succeeding("rows")
        await asyncio.gather(deduplicator.acquire("a", backend), deduplicator.acquire("b", backend))
        assert backend.calls == 2

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_shared_call(self, deduplicator):
        backend = BackendTestFactory.gated("rows")
        leaving = asyncio.create_task(deduplicator.acquire("k", backend))
        staying = asyncio.create_task(deduplicator.acquire("k", backend))
        await _settle()

        leaving.cancel()
        with pytest.raises(asyncio.CancelledError):
            await leaving

        backend.gate.set()
        assert await staying == "rows"
        assert backend.calls == 1

    @pytest.mark.asyncio
    async def test_cancel_all(self, deduplicator):
        backend = BackendTestFactory.gated("rows")
        waiter = asyncio.create_task(deduplicator.acquire("k", backend))
        await _settle()

        await deduplicator.cancel_all()

        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert deduplicator.in_flight_count() == 0

    @pytest.mark.asyncio
    async def test_stats_describe_in_flight_requests(self, deduplicator):
        backend = BackendTestFactory.gated("rows")
        waiters = [asyncio.create_task(deduplicator.acquire("k", backend)) for _ in range(2)]
        await _settle()

        stats = deduplicator.get_stats()
        assert stats["in_flight"] == 1
        assert stats["requests"][0]["key"] == "k"
        assert stats["requests"][0]["subscribers"] == 2

        backend.gate.set()
        await asyncio.gather(*waiters)
