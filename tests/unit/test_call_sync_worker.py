"""
Unit tests for Call Sync Worker
Tests stale call selection, sweep counting and the run loop
"""
import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

from app.core.config import Settings
from app.domain.interfaces.voice_provider import ProviderCall
from app.domain.models.call import Call
from app.domain.services.call_service import CallService
from app.infrastructure.storage.memory_store import InMemoryCallStore, InMemoryTenantRepository
from app.infrastructure.telephony.vapi_client import VapiError
from app.workers.call_sync_worker import CallSyncWorker

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return Settings(
        storage_backend="memory",
        sync_stale_after_seconds=300,
        sync_interval_seconds=1,
        sync_batch_size=10,
    )


@pytest.fixture
def calls():
    return InMemoryCallStore()


@pytest.fixture
def voice():
    provider = MagicMock()
    provider.name = "vapi"
    provider.get_call = AsyncMock(return_value=ProviderCall(id="vapi-1", status="completed", transcript="AI: Bye"))
    return provider


@pytest.fixture
def worker(calls, voice, settings):
    service = CallService(calls, InMemoryTenantRepository(), voice, MagicMock())
    return CallSyncWorker(call_service=service, settings=settings)


def add_call(calls, call_id, vapi_call_id, status="in-progress", age=timedelta(minutes=10)):
    return calls.add(Call(
        id=call_id,
        organization_id="org-1",
        status=status,
        vapi_call_id=vapi_call_id,
        created_at=NOW - age,
        updated_at=NOW - age,
    ))


class TestSyncStaleCalls:
    """Test a single sweep"""

    @pytest.mark.asyncio
    async def test_stale_call_is_synced(self, worker, calls, voice):
        await worker.initialize()
        add_call(calls, "call-1", "vapi-1")

        synced, failed = await worker.sync_stale_calls(now=NOW)

        assert (synced, failed) == (1, 0)
        voice.get_call.assert_awaited_once_with("vapi-1")
        call = await calls.get("call-1")
        assert call.status == "completed"
        assert call.transcript == "AI: Bye"

    @pytest.mark.asyncio
    async def test_fresh_and_terminal_calls_are_skipped(self, worker, calls, voice):
        await worker.initialize()
        add_call(calls, "fresh", "vapi-fresh", age=timedelta(minutes=1))
        add_call(calls, "done", "vapi-done", status="completed")
        add_call(calls, "never-dispatched", None)

        assert await worker.sync_stale_calls(now=NOW) == (0, 0)
        voice.get_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_vendor_errors_count_as_failed(self, worker, calls, voice):
        await worker.initialize()
        add_call(calls, "call-1", "vapi-1")
        add_call(calls, "call-2", "vapi-2")
        voice.get_call.side_effect = [
            VapiError(404, "Not Found"),
            ProviderCall(id="vapi-2", status="in-progress"),
        ]

        synced, failed = await worker.sync_stale_calls(now=NOW)

        assert (synced, failed) == (1, 1)
        stats = worker.get_stats()
        assert stats["sweeps"] == 1
        assert stats["calls_synced"] == 1
        assert stats["calls_failed"] == 1

    @pytest.mark.asyncio
    async def test_batch_size_is_respected(self, worker, calls, settings):
        settings.sync_batch_size = 2
        await worker.initialize()
        for i in range(5):
            add_call(calls, f"call-{i}", f"vapi-{i}", age=timedelta(minutes=10 + i))

        synced, _ = await worker.sync_stale_calls(now=NOW)

        assert synced == 2

    @pytest.mark.asyncio
    async def test_failed_calls_are_requeued(self, worker, calls, voice):
        await worker.initialize()
        add_call(calls, "call-1", "vapi-gone")
        voice.get_call.side_effect = VapiError(404, "Not Found")

        assert await worker.sync_stale_calls(now=NOW) == (0, 1)

        assert (await calls.get("call-1")).updated_at == NOW
        assert await worker.sync_stale_calls(now=NOW + timedelta(minutes=1)) == (0, 0)
        assert voice.get_call.await_count == 1

    @pytest.mark.asyncio
    async def test_failing_calls_do_not_starve_live_ones(self, worker, calls, voice, settings):
        await worker.initialize()
        for i in range(settings.sync_batch_size):
            add_call(calls, f"dead-{i}", f"vapi-dead-{i}", age=timedelta(hours=1, minutes=i))
        add_call(calls, "live", "vapi-live", age=timedelta(minutes=10))

        async def get_call(vapi_call_id):
            if vapi_call_id.startswith("vapi-dead"):
                raise VapiError(404, "Not Found")
            return ProviderCall(id=vapi_call_id, status="completed")

        voice.get_call.side_effect = get_call

        assert await worker.sync_stale_calls(now=NOW) == (0, settings.sync_batch_size)
        assert await worker.sync_stale_calls(now=NOW + timedelta(seconds=1)) == (1, 0)
        assert (await calls.get("live")).status == "completed"


class TestWorkerLifecycle:
    """Test the run loop and shutdown"""

    @pytest.mark.asyncio
    async def test_stop_ends_run(self, worker):
        task = asyncio.create_task(worker.run())
        await asyncio.sleep(0.05)

        assert worker.running
        worker.stop()
        await asyncio.wait_for(task, timeout=2)

        assert not worker.running
        assert worker.get_stats()["sweeps"] >= 1

    @pytest.mark.asyncio
    async def test_stops_after_consecutive_errors(self, worker, monkeypatch):
        monkeypatch.setattr(CallSyncWorker, "MAX_CONSECUTIVE_ERRORS", 2)
        worker.settings.sync_interval_seconds = 0
        await worker.initialize()
        worker.calls.list_unsettled = AsyncMock(side_effect=RuntimeError("database unavailable"))

        await asyncio.wait_for(worker.run(), timeout=2)

        assert worker.calls.list_unsettled.await_count == 2
        assert not worker.running

    @pytest.mark.asyncio
    async def test_shutdown_with_injected_service(self, worker):
        await worker.initialize()
        await worker.shutdown()

        assert not worker.running
