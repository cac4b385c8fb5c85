"""
Call Sync Worker
Background sweep that reconciles calls whose webhooks never arrived.

Run as separate process:
    python -m app.workers.call_sync_worker
"""
import asyncio
import logging
import signal
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from dotenv import load_dotenv

from app.core.config import ConfigManager, Settings, get_settings
from app.domain.interfaces.call_store import CallStore
from app.domain.services.billing_service import BillingService
from app.domain.services.call_service import CallService
from app.domain.services.guardrails import load_plans
from app.infrastructure.storage.memory_store import InMemoryCallStore, InMemoryTenantRepository
from app.infrastructure.storage.supabase_store import SupabaseCallStore, SupabaseTenantRepository
from app.infrastructure.telephony.vapi_client import VapiClient
from app.infrastructure.telephony.vapi_events import VapiStatusMapper

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# Configure logging for worker
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


class CallSyncWorker:
    """
    Periodically polls Vapi for calls stuck in a non-terminal status.

    A call is a candidate when it has a Vapi call ID, is not completed,
    failed or no-answer, and has not been updated for sync_stale_after_seconds.
    Each candidate goes through CallService.sync_call_from_vapi, which never
    raises for vendor errors. A candidate that fails to sync is touched, so it
    waits another sync_stale_after_seconds before it is picked again.
    """

    MAX_CONSECUTIVE_ERRORS = 10

    def __init__(
        self,
        call_service: Optional[CallService] = None,
        calls: Optional[CallStore] = None,
        settings: Optional[Settings] = None
    ):
        self.settings = settings or get_settings()
        self.call_service = call_service
        self.calls = calls

        self.running = False
        self._stop_event = asyncio.Event()
        self._voice: Optional[VapiClient] = None

        # Stats
        self._sweeps = 0
        self._calls_synced = 0
        self._calls_failed = 0

    async def initialize(self) -> None:
        """Build the call service from settings unless one was injected."""
        if self.call_service is not None:
            self.calls = self.calls or self.call_service.calls
            return

        logger.info("Initializing Call Sync Worker...")

        if self.settings.storage_backend == "memory":
            tenants = InMemoryTenantRepository()
            calls = InMemoryCallStore(tenants)
        else:
            from app.api.v1.dependencies import get_supabase
            supabase = get_supabase()
            calls = SupabaseCallStore(supabase)
            tenants = SupabaseTenantRepository(supabase)

        config = ConfigManager()
        self._voice = VapiClient(
            api_key=self.settings.vapi_api_key,
            base_url=self.settings.vapi_base_url,
            timeout=self.settings.vapi_timeout_seconds,
            status_mapper=VapiStatusMapper.from_config(config),
        )
        billing = BillingService(calls, tenants, plans=load_plans(config))

        self.calls = calls
        self.call_service = CallService(calls, tenants, self._voice, billing)
        logger.info("Call Sync Worker initialized successfully")

    async def sync_stale_calls(self, now: Optional[datetime] = None) -> Tuple[int, int]:
        """
        Run one sweep.

        Returns:
            (synced, failed) counts for this sweep
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=self.settings.sync_stale_after_seconds)

        candidates = await self.calls.list_unsettled(cutoff, limit=self.settings.sync_batch_size)
        synced = failed = 0

        for call in candidates:
            if await self.call_service.sync_call_from_vapi(call.id):
                synced += 1
                continue

            failed += 1
            # Requeue behind the other stale calls so a batch of permanently
            # failing calls cannot starve the rest
            try:
                await self.calls.touch(call.id, now)
            except Exception as e:
                logger.warning(f"Could not requeue call {call.id} after failed sync: {e}")

        self._sweeps += 1
        self._calls_synced += synced
        self._calls_failed += failed

        if candidates:
            logger.info(f"Sync sweep: {synced} synced, {failed} failed of {len(candidates)} stale calls")
        return synced, failed

    async def run(self) -> None:
        """Main worker loop."""
        await self.initialize()

        self.running = True
        consecutive_errors = 0

        logger.info(f"Call Sync Worker started - sweeping every {self.settings.sync_interval_seconds}s")

        while self.running:
            try:
                await self.sync_stale_calls()
                consecutive_errors = 0
            except asyncio.CancelledError:
                logger.info("Worker received cancellation signal")
                break
            except Exception as e:
                consecutive_errors += 1
                logger.error(f"Worker error ({consecutive_errors}): {e}", exc_info=True)

                if consecutive_errors >= self.MAX_CONSECUTIVE_ERRORS:
                    logger.critical("Too many consecutive errors, stopping worker")
                    break

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.settings.sync_interval_seconds)
            except asyncio.TimeoutError:
                pass

        self.running = False

    def stop(self) -> None:
        self.running = False
        self._stop_event.set()

    async def shutdown(self) -> None:
        """Graceful shutdown."""
        logger.info("Shutting down Call Sync Worker...")
        self.stop()

        if self._voice is not None:
            await self._voice.close()
            self._voice = None

        logger.info(
            f"Call Sync Worker shutdown complete. "
            f"Sweeps: {self._sweeps}, Synced: {self._calls_synced}, Failed: {self._calls_failed}"
        )

    def get_stats(self) -> dict:
        """Get worker statistics."""
        return {
            "running": self.running,
            "sweeps": self._sweeps,
            "calls_synced": self._calls_synced,
            "calls_failed": self._calls_failed,
        }


async def main():
    """Entry point for running the sync worker as separate process."""
    worker = CallSyncWorker()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        worker.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await worker.run()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    finally:
        await worker.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
