"""
Workers Package
Background workers for call reconciliation
"""
from app.workers.call_sync_worker import CallSyncWorker

__all__ = [
    "CallSyncWorker",
]
