"""
Sync Layer
==========
Sync service, scheduler, run log and single-flight lock.
"""

from sqp_sync.sync.lock import SyncLock
from sqp_sync.sync.logger import SyncLogger
from sqp_sync.sync.scheduler import SyncJobResult, SyncScheduler, build_scheduler
from sqp_sync.sync.service import SyncResult, SyncService

__all__ = [
    "SyncJobResult",
    "SyncLock",
    "SyncLogger",
    "SyncResult",
    "SyncScheduler",
    "SyncService",
    "build_scheduler",
]
