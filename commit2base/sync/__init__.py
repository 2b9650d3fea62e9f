from commit2base.sync.scheduler import run_with_concurrency
from commit2base.sync.orchestrator import SyncResult, SyncService

__all__ = ["run_with_concurrency", "SyncResult", "SyncService"]
