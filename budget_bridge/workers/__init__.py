"""Workers: the sync orchestrator that drives a bank-to-ledger sync."""

from .sync_orchestrator import SyncOrchestrator  # noqa: F401
