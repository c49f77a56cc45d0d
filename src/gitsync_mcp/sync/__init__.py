"""Reconciliation cache, load protocol and mutation execution."""

from .cache import CacheEntry, ReconciliationCache
from .context import SyncContext
from .executor import AUTO_STASH_MESSAGE, MutationExecutor, MutationResult, MutationStatus, PullMode
from .orchestrator import SyncOrchestrator
from .session import LoadSession, LoadState, PanelView, SessionPhase, WorkspaceRef

__all__ = [
    "AUTO_STASH_MESSAGE",
    "CacheEntry",
    "LoadSession",
    "LoadState",
    "MutationExecutor",
    "MutationResult",
    "MutationStatus",
    "PanelView",
    "PullMode",
    "ReconciliationCache",
    "SessionPhase",
    "SyncContext",
    "SyncOrchestrator",
    "WorkspaceRef",
]
