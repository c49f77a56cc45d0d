"""Panel lifetime sessions and the load protocol state machine."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import GitSyncError
from ..models import RepoSnapshot


class LoadState(str, Enum):
    IDLE = "idle"
    CHECKING_CACHE = "checking_cache"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    LOADING = "loading"
    FAST_DONE = "fast_done"
    SLOW_PATH = "slow_path"
    READY = "ready"
    FAILED = "failed"


class SessionPhase(str, Enum):
    IDLE = "idle"
    STARTED = "started"
    CLOSED = "closed"


_TRANSITIONS: dict[LoadState, set[LoadState]] = {
    LoadState.IDLE: {LoadState.CHECKING_CACHE, LoadState.LOADING},
    LoadState.CHECKING_CACHE: {LoadState.CACHE_HIT, LoadState.CACHE_MISS},
    LoadState.CACHE_HIT: {LoadState.LOADING},
    LoadState.CACHE_MISS: {LoadState.LOADING},
    LoadState.LOADING: {LoadState.FAST_DONE, LoadState.SLOW_PATH, LoadState.FAILED, LoadState.READY},
    LoadState.FAST_DONE: {LoadState.READY},
    LoadState.SLOW_PATH: {LoadState.READY, LoadState.FAILED},
    LoadState.READY: {LoadState.LOADING},
    LoadState.FAILED: {LoadState.LOADING},
}


@dataclass(slots=True, frozen=True)
class WorkspaceRef:
    """The workspace a panel shows and the repository it is linked to."""

    id: str
    repository_url: str | None = None
    linked_username: str | None = None


@dataclass(slots=True)
class PanelView:
    """What the presentation layer renders for a workspace."""

    snapshot: RepoSnapshot | None = None
    loading: bool = False
    error: GitSyncError | None = None
    pass_id: int | None = None

    @property
    def has_commits(self) -> bool:
        return self.snapshot is not None and self.snapshot.has_commits

    def to_dict(self) -> dict[str, Any]:
        return {
            "loading": self.loading,
            "pass_id": self.pass_id,
            "error": None
            if self.error is None
            else {
                "type": type(self.error).__name__,
                "message": self.error.message,
                "retryable": self.error.retryable,
            },
            "snapshot": self.snapshot.to_dict() if self.snapshot is not None else None,
        }


@dataclass(slots=True)
class LoadSession:
    """Guard for one panel-open lifetime of a workspace."""

    workspace: WorkspaceRef
    phase: SessionPhase = SessionPhase.IDLE
    state: LoadState = LoadState.IDLE
    view: PanelView = field(default_factory=PanelView)
    history: list[LoadState] = field(default_factory=list)
    timers: set[asyncio.TimerHandle] = field(default_factory=set)

    @property
    def started(self) -> bool:
        return self.phase is SessionPhase.STARTED

    @property
    def closed(self) -> bool:
        return self.phase is SessionPhase.CLOSED

    def start(self) -> bool:
        """Mark the session started; returns False when it already was."""

        if self.phase is not SessionPhase.IDLE:
            return False
        self.phase = SessionPhase.STARTED
        return True

    def advance(self, state: LoadState) -> None:
        if self.closed:
            return
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid load transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def close(self) -> None:
        for handle in list(self.timers):
            handle.cancel()
        self.timers.clear()
        self.phase = SessionPhase.CLOSED

    def summary(self) -> dict[str, Any]:
        return {
            "workspace_id": self.workspace.id,
            "phase": self.phase.value,
            "state": self.state.value,
            **self.view.to_dict(),
        }


__all__ = [
    "LoadSession",
    "LoadState",
    "PanelView",
    "SessionPhase",
    "WorkspaceRef",
]
