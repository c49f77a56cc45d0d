"""Per-workspace snapshot cache with a time-to-live and pass-aware patching."""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable

from ..models import RepoSnapshot, WorkingTreeStatus

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


@dataclass(slots=True, frozen=True)
class CacheEntry:
    """A reconciled snapshot and the pass that produced it."""

    snapshot: RepoSnapshot
    produced_at: float
    pass_id: int

    def age(self, now: float) -> float:
        return now - self.produced_at

    def is_valid(self, now: float, ttl: float) -> bool:
        return self.age(now) < ttl


class ReconciliationCache:
    """Snapshot store keyed by workspace id.

    Entries are replaced whole on every write so a reader never sees commits
    from one pass next to branches from another.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: dict[str, CacheEntry] = {}
        self._pass_ids = itertools.count(1)
        self._last_pass_id = 0
        self._floors: dict[str, int] = {}
        self._global_floor = 0
        self._stats = {"hits": 0, "misses": 0}

    def next_pass_id(self) -> int:
        self._last_pass_id = next(self._pass_ids)
        return self._last_pass_id

    def accepts(self, workspace_id: str, pass_id: int) -> bool:
        """False for passes issued before the workspace was last invalidated."""

        return pass_id > max(self._floors.get(workspace_id, 0), self._global_floor)

    def get(self, workspace_id: str) -> CacheEntry | None:
        """Return the entry if it is younger than the TTL; expired entries are evicted."""

        entry = self._entries.get(workspace_id)
        if entry is None:
            self._stats["misses"] += 1
            return None
        if not entry.is_valid(self._clock(), self.ttl_seconds):
            del self._entries[workspace_id]
            self._stats["misses"] += 1
            return None
        self._stats["hits"] += 1
        return entry

    def peek(self, workspace_id: str) -> CacheEntry | None:
        """Return the entry regardless of age, without touching statistics."""

        return self._entries.get(workspace_id)

    def put(self, workspace_id: str, snapshot: RepoSnapshot, *, pass_id: int | None = None) -> int | None:
        """Store a snapshot; returns the entry pass id, or None when the pass is refused."""

        if pass_id is not None and not self.accepts(workspace_id, pass_id):
            logger.debug(
                "Discarded snapshot from pass started before invalidation",
                extra={"workspace_id": workspace_id, "pass_id": pass_id},
            )
            return None
        entry_pass = pass_id if pass_id is not None else self.next_pass_id()
        self._entries[workspace_id] = CacheEntry(
            snapshot=snapshot,
            produced_at=self._clock(),
            pass_id=entry_pass,
        )
        logger.debug(
            "Cached snapshot",
            extra={
                "workspace_id": workspace_id,
                "pass_id": entry_pass,
                "commits": len(snapshot.commits),
                "branches": len(snapshot.branches),
            },
        )
        return entry_pass

    def patch_status(self, workspace_id: str, status: WorkingTreeStatus | None, pass_id: int) -> bool:
        """Replace only the working-tree status, and only for the pass that wrote the entry."""

        entry = self._entries.get(workspace_id)
        if entry is None or entry.pass_id != pass_id:
            logger.debug(
                "Discarded stale status patch",
                extra={
                    "workspace_id": workspace_id,
                    "pass_id": pass_id,
                    "current_pass_id": entry.pass_id if entry else None,
                },
            )
            return False
        self._entries[workspace_id] = replace(entry, snapshot=entry.snapshot.with_status(status))
        return True

    def invalidate(self, workspace_id: str | None = None) -> None:
        """Drop one workspace entry, or every entry when no id is given.

        Passes already issued can no longer write the dropped entries.
        """

        if workspace_id is None:
            self._entries.clear()
            self._floors.clear()
            self._global_floor = self._last_pass_id
            return
        self._entries.pop(workspace_id, None)
        self._floors[workspace_id] = self._last_pass_id

    def workspaces(self) -> list[str]:
        return sorted(self._entries)

    def stats(self) -> dict[str, int]:
        return {**self._stats, "entries": len(self._entries)}


__all__ = ["CacheEntry", "DEFAULT_TTL_SECONDS", "ReconciliationCache"]
