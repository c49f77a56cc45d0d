"""Load protocol: cache check, fast remote path, slow backend path."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any

from ..accounts import Credential
from ..errors import EnrichmentUnavailable, GitSyncError
from ..models import RepoSnapshot, merge_branches
from ..urls import RepositoryLocation, parse_repository_url
from .context import SyncContext
from .session import LoadSession, LoadState, PanelView, WorkspaceRef

logger = logging.getLogger(__name__)

_DEFAULT_BRANCH_NAMES = ("main", "master")


@dataclass
class _CredentialWait:
    """Deadline of a pending credential resolution.

    The timer handle belongs to the open panel session when there is one and to
    the pass otherwise, so closing a panel never removes the bound.
    """

    expired: asyncio.Future
    deadline: float
    handle: asyncio.TimerHandle | None = None

    def expire(self) -> None:
        if not self.expired.done():
            self.expired.set_result(None)

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()
        if not self.expired.done():
            self.expired.cancel()


def _consume_late_result(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Late credential resolution failed", extra={"error": str(exc)})


class SyncOrchestrator:
    """Drives reconciliation passes and projects them onto open panels.

    At most one pass runs per workspace. The pass is tracked here rather than
    on the panel session, so a panel reopened while a pass is still running
    attaches to it.
    """

    def __init__(self, context: SyncContext) -> None:
        self._ctx = context
        self._sessions: dict[str, LoadSession] = {}
        self._in_flight: dict[str, asyncio.Task] = {}
        self._background: dict[str, set[asyncio.Task]] = {}
        self._late_credentials: set[asyncio.Task] = set()
        self._credential_waits: dict[str, _CredentialWait] = {}
        self._in_flight_pass: dict[str, int] = {}

    @property
    def context(self) -> SyncContext:
        return self._ctx

    # ------------------------------------------------------------------
    # Panel lifecycle
    # ------------------------------------------------------------------
    async def open_panel(self, workspace: WorkspaceRef) -> LoadSession:
        """Start a session for the workspace; re-entry while started is a no-op.

        Returns without waiting for the pass. A valid cache entry is projected
        before this coroutine returns.
        """

        existing = self._sessions.get(workspace.id)
        if existing is not None and existing.started:
            return existing

        session = LoadSession(workspace=workspace)
        self._sessions[workspace.id] = session
        session.start()
        session.advance(LoadState.CHECKING_CACHE)

        entry = self._ctx.cache.get(workspace.id)
        if entry is not None:
            session.advance(LoadState.CACHE_HIT)
            session.view.snapshot = entry.snapshot
            session.view.pass_id = entry.pass_id
        else:
            session.advance(LoadState.CACHE_MISS)

        if workspace.id in self._in_flight:
            self._mark_loading(session)
            wait = self._credential_waits.get(workspace.id)
            if wait is not None:
                self._arm_credential_timer(workspace.id, wait)
            logger.debug("Attached panel to running pass", extra={"workspace_id": workspace.id})
        else:
            self._start_pass(workspace)
        return session

    def close_panel(self, workspace_id: str) -> bool:
        """Cancel the session timers and detach its view; running calls still finish."""

        session = self._sessions.pop(workspace_id, None)
        if session is None:
            return False
        session.close()
        wait = self._credential_waits.get(workspace_id)
        if wait is not None:
            self._arm_credential_timer(workspace_id, wait)
        logger.debug("Closed panel", extra={"workspace_id": workspace_id})
        return True

    def view(self, workspace_id: str) -> PanelView | None:
        session = self._sessions.get(workspace_id)
        return session.view if session is not None else None

    def session(self, workspace_id: str) -> LoadSession | None:
        return self._sessions.get(workspace_id)

    def snapshot(self, workspace_id: str) -> RepoSnapshot | None:
        """Displayed snapshot for an open panel, otherwise the cached one regardless of age."""

        session = self._sessions.get(workspace_id)
        if session is not None and session.view.snapshot is not None:
            return session.view.snapshot
        entry = self._ctx.cache.peek(workspace_id)
        return entry.snapshot if entry is not None else None

    def is_in_flight(self, workspace_id: str) -> bool:
        return workspace_id in self._in_flight

    async def refresh(self, workspace: WorkspaceRef, *, force: bool = False) -> RepoSnapshot | None:
        """Reload a workspace, joining the running pass if there is one.

        Without ``force`` a valid cache entry is returned as is. A running pass
        that started before the last cache invalidation is waited out rather
        than joined, since the cache refuses its writes.
        """

        task = self._in_flight.get(workspace.id)
        while task is not None and not self._ctx.cache.accepts(workspace.id, self._in_flight_pass[workspace.id]):
            logger.debug(
                "Waiting out pass started before invalidation",
                extra={"workspace_id": workspace.id, "pass_id": self._in_flight_pass[workspace.id]},
            )
            await asyncio.shield(task)
            task = self._in_flight.get(workspace.id)
        if task is None:
            if not force:
                entry = self._ctx.cache.get(workspace.id)
                if entry is not None:
                    return entry.snapshot
            task = self._start_pass(workspace)
        return await asyncio.shield(task)

    async def wait_idle(self, workspace_id: str) -> None:
        """Wait for the running pass and its background status patch."""

        while True:
            pending = []
            task = self._in_flight.get(workspace_id)
            if task is not None:
                pending.append(task)
            pending.extend(self._background.get(workspace_id, ()))
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def status(self) -> dict[str, Any]:
        return {
            "open_panels": [session.summary() for session in self._sessions.values()],
            "in_flight": sorted(self._in_flight),
            "cache": self._ctx.cache.stats(),
        }

    # ------------------------------------------------------------------
    # Pass management
    # ------------------------------------------------------------------
    def _start_pass(self, workspace: WorkspaceRef) -> asyncio.Task:
        pass_id = self._ctx.cache.next_pass_id()
        session = self._current_session(workspace.id)
        if session is not None:
            self._mark_loading(session)

        task = asyncio.get_running_loop().create_task(self._run_pass(workspace, pass_id))
        self._in_flight[workspace.id] = task
        self._in_flight_pass[workspace.id] = pass_id

        def _release(done: asyncio.Task) -> None:
            if self._in_flight.get(workspace.id) is done:
                del self._in_flight[workspace.id]
                del self._in_flight_pass[workspace.id]

        task.add_done_callback(_release)
        logger.debug("Started reconciliation pass", extra={"workspace_id": workspace.id, "pass_id": pass_id})
        return task

    def _mark_loading(self, session: LoadSession) -> None:
        if session.state is not LoadState.LOADING:
            session.advance(LoadState.LOADING)
        session.view.loading = not session.view.has_commits

    def _current_session(self, workspace_id: str) -> LoadSession | None:
        session = self._sessions.get(workspace_id)
        if session is None or session.closed:
            return None
        return session

    async def _run_pass(self, workspace: WorkspaceRef, pass_id: int) -> RepoSnapshot | None:
        try:
            snapshot = await self._reconcile(workspace, pass_id)
        except GitSyncError as exc:
            self._project_failure(workspace.id, exc)
            return None
        except Exception as exc:
            logger.exception("Reconciliation pass crashed", extra={"workspace_id": workspace.id})
            self._project_failure(
                workspace.id,
                GitSyncError("Repository state could not be loaded", details=repr(exc)),
            )
            return None
        return snapshot

    async def _reconcile(self, workspace: WorkspaceRef, pass_id: int) -> RepoSnapshot:
        credential = await self._resolve_credential(workspace)

        location = self._mirror_location(workspace.repository_url)
        if location is not None:
            snapshot = await self._fast_path(workspace, location, credential, pass_id)
            if snapshot is not None:
                return snapshot

        return await self._slow_path(workspace, pass_id)

    def _mirror_location(self, repository_url: str | None) -> RepositoryLocation | None:
        location = parse_repository_url(repository_url)
        if location is None or not self._ctx.is_mirror_host(location.host):
            return None
        return location

    async def _resolve_credential(self, workspace: WorkspaceRef) -> Credential | None:
        """Race credential resolution against its deadline.

        On expiry the last known accounts and tokens are used and the running
        resolution is left to finish so the next pass benefits from it.
        """

        resolver = self._ctx.resolver
        loop = asyncio.get_running_loop()
        resolution = loop.create_task(
            resolver.resolve_for(workspace.repository_url, workspace.linked_username)
        )
        wait = _CredentialWait(loop.create_future(), loop.time() + self._ctx.credential_timeout)
        self._credential_waits[workspace.id] = wait
        self._arm_credential_timer(workspace.id, wait)
        try:
            done, _ = await asyncio.wait({resolution, wait.expired}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if self._credential_waits.get(workspace.id) is wait:
                del self._credential_waits[workspace.id]
            session = self._current_session(workspace.id)
            if session is not None and wait.handle is not None:
                session.timers.discard(wait.handle)
            wait.cancel()

        if resolution in done:
            try:
                return resolution.result()
            except Exception as exc:
                logger.warning(
                    "Credential resolution failed; using last known accounts",
                    extra={"workspace_id": workspace.id, "error": str(exc)},
                )
                return resolver.resolve_known(workspace.repository_url, workspace.linked_username)

        logger.warning(
            "Credential resolution timed out; using last known accounts",
            extra={
                "workspace_id": workspace.id,
                "timeout_s": self._ctx.credential_timeout,
                "known_accounts": len(resolver.known_accounts),
            },
        )
        self._late_credentials.add(resolution)
        resolution.add_done_callback(self._late_credentials.discard)
        resolution.add_done_callback(_consume_late_result)
        return resolver.resolve_known(workspace.repository_url, workspace.linked_username)

    def _arm_credential_timer(self, workspace_id: str, wait: _CredentialWait) -> None:
        """(Re)schedule the credential deadline under the current owner."""

        if wait.handle is not None:
            wait.handle.cancel()
        wait.handle = asyncio.get_running_loop().call_at(wait.deadline, wait.expire)
        session = self._current_session(workspace_id)
        if session is not None:
            session.timers.add(wait.handle)

    async def _fast_path(
        self,
        workspace: WorkspaceRef,
        location: RepositoryLocation,
        credential: Credential | None,
        pass_id: int,
    ) -> RepoSnapshot | None:
        remote = self._ctx.remote
        results = await asyncio.gather(
            remote.get_commits(location.owner, location.repo, credential),
            remote.get_branches(location.owner, location.repo, credential),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, EnrichmentUnavailable):
                logger.debug(
                    "Remote mirror unavailable",
                    extra={
                        "workspace_id": workspace.id,
                        "repository": location.full_name,
                        "code": getattr(result, "code", None),
                    },
                )
                return None
            if isinstance(result, Exception):
                logger.debug(
                    "Remote mirror call failed",
                    extra={
                        "workspace_id": workspace.id,
                        "repository": location.full_name,
                        "error": repr(result),
                    },
                )
                return None
            if isinstance(result, BaseException):
                raise result

        commits, branches = results
        if not commits:
            return None

        existing = self.snapshot(workspace.id)
        current = next((branch.name for branch in branches if branch.name in _DEFAULT_BRANCH_NAMES), "main")
        merged = merge_branches(existing.branches if existing else (), branches)
        snapshot = RepoSnapshot(
            commits=tuple(commits),
            branches=tuple(replace(branch, is_current=branch.name == current) for branch in merged),
            current_branch=current,
            status=existing.status if existing else None,
            is_repo=True,
        )
        self._ctx.cache.put(workspace.id, snapshot, pass_id=pass_id)
        self._project_snapshot(workspace.id, snapshot, pass_id, LoadState.FAST_DONE)
        self._spawn_status_patch(workspace.id, pass_id)
        logger.info(
            "Loaded repository from remote mirror",
            extra={"workspace_id": workspace.id, "commits": len(snapshot.commits), "pass_id": pass_id},
        )
        return snapshot

    async def _slow_path(self, workspace: WorkspaceRef, pass_id: int) -> RepoSnapshot:
        session = self._current_session(workspace.id)
        if session is not None and session.state is LoadState.LOADING:
            session.advance(LoadState.SLOW_PATH)

        backend_status = await self._ctx.backend.get_status(workspace.id)
        if backend_status.is_repo:
            snapshot = RepoSnapshot(
                commits=tuple(backend_status.commits),
                branches=tuple(backend_status.branches),
                current_branch=backend_status.current_branch,
                status=backend_status.status,
                is_repo=True,
            )
        else:
            snapshot = RepoSnapshot(current_branch=backend_status.current_branch, is_repo=False)

        self._ctx.cache.put(workspace.id, snapshot, pass_id=pass_id)
        self._project_snapshot(workspace.id, snapshot, pass_id, LoadState.SLOW_PATH)
        logger.info(
            "Loaded repository from workspace backend",
            extra={
                "workspace_id": workspace.id,
                "is_repo": snapshot.is_repo,
                "commits": len(snapshot.commits),
                "pass_id": pass_id,
            },
        )
        return snapshot

    def _spawn_status_patch(self, workspace_id: str, pass_id: int) -> None:
        task = asyncio.get_running_loop().create_task(self._patch_status(workspace_id, pass_id))
        tasks = self._background.setdefault(workspace_id, set())
        tasks.add(task)

        def _release(done: asyncio.Task) -> None:
            tasks.discard(done)
            if not tasks and self._background.get(workspace_id) is tasks:
                del self._background[workspace_id]

        task.add_done_callback(_release)

    async def _patch_status(self, workspace_id: str, pass_id: int) -> None:
        try:
            backend_status = await self._ctx.backend.get_status(workspace_id)
        except GitSyncError as exc:
            logger.debug(
                "Working tree status unavailable",
                extra={"workspace_id": workspace_id, "pass_id": pass_id, "error": exc.message},
            )
            return
        if not backend_status.is_repo:
            return
        if not self._ctx.cache.patch_status(workspace_id, backend_status.status, pass_id):
            return

        session = self._current_session(workspace_id)
        if session is not None and session.view.pass_id == pass_id and session.view.snapshot is not None:
            session.view.snapshot = session.view.snapshot.with_status(backend_status.status)

    # ------------------------------------------------------------------
    # Projection onto the open panel
    # ------------------------------------------------------------------
    def _project_snapshot(
        self,
        workspace_id: str,
        snapshot: RepoSnapshot,
        pass_id: int,
        path: LoadState,
    ) -> None:
        session = self._current_session(workspace_id)
        if session is None:
            return
        if session.state is not path:
            session.advance(path)
        session.advance(LoadState.READY)
        session.view.snapshot = snapshot
        session.view.pass_id = pass_id
        session.view.loading = False
        session.view.error = None

    def _project_failure(self, workspace_id: str, error: GitSyncError) -> None:
        session = self._current_session(workspace_id)
        if session is None:
            logger.info(
                "Reconciliation failed with no open panel",
                extra={"workspace_id": workspace_id, "error": error.message},
            )
            return

        session.view.loading = False
        if session.view.has_commits:
            logger.info(
                "Reconciliation failed; keeping displayed data",
                extra={"workspace_id": workspace_id, "error": error.message},
            )
            session.advance(LoadState.READY)
            return

        logger.warning(
            "Reconciliation failed",
            extra={"workspace_id": workspace_id, "error": error.message, "retryable": error.retryable},
        )
        session.advance(LoadState.FAILED)
        session.view.error = error


__all__ = ["SyncOrchestrator"]
