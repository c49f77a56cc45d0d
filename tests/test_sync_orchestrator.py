from __future__ import annotations

import asyncio
import logging

import httpx

from gitsync_mcp.clients import BackendStatus, RemoteMirrorClient
from gitsync_mcp.errors import BackendUnavailable, RemoteMirrorError
from gitsync_mcp.models import BranchRecord, RepoSnapshot, WorkingTreeStatus
from gitsync_mcp.sync import LoadState, SyncOrchestrator, WorkspaceRef

from stubs import (
    FakeClock,
    StubBackend,
    StubRemote,
    StubStore,
    make_account,
    make_branches,
    make_commit,
    make_context,
    settle,
)

REPO_URL = "https://github.com/octo/demo.git"
FRESH = [make_commit(f"{index:040d}", f"fresh {index}", offset=index) for index in range(5)]


def _hashes(snapshot: RepoSnapshot) -> list[str]:
    return [commit.hash for commit in snapshot.commits]


def _linked_store(token: str = "ghp_linked") -> StubStore:
    return StubStore([make_account()], {"acct-1": token})


def test_cached_snapshot_is_shown_before_network_and_refreshed_silently() -> None:
    async def scenario():
        clock = FakeClock()
        remote = StubRemote(commits=FRESH, branches=make_branches("main"))
        remote.gate = asyncio.Event()
        context = make_context(store=_linked_store(), remote=remote, clock=clock)
        stale = RepoSnapshot(
            commits=[make_commit(f"s{index:039d}", "stale") for index in range(3)],
            branches=make_branches("main"),
            is_repo=True,
        )
        context.cache.put("ws-1", stale)
        clock.advance(120)

        orchestrator = SyncOrchestrator(context)
        session = await orchestrator.open_panel(WorkspaceRef("ws-1", REPO_URL))

        shown_on_open = len(session.view.snapshot.commits)
        loading_on_open = session.view.loading
        calls_on_open = list(remote.calls)

        await settle()
        loading_while_fetching = session.view.loading
        still_shown = len(session.view.snapshot.commits)

        remote.gate.set()
        await orchestrator.wait_idle("ws-1")
        return session, remote, (shown_on_open, loading_on_open, calls_on_open, loading_while_fetching, still_shown)

    session, remote, observed = asyncio.run(scenario())
    shown_on_open, loading_on_open, calls_on_open, loading_while_fetching, still_shown = observed

    assert shown_on_open == 3
    assert loading_on_open is False
    assert calls_on_open == []
    assert loading_while_fetching is False
    assert still_shown == 3

    assert _hashes(session.view.snapshot) == [commit.hash for commit in FRESH]
    assert session.view.loading is False
    assert session.history == [
        LoadState.CHECKING_CACHE,
        LoadState.CACHE_HIT,
        LoadState.LOADING,
        LoadState.FAST_DONE,
        LoadState.READY,
    ]
    assert {call[3] for call in remote.calls} == {"ghp_linked"}


def test_expired_cache_entry_is_a_miss_and_shows_loading() -> None:
    async def scenario():
        clock = FakeClock()
        backend = StubBackend()
        backend.status_gate = asyncio.Event()
        context = make_context(backend=backend, clock=clock, ttl=300)
        context.cache.put("ws-1", RepoSnapshot(commits=[make_commit("a" * 40)], is_repo=True))
        clock.advance(301)

        orchestrator = SyncOrchestrator(context)
        session = await orchestrator.open_panel(WorkspaceRef("ws-1", None))
        loading = session.view.loading
        backend.status_gate.set()
        await orchestrator.wait_idle("ws-1")
        return session, loading

    session, loading = asyncio.run(scenario())

    assert session.history[:2] == [LoadState.CHECKING_CACHE, LoadState.CACHE_MISS]
    assert loading is True
    assert session.view.loading is False


def test_non_hosting_url_only_uses_the_backend() -> None:
    async def scenario():
        remote = StubRemote(commits=FRESH)
        backend = StubBackend()
        context = make_context(store=_linked_store(), remote=remote, backend=backend)
        orchestrator = SyncOrchestrator(context)
        session = await orchestrator.open_panel(WorkspaceRef("ws-2", "/home/dev/project"))
        await orchestrator.wait_idle("ws-2")
        return session, remote, backend, context

    session, remote, backend, context = asyncio.run(scenario())

    assert remote.calls == []
    assert backend.operations() == ["status"]
    assert session.history == [
        LoadState.CHECKING_CACHE,
        LoadState.CACHE_MISS,
        LoadState.LOADING,
        LoadState.SLOW_PATH,
        LoadState.READY,
    ]
    assert _hashes(session.view.snapshot) == ["b" * 40]
    assert context.cache.peek("ws-2").snapshot == session.view.snapshot


def test_hosts_outside_mirror_list_skip_fast_path() -> None:
    async def scenario():
        remote = StubRemote(commits=FRESH)
        backend = StubBackend()
        context = make_context(store=_linked_store(), remote=remote, backend=backend)
        orchestrator = SyncOrchestrator(context)
        await orchestrator.refresh(WorkspaceRef("ws-3", "https://gitlab.com/octo/demo"), force=True)
        return remote, backend

    remote, backend = asyncio.run(scenario())

    assert remote.calls == []
    assert backend.operations() == ["status"]


def test_only_one_pass_runs_per_workspace() -> None:
    async def scenario():
        remote = StubRemote(commits=FRESH, branches=make_branches("main"))
        remote.gate = asyncio.Event()
        backend = StubBackend()
        context = make_context(store=_linked_store(), remote=remote, backend=backend)
        orchestrator = SyncOrchestrator(context)
        workspace = WorkspaceRef("ws-1", REPO_URL)

        first = await orchestrator.open_panel(workspace)
        second = await orchestrator.open_panel(workspace)
        await settle()
        joined = asyncio.ensure_future(orchestrator.refresh(workspace, force=True))
        await settle()
        in_flight = orchestrator.is_in_flight("ws-1")

        remote.gate.set()
        snapshot = await joined
        await orchestrator.wait_idle("ws-1")
        return first, second, in_flight, snapshot, remote, backend

    first, second, in_flight, snapshot, remote, backend = asyncio.run(scenario())

    assert first is second
    assert in_flight is True
    assert [call[0] for call in remote.calls] == ["commits", "branches"]
    assert backend.operations() == ["status"]
    assert _hashes(snapshot) == [commit.hash for commit in FRESH]


def test_reopened_panel_attaches_to_running_pass() -> None:
    async def scenario():
        remote = StubRemote(commits=FRESH, branches=make_branches("main"))
        remote.gate = asyncio.Event()
        context = make_context(store=_linked_store(), remote=remote)
        orchestrator = SyncOrchestrator(context)
        workspace = WorkspaceRef("ws-1", REPO_URL)

        first = await orchestrator.open_panel(workspace)
        await settle()
        assert orchestrator.close_panel("ws-1") is True
        second = await orchestrator.open_panel(workspace)
        attached_state = second.state
        attached_loading = second.view.loading

        remote.gate.set()
        await orchestrator.wait_idle("ws-1")
        return first, second, attached_state, attached_loading, remote, context

    first, second, attached_state, attached_loading, remote, context = asyncio.run(scenario())

    assert second is not first
    assert attached_state is LoadState.LOADING
    assert attached_loading is True
    assert [call[0] for call in remote.calls] == ["commits", "branches"]
    assert second.state is LoadState.READY
    assert _hashes(second.view.snapshot) == [commit.hash for commit in FRESH]
    assert first.closed
    assert first.view.snapshot is None
    assert context.cache.peek("ws-1") is not None


def test_closing_panel_cancels_timers_and_leaves_view_untouched() -> None:
    async def scenario():
        store = _linked_store()
        store.gate = asyncio.Event()
        context = make_context(store=store, remote=StubRemote(commits=FRESH))
        orchestrator = SyncOrchestrator(context)

        session = await orchestrator.open_panel(WorkspaceRef("ws-1", REPO_URL))
        await settle()
        timers = list(session.timers)
        orchestrator.close_panel("ws-1")
        cancelled = [handle.cancelled() for handle in timers]
        remaining = len(session.timers)

        store.gate.set()
        await orchestrator.wait_idle("ws-1")
        return session, context, timers, cancelled, remaining

    session, context, timers, cancelled, remaining = asyncio.run(scenario())

    assert len(timers) == 1
    assert cancelled == [True]
    assert remaining == 0
    assert session.view.snapshot is None
    assert context.cache.peek("ws-1") is not None
    assert _hashes(context.cache.peek("ws-1").snapshot) == [commit.hash for commit in FRESH]


def test_credential_timeout_falls_back_to_known_accounts(caplog) -> None:
    caplog.set_level(logging.WARNING, logger="gitsync_mcp.sync.orchestrator")

    async def scenario():
        store = _linked_store("ghp_known")
        remote = StubRemote(commits=FRESH, branches=make_branches("main"))
        context = make_context(store=store, remote=remote, credential_timeout=0.05)
        orchestrator = SyncOrchestrator(context)
        workspace = WorkspaceRef("ws-1", REPO_URL)

        await orchestrator.refresh(workspace, force=True)
        await orchestrator.wait_idle("ws-1")
        remote.calls.clear()

        store.gate = asyncio.Event()
        store.tokens["acct-1"] = "ghp_rotated"
        snapshot = await orchestrator.refresh(workspace, force=True)
        tokens_used = {call[3] for call in remote.calls}

        store.gate.set()
        await settle()
        late = context.resolver.resolve_known(REPO_URL)
        await orchestrator.wait_idle("ws-1")
        return snapshot, tokens_used, late

    snapshot, tokens_used, late = asyncio.run(scenario())

    assert snapshot is not None
    assert tokens_used == {"ghp_known"}
    assert late is not None and late.token == "ghp_rotated"
    assert any("timed out" in record.getMessage() for record in caplog.records)


def test_credential_timeout_without_known_accounts_reads_anonymously() -> None:
    async def scenario():
        store = _linked_store()
        store.gate = asyncio.Event()
        remote = StubRemote(commits=FRESH)
        context = make_context(store=store, remote=remote, credential_timeout=0.05)
        orchestrator = SyncOrchestrator(context)
        snapshot = await orchestrator.refresh(WorkspaceRef("ws-1", REPO_URL), force=True)
        store.gate.set()
        await orchestrator.wait_idle("ws-1")
        return snapshot, remote

    snapshot, remote = asyncio.run(scenario())

    assert snapshot is not None
    assert {call[3] for call in remote.calls} == {None}


def test_commits_replaced_and_branches_merged_by_name() -> None:
    async def scenario():
        remote = StubRemote(
            commits=FRESH[:2],
            branches=make_branches("main", "feature-x"),
        )
        context = make_context(store=_linked_store(), remote=remote)
        context.cache.put(
            "ws-1",
            RepoSnapshot(
                commits=[make_commit("c" * 40), make_commit("d" * 40), make_commit("e" * 40)],
                branches=make_branches("main", "dev"),
                is_repo=True,
            ),
        )
        orchestrator = SyncOrchestrator(context)
        snapshot = await orchestrator.refresh(WorkspaceRef("ws-1", REPO_URL), force=True)
        await orchestrator.wait_idle("ws-1")
        return snapshot

    snapshot = asyncio.run(scenario())

    assert _hashes(snapshot) == [FRESH[0].hash, FRESH[1].hash]
    assert [branch.name for branch in snapshot.branches] == ["main", "dev", "feature-x"]
    assert snapshot.current_branch == "main"
    assert [commit.is_head for commit in snapshot.commits] == [True, False]


def test_current_branch_follows_remote_default_branch() -> None:
    async def scenario(branches):
        remote = StubRemote(commits=FRESH[:1], branches=make_branches(*branches))
        context = make_context(store=_linked_store(), remote=remote)
        orchestrator = SyncOrchestrator(context)
        return await orchestrator.refresh(WorkspaceRef("ws-1", REPO_URL), force=True)

    assert asyncio.run(scenario(["develop", "master"])).current_branch == "master"
    assert asyncio.run(scenario(["develop", "release"])).current_branch == "main"


def test_working_tree_status_is_patched_after_fast_path() -> None:
    async def scenario():
        backend = StubBackend(
            BackendStatus(
                is_repo=True,
                status=WorkingTreeStatus.from_lists(modified=["app.py"], untracked=["notes.md"]),
            )
        )
        backend.status_gate = asyncio.Event()
        context = make_context(store=_linked_store(), remote=StubRemote(commits=FRESH), backend=backend)
        orchestrator = SyncOrchestrator(context)
        session = await orchestrator.open_panel(WorkspaceRef("ws-1", REPO_URL))
        await settle()
        state_before_patch = session.state
        status_before_patch = session.view.snapshot.status
        backend.status_gate.set()
        await orchestrator.wait_idle("ws-1")
        return session, context, state_before_patch, status_before_patch

    session, context, state_before_patch, status_before_patch = asyncio.run(scenario())

    assert state_before_patch is LoadState.READY
    assert status_before_patch is None
    assert session.view.snapshot.status.modified == frozenset({"app.py"})
    assert context.cache.peek("ws-1").snapshot.status.untracked == frozenset({"notes.md"})
    assert session.view.loading is False


def test_status_patch_never_overwrites_a_newer_pass() -> None:
    async def scenario():
        backend = StubBackend(
            BackendStatus(is_repo=True, status=WorkingTreeStatus.from_lists(modified=["old.py"]))
        )
        backend.status_gate = asyncio.Event()
        context = make_context(store=_linked_store(), remote=StubRemote(commits=FRESH), backend=backend)
        orchestrator = SyncOrchestrator(context)

        await orchestrator.refresh(WorkspaceRef("ws-1", REPO_URL), force=True)
        context.cache.put("ws-1", RepoSnapshot(commits=[make_commit("9" * 40)], is_repo=True))

        backend.status_gate.set()
        await orchestrator.wait_idle("ws-1")
        return context.cache.peek("ws-1").snapshot

    snapshot = asyncio.run(scenario())

    assert _hashes(snapshot) == ["9" * 40]
    assert snapshot.status is None


def test_remote_mirror_errors_are_absorbed(caplog) -> None:
    caplog.set_level(logging.DEBUG, logger="gitsync_mcp.sync.orchestrator")

    async def scenario():
        remote = StubRemote(error=RemoteMirrorError("RATE_LIMITED", "Hosting provider rate limit reached", status=429))
        backend = StubBackend()
        context = make_context(store=_linked_store(), remote=remote, backend=backend)
        orchestrator = SyncOrchestrator(context)
        session = await orchestrator.open_panel(WorkspaceRef("ws-1", REPO_URL))
        await orchestrator.wait_idle("ws-1")
        return session, backend

    session, backend = asyncio.run(scenario())

    assert session.view.error is None
    assert session.state is LoadState.READY
    assert LoadState.SLOW_PATH in session.history
    assert backend.operations() == ["status"]
    assert any(record.getMessage() == "Remote mirror unavailable" for record in caplog.records)
    assert not any(record.levelno >= logging.WARNING for record in caplog.records)


def test_empty_remote_history_falls_through_to_backend() -> None:
    async def scenario():
        backend = StubBackend()
        context = make_context(store=_linked_store(), remote=StubRemote(commits=[]), backend=backend)
        orchestrator = SyncOrchestrator(context)
        return await orchestrator.refresh(WorkspaceRef("ws-1", REPO_URL), force=True), backend

    snapshot, backend = asyncio.run(scenario())

    assert _hashes(snapshot) == ["b" * 40]
    assert backend.operations() == ["status"]


def test_backend_failure_without_data_marks_panel_failed() -> None:
    async def scenario():
        backend = StubBackend()
        backend.status_error = BackendUnavailable("Workspace backend is unreachable")
        context = make_context(backend=backend)
        orchestrator = SyncOrchestrator(context)
        session = await orchestrator.open_panel(WorkspaceRef("ws-1", "/srv/project"))
        await orchestrator.wait_idle("ws-1")
        return session, context

    session, context = asyncio.run(scenario())

    assert session.state is LoadState.FAILED
    assert isinstance(session.view.error, BackendUnavailable)
    assert session.summary()["error"]["retryable"] is True
    assert session.view.loading is False
    assert context.cache.peek("ws-1") is None


def test_backend_failure_keeps_displayed_commits() -> None:
    async def scenario():
        backend = StubBackend()
        backend.status_error = BackendUnavailable("Workspace backend is unreachable")
        context = make_context(backend=backend)
        cached = RepoSnapshot(commits=[make_commit("a" * 40)], is_repo=True)
        context.cache.put("ws-1", cached)
        orchestrator = SyncOrchestrator(context)
        session = await orchestrator.open_panel(WorkspaceRef("ws-1", "/srv/project"))
        await orchestrator.wait_idle("ws-1")
        return session, cached

    session, cached = asyncio.run(scenario())

    assert session.state is LoadState.READY
    assert session.view.error is None
    assert session.view.snapshot == cached


def test_non_repository_workspace_is_cached_as_such() -> None:
    async def scenario():
        backend = StubBackend(BackendStatus(is_repo=False))
        context = make_context(backend=backend)
        orchestrator = SyncOrchestrator(context)
        snapshot = await orchestrator.refresh(WorkspaceRef("ws-1", None), force=True)
        return snapshot, context

    snapshot, context = asyncio.run(scenario())

    assert snapshot.is_repo is False
    assert snapshot.commits == ()
    assert context.cache.peek("ws-1").snapshot.is_repo is False


def test_refresh_without_force_uses_valid_cache() -> None:
    async def scenario():
        backend = StubBackend()
        context = make_context(backend=backend)
        cached = RepoSnapshot(commits=[make_commit("a" * 40)], is_repo=True)
        context.cache.put("ws-1", cached)
        orchestrator = SyncOrchestrator(context)
        return await orchestrator.refresh(WorkspaceRef("ws-1", None)), backend, cached

    snapshot, backend, cached = asyncio.run(scenario())

    assert snapshot == cached
    assert backend.calls == []


def test_status_reports_panels_and_cache() -> None:
    async def scenario():
        context = make_context()
        orchestrator = SyncOrchestrator(context)
        await orchestrator.open_panel(WorkspaceRef("ws-1", None))
        await orchestrator.wait_idle("ws-1")
        return orchestrator.status()

    status = asyncio.run(scenario())

    assert status["in_flight"] == []
    assert status["open_panels"][0]["workspace_id"] == "ws-1"
    assert status["open_panels"][0]["state"] == "ready"
    assert status["cache"]["entries"] == 1


def test_malformed_remote_payload_falls_through_to_backend() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/commits"):
            return httpx.Response(200, json=[{"sha": "a" * 40, "commit": "oops"}])
        return httpx.Response(200, json=[{"name": "main"}])

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            backend = StubBackend()
            context = make_context(
                store=_linked_store(), remote=RemoteMirrorClient(client=client), backend=backend
            )
            orchestrator = SyncOrchestrator(context)
            session = await orchestrator.open_panel(WorkspaceRef("ws-1", REPO_URL))
            await orchestrator.wait_idle("ws-1")
            return session, backend

    session, backend = asyncio.run(scenario())

    assert session.state is LoadState.READY
    assert session.view.error is None
    assert LoadState.SLOW_PATH in session.history
    assert backend.operations() == ["status"]
    assert _hashes(session.view.snapshot) == ["b" * 40]


def test_unexpected_remote_exception_falls_through_to_backend() -> None:
    async def scenario():
        backend = StubBackend()
        context = make_context(store=_linked_store(), remote=StubRemote(error=RuntimeError("boom")), backend=backend)
        orchestrator = SyncOrchestrator(context)
        session = await orchestrator.open_panel(WorkspaceRef("ws-1", REPO_URL))
        await orchestrator.wait_idle("ws-1")
        return session, backend

    session, backend = asyncio.run(scenario())

    assert session.state is LoadState.READY
    assert session.view.error is None
    assert backend.operations() == ["status"]


def test_credential_deadline_survives_close_and_reopen() -> None:
    async def scenario():
        store = _linked_store()
        store.gate = asyncio.Event()
        backend = StubBackend()
        context = make_context(store=store, backend=backend, credential_timeout=0.05)
        orchestrator = SyncOrchestrator(context)
        workspace = WorkspaceRef("ws-1", "/srv/project")

        await orchestrator.open_panel(workspace)
        await settle()
        orchestrator.close_panel("ws-1")
        reopened = await orchestrator.open_panel(workspace)
        timers_on_reopen = len(reopened.timers)

        await asyncio.wait_for(orchestrator.wait_idle("ws-1"), timeout=2)
        in_flight = orchestrator.is_in_flight("ws-1")
        store.gate.set()
        await settle()
        return reopened, backend, timers_on_reopen, in_flight

    reopened, backend, timers_on_reopen, in_flight = asyncio.run(scenario())

    assert timers_on_reopen == 1
    assert in_flight is False
    assert backend.operations() == ["status"]
    assert reopened.state is LoadState.READY
    assert reopened.view.loading is False
    assert reopened.timers == set()


def test_closed_panel_pass_still_honours_credential_deadline() -> None:
    async def scenario():
        store = _linked_store()
        store.gate = asyncio.Event()
        backend = StubBackend()
        context = make_context(store=store, backend=backend, credential_timeout=0.05)
        orchestrator = SyncOrchestrator(context)

        session = await orchestrator.open_panel(WorkspaceRef("ws-1", "/srv/project"))
        await settle()
        orchestrator.close_panel("ws-1")
        await asyncio.wait_for(orchestrator.wait_idle("ws-1"), timeout=2)
        store.gate.set()
        await settle()
        return session, context, backend

    session, context, backend = asyncio.run(scenario())

    assert backend.operations() == ["status"]
    assert context.cache.peek("ws-1") is not None
    assert session.view.snapshot is None


def test_only_the_chosen_default_branch_is_current() -> None:
    async def scenario():
        remote = StubRemote(commits=FRESH[:1], branches=make_branches("master", "main", "feature-x"))
        context = make_context(store=_linked_store(), remote=remote)
        context.cache.put(
            "ws-1",
            RepoSnapshot(
                commits=[make_commit("c" * 40)],
                branches=[BranchRecord(name="dev", is_current=True)],
                is_repo=True,
            ),
        )
        orchestrator = SyncOrchestrator(context)
        snapshot = await orchestrator.refresh(WorkspaceRef("ws-1", REPO_URL), force=True)
        await orchestrator.wait_idle("ws-1")
        return snapshot

    snapshot = asyncio.run(scenario())

    assert snapshot.current_branch == "master"
    assert [(branch.name, branch.is_current) for branch in snapshot.branches] == [
        ("dev", False),
        ("master", True),
        ("main", False),
        ("feature-x", False),
    ]


def test_refresh_after_invalidation_waits_out_older_pass() -> None:
    async def scenario():
        backend = StubBackend(
            BackendStatus(is_repo=True, status=WorkingTreeStatus.from_lists(modified=["old.py"]))
        )
        backend.status_gate = asyncio.Event()
        context = make_context(backend=backend)
        orchestrator = SyncOrchestrator(context)
        workspace = WorkspaceRef("ws-1", "/srv/project")

        await orchestrator.open_panel(workspace)
        while not backend.calls:
            await asyncio.sleep(0)
        backend.status = BackendStatus(is_repo=True, status=WorkingTreeStatus())
        context.cache.invalidate("ws-1")
        reload = asyncio.ensure_future(orchestrator.refresh(workspace, force=True))
        await settle()
        backend.status_gate.set()
        snapshot = await reload
        await orchestrator.wait_idle("ws-1")
        return snapshot, context, backend, orchestrator

    snapshot, context, backend, orchestrator = asyncio.run(scenario())

    assert backend.operations() == ["status", "status"]
    assert snapshot.status.has_changes is False
    assert context.cache.peek("ws-1").snapshot.status.has_changes is False
    assert orchestrator.view("ws-1").snapshot.status.has_changes is False
