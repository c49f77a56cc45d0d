"""Tool registration for the git sync MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from fastmcp import Context, FastMCP

from ..config import GitSyncSettings
from ..sync import MutationExecutor, MutationResult, PullMode, SyncOrchestrator, WorkspaceRef

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    open_repo_panel: Any
    close_repo_panel: Any
    refresh_repo: Any
    repo_snapshot: Any
    git_fetch: Any
    git_pull: Any
    git_push: Any
    git_commit: Any
    git_checkout: Any


def register_tools(
    server: FastMCP,
    *,
    orchestrator: SyncOrchestrator,
    executor: MutationExecutor,
    settings: GitSyncSettings,
) -> ToolHandles:
    """Register the repository panel and git mutation tools on the server."""

    def _workspace(
        workspace_id: str,
        repository_url: str | None,
        linked_username: str | None,
    ) -> WorkspaceRef:
        if not workspace_id or not workspace_id.strip():
            raise ValueError("workspace_id is required")
        if repository_url is not None or linked_username is not None:
            return WorkspaceRef(workspace_id, repository_url, linked_username)
        session = orchestrator.session(workspace_id)
        if session is not None:
            return session.workspace
        if orchestrator.snapshot(workspace_id) is not None:
            return WorkspaceRef(workspace_id)
        raise ValueError(
            f"Workspace '{workspace_id}' has no open panel; pass repository_url to address it"
        )

    def _mutation_payload(context: Context | None, workspace: WorkspaceRef, result: MutationResult) -> dict[str, Any]:
        level = "info" if result.ok else "warning"
        _emit_log(
            context,
            level,
            f"git {result.action} {result.status.value}",
            extra={"workspace_id": workspace.id, "action": result.action, "status": result.status.value},
        )
        return {"workspace_id": workspace.id, **result.to_dict()}

    async def _open_repo_panel(
        workspace_id: str,
        repository_url: str | None = None,
        linked_username: str | None = None,
        wait: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Open the repository panel and return what it shows."""

        workspace = _workspace(workspace_id, repository_url, linked_username)
        session = await orchestrator.open_panel(workspace)
        if wait:
            await orchestrator.wait_idle(workspace.id)
        _emit_log(
            context,
            "debug",
            "Opened repository panel",
            extra={"workspace_id": workspace.id, "state": session.state.value},
        )
        return session.summary()

    def _close_repo_panel(workspace_id: str, context: Context | None = None) -> dict[str, Any]:
        closed = orchestrator.close_panel(workspace_id)
        _emit_log(context, "debug", "Closed repository panel", extra={"workspace_id": workspace_id, "closed": closed})
        return {"workspace_id": workspace_id, "closed": closed}

    async def _refresh_repo(
        workspace_id: str,
        repository_url: str | None = None,
        linked_username: str | None = None,
        force: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Run a reconciliation pass, or join the one already running."""

        workspace = _workspace(workspace_id, repository_url, linked_username)
        snapshot = await orchestrator.refresh(workspace, force=force)
        view = orchestrator.view(workspace.id)
        _emit_log(
            context,
            "debug",
            "Refreshed repository",
            extra={"workspace_id": workspace.id, "loaded": snapshot is not None},
        )
        return {
            "workspace_id": workspace.id,
            "snapshot": snapshot.to_dict() if snapshot is not None else None,
            "view": view.to_dict() if view is not None else None,
        }

    def _repo_snapshot(workspace_id: str, context: Context | None = None) -> dict[str, Any]:
        session = orchestrator.session(workspace_id)
        if session is not None:
            return session.summary()
        snapshot = orchestrator.snapshot(workspace_id)
        if snapshot is None:
            raise ValueError(f"No repository state known for workspace '{workspace_id}'")
        return {"workspace_id": workspace_id, "snapshot": snapshot.to_dict()}

    async def _git_fetch(
        workspace_id: str,
        repository_url: str | None = None,
        linked_username: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        workspace = _workspace(workspace_id, repository_url, linked_username)
        return _mutation_payload(context, workspace, await executor.fetch(workspace))

    async def _git_push(
        workspace_id: str,
        repository_url: str | None = None,
        linked_username: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        workspace = _workspace(workspace_id, repository_url, linked_username)
        return _mutation_payload(context, workspace, await executor.push(workspace))

    async def _git_pull(
        workspace_id: str,
        mode: Literal["auto", "discard_warning", "stash"] = "auto",
        repository_url: str | None = None,
        linked_username: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Pull; with local changes and mode 'auto' the result lists the available choices."""

        try:
            pull_mode = PullMode(mode)
        except ValueError as exc:
            raise ValueError(f"Unsupported pull mode '{mode}'") from exc
        workspace = _workspace(workspace_id, repository_url, linked_username)
        return _mutation_payload(context, workspace, await executor.pull(workspace, pull_mode))

    async def _git_commit(
        workspace_id: str,
        paths: list[str],
        message: str,
        repository_url: str | None = None,
        linked_username: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        workspace = _workspace(workspace_id, repository_url, linked_username)
        return _mutation_payload(context, workspace, await executor.commit(workspace, paths, message))

    async def _git_checkout(
        workspace_id: str,
        branch: str,
        create: bool = False,
        repository_url: str | None = None,
        linked_username: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        workspace = _workspace(workspace_id, repository_url, linked_username)
        return _mutation_payload(context, workspace, await executor.checkout(workspace, branch, create=create))

    tool_open = server.tool(
        name="open_repo_panel",
        description=(
            "Open the repository panel for a workspace. Cached state is returned at once and "
            "refreshed in the background; set wait to block until the pass finishes."
        ),
    )(_open_repo_panel)
    tool_close = server.tool(
        name="close_repo_panel",
        description="Close a workspace's repository panel. Running requests finish and only update the cache.",
    )(_close_repo_panel)
    tool_refresh = server.tool(
        name="refresh_repo",
        description="Reload commits, branches and working-tree status for a workspace.",
    )(_refresh_repo)
    tool_snapshot = server.tool(
        name="repo_snapshot",
        description="Return the panel view or the last cached snapshot for a workspace without any network call.",
    )(_repo_snapshot)
    tool_fetch = server.tool(name="git_fetch", description="Run git fetch in the workspace clone.")(_git_fetch)
    tool_pull = server.tool(
        name="git_pull",
        description=(
            "Run git pull. With uncommitted changes choose mode 'stash' to stash, pull and restore, "
            "or 'discard_warning' to pull anyway."
        ),
    )(_git_pull)
    tool_push = server.tool(name="git_push", description="Push the current branch to its remote.")(_git_push)
    tool_commit = server.tool(
        name="git_commit",
        description="Commit the selected paths with a message.",
    )(_git_commit)
    tool_checkout = server.tool(
        name="git_checkout",
        description="Switch branches, optionally creating the branch first.",
    )(_git_checkout)

    logger.debug(
        "Registered git sync tools",
        extra={"backend_url": settings.backend_url, "mirror_hosts": list(settings.mirror_hosts)},
    )

    return ToolHandles(
        open_repo_panel=tool_open,
        close_repo_panel=tool_close,
        refresh_repo=tool_refresh,
        repo_snapshot=tool_snapshot,
        git_fetch=tool_fetch,
        git_pull=tool_pull,
        git_push=tool_push,
        git_commit=tool_commit,
        git_checkout=tool_checkout,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]
