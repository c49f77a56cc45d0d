"""GitSync MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json

from gitsync_mcp.config import GitSyncSettings
from gitsync_mcp.errors import AccountLoadError, GitSyncError
from gitsync_mcp.sync import SyncContext, SyncOrchestrator, WorkspaceRef


def load_context(settings: GitSyncSettings) -> SyncContext:
    return SyncContext.from_settings(settings)


def cmd_accounts(args: argparse.Namespace) -> None:
    settings = GitSyncSettings()
    context = load_context(settings)

    async def _run():
        try:
            return await context.resolver.load_accounts()
        finally:
            await context.aclose()

    try:
        accounts = asyncio.run(_run())
    except AccountLoadError as exc:
        print(f"Accounts unavailable: {exc}")
        raise SystemExit(1)
    payload = [
        {
            "id": account.id,
            "provider": account.provider,
            "username": account.username,
            "server_url": account.server_url,
        }
        for account in accounts
    ]
    print(json.dumps(payload, indent=2))


def cmd_status(args: argparse.Namespace) -> None:
    settings = GitSyncSettings()
    context = load_context(settings)

    async def _run():
        try:
            return await context.backend.get_status(args.workspace)
        finally:
            await context.aclose()

    try:
        status = asyncio.run(_run())
    except GitSyncError as exc:
        print(f"Backend unavailable: {exc}")
        raise SystemExit(1)

    payload = {
        "workspace_id": args.workspace,
        "is_repo": status.is_repo,
        "current_branch": status.current_branch,
        "branches": [branch.to_dict() for branch in status.branches],
        "status": status.status.to_dict() if status.status is not None else None,
        "commits": len(status.commits),
    }
    print(json.dumps(payload, indent=2))


def cmd_snapshot(args: argparse.Namespace) -> None:
    settings = GitSyncSettings()
    context = load_context(settings)
    workspace = WorkspaceRef(args.workspace, args.repo_url, args.linked_username)

    async def _run():
        orchestrator = SyncOrchestrator(context)
        try:
            snapshot = await orchestrator.refresh(workspace, force=True)
            await orchestrator.wait_idle(workspace.id)
            entry = context.cache.peek(workspace.id)
            return entry.snapshot if entry is not None else snapshot
        finally:
            await context.aclose()

    snapshot = asyncio.run(_run())
    if snapshot is None:
        print(f"No repository state could be loaded for workspace {args.workspace}")
        raise SystemExit(1)
    print(json.dumps(snapshot.to_dict(), indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="GitSync MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_accounts = sub.add_parser("accounts", help="List linked accounts (tokens are never printed)")
    p_accounts.set_defaults(func=cmd_accounts)

    p_status = sub.add_parser("status", help="Show the raw backend status for a workspace")
    p_status.add_argument("workspace")
    p_status.set_defaults(func=cmd_status)

    p_snapshot = sub.add_parser("snapshot", help="Run one reconciliation pass and print the snapshot")
    p_snapshot.add_argument("workspace")
    p_snapshot.add_argument("--repo-url", default=None)
    p_snapshot.add_argument("--linked-username", default=None)
    p_snapshot.set_defaults(func=cmd_snapshot)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
