"""FastMCP server bootstrap for the git sync engine."""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import GitSyncSettings, get_settings
from .log_filters import TokenRedactionFilter
from .sync import MutationExecutor, SyncContext, SyncOrchestrator
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging and scrub tokens from every handler's output."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(existing, TokenRedactionFilter) for existing in handler.filters):
            handler.addFilter(TokenRedactionFilter())


def create_server(
    settings: Optional[GitSyncSettings] = None,
    *,
    context: SyncContext | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the sync engine wired in."""

    settings = settings or get_settings()
    context = context or SyncContext.from_settings(settings)

    orchestrator = SyncOrchestrator(context)
    executor = MutationExecutor(context, orchestrator)

    server = FastMCP(
        name="GitSync MCP",
        version=__version__,
        instructions=(
            "GitSync reconciles repository state for cloud workspaces from the hosting "
            "provider and the workspace backend. Open a repository panel to read commits, "
            "branches and working-tree status, then use the git_* tools to change it."
        ),
    )

    handles = register_tools(
        server,
        orchestrator=orchestrator,
        executor=executor,
        settings=settings,
    )

    @server.resource(
        "resource://gitsync/status",
        name="gitsync_status",
        title="GitSync MCP Status",
        description="Open panels, running reconciliation passes and cache statistics.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing runtime state."""

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "backend_url": settings.backend_url,
            "mirror_hosts": list(settings.mirror_hosts),
            "linked_accounts": len(orchestrator.context.resolver.known_accounts),
            **orchestrator.status(),
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "sync_context", context)
    setattr(server, "orchestrator", orchestrator)
    setattr(server, "executor", executor)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the GitSync MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching GitSync MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "backend_url": settings.backend_url,
            "mirror_hosts": list(settings.mirror_hosts),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
