"""State-changing git operations executed through the workspace backend."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence

from ..accounts import Credential
from ..errors import AuthRequired, GitSyncError, StashConflict, UserInputError
from ..models import RepoSnapshot, WorkingTreeStatus
from .context import SyncContext
from .orchestrator import SyncOrchestrator
from .session import WorkspaceRef

logger = logging.getLogger(__name__)

AUTO_STASH_MESSAGE = "auto-stash before pull"


class PullMode(str, Enum):
    AUTO = "auto"
    DISCARD_WARNING = "discard_warning"
    STASH = "stash"


class MutationStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SUCCEEDED_WITH_WARNING = "succeeded_with_warning"
    FAILED = "failed"
    CHOICE_REQUIRED = "choice_required"


@dataclass(slots=True)
class MutationResult:
    """Typed outcome of a mutation; errors are carried, not raised."""

    action: str
    status: MutationStatus
    message: str = ""
    error: GitSyncError | None = None
    warning: StashConflict | None = None
    choices: tuple[PullMode, ...] = ()
    output: str = ""
    snapshot: RepoSnapshot | None = None

    @property
    def ok(self) -> bool:
        return self.status in (MutationStatus.SUCCEEDED, MutationStatus.SUCCEEDED_WITH_WARNING)

    @classmethod
    def failed(cls, action: str, error: GitSyncError) -> "MutationResult":
        return cls(action=action, status=MutationStatus.FAILED, message=error.message, error=error)

    def to_dict(self) -> dict[str, Any]:
        def _describe(error: GitSyncError | None) -> dict[str, Any] | None:
            if error is None:
                return None
            return {
                "type": type(error).__name__,
                "message": error.message,
                "details": error.details,
                "retryable": error.retryable,
            }

        return {
            "action": self.action,
            "status": self.status.value,
            "ok": self.ok,
            "message": self.message,
            "output": self.output,
            "error": _describe(self.error),
            "warning": _describe(self.warning),
            "choices": [choice.value for choice in self.choices],
            "snapshot": self.snapshot.to_dict() if self.snapshot is not None else None,
        }


class MutationExecutor:
    """Runs fetch, pull, push, commit and checkout, then reloads the workspace."""

    def __init__(self, context: SyncContext, orchestrator: SyncOrchestrator) -> None:
        self._ctx = context
        self._orchestrator = orchestrator

    async def fetch(self, workspace: WorkspaceRef) -> MutationResult:
        return await self._run_action(workspace, "fetch")

    async def push(self, workspace: WorkspaceRef) -> MutationResult:
        return await self._run_action(workspace, "push")

    async def pull(self, workspace: WorkspaceRef, mode: PullMode = PullMode.AUTO) -> MutationResult:
        """Pull, guarding uncommitted changes.

        With changes in the cached status, ``AUTO`` asks the caller to choose
        between a plain pull and the stash, pull, restore transaction.
        """

        mode = PullMode(mode)
        status = self._cached_status(workspace.id)
        has_changes = status is not None and status.has_changes

        if has_changes and mode is PullMode.AUTO:
            return MutationResult(
                action="pull",
                status=MutationStatus.CHOICE_REQUIRED,
                message=f"{status.change_count} uncommitted change(s) in the working tree",
                choices=(PullMode.DISCARD_WARNING, PullMode.STASH),
            )

        try:
            credential = await self._credential(workspace)
        except GitSyncError as exc:
            return MutationResult.failed("pull", exc)

        if has_changes and mode is PullMode.STASH:
            return await self._stash_pull(workspace, credential)

        try:
            result = await self._ctx.backend.run_action(workspace.id, "pull", credential)
        except GitSyncError as exc:
            return MutationResult.failed("pull", exc)
        return await self._succeeded(workspace, "pull", result.message, result.output)

    async def commit(
        self,
        workspace: WorkspaceRef,
        paths: Sequence[str],
        message: str,
    ) -> MutationResult:
        selected = [path for path in paths if path and path.strip()]
        if not selected:
            return MutationResult.failed("commit", UserInputError("Select at least one file to commit"))
        if not message or not message.strip():
            return MutationResult.failed("commit", UserInputError("Enter a commit message"))

        try:
            credential = await self._credential(workspace)
            result = await self._ctx.backend.commit(workspace.id, selected, message.strip(), credential)
        except GitSyncError as exc:
            return MutationResult.failed("commit", exc)
        return await self._succeeded(workspace, "commit", result.message, result.output)

    async def checkout(self, workspace: WorkspaceRef, branch: str, *, create: bool = False) -> MutationResult:
        if not branch or not branch.strip():
            return MutationResult.failed("checkout", UserInputError("Enter a branch name"))

        try:
            credential = await self._credential(workspace)
            result = await self._ctx.backend.checkout(
                workspace.id, branch.strip(), credential, create=create
            )
        except GitSyncError as exc:
            return MutationResult.failed("checkout", exc)
        return await self._succeeded(workspace, "checkout", result.message, result.output)

    async def _run_action(self, workspace: WorkspaceRef, action: str) -> MutationResult:
        try:
            credential = await self._credential(workspace)
            result = await self._ctx.backend.run_action(workspace.id, action, credential)
        except GitSyncError as exc:
            return MutationResult.failed(action, exc)
        return await self._succeeded(workspace, action, result.message, result.output)

    async def _stash_pull(self, workspace: WorkspaceRef, credential: Credential) -> MutationResult:
        backend = self._ctx.backend
        try:
            await backend.stash(workspace.id, "push", credential, message=AUTO_STASH_MESSAGE)
        except GitSyncError as exc:
            logger.warning(
                "Auto-stash failed; pull not attempted",
                extra={"workspace_id": workspace.id, "error": exc.message},
            )
            return MutationResult.failed("pull", exc)

        try:
            result = await backend.run_action(workspace.id, "pull", credential)
        except GitSyncError as pull_error:
            try:
                await backend.stash(workspace.id, "pop", credential)
            except GitSyncError as pop_error:
                logger.warning(
                    "Could not restore auto-stash after failed pull",
                    extra={"workspace_id": workspace.id, "error": pop_error.message},
                )
            return MutationResult.failed("pull", pull_error)

        try:
            await backend.stash(workspace.id, "pop", credential)
        except GitSyncError as pop_error:
            warning = StashConflict(
                "Pulled, but local changes could not be restored and are still stashed",
                details=pop_error.message,
            )
            logger.warning(
                "Auto-stash restore failed after pull",
                extra={"workspace_id": workspace.id, "error": pop_error.message},
            )
            outcome = await self._succeeded(workspace, "pull", warning.message, result.output)
            outcome.status = MutationStatus.SUCCEEDED_WITH_WARNING
            outcome.warning = warning
            return outcome

        return await self._succeeded(
            workspace, "pull", f"{result.message}; local changes restored", result.output
        )

    async def _credential(self, workspace: WorkspaceRef) -> Credential:
        credential = await self._ctx.resolver.resolve_for(
            workspace.repository_url, workspace.linked_username
        )
        if credential is None:
            raise AuthRequired()
        return credential

    def _cached_status(self, workspace_id: str) -> WorkingTreeStatus | None:
        snapshot = self._orchestrator.snapshot(workspace_id)
        return snapshot.status if snapshot is not None else None

    async def _succeeded(
        self,
        workspace: WorkspaceRef,
        action: str,
        message: str,
        output: str,
    ) -> MutationResult:
        logger.info("Git operation completed", extra={"workspace_id": workspace.id, "action": action})
        self._ctx.cache.invalidate(workspace.id)
        snapshot = await self._orchestrator.refresh(workspace, force=True)
        return MutationResult(
            action=action,
            status=MutationStatus.SUCCEEDED,
            message=message,
            output=output,
            snapshot=snapshot,
        )


__all__ = [
    "AUTO_STASH_MESSAGE",
    "MutationExecutor",
    "MutationResult",
    "MutationStatus",
    "PullMode",
]
