"""Client for the workspace backend that owns the on-disk checkout."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Sequence

import httpx

from ..accounts.models import Credential
from ..errors import BackendUnavailable, MutationFailed
from ..models import BranchRecord, CommitRecord, WorkingTreeStatus, mark_head, parse_timestamp

logger = logging.getLogger(__name__)

GitAction = Literal["fetch", "pull", "push"]
StashOp = Literal["push", "pop"]

_ACTIONS = {"fetch", "pull", "push"}
_STASH_OPS = {"push", "pop"}


@dataclass(slots=True)
class BackendStatus:
    """Repository state as reported by the backend clone."""

    is_repo: bool
    current_branch: str = "main"
    branches: list[BranchRecord] = field(default_factory=list)
    status: WorkingTreeStatus | None = None
    commits: list[CommitRecord] = field(default_factory=list)


@dataclass(slots=True)
class BackendResult:
    """Outcome of a successful backend mutation."""

    message: str
    output: str = ""


def _branch_from_payload(item: Any, current_branch: str) -> BranchRecord | None:
    if isinstance(item, str):
        name = item.replace("*", "").strip()
        if not name:
            return None
        return BranchRecord(name=name, is_current=name == current_branch)
    if isinstance(item, dict) and item.get("name"):
        name = str(item["name"])
        return BranchRecord(
            name=name,
            is_current=bool(item.get("isCurrent", name == current_branch)),
            is_remote=bool(item.get("isRemote", False)),
            ahead=item.get("ahead"),
            behind=item.get("behind"),
        )
    return None


def _commit_from_payload(item: dict[str, Any]) -> CommitRecord:
    message = str(item.get("message") or "").split("\n", 1)[0]
    return CommitRecord(
        hash=str(item.get("hash") or ""),
        message=message,
        author_name=item.get("author") or "Unknown",
        author_email=item.get("authorEmail") or "",
        timestamp=parse_timestamp(item.get("date")),
        is_head=bool(item.get("isHead", False)),
        author_login=item.get("authorLogin"),
        author_avatar=item.get("authorAvatar"),
        branch=item.get("branch"),
        url=item.get("url"),
    )


def status_from_payload(payload: dict[str, Any]) -> BackendStatus:
    """Translate the backend status document into a BackendStatus."""

    is_repo = bool(payload.get("isGitRepo", payload.get("isRepo", False)))
    current_branch = str(payload.get("currentBranch") or payload.get("branch") or "main").strip() or "main"
    if not is_repo:
        return BackendStatus(is_repo=False, current_branch=current_branch)

    raw_status = payload.get("status") or {}
    status = WorkingTreeStatus.from_lists(
        staged=raw_status.get("staged") or (),
        modified=raw_status.get("modified") or (),
        untracked=raw_status.get("untracked") or (),
        deleted=raw_status.get("deleted") or (),
    )

    branches: list[BranchRecord] = []
    for item in payload.get("branches") or ():
        branch = _branch_from_payload(item, current_branch)
        if branch is not None and all(existing.name != branch.name for existing in branches):
            branches.append(branch)
    if all(branch.name != current_branch for branch in branches):
        branches.insert(0, BranchRecord(name=current_branch, is_current=True))

    commits = list(mark_head([_commit_from_payload(item) for item in payload.get("commits") or ()], current_branch))

    return BackendStatus(
        is_repo=True,
        current_branch=current_branch,
        branches=branches,
        status=status,
        commits=commits,
    )


class BackendCloneClient:
    """Talks to the backend for working-tree status and state-changing git operations."""

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_status(self, workspace_id: str) -> BackendStatus:
        url = f"{self._base_url}/git/status/{workspace_id}"
        try:
            response = await self._client.get(url)
        except httpx.RequestError as exc:
            raise BackendUnavailable("Workspace backend is unreachable", details=str(exc)) from exc

        if response.status_code >= 400:
            raise BackendUnavailable(
                f"Workspace backend returned status {response.status_code}",
                details=_error_text(response),
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise BackendUnavailable("Workspace backend returned unexpected data", details=str(exc)) from exc

        status = status_from_payload(payload if isinstance(payload, dict) else {})
        logger.debug(
            "Backend status",
            extra={
                "workspace_id": workspace_id,
                "is_repo": status.is_repo,
                "commits": len(status.commits),
            },
        )
        return status

    async def run_action(
        self,
        workspace_id: str,
        action: GitAction,
        credential: Credential | None,
    ) -> BackendResult:
        if action not in _ACTIONS:
            raise ValueError(f"Unsupported git action '{action}'")
        return await self._post(f"/git/{action}/{workspace_id}", {}, credential, action=action)

    async def commit(
        self,
        workspace_id: str,
        paths: Sequence[str],
        message: str,
        credential: Credential | None,
    ) -> BackendResult:
        body = {"files": list(paths), "message": message}
        return await self._post(f"/git/commit/{workspace_id}", body, credential, action="commit")

    async def stash(
        self,
        workspace_id: str,
        op: StashOp,
        credential: Credential | None,
        message: str | None = None,
    ) -> BackendResult:
        if op not in _STASH_OPS:
            raise ValueError(f"Unsupported stash operation '{op}'")
        body: dict[str, Any] = {"action": op}
        if message:
            body["message"] = message
        return await self._post(f"/git/stash/{workspace_id}", body, credential, action=f"stash {op}")

    async def checkout(
        self,
        workspace_id: str,
        branch: str,
        credential: Credential | None,
        *,
        create: bool = False,
    ) -> BackendResult:
        body = {"branch": branch, "create": create}
        return await self._post(f"/git/checkout/{workspace_id}", body, credential, action="checkout")

    async def _post(
        self,
        path: str,
        body: dict[str, Any],
        credential: Credential | None,
        *,
        action: str,
    ) -> BackendResult:
        headers = {"Content-Type": "application/json"}
        if credential is not None:
            headers.update(credential.authorization_header())

        try:
            response = await self._client.post(f"{self._base_url}{path}", json=body, headers=headers)
        except httpx.RequestError as exc:
            raise BackendUnavailable(f"Workspace backend is unreachable during {action}", details=str(exc)) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if response.status_code >= 400 or payload.get("success") is False:
            message = payload.get("error") or payload.get("message") or f"git {action} failed"
            logger.warning(
                "Backend rejected git operation",
                extra={"action": action, "status_code": response.status_code},
            )
            raise MutationFailed(str(message).strip() or f"git {action} failed", details=str(payload.get("output") or ""))

        return BackendResult(
            message=str(payload.get("message") or f"git {action} completed"),
            output=str(payload.get("output") or ""),
        )


def _error_text(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        return str(payload.get("error") or payload.get("message") or "")
    return ""


__all__ = [
    "BackendCloneClient",
    "BackendResult",
    "BackendStatus",
    "GitAction",
    "StashOp",
    "status_from_payload",
]
