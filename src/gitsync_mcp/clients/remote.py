"""Hosting-provider REST API client used for the fast reconciliation path."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..accounts.models import Credential
from ..errors import RemoteMirrorError
from ..models import BranchRecord, CommitRecord, parse_timestamp

logger = logging.getLogger(__name__)


def commit_from_api(payload: dict[str, Any], *, index: int = 0, branch: str | None = None) -> CommitRecord:
    """Map a GitHub commit object onto a CommitRecord."""

    commit = payload.get("commit") or {}
    author = commit.get("author") or {}
    account = payload.get("author") or {}
    message = (commit.get("message") or "").split("\n", 1)[0]
    return CommitRecord(
        hash=payload["sha"],
        message=message,
        author_name=author.get("name") or "Unknown",
        author_email=author.get("email") or "",
        timestamp=parse_timestamp(author.get("date")),
        is_head=index == 0,
        author_login=account.get("login"),
        author_avatar=account.get("avatar_url"),
        branch=branch if index == 0 else None,
        url=payload.get("html_url"),
    )


def branch_from_api(payload: dict[str, Any]) -> BranchRecord:
    return BranchRecord(name=payload["name"], is_remote=False)


def _bad_item(kind: str, exc: Exception) -> RemoteMirrorError:
    return RemoteMirrorError(
        "BAD_RESPONSE",
        f"Hosting provider returned malformed {kind}",
        details=f"{type(exc).__name__}: {exc}",
    )


class RemoteMirrorClient:
    """Read-only GitHub REST client for commit and branch listings."""

    def __init__(
        self,
        base_url: str = "https://api.github.com",
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
        commit_limit: int = 30,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._commit_limit = commit_limit

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_commits(
        self,
        owner: str,
        repo: str,
        credential: Credential | None = None,
    ) -> list[CommitRecord]:
        payload = await self._get(
            f"/repos/{owner}/{repo}/commits",
            params={"per_page": self._commit_limit},
            credential=credential,
        )
        try:
            return [commit_from_api(item, index=index) for index, item in enumerate(payload)]
        except (AttributeError, KeyError, TypeError) as exc:
            raise _bad_item("commits", exc) from exc

    async def get_branches(
        self,
        owner: str,
        repo: str,
        credential: Credential | None = None,
    ) -> list[BranchRecord]:
        payload = await self._get(
            f"/repos/{owner}/{repo}/branches",
            params={"per_page": 100},
            credential=credential,
        )
        try:
            return [branch_from_api(item) for item in payload]
        except (AttributeError, KeyError, TypeError) as exc:
            raise _bad_item("branches", exc) from exc

    async def _get(
        self,
        path: str,
        *,
        params: dict[str, Any],
        credential: Credential | None,
    ) -> list[dict[str, Any]]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if credential is not None:
            headers.update(credential.authorization_header())

        try:
            response = await self._client.get(f"{self._base_url}{path}", params=params, headers=headers)
        except httpx.RequestError as exc:
            raise RemoteMirrorError.from_transport_error(exc) from exc

        if response.status_code >= 400:
            raise RemoteMirrorError.from_http_status(response.status_code, dict(response.headers))

        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteMirrorError(
                "BAD_RESPONSE", "Hosting provider returned unexpected data", details=str(exc)
            ) from exc
        if not isinstance(payload, list):
            raise RemoteMirrorError("BAD_RESPONSE", "Hosting provider returned unexpected data")

        logger.debug("Remote mirror request", extra={"path": path, "items": len(payload)})
        return payload


__all__ = ["RemoteMirrorClient", "branch_from_api", "commit_from_api"]
