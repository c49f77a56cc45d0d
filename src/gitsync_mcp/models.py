"""Repository state records shared by the clients and the sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence


def parse_timestamp(raw: Any) -> datetime:
    """Parse an ISO 8601 timestamp, falling back to the current time."""

    if isinstance(raw, str) and raw:
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class CommitRecord:
    hash: str
    message: str
    author_name: str
    author_email: str
    timestamp: datetime
    is_head: bool = False
    author_login: str | None = None
    author_avatar: str | None = None
    branch: str | None = None
    url: str | None = None

    @property
    def short_hash(self) -> str:
        return self.hash[:7]

    def to_dict(self) -> dict[str, Any]:
        return {
            "hash": self.hash,
            "short_hash": self.short_hash,
            "message": self.message,
            "author_name": self.author_name,
            "author_email": self.author_email,
            "author_login": self.author_login,
            "author_avatar": self.author_avatar,
            "timestamp": self.timestamp.isoformat(),
            "is_head": self.is_head,
            "branch": self.branch,
            "url": self.url,
        }


@dataclass(slots=True, frozen=True)
class BranchRecord:
    name: str
    is_current: bool = False
    is_remote: bool = False
    ahead: int | None = None
    behind: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "is_current": self.is_current,
            "is_remote": self.is_remote,
            "ahead": self.ahead,
            "behind": self.behind,
        }


@dataclass(slots=True, frozen=True)
class WorkingTreeStatus:
    """Changed paths split into four disjoint sets."""

    staged: frozenset[str] = field(default_factory=frozenset)
    modified: frozenset[str] = field(default_factory=frozenset)
    untracked: frozenset[str] = field(default_factory=frozenset)
    deleted: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        groups = (self.staged, self.modified, self.deleted, self.untracked)
        seen: set[str] = set()
        for group in groups:
            overlap = seen & group
            if overlap:
                raise ValueError(f"Paths listed in more than one status set: {sorted(overlap)}")
            seen |= group

    @classmethod
    def from_lists(
        cls,
        *,
        staged: Iterable[str] = (),
        modified: Iterable[str] = (),
        untracked: Iterable[str] = (),
        deleted: Iterable[str] = (),
    ) -> "WorkingTreeStatus":
        """Build a status, keeping each path in its first set by precedence.

        Precedence is staged, modified, deleted, untracked.
        """

        seen: set[str] = set()
        buckets: dict[str, set[str]] = {}
        for name, paths in (
            ("staged", staged),
            ("modified", modified),
            ("deleted", deleted),
            ("untracked", untracked),
        ):
            bucket = {path for path in paths if path and path not in seen}
            seen |= bucket
            buckets[name] = bucket
        return cls(
            staged=frozenset(buckets["staged"]),
            modified=frozenset(buckets["modified"]),
            untracked=frozenset(buckets["untracked"]),
            deleted=frozenset(buckets["deleted"]),
        )

    @property
    def change_count(self) -> int:
        return len(self.staged) + len(self.modified) + len(self.untracked) + len(self.deleted)

    @property
    def has_changes(self) -> bool:
        return self.change_count > 0

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "staged": sorted(self.staged),
            "modified": sorted(self.modified),
            "untracked": sorted(self.untracked),
            "deleted": sorted(self.deleted),
        }


def merge_branches(
    existing: Sequence[BranchRecord],
    incoming: Sequence[BranchRecord],
) -> tuple[BranchRecord, ...]:
    """Merge branch lists by name; the first record seen for a name wins."""

    merged: list[BranchRecord] = []
    names: set[str] = set()
    for branch in (*existing, *incoming):
        if branch.name in names:
            continue
        names.add(branch.name)
        merged.append(branch)
    return tuple(merged)


def mark_head(commits: Sequence[CommitRecord], branch: str | None = None) -> tuple[CommitRecord, ...]:
    """Return commits with ``is_head`` set on the first record only."""

    return tuple(
        replace(commit, is_head=index == 0, branch=(branch or commit.branch) if index == 0 else commit.branch)
        for index, commit in enumerate(commits)
    )


@dataclass(slots=True, frozen=True)
class RepoSnapshot:
    """Reconciled view of a repository."""

    commits: tuple[CommitRecord, ...] = ()
    branches: tuple[BranchRecord, ...] = ()
    current_branch: str = "main"
    status: WorkingTreeStatus | None = None
    is_repo: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "commits", tuple(self.commits))
        object.__setattr__(self, "branches", tuple(self.branches))
        heads = [index for index, commit in enumerate(self.commits) if commit.is_head]
        if self.commits and heads != [0]:
            object.__setattr__(self, "commits", mark_head(self.commits))
        if len({branch.name for branch in self.branches}) != len(self.branches):
            object.__setattr__(self, "branches", merge_branches(self.branches, ()))

    @property
    def has_commits(self) -> bool:
        return bool(self.commits)

    def with_status(self, status: WorkingTreeStatus | None) -> "RepoSnapshot":
        return replace(self, status=status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_repo": self.is_repo,
            "current_branch": self.current_branch,
            "commits": [commit.to_dict() for commit in self.commits],
            "branches": [branch.to_dict() for branch in self.branches],
            "status": self.status.to_dict() if self.status is not None else None,
        }


__all__ = [
    "BranchRecord",
    "CommitRecord",
    "RepoSnapshot",
    "WorkingTreeStatus",
    "mark_head",
    "merge_branches",
    "parse_timestamp",
]
