"""Repository URL helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlparse

_REPOSITORY_URL = re.compile(
    r"^https://(?P<host>[A-Za-z0-9.\-]+(?::\d+)?)/(?P<owner>[^/\s]+)/(?P<repo>[^/\s]+?)(?:\.git)?$"
)

_PROVIDER_HOSTS = {
    "github.com": "github",
    "gitlab.com": "gitlab",
    "bitbucket.org": "bitbucket",
}


@dataclass(slots=True, frozen=True)
class RepositoryLocation:
    host: str
    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_repository_url(url: str | None) -> RepositoryLocation | None:
    """Parse ``https://<host>/<owner>/<repo>[.git]``; anything else yields None."""

    if not url:
        return None
    match = _REPOSITORY_URL.match(url.strip())
    if match is None:
        return None
    repo = match.group("repo")
    if not repo or repo == ".git":
        return None
    return RepositoryLocation(
        host=match.group("host").lower(),
        owner=match.group("owner"),
        repo=repo,
    )


def repository_host(url: str | None) -> str | None:
    """Best-effort host extraction used for provider matching."""

    if not url:
        return None
    location = parse_repository_url(url)
    if location is not None:
        return location.host
    parsed = urlparse(url.strip())
    return parsed.hostname.lower() if parsed.hostname else None


def provider_for_host(host: str | None) -> str | None:
    if not host:
        return None
    return _PROVIDER_HOSTS.get(host.lower())


__all__ = ["RepositoryLocation", "parse_repository_url", "provider_for_host", "repository_host"]
