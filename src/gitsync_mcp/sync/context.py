"""Explicit context object shared by the orchestrator and the executor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..accounts import CredentialResolver, CredentialStore, YamlCredentialStore
from ..clients import BackendCloneClient, RemoteMirrorClient
from ..config import GitSyncSettings
from .cache import ReconciliationCache


@dataclass(slots=True)
class SyncContext:
    """Cache, resolver and clients, injected instead of module-level singletons."""

    cache: ReconciliationCache
    resolver: CredentialResolver
    remote: RemoteMirrorClient
    backend: BackendCloneClient
    mirror_hosts: tuple[str, ...] = ("github.com",)
    credential_timeout: float = 10.0

    @classmethod
    def from_settings(
        cls,
        settings: GitSyncSettings,
        *,
        store: Optional[CredentialStore] = None,
    ) -> "SyncContext":
        store = store or YamlCredentialStore(settings.account_paths)
        return cls(
            cache=ReconciliationCache(settings.cache_ttl_seconds),
            resolver=CredentialResolver(store, settings.user_id),
            remote=RemoteMirrorClient(
                settings.github_api_url,
                timeout=settings.remote_timeout_seconds,
                commit_limit=settings.commit_limit,
            ),
            backend=BackendCloneClient(
                settings.backend_url,
                timeout=settings.backend_timeout_seconds,
            ),
            mirror_hosts=tuple(settings.mirror_hosts),
            credential_timeout=settings.credential_timeout_seconds,
        )

    def is_mirror_host(self, host: str | None) -> bool:
        return bool(host) and host.lower() in self.mirror_hosts

    async def aclose(self) -> None:
        await self.remote.aclose()
        await self.backend.aclose()


__all__ = ["SyncContext"]
