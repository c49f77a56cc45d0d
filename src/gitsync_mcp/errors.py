"""Error taxonomy shared by the clients, the orchestrator and the executor."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Mapping
import time


class GitSyncError(RuntimeError):
    """Base class for git sync errors."""

    retryable = False

    def __init__(self, message: str, *, details: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class EnrichmentUnavailable(GitSyncError):
    """The optional remote mirror could not be used. Always absorbed by the orchestrator."""


class BackendUnavailable(GitSyncError):
    """The workspace backend could not be reached."""

    retryable = True


class AuthRequired(GitSyncError):
    """A mutating action needs a linked account and none could be resolved."""

    def __init__(self, message: str = "Link a Git account to run this action", **kwargs) -> None:
        super().__init__(message, **kwargs)


class UserInputError(GitSyncError):
    """The request was rejected locally before any network call."""


class MutationFailed(GitSyncError):
    """The backend rejected a fetch, pull, push, commit, stash or checkout."""


class StashConflict(GitSyncError):
    """The pull succeeded but the auto-stash could not be restored."""


class RemoteMirrorError(EnrichmentUnavailable):
    """Classified failure of a hosting-provider API call.

    `code` is one of UNAUTHORIZED, FORBIDDEN, RATE_LIMITED, NOT_FOUND, NETWORK,
    TIMEOUT, BAD_RESPONSE or UNKNOWN.
    """

    def __init__(
        self,
        code: str,
        message: str,
        *,
        status: int | None = None,
        retry_after_s: int | None = None,
        rate_limit_reset_utc: str | None = None,
        details: str = "",
    ) -> None:
        super().__init__(message, details=details)
        self.code = code
        self.status = status
        self.retry_after_s = retry_after_s
        self.rate_limit_reset_utc = rate_limit_reset_utc

    @classmethod
    def from_http_status(
        cls,
        status: int,
        headers: Mapping[str, str] | None = None,
    ) -> "RemoteMirrorError":
        headers_lower = {key.lower(): value for key, value in (headers or {}).items()}
        remaining = headers_lower.get("x-ratelimit-remaining")
        reset = headers_lower.get("x-ratelimit-reset")
        retry_after = headers_lower.get("retry-after")

        retry_after_s: int | None = None
        reset_utc: str | None = None
        if reset:
            try:
                reset_ts = int(reset)
            except ValueError:
                reset_ts = None
            if reset_ts is not None:
                retry_after_s = max(0, reset_ts - int(time.time()))
                reset_utc = datetime.fromtimestamp(reset_ts, tz=timezone.utc).isoformat()
        if retry_after:
            try:
                retry_after_s = int(retry_after)
            except ValueError:
                pass

        if status == 401:
            return cls("UNAUTHORIZED", "Hosting provider rejected the credential", status=status)
        if status == 429 or (status == 403 and str(remaining) == "0"):
            return cls(
                "RATE_LIMITED",
                "Hosting provider rate limit reached",
                status=status,
                retry_after_s=retry_after_s,
                rate_limit_reset_utc=reset_utc,
            )
        if status == 403:
            return cls("FORBIDDEN", "Access to the repository was denied", status=status)
        if status == 404:
            return cls("NOT_FOUND", "Repository not found on hosting provider", status=status)
        if status >= 500:
            return cls(
                "NETWORK",
                "Hosting provider is temporarily unavailable",
                status=status,
                retry_after_s=retry_after_s or 5,
            )
        return cls("UNKNOWN", f"Hosting provider returned status {status}", status=status)

    @classmethod
    def from_transport_error(cls, error: Exception) -> "RemoteMirrorError":
        text = str(error) or error.__class__.__name__
        if "timeout" in text.lower() or "timeout" in error.__class__.__name__.lower():
            return cls("TIMEOUT", "Hosting provider request timed out", retry_after_s=2, details=text)
        return cls("NETWORK", "Could not reach hosting provider", retry_after_s=3, details=text)


class CredentialMaterializationError(GitSyncError):
    """A stored credential reference could not be turned into a token."""


class AccountLoadError(GitSyncError):
    """Raised when one or more linked-account files cannot be parsed."""


__all__ = [
    "AccountLoadError",
    "AuthRequired",
    "BackendUnavailable",
    "CredentialMaterializationError",
    "EnrichmentUnavailable",
    "GitSyncError",
    "MutationFailed",
    "RemoteMirrorError",
    "StashConflict",
    "UserInputError",
]
