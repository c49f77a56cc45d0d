"""Clients for the hosting-provider mirror and the workspace backend."""

from .backend import BackendCloneClient, BackendResult, BackendStatus, status_from_payload
from .remote import RemoteMirrorClient

__all__ = [
    "BackendCloneClient",
    "BackendResult",
    "BackendStatus",
    "RemoteMirrorClient",
    "status_from_payload",
]
