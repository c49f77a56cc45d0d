"""Linked accounts, credential storage and credential resolution."""

from .models import Credential, LinkedAccount
from .resolver import CredentialResolver, select_account
from .store import CredentialStore, YamlCredentialStore

__all__ = [
    "Credential",
    "CredentialResolver",
    "CredentialStore",
    "LinkedAccount",
    "YamlCredentialStore",
    "select_account",
]
