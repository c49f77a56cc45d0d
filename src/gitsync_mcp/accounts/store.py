"""Linked account storage backed by YAML files."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol

import yaml
from pydantic import ValidationError

from ..errors import AccountLoadError, CredentialMaterializationError
from .models import LinkedAccount


class CredentialStore(Protocol):
    """Collaborator that owns linked accounts and their stored credentials."""

    async def get_all_accounts(self, user_id: str) -> list[LinkedAccount]:
        ...

    async def materialize(self, account: LinkedAccount, user_id: str) -> str:
        ...


class YamlCredentialStore:
    """Loads linked accounts from YAML files on disk.

    Each file holds either one account mapping or a list of them. Credential
    references use ``env:NAME`` or ``file:PATH``.
    """

    def __init__(
        self,
        search_paths: Iterable[Path] | None = None,
        *,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]
        self._environ = environ if environ is not None else os.environ

    @property
    def search_paths(self) -> list[Path]:
        """Return the normalized search paths."""

        return list(self._search_paths)

    def load_all(self) -> dict[str, LinkedAccount]:
        """Load accounts from all configured search paths.

        Later search paths override earlier ones when account ids collide.
        """

        if not self._search_paths:
            return {}

        accounts: dict[str, LinkedAccount] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:  # pragma: no cover - library type
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                entries: list[Any] = document if isinstance(document, list) else [document]
                for entry in entries:
                    try:
                        account = LinkedAccount.model_validate(entry)
                    except ValidationError as exc:
                        errors.append(f"Account validation error in {path}: {exc}")
                        continue
                    accounts[account.id] = account

        if errors:
            raise AccountLoadError("; ".join(errors))

        return accounts

    async def get_all_accounts(self, user_id: str) -> list[LinkedAccount]:
        return [
            account
            for account in self.load_all().values()
            if account.user_id is None or account.user_id == user_id
        ]

    async def materialize(self, account: LinkedAccount, user_id: str) -> str:
        scheme, _, target = account.credential_ref.partition(":")
        if scheme == "env" and target:
            token = self._environ.get(target, "").strip()
            if not token:
                raise CredentialMaterializationError(
                    f"Environment variable {target} is not set for account {account.username}"
                )
            return token
        if scheme == "file" and target:
            path = Path(target).expanduser()
            try:
                token = path.read_text(encoding="utf-8").strip()
            except OSError as exc:
                raise CredentialMaterializationError(
                    f"Cannot read credential file for account {account.username}"
                ) from exc
            if not token:
                raise CredentialMaterializationError(
                    f"Credential file for account {account.username} is empty"
                )
            return token
        raise CredentialMaterializationError(
            f"Unsupported credential reference for account {account.username}"
        )


__all__ = ["CredentialStore", "YamlCredentialStore"]
