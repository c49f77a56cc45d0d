"""Credential resolution across linked accounts."""

from __future__ import annotations

import logging
from typing import Sequence

from ..urls import provider_for_host, repository_host
from .models import Credential, LinkedAccount
from .store import CredentialStore

logger = logging.getLogger(__name__)


def _account_host(account: LinkedAccount) -> str | None:
    return repository_host(account.server_url) if account.server_url else None


def select_account(
    accounts: Sequence[LinkedAccount],
    repository_url: str | None,
    linked_username: str | None = None,
) -> LinkedAccount | None:
    """Pick the account to use for a repository without touching any credential.

    Order: explicitly linked username, provider matching the repository host,
    first account of any provider.
    """

    if not accounts:
        return None

    if linked_username:
        for account in accounts:
            if account.username == linked_username:
                return account

    host = repository_host(repository_url)
    if host:
        provider = provider_for_host(host)
        for account in accounts:
            if provider is not None and account.provider == provider:
                return account
            if _account_host(account) == host:
                return account

    return accounts[0]


class CredentialResolver:
    """Resolve the credential to use for a repository.

    The resolver remembers the last account list it loaded and every token it
    materialized so callers can fall back to stale data when the store is slow.
    """

    def __init__(self, store: CredentialStore, user_id: str) -> None:
        self._store = store
        self._user_id = user_id
        self._known_accounts: list[LinkedAccount] = []
        self._tokens: dict[str, str] = {}

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def known_accounts(self) -> list[LinkedAccount]:
        return list(self._known_accounts)

    def select(
        self,
        accounts: Sequence[LinkedAccount],
        repository_url: str | None,
        linked_username: str | None = None,
    ) -> LinkedAccount | None:
        return select_account(accounts, repository_url, linked_username)

    async def load_accounts(self) -> list[LinkedAccount]:
        accounts = await self._store.get_all_accounts(self._user_id)
        self._known_accounts = list(accounts)
        logger.debug("Loaded linked accounts", extra={"count": len(accounts)})
        return list(accounts)

    async def resolve(
        self,
        accounts: Sequence[LinkedAccount],
        repository_url: str | None,
        linked_username: str | None = None,
    ) -> Credential | None:
        """Select an account and materialize its credential.

        Materialization failures resolve to None rather than raising.
        """

        account = select_account(accounts, repository_url, linked_username)
        if account is None:
            return None

        try:
            token = await self._store.materialize(account, self._user_id)
        except Exception as exc:
            logger.warning(
                "Credential materialization failed",
                extra={
                    "account": account.username,
                    "provider": account.provider,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return None

        self._tokens[account.id] = token
        return Credential(account=account, token=token)

    async def resolve_for(
        self,
        repository_url: str | None,
        linked_username: str | None = None,
    ) -> Credential | None:
        """Load the current account list and resolve against it."""

        accounts = await self.load_accounts()
        return await self.resolve(accounts, repository_url, linked_username)

    def resolve_known(
        self,
        repository_url: str | None,
        linked_username: str | None = None,
    ) -> Credential | None:
        """Resolve from the last known accounts and already materialized tokens only."""

        account = select_account(self._known_accounts, repository_url, linked_username)
        if account is None:
            return None
        token = self._tokens.get(account.id)
        if token is None:
            return None
        return Credential(account=account, token=token)


__all__ = ["CredentialResolver", "select_account"]
