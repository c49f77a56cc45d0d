"""Linked account models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Provider = Literal[
    "github",
    "github-enterprise",
    "gitlab",
    "gitlab-server",
    "bitbucket",
    "bitbucket-server",
    "gitea",
]


class LinkedAccount(BaseModel):
    """Identity on a Git hosting provider linked by a user."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stable identifier for the linked account.")
    provider: Provider = Field(..., description="Hosting provider the account belongs to.")
    username: str = Field(..., description="Login name on the hosting provider.")
    avatar_url: str = Field(default="", description="Avatar reference for display.")
    credential_ref: str = Field(
        ...,
        description="Opaque handle exchanged for a usable token by the credential store.",
    )
    server_url: str | None = Field(
        default=None,
        description="Base URL of a self-hosted provider instance.",
    )
    user_id: str | None = Field(
        default=None,
        description="Owner of the account; accounts without an owner are visible to every user.",
    )
    added_at: datetime | None = None

    @field_validator("id", "username", "credential_ref")
    @classmethod
    def _require_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Linked account fields id, username and credential_ref must not be empty")
        return normalized


@dataclass(slots=True, frozen=True)
class Credential:
    """A materialized access token together with the account it belongs to."""

    account: LinkedAccount
    token: str = field(repr=False)

    @property
    def username(self) -> str:
        return self.account.username

    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


__all__ = ["Credential", "LinkedAccount", "Provider"]
