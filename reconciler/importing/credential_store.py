"""
Credential store collaborator.
"""

import dataclasses
from typing import Protocol

from reconciler.models.domain import LoginCredentials


class CredentialStore(Protocol):
    """Persistent store of saved logins."""

    async def get_all_credentials(self) -> list[LoginCredentials]: ...

    async def save_credentials(
        self, domain: str, credentials: LoginCredentials
    ) -> LoginCredentials | None:
        """Persist a login; returns the stored record (with id) or None if nothing was saved."""
        ...


class InMemoryCredentialStore:
    """CredentialStore keeping logins in a list with sequential ids."""

    def __init__(self, credentials: list[LoginCredentials] | None = None) -> None:
        self._credentials: list[LoginCredentials] = []
        self._next_id = 1
        for existing in credentials or []:
            self._append(existing)

    def _append(self, credentials: LoginCredentials) -> LoginCredentials:
        stored = dataclasses.replace(credentials, id=self._next_id)
        self._next_id += 1
        self._credentials.append(stored)
        return stored

    async def get_all_credentials(self) -> list[LoginCredentials]:
        return list(self._credentials)

    async def save_credentials(
        self, domain: str, credentials: LoginCredentials
    ) -> LoginCredentials | None:
        return self._append(dataclasses.replace(credentials, domain=domain))
