"""
Duplicate detection for imported logins.
"""

from typing import Protocol

from reconciler.importing.credential_store import CredentialStore
from reconciler.models.domain import LoginCredentials


class ExistingCredentialMatchDetector(Protocol):
    async def already_exists(self, credentials: LoginCredentials) -> bool: ...


class DefaultExistingCredentialMatchDetector:
    """
    Exact-match detector.

    A login already exists iff a stored login has the same domain, username,
    password, notes and domain title. The stored id is ignored.
    """

    def __init__(self, credential_store: CredentialStore) -> None:
        self.credential_store = credential_store

    async def already_exists(self, credentials: LoginCredentials) -> bool:
        key = _match_key(credentials)
        return any(
            _match_key(existing) == key
            for existing in await self.credential_store.get_all_credentials()
        )


def _match_key(credentials: LoginCredentials) -> tuple[str | None, ...]:
    return (
        credentials.domain,
        credentials.username,
        credentials.password,
        credentials.notes,
        credentials.domain_title,
    )
