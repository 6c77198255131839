"""
Local token and subscription store.

The coordinator is the only writer. The in-memory implementation backs tests
and hosts that persist elsewhere and hydrate it on startup.
"""

import dataclasses
from typing import Protocol

from reconciler.models.domain import Account, Entitlement, Subscription, SubscriptionStatus


class AuthRepository(Protocol):
    """Protocol for the device-local auth/subscription store."""

    async def get_auth_token(self) -> str | None: ...

    async def set_auth_token(self, auth_token: str | None) -> None: ...

    async def get_access_token(self) -> str | None: ...

    async def set_access_token(self, access_token: str | None) -> None: ...

    async def get_account(self) -> Account | None: ...

    async def set_account(self, account: Account | None) -> None: ...

    async def get_subscription(self) -> Subscription | None: ...

    async def set_subscription(self, subscription: Subscription | None) -> None: ...

    async def get_entitlements(self) -> list[Entitlement]: ...

    async def set_entitlements(self, entitlements: list[Entitlement]) -> None: ...

    async def purchase_to_waiting_status(self) -> None:
        """Mark the stored subscription as waiting for backend confirmation."""
        ...

    async def get_status(self) -> SubscriptionStatus:
        """Status of the stored subscription, UNKNOWN if none."""
        ...

    async def can_support_encryption(self) -> bool: ...


class InMemoryAuthRepository:
    """Process-local AuthRepository."""

    def __init__(self, supports_encryption: bool = True) -> None:
        self._auth_token: str | None = None
        self._access_token: str | None = None
        self._account: Account | None = None
        self._subscription: Subscription | None = None
        self._entitlements: list[Entitlement] = []
        self._supports_encryption = supports_encryption

    async def get_auth_token(self) -> str | None:
        return self._auth_token

    async def set_auth_token(self, auth_token: str | None) -> None:
        self._auth_token = auth_token

    async def get_access_token(self) -> str | None:
        return self._access_token

    async def set_access_token(self, access_token: str | None) -> None:
        self._access_token = access_token

    async def get_account(self) -> Account | None:
        return self._account

    async def set_account(self, account: Account | None) -> None:
        self._account = account

    async def get_subscription(self) -> Subscription | None:
        return self._subscription

    async def set_subscription(self, subscription: Subscription | None) -> None:
        self._subscription = subscription

    async def get_entitlements(self) -> list[Entitlement]:
        return list(self._entitlements)

    async def set_entitlements(self, entitlements: list[Entitlement]) -> None:
        self._entitlements = list(entitlements)

    async def purchase_to_waiting_status(self) -> None:
        # First purchase: nothing stored yet.
        if self._subscription is None:
            self._subscription = Subscription(
                product_id="",
                started_at=0,
                expires_or_renews_at=0,
                status=SubscriptionStatus.WAITING,
                platform="",
            )
        else:
            self._subscription = dataclasses.replace(
                self._subscription, status=SubscriptionStatus.WAITING
            )

    async def get_status(self) -> SubscriptionStatus:
        if self._subscription is None:
            return SubscriptionStatus.UNKNOWN
        return self._subscription.status

    async def can_support_encryption(self) -> bool:
        return self._supports_encryption
