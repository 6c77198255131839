"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fakes and fixtures for testing:
- Local auth store (signed in / signed out)
- Remote service mocks and response factories
- Store billing fake with a purchase event channel
- Subscriptions manager wired with a zero-delay retry policy
- Credential store, duplicate detector and importer
"""

import asyncio
import os
from collections.abc import AsyncIterator
from typing import TypeVar
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

# Keep logs readable in test output BEFORE importing reconciler modules
os.environ.setdefault("LOG_FORMAT", "console")

from reconciler.events import ChannelSubscription, EventChannel
from reconciler.importing.credential_store import InMemoryCredentialStore
from reconciler.importing.importer import CredentialImporter
from reconciler.models.api import (
    AccessTokenResponse,
    AccountResponse,
    ConfirmationResponse,
    CreateAccountResponse,
    EntitlementResponse,
    StoreLoginResponse,
    SubscriptionResponse,
    ValidateTokenResponse,
)
from reconciler.models.domain import Account, LoginCredentials
from reconciler.models.results import ImportFinished, ImportResult
from reconciler.services.auth_repository import InMemoryAuthRepository
from reconciler.services.billing import PurchaseRecord, PurchaseState
from reconciler.services.retry import RetryPolicy
from reconciler.services.subscriptions_manager import SubscriptionsManager

T = TypeVar("T")

NO_DELAY_POLICY = RetryPolicy(
    retry_count=2, initial_delay=0.0, max_delay=0.0, delay_increment_factor=2.0
)

# ============================================================================
# Response Factories
# ============================================================================


def create_subscription_response(
    status: str = "Auto-Renewable",
    platform: str = "google",
    product_id: str = "monthly-plan",
) -> SubscriptionResponse:
    """Subscription payload as the service returns it."""
    return SubscriptionResponse(
        product_id=product_id,
        started_at=1_700_000_000_000,
        expires_or_renews_at=1_702_592_000_000,
        platform=platform,
        status=status,
    )


def create_entitlement_responses(*products: str) -> list[EntitlementResponse]:
    return [EntitlementResponse(name=product.lower(), product=product) for product in products]


def create_validate_token_response(
    external_id: str = "ext-1",
    email: str | None = None,
    products: tuple[str, ...] = ("Network Protection",),
) -> ValidateTokenResponse:
    return ValidateTokenResponse(
        account=AccountResponse(
            email=email,
            external_id=external_id,
            entitlements=create_entitlement_responses(*products),
        )
    )


def create_confirmation_response(
    status: str = "Auto-Renewable",
    email: str | None = "user@example.com",
    products: tuple[str, ...] = ("Network Protection",),
) -> ConfirmationResponse:
    return ConfirmationResponse(
        email=email,
        entitlements=create_entitlement_responses(*products),
        subscription=create_subscription_response(status=status),
    )


def create_store_login_response(
    external_id: str = "ext-1", auth_token: str = "auth-store"
) -> StoreLoginResponse:
    return StoreLoginResponse(auth_token=auth_token, external_id=external_id)


def create_account_creation_response(
    external_id: str = "ext-new", auth_token: str = "auth-new"
) -> CreateAccountResponse:
    return CreateAccountResponse(auth_token=auth_token, external_id=external_id)


def create_login(
    domain: str | None = "example.com",
    username: str | None = "username",
    password: str | None = "password",
    notes: str | None = "notes",
    domain_title: str | None = "example title",
    id: int | None = None,
) -> LoginCredentials:
    return LoginCredentials(
        domain=domain,
        username=username,
        password=password,
        notes=notes,
        domain_title=domain_title,
        id=id,
    )


# ============================================================================
# Stream Helpers
# ============================================================================


async def take_items(stream: AsyncIterator[T], count: int, timeout: float = 1.0) -> list[T]:
    """Read exactly count items from a stream, failing if they don't arrive in time."""
    items: list[T] = []

    async def _take() -> None:
        async for item in stream:
            items.append(item)
            if len(items) == count:
                return

    await asyncio.wait_for(_take(), timeout)
    return items


async def drain_subscription(subscription: ChannelSubscription[T]) -> list[T]:
    """Close a subscription and return everything it had queued."""
    subscription.close()
    return [item async for item in subscription]


async def wait_for_finished(
    importer: CredentialImporter, job_id: str, timeout: float = 1.0
) -> ImportFinished:
    """Wait for a job's ImportFinished."""
    results: list[ImportResult] = []

    async def _collect() -> None:
        async for result in importer.get_import_status(job_id):
            results.append(result)

    await asyncio.wait_for(_collect(), timeout)
    assert isinstance(results[-1], ImportFinished)
    return results[-1]


# ============================================================================
# Billing Fake
# ============================================================================


class FakeBillingClient:
    """Store billing fake; tests push purchase events with emit()."""

    def __init__(self) -> None:
        self.products: list = []
        self.purchase_history: list[PurchaseRecord] = []
        self.launch_billing_flow = AsyncMock()
        self._states: EventChannel[PurchaseState] = EventChannel("purchase_state", replay=False)

    def purchase_state_updates(self) -> AsyncIterator[PurchaseState]:
        return self._states.subscribe()

    def emit(self, state: PurchaseState) -> None:
        self._states.publish(state)


class FakeEmailManager:
    def __init__(self, token: str | None = "email-token") -> None:
        self.token = token

    async def get_token(self) -> str | None:
        return self.token


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest.fixture
def subscription_response():
    """Factory for subscription payloads."""
    return create_subscription_response


@pytest.fixture
def entitlement_responses():
    return create_entitlement_responses


@pytest.fixture
def validate_token_response():
    return create_validate_token_response


@pytest.fixture
def confirmation_response():
    return create_confirmation_response


@pytest.fixture
def store_login_response():
    return create_store_login_response


@pytest.fixture
def creds():
    """Factory for logins; defaults describe one complete example.com login."""
    return create_login


@pytest.fixture
def take():
    """Read a fixed number of items from a stream with a timeout."""
    return take_items


@pytest.fixture
def drain():
    """Close a subscription and collect what it had queued."""
    return drain_subscription


@pytest.fixture
def finished_result():
    """Wait for an import job's ImportFinished."""
    return wait_for_finished


# ============================================================================
# Coordinator Fixtures
# ============================================================================


@pytest.fixture
def auth_repository() -> InMemoryAuthRepository:
    """Empty local store (signed out)."""
    return InMemoryAuthRepository()


@pytest_asyncio.fixture
async def signed_in_repository(auth_repository: InMemoryAuthRepository) -> InMemoryAuthRepository:
    """Local store holding tokens and an account."""
    await auth_repository.set_auth_token("auth-1")
    await auth_repository.set_access_token("access-1")
    await auth_repository.set_account(Account(external_id="ext-1"))
    return auth_repository


@pytest.fixture
def auth_service() -> AsyncMock:
    """Auth service mock with happy-path defaults."""
    service = AsyncMock()
    service.access_token = AsyncMock(return_value=AccessTokenResponse(access_token="access-new"))
    service.create_account = AsyncMock(return_value=create_account_creation_response())
    service.store_login = AsyncMock(return_value=create_store_login_response())
    service.validate_token = AsyncMock(return_value=create_validate_token_response())
    return service


@pytest.fixture
def subscriptions_service() -> AsyncMock:
    """Subscriptions service mock with happy-path defaults."""
    service = AsyncMock()
    service.subscription = AsyncMock(return_value=create_subscription_response())
    service.confirm = AsyncMock(return_value=create_confirmation_response())
    return service


@pytest.fixture
def billing_client() -> FakeBillingClient:
    return FakeBillingClient()


@pytest.fixture
def purchase_record() -> PurchaseRecord:
    return PurchaseRecord(signature="sig", original_json='{"orderId": "GPA.1"}')


@pytest_asyncio.fixture
async def manager(
    auth_service: AsyncMock,
    subscriptions_service: AsyncMock,
    auth_repository: InMemoryAuthRepository,
    billing_client: FakeBillingClient,
) -> AsyncIterator[SubscriptionsManager]:
    """Subscriptions manager with a zero-delay confirmation policy."""
    subscriptions_manager = SubscriptionsManager(
        auth_service=auth_service,
        subscriptions_service=subscriptions_service,
        auth_repository=auth_repository,
        billing_client=billing_client,
        email_manager=FakeEmailManager(),
        confirm_retry_policy=NO_DELAY_POLICY,
    )
    yield subscriptions_manager
    await subscriptions_manager.close()


# ============================================================================
# Import Fixtures
# ============================================================================


@pytest.fixture
def match_detector() -> AsyncMock:
    """Duplicate detector that reports nothing as a duplicate."""
    detector = AsyncMock()
    detector.already_exists = AsyncMock(return_value=False)
    return detector


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest_asyncio.fixture
async def importer(
    match_detector: AsyncMock, credential_store: InMemoryCredentialStore
) -> AsyncIterator[CredentialImporter]:
    credential_importer = CredentialImporter(match_detector, credential_store)
    yield credential_importer
    await credential_importer.close()
