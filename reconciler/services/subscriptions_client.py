"""
Account / Subscription service client.

Thin httpx adapter over the JSON contract. Every non-2xx response becomes a
ServiceHTTPError carrying the server's error code when it sent one.
"""

from typing import Any, Protocol, TypeVar

import httpx
from pydantic import BaseModel, ValidationError
from structlog import get_logger

from reconciler.config import Settings, get_settings
from reconciler.exceptions import ServiceHTTPError
from reconciler.models.api import (
    AccessTokenResponse,
    ConfirmationBody,
    ConfirmationResponse,
    CreateAccountResponse,
    PortalResponse,
    ResponseError,
    StoreLoginBody,
    StoreLoginResponse,
    SubscriptionResponse,
    ValidateTokenResponse,
)
from reconciler.observability.metrics import track_service_request
from reconciler.services.auth_repository import AuthRepository

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class AuthService(Protocol):
    """Auth endpoints of the remote service."""

    async def access_token(self, auth_token: str) -> AccessTokenResponse: ...

    async def create_account(self, email_token: str | None) -> CreateAccountResponse: ...

    async def store_login(self, body: StoreLoginBody) -> StoreLoginResponse: ...

    async def validate_token(self, token: str) -> ValidateTokenResponse: ...


class SubscriptionsService(Protocol):
    """Subscription endpoints of the remote service; authenticated with the access token."""

    async def subscription(self) -> SubscriptionResponse: ...

    async def confirm(self, body: ConfirmationBody) -> ConfirmationResponse: ...

    async def portal(self) -> PortalResponse: ...


def bearer(token: str | None) -> dict[str, str]:
    """Authorization header for a token."""
    return {"Authorization": f"Bearer {token or ''}"}


def parse_error(response: httpx.Response) -> str | None:
    """Extract the error code from an error body, None if there is none."""
    try:
        return ResponseError.model_validate(response.json()).error
    except (ValueError, ValidationError):
        return None


class SubscriptionsApiClient:
    """
    httpx implementation of AuthService and SubscriptionsService.

    Usage:
        client = SubscriptionsApiClient(auth_repository)
        subscription = await client.subscription()
        await client.aclose()
    """

    def __init__(
        self,
        auth_repository: AuthRepository,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._auth_repository = auth_repository
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.settings.http_timeout_seconds)
        return self._http_client

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._http_client is not None:
            await self._http_client.aclose()

    async def _request(
        self,
        method: str,
        base_url: str,
        endpoint: str,
        model: type[ModelT],
        headers: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> ModelT:
        url = f"{base_url.rstrip('/')}/{endpoint}"
        with track_service_request(endpoint, method) as tracker:
            response = await self.http_client.request(method, url, headers=headers, json=json)
            tracker.set_status_code(response.status_code)

        if not response.is_success:
            error = parse_error(response)
            logger.warning(
                "service_request_failed",
                endpoint=endpoint,
                status=response.status_code,
                error=error,
            )
            raise ServiceHTTPError(response.status_code, error)

        return model.model_validate(response.json())

    async def _access_headers(self) -> dict[str, str]:
        return bearer(await self._auth_repository.get_access_token())

    # ========================================================================
    # AuthService
    # ========================================================================

    async def access_token(self, auth_token: str) -> AccessTokenResponse:
        return await self._request(
            "GET",
            self.settings.auth_base_url,
            "access-token",
            AccessTokenResponse,
            headers=bearer(auth_token),
        )

    async def create_account(self, email_token: str | None) -> CreateAccountResponse:
        return await self._request(
            "POST",
            self.settings.auth_base_url,
            "account/create",
            CreateAccountResponse,
            headers=bearer(email_token),
        )

    async def store_login(self, body: StoreLoginBody) -> StoreLoginResponse:
        return await self._request(
            "POST",
            self.settings.auth_base_url,
            "store-login",
            StoreLoginResponse,
            json=body.model_dump(by_alias=True),
        )

    async def validate_token(self, token: str) -> ValidateTokenResponse:
        return await self._request(
            "GET",
            self.settings.auth_base_url,
            "validate-token",
            ValidateTokenResponse,
            headers=bearer(token),
        )

    # ========================================================================
    # SubscriptionsService
    # ========================================================================

    async def subscription(self) -> SubscriptionResponse:
        return await self._request(
            "GET",
            self.settings.subscriptions_base_url,
            "subscription",
            SubscriptionResponse,
            headers=await self._access_headers(),
        )

    async def confirm(self, body: ConfirmationBody) -> ConfirmationResponse:
        return await self._request(
            "POST",
            self.settings.subscriptions_base_url,
            "purchase/confirm/google",
            ConfirmationResponse,
            headers=await self._access_headers(),
            json=body.model_dump(by_alias=True),
        )

    async def portal(self) -> PortalResponse:
        return await self._request(
            "GET",
            self.settings.subscriptions_base_url,
            "checkout/portal",
            PortalResponse,
            headers=await self._access_headers(),
        )
