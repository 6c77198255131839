"""
Tests for the httpx service client, using httpx.MockTransport.
"""

import json

import httpx
import pytest
import pytest_asyncio

from reconciler.config import Settings
from reconciler.exceptions import ServiceHTTPError
from reconciler.models.api import ConfirmationBody, StoreLoginBody
from reconciler.models.domain import SubscriptionStatus
from reconciler.services.auth_repository import InMemoryAuthRepository
from reconciler.services.subscriptions_client import SubscriptionsApiClient, bearer, parse_error

AUTH_URL = "https://service.example.com/api/auth"
SUBSCRIPTIONS_URL = "https://service.example.com/api/subscriptions"

SUBSCRIPTION_JSON = {
    "productId": "monthly-plan",
    "startedAt": 1700000000000,
    "expiresOrRenewsAt": 1702592000000,
    "platform": "google",
    "status": "Auto-Renewable",
}


class Recorder:
    """MockTransport handler that records requests and returns canned responses."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: dict[tuple[str, str], httpx.Response] = {}

    def respond(self, method: str, path: str, status_code: int = 200, body=None) -> None:
        self.responses[(method, path)] = httpx.Response(status_code, json=body)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"error": "not_found"})
        return response

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest_asyncio.fixture
async def client(recorder, auth_repository: InMemoryAuthRepository):
    """Client pointed at MockTransport with an access token in the store."""
    await auth_repository.set_access_token("access-1")
    api_client = SubscriptionsApiClient(
        auth_repository,
        settings=Settings(auth_base_url=AUTH_URL, subscriptions_base_url=SUBSCRIPTIONS_URL),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(recorder)),
    )
    yield api_client
    await api_client.aclose()


class TestAuthEndpoints:
    """Tests for the auth service endpoints."""

    @pytest.mark.asyncio
    async def test_access_token(self, client, recorder):
        """The auth token is sent as bearer and the access token parsed."""
        recorder.respond("GET", "/api/auth/access-token", body={"accessToken": "access-new"})

        response = await client.access_token("auth-1")

        assert response.access_token == "access-new"
        assert recorder.last.headers["Authorization"] == "Bearer auth-1"

    @pytest.mark.asyncio
    async def test_create_account_uses_email_token(self, client, recorder):
        recorder.respond(
            "POST",
            "/api/auth/account/create",
            body={"authToken": "auth-new", "externalID": "ext-new", "status": "created"},
        )

        response = await client.create_account("email-token")

        assert response.auth_token == "auth-new"
        assert response.external_id == "ext-new"
        assert recorder.last.headers["Authorization"] == "Bearer email-token"

    @pytest.mark.asyncio
    async def test_store_login_body_is_camel_case(self, client, recorder):
        """Request bodies are serialized with their wire aliases."""
        recorder.respond(
            "POST",
            "/api/auth/store-login",
            body={"authToken": "auth-store", "externalID": "ext-1", "email": None},
        )

        response = await client.store_login(
            StoreLoginBody(signature="sig", signed_data="{}", package_name="com.example.browser")
        )

        assert response.external_id == "ext-1"
        assert json.loads(recorder.last.content) == {
            "signature": "sig",
            "signedData": "{}",
            "packageName": "com.example.browser",
            "store": "google_play_store",
        }

    @pytest.mark.asyncio
    async def test_validate_token_parses_account(self, client, recorder):
        recorder.respond(
            "GET",
            "/api/auth/validate-token",
            body={
                "account": {
                    "email": "user@example.com",
                    "externalID": "ext-1",
                    "entitlements": [
                        {"id": 1, "name": "netp", "product": "Network Protection"},
                    ],
                }
            },
        )

        response = await client.validate_token("access-1")

        assert response.account.email == "user@example.com"
        assert response.account.entitlements[0].product == "Network Protection"


class TestSubscriptionEndpoints:
    """Tests for the subscription service endpoints."""

    @pytest.mark.asyncio
    async def test_subscription_uses_stored_access_token(self, client, recorder):
        recorder.respond("GET", "/api/subscriptions/subscription", body=SUBSCRIPTION_JSON)

        response = await client.subscription()

        assert recorder.last.headers["Authorization"] == "Bearer access-1"
        assert response.to_domain().status is SubscriptionStatus.AUTO_RENEWABLE

    @pytest.mark.asyncio
    async def test_unknown_status_maps_to_unknown(self, client, recorder):
        recorder.respond(
            "GET",
            "/api/subscriptions/subscription",
            body={**SUBSCRIPTION_JSON, "status": "Suspended"},
        )

        response = await client.subscription()

        assert response.to_domain().status is SubscriptionStatus.UNKNOWN

    @pytest.mark.asyncio
    async def test_confirm(self, client, recorder):
        recorder.respond(
            "POST",
            "/api/subscriptions/purchase/confirm/google",
            body={
                "email": "user@example.com",
                "entitlements": [],
                "subscription": SUBSCRIPTION_JSON,
            },
        )

        response = await client.confirm(
            ConfirmationBody(package_name="com.example.browser", purchase_token="token")
        )

        assert response.email == "user@example.com"
        assert json.loads(recorder.last.content) == {
            "packageName": "com.example.browser",
            "purchaseToken": "token",
        }

    @pytest.mark.asyncio
    async def test_portal(self, client, recorder):
        recorder.respond(
            "GET",
            "/api/subscriptions/checkout/portal",
            body={"customerPortalUrl": "https://portal.example.com"},
        )

        assert (await client.portal()).customer_portal_url == "https://portal.example.com"


class TestErrors:
    """Tests for non-2xx handling."""

    @pytest.mark.asyncio
    async def test_error_body_is_parsed(self, client, recorder):
        recorder.respond(
            "GET", "/api/auth/validate-token", status_code=400, body={"error": "expired_token"}
        )

        with pytest.raises(ServiceHTTPError) as exc_info:
            await client.validate_token("auth-1")

        assert exc_info.value.status_code == 400
        assert exc_info.value.error == "expired_token"

    @pytest.mark.asyncio
    async def test_unauthorized_without_body(self, client, recorder):
        recorder.respond("GET", "/api/subscriptions/subscription", status_code=401)

        with pytest.raises(ServiceHTTPError) as exc_info:
            await client.subscription()

        assert exc_info.value.status_code == 401
        assert exc_info.value.error is None


class TestHelpers:
    """Tests for header and error helpers."""

    def test_bearer(self):
        assert bearer("abc") == {"Authorization": "Bearer abc"}

    def test_bearer_missing_token(self):
        assert bearer(None) == {"Authorization": "Bearer "}

    def test_parse_error_non_json(self):
        assert parse_error(httpx.Response(500, text="<html>oops</html>")) is None

    def test_parse_error_unexpected_shape(self):
        assert parse_error(httpx.Response(500, json={"message": "oops"})) is None
