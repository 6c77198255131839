"""
API Models - Pydantic models for the account/subscription service payloads.

NO DICTIONARIES - All data structures are strongly typed.
"""

from pydantic import BaseModel, ConfigDict, Field

from reconciler.models.domain import Entitlement, Subscription, SubscriptionStatus


class ServiceModel(BaseModel):
    """Base for service payloads: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ============================================================================
# Auth service
# ============================================================================


class AccessTokenResponse(ServiceModel):
    """GET access-token response."""

    access_token: str = Field(..., alias="accessToken")


class CreateAccountResponse(ServiceModel):
    """POST account/create response."""

    auth_token: str = Field(..., alias="authToken")
    external_id: str = Field(..., alias="externalID")
    status: str | None = None


class StoreLoginBody(ServiceModel):
    """POST store-login request body."""

    signature: str
    signed_data: str = Field(..., alias="signedData")
    package_name: str = Field(..., alias="packageName")
    store: str = "google_play_store"


class StoreLoginResponse(ServiceModel):
    """POST store-login response."""

    auth_token: str = Field(..., alias="authToken")
    external_id: str = Field(..., alias="externalID")
    email: str | None = None
    status: str | None = None


class EntitlementResponse(ServiceModel):
    """Entitlement as returned by the service."""

    id: int | None = None
    name: str
    product: str

    def to_domain(self) -> Entitlement:
        return Entitlement(name=self.name, product=self.product)


class AccountResponse(ServiceModel):
    """Account details embedded in a token validation response."""

    email: str | None = None
    external_id: str = Field(..., alias="externalID")
    entitlements: list[EntitlementResponse] = Field(default_factory=list)


class ValidateTokenResponse(ServiceModel):
    """GET validate-token response."""

    account: AccountResponse


def to_entitlements(entitlements: list[EntitlementResponse]) -> list[Entitlement]:
    """Convert service entitlements into domain entitlements."""
    return [entitlement.to_domain() for entitlement in entitlements]


# ============================================================================
# Subscriptions service
# ============================================================================


class SubscriptionResponse(ServiceModel):
    """GET subscription response."""

    product_id: str = Field(..., alias="productId")
    started_at: int = Field(..., alias="startedAt")
    expires_or_renews_at: int = Field(..., alias="expiresOrRenewsAt")
    platform: str
    status: str

    def to_domain(self) -> Subscription:
        return Subscription(
            product_id=self.product_id,
            started_at=self.started_at,
            expires_or_renews_at=self.expires_or_renews_at,
            status=SubscriptionStatus.from_api(self.status),
            platform=self.platform,
        )


class ConfirmationBody(ServiceModel):
    """POST purchase confirmation request body."""

    package_name: str = Field(..., alias="packageName")
    purchase_token: str = Field(..., alias="purchaseToken")


class ConfirmationResponse(ServiceModel):
    """POST purchase confirmation response."""

    email: str | None = None
    entitlements: list[EntitlementResponse] = Field(default_factory=list)
    subscription: SubscriptionResponse


class PortalResponse(ServiceModel):
    """GET checkout portal response."""

    customer_portal_url: str = Field(..., alias="customerPortalUrl")


class ResponseError(ServiceModel):
    """Error body returned alongside non-2xx responses."""

    error: str
