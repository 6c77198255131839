"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum


class SubscriptionStatus(str, Enum):
    """Subscription status as reported by the subscription service."""

    AUTO_RENEWABLE = "Auto-Renewable"
    NOT_AUTO_RENEWABLE = "Not Auto-Renewable"
    GRACE_PERIOD = "Grace Period"
    INACTIVE = "Inactive"
    EXPIRED = "Expired"
    WAITING = "Waiting"
    UNKNOWN = "Unknown"

    @classmethod
    def from_api(cls, value: str | None) -> "SubscriptionStatus":
        """Map a wire status string, falling back to UNKNOWN."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    def is_active(self) -> bool:
        return self in _ACTIVE_STATUSES

    def is_active_or_waiting(self) -> bool:
        return self.is_active() or self is SubscriptionStatus.WAITING

    def is_expired(self) -> bool:
        return self in (SubscriptionStatus.EXPIRED, SubscriptionStatus.INACTIVE)


_ACTIVE_STATUSES = frozenset(
    {
        SubscriptionStatus.AUTO_RENEWABLE,
        SubscriptionStatus.NOT_AUTO_RENEWABLE,
        SubscriptionStatus.GRACE_PERIOD,
    }
)


class Product(str, Enum):
    """Features unlocked by an active subscription."""

    NETP = "Network Protection"
    ITR = "Identity Theft Restoration"
    ROW_ITR = "Global Identity Theft Restoration"
    PIR = "Data Broker Protection"


@dataclass(frozen=True)
class Account:
    """Account bound to the device after account creation or store login."""

    external_id: str
    email: str | None = None

    def __post_init__(self) -> None:
        """Validate account fields."""
        if not self.external_id:
            raise ValueError("external_id cannot be empty")


@dataclass(frozen=True)
class Subscription:
    """Immutable subscription snapshot; timestamps are epoch milliseconds."""

    product_id: str
    started_at: int
    expires_or_renews_at: int
    status: SubscriptionStatus
    platform: str

    def is_active(self) -> bool:
        """Check if the subscription currently grants entitlements."""
        return self.status.is_active()


@dataclass(frozen=True)
class Entitlement:
    """Entitlement granted by the subscription service."""

    name: str
    product: str


def to_product_list(entitlements: Iterable[Entitlement]) -> list[Product]:
    """
    Convert entitlements into an ordered list of known products.

    Unknown products are dropped and each product appears once, in the
    order it was first granted.
    """
    products: list[Product] = []
    for entitlement in entitlements:
        try:
            product = Product(entitlement.product)
        except ValueError:
            continue
        if product not in products:
            products.append(product)
    return products


@dataclass(frozen=True)
class SubscriptionOffer:
    """Monthly and yearly plan prices offered by the store."""

    monthly_plan_id: str
    monthly_formatted_price: str
    yearly_plan_id: str
    yearly_formatted_price: str


@dataclass(frozen=True)
class LoginCredentials:
    """A saved (or about to be saved) login."""

    domain: str | None = None
    username: str | None = None
    password: str | None = None
    notes: str | None = None
    domain_title: str | None = None
    id: int | None = None
