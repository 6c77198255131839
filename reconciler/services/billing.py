"""
Store Billing Protocol - Provider-agnostic view of the platform billing client.

NO DICTIONARIES - All data uses strongly typed models.
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeAlias


@dataclass(frozen=True)
class PlanOffer:
    """One base plan of a store product with its first pricing phase."""

    base_plan_id: str
    formatted_price: str


@dataclass(frozen=True)
class ProductDetails:
    """Store catalog entry."""

    product_id: str
    offers: list[PlanOffer] = field(default_factory=list)

    def offer_for(self, base_plan_id: str) -> PlanOffer | None:
        """Find the offer for a base plan."""
        return next((o for o in self.offers if o.base_plan_id == base_plan_id), None)


@dataclass(frozen=True)
class PurchaseRecord:
    """Signed purchase record kept by the store."""

    signature: str
    original_json: str


@dataclass(frozen=True)
class Purchased:
    package_name: str
    purchase_token: str


@dataclass(frozen=True)
class Canceled:
    pass


@dataclass(frozen=True)
class PurchaseInProgress:
    pass


@dataclass(frozen=True)
class Idle:
    pass


PurchaseState: TypeAlias = Purchased | Canceled | PurchaseInProgress | Idle


class BillingClient(Protocol):
    """
    Platform billing client.

    Implementations wrap the store SDK; the coordinator only needs the
    catalog, the purchase history and a stream of purchase events.
    """

    @property
    def products(self) -> list[ProductDetails]:
        """Store catalog."""
        ...

    @property
    def purchase_history(self) -> list[PurchaseRecord]:
        """Purchase records, most recent last."""
        ...

    def purchase_state_updates(self) -> AsyncIterator[PurchaseState]:
        """Purchase events detected by the store."""
        ...

    async def launch_billing_flow(self, activity: Any, plan_id: str, external_id: str) -> None:
        """
        Show the store purchase UI.

        Args:
            activity: Opaque UI handle passed through to the SDK
            plan_id: Base plan to purchase
            external_id: Account the purchase is bound to
        """
        ...
