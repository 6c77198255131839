"""
Subscriptions Manager - single source of truth for sign-in, subscription and entitlements.

Reconciles the local store with the account/subscription service and drives
the purchase lifecycle. Results of purchase flows are broadcast on the
current-purchase channel; no exception escapes an operation.

Channels:
- signed-in, subscription status, entitlements: replay the latest value
- current purchase: transient, no replay
"""

import asyncio
from typing import Any, Protocol, TypeVar

from structlog import get_logger

from reconciler.config import Settings, get_settings
from reconciler.events import ChannelSubscription, EventBus, EventChannel
from reconciler.exceptions import AccountCreationError, MissingAccountError, ServiceHTTPError
from reconciler.models.api import ConfirmationBody, StoreLoginBody, to_entitlements
from reconciler.models.domain import (
    Account,
    Product,
    Subscription,
    SubscriptionOffer,
    SubscriptionStatus,
    to_product_list,
)
from reconciler.models.results import (
    AccessTokenFailure,
    AccessTokenResult,
    AccessTokenSuccess,
    AuthTokenResult,
    AuthTokenSuccess,
    Canceled,
    CurrentPurchase,
    Failure,
    InProgress,
    PreFlowFinished,
    PreFlowInProgress,
    RecoverFailure,
    RecoverSubscriptionResult,
    RecoverSuccess,
    Recovered,
    Success,
    TokenExpired,
    UnknownError,
    Waiting,
)
from reconciler.observability.metrics import PurchaseFailureReason, metrics
from reconciler.services import billing
from reconciler.services.auth_repository import AuthRepository
from reconciler.services.billing import BillingClient, PurchaseState
from reconciler.services.retry import RetryPolicy, retry
from reconciler.services.subscriptions_client import AuthService, SubscriptionsService

logger = get_logger(__name__)

T = TypeVar("T")

SUBSCRIPTION_NOT_FOUND_ERROR = "SubscriptionNotFound"
ACCOUNT_MISMATCH_ERROR = "AccountMismatch"
EXPIRED_TOKEN_ERROR = "expired_token"
DEFAULT_ERROR_MESSAGE = "An error happened"


class EmailManager(Protocol):
    """Source of the email-protection token used to create an account."""

    async def get_token(self) -> str | None: ...


def extract_error(exc: Exception) -> str:
    """Best-effort, user-presentable message for an exception."""
    if isinstance(exc, ServiceHTTPError):
        return exc.error or DEFAULT_ERROR_MESSAGE
    return str(exc) or DEFAULT_ERROR_MESSAGE


class SubscriptionsManager:
    """
    Purchase reconciliation coordinator.

    Usage:
        manager = SubscriptionsManager(api, api, repository, billing_client, email_manager)
        await manager.start()
        updates = manager.current_purchase_updates()
        await manager.purchase("monthly-plan", activity)
        async for state in updates:
            ...
        await manager.close()
    """

    def __init__(
        self,
        auth_service: AuthService,
        subscriptions_service: SubscriptionsService,
        auth_repository: AuthRepository,
        billing_client: BillingClient,
        email_manager: EmailManager,
        settings: Settings | None = None,
        confirm_retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.auth_service = auth_service
        self.subscriptions_service = subscriptions_service
        self.auth_repository = auth_repository
        self.billing = billing_client
        self.email_manager = email_manager
        self.confirm_retry_policy = (
            confirm_retry_policy or RetryPolicy.for_purchase_confirmation(self.settings)
        )

        self._bus = EventBus()
        self._is_signed_in: EventChannel[bool] = self._bus.channel("is_signed_in", replay=True)
        self._subscription_status: EventChannel[SubscriptionStatus] = self._bus.channel(
            "subscription_status", replay=True
        )
        self._entitlements: EventChannel[list[Product]] = self._bus.channel(
            "entitlements", replay=True
        )
        self._current_purchase: EventChannel[CurrentPurchase] = self._bus.channel(
            "current_purchase", replay=False
        )

        self._purchase_state_task: asyncio.Task[None] | None = None
        self._remove_expired_subscription_on_canceled_purchase = False

    # ========================================================================
    # Lifecycle & streams
    # ========================================================================

    async def start(self) -> None:
        """Publish the stored state and start listening for store purchase events."""
        await self._publish_account_state()
        if self._purchase_state_task is None:
            self._purchase_state_task = asyncio.create_task(self._listen_purchase_state())

    async def close(self) -> None:
        """Stop the purchase listener and end every subscription."""
        if self._purchase_state_task is not None:
            self._purchase_state_task.cancel()
            try:
                await self._purchase_state_task
            except asyncio.CancelledError:
                pass
            self._purchase_state_task = None
        self._bus.close()

    def signed_in_updates(self) -> ChannelSubscription[bool]:
        return self._is_signed_in.subscribe()

    def subscription_status_updates(self) -> ChannelSubscription[SubscriptionStatus]:
        return self._subscription_status.subscribe()

    def entitlements_updates(self) -> ChannelSubscription[list[Product]]:
        return self._entitlements.subscribe()

    def current_purchase_updates(self) -> ChannelSubscription[CurrentPurchase]:
        return self._current_purchase.subscribe()

    async def _listen_purchase_state(self) -> None:
        async for state in self.billing.purchase_state_updates():
            try:
                await self.handle_purchase_state(state)
            except Exception:
                logger.exception("purchase_state_handling_failed", state=type(state).__name__)

    async def handle_purchase_state(self, state: PurchaseState) -> None:
        """React to a purchase event detected by the store."""
        if isinstance(state, billing.Purchased):
            await self.check_purchase(state.package_name, state.purchase_token)
        elif isinstance(state, billing.Canceled):
            await self._on_purchase_canceled()

    def _publish(self, channel: EventChannel[T], value: T) -> None:
        if channel.closed:
            logger.debug("publish_after_close_dropped", channel=channel.name)
            return
        channel.publish(value)

    async def _current_entitlements(self) -> list[Product]:
        subscription = await self.auth_repository.get_subscription()
        if subscription is None or not subscription.status.is_active_or_waiting():
            return []
        return to_product_list(await self.auth_repository.get_entitlements())

    async def _publish_account_state(self) -> None:
        # Read everything first; the publishes below run without suspending.
        entitlements = await self._current_entitlements()
        status = await self.subscription_status()
        signed_in = await self.is_signed_in()

        self._publish(self._entitlements, entitlements)
        self._publish(self._subscription_status, status)
        self._publish(self._is_signed_in, signed_in)

    # ========================================================================
    # Queries
    # ========================================================================

    async def is_signed_in(self) -> bool:
        auth_token = await self.auth_repository.get_auth_token()
        access_token = await self.auth_repository.get_access_token()
        return bool(auth_token and auth_token.strip()) and bool(
            access_token and access_token.strip()
        )

    async def subscription_status(self) -> SubscriptionStatus:
        """Status of the stored subscription, UNKNOWN when signed out."""
        if await self.is_signed_in():
            return await self.auth_repository.get_status()
        return SubscriptionStatus.UNKNOWN

    async def get_subscription(self) -> Subscription | None:
        return await self.auth_repository.get_subscription()

    async def get_account(self) -> Account | None:
        return await self.auth_repository.get_account()

    async def can_support_encryption(self) -> bool:
        return await self.auth_repository.can_support_encryption()

    async def get_access_token(self) -> AccessTokenResult:
        access_token = await self.auth_repository.get_access_token()
        if await self.is_signed_in() and access_token:
            return AccessTokenSuccess(access_token)
        return AccessTokenFailure("Token not found")

    async def get_portal_url(self) -> str | None:
        """Customer portal URL, or None if the service can't provide one."""
        try:
            return (await self.subscriptions_service.portal()).customer_portal_url
        except Exception as exc:
            logger.warning("portal_url_unavailable", error=extract_error(exc))
            return None

    async def get_subscription_offer(self) -> SubscriptionOffer | None:
        """Monthly and yearly prices of the subscription product, if the store lists both."""
        product = next(
            (p for p in self.billing.products if p.product_id == self.settings.basic_subscription_id),
            None,
        )
        if product is None:
            return None

        monthly = product.offer_for(self.settings.monthly_plan_id)
        yearly = product.offer_for(self.settings.yearly_plan_id)
        if monthly is None or yearly is None:
            return None

        return SubscriptionOffer(
            monthly_plan_id=monthly.base_plan_id,
            monthly_formatted_price=monthly.formatted_price,
            yearly_plan_id=yearly.base_plan_id,
            yearly_formatted_price=yearly.formatted_price,
        )

    # ========================================================================
    # Reconciliation
    # ========================================================================

    async def exchange_auth_token(self, auth_token: str) -> str:
        """
        Exchange the auth token for an access token and store both.

        Raises:
            ServiceHTTPError: If the service rejects the auth token
        """
        access_token = (await self.auth_service.access_token(auth_token)).access_token
        await self.auth_repository.set_access_token(access_token)
        await self.auth_repository.set_auth_token(auth_token)
        return access_token

    async def fetch_and_store_all_data(self) -> bool:
        """
        Refresh account, subscription and entitlements from the service.

        A 401 from the subscription endpoint signs the user out.

        Returns:
            True if the local store was refreshed
        """
        try:
            if not await self.is_signed_in():
                return False

            try:
                subscription = await self.subscriptions_service.subscription()
            except ServiceHTTPError as exc:
                if exc.status_code == 401:
                    logger.info("subscription_token_invalid_signing_out")
                    await self.sign_out()
                    return False
                raise

            access_token = await self.auth_repository.get_access_token()
            account_data = (await self.auth_service.validate_token(access_token or "")).account

            await self.auth_repository.set_account(
                Account(external_id=account_data.external_id, email=account_data.email)
            )
            await self.auth_repository.set_subscription(subscription.to_domain())
            await self.auth_repository.set_entitlements(to_entitlements(account_data.entitlements))
            await self._publish_account_state()

            logger.info(
                "subscription_data_refreshed",
                status=subscription.status,
                platform=subscription.platform,
            )
            return True
        except Exception:
            logger.exception("subscription_data_fetch_failed")
            return False

    async def recover_subscription_from_store(
        self, external_id: str | None = None
    ) -> RecoverSubscriptionResult:
        """
        Sign in with the most recent store purchase and restore its subscription.

        Args:
            external_id: When given, the store account must resolve to this id;
                a different account fails without touching local state

        Returns:
            RecoverSuccess with the active subscription, RecoverFailure otherwise
        """
        try:
            history = self.billing.purchase_history
            if not history:
                return RecoverFailure(SUBSCRIPTION_NOT_FOUND_ERROR)

            purchase = history[-1]
            response = await self.auth_service.store_login(
                StoreLoginBody(
                    signature=purchase.signature,
                    signed_data=purchase.original_json,
                    package_name=self.settings.package_name,
                )
            )
            if external_id is not None and external_id != response.external_id:
                logger.warning("store_login_account_mismatch")
                return RecoverFailure(ACCOUNT_MISMATCH_ERROR)

            await self.auth_repository.set_account(Account(external_id=response.external_id))
            await self.auth_repository.set_auth_token(response.auth_token)
            await self.exchange_auth_token(response.auth_token)

            if await self.fetch_and_store_all_data():
                subscription = await self.auth_repository.get_subscription()
                if subscription is not None and subscription.is_active():
                    logger.info("store_login_succeeded", status=subscription.status)
                    return RecoverSuccess(subscription)

            return RecoverFailure(SUBSCRIPTION_NOT_FOUND_ERROR)
        except Exception as exc:
            logger.warning("store_recovery_failed", error=extract_error(exc))
            return RecoverFailure(extract_error(exc))

    async def get_auth_token(self) -> AuthTokenResult:
        """
        Validate the stored auth token, re-authenticating via the store if it expired.

        Returns:
            AuthTokenSuccess, TokenExpired with the stale token, or UnknownError
        """
        auth_token = await self.auth_repository.get_auth_token()
        try:
            if not await self.is_signed_in():
                return UnknownError()
            await self.auth_service.validate_token(auth_token or "")
            return AuthTokenSuccess(auth_token or "")
        except Exception as exc:
            if extract_error(exc) != EXPIRED_TOKEN_ERROR:
                logger.warning("auth_token_validation_failed", error=extract_error(exc))
                return UnknownError()

            logger.info("auth_token_expired")
            account = await self.auth_repository.get_account()
            result = await self.recover_subscription_from_store(
                account.external_id if account is not None else None
            )
            if isinstance(result, RecoverSuccess):
                return AuthTokenSuccess(await self.auth_repository.get_auth_token() or "")
            return TokenExpired(auth_token or "")

    async def sign_out(self) -> None:
        """Delete every account artifact from the device and publish the signed-out state."""
        await self.auth_repository.set_auth_token(None)
        await self.auth_repository.set_access_token(None)
        await self.auth_repository.set_account(None)
        await self.auth_repository.set_subscription(None)
        await self.auth_repository.set_entitlements([])

        self._publish(self._is_signed_in, False)
        self._publish(self._subscription_status, SubscriptionStatus.UNKNOWN)
        self._publish(self._entitlements, [])
        logger.info("signed_out")

    # ========================================================================
    # Purchase flow
    # ========================================================================

    async def purchase(self, plan_id: str, activity: Any = None) -> None:
        """
        Run the pre-purchase checks and launch the store purchase UI.

        Progress and outcome are published on the current-purchase channel.
        An already active subscription ends the flow with Recovered.
        """
        if self._current_purchase.closed:
            logger.warning("purchase_after_close_ignored", plan_id=plan_id)
            return

        try:
            self._publish(self._current_purchase, PreFlowInProgress())

            # Result ignored; a signed-out device goes through store recovery below.
            await self.fetch_and_store_all_data()

            if not await self.is_signed_in():
                await self.recover_subscription_from_store()
            else:
                await self._reauthenticate_expired_store_subscription()

            subscription = await self.auth_repository.get_subscription()
            if subscription is not None and subscription.is_active():
                metrics.record_restore_after_purchase_attempt()
                self._publish(self._current_purchase, Recovered())
                return

            if subscription is None and not await self.is_signed_in():
                await self._create_account()
                auth_token = await self.auth_repository.get_auth_token()
                if not auth_token:
                    raise AccountCreationError("no auth token stored")
                await self.exchange_auth_token(auth_token)

            account = await self.auth_repository.get_account()
            if account is None:
                raise MissingAccountError("purchase")

            logger.info("launching_billing_flow", plan_id=plan_id)
            self._publish(self._current_purchase, PreFlowFinished())
            await self.billing.launch_billing_flow(activity, plan_id, account.external_id)
        except Exception as exc:
            error = extract_error(exc)
            logger.error("purchase_failed", plan_id=plan_id, error=error)
            metrics.record_purchase_failure(PurchaseFailureReason.OTHER)
            self._publish(self._current_purchase, Failure(error))

    async def _reauthenticate_expired_store_subscription(self) -> None:
        # The expired subscription may belong to a different store account
        # than the one on the device now.
        subscription = await self.auth_repository.get_subscription()
        if subscription is None:
            return
        if not subscription.status.is_expired() or subscription.platform != self.settings.store_platform:
            return

        account = await self.auth_repository.get_account()
        account_id = account.external_id if account is not None else None
        await self.recover_subscription_from_store()
        recovered = await self.auth_repository.get_account()
        recovered_id = recovered.external_id if recovered is not None else None
        self._remove_expired_subscription_on_canceled_purchase = (
            account_id is not None and account_id != recovered_id
        )

    async def _create_account(self) -> None:
        try:
            response = await self.auth_service.create_account(await self.email_manager.get_token())
        except (ServiceHTTPError, ValueError):
            metrics.record_purchase_failure(PurchaseFailureReason.ACCOUNT_CREATION)
            raise

        if not response.auth_token:
            metrics.record_purchase_failure(PurchaseFailureReason.ACCOUNT_CREATION)
            raise AccountCreationError("empty auth token")

        await self.auth_repository.set_account(Account(external_id=response.external_id))
        await self.auth_repository.set_auth_token(response.auth_token)
        logger.info("account_created")

    async def check_purchase(self, package_name: str, purchase_token: str) -> None:
        """
        Confirm a store purchase with the service under the confirmation retry policy.

        A confirmation whose resulting status is not active counts as a failed
        attempt. Exhausting the policy moves the local subscription to Waiting
        instead of failing hard.
        """
        if self._current_purchase.closed:
            logger.warning("purchase_confirmation_after_close_ignored")
            return

        self._publish(self._current_purchase, InProgress())

        async def attempt() -> bool:
            try:
                confirmed = await self._attempt_confirm_purchase(package_name, purchase_token)
            except Exception as exc:
                logger.warning("purchase_confirmation_attempt_failed", error=extract_error(exc))
                return False
            logger.info("purchase_confirmation_attempt", confirmed=confirmed)
            return confirmed

        if not await retry(self.confirm_retry_policy, attempt):
            await self._handle_purchase_failed()

    async def _attempt_confirm_purchase(self, package_name: str, purchase_token: str) -> bool:
        response = await self.subscriptions_service.confirm(
            ConfirmationBody(package_name=package_name, purchase_token=purchase_token)
        )

        account = await self.auth_repository.get_account()
        if account is not None:
            await self.auth_repository.set_account(
                Account(external_id=account.external_id, email=response.email)
            )

        subscription = response.subscription.to_domain()
        await self.auth_repository.set_subscription(subscription)
        await self.auth_repository.set_entitlements(to_entitlements(response.entitlements))
        await self._publish_account_state()

        if not subscription.is_active():
            return False

        metrics.record_purchase_success()
        self._publish(self._current_purchase, Success())
        return True

    async def _handle_purchase_failed(self) -> None:
        await self.auth_repository.purchase_to_waiting_status()
        metrics.record_purchase_failure(PurchaseFailureReason.BACKEND)
        logger.warning("purchase_confirmation_exhausted")
        self._publish(self._current_purchase, Waiting())
        await self._publish_account_state()

    async def _on_purchase_canceled(self) -> None:
        self._publish(self._current_purchase, Canceled())
        if self._remove_expired_subscription_on_canceled_purchase:
            if (await self.subscription_status()).is_expired():
                await self.sign_out()
            self._remove_expired_subscription_on_canceled_purchase = False
