"""
Payment Service - premium purchase creation and direct upgrade confirmation.

The local transaction row is committed before the gateway is called, so every
outbound payment has an audit row even if the process dies mid-request.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studycards.config import Settings, settings as default_settings
from studycards.db.models import PaymentTransaction
from studycards.exceptions import (
    AlreadySubscribedError,
    GatewayConfigurationError,
    InvalidAmountError,
    InvalidTierError,
    PaymentGatewayError,
    PaymentNotConfirmedError,
    PendingPaymentExistsError,
    SubscriptionLapsedError,
    TransactionNotFoundError,
    UnsupportedCurrencyError,
    WriteVerificationError,
)
from studycards.models.api import PaymentStatus, UserTier
from studycards.models.domain import (
    PaymentIntent,
    PaymentSession,
    UpgradeConfirmation,
    UserIdentity,
)
from studycards.observability.metrics import metrics
from studycards.services.entitlements import EntitlementService
from studycards.services.payment_gateway import GatewayPaymentRequest, PaymentGateway
from studycards.services.transactions import (
    map_gateway_status,
    merge_gateway_data,
    store_gateway_data,
    transition_status,
)

logger = get_logger(__name__)

PURCHASABLE_TIERS = frozenset({UserTier.PREMIUM.value})


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def build_order_id(user_id: str, transaction_id: UUID, now: datetime | None = None) -> str:
    """Build the gateway order id: ``premium_{user}_{transaction}_{unix_ms}``."""
    moment = now or _utc_now()
    return f"premium_{user_id}_{transaction_id}_{int(moment.timestamp() * 1000)}"


class PaymentService:
    """Creates premium purchases and confirms them against the gateway."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGateway | None,
        entitlements: EntitlementService | None = None,
        config: Settings | None = None,
    ) -> None:
        """
        Initialize payment service.

        Args:
            session: Database session
            gateway: Payment gateway client, None when credentials are missing
            entitlements: Entitlement service sharing the same session
            config: Settings override
        """
        self.session = session
        self.gateway = gateway
        self.config = config or default_settings
        self.entitlements = entitlements or EntitlementService(session, self.config)

    async def create_payment(self, intent: PaymentIntent) -> PaymentSession:
        """
        Start a premium purchase.

        Validation runs before anything is written. Steps:
        1. Validate tier, amount and currency
        2. Reject users with an active premium subscription
        3. Reject users with a recent pending transaction
        4. Insert and commit the pending transaction
        5. Call the gateway; on failure mark the row failed and re-raise

        Raises:
            InvalidTierError: Tier is not purchasable
            InvalidAmountError: Amount not in (0, max_payment_amount]
            UnsupportedCurrencyError: Currency not on the allow-list
            AlreadySubscribedError: Premium subscription still active
            PendingPaymentExistsError: Pending payment inside the window
            GatewayConfigurationError: Gateway credentials missing
            PaymentGatewayError: Gateway call failed
        """
        identity = intent.identity
        currency = self._validate_intent(intent)

        usage = await self.entitlements.get_usage(identity)
        now = _utc_now()
        if usage.is_active_premium(now):
            metrics.payments_created_total.labels(outcome="already_subscribed").inc()
            raise AlreadySubscribedError(identity.user_id, usage.subscription_expires_at)

        pending = await self._find_recent_pending(identity.user_id, now)
        if pending is not None:
            metrics.payments_created_total.labels(outcome="pending_exists").inc()
            logger.info(
                "payment_pending_exists",
                user_id=identity.user_id,
                transaction_id=str(pending.id),
            )
            raise PendingPaymentExistsError(
                str(pending.id), self.config.pending_payment_window_minutes
            )

        gateway = self._require_gateway()

        transaction = PaymentTransaction(
            id=uuid4(),
            user_id=identity.user_id,
            amount=intent.amount,
            currency=currency,
            status=PaymentStatus.PENDING.value,
            tier_purchased=intent.tier,
            expires_at=now + timedelta(days=self.config.premium_period_days),
            gateway_data={},
        )
        self.session.add(transaction)
        await self.session.flush()

        verified = await self.session.get(PaymentTransaction, transaction.id)
        if verified is None:
            raise WriteVerificationError(f"Transaction {transaction.id} not found after insert")

        await self.session.commit()

        transaction_id = transaction.id
        order_id = build_order_id(identity.user_id, transaction_id)

        logger.info(
            "payment_transaction_created",
            user_id=identity.user_id,
            transaction_id=str(transaction_id),
            amount=str(intent.amount),
            currency=currency,
        )

        request = GatewayPaymentRequest(
            amount=intent.amount,
            currency=currency,
            order_id=order_id,
            url_return=self.config.payment_return_url(str(transaction_id)),
            url_callback=self.config.webhook_callback_url,
            lifetime_seconds=self.config.payment_lifetime_seconds,
        )

        try:
            checkout = await gateway.create_payment(request)
        except PaymentGatewayError as exc:
            await self._mark_failed(transaction_id, transaction.gateway_data, order_id, exc)
            metrics.payments_created_total.labels(outcome="gateway_error").inc()
            raise

        transaction.gateway_payment_id = checkout.payment_id
        transaction.order_id = order_id
        transaction.gateway_data = merge_gateway_data(
            transaction.gateway_data,
            order_id=order_id,
            gateway_status=checkout.status,
            created_response=checkout.raw,
        )
        await self.session.flush()
        await self.session.commit()

        metrics.payments_created_total.labels(outcome="created").inc()
        logger.info(
            "payment_created",
            user_id=identity.user_id,
            transaction_id=str(transaction_id),
            gateway_payment_id=checkout.payment_id,
        )

        return PaymentSession(
            transaction_id=transaction_id,
            payment_url=checkout.payment_url,
            gateway_payment_id=checkout.payment_id,
        )

    async def confirm_upgrade(
        self, identity: UserIdentity, transaction_id: UUID
    ) -> UpgradeConfirmation:
        """
        Client-side fallback for a webhook that has not arrived yet.

        The gateway is asked for the payment status; the client is never
        trusted on its own.

        Raises:
            TransactionNotFoundError: Transaction missing or owned by another user
            PaymentNotConfirmedError: Gateway does not report the payment as paid
            SubscriptionLapsedError: The paid period has already ended
            GatewayConfigurationError: Gateway credentials missing
            PaymentGatewayError: Gateway call failed
        """
        transaction = await self._find_owned_transaction(identity.user_id, transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(str(transaction_id))

        usage = await self.entitlements.get_usage(identity)

        if transaction.status == PaymentStatus.COMPLETED.value:
            if usage.is_active_premium(_utc_now()):
                logger.info(
                    "upgrade_already_applied",
                    user_id=identity.user_id,
                    transaction_id=str(transaction_id),
                )
                return UpgradeConfirmation(already_upgraded=True, usage=usage)

            # Completed but the grant never landed
            return await self._grant_from_transaction(identity, transaction)

        if not transaction.gateway_payment_id:
            raise PaymentNotConfirmedError(str(transaction_id), transaction.status)

        gateway = self._require_gateway()
        info = await gateway.get_payment_info(transaction.gateway_payment_id)
        mapped = map_gateway_status(info.status)

        if mapped is not PaymentStatus.COMPLETED:
            logger.info(
                "upgrade_confirmation_rejected",
                user_id=identity.user_id,
                transaction_id=str(transaction_id),
                gateway_status=info.status,
            )
            raise PaymentNotConfirmedError(str(transaction_id), info.status)

        gateway_data = merge_gateway_data(
            transaction.gateway_data,
            gateway_status=info.status,
            confirmed_via="payment_info",
            confirmed_at=_utc_now().isoformat(),
        )
        changed = await transition_status(
            self.session, transaction.id, PaymentStatus.COMPLETED, gateway_data
        )
        await self.session.commit()

        logger.info(
            "payment_confirmed_by_client",
            user_id=identity.user_id,
            transaction_id=str(transaction_id),
            gateway_status=info.status,
            status_changed=changed,
        )

        return await self._grant_from_transaction(identity, transaction)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _grant_from_transaction(
        self, identity: UserIdentity, transaction: PaymentTransaction
    ) -> UpgradeConfirmation:
        """Grant the period a completed transaction paid for, unless it has ended."""
        if transaction.expires_at <= _utc_now():
            logger.info(
                "upgrade_confirmation_lapsed",
                user_id=identity.user_id,
                transaction_id=str(transaction.id),
                expires_at=transaction.expires_at.isoformat(),
            )
            raise SubscriptionLapsedError(str(transaction.id), transaction.expires_at)

        await self.entitlements.grant_premium(
            transaction.user_id, transaction.expires_at, source="confirmation"
        )
        usage = await self.entitlements.get_usage(identity)
        return UpgradeConfirmation(already_upgraded=False, usage=usage)

    def _validate_intent(self, intent: PaymentIntent) -> str:
        """Validate tier, amount and currency; return the normalized currency."""
        if intent.tier not in PURCHASABLE_TIERS:
            metrics.payments_created_total.labels(outcome="invalid_tier").inc()
            raise InvalidTierError(intent.tier)

        amount = intent.amount
        maximum = self.config.max_payment_amount
        if not isinstance(amount, Decimal) or not amount.is_finite() or amount <= 0 or amount > maximum:
            metrics.payments_created_total.labels(outcome="invalid_amount").inc()
            raise InvalidAmountError(amount, maximum)

        currency = (intent.currency or "").strip().upper()
        if currency not in self.config.supported_currencies:
            metrics.payments_created_total.labels(outcome="unsupported_currency").inc()
            raise UnsupportedCurrencyError(intent.currency, self.config.supported_currencies)

        return currency

    def _require_gateway(self) -> PaymentGateway:
        if self.gateway is None or not self.config.gateway_configured:
            logger.error("payment_gateway_not_configured")
            raise GatewayConfigurationError()
        return self.gateway

    async def _find_recent_pending(
        self, user_id: str, now: datetime
    ) -> PaymentTransaction | None:
        """Find a pending transaction created inside the pending window."""
        window_start = now - timedelta(minutes=self.config.pending_payment_window_minutes)
        stmt = (
            select(PaymentTransaction)
            .where(
                PaymentTransaction.user_id == user_id,
                PaymentTransaction.status == PaymentStatus.PENDING.value,
                PaymentTransaction.created_at >= window_start,
            )
            .order_by(PaymentTransaction.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_owned_transaction(
        self, user_id: str, transaction_id: UUID
    ) -> PaymentTransaction | None:
        """Find a transaction by id, scoped to its owner."""
        stmt = select(PaymentTransaction).where(
            PaymentTransaction.id == transaction_id,
            PaymentTransaction.user_id == user_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _mark_failed(
        self,
        transaction_id: UUID,
        current_data: dict | None,
        order_id: str,
        error: PaymentGatewayError,
    ) -> None:
        """Record a failed gateway call on the transaction (row is kept)."""
        logger.error(
            "payment_gateway_call_failed",
            transaction_id=str(transaction_id),
            error=error.message,
            status_code=error.status_code,
        )
        gateway_data = merge_gateway_data(
            current_data,
            order_id=order_id,
            error=error.message,
            error_status_code=error.status_code,
            failed_at=_utc_now().isoformat(),
        )
        await self.session.rollback()
        changed = await transition_status(
            self.session, transaction_id, PaymentStatus.FAILED, gateway_data
        )
        if not changed:
            await store_gateway_data(self.session, transaction_id, gateway_data)
        await self.session.commit()
