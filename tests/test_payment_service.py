"""
Tests for PaymentService.

Unit tests for purchase creation and direct upgrade confirmation.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID, uuid4

import pytest

from conftest import create_mock_transaction
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
)
from studycards.models.api import PaymentStatus, UserTier
from studycards.models.domain import PaymentIntent, UsageSnapshot, UserIdentity
from studycards.services.payment_gateway import GatewayPaymentInfo, GatewayPaymentSession
from studycards.services.payments import PaymentService, build_order_id


def make_snapshot(
    tier: UserTier = UserTier.FREE,
    expires_at: datetime | None = None,
    generated: int = 0,
) -> UsageSnapshot:
    return UsageSnapshot(
        user_id="user-123",
        tier=tier,
        generated_this_month=generated,
        monthly_limit=1000 if tier is UserTier.PREMIUM else 10,
        subscription_expires_at=expires_at,
    )


def make_gateway(payment_id: str = "gw-payment-uuid") -> AsyncMock:
    gateway = AsyncMock()
    gateway.create_payment.return_value = GatewayPaymentSession(
        payment_id=payment_id,
        payment_url="https://pay.cryptomus.com/pay/gw-payment-uuid",
        order_id="ignored",
        status="check",
        raw={"uuid": payment_id, "url": "https://pay.cryptomus.com/pay/gw-payment-uuid"},
    )
    return gateway


def make_service(
    db_session: AsyncMock,
    gateway: AsyncMock | None,
    snapshot: UsageSnapshot | None = None,
) -> tuple[PaymentService, AsyncMock]:
    entitlements = AsyncMock()
    entitlements.get_usage.return_value = snapshot or make_snapshot()
    entitlements.grant_premium.return_value = True
    service = PaymentService(db_session, gateway, entitlements=entitlements)
    return service, entitlements


def intent(
    identity: UserIdentity,
    tier: str = "premium",
    amount: str = "9.99",
    currency: str = "USD",
) -> PaymentIntent:
    return PaymentIntent(identity=identity, tier=tier, amount=Decimal(amount), currency=currency)


class TestCreatePaymentValidation:
    """Validation failures never touch the store or the gateway."""

    async def test_invalid_tier_rejected(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        gateway = make_gateway()
        service, _ = make_service(db_session, gateway)

        with pytest.raises(InvalidTierError) as exc_info:
            await service.create_payment(intent(identity, tier="gold"))

        assert exc_info.value.code == "invalid_tier"
        db_session.add.assert_not_called()
        gateway.create_payment.assert_not_awaited()

    @pytest.mark.parametrize("amount", ["0", "-5", "1500", "1000.01"])
    async def test_out_of_range_amount_rejected(
        self, db_session: AsyncMock, identity: UserIdentity, amount: str
    ) -> None:
        service, _ = make_service(db_session, make_gateway())

        with pytest.raises(InvalidAmountError):
            await service.create_payment(intent(identity, amount=amount))

        db_session.add.assert_not_called()

    async def test_non_finite_amount_rejected(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        service, _ = make_service(db_session, make_gateway())

        with pytest.raises(InvalidAmountError):
            await service.create_payment(intent(identity, amount="NaN"))

    async def test_maximum_amount_accepted(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        gateway = make_gateway()
        service, _ = make_service(db_session, gateway)

        with patch.object(service, "_find_recent_pending", new_callable=AsyncMock) as mock_pending:
            mock_pending.return_value = None
            result = await service.create_payment(intent(identity, amount="1000"))

        assert result.gateway_payment_id == "gw-payment-uuid"

    async def test_unsupported_currency_rejected(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        service, _ = make_service(db_session, make_gateway())

        with pytest.raises(UnsupportedCurrencyError) as exc_info:
            await service.create_payment(intent(identity, currency="BTC"))

        assert exc_info.value.supported == ["USD", "EUR", "USDT"]

    async def test_currency_is_case_insensitive(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        gateway = make_gateway()
        service, _ = make_service(db_session, gateway)

        with patch.object(service, "_find_recent_pending", new_callable=AsyncMock) as mock_pending:
            mock_pending.return_value = None
            await service.create_payment(intent(identity, currency="usdt"))

        request = gateway.create_payment.call_args[0][0]
        assert request.currency == "USDT"

    async def test_active_premium_rejected(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        snapshot = make_snapshot(UserTier.PREMIUM, datetime.now(UTC) + timedelta(days=10))
        service, _ = make_service(db_session, make_gateway(), snapshot)

        with pytest.raises(AlreadySubscribedError) as exc_info:
            await service.create_payment(intent(identity))

        assert exc_info.value.code == "already_subscribed"
        db_session.add.assert_not_called()

    async def test_recent_pending_rejected_with_distinct_code(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        service, _ = make_service(db_session, make_gateway())
        pending = create_mock_transaction(created_at=datetime.now(UTC) - timedelta(minutes=5))

        with patch.object(service, "_find_recent_pending", new_callable=AsyncMock) as mock_pending:
            mock_pending.return_value = pending
            with pytest.raises(PendingPaymentExistsError) as exc_info:
                await service.create_payment(intent(identity))

        assert exc_info.value.code == "payment_pending"
        assert exc_info.value.transaction_id == str(pending.id)
        db_session.add.assert_not_called()

    async def test_missing_gateway_rejected_before_insert(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        service, _ = make_service(db_session, None)

        with patch.object(service, "_find_recent_pending", new_callable=AsyncMock) as mock_pending:
            mock_pending.return_value = None
            with pytest.raises(GatewayConfigurationError):
                await service.create_payment(intent(identity))

        db_session.add.assert_not_called()


class TestCreatePayment:
    """Tests for the persistence and gateway sequence."""

    async def test_pending_row_committed_before_gateway_call(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        calls: list[str] = []
        db_session.commit = AsyncMock(side_effect=lambda: calls.append("commit"))
        gateway = make_gateway()
        original = gateway.create_payment.return_value

        async def create_payment(request: object) -> GatewayPaymentSession:
            calls.append("gateway")
            return original

        gateway.create_payment = AsyncMock(side_effect=create_payment)
        service, _ = make_service(db_session, gateway)

        with patch.object(service, "_find_recent_pending", new_callable=AsyncMock) as mock_pending:
            mock_pending.return_value = None
            await service.create_payment(intent(identity))

        assert calls[:2] == ["commit", "gateway"]

    async def test_success_stores_gateway_reference(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        gateway = make_gateway()
        service, _ = make_service(db_session, gateway)

        with patch.object(service, "_find_recent_pending", new_callable=AsyncMock) as mock_pending:
            mock_pending.return_value = None
            result = await service.create_payment(intent(identity))

        transaction = db_session.add.call_args[0][0]
        assert transaction.status == PaymentStatus.PENDING.value
        assert transaction.gateway_payment_id == "gw-payment-uuid"
        assert transaction.order_id.startswith(f"premium_user-123_{transaction.id}_")
        assert transaction.gateway_data["gateway_status"] == "check"
        assert result.transaction_id == transaction.id
        assert result.payment_url == "https://pay.cryptomus.com/pay/gw-payment-uuid"

    async def test_entitlement_end_is_thirty_days_out(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        service, _ = make_service(db_session, make_gateway())

        with patch.object(service, "_find_recent_pending", new_callable=AsyncMock) as mock_pending:
            mock_pending.return_value = None
            await service.create_payment(intent(identity))

        transaction = db_session.add.call_args[0][0]
        delta = transaction.expires_at - datetime.now(UTC)
        assert timedelta(days=29, hours=23) < delta <= timedelta(days=30)

    async def test_gateway_request_fields(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        gateway = make_gateway()
        service, _ = make_service(db_session, gateway)

        with patch.object(service, "_find_recent_pending", new_callable=AsyncMock) as mock_pending:
            mock_pending.return_value = None
            result = await service.create_payment(intent(identity))

        request = gateway.create_payment.call_args[0][0]
        assert request.amount == Decimal("9.99")
        assert request.lifetime_seconds == 7200
        assert request.is_payment_multiple is False
        assert request.url_callback == "https://cards.example.com/api/payments/webhook"
        assert request.url_return == (
            f"https://cards.example.com/payment/success?transaction_id={result.transaction_id}"
        )

    async def test_gateway_failure_marks_row_failed_and_reraises(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        gateway = make_gateway()
        gateway.create_payment.side_effect = PaymentGatewayError("boom", status_code=502)
        service, _ = make_service(db_session, gateway)

        with (
            patch.object(service, "_find_recent_pending", new_callable=AsyncMock) as mock_pending,
            patch(
                "studycards.services.payments.transition_status", new_callable=AsyncMock
            ) as mock_transition,
        ):
            mock_pending.return_value = None
            mock_transition.return_value = True
            with pytest.raises(PaymentGatewayError):
                await service.create_payment(intent(identity))

        transaction = db_session.add.call_args[0][0]
        _, transaction_id, status, gateway_data = mock_transition.call_args[0]
        assert transaction_id == transaction.id
        assert status is PaymentStatus.FAILED
        assert gateway_data["error_status_code"] == 502
        assert gateway_data["order_id"].startswith("premium_user-123_")
        db_session.rollback.assert_awaited()
        assert db_session.commit.await_count == 2


class TestConfirmUpgrade:
    """Tests for the client-side confirmation fallback."""

    async def test_unknown_transaction_is_not_found(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        service, _ = make_service(db_session, make_gateway())

        with patch.object(service, "_find_owned_transaction", new_callable=AsyncMock) as mock_find:
            mock_find.return_value = None
            with pytest.raises(TransactionNotFoundError):
                await service.confirm_upgrade(identity, uuid4())

    async def test_completed_and_premium_is_already_upgraded(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        snapshot = make_snapshot(UserTier.PREMIUM, datetime.now(UTC) + timedelta(days=30))
        gateway = make_gateway()
        service, entitlements = make_service(db_session, gateway, snapshot)
        transaction = create_mock_transaction(status=PaymentStatus.COMPLETED)

        with patch.object(service, "_find_owned_transaction", new_callable=AsyncMock) as mock_find:
            mock_find.return_value = transaction
            result = await service.confirm_upgrade(identity, transaction.id)

        assert result.already_upgraded is True
        gateway.get_payment_info.assert_not_awaited()
        entitlements.grant_premium.assert_not_awaited()

    async def test_completed_without_grant_is_repaired(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        service, entitlements = make_service(db_session, make_gateway())
        transaction = create_mock_transaction(status=PaymentStatus.COMPLETED)

        with patch.object(service, "_find_owned_transaction", new_callable=AsyncMock) as mock_find:
            mock_find.return_value = transaction
            result = await service.confirm_upgrade(identity, transaction.id)

        assert result.already_upgraded is False
        entitlements.grant_premium.assert_awaited_once_with(
            "user-123", transaction.expires_at, source="confirmation"
        )

    async def test_completed_after_period_ended_is_rejected(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        """An old purchase cannot be confirmed into a second premium period."""
        gateway = make_gateway()
        service, entitlements = make_service(db_session, gateway)
        transaction = create_mock_transaction(
            status=PaymentStatus.COMPLETED,
            expires_at=datetime.now(UTC) - timedelta(days=5),
        )

        with patch.object(service, "_find_owned_transaction", new_callable=AsyncMock) as mock_find:
            mock_find.return_value = transaction
            with pytest.raises(SubscriptionLapsedError) as exc_info:
                await service.confirm_upgrade(identity, transaction.id)

        assert exc_info.value.code == "subscription_expired"
        assert exc_info.value.expired_at == transaction.expires_at
        entitlements.grant_premium.assert_not_awaited()
        gateway.get_payment_info.assert_not_awaited()

    async def test_paid_at_gateway_completes_and_grants(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        gateway = make_gateway()
        gateway.get_payment_info.return_value = GatewayPaymentInfo(
            payment_id="gw-payment-uuid", order_id=None, status="paid", is_final=True
        )
        service, entitlements = make_service(db_session, gateway)
        transaction = create_mock_transaction()

        with (
            patch.object(service, "_find_owned_transaction", new_callable=AsyncMock) as mock_find,
            patch(
                "studycards.services.payments.transition_status", new_callable=AsyncMock
            ) as mock_transition,
        ):
            mock_find.return_value = transaction
            mock_transition.return_value = True
            result = await service.confirm_upgrade(identity, transaction.id)

        assert result.already_upgraded is False
        gateway.get_payment_info.assert_awaited_once_with("gw-payment-uuid")
        _, _, status, gateway_data = mock_transition.call_args[0]
        assert status is PaymentStatus.COMPLETED
        assert gateway_data["confirmed_via"] == "payment_info"
        entitlements.grant_premium.assert_awaited_once_with(
            "user-123", transaction.expires_at, source="confirmation"
        )

    @pytest.mark.parametrize("gateway_status", ["process", "cancel", "check"])
    async def test_unpaid_at_gateway_is_rejected(
        self, db_session: AsyncMock, identity: UserIdentity, gateway_status: str
    ) -> None:
        gateway = make_gateway()
        gateway.get_payment_info.return_value = GatewayPaymentInfo(
            payment_id="gw-payment-uuid", order_id=None, status=gateway_status, is_final=False
        )
        service, entitlements = make_service(db_session, gateway)
        transaction = create_mock_transaction()

        with patch.object(service, "_find_owned_transaction", new_callable=AsyncMock) as mock_find:
            mock_find.return_value = transaction
            with pytest.raises(PaymentNotConfirmedError) as exc_info:
                await service.confirm_upgrade(identity, transaction.id)

        assert exc_info.value.code == "payment_not_confirmed"
        entitlements.grant_premium.assert_not_awaited()

    async def test_transaction_without_gateway_reference_is_rejected(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        gateway = make_gateway()
        service, _ = make_service(db_session, gateway)
        transaction = create_mock_transaction(gateway_payment_id=None)

        with patch.object(service, "_find_owned_transaction", new_callable=AsyncMock) as mock_find:
            mock_find.return_value = transaction
            with pytest.raises(PaymentNotConfirmedError):
                await service.confirm_upgrade(identity, transaction.id)

        gateway.get_payment_info.assert_not_awaited()


def test_order_id_format() -> None:
    transaction_id = UUID("12345678-1234-5678-1234-567812345678")
    moment = datetime(2026, 1, 1, tzinfo=UTC)

    assert build_order_id("user-1", transaction_id, moment) == (
        "premium_user-1_12345678-1234-5678-1234-567812345678_1767225600000"
    )


def test_service_defaults_to_entitlement_service(db_session: AsyncMock) -> None:
    service = PaymentService(db_session, MagicMock())

    assert service.entitlements.session is db_session
