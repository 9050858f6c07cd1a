"""
Webhook Reconciler - applies gateway payment notifications.

Order of effects for one notification:
1. Verify the signature over the body as received (no state change on failure)
2. Find the local transaction by gateway payment id (never created here)
3. Write the mapped status (guarded) and merge the notification metadata
4. Commit, then grant premium for a paid status

The grant runs after the status commit and is idempotent, so a replayed
notification converges even if the process died between steps 3 and 4.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studycards.db.models import PaymentTransaction
from studycards.exceptions import (
    StudyCardsError,
    TransactionNotFoundError,
    ValidationError,
    WebhookVerificationError,
)
from studycards.models.api import CryptomusWebhookPayload, PaymentStatus
from studycards.models.domain import WebhookOutcome
from studycards.observability.metrics import metrics
from studycards.services.entitlements import EntitlementService
from studycards.services.signature import SIGNATURE_FIELD, verify_signature
from studycards.services.transactions import (
    append_webhook_event,
    map_gateway_status,
    merge_gateway_data,
    store_gateway_data,
    transition_status,
)

logger = get_logger(__name__)


class WebhookReconciler:
    """Reconciles Cryptomus notifications with local transactions and entitlements."""

    def __init__(
        self,
        session: AsyncSession,
        api_key: str,
        entitlements: EntitlementService | None = None,
    ) -> None:
        self.session = session
        self.api_key = api_key
        self.entitlements = entitlements or EntitlementService(session)

    async def handle_notification(self, raw_payload: dict[str, Any]) -> WebhookOutcome:
        """
        Process one gateway notification.

        Args:
            raw_payload: Body parsed with key order preserved

        Raises:
            WebhookVerificationError: Signature missing or invalid
            ValidationError: Signed body lacks required fields
            TransactionNotFoundError: No transaction for the gateway payment id
        """
        provided = raw_payload.get(SIGNATURE_FIELD) if isinstance(raw_payload, dict) else None
        if not verify_signature(raw_payload, provided, self.api_key):
            metrics.webhook_rejections_total.labels(reason="invalid_signature").inc()
            logger.warning(
                "payment_webhook_signature_invalid",
                gateway_payment_id=raw_payload.get("uuid") if isinstance(raw_payload, dict) else None,
            )
            raise WebhookVerificationError()

        try:
            notification = CryptomusWebhookPayload.model_validate(raw_payload)
        except PydanticValidationError as e:
            metrics.webhook_rejections_total.labels(reason="malformed").inc()
            logger.warning("payment_webhook_malformed", error_count=e.error_count())
            raise ValidationError("Malformed webhook payload") from e

        logger.info(
            "payment_webhook_received",
            gateway_payment_id=notification.uuid,
            order_id=notification.order_id,
            gateway_status=notification.status,
            is_final=notification.is_final,
        )

        transaction = await self._find_by_gateway_payment_id(notification.uuid)
        if transaction is None:
            metrics.webhook_rejections_total.labels(reason="unknown_transaction").inc()
            logger.warning(
                "payment_webhook_unknown_transaction",
                gateway_payment_id=notification.uuid,
            )
            raise TransactionNotFoundError(notification.uuid)

        # Capture before writes; the row is updated through Core statements
        transaction_id = transaction.id
        user_id = transaction.user_id
        expires_at = transaction.expires_at
        previous_status = PaymentStatus(transaction.status)

        mapped = map_gateway_status(notification.status)
        received_at = datetime.now(UTC).isoformat()
        unsigned_body = {k: v for k, v in raw_payload.items() if k != SIGNATURE_FIELD}
        gateway_data = merge_gateway_data(
            transaction.gateway_data,
            webhook_payload=unsigned_body,
            last_webhook_at=received_at,
            webhook_events=append_webhook_event(
                transaction.gateway_data,
                {
                    "status": notification.status,
                    "is_final": notification.is_final,
                    "received_at": received_at,
                },
            ),
        )

        status_changed = False
        new_status = previous_status
        if previous_status is PaymentStatus.COMPLETED:
            await store_gateway_data(self.session, transaction_id, gateway_data)
        else:
            written = await transition_status(self.session, transaction_id, mapped, gateway_data)
            if written:
                new_status = mapped
                status_changed = mapped is not previous_status
            else:
                # Completed concurrently; keep the metadata only
                await store_gateway_data(self.session, transaction_id, gateway_data)
                new_status = PaymentStatus.COMPLETED

        await self.session.commit()

        metrics.record_webhook(notification.status, new_status.value, status_changed)
        logger.info(
            "payment_webhook_reconciled",
            transaction_id=str(transaction_id),
            gateway_status=notification.status,
            previous_status=previous_status.value,
            new_status=new_status.value,
            status_changed=status_changed,
        )

        upgraded = False
        if mapped is PaymentStatus.COMPLETED:
            upgraded = await self._grant_premium(user_id, expires_at, transaction_id)

        return WebhookOutcome(
            transaction_id=transaction_id,
            gateway_status=notification.status,
            previous_status=previous_status,
            new_status=new_status,
            status_changed=status_changed,
            upgraded=upgraded,
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_by_gateway_payment_id(self, payment_id: str) -> PaymentTransaction | None:
        stmt = select(PaymentTransaction).where(
            PaymentTransaction.gateway_payment_id == payment_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _grant_premium(self, user_id: str, expires_at: datetime, transaction_id: Any) -> bool:
        """Grant premium after the status commit; failures are logged, not raised."""
        try:
            return await self.entitlements.grant_premium(user_id, expires_at, source="webhook")
        except (StudyCardsError, SQLAlchemyError) as e:
            await self.session.rollback()
            metrics.premium_grants_total.labels(source="webhook", outcome="failed").inc()
            logger.error(
                "premium_grant_failed",
                user_id=user_id,
                transaction_id=str(transaction_id),
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return False
