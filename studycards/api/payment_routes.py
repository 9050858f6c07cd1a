"""
Payment API Routes - purchase creation, gateway webhook and upgrade confirmation.
"""

import json

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studycards.api.dependencies import get_current_user, get_payment_gateway
from studycards.config import settings
from studycards.db.session import get_db
from studycards.exceptions import WebhookVerificationError
from studycards.models.api import (
    ConfirmUpgradeRequest,
    ConfirmUpgradeResponse,
    CreatePaymentRequest,
    CreatePaymentResponse,
    SuccessEnvelope,
    WebhookAck,
)
from studycards.models.domain import PaymentIntent, UserIdentity
from studycards.observability.logging import log_context
from studycards.observability.metrics import metrics
from studycards.observability.tracing import trace_operation
from studycards.services.payment_gateway import PaymentGateway
from studycards.services.payments import PaymentService
from studycards.services.webhooks import WebhookReconciler

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/api/payments/create",
    response_model=SuccessEnvelope[CreatePaymentResponse],
)
async def create_payment(
    body: CreatePaymentRequest,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway | None = Depends(get_payment_gateway),
) -> SuccessEnvelope[CreatePaymentResponse]:
    """Create a premium purchase and return the hosted payment page."""
    service = PaymentService(db, gateway)
    intent = PaymentIntent(
        identity=user,
        tier=body.tier,
        amount=body.amount,
        currency=body.currency,
    )

    with (
        log_context(user_id=user.user_id),
        trace_operation("payments.create", user_id=user.user_id, currency=body.currency),
    ):
        checkout = await service.create_payment(intent)

    return SuccessEnvelope(
        data=CreatePaymentResponse(
            payment_url=checkout.payment_url,
            transaction_id=checkout.transaction_id,
        )
    )


@router.post("/api/payments/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> WebhookAck:
    """
    Handle Cryptomus payment notifications.

    The body is parsed here rather than through a model so the key order the
    signature covers is preserved.
    """
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        metrics.webhook_rejections_total.labels(reason="unparseable").inc()
        logger.warning("payment_webhook_unparseable", body_length=len(raw_body))
        raise WebhookVerificationError() from exc

    if not isinstance(payload, dict):
        metrics.webhook_rejections_total.labels(reason="unparseable").inc()
        raise WebhookVerificationError()

    reconciler = WebhookReconciler(db, settings.cryptomus_api_key)
    gateway_payment_id = payload.get("uuid")
    with (
        log_context(gateway_payment_id=gateway_payment_id),
        trace_operation("payments.webhook", gateway_payment_id=gateway_payment_id),
    ):
        await reconciler.handle_notification(payload)

    return WebhookAck()


@router.post(
    "/api/user/upgrade",
    response_model=SuccessEnvelope[ConfirmUpgradeResponse],
)
async def confirm_upgrade(
    body: ConfirmUpgradeRequest,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway | None = Depends(get_payment_gateway),
) -> SuccessEnvelope[ConfirmUpgradeResponse]:
    """Confirm a purchase from the success page when the webhook is late."""
    service = PaymentService(db, gateway)

    with (
        log_context(user_id=user.user_id, transaction_id=body.transaction_id),
        trace_operation("payments.confirm", user_id=user.user_id),
    ):
        confirmation = await service.confirm_upgrade(user, body.transaction_id)

    usage = confirmation.usage
    message = (
        "User already upgraded to premium"
        if confirmation.already_upgraded
        else "Successfully upgraded to premium"
    )
    return SuccessEnvelope(
        data=ConfirmUpgradeResponse(
            already_upgraded=confirmation.already_upgraded,
            message=message,
            tier=usage.tier,
            subscription_expires_at=usage.subscription_expires_at,
        )
    )
