"""
Payment Transaction Store - gateway status mapping and guarded status writes.

A transaction that reached ``completed`` is terminal: every status write is
conditional on the current status not being ``completed``. Gateway metadata is
still merged so late notifications remain auditable.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from studycards.db.models import PaymentTransaction
from studycards.models.api import PaymentStatus

# Cryptomus payment_status -> local status
GATEWAY_STATUS_MAP: dict[str, PaymentStatus] = {
    "paid": PaymentStatus.COMPLETED,
    "paid_over": PaymentStatus.COMPLETED,
    "fail": PaymentStatus.FAILED,
    "cancel": PaymentStatus.FAILED,
    "system_fail": PaymentStatus.FAILED,
    "refund": PaymentStatus.FAILED,
    "refund_fail": PaymentStatus.FAILED,
    "process": PaymentStatus.PENDING,
    "confirm_check": PaymentStatus.PENDING,
    "not_paid": PaymentStatus.PENDING,
}

# Bound on the per-transaction notification history kept in gateway_data
MAX_WEBHOOK_EVENTS = 50


def map_gateway_status(gateway_status: str) -> PaymentStatus:
    """Map a gateway status to the local vocabulary; unknown statuses stay pending."""
    return GATEWAY_STATUS_MAP.get(gateway_status, PaymentStatus.PENDING)


def merge_gateway_data(current: dict[str, Any] | None, **updates: Any) -> dict[str, Any]:
    """
    Return a new gateway_data dict with ``updates`` applied.

    A new object is always built; in-place mutation of a JSONB value is not
    tracked by the ORM.
    """
    merged = dict(current or {})
    merged.update(updates)
    return merged


def append_webhook_event(
    current: dict[str, Any] | None, event: dict[str, Any]
) -> list[dict[str, Any]]:
    """Append one notification record to the history, keeping the newest entries."""
    history = list((current or {}).get("webhook_events") or [])
    history.append(event)
    return history[-MAX_WEBHOOK_EVENTS:]


async def transition_status(
    session: AsyncSession,
    transaction_id: UUID,
    new_status: PaymentStatus,
    gateway_data: dict[str, Any],
) -> bool:
    """
    Write a new status unless the transaction is already completed.

    Returns:
        True if a row was updated, False if the transaction was completed
    """
    stmt = (
        update(PaymentTransaction)
        .where(
            PaymentTransaction.id == transaction_id,
            PaymentTransaction.status != PaymentStatus.COMPLETED.value,
        )
        .values(
            status=new_status.value,
            gateway_data=gateway_data,
            updated_at=datetime.now(UTC),
        )
        .returning(PaymentTransaction.id)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none() is not None


async def store_gateway_data(
    session: AsyncSession, transaction_id: UUID, gateway_data: dict[str, Any]
) -> None:
    """Replace gateway_data without touching the status."""
    stmt = (
        update(PaymentTransaction)
        .where(PaymentTransaction.id == transaction_id)
        .values(gateway_data=gateway_data, updated_at=datetime.now(UTC))
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)
