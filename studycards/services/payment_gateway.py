"""
Payment Gateway Protocol - the gateway calls the payment services depend on.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol


@dataclass(frozen=True)
class GatewayPaymentRequest:
    """
    Request for a hosted payment page.

    ``order_id`` is unique per local transaction, which makes the call
    idempotent on the gateway side.
    """

    amount: Decimal
    currency: str
    order_id: str
    url_return: str
    url_callback: str
    lifetime_seconds: int
    is_payment_multiple: bool = False


@dataclass(frozen=True)
class GatewayPaymentSession:
    """Hosted payment page returned by the gateway."""

    payment_id: str  # Gateway payment uuid
    payment_url: str
    order_id: str
    status: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayPaymentInfo:
    """Current state of a payment as reported by the gateway."""

    payment_id: str
    order_id: str | None
    status: str
    is_final: bool
    raw: dict[str, Any] = field(default_factory=dict)


class PaymentGateway(Protocol):
    """Gateway operations used by PaymentService."""

    async def create_payment(self, request: GatewayPaymentRequest) -> GatewayPaymentSession:
        """
        Create a hosted payment session.

        Raises:
            PaymentGatewayError: If the gateway rejects or cannot be reached
        """
        ...

    async def get_payment_info(self, payment_id: str) -> GatewayPaymentInfo:
        """
        Fetch the current gateway status of a payment.

        Raises:
            PaymentGatewayError: If the gateway rejects or cannot be reached
        """
        ...
