"""
Domain Models - Internal business logic models using dataclasses.

All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from studycards.models.api import PaymentStatus, UsageInfo, UserTier


@dataclass(frozen=True)
class UserIdentity:
    """Authenticated caller identity resolved from the bearer token."""

    user_id: str
    email: str | None = None
    full_name: str | None = None

    def __post_init__(self) -> None:
        """Validate identity fields."""
        if not self.user_id:
            raise ValueError("user_id cannot be empty")


@dataclass(frozen=True)
class UsageSnapshot:
    """Entitlement state after expiry and monthly-reset checks."""

    user_id: str
    tier: UserTier
    generated_this_month: int
    monthly_limit: int
    subscription_expires_at: datetime | None

    @property
    def remaining(self) -> int:
        """Generations left this month, never negative."""
        return max(0, self.monthly_limit - self.generated_this_month)

    @property
    def has_quota(self) -> bool:
        return self.remaining > 0

    def is_active_premium(self, now: datetime) -> bool:
        """True for a premium user whose subscription has not yet expired."""
        if self.tier != UserTier.PREMIUM:
            return False
        return self.subscription_expires_at is None or self.subscription_expires_at > now

    def to_usage_info(self) -> UsageInfo:
        return UsageInfo(
            generated_this_month=self.generated_this_month,
            monthly_limit=self.monthly_limit,
            remaining=self.remaining,
        )


@dataclass(frozen=True)
class PaymentIntent:
    """A tier-upgrade request before validation and persistence."""

    identity: UserIdentity
    tier: str
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class PaymentSession:
    """Hosted checkout created for a local transaction."""

    transaction_id: UUID
    payment_url: str
    gateway_payment_id: str


@dataclass(frozen=True)
class WebhookOutcome:
    """Result of reconciling one gateway notification."""

    transaction_id: UUID
    gateway_status: str
    previous_status: PaymentStatus
    new_status: PaymentStatus
    status_changed: bool
    upgraded: bool


@dataclass(frozen=True)
class UpgradeConfirmation:
    """Result of the client-side upgrade confirmation."""

    already_upgraded: bool
    usage: UsageSnapshot
