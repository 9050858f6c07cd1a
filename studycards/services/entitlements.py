"""
Entitlement Service - tier, quota and premium grants.

Expiry downgrades and monthly resets are applied synchronously whenever usage
is read; there is no background job.
"""

from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studycards.config import Settings, settings as default_settings
from studycards.db.models import UserAccount
from studycards.exceptions import QuotaExceededError, UserNotFoundError, WriteVerificationError
from studycards.models.api import UsageInfo, UserTier
from studycards.models.domain import UsageSnapshot, UserIdentity
from studycards.observability.metrics import metrics

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    """Treat naive timestamps from the store as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _month_changed(last_update: datetime | None, now: datetime) -> bool:
    """Check whether the usage counter belongs to an earlier calendar month."""
    if last_update is None:
        return True
    last = _as_utc(last_update)
    return (last.year, last.month) != (now.year, now.month)


def _is_expired_premium(user: UserAccount, now: datetime) -> bool:
    return (
        user.tier == UserTier.PREMIUM.value
        and user.subscription_expires_at is not None
        and _as_utc(user.subscription_expires_at) < now
    )


class EntitlementService:
    """
    Computes remaining quota and applies tier changes.

    The premium grant is idempotent: the user row is locked and the grant is
    skipped when the user already holds premium through the same or a later
    expiry, so replayed notifications never change the record twice. A period
    that has already ended is never granted.
    """

    def __init__(self, session: AsyncSession, config: Settings | None = None) -> None:
        """Initialize entitlement service with database session."""
        self.session = session
        self.config = config or default_settings

    async def get_usage(self, identity: UserIdentity) -> UsageSnapshot:
        """
        Read usage, creating the user on first access.

        Side effects, in order: expired premium is downgraded to free, and the
        monthly counter is reset when the calendar month has changed.
        """
        user = await self._find_user(identity.user_id)
        if user is None:
            user = await self._create_user(identity)

        now = _utc_now()
        changed = False

        if _is_expired_premium(user, now):
            logger.info(
                "premium_subscription_expired",
                user_id=user.id,
                expired_at=user.subscription_expires_at.isoformat()
                if user.subscription_expires_at
                else None,
            )
            user.tier = UserTier.FREE.value
            user.monthly_limit = self.config.free_tier_monthly_limit
            user.subscription_expires_at = None
            metrics.tier_downgrades_total.inc()
            changed = True

        if _month_changed(user.usage_updated_at, now):
            logger.info(
                "monthly_usage_reset",
                user_id=user.id,
                previous_count=user.generated_this_month,
            )
            user.generated_this_month = 0
            user.usage_updated_at = now
            changed = True

        if changed:
            await self.session.flush()
            await self.session.commit()

        return self._to_snapshot(user)

    async def ensure_quota(self, identity: UserIdentity) -> UsageSnapshot:
        """
        Gate a metered action.

        Raises:
            QuotaExceededError: No generations left this month
        """
        snapshot = await self.get_usage(identity)
        if not snapshot.has_quota:
            metrics.quota_rejections_total.labels(tier=snapshot.tier.value).inc()
            logger.info(
                "generation_quota_exhausted",
                user_id=snapshot.user_id,
                generated_this_month=snapshot.generated_this_month,
                monthly_limit=snapshot.monthly_limit,
            )
            raise QuotaExceededError(snapshot.generated_this_month, snapshot.monthly_limit)
        return snapshot

    async def record_generation(self, user_id: str, count: int) -> UsageInfo:
        """
        Add generated flashcards to the monthly counter.

        The increment is done in SQL so concurrent generations never lose an
        update.

        Raises:
            UserNotFoundError: User row is missing
        """
        stmt = (
            update(UserAccount)
            .where(UserAccount.id == user_id)
            .values(
                generated_this_month=UserAccount.generated_this_month + count,
                usage_updated_at=_utc_now(),
            )
            .returning(UserAccount.generated_this_month, UserAccount.monthly_limit)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        row = result.one_or_none()
        if row is None:
            await self.session.rollback()
            raise UserNotFoundError(user_id)

        await self.session.commit()

        generated, limit = row
        return UsageInfo(
            generated_this_month=generated,
            monthly_limit=limit,
            remaining=max(0, limit - generated),
        )

    async def grant_premium(self, user_id: str, expires_at: datetime, source: str) -> bool:
        """
        Upgrade a user to premium until ``expires_at``.

        Args:
            user_id: User to upgrade
            expires_at: Entitlement end stored on the purchasing transaction
            source: Caller label for logs and metrics ("webhook", "confirmation")

        Returns:
            True if the user row changed, False if already entitled or the
            period has already ended

        Raises:
            UserNotFoundError: User row is missing
        """
        user = await self._lock_user_for_update(user_id)
        if user is None:
            await self.session.rollback()
            raise UserNotFoundError(user_id)

        target_expiry = _as_utc(expires_at)

        if target_expiry <= _utc_now():
            # The paid period is over; a replay must not resurrect it
            await self.session.commit()
            metrics.premium_grants_total.labels(source=source, outcome="lapsed").inc()
            logger.info(
                "premium_grant_lapsed",
                user_id=user_id,
                source=source,
                expires_at=target_expiry.isoformat(),
            )
            return False

        if (
            user.tier == UserTier.PREMIUM.value
            and user.subscription_expires_at is not None
            and _as_utc(user.subscription_expires_at) >= target_expiry
        ):
            # Release the row lock without writing
            await self.session.commit()
            metrics.premium_grants_total.labels(source=source, outcome="already_granted").inc()
            logger.info(
                "premium_grant_skipped",
                user_id=user_id,
                source=source,
                subscription_expires_at=user.subscription_expires_at.isoformat(),
            )
            return False

        user.tier = UserTier.PREMIUM.value
        user.monthly_limit = self.config.premium_tier_monthly_limit
        user.subscription_expires_at = target_expiry
        await self.session.flush()
        await self.session.commit()

        metrics.premium_grants_total.labels(source=source, outcome="granted").inc()
        logger.info(
            "premium_granted",
            user_id=user_id,
            source=source,
            subscription_expires_at=target_expiry.isoformat(),
            monthly_limit=user.monthly_limit,
        )
        return True

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_user(self, user_id: str) -> UserAccount | None:
        """Find user by id."""
        stmt = select(UserAccount).where(UserAccount.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_user_for_update(self, user_id: str) -> UserAccount | None:
        """Lock user row for update (SELECT FOR UPDATE)."""
        stmt = select(UserAccount).where(UserAccount.id == user_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _create_user(self, identity: UserIdentity) -> UserAccount:
        """Create a free-tier user; a concurrent insert wins and is re-read."""
        now = _utc_now()
        user = UserAccount(
            id=identity.user_id,
            email=identity.email,
            full_name=identity.full_name,
            tier=UserTier.FREE.value,
            monthly_limit=self.config.free_tier_monthly_limit,
            generated_this_month=0,
            subscription_expires_at=None,
            usage_updated_at=now,
        )
        self.session.add(user)

        try:
            await self.session.flush()
            await self.session.commit()
        except IntegrityError as e:
            logger.warning("user_creation_race", user_id=identity.user_id, error=str(e))
            await self.session.rollback()
            existing = await self._find_user(identity.user_id)
            if existing is None:
                raise WriteVerificationError(f"User creation failed: {e}") from e
            return existing

        logger.info("user_created", user_id=identity.user_id, tier=user.tier)
        return user

    def _to_snapshot(self, user: UserAccount) -> UsageSnapshot:
        """Convert ORM user to domain snapshot."""
        return UsageSnapshot(
            user_id=user.id,
            tier=UserTier(user.tier),
            generated_this_month=user.generated_this_month,
            monthly_limit=user.monthly_limit,
            subscription_expires_at=user.subscription_expires_at,
        )
