"""
Flashcard Service - metered generation and owner-scoped set management.

Every query filters by the owning user, so another user's set or card is
indistinguishable from a missing one.
"""

import math
from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from structlog import get_logger

from studycards.db.models import Flashcard, FlashcardSet
from studycards.exceptions import (
    FlashcardNotFoundError,
    FlashcardSetNotFoundError,
    ValidationError,
)
from studycards.models.api import (
    FlashcardItem,
    FlashcardSetDetail,
    FlashcardSetSummary,
    GenerateFlashcardsRequest,
    GenerateFlashcardsResponse,
    Pagination,
    SortField,
    SortOrder,
    UpdateFlashcardSetRequest,
)
from studycards.models.domain import UserIdentity
from studycards.observability.metrics import metrics
from studycards.services.entitlements import EntitlementService
from studycards.services.flashcard_generator import FlashcardGenerator

logger = get_logger(__name__)

MIN_NOTES_LENGTH = 50

_SORT_COLUMNS = {
    SortField.CREATED_AT: FlashcardSet.created_at,
    SortField.UPDATED_AT: FlashcardSet.updated_at,
    SortField.TITLE: FlashcardSet.title,
}


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class FlashcardService:
    """Flashcard set generation, listing, editing and review counters."""

    def __init__(
        self,
        session: AsyncSession,
        entitlements: EntitlementService | None = None,
        generator: FlashcardGenerator | None = None,
    ) -> None:
        """
        Initialize flashcard service.

        Args:
            session: Database session
            entitlements: Quota gate sharing the same session
            generator: LLM-backed generator, only needed by generate_set
        """
        self.session = session
        self.entitlements = entitlements or EntitlementService(session)
        self.generator = generator

    async def generate_set(
        self, identity: UserIdentity, request: GenerateFlashcardsRequest
    ) -> GenerateFlashcardsResponse:
        """
        Generate and store a flashcard set from study notes.

        The quota is checked before the model is called; the counter grows by
        the number of cards actually stored.

        Raises:
            ValidationError: Title missing or notes too short
            QuotaExceededError: Monthly quota exhausted
            LLMProviderError: Model call failed
            InvalidAIOutputError: Model output rejected
        """
        title = request.title.strip()
        notes = request.notes.strip()
        if not title or len(notes) < MIN_NOTES_LENGTH:
            raise ValidationError(
                f"Title and notes (minimum {MIN_NOTES_LENGTH} characters) are required"
            )
        if self.generator is None:
            raise RuntimeError("FlashcardService.generate_set requires a generator")

        snapshot = await self.entitlements.ensure_quota(identity)

        description = (request.description or "").strip() or None
        cards = await self.generator.generate(title, notes, description)

        now = _utc_now()
        flashcard_set = FlashcardSet(
            id=uuid4(),
            user_id=identity.user_id,
            title=title,
            description=description,
            original_notes=notes,
            flashcard_count=len(cards),
            created_at=now,
            updated_at=now,
        )
        self.session.add(flashcard_set)
        await self.session.flush()
        await self.session.commit()

        rows = [
            Flashcard(
                id=uuid4(),
                set_id=flashcard_set.id,
                question=card.question,
                answer=card.answer,
                difficulty=card.difficulty,
                times_reviewed=0,
                times_correct=0,
                created_at=now,
            )
            for card in cards
        ]

        try:
            self.session.add_all(rows)
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError:
            logger.error(
                "flashcard_insert_failed",
                set_id=str(flashcard_set.id),
                card_count=len(rows),
                exc_info=True,
            )
            await self.session.rollback()
            await self._delete_set_row(flashcard_set.id)
            raise

        usage = await self.entitlements.record_generation(identity.user_id, len(rows))

        metrics.flashcards_generated_total.labels(tier=snapshot.tier.value).inc(len(rows))
        logger.info(
            "flashcard_set_generated",
            user_id=identity.user_id,
            set_id=str(flashcard_set.id),
            card_count=len(rows),
            remaining=usage.remaining,
        )

        detail = FlashcardSetDetail(
            id=flashcard_set.id,
            title=flashcard_set.title,
            description=flashcard_set.description,
            flashcard_count=flashcard_set.flashcard_count,
            created_at=flashcard_set.created_at,
            updated_at=flashcard_set.updated_at,
            original_notes=flashcard_set.original_notes,
            flashcards=[FlashcardItem.model_validate(row) for row in rows],
        )
        return GenerateFlashcardsResponse(flashcard_set=detail, usage=usage)

    async def list_sets(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        sort_by: SortField = SortField.CREATED_AT,
        sort_order: SortOrder = SortOrder.DESC,
    ) -> tuple[list[FlashcardSetSummary], Pagination]:
        """List the user's sets, newest first by default."""
        count_stmt = select(func.count()).select_from(FlashcardSet).where(
            FlashcardSet.user_id == user_id
        )
        total = (await self.session.execute(count_stmt)).scalar_one()

        column = _SORT_COLUMNS[sort_by]
        ordering = column.asc() if sort_order is SortOrder.ASC else column.desc()
        stmt = (
            select(FlashcardSet)
            .where(FlashcardSet.user_id == user_id)
            .order_by(ordering, FlashcardSet.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        sets = [FlashcardSetSummary.model_validate(row) for row in result.scalars().all()]

        total_pages = math.ceil(total / limit) if total else 0
        pagination = Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_previous=page > 1,
        )
        return sets, pagination

    async def get_set(self, user_id: str, set_id: UUID) -> FlashcardSetDetail:
        """
        Get a set with its cards.

        Raises:
            FlashcardSetNotFoundError: Set missing or owned by another user
        """
        stmt = (
            select(FlashcardSet)
            .options(selectinload(FlashcardSet.flashcards))
            .where(FlashcardSet.id == set_id, FlashcardSet.user_id == user_id)
        )
        result = await self.session.execute(stmt)
        flashcard_set = result.scalar_one_or_none()
        if flashcard_set is None:
            raise FlashcardSetNotFoundError(str(set_id))
        return FlashcardSetDetail.model_validate(flashcard_set)

    async def update_set(
        self, user_id: str, set_id: UUID, request: UpdateFlashcardSetRequest
    ) -> FlashcardSetSummary:
        """
        Rename a set.

        Raises:
            ValidationError: Title missing
            FlashcardSetNotFoundError: Set missing or owned by another user
        """
        title = request.title.strip()
        if not title:
            raise ValidationError("Title is required")

        stmt = (
            update(FlashcardSet)
            .where(FlashcardSet.id == set_id, FlashcardSet.user_id == user_id)
            .values(
                title=title,
                description=(request.description or "").strip() or None,
                updated_at=_utc_now(),
            )
            .returning(FlashcardSet)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        updated = result.scalar_one_or_none()
        if updated is None:
            await self.session.rollback()
            raise FlashcardSetNotFoundError(str(set_id))

        summary = FlashcardSetSummary.model_validate(updated)
        await self.session.commit()
        logger.info("flashcard_set_updated", user_id=user_id, set_id=str(set_id))
        return summary

    async def delete_set(self, user_id: str, set_id: UUID) -> None:
        """
        Delete a set and, by cascade, its cards.

        Raises:
            FlashcardSetNotFoundError: Set missing or owned by another user
        """
        stmt = (
            delete(FlashcardSet)
            .where(FlashcardSet.id == set_id, FlashcardSet.user_id == user_id)
            .returning(FlashcardSet.id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.scalar_one_or_none() is None:
            await self.session.rollback()
            raise FlashcardSetNotFoundError(str(set_id))

        await self.session.commit()
        logger.info("flashcard_set_deleted", user_id=user_id, set_id=str(set_id))

    async def review_card(self, user_id: str, flashcard_id: UUID, correct: bool) -> FlashcardItem:
        """
        Record one review of a card.

        Raises:
            FlashcardNotFoundError: Card missing or owned by another user
        """
        owned_sets = select(FlashcardSet.id).where(FlashcardSet.user_id == user_id)
        stmt = (
            update(Flashcard)
            .where(Flashcard.id == flashcard_id, Flashcard.set_id.in_(owned_sets))
            .values(
                times_reviewed=Flashcard.times_reviewed + 1,
                times_correct=Flashcard.times_correct + (1 if correct else 0),
                last_reviewed_at=_utc_now(),
            )
            .returning(Flashcard)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        card = result.scalar_one_or_none()
        if card is None:
            await self.session.rollback()
            raise FlashcardNotFoundError(str(flashcard_id))

        item = FlashcardItem.model_validate(card)
        await self.session.commit()
        return item

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _delete_set_row(self, set_id: UUID) -> None:
        """Compensate a half-written generation."""
        await self.session.execute(delete(FlashcardSet).where(FlashcardSet.id == set_id))
        await self.session.commit()
        logger.info("flashcard_set_rolled_back", set_id=str(set_id))
