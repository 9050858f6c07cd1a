"""
Flashcard API Routes - generation, set management and reviews.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from studycards.api.dependencies import get_current_user, get_flashcard_generator
from studycards.db.session import get_db
from studycards.models.api import (
    FlashcardItem,
    FlashcardSetDetail,
    FlashcardSetPage,
    FlashcardSetSummary,
    GenerateFlashcardsRequest,
    GenerateFlashcardsResponse,
    ReviewFlashcardRequest,
    SortField,
    SortOrder,
    SuccessEnvelope,
    UpdateFlashcardSetRequest,
)
from studycards.models.domain import UserIdentity
from studycards.observability.logging import log_context
from studycards.observability.tracing import trace_operation
from studycards.services.flashcard_generator import FlashcardGenerator
from studycards.services.flashcards import FlashcardService

router = APIRouter(prefix="/api/flashcards")


@router.post("/generate", response_model=SuccessEnvelope[GenerateFlashcardsResponse])
async def generate_flashcards(
    body: GenerateFlashcardsRequest,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    generator: FlashcardGenerator = Depends(get_flashcard_generator),
) -> SuccessEnvelope[GenerateFlashcardsResponse]:
    """Generate a flashcard set from notes; consumes monthly quota."""
    service = FlashcardService(db, generator=generator)
    with (
        log_context(user_id=user.user_id),
        trace_operation("flashcards.generate", user_id=user.user_id),
    ):
        result = await service.generate_set(user, body)
    return SuccessEnvelope(data=result)


@router.get("/sets", response_model=FlashcardSetPage)
async def list_flashcard_sets(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: SortField = Query(SortField.CREATED_AT),
    sort_order: SortOrder = Query(SortOrder.DESC),
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> FlashcardSetPage:
    sets, pagination = await FlashcardService(db).list_sets(
        user.user_id, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order
    )
    return FlashcardSetPage(data=sets, pagination=pagination)


@router.get("/sets/{set_id}", response_model=SuccessEnvelope[FlashcardSetDetail])
async def get_flashcard_set(
    set_id: UUID,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SuccessEnvelope[FlashcardSetDetail]:
    detail = await FlashcardService(db).get_set(user.user_id, set_id)
    return SuccessEnvelope(data=detail)


@router.put("/sets/{set_id}", response_model=SuccessEnvelope[FlashcardSetSummary])
async def update_flashcard_set(
    set_id: UUID,
    body: UpdateFlashcardSetRequest,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SuccessEnvelope[FlashcardSetSummary]:
    summary = await FlashcardService(db).update_set(user.user_id, set_id, body)
    return SuccessEnvelope(data=summary)


@router.delete("/sets/{set_id}", response_model=SuccessEnvelope[None])
async def delete_flashcard_set(
    set_id: UUID,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SuccessEnvelope[None]:
    """Delete a set and its cards."""
    await FlashcardService(db).delete_set(user.user_id, set_id)
    return SuccessEnvelope(data=None)


@router.post("/{flashcard_id}/review", response_model=SuccessEnvelope[FlashcardItem])
async def review_flashcard(
    flashcard_id: UUID,
    body: ReviewFlashcardRequest,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SuccessEnvelope[FlashcardItem]:
    """Record whether the caller answered a card correctly."""
    card = await FlashcardService(db).review_card(user.user_id, flashcard_id, body.correct)
    return SuccessEnvelope(data=card)
