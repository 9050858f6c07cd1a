"""
Tests for FlashcardService.

Unit tests for metered generation, owner-scoped reads and review counters.
"""

from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import make_result
from studycards.exceptions import (
    FlashcardNotFoundError,
    FlashcardSetNotFoundError,
    InvalidAIOutputError,
    QuotaExceededError,
    ValidationError,
)
from studycards.models.api import (
    GenerateFlashcardsRequest,
    GeneratedFlashcard,
    SortField,
    SortOrder,
    UpdateFlashcardSetRequest,
    UsageInfo,
    UserTier,
)
from studycards.models.domain import UsageSnapshot, UserIdentity
from studycards.services.flashcards import FlashcardService

NOTES = "Photosynthesis converts light energy into chemical energy stored in glucose."


def make_snapshot(generated: int = 3) -> UsageSnapshot:
    return UsageSnapshot(
        user_id="user-123",
        tier=UserTier.FREE,
        generated_this_month=generated,
        monthly_limit=10,
        subscription_expires_at=None,
    )


def make_cards(count: int) -> list[GeneratedFlashcard]:
    return [
        GeneratedFlashcard(question=f"Question {i}?", answer=f"Answer {i}", difficulty=2)
        for i in range(count)
    ]


def make_service(
    db_session: AsyncMock, cards: list[GeneratedFlashcard] | None = None
) -> tuple[FlashcardService, AsyncMock, AsyncMock]:
    entitlements = AsyncMock()
    entitlements.ensure_quota.return_value = make_snapshot()
    entitlements.record_generation.return_value = UsageInfo(
        generated_this_month=3 + len(cards or []), monthly_limit=10, remaining=7 - len(cards or [])
    )
    generator = AsyncMock()
    generator.generate.return_value = cards if cards is not None else make_cards(3)
    service = FlashcardService(db_session, entitlements=entitlements, generator=generator)
    return service, entitlements, generator


def set_row(**overrides: object) -> SimpleNamespace:
    now = datetime.now(UTC)
    values: dict[str, object] = {
        "id": uuid4(),
        "title": "Biology",
        "description": None,
        "flashcard_count": 2,
        "created_at": now,
        "updated_at": now,
        "original_notes": NOTES,
        "flashcards": [],
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def card_row(**overrides: object) -> SimpleNamespace:
    values: dict[str, object] = {
        "id": uuid4(),
        "question": "What is ATP?",
        "answer": "Energy currency",
        "difficulty": 2,
        "times_reviewed": 1,
        "times_correct": 1,
        "last_reviewed_at": datetime.now(UTC),
        "created_at": datetime.now(UTC),
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestGenerateSet:
    """Tests for metered generation."""

    @pytest.mark.parametrize(
        ("title", "notes"),
        [("", NOTES), ("   ", NOTES), ("Biology", "too short"), ("Biology", " " * 80)],
    )
    async def test_invalid_input_rejected_before_quota(
        self, db_session: AsyncMock, identity: UserIdentity, title: str, notes: str
    ) -> None:
        service, entitlements, generator = make_service(db_session)

        with pytest.raises(ValidationError):
            await service.generate_set(
                identity, GenerateFlashcardsRequest(title=title, notes=notes)
            )

        entitlements.ensure_quota.assert_not_awaited()
        generator.generate.assert_not_awaited()

    async def test_quota_checked_before_model_call(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        service, entitlements, generator = make_service(db_session)
        entitlements.ensure_quota.side_effect = QuotaExceededError(10, 10)

        with pytest.raises(QuotaExceededError):
            await service.generate_set(
                identity, GenerateFlashcardsRequest(title="Biology", notes=NOTES)
            )

        generator.generate.assert_not_awaited()
        db_session.add.assert_not_called()

    async def test_successful_generation_stores_and_counts_cards(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        service, entitlements, generator = make_service(db_session, make_cards(4))

        response = await service.generate_set(
            identity,
            GenerateFlashcardsRequest(title=" Biology ", notes=NOTES, description="Unit 1"),
        )

        generator.generate.assert_awaited_once_with("Biology", NOTES, "Unit 1")
        flashcard_set = db_session.add.call_args[0][0]
        assert flashcard_set.user_id == "user-123"
        assert flashcard_set.flashcard_count == 4
        rows = db_session.add_all.call_args[0][0]
        assert len(rows) == 4
        assert all(row.set_id == flashcard_set.id for row in rows)
        entitlements.record_generation.assert_awaited_once_with("user-123", 4)
        assert response.flashcard_set.id == flashcard_set.id
        assert len(response.flashcard_set.flashcards) == 4
        assert response.flashcard_set.flashcards[0].times_reviewed == 0
        assert response.usage.generated_this_month == 7

    async def test_model_failure_leaves_counter_untouched(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        service, entitlements, generator = make_service(db_session)
        generator.generate.side_effect = InvalidAIOutputError("not json")

        with pytest.raises(InvalidAIOutputError):
            await service.generate_set(
                identity, GenerateFlashcardsRequest(title="Biology", notes=NOTES)
            )

        db_session.add.assert_not_called()
        entitlements.record_generation.assert_not_awaited()

    async def test_card_insert_failure_removes_set(
        self, db_session: AsyncMock, identity: UserIdentity
    ) -> None:
        service, entitlements, _ = make_service(db_session)
        db_session.flush = AsyncMock(
            side_effect=[None, IntegrityError("insert", {}, Exception("constraint"))]
        )

        with pytest.raises(IntegrityError):
            await service.generate_set(
                identity, GenerateFlashcardsRequest(title="Biology", notes=NOTES)
            )

        db_session.rollback.assert_awaited_once()
        delete_stmt = db_session.execute.call_args[0][0]
        assert delete_stmt.table.name == "flashcard_sets"
        entitlements.record_generation.assert_not_awaited()


class TestListSets:
    """Tests for paginated listing."""

    async def test_pagination_block(self, db_session: AsyncMock) -> None:
        rows = [set_row(title="A"), set_row(title="B")]
        db_session.execute = AsyncMock(
            side_effect=[make_result(scalar=12), make_result(scalars=rows)]
        )
        service = FlashcardService(db_session, entitlements=AsyncMock())

        sets, pagination = await service.list_sets("user-123", page=2, limit=5)

        assert [s.title for s in sets] == ["A", "B"]
        assert pagination.total == 12
        assert pagination.total_pages == 3
        assert pagination.has_next is True
        assert pagination.has_previous is True

    async def test_empty_listing(self, db_session: AsyncMock) -> None:
        db_session.execute = AsyncMock(side_effect=[make_result(scalar=0), make_result()])
        service = FlashcardService(db_session, entitlements=AsyncMock())

        sets, pagination = await service.list_sets("user-123")

        assert sets == []
        assert pagination.total_pages == 0
        assert pagination.has_next is False
        assert pagination.has_previous is False

    async def test_query_is_scoped_and_ordered(self, db_session: AsyncMock) -> None:
        db_session.execute = AsyncMock(side_effect=[make_result(scalar=0), make_result()])
        service = FlashcardService(db_session, entitlements=AsyncMock())

        await service.list_sets(
            "user-123", page=3, limit=10, sort_by=SortField.TITLE, sort_order=SortOrder.ASC
        )

        sql = str(db_session.execute.call_args_list[1][0][0])
        assert "flashcard_sets.user_id = :user_id_1" in sql
        assert "ORDER BY flashcard_sets.title ASC" in sql


class TestSetOwnership:
    """Another user's set behaves exactly like a missing one."""

    async def test_get_set_returns_cards(self, db_session: AsyncMock) -> None:
        row = set_row(flashcards=[card_row(), card_row()])
        db_session.execute = AsyncMock(return_value=make_result(scalar=row))
        service = FlashcardService(db_session, entitlements=AsyncMock())

        detail = await service.get_set("user-123", row.id)

        assert detail.id == row.id
        assert len(detail.flashcards) == 2
        assert detail.original_notes == NOTES

    async def test_get_foreign_set_is_not_found(self, db_session: AsyncMock) -> None:
        service = FlashcardService(db_session, entitlements=AsyncMock())

        with pytest.raises(FlashcardSetNotFoundError):
            await service.get_set("user-999", uuid4())

    async def test_update_renames_set(self, db_session: AsyncMock) -> None:
        row = set_row(title="Renamed")
        db_session.execute = AsyncMock(return_value=make_result(scalar=row))
        service = FlashcardService(db_session, entitlements=AsyncMock())

        summary = await service.update_set(
            "user-123", row.id, UpdateFlashcardSetRequest(title=" Renamed ")
        )

        assert summary.title == "Renamed"
        db_session.commit.assert_awaited_once()

    async def test_update_requires_title(self, db_session: AsyncMock) -> None:
        service = FlashcardService(db_session, entitlements=AsyncMock())

        with pytest.raises(ValidationError):
            await service.update_set("user-123", uuid4(), UpdateFlashcardSetRequest(title=" "))

        db_session.execute.assert_not_awaited()

    async def test_update_foreign_set_is_not_found(self, db_session: AsyncMock) -> None:
        service = FlashcardService(db_session, entitlements=AsyncMock())

        with pytest.raises(FlashcardSetNotFoundError):
            await service.update_set("user-999", uuid4(), UpdateFlashcardSetRequest(title="X"))

        db_session.commit.assert_not_awaited()

    async def test_delete_set(self, db_session: AsyncMock) -> None:
        set_id = uuid4()
        db_session.execute = AsyncMock(return_value=make_result(scalar=set_id))
        service = FlashcardService(db_session, entitlements=AsyncMock())

        await service.delete_set("user-123", set_id)

        db_session.commit.assert_awaited_once()

    async def test_delete_missing_set_is_not_found(self, db_session: AsyncMock) -> None:
        service = FlashcardService(db_session, entitlements=AsyncMock())

        with pytest.raises(FlashcardSetNotFoundError):
            await service.delete_set("user-123", uuid4())

        db_session.commit.assert_not_awaited()


class TestReviewCard:
    async def test_review_returns_updated_counters(self, db_session: AsyncMock) -> None:
        card = card_row(times_reviewed=4, times_correct=3)
        db_session.execute = AsyncMock(return_value=make_result(scalar=card))
        service = FlashcardService(db_session, entitlements=AsyncMock())

        item = await service.review_card("user-123", card.id, correct=True)

        assert item.times_reviewed == 4
        assert item.times_correct == 3
        db_session.commit.assert_awaited_once()

    async def test_foreign_card_is_not_found(self, db_session: AsyncMock) -> None:
        service = FlashcardService(db_session, entitlements=AsyncMock())

        with pytest.raises(FlashcardNotFoundError):
            await service.review_card("user-999", uuid4(), correct=True)

        db_session.rollback.assert_awaited_once()
