"""
API Models - Pydantic models for request/response validation.

Business-rule validation (tier, amount bounds, currency allow-list) lives in
the services so each rule produces its own typed error; these models only
check shape.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, Literal, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, StrictBool

T = TypeVar("T")


class UserTier(str, Enum):
    """Entitlement tier."""

    FREE = "free"
    PREMIUM = "premium"


class PaymentStatus(str, Enum):
    """Local payment transaction status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# ============================================================================
# Envelope Models
# ============================================================================


class SuccessEnvelope(BaseModel, Generic[T]):
    """Uniform success response."""

    success: Literal[True] = True
    data: T


class ErrorEnvelope(BaseModel):
    """Uniform error response."""

    success: Literal[False] = False
    error: str
    code: str
    details: dict[str, Any] | None = None


# ============================================================================
# Usage Models
# ============================================================================


class UsageInfo(BaseModel):
    """Monthly generation counters."""

    generated_this_month: int
    monthly_limit: int
    remaining: int


class UsageResponse(BaseModel):
    """GET /api/user/usage response data."""

    usage: UsageInfo
    tier: UserTier
    subscription_expires_at: datetime | None = None


# ============================================================================
# Payment Models
# ============================================================================


class CreatePaymentRequest(BaseModel):
    """POST /api/payments/create request body."""

    tier: str = Field(..., max_length=32)
    amount: Decimal
    currency: str = Field("USD", min_length=1, max_length=10)


class CreatePaymentResponse(BaseModel):
    """POST /api/payments/create response data."""

    payment_url: str
    transaction_id: UUID


class ConfirmUpgradeRequest(BaseModel):
    """POST /api/user/upgrade request body."""

    transaction_id: UUID


class ConfirmUpgradeResponse(BaseModel):
    """POST /api/user/upgrade response data."""

    already_upgraded: bool
    message: str
    tier: UserTier
    subscription_expires_at: datetime | None = None


class CryptomusWebhookPayload(BaseModel):
    """
    Cryptomus payment notification body.

    Only the fields the reconciler reads are typed strictly; the raw body is
    kept as received for signature verification and audit.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str | None = None
    uuid: str = Field(..., min_length=1)
    order_id: str | None = None
    amount: str | None = None
    payment_amount: str | None = None
    payment_amount_usd: str | None = None
    merchant_amount: str | None = None
    commission: str | None = None
    is_final: bool | None = None
    status: str = Field(..., min_length=1)
    from_address: str | None = Field(None, alias="from")
    wallet_address_uuid: str | None = None
    network: str | None = None
    currency: str | None = None
    payer_currency: str | None = None
    additional_data: str | None = None
    txid: str | None = None
    sign: str = Field(..., min_length=1)


class WebhookAck(BaseModel):
    """Acknowledgement body the gateway expects."""

    state: int = 0


# ============================================================================
# Flashcard Models
# ============================================================================


class GenerateFlashcardsRequest(BaseModel):
    """POST /api/flashcards/generate request body."""

    title: str = Field("", max_length=255)
    description: str | None = Field(None, max_length=2000)
    notes: str = ""


class GeneratedFlashcard(BaseModel):
    """One flashcard as returned by the model. Strict: nothing is coerced."""

    model_config = ConfigDict(strict=True, extra="ignore")

    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)
    difficulty: int = Field(1, ge=1, le=5)


class FlashcardItem(BaseModel):
    """Flashcard in API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    question: str
    answer: str
    difficulty: int
    times_reviewed: int
    times_correct: int
    last_reviewed_at: datetime | None = None
    created_at: datetime


class FlashcardSetSummary(BaseModel):
    """Flashcard set without its cards."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str | None = None
    flashcard_count: int
    created_at: datetime
    updated_at: datetime


class FlashcardSetDetail(FlashcardSetSummary):
    """Flashcard set with notes and cards."""

    original_notes: str
    flashcards: list[FlashcardItem] = Field(default_factory=list)


class GenerateFlashcardsResponse(BaseModel):
    """POST /api/flashcards/generate response data."""

    flashcard_set: FlashcardSetDetail
    usage: UsageInfo


class UpdateFlashcardSetRequest(BaseModel):
    """PUT /api/flashcards/sets/{id} request body."""

    title: str = Field("", max_length=255)
    description: str | None = Field(None, max_length=2000)


class ReviewFlashcardRequest(BaseModel):
    """POST /api/flashcards/{id}/review request body."""

    correct: StrictBool


class SortField(str, Enum):
    """Allowed sort columns for set listings."""

    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    TITLE = "title"


class SortOrder(str, Enum):
    """Sort direction."""

    ASC = "asc"
    DESC = "desc"


class Pagination(BaseModel):
    """Pagination block for list responses."""

    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_previous: bool


class FlashcardSetPage(BaseModel):
    """GET /api/flashcards/sets response body (envelope plus pagination)."""

    success: Literal[True] = True
    data: list[FlashcardSetSummary]
    pagination: Pagination


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    version: str
