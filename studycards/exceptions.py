"""
Exception Classes - Strongly typed exception hierarchy.

Every exception carries an ErrorCategory and a stable machine-readable code,
so callers branch on type or category instead of matching messages.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum


class ErrorCategory(str, Enum):
    """Failure category used to choose the HTTP status at the API boundary."""

    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    SIGNATURE = "signature"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    QUOTA = "quota"
    UPSTREAM_RATE_LIMIT = "upstream_rate_limit"
    UPSTREAM = "upstream"
    GATEWAY = "gateway"
    INTERNAL = "internal"


class StudyCardsError(Exception):
    """Base exception for all application errors."""

    category: ErrorCategory = ErrorCategory.INTERNAL
    code: str = "internal_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# ============================================================================
# Validation Errors (client-caused, never retried)
# ============================================================================


class ValidationError(StudyCardsError):
    """Raised when a request is semantically invalid."""

    category = ErrorCategory.VALIDATION
    code = "validation_error"


class InvalidTierError(ValidationError):
    """Raised when an unsupported tier is requested."""

    code = "invalid_tier"

    def __init__(self, tier: str) -> None:
        self.tier = tier
        super().__init__("Invalid tier specified")


class InvalidAmountError(ValidationError):
    """Raised when a payment amount is outside (0, max]."""

    code = "invalid_amount"

    def __init__(self, amount: Decimal, maximum: Decimal) -> None:
        self.amount = amount
        self.maximum = maximum
        super().__init__(f"Invalid amount: must be greater than 0 and at most {maximum}")


class UnsupportedCurrencyError(ValidationError):
    """Raised when the requested currency is not on the allow-list."""

    code = "unsupported_currency"

    def __init__(self, currency: str, supported: list[str]) -> None:
        self.currency = currency
        self.supported = supported
        super().__init__(
            f"Unsupported currency: {currency}. Supported: {', '.join(supported)}"
        )


class AlreadySubscribedError(ValidationError):
    """Raised when a user with an active premium subscription tries to pay again."""

    code = "already_subscribed"

    def __init__(self, user_id: str, expires_at: datetime | None) -> None:
        self.user_id = user_id
        self.expires_at = expires_at
        super().__init__("You already have an active premium subscription")


class PendingPaymentExistsError(ValidationError):
    """Raised when a recent pending transaction already exists for the user."""

    code = "payment_pending"

    def __init__(self, transaction_id: str, window_minutes: int) -> None:
        self.transaction_id = transaction_id
        self.window_minutes = window_minutes
        super().__init__(
            "A payment is already in progress. "
            f"Complete it or try again in {window_minutes} minutes"
        )


# ============================================================================
# Authentication / Signature Errors
# ============================================================================


class AuthenticationError(StudyCardsError):
    """Raised when the caller identity cannot be resolved."""

    category = ErrorCategory.AUTHENTICATION
    code = "unauthorized"

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class WebhookVerificationError(StudyCardsError):
    """Raised when webhook signature verification fails."""

    category = ErrorCategory.SIGNATURE
    code = "invalid_signature"

    def __init__(self, message: str = "Invalid signature") -> None:
        super().__init__(message)


# ============================================================================
# Not Found Errors (always scoped by owner)
# ============================================================================


class ResourceNotFoundError(StudyCardsError):
    """Raised when an owned resource does not exist."""

    category = ErrorCategory.NOT_FOUND
    code = "not_found"

    def __init__(self, resource: str, resource_id: str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found")


class TransactionNotFoundError(ResourceNotFoundError):
    """Raised when a payment transaction does not exist."""

    code = "transaction_not_found"

    def __init__(self, reference: str) -> None:
        super().__init__("Transaction", reference)


class FlashcardSetNotFoundError(ResourceNotFoundError):
    """Raised when a flashcard set does not exist for the caller."""

    code = "flashcard_set_not_found"

    def __init__(self, set_id: str) -> None:
        super().__init__("Flashcard set", set_id)


class FlashcardNotFoundError(ResourceNotFoundError):
    """Raised when a flashcard does not exist for the caller."""

    code = "flashcard_not_found"

    def __init__(self, flashcard_id: str) -> None:
        super().__init__("Flashcard", flashcard_id)


class UserNotFoundError(ResourceNotFoundError):
    """Raised when a user record is missing."""

    code = "user_not_found"

    def __init__(self, user_id: str) -> None:
        super().__init__("User", user_id)


# ============================================================================
# Quota / Conflict
# ============================================================================


class QuotaExceededError(StudyCardsError):
    """Raised when the monthly generation quota is exhausted."""

    category = ErrorCategory.QUOTA
    code = "quota_exceeded"

    def __init__(self, generated_this_month: int, monthly_limit: int) -> None:
        self.generated_this_month = generated_this_month
        self.monthly_limit = monthly_limit
        super().__init__(
            "Monthly flashcard limit reached. Upgrade to premium for more generations!"
        )


class PaymentNotConfirmedError(StudyCardsError):
    """Raised when a client confirmation arrives before the gateway reports payment."""

    category = ErrorCategory.CONFLICT
    code = "payment_not_confirmed"

    def __init__(self, transaction_id: str, status: str) -> None:
        self.transaction_id = transaction_id
        self.status = status
        super().__init__(f"Payment has not been confirmed yet (status: {status})")


class SubscriptionLapsedError(StudyCardsError):
    """Raised when confirming a completed purchase whose premium period has ended."""

    category = ErrorCategory.CONFLICT
    code = "subscription_expired"

    def __init__(self, transaction_id: str, expired_at: datetime) -> None:
        self.transaction_id = transaction_id
        self.expired_at = expired_at
        super().__init__("The premium period for this payment has already ended")


# ============================================================================
# Payment Gateway Errors
# ============================================================================


class PaymentGatewayError(StudyCardsError):
    """Raised when a payment gateway call fails."""

    category = ErrorCategory.GATEWAY
    code = "payment_gateway_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(f"Payment gateway error: {message}")


class GatewayConfigurationError(StudyCardsError):
    """Raised when the payment gateway credentials are missing."""

    category = ErrorCategory.GATEWAY
    code = "gateway_not_configured"

    def __init__(self, message: str = "Payment gateway is not configured") -> None:
        super().__init__(message)


# ============================================================================
# LLM Provider Errors
# ============================================================================


class LLMProviderError(StudyCardsError):
    """Raised when the LLM provider call fails."""

    category = ErrorCategory.UPSTREAM
    code = "llm_provider_error"

    def __init__(self, message: str, model: str | None = None, status_code: int | None = None) -> None:
        self.model = model
        self.status_code = status_code
        super().__init__(message)


class ModelUnavailableError(LLMProviderError):
    """Raised when the requested model is retired or decommissioned."""

    code = "llm_model_unavailable"


class ProviderRateLimitError(LLMProviderError):
    """Raised when the LLM provider rate limits the request."""

    category = ErrorCategory.UPSTREAM_RATE_LIMIT
    code = "llm_rate_limited"


class ProviderAuthenticationError(LLMProviderError):
    """Raised when the LLM provider rejects the API key."""

    code = "llm_auth_failed"


class InvalidAIOutputError(StudyCardsError):
    """Raised when the model response is not a valid flashcard array."""

    category = ErrorCategory.UPSTREAM
    code = "invalid_ai_output"

    def __init__(self, message: str) -> None:
        super().__init__(f"Invalid AI output: {message}")


# ============================================================================
# Persistence Errors
# ============================================================================


class WriteVerificationError(StudyCardsError):
    """Raised when a database write cannot be verified."""

    code = "write_verification_failed"

    def __init__(self, message: str) -> None:
        super().__init__(f"Write verification failed: {message}")
