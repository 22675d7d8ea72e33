"""Pydantic models for the AI categorization engine.

This module defines the payloads exchanged with polling clients (status, suggestions, review
actions) and with the classifier (batch input and grouped output). The suggestion category is a
discriminated union on ``type`` so consumers handle ``existing`` and ``new`` explicitly.
"""

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field


class JobState(StrEnum):
    """States of the per-user categorization job."""

    IDLE = "idle"
    PROCESSING = "processing"
    ERROR = "error"
    COMPLETE = "complete"


class SuggestionStatus(StrEnum):
    """Review states of a suggestion."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class MatchType(StrEnum):
    """How a rule keyword matches transaction descriptions."""

    CONTAINS = "contains"
    EXACT = "exact"


class TransactionRef(BaseModel):
    """A transaction as shown inside suggestions and sent to the classifier."""

    id: str
    description: str
    amount: int
    date: str


class ExistingCategory(BaseModel):
    """A suggestion pointing at a category the user already has."""

    type: Literal["existing"] = "existing"
    existing_id: str
    existing_name: str
    existing_icon: str
    existing_color: str


class NewCategory(BaseModel):
    """A suggestion proposing a category that does not exist yet."""

    type: Literal["new"] = "new"
    new_name: str
    new_icon: str
    new_color: str


SuggestedCategory = Annotated[ExistingCategory | NewCategory, Field(discriminator="type")]


class RuleMatch(BaseModel):
    """The textual pattern the classifier associated with a category."""

    type: MatchType = MatchType.CONTAINS
    keyword: str


class SuggestionOut(BaseModel):
    """A categorization suggestion as returned to polling clients."""

    id: str
    category: SuggestedCategory
    match: RuleMatch
    affected_transactions: list[TransactionRef]
    affected_count: int
    status: SuggestionStatus
    created_at: str


class SkippedTransactionOut(BaseModel):
    """A transaction the classifier could not categorize in the current run."""

    transaction_id: str
    description: str
    amount: int
    date: str
    reason: str


class JobProgress(BaseModel):
    """Progress counters, present only while a job is processing."""

    processed_transactions: int
    total_transactions: int
    current_batch: int
    total_batches: int


class JobError(BaseModel):
    """The last failure recorded on a job."""

    code: str
    message: str
    retryable: bool
    timestamp: str


class StatusResponse(BaseModel):
    """Status projection polled by clients."""

    uncategorized_count: int
    is_processing: bool
    pending_suggestions_count: int
    skipped_count: int
    last_processed_at: str | None = None
    has_error: bool
    error: JobError | None = None
    progress: JobProgress | None = None


class SuggestionsResponse(BaseModel):
    """Pending suggestions plus skipped records, flagged partial while the job runs."""

    suggestions: list[SuggestionOut]
    skipped_transactions: list[SkippedTransactionOut]
    total_pending: int
    total_skipped: int
    is_partial: bool


class StartResponse(BaseModel):
    """Result of a start (or retry) request."""

    job_id: str | None
    status: JobState
    message: str


class ApproveOverrides(BaseModel):
    """Edits applied to a suggestion before it is committed."""

    category_id: str | None = Field(default=None, description="Use this existing category instead")
    category_name: str | None = None
    category_icon: str | None = None
    category_color: str | None = None
    match_keyword: str | None = None
    match_type: MatchType | None = None


class ApproveResponse(BaseModel):
    """Outcome of approving a suggestion."""

    suggestion_id: str
    category_id: str
    category_name: str
    rule_id: str
    transactions_categorized: int
    is_new_category: bool


class RejectRequest(BaseModel):
    """Optional rejection reason, kept for classifier tuning."""

    reason: str | None = None


class ClearResponse(BaseModel):
    """Counts removed by clear-all."""

    status: str = "ok"
    cleared_suggestions: int
    cleared_skipped: int


class CategoryGuess(BaseModel):
    """The classifier's category proposal for a grouping."""

    existing_id: str | None = None
    name: str
    icon: str | None = None
    color: str | None = None


class ClassifierGrouping(BaseModel):
    """Transactions the classifier grouped under one keyword and category."""

    keyword: str
    match_type: MatchType = MatchType.CONTAINS
    category_guess: CategoryGuess
    transaction_ids: list[str]


class ClassifierSkip(BaseModel):
    """A transaction the classifier declined to categorize."""

    transaction_id: str
    reason: str = "Classifier could not categorize this transaction"


class ClassificationResult(BaseModel):
    """Output of one classifier call for one batch."""

    groupings: list[ClassifierGrouping] = Field(default_factory=list)
    skipped: list[ClassifierSkip] = Field(default_factory=list)


class CategoryRef(BaseModel):
    """An existing category offered to the classifier."""

    id: str
    name: str
    icon: str
    color: str
