"""FastAPI endpoints for the AI categorization engine.

This module defines the polling surface used by clients: starting (or retrying) a categorization
job, reading its status, listing suggestions while the job runs, and the review actions. It wires
together the job controller, the status reporter, the review service, and the background batch
scheduler.
"""

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from app.agents.base import BaseAgent
from app.api.dependencies import (
    get_classifier,
    get_job_controller,
    get_review_service,
    get_session_factory,
    get_settings,
    get_status_reporter,
    get_user_id,
)
from app.core.exceptions import (
    AlreadyProcessingError,
    CategoryNotFoundError,
    SuggestionAlreadyResolvedError,
    SuggestionNotFoundError,
)
from app.core.models import (
    ApproveOverrides,
    ApproveResponse,
    ClearResponse,
    JobState,
    RejectRequest,
    StartResponse,
    StatusResponse,
    SuggestionsResponse,
)
from app.core.settings import Settings
from app.core.utils import get_logger
from app.services.job_controller import JobController
from app.services.review_service import ReviewService
from app.services.status_reporter import StatusReporter
from app.services.transaction_import import import_transactions_csv
from app.workers.batch_scheduler import run_categorization_job

router = APIRouter()
logger = get_logger("ai-categorizer.api")

PREFIX = "/api/v1/ai/categorization"

NOT_FOUND_EXAMPLE = {"detail": {"code": "NotFound", "message": "Suggestion 'sugg-1' not found"}}
RESOLVED_EXAMPLE = {"detail": {"code": "AlreadyResolved", "message": "Suggestion 'sugg-1' is already approved"}}


@router.post(
    f"{PREFIX}/start",
    status_code=202,
    response_model=StartResponse,
    summary="Start or retry AI categorization",
    description=(
        "Start a background job that sends the user's uncategorized transactions to the AI classifier in "
        "fixed-size batches. After a failed run the same call resumes with the transactions that were not "
        "processed yet; suggestions saved by earlier batches are kept.\n\n"
        "**Response:**\n"
        "- 202 Accepted: `{ 'job_id': '<uuid>', 'status': 'processing', 'message': '...' }`.\n"
        "- 200 OK: `status: 'idle'` when there is nothing to categorize.\n"
        "- 409 Conflict: a job is already processing for this user."
    ),
    responses={
        202: {
            "description": "Job accepted.",
            "content": {
                "application/json": {
                    "example": {
                        "job_id": "123e4567-e89b-12d3-a456-426614174000",
                        "status": "processing",
                        "message": "Categorization started for 158 transactions",
                    }
                }
            },
        },
        409: {
            "description": "A job is already processing.",
            "content": {"application/json": {"example": {"detail": {"code": "AlreadyProcessing", "message": "..."}}}},
        },
    },
)
def start_categorization(
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    controller: JobController = Depends(get_job_controller),
    classifier: BaseAgent = Depends(get_classifier),
    session_factory: sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Start (or resume) the user's categorization job."""
    logger.info(f"Received start request: user_id={user_id}")
    try:
        result = controller.start(user_id)
    except AlreadyProcessingError as exc:
        logger.warning(f"Rejected start for user {user_id}: already processing")
        raise HTTPException(409, exc.to_detail()) from exc
    if result.status != JobState.PROCESSING:
        return JSONResponse(result.model_dump(mode="json"), status_code=200)
    background_tasks.add_task(run_categorization_job, user_id, result.job_id, classifier, session_factory, settings)
    logger.info(f"Background job started: job_id={result.job_id}")
    return JSONResponse(result.model_dump(mode="json"), status_code=202)


@router.get(
    f"{PREFIX}/status",
    response_model=StatusResponse,
    summary="Get categorization status",
    description=(
        "Cheap, idempotent snapshot for polling (every 2-5 seconds is enough). `progress` is present only "
        "while a job is processing; `error` carries the last job failure with `has_error=true`."
    ),
)
def get_status(
    user_id: str = Depends(get_user_id), reporter: StatusReporter = Depends(get_status_reporter)
) -> StatusResponse:
    """Get the status projection of the user's categorization job."""
    return reporter.status(user_id)


@router.get(
    f"{PREFIX}/suggestions",
    response_model=SuggestionsResponse,
    summary="List pending suggestions",
    description=(
        "Pending suggestions and skipped transactions. Suggestions from completed batches appear while the "
        "job is still running; `is_partial=true` means more may arrive."
    ),
)
def list_suggestions(
    user_id: str = Depends(get_user_id), reporter: StatusReporter = Depends(get_status_reporter)
) -> SuggestionsResponse:
    """List pending suggestions and skipped transactions."""
    return reporter.suggestions(user_id)


@router.post(
    f"{PREFIX}/suggestions/clear",
    response_model=ClearResponse,
    summary="Clear all pending suggestions",
    description="Delete every pending suggestion and skipped record. Approved and rejected history is kept.",
)
def clear_suggestions(
    user_id: str = Depends(get_user_id), review: ReviewService = Depends(get_review_service)
) -> ClearResponse:
    """Delete all pending suggestions and skipped records."""
    return review.clear_all(user_id)


@router.post(
    f"{PREFIX}/suggestions/{{suggestion_id}}/approve",
    response_model=ApproveResponse,
    summary="Approve a suggestion",
    description=(
        "Commit a pending suggestion: create the category if it is new, create or update the keyword rule, "
        "and categorize the affected transactions. The optional body edits the category or the match first."
    ),
    responses={
        404: {"description": "Suggestion not found.", "content": {"application/json": {"example": NOT_FOUND_EXAMPLE}}},
        409: {"description": "Already resolved.", "content": {"application/json": {"example": RESOLVED_EXAMPLE}}},
    },
)
def approve_suggestion(
    suggestion_id: str,
    overrides: ApproveOverrides | None = Body(default=None),
    user_id: str = Depends(get_user_id),
    review: ReviewService = Depends(get_review_service),
) -> ApproveResponse:
    """Approve a suggestion, optionally edited."""
    try:
        return review.approve(user_id, suggestion_id, overrides)
    except (SuggestionNotFoundError, CategoryNotFoundError) as exc:
        raise HTTPException(404, exc.to_detail()) from exc
    except SuggestionAlreadyResolvedError as exc:
        raise HTTPException(409, exc.to_detail()) from exc


@router.post(
    f"{PREFIX}/suggestions/{{suggestion_id}}/reject",
    summary="Reject a suggestion",
    description="Reject a pending suggestion. The optional reason is stored for classifier tuning only.",
    responses={
        200: {"content": {"application/json": {"example": {"status": "ok"}}}},
        404: {"description": "Suggestion not found.", "content": {"application/json": {"example": NOT_FOUND_EXAMPLE}}},
        409: {"description": "Already resolved.", "content": {"application/json": {"example": RESOLVED_EXAMPLE}}},
    },
)
def reject_suggestion(
    suggestion_id: str,
    body: RejectRequest | None = Body(default=None),
    user_id: str = Depends(get_user_id),
    review: ReviewService = Depends(get_review_service),
) -> dict:
    """Reject a suggestion."""
    try:
        review.reject(user_id, suggestion_id, body.reason if body else None)
    except SuggestionNotFoundError as exc:
        raise HTTPException(404, exc.to_detail()) from exc
    except SuggestionAlreadyResolvedError as exc:
        raise HTTPException(409, exc.to_detail()) from exc
    return {"status": "ok"}


@router.post(
    "/api/v1/transactions/import-csv",
    summary="Import uncategorized transactions from CSV",
    description=(
        "Load transactions into the store so they can be categorized. Columns: `date`, `description`, "
        "`amount` (currency units, negative for debits) and an optional `id`.\n\n"
        "- 200 OK: `{ 'imported': <count> }`\n"
        "- 400 Bad Request: not a CSV, or required columns missing."
    ),
)
def import_csv(
    file: UploadFile,
    user_id: str = Depends(get_user_id),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> dict:
    """Import a CSV of transactions for the current user."""
    logger.info(f"Received import request: filename={file.filename}")
    if not (file.filename or "").lower().endswith(".csv"):
        logger.warning(f"Rejected file (not CSV): {file.filename}")
        raise HTTPException(400, "Only CSV files accepted")
    try:
        imported = import_transactions_csv(session_factory, user_id, file.file.read())
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    return {"imported": imported}


@router.get(
    "/health",
    summary="Health check",
    description="Simple health check endpoint. Returns status ok.",
    response_description="Status ok.",
    responses={200: {"description": "API is healthy.", "content": {"application/json": {"example": {"status": "ok"}}}}},
)
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}
