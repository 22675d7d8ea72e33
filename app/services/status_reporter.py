"""Read-only projections of job and suggestion state for polling clients."""

from sqlalchemy.orm import sessionmaker

from app.core.db import CategorizationJob
from app.core.models import JobError, JobProgress, JobState, StatusResponse, SuggestionsResponse
from app.services.repositories import TransactionRepository
from app.services.suggestion_store import SuggestionStore


class StatusReporter:
    """Builds the status and suggestions snapshots; never touches the classifier."""

    def __init__(self, session_factory: sessionmaker) -> None:
        """Initialize the reporter with a session factory."""
        self.session_factory = session_factory

    def status(self, user_id: str) -> StatusResponse:
        """Return the status projection for ``user_id``."""
        with self.session_factory() as session:
            job = session.get(CategorizationJob, user_id)
            store = SuggestionStore(session)
            uncategorized = TransactionRepository(session).count_uncategorized(user_id)
            claimed = store.count_claimed(user_id)
            pending = store.count_pending(user_id)
            skipped = store.count_skipped(user_id)
        processing = job is not None and job.status == JobState.PROCESSING
        error = _job_error(job)
        progress = None
        if processing:
            progress = JobProgress(
                processed_transactions=job.processed_transactions,
                total_transactions=job.total_transactions,
                current_batch=job.current_batch,
                total_batches=job.total_batches,
            )
        return StatusResponse(
            uncategorized_count=max(uncategorized - claimed, 0),
            is_processing=processing,
            pending_suggestions_count=pending,
            skipped_count=skipped,
            last_processed_at=job.last_processed_at if job else None,
            has_error=error is not None,
            error=error,
            progress=progress,
        )

    def suggestions(self, user_id: str) -> SuggestionsResponse:
        """Return pending suggestions and skipped records; partial while the job is processing."""
        with self.session_factory() as session:
            job = session.get(CategorizationJob, user_id)
            suggestions, skipped = SuggestionStore(session).list_pending(user_id)
        return SuggestionsResponse(
            suggestions=suggestions,
            skipped_transactions=skipped,
            total_pending=len(suggestions),
            total_skipped=len(skipped),
            is_partial=job is not None and job.status == JobState.PROCESSING,
        )


def _job_error(job: CategorizationJob | None) -> JobError | None:
    if job is None or job.status != JobState.ERROR or not job.error_code:
        return None
    return JobError(
        code=job.error_code,
        message=job.error_message or "",
        retryable=bool(job.error_retryable),
        timestamp=job.error_timestamp or "",
    )
