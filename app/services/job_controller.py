"""Per-user categorization job state machine.

Each user owns one ``categorization_jobs`` row. Transitions are guarded updates
(``UPDATE ... WHERE status IN (<allowed sources>)``), so two concurrent starts for the same user
cannot both move the row to ``processing``, and a worker whose run was superseded cannot report
progress into somebody else's run.
"""

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.core.db import CategorizationJob
from app.core.exceptions import DEFAULT_ERROR_MESSAGES, AlreadyProcessingError, ErrorCode
from app.core.models import JobState, StartResponse
from app.core.settings import Settings
from app.core.utils import batch_count, get_logger, new_id, utcnow_iso
from app.services.repositories import TransactionRepository
from app.services.suggestion_store import SuggestionStore

logger = get_logger("ai-categorizer.jobs")

ALLOWED_SOURCES: dict[JobState, tuple[JobState, ...]] = {
    JobState.PROCESSING: (JobState.IDLE, JobState.COMPLETE, JobState.ERROR),
    JobState.ERROR: (JobState.PROCESSING,),
    JobState.COMPLETE: (JobState.PROCESSING,),
    JobState.IDLE: (JobState.IDLE, JobState.COMPLETE, JobState.ERROR),
}


class JobController:
    """Owns the categorization job rows and every transition between job states."""

    def __init__(self, session_factory: sessionmaker, settings: Settings) -> None:
        """Initialize the controller with a session factory and settings."""
        self.session_factory = session_factory
        self.settings = settings

    def get(self, session: Session, user_id: str) -> CategorizationJob | None:
        """Return the user's job row, if any."""
        return session.get(CategorizationJob, user_id)

    def _ensure_row(self, session: Session, user_id: str) -> CategorizationJob:
        job = self.get(session, user_id)
        if job is not None:
            return job
        job = CategorizationJob(user_id=user_id, status=str(JobState.IDLE), retry_skipped=True, updated_at=utcnow_iso())
        session.add(job)
        session.flush()
        return job

    def _transition(
        self,
        session: Session,
        user_id: str,
        target: JobState,
        expect_job_id: str | None = None,
        **values: object,
    ) -> bool:
        sources = [str(state) for state in ALLOWED_SOURCES[target]]
        stmt = update(CategorizationJob).where(
            CategorizationJob.user_id == user_id, CategorizationJob.status.in_(sources)
        )
        if expect_job_id is not None:
            stmt = stmt.where(CategorizationJob.job_id == expect_job_id)
        stmt = stmt.values(status=str(target), updated_at=utcnow_iso(), **values).execution_options(
            synchronize_session=False
        )
        return session.execute(stmt).rowcount == 1

    def start(self, user_id: str) -> StartResponse:
        """Start a fresh run, or resume after an error; rejects a user whose job is processing."""
        try:
            return self._start(user_id)
        except IntegrityError as exc:
            # the first start of this user raced another one that created the row
            raise AlreadyProcessingError(user_id) from exc

    def _start(self, user_id: str) -> StartResponse:
        with self.session_factory() as session, session.begin():
            job = self._ensure_row(session, user_id)
            if job.status == JobState.PROCESSING:
                raise AlreadyProcessingError(user_id)
            resuming = job.status == JobState.ERROR
            job_id = new_id()
            exclusions = SuggestionStore.run_exclusions(user_id, job_id, retry_skipped=not resuming)
            total = TransactionRepository(session).count_uncategorized(user_id, exclusions)
            if total == 0:
                if not self._transition(session, user_id, JobState.IDLE, **_cleared_error()):
                    raise AlreadyProcessingError(user_id)
                logger.info(f"Nothing to categorize for user {user_id}")
                return StartResponse(
                    job_id=None, status=JobState.IDLE, message="No uncategorized transactions to categorize"
                )
            started = self._transition(
                session,
                user_id,
                JobState.PROCESSING,
                job_id=job_id,
                retry_skipped=not resuming,
                total_transactions=total,
                processed_transactions=0,
                total_batches=batch_count(total, self.settings.batch_size),
                current_batch=0,
                started_at=utcnow_iso(),
                **_cleared_error(),
            )
            if not started:
                raise AlreadyProcessingError(user_id)
        verb = "resumed" if resuming else "started"
        logger.info(f"Categorization {verb} for user {user_id}: job_id={job_id}, transactions={total}")
        remaining = "remaining " if resuming else ""
        return StartResponse(
            job_id=job_id,
            status=JobState.PROCESSING,
            message=f"Categorization {verb} for {remaining}{total} transactions",
        )

    def advance(self, session: Session, user_id: str, job_id: str, processed: int) -> bool:
        """Record one completed batch; False when ``job_id`` is no longer the user's processing run."""
        stmt = (
            update(CategorizationJob)
            .where(
                CategorizationJob.user_id == user_id,
                CategorizationJob.job_id == job_id,
                CategorizationJob.status == str(JobState.PROCESSING),
            )
            .values(
                processed_transactions=CategorizationJob.processed_transactions + processed,
                current_batch=CategorizationJob.current_batch + 1,
                last_processed_at=utcnow_iso(),
                updated_at=utcnow_iso(),
            )
            .execution_options(synchronize_session=False)
        )
        return session.execute(stmt).rowcount == 1

    def complete(self, user_id: str, job_id: str) -> bool:
        """Finish a run whose batches are exhausted."""
        with self.session_factory() as session, session.begin():
            done = self._transition(
                session, user_id, JobState.COMPLETE, expect_job_id=job_id, last_processed_at=utcnow_iso()
            )
        if done:
            logger.info(f"Categorization complete for user {user_id}: job_id={job_id}")
        return done

    def fail(self, user_id: str, job_id: str, code: ErrorCode, message: str, *, retryable: bool) -> bool:
        """Stop a run and record its error; stored suggestions are left untouched."""
        with self.session_factory() as session, session.begin():
            failed = self._transition(
                session,
                user_id,
                JobState.ERROR,
                expect_job_id=job_id,
                error_code=str(code),
                error_message=message,
                error_retryable=retryable,
                error_timestamp=utcnow_iso(),
            )
        if failed:
            logger.warning(f"Categorization failed for user {user_id}: job_id={job_id}, code={code}, message={message}")
        return failed

    def recover_interrupted(self) -> int:
        """Move runs left ``processing`` by a previous process into a retryable error."""
        code = ErrorCode.JOB_INTERRUPTED
        with self.session_factory() as session, session.begin():
            stmt = (
                update(CategorizationJob)
                .where(CategorizationJob.status == str(JobState.PROCESSING))
                .values(
                    status=str(JobState.ERROR),
                    error_code=str(code),
                    error_message=DEFAULT_ERROR_MESSAGES[code],
                    error_retryable=True,
                    error_timestamp=utcnow_iso(),
                    updated_at=utcnow_iso(),
                )
                .execution_options(synchronize_session=False)
            )
            recovered = session.execute(stmt).rowcount
        if recovered:
            logger.warning(f"Marked {recovered} interrupted categorization job(s) as failed")
        return recovered

    def snapshot(self, user_id: str) -> CategorizationJob | None:
        """Read the user's job row in a short-lived session."""
        with self.session_factory() as session:
            return session.execute(
                select(CategorizationJob).where(CategorizationJob.user_id == user_id)
            ).scalar_one_or_none()


def _cleared_error() -> dict[str, None]:
    return {"error_code": None, "error_message": None, "error_retryable": None, "error_timestamp": None}
