"""Tests for the per-user job state machine."""

import pytest
from sqlalchemy.orm import sessionmaker

from app.core.exceptions import AlreadyProcessingError, ErrorCode
from app.core.models import JobState, NewCategory, RuleMatch, TransactionRef
from app.core.settings import Settings
from app.services.job_controller import JobController
from app.services.suggestion_store import SuggestionStore

from conftest import USER_ID, seed_transactions


def test_start_moves_idle_job_to_processing(session_factory: sessionmaker, settings: Settings) -> None:
    """Starting computes totals from the uncategorized set."""
    seed_transactions(session_factory, 158)
    controller = JobController(session_factory, settings)
    result = controller.start(USER_ID)
    job = controller.snapshot(USER_ID)
    if result.status != JobState.PROCESSING or not result.job_id:
        msg = f"Expected a processing job with an id, got {result}"
        raise AssertionError(msg)
    expected = (158, 0, 4, 0)
    actual = (job.total_transactions, job.processed_transactions, job.total_batches, job.current_batch)
    if actual != expected:
        msg = f"Expected totals {expected}, got {actual}"
        raise AssertionError(msg)


def test_second_start_is_rejected_while_processing(session_factory: sessionmaker, settings: Settings) -> None:
    """At most one processing job per user."""
    seed_transactions(session_factory, 10)
    controller = JobController(session_factory, settings)
    first = controller.start(USER_ID)
    with pytest.raises(AlreadyProcessingError):
        controller.start(USER_ID)
    job = controller.snapshot(USER_ID)
    if job.job_id != first.job_id:
        msg = "The rejected start must not replace the running job"
        raise AssertionError(msg)


def test_users_do_not_block_each_other(session_factory: sessionmaker, settings: Settings) -> None:
    """Job state is keyed per user."""
    seed_transactions(session_factory, 5)
    seed_transactions(session_factory, 5, user_id="user-2")
    controller = JobController(session_factory, settings)
    controller.start(USER_ID)
    other = controller.start("user-2")
    if other.status != JobState.PROCESSING:
        msg = f"Expected user-2 to start independently, got {other}"
        raise AssertionError(msg)


def test_start_with_nothing_to_do_stays_idle(session_factory: sessionmaker, settings: Settings) -> None:
    """No uncategorized transactions means no job."""
    controller = JobController(session_factory, settings)
    result = controller.start(USER_ID)
    if result.status != JobState.IDLE or result.job_id is not None:
        msg = f"Expected an idle no-op, got {result}"
        raise AssertionError(msg)


def test_fail_and_retry_resumes_without_skipped(session_factory: sessionmaker, settings: Settings) -> None:
    """A retry after an error excludes claimed and skipped transactions and clears the error."""
    ids = seed_transactions(session_factory, 10)
    controller = JobController(session_factory, settings)
    first = controller.start(USER_ID)
    with session_factory() as session, session.begin():
        store = SuggestionStore(session)
        refs = [TransactionRef(id=txn_id, description="X", amount=-1, date="2025-01-10") for txn_id in ids[:3]]
        store.append_skipped(USER_ID, first.job_id, refs[0], "unknown")
        store.append(
            USER_ID, first.job_id, NewCategory(new_name="X", new_icon="folder", new_color="#000"),
            RuleMatch(keyword="X"), refs[1:],
        )
    failed = controller.fail(USER_ID, first.job_id, ErrorCode.AI_RATE_LIMITED, "slow down", retryable=True)
    job = controller.snapshot(USER_ID)
    if not failed or job.status != JobState.ERROR or job.error_code != ErrorCode.AI_RATE_LIMITED:
        msg = f"Expected an AI_RATE_LIMITED error, got {job.status} / {job.error_code}"
        raise AssertionError(msg)

    retry = controller.start(USER_ID)
    job = controller.snapshot(USER_ID)
    if retry.status != JobState.PROCESSING or job.total_transactions != 7:
        msg = f"Expected the retry to cover the 7 remaining transactions, got {job.total_transactions}"
        raise AssertionError(msg)
    if job.retry_skipped or job.error_code is not None:
        msg = "A resumed run must not re-attempt skipped transactions and must clear the last error"
        raise AssertionError(msg)
    if "remaining" not in retry.message:
        msg = f"Expected a resume message, got {retry.message!r}"
        raise AssertionError(msg)


def test_fresh_start_reattempts_skipped(session_factory: sessionmaker, settings: Settings) -> None:
    """After a completed run, a new start includes previously skipped transactions."""
    ids = seed_transactions(session_factory, 4)
    controller = JobController(session_factory, settings)
    first = controller.start(USER_ID)
    with session_factory() as session, session.begin():
        ref = TransactionRef(id=ids[0], description="X", amount=-1, date="2025-01-10")
        SuggestionStore(session).append_skipped(USER_ID, first.job_id, ref, "unknown")
    controller.complete(USER_ID, first.job_id)
    controller.start(USER_ID)
    job = controller.snapshot(USER_ID)
    if job.total_transactions != 4 or not job.retry_skipped:
        msg = f"Expected a fresh run over all 4 transactions, got {job.total_transactions}"
        raise AssertionError(msg)


def test_stale_job_id_cannot_transition(session_factory: sessionmaker, settings: Settings) -> None:
    """Reports from a superseded run are ignored."""
    seed_transactions(session_factory, 4)
    controller = JobController(session_factory, settings)
    controller.start(USER_ID)
    if controller.complete(USER_ID, "some-other-job"):
        msg = "A foreign job id must not complete the run"
        raise AssertionError(msg)
    with session_factory() as session, session.begin():
        advanced = controller.advance(session, USER_ID, "some-other-job", 4)
    if advanced:
        msg = "A foreign job id must not advance progress"
        raise AssertionError(msg)


def test_recover_interrupted_marks_processing_jobs_retryable(session_factory: sessionmaker, settings: Settings) -> None:
    """Jobs left processing by a dead process become retryable errors."""
    seed_transactions(session_factory, 4)
    controller = JobController(session_factory, settings)
    controller.start(USER_ID)
    recovered = controller.recover_interrupted()
    job = controller.snapshot(USER_ID)
    if recovered != 1 or job.status != JobState.ERROR:
        msg = f"Expected one recovered job in error, got {recovered} / {job.status}"
        raise AssertionError(msg)
    if job.error_code != ErrorCode.JOB_INTERRUPTED or not job.error_retryable:
        msg = f"Expected a retryable JOB_INTERRUPTED error, got {job.error_code}"
        raise AssertionError(msg)
    if controller.start(USER_ID).status != JobState.PROCESSING:
        msg = "Expected the interrupted job to be resumable"
        raise AssertionError(msg)


def test_each_start_records_its_own_job_id(session_factory: sessionmaker, settings: Settings) -> None:
    """The job row carries the id returned by start, and a later run gets a new one."""
    seed_transactions(session_factory, 4)
    controller = JobController(session_factory, settings)
    first = controller.start(USER_ID)
    if controller.snapshot(USER_ID).job_id != first.job_id:
        msg = f"Expected the job row to carry {first.job_id}"
        raise AssertionError(msg)
    if not controller.complete(USER_ID, first.job_id):
        msg = "The running job must complete with its own id"
        raise AssertionError(msg)
    second = controller.start(USER_ID)
    job = controller.snapshot(USER_ID)
    if second.status != JobState.PROCESSING or job.job_id != second.job_id or second.job_id == first.job_id:
        msg = f"Expected a new processing run, got {second} with stored id {job.job_id}"
        raise AssertionError(msg)
