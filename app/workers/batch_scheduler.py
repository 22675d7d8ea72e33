"""Background batch scheduling for AI categorization runs."""

import concurrent.futures

from sqlalchemy.orm import Session, sessionmaker

from app.agents.base import BaseAgent
from app.core.exceptions import ClassifierError, ErrorCode
from app.core.models import (
    CategoryGuess,
    CategoryRef,
    ClassificationResult,
    ExistingCategory,
    NewCategory,
    RuleMatch,
    TransactionRef,
)
from app.core.settings import Settings
from app.core.utils import get_logger
from app.services.job_controller import JobController
from app.services.repositories import CategoryRepository, TransactionRepository
from app.services.suggestion_store import SuggestionStore

logger = get_logger("ai-categorizer.worker")

REASON_NOT_RETURNED = "The classifier did not return this transaction"
REASON_EMPTY_KEYWORD = "The classifier grouped this transaction without a keyword"


def resolve_category(
    guess: CategoryGuess, categories: list[CategoryRef], settings: Settings
) -> ExistingCategory | NewCategory:
    """Turn the classifier's guess into an existing-category reference when one matches."""
    by_id = {category.id: category for category in categories}
    by_name = {category.name.strip().lower(): category for category in categories}
    match = by_id.get(guess.existing_id or "") or by_name.get(guess.name.strip().lower())
    if match is not None:
        return ExistingCategory(
            existing_id=match.id,
            existing_name=match.name,
            existing_icon=match.icon,
            existing_color=match.color,
        )
    return NewCategory(
        new_name=guess.name.strip(),
        new_icon=guess.icon or settings.default_new_category_icon,
        new_color=guess.color or settings.default_new_category_color,
    )


class BatchScheduler:
    """Runs one user's categorization job as a strictly sequential series of classifier batches."""

    def __init__(
        self,
        session_factory: sessionmaker,
        classifier: BaseAgent,
        settings: Settings,
        controller: JobController | None = None,
    ) -> None:
        """Initialize the scheduler with storage, the classifier, and the job controller."""
        self.session_factory = session_factory
        self.classifier = classifier
        self.settings = settings
        self.controller = controller or JobController(session_factory, settings)

    def run(self, user_id: str, job_id: str) -> None:
        """Process batches until the eligible set is empty, then complete; stop at the first failure."""
        job = self.controller.snapshot(user_id)
        if job is None or job.job_id != job_id or job.status != "processing":
            logger.warning(f"Job {job_id} for user {user_id} is not processing; nothing to run")
            return
        logger.info(
            f"Starting job {job_id} for user {user_id}: "
            f"{job.total_transactions} transactions in {job.total_batches} batch(es)"
        )
        exclusions = SuggestionStore.run_exclusions(user_id, job_id, retry_skipped=job.retry_skipped)
        # Reviews may release claims mid-run; the cursor keeps released rows from being re-sent.
        cursor: TransactionRef | None = None
        remaining = job.total_transactions
        try:
            for batch_number in range(1, job.total_batches + 1):
                with self.session_factory() as session:
                    categories = [
                        CategoryRef(id=c.id, name=c.name, icon=c.icon, color=c.color)
                        for c in CategoryRepository(session).list_categories(user_id)
                    ]
                    batch = TransactionRepository(session).fetch_uncategorized_batch(
                        user_id, 0, min(self.settings.batch_size, remaining), exclusions, after=cursor
                    )
                if not batch:
                    logger.info(f"[BATCH {batch_number}/{job.total_batches}] No transactions left")
                    break
                cursor = batch[-1]
                remaining -= len(batch)
                logger.info(f"[BATCH {batch_number}/{job.total_batches}] Classifying {len(batch)} transactions")
                result = self._classify(batch, categories)
                if not self._store_batch(user_id, job_id, batch, result, categories):
                    logger.warning(f"Job {job_id} was superseded; stopping after batch {batch_number - 1}")
                    return
            self.controller.complete(user_id, job_id)
        except ClassifierError as exc:
            logger.warning(f"Classifier failed for job {job_id}: {exc.code} ({exc.message})")
            self.controller.fail(user_id, job_id, exc.code, exc.message, retryable=exc.retryable)
        except Exception as exc:
            logger.exception(f"Error processing job {job_id}")
            self.controller.fail(user_id, job_id, ErrorCode.INTERNAL_ERROR, str(exc), retryable=False)

    def _classify(self, batch: list[TransactionRef], categories: list[CategoryRef]) -> ClassificationResult:
        """Call the classifier with a deadline; late or unexpected failures become taxonomy errors."""
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="classifier")
        future = executor.submit(self.classifier.classify, batch, categories)
        try:
            return future.result(timeout=self.settings.classifier_timeout_seconds)
        except concurrent.futures.TimeoutError as exc:
            raise ClassifierError(ErrorCode.AI_TIMEOUT) from exc
        except ClassifierError:
            raise
        except Exception as exc:
            logger.exception("Classifier raised an unexpected error")
            raise ClassifierError(ErrorCode.AI_SERVICE_UNAVAILABLE, f"The AI service call failed: {exc}") from exc
        finally:
            # A late call keeps its thread until the Groq client gives up on the same timeout.
            executor.shutdown(wait=False, cancel_futures=True)

    def _store_batch(
        self,
        user_id: str,
        job_id: str,
        batch: list[TransactionRef],
        result: ClassificationResult,
        categories: list[CategoryRef],
    ) -> bool:
        """Persist one batch's suggestions, skipped records, and progress in a single commit."""
        with self.session_factory() as session, session.begin():
            if not self.controller.advance(session, user_id, job_id, len(batch)):
                return False
            created, skipped = self._fold_result(session, user_id, job_id, batch, result, categories)
        logger.info(f"Stored batch for job {job_id}: {created} suggestion write(s), {skipped} skipped")
        return True

    def _fold_result(
        self,
        session: Session,
        user_id: str,
        job_id: str,
        batch: list[TransactionRef],
        result: ClassificationResult,
        categories: list[CategoryRef],
    ) -> tuple[int, int]:
        store = SuggestionStore(session, self.settings.max_affected_preview)
        by_id = {txn.id: txn for txn in batch}
        assigned: set[str] = set()
        reasons: dict[str, str] = {}
        created = 0
        for grouping in result.groupings:
            members = []
            for txn_id in grouping.transaction_ids:
                if txn_id not in by_id:
                    logger.warning(f"Classifier returned unknown transaction id {txn_id!r}; ignoring")
                elif txn_id not in assigned:
                    members.append(by_id[txn_id])
            if not members:
                continue
            if not grouping.keyword.strip():
                reasons.update(dict.fromkeys((txn.id for txn in members), REASON_EMPTY_KEYWORD))
                continue
            assigned.update(txn.id for txn in members)
            category = resolve_category(grouping.category_guess, categories, self.settings)
            match = RuleMatch(type=grouping.match_type, keyword=grouping.keyword)
            if store.append(user_id, job_id, category, match, members) is not None:
                created += 1
        store.release_skipped(user_id, assigned)
        for skip in result.skipped:
            if skip.transaction_id in by_id:
                reasons.setdefault(skip.transaction_id, skip.reason)
        skipped = 0
        for txn in batch:
            if txn.id not in assigned:
                store.append_skipped(user_id, job_id, txn, reasons.get(txn.id, REASON_NOT_RETURNED))
                skipped += 1
        return created, skipped


def run_categorization_job(
    user_id: str, job_id: str, classifier: BaseAgent, session_factory: sessionmaker, settings: Settings
) -> None:
    """Top-level function to run a categorization job (for background tasks)."""
    scheduler = BatchScheduler(session_factory, classifier, settings)
    scheduler.run(user_id, job_id)
