"""Suggestion store: incremental writes from batches and guarded status transitions from reviews.

A store instance wraps one SQLAlchemy session, so everything a batch writes (suggestions, claims,
skipped records) commits together and becomes visible to pollers as soon as the batch finishes.
Status changes are compare-and-swap updates on ``status = 'pending'``; the loser of a concurrent
approve/reject sees :class:`SuggestionAlreadyResolvedError` and nothing is written.
"""

from collections.abc import Iterable

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from app.core.db import SkippedTransaction, Suggestion, SuggestionClaim
from app.core.exceptions import SuggestionAlreadyResolvedError, SuggestionNotFoundError
from app.core.models import (
    ExistingCategory,
    NewCategory,
    RuleMatch,
    SkippedTransactionOut,
    SuggestionOut,
    SuggestionStatus,
    TransactionRef,
)
from app.core.utils import get_logger, new_id, utcnow_iso

logger = get_logger("ai-categorizer.store")

DEFAULT_PREVIEW_SIZE = 50


class SuggestionStore:
    """Read/write access to one user's suggestions, claims, and skipped records."""

    def __init__(self, session: Session, max_preview: int = DEFAULT_PREVIEW_SIZE) -> None:
        """Bind the store to a session; ``max_preview`` caps ``affected_transactions`` per suggestion."""
        self.session = session
        self.max_preview = max_preview

    # --- batch writers -------------------------------------------------

    def append(
        self,
        user_id: str,
        job_id: str | None,
        category: ExistingCategory | NewCategory,
        match: RuleMatch,
        transactions: Iterable[TransactionRef],
    ) -> Suggestion | None:
        """Store a grouping, merging into the pending suggestion with the same match if one exists.

        Transactions already claimed by a pending suggestion are left with their current owner.
        Returns the suggestion that received the transactions, or None when none were left.
        """
        unique: dict[str, TransactionRef] = {}
        for txn in transactions:
            unique.setdefault(txn.id, txn)
        if not unique:
            return None
        claimed = set(
            self.session.execute(
                select(SuggestionClaim.transaction_id).where(SuggestionClaim.transaction_id.in_(list(unique)))
            ).scalars()
        )
        fresh = [txn for txn_id, txn in unique.items() if txn_id not in claimed]
        if claimed:
            logger.info(f"Ignoring {len(claimed)} transaction(s) already owned by pending suggestions")
        if not fresh:
            return None

        keyword = match.keyword.strip().upper()
        target = self._find_pending_by_match(user_id, str(match.type), keyword)
        if target is not None and self._merge_into(target, fresh):
            self._claim(user_id, target.id, fresh)
            logger.info(f"Merged {len(fresh)} transaction(s) into suggestion {target.id} ({keyword})")
            return target

        now = utcnow_iso()
        suggestion = Suggestion(
            id=new_id(),
            user_id=user_id,
            job_id=job_id,
            category=category.model_dump(mode="json"),
            match_type=str(match.type),
            match_keyword=keyword,
            affected_transactions=[txn.model_dump(mode="json") for txn in fresh[: self.max_preview]],
            affected_count=len(fresh),
            status=str(SuggestionStatus.PENDING),
            created_at=now,
            updated_at=now,
        )
        self.session.add(suggestion)
        self.session.flush()
        self._claim(user_id, suggestion.id, fresh)
        return suggestion

    def append_skipped(self, user_id: str, job_id: str | None, txn: TransactionRef, reason: str) -> None:
        """Record (or replace) the skipped record of ``txn``."""
        self.session.merge(
            SkippedTransaction(
                transaction_id=txn.id,
                user_id=user_id,
                job_id=job_id,
                description=txn.description,
                amount=txn.amount,
                date=txn.date,
                reason=reason,
                created_at=utcnow_iso(),
            )
        )

    def release_skipped(self, user_id: str, transaction_ids: Iterable[str]) -> int:
        """Drop skipped records for transactions that a later batch categorized."""
        ids = list(transaction_ids)
        if not ids:
            return 0
        stmt = delete(SkippedTransaction).where(
            SkippedTransaction.user_id == user_id, SkippedTransaction.transaction_id.in_(ids)
        )
        return self.session.execute(stmt).rowcount

    def _find_pending_by_match(self, user_id: str, match_type: str, keyword: str) -> Suggestion | None:
        stmt = (
            select(Suggestion)
            .where(
                Suggestion.user_id == user_id,
                Suggestion.status == str(SuggestionStatus.PENDING),
                Suggestion.match_type == match_type,
                Suggestion.match_keyword == keyword,
            )
            .order_by(Suggestion.created_at)
        )
        return self.session.execute(stmt).scalars().first()

    def _merge_into(self, target: Suggestion, fresh: list[TransactionRef]) -> bool:
        preview = list(target.affected_transactions or [])
        room = max(self.max_preview - len(preview), 0)
        preview.extend(txn.model_dump(mode="json") for txn in fresh[:room])
        stmt = (
            update(Suggestion)
            .where(Suggestion.id == target.id, Suggestion.status == str(SuggestionStatus.PENDING))
            .values(
                affected_count=Suggestion.affected_count + len(fresh),
                affected_transactions=preview,
                updated_at=utcnow_iso(),
            )
            .execution_options(synchronize_session=False)
        )
        merged = self.session.execute(stmt).rowcount == 1
        if merged:
            self.session.refresh(target)
        return merged

    def _claim(self, user_id: str, suggestion_id: str, transactions: list[TransactionRef]) -> None:
        self.session.add_all(
            SuggestionClaim(transaction_id=txn.id, suggestion_id=suggestion_id, user_id=user_id)
            for txn in transactions
        )
        self.session.flush()

    # --- exclusion queries used by the batch scheduler ------------------

    @staticmethod
    def claimed_ids(user_id: str) -> Select:
        """Transaction ids owned by the user's pending suggestions."""
        return select(SuggestionClaim.transaction_id).where(SuggestionClaim.user_id == user_id)

    @staticmethod
    def skipped_ids(user_id: str, job_id: str | None = None) -> Select:
        """Skipped transaction ids; restricted to one run when ``job_id`` is given."""
        stmt = select(SkippedTransaction.transaction_id).where(SkippedTransaction.user_id == user_id)
        if job_id is not None:
            stmt = stmt.where(SkippedTransaction.job_id == job_id)
        return stmt

    @classmethod
    def run_exclusions(cls, user_id: str, job_id: str, *, retry_skipped: bool) -> list[Select]:
        """Transaction ids a run must not send to the classifier.

        A fresh run re-attempts transactions skipped by earlier runs; a resumed run does not.
        """
        skipped = cls.skipped_ids(user_id, job_id) if retry_skipped else cls.skipped_ids(user_id)
        return [cls.claimed_ids(user_id), skipped]

    # --- readers -------------------------------------------------------

    def get(self, user_id: str, suggestion_id: str) -> Suggestion | None:
        """Return one suggestion of the user, whatever its status."""
        stmt = select(Suggestion).where(Suggestion.user_id == user_id, Suggestion.id == suggestion_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def list_pending(self, user_id: str) -> tuple[list[SuggestionOut], list[SkippedTransactionOut]]:
        """Return pending suggestions and skipped records in creation order."""
        suggestions = self.session.execute(
            select(Suggestion)
            .where(Suggestion.user_id == user_id, Suggestion.status == str(SuggestionStatus.PENDING))
            .order_by(Suggestion.created_at, Suggestion.id)
        ).scalars()
        skipped = self.session.execute(
            select(SkippedTransaction)
            .where(SkippedTransaction.user_id == user_id)
            .order_by(SkippedTransaction.created_at, SkippedTransaction.transaction_id)
        ).scalars()
        return [to_suggestion_out(row) for row in suggestions], [to_skipped_out(row) for row in skipped]

    def count_pending(self, user_id: str) -> int:
        """Number of pending suggestions."""
        stmt = select(func.count(Suggestion.id)).where(
            Suggestion.user_id == user_id, Suggestion.status == str(SuggestionStatus.PENDING)
        )
        return self.session.execute(stmt).scalar_one()

    def count_skipped(self, user_id: str) -> int:
        """Number of skipped records."""
        stmt = select(func.count(SkippedTransaction.transaction_id)).where(SkippedTransaction.user_id == user_id)
        return self.session.execute(stmt).scalar_one()

    def count_claimed(self, user_id: str) -> int:
        """Number of transactions owned by pending suggestions."""
        stmt = select(func.count(SuggestionClaim.transaction_id)).where(SuggestionClaim.user_id == user_id)
        return self.session.execute(stmt).scalar_one()

    def claimed_transaction_ids(self, suggestion_id: str) -> list[str]:
        """Transaction ids owned by one pending suggestion."""
        stmt = select(SuggestionClaim.transaction_id).where(SuggestionClaim.suggestion_id == suggestion_id)
        return list(self.session.execute(stmt).scalars())

    # --- review transitions --------------------------------------------

    def transition(self, user_id: str, suggestion_id: str, status: SuggestionStatus, **values: object) -> None:
        """Move a pending suggestion to ``status``; fails without side effects otherwise."""
        now = utcnow_iso()
        stmt = (
            update(Suggestion)
            .where(
                Suggestion.user_id == user_id,
                Suggestion.id == suggestion_id,
                Suggestion.status == str(SuggestionStatus.PENDING),
            )
            .values(status=str(status), resolved_at=now, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount == 1:
            return
        current = self.get(user_id, suggestion_id)
        if current is None:
            raise SuggestionNotFoundError(suggestion_id)
        raise SuggestionAlreadyResolvedError(suggestion_id, current.status)

    def release_claims(self, suggestion_id: str) -> int:
        """Free the transactions of a resolved suggestion."""
        stmt = delete(SuggestionClaim).where(SuggestionClaim.suggestion_id == suggestion_id)
        return self.session.execute(stmt).rowcount

    def clear_all(self, user_id: str) -> tuple[int, int]:
        """Delete every pending suggestion and skipped record of the user."""
        pending_ids = select(Suggestion.id).where(
            Suggestion.user_id == user_id, Suggestion.status == str(SuggestionStatus.PENDING)
        )
        self.session.execute(delete(SuggestionClaim).where(SuggestionClaim.suggestion_id.in_(pending_ids)))
        cleared_suggestions = self.session.execute(
            delete(Suggestion)
            .where(Suggestion.user_id == user_id, Suggestion.status == str(SuggestionStatus.PENDING))
            .execution_options(synchronize_session=False)
        ).rowcount
        cleared_skipped = self.session.execute(
            delete(SkippedTransaction).where(SkippedTransaction.user_id == user_id)
        ).rowcount
        return cleared_suggestions, cleared_skipped


def to_suggestion_out(row: Suggestion) -> SuggestionOut:
    """Convert a suggestion row to its API model."""
    return SuggestionOut(
        id=row.id,
        category=row.category,
        match=RuleMatch(type=row.match_type, keyword=row.match_keyword),
        affected_transactions=[TransactionRef(**txn) for txn in row.affected_transactions or []],
        affected_count=row.affected_count,
        status=row.status,
        created_at=row.created_at,
    )


def to_skipped_out(row: SkippedTransaction) -> SkippedTransactionOut:
    """Convert a skipped row to its API model."""
    return SkippedTransactionOut(
        transaction_id=row.transaction_id,
        description=row.description,
        amount=row.amount,
        date=row.date,
        reason=row.reason,
    )
