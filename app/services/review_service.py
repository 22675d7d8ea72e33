"""Review actions over pending suggestions: approve (optionally edited), reject, and clear-all.

Every action runs in one database transaction. The suggestion's status flips first with a guarded
update, so a concurrent approve/reject of the same id fails with ``AlreadyResolved`` before any
category, rule, or transaction is touched.
"""

from sqlalchemy import update
from sqlalchemy.orm import sessionmaker

from app.core.db import Category, Suggestion
from app.core.exceptions import CategoryNotFoundError, SuggestionAlreadyResolvedError, SuggestionNotFoundError
from app.core.models import (
    ApproveOverrides,
    ApproveResponse,
    ClearResponse,
    ExistingCategory,
    NewCategory,
    RuleMatch,
    SuggestionStatus,
)
from app.core.settings import Settings
from app.core.utils import get_logger
from app.services.repositories import CategoryRepository, TransactionRepository
from app.services.suggestion_store import SuggestionStore, to_suggestion_out

logger = get_logger("ai-categorizer.review")


class ReviewService:
    """Translates human review decisions into store transitions and category commits."""

    def __init__(self, session_factory: sessionmaker, settings: Settings) -> None:
        """Initialize the service with a session factory and settings."""
        self.session_factory = session_factory
        self.settings = settings

    def approve(self, user_id: str, suggestion_id: str, overrides: ApproveOverrides | None = None) -> ApproveResponse:
        """Approve a pending suggestion, applying ``overrides`` before the commit."""
        overrides = overrides or ApproveOverrides()
        with self.session_factory() as session, session.begin():
            store = SuggestionStore(session, self.settings.max_affected_preview)
            row = store.get(user_id, suggestion_id)
            if row is None:
                raise SuggestionNotFoundError(suggestion_id)
            if row.status != SuggestionStatus.PENDING:
                raise SuggestionAlreadyResolvedError(suggestion_id, row.status)
            suggestion = to_suggestion_out(row)
            match = RuleMatch(
                type=overrides.match_type or suggestion.match.type,
                keyword=(overrides.match_keyword or suggestion.match.keyword).strip().upper(),
            )
            store.transition(user_id, suggestion_id, SuggestionStatus.APPROVED)
            transaction_ids = store.claimed_transaction_ids(suggestion_id)

            categories = CategoryRepository(session)
            category, is_new = self._target_category(user_id, suggestion.category, overrides, categories)
            rule = categories.create_or_update_rule(user_id, match.keyword, match.type, category.id)
            categorized = TransactionRepository(session).apply_category_to_transactions(category.id, transaction_ids)
            store.release_claims(suggestion_id)
            committed = ExistingCategory(
                existing_id=category.id,
                existing_name=category.name,
                existing_icon=category.icon,
                existing_color=category.color,
            )
            session.execute(
                update(Suggestion)
                .where(Suggestion.id == suggestion_id)
                .values(
                    category=committed.model_dump(mode="json"),
                    match_type=str(match.type),
                    match_keyword=match.keyword,
                    committed_category_id=category.id,
                    rule_id=rule.id,
                )
                .execution_options(synchronize_session=False)
            )
            response = ApproveResponse(
                suggestion_id=suggestion_id,
                category_id=category.id,
                category_name=category.name,
                rule_id=rule.id,
                transactions_categorized=categorized,
                is_new_category=is_new,
            )
        logger.info(
            f"Approved suggestion {suggestion_id} for user {user_id}: "
            f"category={response.category_name}, transactions={categorized}, new={is_new}"
        )
        return response

    def _target_category(
        self,
        user_id: str,
        proposed: ExistingCategory | NewCategory,
        overrides: ApproveOverrides,
        categories: CategoryRepository,
    ) -> tuple[Category, bool]:
        if overrides.category_id:
            category = categories.get_category(user_id, overrides.category_id)
            if category is None:
                raise CategoryNotFoundError(overrides.category_id)
            return category, False
        if isinstance(proposed, ExistingCategory):
            if not overrides.category_name:
                category = categories.get_category(user_id, proposed.existing_id)
                if category is not None:
                    return category, False
            name, icon, color = proposed.existing_name, proposed.existing_icon, proposed.existing_color
        else:
            name, icon, color = proposed.new_name, proposed.new_icon, proposed.new_color
        name = (overrides.category_name or name).strip()
        existing = categories.find_by_name(user_id, name)
        if existing is not None:
            return existing, False
        created = categories.create_category(
            user_id, name, overrides.category_icon or icon, overrides.category_color or color
        )
        return created, True

    def reject(self, user_id: str, suggestion_id: str, reason: str | None = None) -> None:
        """Reject a pending suggestion; its transactions stay uncategorized and become eligible again."""
        with self.session_factory() as session, session.begin():
            store = SuggestionStore(session)
            store.transition(user_id, suggestion_id, SuggestionStatus.REJECTED, rejection_reason=reason)
            store.release_claims(suggestion_id)
        logger.info(f"Rejected suggestion {suggestion_id} for user {user_id}")

    def clear_all(self, user_id: str) -> ClearResponse:
        """Delete all pending suggestions and skipped records of the user."""
        with self.session_factory() as session, session.begin():
            cleared_suggestions, cleared_skipped = SuggestionStore(session).clear_all(user_id)
        logger.info(
            f"Cleared {cleared_suggestions} pending suggestion(s) and {cleared_skipped} skipped record(s) for {user_id}"
        )
        return ClearResponse(cleared_suggestions=cleared_suggestions, cleared_skipped=cleared_skipped)
