"""Tests for approving, editing, and rejecting suggestions."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from app.core.db import Category, CategoryRule, Transaction
from app.core.exceptions import CategoryNotFoundError, SuggestionAlreadyResolvedError, SuggestionNotFoundError
from app.core.models import ApproveOverrides, MatchType, NewCategory, RuleMatch, SuggestionStatus, TransactionRef
from app.core.settings import Settings
from app.services.repositories import CategoryRepository, TransactionRepository
from app.services.review_service import ReviewService
from app.services.status_reporter import StatusReporter
from app.services.suggestion_store import SuggestionStore

from conftest import USER_ID, seed_transactions

JOB_ID = "job-1"


def _suggest(session_factory: sessionmaker, ids: list[str], keyword: str = "MERCHANT000", name: str = "Shopping") -> str:
    refs = [TransactionRef(id=txn_id, description=f"{keyword} X", amount=-100, date="2025-01-10") for txn_id in ids]
    category = NewCategory(new_name=name, new_icon="bag", new_color="#F59E0B")
    with session_factory() as session, session.begin():
        return SuggestionStore(session).append(USER_ID, JOB_ID, category, RuleMatch(keyword=keyword), refs).id


def _uncategorized(session_factory: sessionmaker) -> int:
    with session_factory() as session:
        return TransactionRepository(session).count_uncategorized(USER_ID)


def _category_count(session_factory: sessionmaker) -> int:
    with session_factory() as session:
        return session.execute(select(func.count(Category.id))).scalar_one()


def test_approve_new_category_creates_it_once(session_factory: sessionmaker, settings: Settings) -> None:
    """Approving a new-category suggestion creates one category, one rule, and categorizes its transactions."""
    ids = seed_transactions(session_factory, 6)
    suggestion_id = _suggest(session_factory, ids[:4])
    before = _uncategorized(session_factory)

    response = ReviewService(session_factory, settings).approve(USER_ID, suggestion_id)

    if not response.is_new_category or response.category_name != "Shopping":
        msg = f"Expected a newly created Shopping category, got {response}"
        raise AssertionError(msg)
    if response.transactions_categorized != 4 or _uncategorized(session_factory) != before - 4:
        msg = f"Expected exactly 4 transactions categorized, got {response.transactions_categorized}"
        raise AssertionError(msg)
    if _category_count(session_factory) != 1:
        msg = "Expected exactly one category to be created"
        raise AssertionError(msg)
    with session_factory() as session:
        rule = session.get(CategoryRule, response.rule_id)
        categorized = session.execute(
            select(func.count(Transaction.id)).where(Transaction.category_id == response.category_id)
        ).scalar_one()
        row = SuggestionStore(session).get(USER_ID, suggestion_id)
    if rule is None or rule.keyword != "MERCHANT000" or rule.category_id != response.category_id:
        msg = f"Expected a MERCHANT000 rule for the new category, got {rule}"
        raise AssertionError(msg)
    if categorized != 4 or row.status != SuggestionStatus.APPROVED or row.committed_category_id != response.category_id:
        msg = f"Unexpected committed state: categorized={categorized}, status={row.status}"
        raise AssertionError(msg)
    if StatusReporter(session_factory).status(USER_ID).pending_suggestions_count != 0:
        msg = "The approved suggestion must leave the pending set"
        raise AssertionError(msg)


def test_approve_with_overrides(session_factory: sessionmaker, settings: Settings) -> None:
    """Overrides rename the category and change the rule before commit."""
    ids = seed_transactions(session_factory, 4)
    suggestion_id = _suggest(session_factory, ids)
    overrides = ApproveOverrides(
        category_name="Groceries", category_color="#22C55E", match_keyword=" merchant ", match_type=MatchType.EXACT
    )
    response = ReviewService(session_factory, settings).approve(USER_ID, suggestion_id, overrides)
    with session_factory() as session:
        category = session.get(Category, response.category_id)
        rule = session.get(CategoryRule, response.rule_id)
    if category.name != "Groceries" or category.color != "#22C55E" or category.icon != "bag":
        msg = f"Expected the edited category, got {category.name} / {category.color} / {category.icon}"
        raise AssertionError(msg)
    if rule.keyword != "MERCHANT" or rule.match_type != MatchType.EXACT:
        msg = f"Expected the edited rule, got {rule.keyword} / {rule.match_type}"
        raise AssertionError(msg)


def test_approve_into_existing_category_by_id(session_factory: sessionmaker, settings: Settings) -> None:
    """A category_id override reuses that category; unknown ids are rejected without side effects."""
    ids = seed_transactions(session_factory, 4)
    suggestion_id = _suggest(session_factory, ids)
    with session_factory() as session, session.begin():
        food_id = CategoryRepository(session).create_category(USER_ID, "Food", "utensils", "#10B981").id
    service = ReviewService(session_factory, settings)

    with pytest.raises(CategoryNotFoundError):
        service.approve(USER_ID, suggestion_id, ApproveOverrides(category_id="missing"))
    with session_factory() as session:
        if SuggestionStore(session).get(USER_ID, suggestion_id).status != SuggestionStatus.PENDING:
            msg = "A failed approve must roll back the status change"
            raise AssertionError(msg)

    response = service.approve(USER_ID, suggestion_id, ApproveOverrides(category_id=food_id))
    if response.category_id != food_id or response.is_new_category:
        msg = f"Expected the existing Food category, got {response}"
        raise AssertionError(msg)
    if _category_count(session_factory) != 1:
        msg = "No category must be created when approving into an existing one"
        raise AssertionError(msg)


def test_new_category_name_collision_reuses_existing(session_factory: sessionmaker, settings: Settings) -> None:
    """Two suggestions proposing the same new category name end up in one category."""
    ids = seed_transactions(session_factory, 8)
    first = _suggest(session_factory, ids[:4], keyword="MERCHANT000", name="Shopping")
    second = _suggest(session_factory, ids[4:], keyword="MERCHANT001", name="shopping")
    service = ReviewService(session_factory, settings)
    created = service.approve(USER_ID, first)
    reused = service.approve(USER_ID, second)
    if not created.is_new_category or reused.is_new_category or created.category_id != reused.category_id:
        msg = f"Expected the second approve to reuse the first category, got {created} / {reused}"
        raise AssertionError(msg)


def test_reject_releases_transactions(session_factory: sessionmaker, settings: Settings) -> None:
    """Rejected suggestions keep their reason and free their transactions for the next run."""
    ids = seed_transactions(session_factory, 4)
    suggestion_id = _suggest(session_factory, ids)
    if StatusReporter(session_factory).status(USER_ID).uncategorized_count != 0:
        msg = "Claimed transactions are not counted as uncategorized"
        raise AssertionError(msg)

    ReviewService(session_factory, settings).reject(USER_ID, suggestion_id, "Wrong category")

    status = StatusReporter(session_factory).status(USER_ID)
    with session_factory() as session:
        row = SuggestionStore(session).get(USER_ID, suggestion_id)
    if row.status != SuggestionStatus.REJECTED or row.rejection_reason != "Wrong category":
        msg = f"Expected a rejected suggestion with its reason, got {row.status} / {row.rejection_reason}"
        raise AssertionError(msg)
    if status.uncategorized_count != 4 or status.pending_suggestions_count != 0:
        msg = f"Expected the 4 transactions to be eligible again, got {status}"
        raise AssertionError(msg)


def test_resolved_suggestion_cannot_be_resolved_again(session_factory: sessionmaker, settings: Settings) -> None:
    """Approve after approve, or reject after approve, fails without touching state."""
    ids = seed_transactions(session_factory, 4)
    suggestion_id = _suggest(session_factory, ids)
    service = ReviewService(session_factory, settings)
    service.approve(USER_ID, suggestion_id)
    categories = _category_count(session_factory)

    with pytest.raises(SuggestionAlreadyResolvedError):
        service.approve(USER_ID, suggestion_id)
    with pytest.raises(SuggestionAlreadyResolvedError):
        service.reject(USER_ID, suggestion_id)
    with pytest.raises(SuggestionNotFoundError):
        service.reject(USER_ID, "missing")

    with session_factory() as session:
        row = SuggestionStore(session).get(USER_ID, suggestion_id)
    if row.status != SuggestionStatus.APPROVED or _category_count(session_factory) != categories:
        msg = "A rejected second resolution must not change any state"
        raise AssertionError(msg)


def test_suggestions_are_scoped_to_their_user(session_factory: sessionmaker, settings: Settings) -> None:
    """Another user cannot resolve someone else's suggestion."""
    ids = seed_transactions(session_factory, 4)
    suggestion_id = _suggest(session_factory, ids)
    with pytest.raises(SuggestionNotFoundError):
        ReviewService(session_factory, settings).approve("user-2", suggestion_id)


def test_clear_all_reports_counts(session_factory: sessionmaker, settings: Settings) -> None:
    """Clear-all empties the pending set and returns what it removed."""
    ids = seed_transactions(session_factory, 8)
    _suggest(session_factory, ids[:4], keyword="MERCHANT000")
    _suggest(session_factory, ids[4:], keyword="MERCHANT001")
    cleared = ReviewService(session_factory, settings).clear_all(USER_ID)
    status = StatusReporter(session_factory).status(USER_ID)
    if (cleared.cleared_suggestions, cleared.cleared_skipped) != (2, 0):
        msg = f"Expected 2 cleared suggestions, got {cleared}"
        raise AssertionError(msg)
    if status.pending_suggestions_count != 0 or status.uncategorized_count != 8:
        msg = f"Expected an empty pending set and 8 eligible transactions, got {status}"
        raise AssertionError(msg)
