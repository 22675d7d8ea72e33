"""Transaction and category stores the categorization engine reads from and commits into.

Both repositories work on a caller-provided session so the review service can commit a category,
its rule, and the categorized transactions in the same database transaction as the suggestion's
status change.
"""

from collections.abc import Iterable, Sequence

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from app.core.db import Category, CategoryRule, Transaction
from app.core.models import MatchType, TransactionRef
from app.core.utils import new_id, utcnow_iso


class TransactionRepository:
    """Reads uncategorized transactions and applies categories to them."""

    def __init__(self, session: Session) -> None:
        """Bind the repository to a SQLAlchemy session."""
        self.session = session

    def _uncategorized(self, user_id: str, exclude: Sequence[Select] = ()) -> Select:
        stmt = select(Transaction).where(Transaction.user_id == user_id, Transaction.category_id.is_(None))
        for subquery in exclude:
            stmt = stmt.where(Transaction.id.not_in(subquery))
        return stmt

    def count_uncategorized(self, user_id: str, exclude: Sequence[Select] = ()) -> int:
        """Count the user's uncategorized transactions, minus any id selected by ``exclude``."""
        stmt = select(func.count()).select_from(self._uncategorized(user_id, exclude).subquery())
        return self.session.execute(stmt).scalar_one()

    def fetch_uncategorized_batch(
        self,
        user_id: str,
        offset: int,
        limit: int,
        exclude: Sequence[Select] = (),
        after: TransactionRef | None = None,
    ) -> list[TransactionRef]:
        """Return up to ``limit`` uncategorized transactions in a stable date/id order.

        ``after`` is a keyset cursor: only transactions ordered strictly after it are returned.
        """
        stmt = self._uncategorized(user_id, exclude)
        if after is not None:
            stmt = stmt.where(
                or_(
                    Transaction.date > after.date,
                    and_(Transaction.date == after.date, Transaction.id > after.id),
                )
            )
        stmt = stmt.order_by(Transaction.date, Transaction.id).offset(offset).limit(limit)
        return [
            TransactionRef(id=txn.id, description=txn.description, amount=txn.amount, date=txn.date)
            for txn in self.session.execute(stmt).scalars()
        ]

    def apply_category_to_transactions(self, category_id: str, transaction_ids: Iterable[str]) -> int:
        """Assign ``category_id`` to the still-uncategorized transactions in ``transaction_ids``."""
        ids = list(transaction_ids)
        if not ids:
            return 0
        stmt = (
            update(Transaction)
            .where(Transaction.id.in_(ids), Transaction.category_id.is_(None))
            .values(category_id=category_id)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount

    def add_transactions(self, user_id: str, rows: Iterable[dict]) -> int:
        """Insert new uncategorized transactions, ignoring ids that already exist."""
        existing = set(self.session.execute(select(Transaction.id).where(Transaction.user_id == user_id)).scalars())
        added = 0
        for row in rows:
            txn_id = str(row.get("id") or new_id())
            if txn_id in existing:
                continue
            self.session.add(
                Transaction(
                    id=txn_id,
                    user_id=user_id,
                    description=str(row["description"]),
                    amount=int(row["amount"]),
                    date=str(row["date"]),
                    created_at=utcnow_iso(),
                )
            )
            existing.add(txn_id)
            added += 1
        return added


class CategoryRepository:
    """Creates categories and rules for approved suggestions."""

    def __init__(self, session: Session) -> None:
        """Bind the repository to a SQLAlchemy session."""
        self.session = session

    def list_categories(self, user_id: str) -> list[Category]:
        """Return the user's categories ordered by name."""
        stmt = select(Category).where(Category.user_id == user_id).order_by(Category.name)
        return list(self.session.execute(stmt).scalars())

    def get_category(self, user_id: str, category_id: str) -> Category | None:
        """Return one category of the user, or None."""
        stmt = select(Category).where(Category.user_id == user_id, Category.id == category_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def find_by_name(self, user_id: str, name: str) -> Category | None:
        """Case-insensitive lookup of a category by name."""
        stmt = select(Category).where(Category.user_id == user_id, func.lower(Category.name) == name.strip().lower())
        return self.session.execute(stmt).scalars().first()

    def create_category(self, user_id: str, name: str, icon: str, color: str) -> Category:
        """Create and flush a new category."""
        category = Category(
            id=new_id(), user_id=user_id, name=name.strip(), icon=icon, color=color, created_at=utcnow_iso()
        )
        self.session.add(category)
        self.session.flush()
        return category

    def create_or_update_rule(
        self, user_id: str, keyword: str, match_type: MatchType, category_id: str
    ) -> CategoryRule:
        """Point the rule for ``keyword`` at ``category_id``, creating it when missing."""
        keyword = keyword.strip().upper()
        now = utcnow_iso()
        stmt = select(CategoryRule).where(CategoryRule.user_id == user_id, CategoryRule.keyword == keyword)
        rule = self.session.execute(stmt).scalar_one_or_none()
        if rule is None:
            rule = CategoryRule(
                id=new_id(),
                user_id=user_id,
                keyword=keyword,
                match_type=str(match_type),
                category_id=category_id,
                created_at=now,
                updated_at=now,
            )
            self.session.add(rule)
        else:
            rule.match_type = str(match_type)
            rule.category_id = category_id
            rule.updated_at = now
        self.session.flush()
        return rule
