"""DB models and session helpers for the AI categorization engine."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


class Transaction(Base):
    """A bank transaction owned by a user; uncategorized while ``category_id`` is null."""

    __tablename__ = "transactions"
    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    description = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    date = Column(String, nullable=False)
    category_id = Column(String, ForeignKey("categories.id"), nullable=True, index=True)
    created_at = Column(String, nullable=False)


class Category(Base):
    """A user category that transactions and rules point at."""

    __tablename__ = "categories"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_categories_user_name"),)
    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    icon = Column(String, nullable=False)
    color = Column(String, nullable=False)
    created_at = Column(String, nullable=False)


class CategoryRule(Base):
    """A keyword rule committed from an approved suggestion."""

    __tablename__ = "category_rules"
    __table_args__ = (UniqueConstraint("user_id", "keyword", name="uq_category_rules_user_keyword"),)
    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    keyword = Column(String, nullable=False)
    match_type = Column(String, nullable=False)
    category_id = Column(String, ForeignKey("categories.id"), nullable=False)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)


class CategorizationJob(Base):
    """The single categorization job row of a user."""

    __tablename__ = "categorization_jobs"
    user_id = Column(String, primary_key=True)
    job_id = Column(String, nullable=True)
    status = Column(String, nullable=False, default="idle")
    retry_skipped = Column(Boolean, nullable=False, default=True)
    total_transactions = Column(Integer, nullable=False, default=0)
    processed_transactions = Column(Integer, nullable=False, default=0)
    total_batches = Column(Integer, nullable=False, default=0)
    current_batch = Column(Integer, nullable=False, default=0)
    error_code = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    error_retryable = Column(Boolean, nullable=True)
    error_timestamp = Column(String, nullable=True)
    started_at = Column(String, nullable=True)
    last_processed_at = Column(String, nullable=True)
    updated_at = Column(String, nullable=False)


class Suggestion(Base):
    """A proposed category assignment awaiting review."""

    __tablename__ = "suggestions"
    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    job_id = Column(String, nullable=True)
    category = Column(JSON, nullable=False)
    match_type = Column(String, nullable=False)
    match_keyword = Column(String, nullable=False)
    affected_transactions = Column(JSON, nullable=False)
    affected_count = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="pending", index=True)
    rejection_reason = Column(Text, nullable=True)
    committed_category_id = Column(String, nullable=True)
    rule_id = Column(String, nullable=True)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)
    resolved_at = Column(String, nullable=True)


class SuggestionClaim(Base):
    """Ownership of a transaction by a pending suggestion; one row per transaction at most."""

    __tablename__ = "suggestion_claims"
    transaction_id = Column(String, primary_key=True)
    suggestion_id = Column(String, ForeignKey("suggestions.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)


class SkippedTransaction(Base):
    """A transaction the classifier declined or failed to categorize."""

    __tablename__ = "skipped_transactions"
    transaction_id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    job_id = Column(String, nullable=True)
    description = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    date = Column(String, nullable=False)
    reason = Column(Text, nullable=False)
    created_at = Column(String, nullable=False)


def create_db_engine(url: str) -> Engine:
    """Create a SQLAlchemy engine; SQLite connections are shared with background worker threads."""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
    return create_engine(url, pool_pre_ping=True)


def get_engine() -> Engine:
    """Create a SQLAlchemy engine using the configured database URL."""
    from app.core.settings import get_settings

    return create_db_engine(get_settings().database_url)


def make_session_factory(engine: Engine) -> sessionmaker:
    """Build a session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


engine = get_engine()
SessionLocal = make_session_factory(engine)


def init_db(engine: Engine) -> None:
    """Create every table that does not exist yet."""
    Base.metadata.create_all(engine)
