"""Shared fixtures: an isolated SQLite database per test, seeded transactions, and a scripted classifier."""

import os
import tempfile
from collections.abc import Callable, Iterator

import pytest

_TMP_DIR = tempfile.mkdtemp(prefix="ai-categorizer-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP_DIR}/default.db")
os.environ.setdefault("LOG_FILE", f"{_TMP_DIR}/ai_categorization.log")

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.agents.base import BaseAgent  # noqa: E402
from app.api.dependencies import get_classifier, get_session_factory  # noqa: E402
from app.core.db import Transaction, create_db_engine, init_db, make_session_factory  # noqa: E402
from app.core.models import (  # noqa: E402
    CategoryGuess,
    CategoryRef,
    ClassificationResult,
    ClassifierGrouping,
    ClassifierSkip,
)
from app.core.models import TransactionRef as TxnRef  # noqa: E402
from app.core.settings import Settings, get_settings  # noqa: E402
from app.core.utils import utcnow_iso  # noqa: E402

USER_ID = "user-1"
UNREADABLE_PREFIX = "???"


class FakeClassifier(BaseAgent):
    """Deterministic classifier: groups by the first word of the description.

    ``failures`` maps a 1-based call number to the exception that call raises; ``on_call`` runs
    before each call returns so tests can observe the store mid-run.
    """

    def __init__(
        self,
        failures: dict[int, Exception] | None = None,
        on_call: Callable[[int, list[TxnRef]], None] | None = None,
    ) -> None:
        self.failures = failures or {}
        self.on_call = on_call
        self.batches: list[list[TxnRef]] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> "FakeClassifier":
        _ = settings
        return cls()

    def classify(self, batch: list[TxnRef], categories: list[CategoryRef]) -> ClassificationResult:
        self.batches.append(list(batch))
        call_number = len(self.batches)
        if self.on_call is not None:
            self.on_call(call_number, batch)
        if call_number in self.failures:
            raise self.failures[call_number]
        known = {category.name.upper(): category.id for category in categories}
        grouped: dict[str, list[str]] = {}
        skipped = []
        for txn in batch:
            if txn.description.startswith(UNREADABLE_PREFIX):
                skipped.append(ClassifierSkip(transaction_id=txn.id, reason="Unrecognized description"))
                continue
            grouped.setdefault(txn.description.split()[0], []).append(txn.id)
        groupings = [
            ClassifierGrouping(
                keyword=keyword,
                category_guess=CategoryGuess(existing_id=known.get(keyword), name=keyword.title()),
                transaction_ids=ids,
            )
            for keyword, ids in grouped.items()
        ]
        return ClassificationResult(groupings=groupings, skipped=skipped)


def seed_transactions(
    session_factory: sessionmaker,
    count: int,
    *,
    user_id: str = USER_ID,
    per_keyword: int = 4,
    start: int = 0,
    description: Callable[[int], str] | None = None,
) -> list[str]:
    """Insert ``count`` uncategorized transactions; ``per_keyword`` consecutive ones share a merchant."""
    ids = []
    with session_factory() as session, session.begin():
        for index in range(start, start + count):
            txn_id = f"{user_id}-tx-{index:04d}"
            text = description(index) if description else f"MERCHANT{index // per_keyword:03d} PURCHASE {index}"
            session.add(
                Transaction(
                    id=txn_id,
                    user_id=user_id,
                    description=text,
                    amount=-1000 - index,
                    date="2025-01-10",
                    created_at=utcnow_iso(),
                )
            )
            ids.append(txn_id)
    return ids


@pytest.fixture
def settings(tmp_path: object) -> Settings:
    """Settings with the documented batch size and a short classifier deadline."""
    return Settings(
        database_url=f"sqlite:///{tmp_path}/test.db",
        log_file=f"{tmp_path}/test.log",
        batch_size=40,
        classifier_timeout_seconds=5,
        default_user_id=USER_ID,
    )


@pytest.fixture
def session_factory(settings: Settings) -> Iterator[sessionmaker]:
    """A session factory over a fresh SQLite database."""
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def classifier() -> FakeClassifier:
    """A classifier that succeeds on every call unless a test scripts failures."""
    return FakeClassifier()


@pytest.fixture
def client(session_factory: sessionmaker, classifier: FakeClassifier, settings: Settings) -> Iterator[TestClient]:
    """A TestClient whose database, classifier, and settings are the test's own."""
    from main import app

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_classifier] = lambda: classifier
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()
