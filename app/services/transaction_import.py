"""CSV loading of uncategorized transactions into the transaction store."""

import io

import pandas as pd
from sqlalchemy.orm import sessionmaker

from app.core.utils import get_logger
from app.services.repositories import TransactionRepository

REQUIRED_COLUMNS = ("date", "description", "amount")

logger = get_logger("ai-categorizer.import")


def parse_transactions_csv(data: bytes) -> list[dict]:
    """Parse a CSV with ``date, description, amount`` (and optional ``id``) columns.

    Amounts are decimal currency units and are stored in cents; dates are normalized to YYYY-MM-DD.
    """
    try:
        frame = pd.read_csv(io.BytesIO(data), dtype={"id": str, "description": str})
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
        msg = f"Could not read CSV: {exc}"
        raise ValueError(msg) from exc
    frame.columns = [str(column).strip().lower() for column in frame.columns]
    missing = [column for column in REQUIRED_COLUMNS if column not in frame.columns]
    if missing:
        msg = f"Missing required column(s): {', '.join(missing)}"
        raise ValueError(msg)
    frame = frame.dropna(subset=list(REQUIRED_COLUMNS)).copy()
    frame["date"] = pd.to_datetime(frame["date"], errors="coerce").dt.strftime("%Y-%m-%d")
    frame["amount"] = pd.to_numeric(frame["amount"], errors="coerce")
    invalid = frame["date"].isna() | frame["amount"].isna()
    if invalid.any():
        logger.warning(f"Dropping {int(invalid.sum())} CSV row(s) with an unreadable date or amount")
        frame = frame[~invalid].copy()
    frame["amount"] = (frame["amount"] * 100).round().astype(int)
    frame["description"] = frame["description"].astype(str).str.strip()
    if "id" not in frame.columns:
        frame["id"] = None
    columns = ["id", *REQUIRED_COLUMNS]
    return frame[columns].astype(object).where(frame[columns].notna(), None).to_dict(orient="records")


def import_transactions_csv(session_factory: sessionmaker, user_id: str, data: bytes) -> int:
    """Load the CSV rows as uncategorized transactions of ``user_id``; returns how many were added."""
    rows = parse_transactions_csv(data)
    with session_factory() as session, session.begin():
        added = TransactionRepository(session).add_transactions(user_id, rows)
    logger.info(f"Imported {added} of {len(rows)} CSV transaction(s) for user {user_id}")
    return added
