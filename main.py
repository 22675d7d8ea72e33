"""Main entrypoint and application factory for the AI Categorization API.

This module initializes the FastAPI application, configures logging, creates the database tables, recovers jobs interrupted by a restart, and exposes the Scalar API reference endpoint for interactive OpenAPI documentation. It also includes the main entrypoint for running the app with Uvicorn.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from scalar_fastapi import get_scalar_api_reference
from sqlalchemy.exc import OperationalError

from app.api.routes import router
from app.core.db import SessionLocal, engine, init_db
from app.core.settings import get_settings
from app.core.utils import LOGGER_NAME, get_logger
from app.services.job_controller import JobController


# --- Logging Setup ---
def setup_logging() -> None:
    """Configure logging to file and console, and ensure the log directory exists."""
    log_file = Path(get_settings().log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger = get_logger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    # Add file handler for persistent logs (not colorized)
    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(file_handler)


setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan event handler: create tables and fail over jobs left processing by a previous process."""
    _ = app  # Silence unused argument warning
    logger = get_logger(LOGGER_NAME)
    try:
        init_db(engine)
    except OperationalError:
        logger.exception("Failed to create categorization tables")
        raise
    JobController(SessionLocal, get_settings()).recover_interrupted()
    yield


app = FastAPI(
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    title="AI Categorization API",
    description="""
    The AI Categorization API classifies uncategorized bank transactions in batches with an LLM and lets a client review the resulting suggestions while the job is still running.

    **Endpoints:**
    - `POST /api/v1/ai/categorization/start`: Start or resume a categorization job.
    - `GET /api/v1/ai/categorization/status`: Poll job progress, counts and the last error.
    - `GET /api/v1/ai/categorization/suggestions`: List pending suggestions and skipped transactions.
    - `POST /api/v1/ai/categorization/suggestions/{id}/approve`: Approve (optionally edit) a suggestion.
    - `POST /api/v1/ai/categorization/suggestions/{id}/reject`: Reject a suggestion.
    - `POST /api/v1/ai/categorization/suggestions/clear`: Clear all pending suggestions.
    - `POST /api/v1/transactions/import-csv`: Import uncategorized transactions.
    - `GET /health`: Health check endpoint.
    - `GET /scalar`: Interactive Scalar OpenAPI documentation.
    """,
    version="1.0.0",
)
app.include_router(router)


@app.get("/scalar", include_in_schema=False)
async def scalar_docs() -> JSONResponse:
    """Return Scalar API reference."""
    return get_scalar_api_reference(openapi_url=app.openapi_url, title=app.title)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("main:app", host=settings.server_host, port=settings.server_port, reload=True)
