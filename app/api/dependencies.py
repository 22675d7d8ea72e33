"""FastAPI dependencies for DI (settings, sessions, classifier, services, current user).

This module provides dependency injection helpers so the routes stay thin and tests can swap the
session factory or the classifier through ``app.dependency_overrides``.
"""

from fastapi import Depends, Header
from sqlalchemy.orm import sessionmaker

from app.agents.base import BaseAgent
from app.agents.registry import AgentRegistry
from app.core.db import SessionLocal
from app.core.settings import Settings, get_settings
from app.services.job_controller import JobController
from app.services.review_service import ReviewService
from app.services.status_reporter import StatusReporter


def get_session_factory() -> sessionmaker:
    """Provide the application session factory."""
    return SessionLocal


def get_classifier(settings: Settings = Depends(get_settings)) -> BaseAgent:
    """Provide the classifier selected by ``settings.classifier_backend``."""
    return AgentRegistry.get(settings.classifier_backend).from_settings(settings)


def get_user_id(x_user_id: str | None = Header(default=None), settings: Settings = Depends(get_settings)) -> str:
    """Resolve the current user from the ``X-User-Id`` header (authentication happens upstream)."""
    return x_user_id or settings.default_user_id


def get_job_controller(
    session_factory: sessionmaker = Depends(get_session_factory), settings: Settings = Depends(get_settings)
) -> JobController:
    """Provide a JobController."""
    return JobController(session_factory, settings)


def get_status_reporter(session_factory: sessionmaker = Depends(get_session_factory)) -> StatusReporter:
    """Provide a StatusReporter."""
    return StatusReporter(session_factory)


def get_review_service(
    session_factory: sessionmaker = Depends(get_session_factory), settings: Settings = Depends(get_settings)
) -> ReviewService:
    """Provide a ReviewService."""
    return ReviewService(session_factory, settings)
