"""API package: provides FastAPI dependencies and route definitions for the application."""

from .dependencies import get_classifier, get_session_factory, get_user_id  # noqa: F401
from .routes import router  # noqa: F401
