"""Core package: provides models, settings, exceptions, and shared utilities."""

from .models import JobState, SuggestionStatus  # noqa: F401
from .settings import Settings  # noqa: F401
from .utils import get_logger  # noqa: F401
