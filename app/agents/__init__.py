"""Agents package: provides the classifier registry, base class, and the Groq categorization agent."""

from .base import BaseAgent  # noqa: F401
from .categorization_agent import CategorizationAgent  # noqa: F401
from .registry import AgentRegistry  # noqa: F401
