"""Base classifier abstraction for batch categorization agents.

This module defines the abstract base class every classifier backend implements: one call per
batch, returning grouped suggestions or raising a :class:`~app.core.exceptions.ClassifierError`.
"""

from abc import ABC, abstractmethod

from app.core.models import CategoryRef, ClassificationResult, TransactionRef
from app.core.settings import Settings


class BaseAgent(ABC):
    """Abstract base class for all classifier agents."""

    @classmethod
    @abstractmethod
    def from_settings(cls, settings: Settings) -> "BaseAgent":
        """Build the agent and its client from application settings."""

    @abstractmethod
    def classify(self, batch: list[TransactionRef], categories: list[CategoryRef]) -> ClassificationResult:
        """Group a batch of transactions under keywords and proposed categories."""
