"""Agent registry for classifier backends.

Classifier implementations register under a name; ``settings.classifier_backend`` selects which
one the API builds for a categorization run.
"""

from typing import ClassVar

from app.agents.base import BaseAgent


class AgentRegistry:
    """Registry for agent classes."""

    _registry: ClassVar[dict[str, type[BaseAgent]]] = {}

    @classmethod
    def register(cls, name: str, agent_cls: type[BaseAgent]) -> None:
        """Register an agent class with a given name."""
        cls._registry[name] = agent_cls

    @classmethod
    def get(cls, name: str) -> type[BaseAgent]:
        """Retrieve an agent class by name."""
        try:
            return cls._registry[name]
        except KeyError:
            msg = f"Unknown classifier backend '{name}'. Available: {', '.join(cls.available()) or 'none'}"
            raise KeyError(msg) from None

    @classmethod
    def available(cls) -> list[str]:
        """List all available agent names."""
        return list(cls._registry.keys())
