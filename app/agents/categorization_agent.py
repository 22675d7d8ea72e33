"""CategorizationAgent: batch transaction categorization using a Groq-hosted LLM.

This module defines the agent the batch scheduler calls once per batch. It sends the batch and the
user's existing categories to the LLM, collects the (optionally streamed) answer, and validates it
into a :class:`ClassificationResult`. Client failures are translated into the job error taxonomy
(``AI_RATE_LIMITED``, ``AI_TIMEOUT``, ``AI_SERVICE_UNAVAILABLE``) so nothing Groq-specific leaks
into the scheduler.
"""

import json

import groq
from groq import Groq
from pydantic import ValidationError

from app.agents.base import BaseAgent
from app.agents.prompts import SYSTEM_PROMPT, USER_PROMPT_LOG_LABEL, USER_PROMPT_TEMPLATE
from app.agents.registry import AgentRegistry
from app.core.exceptions import ClassifierError, ErrorCode
from app.core.models import CategoryRef, ClassificationResult, TransactionRef
from app.core.settings import Settings
from app.core.utils import get_logger

MAX_OUTPUT_LOG_LEN = 300
HTTP_SERVER_ERROR = 500

logger = get_logger("ai-categorizer.agent")


def _get_color(color: str) -> str:
    try:
        from colorlog.escape_codes import escape_codes as _codes

        return _codes.get(color, "")
    except ImportError:
        return ""


def translate_client_error(exc: Exception) -> ClassifierError:
    """Map a Groq client exception onto the job error taxonomy."""
    if isinstance(exc, groq.RateLimitError):
        return ClassifierError(ErrorCode.AI_RATE_LIMITED)
    if isinstance(exc, groq.APITimeoutError):
        return ClassifierError(ErrorCode.AI_TIMEOUT)
    if isinstance(exc, groq.APIConnectionError | groq.InternalServerError):
        return ClassifierError(ErrorCode.AI_SERVICE_UNAVAILABLE)
    if isinstance(exc, groq.APIStatusError):
        retryable = exc.status_code >= HTTP_SERVER_ERROR
        return ClassifierError(
            ErrorCode.AI_SERVICE_UNAVAILABLE,
            f"The AI service rejected the request (HTTP {exc.status_code}).",
            retryable=retryable,
        )
    return ClassifierError(ErrorCode.AI_SERVICE_UNAVAILABLE, f"The AI service call failed: {exc}")


class CategorizationAgent(BaseAgent):
    """Agent responsible for LLM-based grouping of transactions into category suggestions."""

    def __init__(self, llm_client: object, settings: Settings) -> None:
        """Initialize the CategorizationAgent with an LLM client and settings."""
        self.llm_client = llm_client
        self.settings = settings

    @classmethod
    def from_settings(cls, settings: Settings) -> "CategorizationAgent":
        """Build the agent with a Groq client bounded by the classifier timeout."""
        client = Groq(api_key=settings.groq_api_key, timeout=settings.classifier_timeout_seconds, max_retries=0)
        return cls(client, settings)

    def classify(self, batch: list[TransactionRef], categories: list[CategoryRef]) -> ClassificationResult:
        """Ask the LLM to group ``batch`` under keywords and categories."""
        cyan = _get_color("cyan")
        yellow = _get_color("yellow")
        reset = _get_color("reset")
        logger.info(f"{cyan}AGENT: classifying {len(batch)} transactions against {len(categories)} categories{reset}")
        logger.info(f"{yellow}PROMPT: {USER_PROMPT_LOG_LABEL}{reset}")
        payload = {
            "transactions": [txn.model_dump(mode="json") for txn in batch],
            "existing_categories": [category.model_dump(mode="json") for category in categories],
        }
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": USER_PROMPT_TEMPLATE.format(payload=json.dumps(payload))},
        ]
        try:
            completion = self.llm_client.chat.completions.create(
                model=self.settings.groq_model,
                messages=messages,
                temperature=self.settings.groq_temperature,
                max_completion_tokens=self.settings.groq_max_completion_tokens,
                top_p=self.settings.groq_top_p,
                stream=self.settings.groq_stream,
                stop=self.settings.groq_stop,
            )
            raw_output = self._collect_llm_output(completion)
        except groq.GroqError as exc:
            logger.exception("Groq API call failed")
            raise translate_client_error(exc) from exc
        logger.info(f"{cyan}OUTPUT: {_truncate(raw_output)}{reset}")
        return self.parse_output(raw_output)

    def _collect_llm_output(self, completion: object) -> str:
        """Collect the full output from a streamed or a plain completion."""
        if not self.settings.groq_stream:
            return completion.choices[0].message.content or ""
        raw_output = ""
        for chunk in completion:
            raw_output += chunk.choices[0].delta.content or ""
        return raw_output

    @staticmethod
    def parse_output(raw_output: str) -> ClassificationResult:
        """Extract and validate the JSON object in the LLM output."""
        text = raw_output.strip()
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end < start:
            msg = "The AI service returned a response without a JSON object."
            logger.error(f"{msg} Output: {_truncate(text)}")
            raise ClassifierError(ErrorCode.AI_SERVICE_UNAVAILABLE, msg)
        try:
            return ClassificationResult.model_validate(json.loads(text[start : end + 1]))
        except (json.JSONDecodeError, ValidationError) as exc:
            msg = "The AI service returned an unreadable response."
            logger.warning(f"{msg} ({exc})")
            raise ClassifierError(ErrorCode.AI_SERVICE_UNAVAILABLE, msg) from exc


def _truncate(text: str) -> str:
    if len(text) > MAX_OUTPUT_LOG_LEN:
        return text[: MAX_OUTPUT_LOG_LEN - 3] + "..."
    return text


AgentRegistry.register("groq", CategorizationAgent)
