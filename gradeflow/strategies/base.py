"""
Base classes for grading strategies.

A strategy validates the modality-specific part of a learner response,
extracts it into a typed value and scores it. The orchestrator drives the
three steps through `handle_response`.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from gradeflow.localization import LocalizationService
from gradeflow.models import (
    Feedback,
    GradingContext,
    GradingResult,
    Question,
    QuestionResponseInput,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ==============================================================================
# Errors
# ==============================================================================


class StrategyError(Exception):
    """
    Base error raised from a grading strategy.

    `message_key` is the localization key the message was built from.
    """

    def __init__(
        self,
        message: str,
        message_key: str | None = None,
        language: str = "en",
        question_id: int | None = None,
    ):
        self.message = message
        self.message_key = message_key
        self.language = language
        self.question_id = question_id
        super().__init__(message)


class ResponseValidationError(StrategyError):
    """The response is missing or malformed for the question's modality."""


class ResponseExtractionError(StrategyError):
    """The validated response could not be turned into a typed value."""


class GradingError(StrategyError):
    """Scoring failed, usually because the judgment service did."""

    def __init__(self, message: str, cause: Exception | None = None, **kwargs: Any):
        self.cause = cause
        super().__init__(message, **kwargs)


class NoStrategyError(StrategyError):
    """No strategy is registered for a question type and response type."""


# ==============================================================================
# Strategy Contract
# ==============================================================================


class GradingStrategy(ABC, Generic[T]):
    """
    Abstract base class for grading strategies.

    Subclasses implement `validate`, `extract` and `grade`. Validation
    and extraction failures are raised as-is; anything unexpected while
    grading is wrapped in `GradingError`.
    """

    def __init__(self, localization: LocalizationService | None = None):
        self._localization = localization or LocalizationService()

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def validate(self, question: Question, response: QuestionResponseInput) -> bool:
        """
        Check the response carries a usable answer for this modality.

        Raises:
            ResponseValidationError: If the answer is missing or malformed.
        """

    @abstractmethod
    async def extract(self, response: QuestionResponseInput) -> T:
        """Pull the typed learner answer out of the response."""

    @abstractmethod
    async def grade(
        self, question: Question, learner_response: T, context: GradingContext
    ) -> GradingResult:
        """Score the learner answer."""

    def audit_strategy_name(self, result: GradingResult) -> str:
        """Name recorded in the audit trail for this result."""
        return self.name

    async def handle_response(
        self,
        question: Question,
        response: QuestionResponseInput,
        context: GradingContext,
    ) -> tuple[GradingResult, T]:
        """Run validate, extract and grade in order."""
        await self.validate(question, response)
        learner_response = await self.extract(response)

        try:
            result = await self.grade(question, learner_response, context)
        except StrategyError:
            raise
        except Exception as e:
            logger.exception("%s failed to grade question %s", self.name, question.id)
            raise GradingError(
                f"Grading failed for question {question.id}: {e}",
                cause=e,
                language=context.language,
                question_id=question.id,
            ) from e

        return result.clamped(question.total_points), learner_response

    # --------------------------------------------------------------------------
    # Helpers
    # --------------------------------------------------------------------------

    def localize(self, key: str, language: str | None, **params: Any) -> str:
        return self._localization.get_localized_string(key, language, params)

    def validation_error(
        self, key: str, response: QuestionResponseInput, **params: Any
    ) -> ResponseValidationError:
        return ResponseValidationError(
            self.localize(key, response.language, **params),
            message_key=key,
            language=response.language,
            question_id=response.id,
        )

    def error_result(self, key: str, language: str | None, **params: Any) -> GradingResult:
        """A zero-point result carrying one localized feedback entry."""
        return GradingResult(
            total_points=0,
            feedback=[Feedback(feedback=self.localize(key, language, **params))],
        )
