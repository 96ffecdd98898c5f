"""
Shared plumbing for strategies that delegate scoring to the judgment service.
"""

from typing import Any, TypeVar

from gradeflow.judgment.service import JudgmentService
from gradeflow.localization import LocalizationService
from gradeflow.models import (
    Feedback,
    GradingContext,
    GradingResult,
    JudgmentResult,
    Question,
    ResponseType,
)
from gradeflow.strategies.base import GradingStrategy

T = TypeVar("T")


class JudgedStrategy(GradingStrategy[T]):
    """A strategy whose score comes from the judgment service."""

    def __init__(
        self,
        judgment: JudgmentService,
        localization: LocalizationService | None = None,
    ):
        super().__init__(localization)
        self._judgment = judgment

    @staticmethod
    def evaluation_fields(question: Question, context: GradingContext) -> dict[str, Any]:
        """Fields every evaluation model shares."""
        return {
            "question": question.question,
            "question_answer_context": context.question_answer_context,
            "assignment_instructions": context.assignment_instructions,
            "total_points": question.total_points,
            "scoring_type": question.scoring.type.value if question.scoring else "",
            "scoring": question.scoring,
            "response_type": (question.response_type or ResponseType.OTHER).value,
        }

    @staticmethod
    def result_from_judgment(judgment: JudgmentResult) -> GradingResult:
        metadata: dict[str, Any] = {}
        if judgment.rubric_scores:
            metadata["rubricScores"] = [
                score.model_dump(by_alias=True, exclude_none=True) for score in judgment.rubric_scores
            ]
        if judgment.rationale:
            metadata["gradingRationale"] = judgment.rationale
        return GradingResult(
            total_points=judgment.points,
            feedback=[Feedback(feedback=judgment.feedback)],
            metadata=metadata,
        )
