"""
Text grading strategy.
"""

from gradeflow.models import (
    GradingContext,
    GradingResult,
    Question,
    QuestionResponseInput,
    TextEvaluation,
)
from gradeflow.strategies.judged import JudgedStrategy


class TextGradingStrategy(JudgedStrategy[str]):
    """Scores free-text answers with the judgment service."""

    async def validate(self, question: Question, response: QuestionResponseInput) -> bool:
        if not (response.learner_text_response or "").strip():
            raise self.validation_error("expectedTextResponse", response)
        return True

    async def extract(self, response: QuestionResponseInput) -> str:
        return (response.learner_text_response or "").strip()

    async def grade(
        self, question: Question, learner_response: str, context: GradingContext
    ) -> GradingResult:
        model = TextEvaluation(
            **self.evaluation_fields(question, context),
            learner_response=learner_response,
        )
        judgment = await self._judgment.grade_text_based(
            model, context.assignment_id, context.language
        )
        return self.result_from_judgment(judgment)
