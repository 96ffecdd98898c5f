"""
Presentation grading strategy for live recordings and slide decks.
"""

from gradeflow.models import (
    GradingContext,
    GradingResult,
    PresentationEvaluation,
    PresentationResponse,
    Question,
    QuestionResponseInput,
)
from gradeflow.strategies.judged import JudgedStrategy


class PresentationGradingStrategy(JudgedStrategy[PresentationResponse]):
    """
    Scores an analysed presentation.

    An empty presentation object is accepted and judged as-is; only a
    missing one is rejected.
    """

    async def validate(self, question: Question, response: QuestionResponseInput) -> bool:
        if response.learner_presentation_response is None:
            raise self.validation_error("expectedPresentationResponse", response)
        return True

    async def extract(self, response: QuestionResponseInput) -> PresentationResponse:
        return response.learner_presentation_response or PresentationResponse()

    async def grade(
        self, question: Question, learner_response: PresentationResponse, context: GradingContext
    ) -> GradingResult:
        model = PresentationEvaluation(
            **self.evaluation_fields(question, context),
            presentation=learner_response,
        )
        judgment = await self._judgment.grade_presentation_based(
            model, context.assignment_id, context.language
        )
        return self.result_from_judgment(judgment)
