"""
Whole-attempt grading.

Wraps the response orchestrator for a complete submission, reports
progress through an optional callback and turns the per-question results
into an attempt grade.
"""

import logging
from collections.abc import Awaitable, Callable

from pydantic import Field

from gradeflow.models import (
    AssignmentDetails,
    Feedback,
    GradingResult,
    Question,
    QuestionResponseInput,
    UserRole,
    WireModel,
)
from gradeflow.orchestrator import ResponseOrchestrator
from gradeflow.store.base import DataStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int | None], Awaitable[None]]


class AttemptSubmission(WireModel):
    """Everything needed to grade one attempt or author preview."""

    assignment_id: int
    attempt_id: int | None = None
    user_id: str = "anonymous"
    role: UserRole = UserRole.LEARNER
    language: str = "en"
    responses: list[QuestionResponseInput] = Field(default_factory=list)
    author_questions: list[Question] = Field(default_factory=list)
    assignment_details: AssignmentDetails | None = None
    translated_questions: dict[int, Question] = Field(default_factory=dict)


class QuestionFeedback(WireModel):
    """Per-question outcome shown after submission; score -1 means hidden."""

    question_id: int | None = None
    question: str | None = None
    total_points: float
    feedback: list[Feedback] = Field(default_factory=list)
    response_id: int | None = None


class AttemptGradeResult(WireModel):
    attempt_id: int | None = None
    success: bool = True
    total_points_earned: float = 0.0
    total_possible_points: float = 0.0
    grade: float = 0.0
    feedbacks_for_questions: list[QuestionFeedback] = Field(default_factory=list)


def calculate_grade(results: list[GradingResult], total_possible: float) -> tuple[float, float]:
    """
    Compute the attempt grade.

    Returns:
        (grade as a fraction of possible points, points earned)
    """
    if not results:
        return 0.0, 0.0
    earned = sum(result.total_points for result in results)
    grade = earned / total_possible if total_possible > 0 else 0.0
    return grade, earned


class AttemptGrader:
    """Grades a whole attempt through the orchestrator."""

    def __init__(self, store: DataStore, orchestrator: ResponseOrchestrator):
        self._store = store
        self._orchestrator = orchestrator

    async def grade(
        self, submission: AttemptSubmission, progress: ProgressCallback | None = None
    ) -> AttemptGradeResult:
        if submission.role == UserRole.AUTHOR:
            return await self._grade_author(submission, progress)
        return await self._grade_learner(submission, progress)

    async def _grade_learner(
        self, submission: AttemptSubmission, progress: ProgressCallback | None
    ) -> AttemptGradeResult:
        if submission.attempt_id is None:
            raise ValueError("Learner submissions require an attempt id")

        await self._report(progress, "Validating submission...", 5)
        await self._report(progress, "Preparing questions...", 10)
        await self._report(progress, "Processing question responses...", 20)

        results = await self._orchestrator.submit_questions(
            submission.responses,
            submission.attempt_id,
            UserRole.LEARNER,
            submission.assignment_id,
            submission.language,
            translated_questions=submission.translated_questions or None,
        )

        await self._report(progress, "Calculating grades...", 70)
        questions = {}
        for result in results:
            if result.question_id is not None:
                question = await self._store.find_question(result.question_id)
                if question is not None:
                    questions[question.id] = question
        outcome = self._build_result(submission.attempt_id, results, questions)

        await self._report(progress, "Saving results...", 90)
        await self._store.save_attempt_grade(submission.attempt_id, outcome.grade)

        logger.info(
            "Attempt graded",
            extra={
                "context": {
                    "attempt_id": submission.attempt_id,
                    "assignment_id": submission.assignment_id,
                    "grade": outcome.grade,
                    "earned": outcome.total_points_earned,
                    "possible": outcome.total_possible_points,
                }
            },
        )
        return outcome

    async def _grade_author(
        self, submission: AttemptSubmission, progress: ProgressCallback | None
    ) -> AttemptGradeResult:
        await self._report(progress, "Processing author preview...", 10)
        await self._report(progress, "Submitting questions...", 30)

        results = await self._orchestrator.submit_questions(
            submission.responses,
            None,
            UserRole.AUTHOR,
            submission.assignment_id,
            submission.language,
            author_questions=submission.author_questions,
            assignment_details=submission.assignment_details,
        )

        await self._report(progress, "Calculating grades...", 70)
        questions = {question.id: question for question in submission.author_questions}
        return self._build_result(None, results, questions)

    @staticmethod
    def _build_result(
        attempt_id: int | None, results: list[GradingResult], questions: dict[int, Question]
    ) -> AttemptGradeResult:
        total_possible = sum(
            questions[result.question_id].total_points
            for result in results
            if result.question_id in questions
        )
        grade, earned = calculate_grade(results, total_possible)

        feedbacks = []
        for result in results:
            question = questions.get(result.question_id)  # type: ignore[arg-type]
            show_score = question.show_question_score if question else True
            feedbacks.append(
                QuestionFeedback(
                    question_id=result.question_id,
                    question=result.question,
                    total_points=result.total_points if show_score else -1,
                    feedback=result.feedback,
                    response_id=result.response_id,
                )
            )

        return AttemptGradeResult(
            attempt_id=attempt_id,
            total_points_earned=earned,
            total_possible_points=total_possible if results else 0.0,
            grade=grade,
            feedbacks_for_questions=feedbacks,
        )

    @staticmethod
    async def _report(progress: ProgressCallback | None, message: str, percentage: int) -> None:
        if progress is not None:
            await progress(message, percentage)
