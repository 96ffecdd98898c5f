"""
Response orchestration.

Turns a submission (one response per question) into grading results:
resolve the question and its grading context, pick the strategy, run
validate, extract and grade, check consistency, persist and audit.
Question responses of one submission are processed concurrently.
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError
from pydantic_core import to_jsonable_python

from gradeflow.audit import GradingAuditService
from gradeflow.config import Settings, get_settings
from gradeflow.consistency import GradingConsistencyService
from gradeflow.localization import LocalizationService
from gradeflow.logging_setup import correlation_id_var, set_correlation_id
from gradeflow.models import (
    AssignmentDetails,
    Feedback,
    GradingContext,
    GradingResult,
    Question,
    QuestionAnswerContext,
    QuestionResponseInput,
    QuestionResponseRecord,
    QuestionType,
    RubricScore,
    UserRole,
    utcnow,
)
from gradeflow.store.base import DataStore
from gradeflow.strategies.base import GradingStrategy, ResponseValidationError
from gradeflow.strategies.registry import StrategyRegistry
from gradeflow.url_fetcher import UrlContentFetcher

logger = logging.getLogger(__name__)


# ==============================================================================
# Errors and Outcomes
# ==============================================================================


class QuestionNotFoundError(Exception):
    """A submitted question id could not be resolved."""

    def __init__(self, question_id: int, message: str | None = None):
        self.question_id = question_id
        super().__init__(message or f"Question with ID {question_id} not found.")


@dataclass(frozen=True)
class ItemFailure:
    """A question response that could not be graded."""

    question_id: int
    error: Exception

    def __str__(self) -> str:
        return str(self.error)


ItemOutcome = GradingResult | ItemFailure


class SubmissionError(Exception):
    """One or more question responses of a submission failed."""

    def __init__(self, failures: list[ItemFailure]):
        self.failures = failures
        super().__init__(
            "Failed to process some question responses: "
            + ", ".join(str(failure) for failure in failures)
        )


@dataclass
class _ResolvedQuestion:
    question: Question
    instructions: str
    answer_context: list[QuestionAnswerContext]


# ==============================================================================
# Orchestrator
# ==============================================================================


class ResponseOrchestrator:
    """
    Grades the question responses of a submission.

    Learners' questions come from the store (translated override, attempt
    variant, then base question). Authors previewing an assignment supply
    their questions and assignment details directly, and nothing is
    persisted for them.
    """

    def __init__(
        self,
        store: DataStore,
        registry: StrategyRegistry,
        audit: GradingAuditService,
        consistency: GradingConsistencyService,
        localization: LocalizationService | None = None,
        settings: Settings | None = None,
        fetcher: UrlContentFetcher | None = None,
    ):
        self._store = store
        self._registry = registry
        self._audit = audit
        self._consistency = consistency
        self._localization = localization or LocalizationService()
        self._settings = settings or get_settings()
        self._fetcher = fetcher or UrlContentFetcher(self._settings)

    async def submit_questions(
        self,
        responses: list[QuestionResponseInput],
        attempt_id: int | None,
        role: UserRole,
        assignment_id: int,
        language: str = "en",
        author_questions: list[Question] | None = None,
        assignment_details: AssignmentDetails | None = None,
        translated_questions: dict[int, Question] | None = None,
    ) -> list[GradingResult]:
        """
        Grade every response of a submission concurrently.

        Returns:
            One result per response, in submission order.

        Raises:
            SubmissionError: If any response failed; carries every failure.
        """
        if correlation_id_var.get() is None:
            set_correlation_id(uuid.uuid4().hex)

        outcomes = await asyncio.gather(
            *(
                self._process(
                    response,
                    attempt_id,
                    role,
                    assignment_id,
                    language,
                    author_questions,
                    assignment_details,
                    translated_questions,
                )
                for response in responses
            )
        )

        failures = [outcome for outcome in outcomes if isinstance(outcome, ItemFailure)]
        if failures:
            logger.error(
                "Submission failed",
                extra={
                    "context": {
                        "assignment_id": assignment_id,
                        "attempt_id": attempt_id,
                        "failed_questions": [f.question_id for f in failures],
                        "total": len(outcomes),
                    }
                },
            )
            raise SubmissionError(failures)

        return [outcome for outcome in outcomes if isinstance(outcome, GradingResult)]

    async def _process(self, response: QuestionResponseInput, *args: Any) -> ItemOutcome:
        try:
            return await self.create_question_response(response, *args)
        except Exception as e:
            return ItemFailure(question_id=response.id, error=e)

    async def create_question_response(
        self,
        response: QuestionResponseInput,
        attempt_id: int | None,
        role: UserRole,
        assignment_id: int,
        language: str = "en",
        author_questions: list[Question] | None = None,
        assignment_details: AssignmentDetails | None = None,
        translated_questions: dict[int, Question] | None = None,
    ) -> GradingResult:
        """Grade, persist and audit a single question response."""
        response = response.model_copy(update={"language": language})
        question_id = response.id

        if role == UserRole.LEARNER:
            if attempt_id is None:
                raise ValueError("Learner submissions require an attempt id")
            resolved = await self._learner_question(
                question_id, attempt_id, assignment_id, translated_questions
            )
        else:
            resolved = self._author_question(question_id, author_questions, assignment_details)
        question = resolved.question

        if response.is_empty():
            result = GradingResult(
                total_points=0,
                feedback=[
                    Feedback(feedback=self._localization.get_localized_string("noResponse", language))
                ],
            )
            if role == UserRole.LEARNER:
                result = await self._save(attempt_id, question_id, "", result)  # type: ignore[arg-type]
            return result.model_copy(update={"question_id": question_id, "question": question.question})

        context = GradingContext(
            assignment_id=assignment_id,
            assignment_instructions=resolved.instructions,
            question_answer_context=resolved.answer_context,
            language=language,
            user_role=role,
            metadata={
                "attemptId": attempt_id,
                "questionType": question.type.value,
                "responseType": question.response_type.value if question.response_type else None,
            },
        )
        log_context = {
            "question_id": question_id,
            "question_type": question.type.value,
            "assignment_id": assignment_id,
            "attempt_id": attempt_id,
            "role": role.value,
        }

        strategy = self._strategy_for(question, response)
        logger.info(
            "Grading question response",
            extra={"context": {**log_context, "strategy": strategy.name}},
        )

        started = time.perf_counter()
        try:
            result, learner_response = await strategy.handle_response(question, response, context)
        except Exception as e:
            logger.error(
                "Failed to process question response",
                extra={"context": {**log_context, "error": str(e)}},
            )
            raise

        result = await self._check_consistency(question, response, result)

        if role == UserRole.LEARNER:
            result = await self._save(attempt_id, question_id, learner_response, result)  # type: ignore[arg-type]

        await self._record(question, response, result, strategy, assignment_id, attempt_id)

        logger.info(
            "Graded question response",
            extra={
                "context": {
                    **log_context,
                    "strategy": strategy.name,
                    "points": result.total_points,
                    "max_points": question.total_points,
                    "duration_ms": round((time.perf_counter() - started) * 1000),
                }
            },
        )
        return result.model_copy(update={"question_id": question_id, "question": question.question})

    def _strategy_for(self, question: Question, response: QuestionResponseInput) -> GradingStrategy:
        """LINK_FILE answers are graded as a URL when one is given, else as files."""
        if question.type != QuestionType.LINK_FILE:
            return self._registry.for_question(question)

        if (response.learner_url_response or "").strip():
            return self._registry.resolve(QuestionType.URL)
        if response.learner_file_response:
            return self._registry.resolve(QuestionType.UPLOAD)
        raise ResponseValidationError(
            self._localization.get_localized_string("expectedLinkFileResponse", response.language),
            message_key="expectedLinkFileResponse",
            language=response.language,
            question_id=question.id,
        )

    # --------------------------------------------------------------------------
    # Question and context resolution
    # --------------------------------------------------------------------------

    async def _learner_question(
        self,
        question_id: int,
        attempt_id: int,
        assignment_id: int,
        translated_questions: dict[int, Question] | None,
    ) -> _ResolvedQuestion:
        question = (translated_questions or {}).get(question_id)
        if question is None:
            question = await self._store.find_question_variant(attempt_id, question_id)
        if question is None:
            question = await self._store.find_question(question_id)
        if question is None:
            raise QuestionNotFoundError(question_id)

        instructions = await self._store.find_assignment_instructions(assignment_id)
        if instructions is None:
            logger.warning(
                "Assignment %s not found, grading without instructions", assignment_id
            )
            instructions = ""

        answer_context = await self._answer_context(question, attempt_id)
        return _ResolvedQuestion(question, instructions, answer_context)

    def _author_question(
        self,
        question_id: int,
        author_questions: list[Question] | None,
        assignment_details: AssignmentDetails | None,
    ) -> _ResolvedQuestion:
        for question in author_questions or []:
            if question.id == question_id:
                instructions = assignment_details.instructions if assignment_details else ""
                return _ResolvedQuestion(question, instructions, [])
        raise QuestionNotFoundError(
            question_id, f"Question with ID {question_id} not found in author questions."
        )

    async def _answer_context(
        self, question: Question, attempt_id: int
    ) -> list[QuestionAnswerContext]:
        """Earlier answers of the attempt that the grader should see."""
        context_ids = question.grading_context_question_ids
        if not context_ids:
            return []

        latest = await self._store.find_latest_responses(attempt_id, context_ids)
        answers = []
        for context_id in context_ids:
            context_question = await self._store.find_question(context_id)
            if context_question is None:
                continue
            record = latest.get(context_id)
            answer = self._answer_text(record.learner_response if record else "")
            if context_question.type == QuestionType.URL and answer:
                answer = await self._url_answer(answer)
            answers.append(
                QuestionAnswerContext(
                    question_id=context_id,
                    question=context_question.question,
                    answer=answer,
                    question_type=context_question.type,
                )
            )
        return answers

    @staticmethod
    def _answer_text(learner_response: Any) -> str:
        if learner_response is None:
            return ""
        if isinstance(learner_response, str):
            return learner_response
        return json.dumps(learner_response, ensure_ascii=False)

    async def _url_answer(self, answer: str) -> str:
        """Replace a stored URL answer with the content behind it."""
        url = answer
        try:
            parsed = json.loads(answer)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict) and parsed.get("url"):
            url = str(parsed["url"])
        elif isinstance(parsed, str):
            url = parsed

        fetched = await self._fetcher.fetch(url)
        return json.dumps(
            {"url": url, "content": fetched.body, "isFunctional": fetched.is_functional},
            ensure_ascii=False,
        )

    # --------------------------------------------------------------------------
    # Side effects
    # --------------------------------------------------------------------------

    async def _check_consistency(
        self, question: Question, response: QuestionResponseInput, result: GradingResult
    ) -> GradingResult:
        """Compare with earlier gradings of equivalent answers."""
        text = response.comparable_text()
        if not text:
            return result

        response_hash = self._consistency.generate_response_hash(text, question.id, question.type)
        check = await self._consistency.check_consistency(
            question.id, response_hash, text, question.type
        )
        check = self._consistency.evaluate_deviation(
            check, result.total_points, question.total_points
        )

        rubric_scores = self._rubric_scores(result)
        await self._consistency.record_grading(
            question.id,
            response_hash,
            result.total_points,
            question.total_points,
            result.feedback_text(),
            rubric_scores,
        )

        if not check.similar:
            return result

        metadata = {**result.metadata, "consistency": check.model_dump(by_alias=True)}
        if check.should_adjust:
            logger.warning(
                "Inconsistent grading detected",
                extra={
                    "context": {
                        "question_id": question.id,
                        "points": result.total_points,
                        "previous_points": check.previous_grade,
                        "deviation": check.deviation_percentage,
                        "applied": self._settings.apply_consistency_corrections,
                    }
                },
            )
            if self._settings.apply_consistency_corrections and check.previous_grade is not None:
                metadata["consistencyAdjusted"] = {"originalPoints": result.total_points}
                adjusted = result.model_copy(
                    update={"total_points": check.previous_grade, "metadata": metadata}
                )
                return adjusted.clamped(question.total_points)

        return result.model_copy(update={"metadata": metadata})

    @staticmethod
    def _rubric_scores(result: GradingResult) -> list[RubricScore] | None:
        raw = result.metadata.get("rubricScores")
        if not raw:
            return None
        try:
            return [RubricScore.model_validate(score) for score in raw]
        except ValidationError:
            return None

    async def _save(
        self, attempt_id: int, question_id: int, learner_response: Any, result: GradingResult
    ) -> GradingResult:
        saved = await self._store.save_question_response(
            QuestionResponseRecord(
                attempt_id=attempt_id,
                question_id=question_id,
                learner_response=to_jsonable_python(learner_response, by_alias=True),
                points=result.total_points,
                feedback=[f.model_dump(by_alias=True, exclude_none=True) for f in result.feedback],
                metadata=to_jsonable_python(result.metadata) if result.metadata else None,
            )
        )
        return result.model_copy(update={"response_id": saved.id})

    async def _record(
        self,
        question: Question,
        response: QuestionResponseInput,
        result: GradingResult,
        strategy: GradingStrategy,
        assignment_id: int,
        attempt_id: int | None,
    ) -> None:
        request_payload = {
            "questionId": question.id,
            "questionType": question.type.value,
            "responseType": question.response_type.value if question.response_type else None,
            "language": response.language,
            "learnerResponse": response.comparable_text(),
        }
        if response.learner_text_response:
            request_payload["learnerTextResponse"] = response.learner_text_response

        response_payload = {
            "totalPoints": result.total_points,
            "maxPoints": question.total_points,
            "feedback": [f.model_dump(by_alias=True, exclude_none=True) for f in result.feedback],
            "metadata": to_jsonable_python(result.metadata),
        }

        entry = await self._audit.record_grading(
            question.id,
            request_payload,
            response_payload,
            strategy.audit_strategy_name(result),
            assignment_id=assignment_id,
            metadata={"attemptId": attempt_id, "responseId": result.response_id},
        )
        if entry is None:
            result.metadata["auditFailure"] = {
                "error": "audit record could not be written",
                "timestamp": utcnow().isoformat(),
            }
