"""
Choice grading strategy for single and multiple correct questions.

Scoring is local: learner selections are matched to the question's
choices by normalized label.
"""

import logging
import re
from typing import Any

from gradeflow.localization import format_template
from gradeflow.models import (
    Choice,
    Feedback,
    GradingContext,
    GradingResult,
    Question,
    QuestionResponseInput,
    QuestionType,
    ScoringType,
)
from gradeflow.strategies.base import GradingStrategy, ResponseValidationError

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[!,.،؛؟]")

_LABEL_KEYS = ("choice", "value", "label", "text", "name", "title")


def coerce_to_string(value: Any) -> str:
    """Turn a learner selection (string, number or object) into its label."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, dict):
        for key in _LABEL_KEYS:
            if key not in value:
                continue
            candidate = value[key]
            if isinstance(candidate, (str, int, float, bool, dict)):
                coerced = coerce_to_string(candidate)
                if coerced:
                    return coerced
        for entry in value.values():
            if isinstance(entry, str):
                return entry
    return ""


def normalize_choice(text: Any) -> str:
    """Trim, lowercase and strip punctuation for label comparison."""
    return _PUNCTUATION.sub("", coerce_to_string(text).strip().lower())


class ChoiceGradingStrategy(GradingStrategy[list[str]]):
    """
    Grades SINGLE_CORRECT and MULTIPLE_CORRECT questions.

    Single choice awards the matched choice's points when it is correct.
    Multiple choice sums the points of correct selections and, under
    loss-per-mistake scoring, subtracts the points of incorrect ones. The
    total is clamped to the sum of the correct choices' points.
    """

    async def validate(self, question: Question, response: QuestionResponseInput) -> bool:
        if question.type not in (QuestionType.SINGLE_CORRECT, QuestionType.MULTIPLE_CORRECT):
            raise self.validation_error("unsupportedChoiceType", response, type=question.type.value)

        if question.type == QuestionType.SINGLE_CORRECT and len(response.learner_choices or []) > 1:
            raise self.validation_error("tooManyChoicesSelected", response, max=1)

        return True

    async def extract(self, response: QuestionResponseInput) -> list[str]:
        return [coerce_to_string(c) for c in (response.learner_choices or []) if c is not None]

    async def grade(
        self, question: Question, learner_response: list[str], context: GradingContext
    ) -> GradingResult:
        if question.type == QuestionType.SINGLE_CORRECT:
            return self._grade_single(question, learner_response, context.language)
        if question.type == QuestionType.MULTIPLE_CORRECT:
            return self._grade_multiple(question, learner_response, context.language)
        raise ResponseValidationError(
            self.localize("unsupportedChoiceType", context.language, type=question.type.value),
            message_key="unsupportedChoiceType",
            language=context.language,
            question_id=question.id,
        )

    # --------------------------------------------------------------------------
    # Single choice
    # --------------------------------------------------------------------------

    def _grade_single(self, question: Question, selections: list[str], language: str) -> GradingResult:
        if not selections:
            return GradingResult(
                total_points=0,
                feedback=[Feedback(choice="", feedback=self.localize("noOptionSelected", language))],
            )

        learner_choice = selections[0]
        correct = next((c for c in question.choices if c.is_correct), None)
        correct_label = correct.choice if correct else None
        selected = self._match(question.choices, learner_choice)

        if selected is None:
            return GradingResult(
                total_points=0,
                feedback=[
                    Feedback(
                        choice=learner_choice,
                        feedback=self.localize(
                            "invalidSelection", language, learnerChoice=learner_choice
                        ),
                    )
                ],
                metadata={
                    "isCorrect": False,
                    "error": "invalidSelection",
                    "correctChoice": correct_label,
                },
            )

        data = {
            "learnerChoice": learner_choice,
            "correctChoice": correct_label,
            "points": selected.points,
        }
        points = selected.points if selected.is_correct else 0.0
        return GradingResult(
            total_points=points,
            feedback=[Feedback(choice=learner_choice, feedback=self._choice_feedback(selected, data, language))],
            metadata={
                "isCorrect": selected.is_correct,
                "correctChoice": correct_label,
                "possiblePoints": selected.points,
                "scoredPoints": points,
            },
        )

    # --------------------------------------------------------------------------
    # Multiple choice
    # --------------------------------------------------------------------------

    def _grade_multiple(self, question: Question, selections: list[str], language: str) -> GradingResult:
        if not selections:
            return GradingResult(
                total_points=0,
                feedback=[Feedback(choice="", feedback=self.localize("noOptionSelected", language))],
            )

        correct_choices = [c for c in question.choices if c.is_correct]
        correct_labels = {normalize_choice(c.choice) for c in correct_choices}
        loss_per_mistake = question.scoring_type == ScoringType.LOSS_PER_MISTAKE

        total = 0.0
        details: list[str] = []
        selected: list[dict[str, Any]] = []

        for learner_choice in selections:
            matched = self._match(question.choices, learner_choice)
            if matched is None:
                message = self.localize("invalidSelection", language, learnerChoice=learner_choice)
                selected.append(
                    {"choice": learner_choice, "isCorrect": False, "points": 0, "feedback": message}
                )
                details.append(message)
                continue

            selected.append(
                {
                    "choice": matched.choice,
                    "isCorrect": matched.is_correct,
                    "points": matched.points,
                    "feedback": matched.feedback,
                }
            )
            if matched.is_correct:
                total += matched.points
            elif loss_per_mistake:
                total -= matched.points

            data = {"learnerChoice": learner_choice, "points": matched.points}
            details.append(self._choice_feedback(matched, data, language))

        max_points = sum(c.points for c in correct_choices)
        final_points = max(0.0, min(total, max_points))

        learner_labels = {normalize_choice(s) for s in selections}
        all_correct_selected = correct_labels <= learner_labels
        no_incorrect_selected = learner_labels <= correct_labels
        perfect = all_correct_selected and no_incorrect_selected

        if perfect:
            summary = self.localize("allCorrectSelected", language)
        else:
            summary = self.localize(
                "correctOptions",
                language,
                correctOptions=", ".join(c.choice for c in correct_choices),
            )
        message = ".\n".join(d.rstrip(".") for d in details) + ".\n" + summary

        return GradingResult(
            total_points=final_points,
            feedback=[Feedback(choice=", ".join(selections), feedback=message.strip())],
            metadata={
                "selectedChoices": selected,
                "correctChoices": [c.choice for c in correct_choices],
                "maxPoints": max_points,
                "actualPoints": total,
                "finalPoints": final_points,
                "perfectScore": perfect,
                "allCorrectSelected": all_correct_selected,
                "noIncorrectSelected": no_incorrect_selected,
            },
        )

    # --------------------------------------------------------------------------
    # Helpers
    # --------------------------------------------------------------------------

    @staticmethod
    def _match(choices: list[Choice], learner_choice: str) -> Choice | None:
        target = normalize_choice(learner_choice)
        return next((c for c in choices if normalize_choice(c.choice) == target), None)

    def _choice_feedback(self, choice: Choice, data: dict[str, Any], language: str) -> str:
        if choice.feedback:
            return format_template(choice.feedback, data)
        key = "correctSelection" if choice.is_correct else "incorrectSelection"
        return self.localize(key, language, **data)
