"""
Rubric score validation module.

Checks the per-rubric scores returned by the judge against the closed
set of point values each rubric declares, snapping invalid values to the
nearest declared level.
"""

from typing import Sequence

from gradeflow.models import Rubric, RubricScore, RubricValidationResult, Scoring


class RubricScoreValidator:
    """
    Validates rubric scores for criteria-based questions.

    Checks:
    1. One score is returned per rubric
    2. Every awarded value is one of the rubric's criterion point values
    """

    def validate_rubric_scores(
        self, rubric_scores: Sequence[RubricScore] | None, scoring: Scoring | None
    ) -> RubricValidationResult:
        """
        Validate rubric scores and return a corrected list.

        Args:
            rubric_scores: Scores returned by the judge, in rubric order.
            scoring: The question's scoring definition.

        Returns:
            RubricValidationResult with the issues found and the corrected scores.
        """
        if scoring is None or not scoring.rubrics:
            return RubricValidationResult(valid=True, corrections=list(rubric_scores or []))

        if rubric_scores is None:
            return RubricValidationResult(valid=False, issues=["Rubric scores are missing"])

        issues: list[str] = []
        corrections: list[RubricScore] = []

        if len(rubric_scores) != len(scoring.rubrics):
            issues.append(
                f"Rubric count mismatch: {len(rubric_scores)} scores for "
                f"{len(scoring.rubrics)} rubrics"
            )

        for score, rubric in zip(rubric_scores, scoring.rubrics):
            valid_points = self._valid_points(rubric)
            if not valid_points:
                continue

            if score.points_awarded in valid_points:
                corrections.append(score)
                continue

            issues.append(
                f'Invalid points {score.points_awarded:g} for rubric '
                f'"{score.rubric_question or "Unknown"}"'
            )
            closest = self._closest(valid_points, score.points_awarded)
            corrections.append(score.model_copy(update={"points_awarded": closest}))

        return RubricValidationResult(valid=not issues, issues=issues, corrections=corrections)

    @staticmethod
    def _valid_points(rubric: Rubric) -> list[float]:
        return [criterion.points for criterion in rubric.criteria]

    @staticmethod
    def _closest(valid_points: list[float], value: float) -> float:
        # first match wins on ties
        closest = valid_points[0]
        for candidate in valid_points:
            if abs(candidate - value) < abs(closest - value):
                closest = candidate
        return closest
