"""
Parser for judgment service output.

Extracts the JSON object from the model's reply and validates it into a
`JudgmentResult`, keeping points inside the question's range.
"""

import json
import re
from typing import Any

from gradeflow.models import JudgmentResult, RubricScore


class JudgmentParseError(Exception):
    """Raised when the judge's reply cannot be turned into a score."""

    def __init__(self, message: str, raw_response: str | None = None):
        self.raw_response = raw_response
        super().__init__(message)


class JudgmentParser:
    """
    Parses judge replies.

    Ensures:
    1. Response contains a JSON object
    2. `points` and `feedback` are present
    3. Points are clamped into `[0, max_points]`
    """

    def parse(self, response: str, max_points: float) -> JudgmentResult:
        """
        Parse a judge reply.

        Args:
            response: Raw reply text.
            max_points: Upper bound for the awarded points.

        Returns:
            The validated judgment.

        Raises:
            JudgmentParseError: If parsing or validation fails.
        """
        json_str = self._extract_json(response)

        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise JudgmentParseError(f"Invalid JSON in response: {e}", raw_response=response) from e

        if not isinstance(data, dict):
            raise JudgmentParseError("Response JSON must be an object", raw_response=response)

        return self._convert(data, max_points, response)

    def _extract_json(self, response: str) -> str:
        """Pull a JSON object out of a fenced block or the outermost braces."""
        json_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", response)
        if json_match:
            return json_match.group(1).strip()

        brace_start = response.find("{")
        if brace_start == -1:
            raise JudgmentParseError("No JSON object found in response", raw_response=response)

        depth = 0
        for i, char in enumerate(response[brace_start:], start=brace_start):
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return response[brace_start : i + 1]

        raise JudgmentParseError("Unclosed JSON object in response", raw_response=response)

    def _convert(self, data: dict[str, Any], max_points: float, raw_response: str) -> JudgmentResult:
        if "points" not in data:
            raise JudgmentParseError("Missing required field: points", raw_response=raw_response)

        points = self._parse_number(data["points"], "points", raw_response)
        points = max(0.0, min(points, float(max_points)))

        feedback = data.get("feedback")
        if not isinstance(feedback, str) or not feedback.strip():
            raise JudgmentParseError("Missing required field: feedback", raw_response=raw_response)

        rubric_scores: list[RubricScore] = []
        raw_scores = data.get("rubric_scores") or []
        if not isinstance(raw_scores, list):
            raise JudgmentParseError("rubric_scores must be a list", raw_response=raw_response)
        for i, item in enumerate(raw_scores):
            if not isinstance(item, dict):
                raise JudgmentParseError(
                    f"rubric_scores[{i}] must be an object", raw_response=raw_response
                )
            awarded = item.get("points_awarded", item.get("points", item.get("score", 0)))
            rubric_scores.append(
                RubricScore(
                    rubric_question=item.get("rubric_question"),
                    points_awarded=self._parse_number(
                        awarded, f"rubric_scores[{i}].points_awarded", raw_response
                    ),
                    justification=item.get("justification"),
                )
            )

        rationale = data.get("rationale")
        return JudgmentResult(
            points=points,
            feedback=feedback.strip(),
            rationale=str(rationale) if rationale else None,
            rubric_scores=rubric_scores,
        )

    def _parse_number(self, value: Any, field_name: str, raw_response: str) -> float:
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise JudgmentParseError(
                f"Invalid numeric value for {field_name}: {value}", raw_response=raw_response
            ) from e
