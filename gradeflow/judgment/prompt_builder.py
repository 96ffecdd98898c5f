"""
Prompt builder for the judgment service.

Constructs one user prompt per response modality. Every prompt shares
the same sections (question, context, rubric, answer) and asks for the
same JSON output so a single parser handles all of them.
"""

import json
from typing import Any

from gradeflow.models import (
    EvaluationBase,
    FileEvaluation,
    ImageEvaluation,
    PresentationEvaluation,
    ScoringType,
    TextEvaluation,
    UrlEvaluation,
)


class PromptBuilder:
    """
    Builds grading prompts for each response modality.

    The prompts are designed to:
    1. Grade only against the question, instructions and rubric
    2. Keep scores within the question's point range
    3. Produce consistent JSON output
    """

    SYSTEM_PROMPT = """You are an impartial academic grader.

RULES:
1. Grade ONLY against the question, the assignment instructions and the rubric provided.
2. Identical answers MUST receive identical scores.
3. Never award more than the maximum points or fewer than zero.
4. When a rubric is given, pick exactly one of its listed point levels per rubric and make the total equal the sum.
5. Write feedback addressed to the learner, in the requested language.

OUTPUT RULES:
- Respond with ONLY a JSON object, no text before or after it."""

    OUTPUT_FORMAT = """OUTPUT FORMAT (respond with ONLY this JSON):
{{
  "points": <number between 0 and {max_points}>,
  "feedback": "<feedback for the learner>",
  "rationale": "<short explanation of how the score was reached>",
  "rubric_scores": [
    {{"rubric_question": "<rubric>", "points_awarded": <number>, "justification": "<evidence>"}}
  ]
}}"""

    @staticmethod
    def get_system_prompt() -> str:
        """Get the system prompt shared by all judgment calls."""
        return PromptBuilder.SYSTEM_PROMPT

    @staticmethod
    def build_text_prompt(model: TextEvaluation, language: str) -> str:
        answer = f"LEARNER ANSWER:\n---BEGIN ANSWER---\n{model.learner_response}\n---END ANSWER---"
        return PromptBuilder._assemble(model, language, answer)

    @staticmethod
    def build_url_prompt(model: UrlEvaluation, language: str) -> str:
        answer = (
            f"LEARNER SUBMITTED URL: {model.url}\n"
            f"URL REACHABLE: {'yes' if model.is_functional else 'no'}\n"
            f"---BEGIN URL CONTENT---\n{model.url_content}\n---END URL CONTENT---"
        )
        return PromptBuilder._assemble(model, language, answer)

    @staticmethod
    def build_file_prompt(model: FileEvaluation, language: str) -> str:
        sections = []
        for index, file in enumerate(model.files, start=1):
            sections.append(
                f"FILE {index}: {file.filename}\n---BEGIN FILE---\n{file.content}\n---END FILE---"
            )
        answer = "LEARNER FILES:\n" + "\n\n".join(sections)
        return PromptBuilder._assemble(model, language, answer)

    @staticmethod
    def build_image_prompt(model: ImageEvaluation, language: str) -> str:
        names = ", ".join(image.filename or f"image {i}" for i, image in enumerate(model.images, 1))
        answer = f"LEARNER IMAGES (attached in order): {names}"
        if model.learner_text_response:
            answer += f"\nLEARNER NOTES:\n{model.learner_text_response}"
        return PromptBuilder._assemble(model, language, answer)

    @staticmethod
    def build_presentation_prompt(model: PresentationEvaluation, language: str) -> str:
        presentation = model.presentation
        parts = [
            f"TRANSCRIPT:\n{presentation.transcript or '(none)'}",
            f"SPEECH ANALYSIS:\n{presentation.speech_report or '(none)'}",
            f"CONTENT ANALYSIS:\n{presentation.content_report or '(none)'}",
        ]
        if presentation.body_language_score is not None:
            parts.append(
                f"BODY LANGUAGE SCORE: {presentation.body_language_score}\n"
                f"{presentation.body_language_explanation or ''}"
            )
        if presentation.slides:
            parts.append("SLIDES:\n" + json.dumps(presentation.slides, ensure_ascii=False, default=str))
        return PromptBuilder._assemble(model, language, "LEARNER PRESENTATION:\n" + "\n\n".join(parts))

    @staticmethod
    def _assemble(model: EvaluationBase, language: str, answer_section: str) -> str:
        lines: list[str] = [
            "GRADING TASK",
            "",
            f"QUESTION ({model.total_points} points, response type {model.response_type}):",
            model.question,
            "",
        ]

        if model.assignment_instructions:
            lines += ["ASSIGNMENT INSTRUCTIONS:", model.assignment_instructions, ""]

        if model.question_answer_context:
            lines.append("EARLIER ANSWERS FROM THIS LEARNER (context only, do not grade):")
            for item in model.question_answer_context:
                lines.append(f"- Q: {item.question}\n  A: {item.answer}")
            lines.append("")

        lines += PromptBuilder._format_rubrics(model)
        lines += [answer_section, "", f"Write the feedback in language: {language}", ""]
        lines.append(PromptBuilder.OUTPUT_FORMAT.format(max_points=model.total_points))
        return "\n".join(lines)

    @staticmethod
    def _format_rubrics(model: EvaluationBase) -> list[str]:
        scoring = model.scoring
        if scoring is None or not scoring.rubrics:
            return []

        lines = ["RUBRIC:"]
        if scoring.type == ScoringType.CRITERIA_BASED:
            lines.append("Choose exactly one listed level per rubric.")
        for i, rubric in enumerate(scoring.rubrics, start=1):
            lines.append(f"{i}. {rubric.rubric_question}")
            for criterion in rubric.criteria:
                lines.append(f"   - {criterion.points} points: {criterion.description}")
        lines.append("")
        return lines

    @staticmethod
    def image_content_parts(prompt: str, payloads: list[str]) -> list[dict[str, Any]]:
        """Combine a prompt with image URLs into OpenAI content parts."""
        parts: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        for payload in payloads:
            parts.append({"type": "image_url", "image_url": {"url": payload}})
        return parts
