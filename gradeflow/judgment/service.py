"""
Judgment service.

Scores free-form answers (text, URL content, files, images and
presentations) with the configured LLM and returns a `JudgmentResult`.
"""

import logging

from gradeflow.config import Settings, get_settings
from gradeflow.judgment.llm_client import LLMClient
from gradeflow.judgment.parser import JudgmentParseError, JudgmentParser
from gradeflow.judgment.prompt_builder import PromptBuilder
from gradeflow.models import (
    EvaluationBase,
    FileEvaluation,
    ImageEvaluation,
    JudgmentResult,
    PresentationEvaluation,
    TextEvaluation,
    UrlEvaluation,
)

logger = logging.getLogger(__name__)


class JudgmentService:
    """
    LLM-backed grader used by the text, URL, file, image and
    presentation strategies.

    A reply that cannot be parsed is retried once with a reminder to
    answer in JSON before the parse error propagates.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        llm_client: LLMClient | None = None,
        parser: JudgmentParser | None = None,
    ):
        self._settings = settings or get_settings()
        self._llm = llm_client or LLMClient(self._settings)
        self._parser = parser or JudgmentParser()

    async def grade_text_based(
        self, model: TextEvaluation, assignment_id: int, language: str = "en"
    ) -> JudgmentResult:
        prompt = PromptBuilder.build_text_prompt(model, language)
        return await self._judge(model, prompt, assignment_id, "text")

    async def grade_url_based(
        self, model: UrlEvaluation, assignment_id: int, language: str = "en"
    ) -> JudgmentResult:
        prompt = PromptBuilder.build_url_prompt(model, language)
        return await self._judge(model, prompt, assignment_id, "url")

    async def grade_file_based(
        self, model: FileEvaluation, assignment_id: int, language: str = "en"
    ) -> JudgmentResult:
        prompt = PromptBuilder.build_file_prompt(model, language)
        return await self._judge(model, prompt, assignment_id, "file")

    async def grade_image_based(
        self, model: ImageEvaluation, assignment_id: int, language: str = "en"
    ) -> JudgmentResult:
        prompt = PromptBuilder.build_image_prompt(model, language)
        content = PromptBuilder.image_content_parts(prompt, model.image_payloads)
        return await self._judge(model, content, assignment_id, "image")

    async def grade_presentation_based(
        self, model: PresentationEvaluation, assignment_id: int, language: str = "en"
    ) -> JudgmentResult:
        prompt = PromptBuilder.build_presentation_prompt(model, language)
        return await self._judge(model, prompt, assignment_id, "presentation")

    async def health_check(self) -> bool:
        return await self._llm.health_check()

    async def _judge(
        self,
        model: EvaluationBase,
        content: str | list,
        assignment_id: int,
        modality: str,
    ) -> JudgmentResult:
        system_prompt = PromptBuilder.get_system_prompt()
        logger.debug(
            "Requesting %s judgment",
            modality,
            extra={"context": {"assignment_id": assignment_id, "model": self._llm.model}},
        )

        response = await self._llm.generate(system_prompt, content)
        try:
            result = self._parser.parse(response, model.total_points)
        except JudgmentParseError:
            logger.warning("Unparseable %s judgment, asking again", modality)
            response = await self._llm.generate(
                system_prompt + "\n\nYour previous reply was not valid JSON. Reply with the JSON object only.",
                content,
            )
            result = self._parser.parse(response, model.total_points)

        logger.info(
            "Judged %s response: %.2f/%.2f",
            modality,
            result.points,
            model.total_points,
            extra={"context": {"assignment_id": assignment_id}},
        )
        return result
