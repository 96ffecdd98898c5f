"""
File grading strategy.

Learner files are run through the content extraction service and the
extracted text is judged. When the judge's rubric scores do not add up
to its total, the rubric sum wins.
"""

import logging

from gradeflow.extractors.base import file_extension
from gradeflow.extractors.service import ContentExtractionService
from gradeflow.judgment.service import JudgmentService
from gradeflow.localization import LocalizationService
from gradeflow.models import (
    ExtractedContent,
    FileEvaluation,
    FileReference,
    GradingContext,
    GradingResult,
    Question,
    QuestionResponseInput,
)
from gradeflow.strategies.judged import JudgedStrategy

logger = logging.getLogger(__name__)


def extraction_status(files: list[ExtractedContent]) -> dict[str, int]:
    """Count successful, failed and partial extractions by content marker."""
    status = {"successful": 0, "failed": 0, "partial": 0}
    for file in files:
        if file.content.startswith("[ERROR:"):
            status["failed"] += 1
        elif file.content.startswith("[") and "extraction requires" in file.content:
            status["partial"] += 1
        else:
            status["successful"] += 1
    return status


class FileGradingStrategy(JudgedStrategy[list[FileReference]]):
    """Scores uploaded or linked files."""

    def __init__(
        self,
        judgment: JudgmentService,
        extraction: ContentExtractionService,
        localization: LocalizationService | None = None,
    ):
        super().__init__(judgment, localization)
        self._extraction = extraction

    async def validate(self, question: Question, response: QuestionResponseInput) -> bool:
        files = response.learner_file_response or []
        if not files:
            raise self.validation_error("expectedFileResponse", response)

        for file in files:
            if not (file.is_stored or file.is_linked):
                raise self.validation_error(
                    "invalidFileResponse", response, filename=file.filename or "unknown file"
                )
        return True

    async def extract(self, response: QuestionResponseInput) -> list[FileReference]:
        return list(response.learner_file_response or [])

    async def grade(
        self, question: Question, learner_response: list[FileReference], context: GradingContext
    ) -> GradingResult:
        extracted = await self._extraction.extract_content_from_files(learner_response)

        model = FileEvaluation(**self.evaluation_fields(question, context), files=extracted)
        judgment = await self._judgment.grade_file_based(
            model, context.assignment_id, context.language
        )
        result = self.result_from_judgment(judgment)

        if judgment.rubric_scores:
            rubric_sum = sum(score.points_awarded for score in judgment.rubric_scores)
            if rubric_sum != result.total_points:
                logger.warning(
                    "Rubric scores for question %s sum to %s but total was %s, correcting",
                    question.id,
                    rubric_sum,
                    result.total_points,
                )
                result.metadata["mathCorrected"] = True
                result.metadata["originalTotal"] = result.total_points
                result.total_points = max(0.0, min(rubric_sum, question.total_points))

        result.metadata.update(
            {
                "fileCount": len(learner_response),
                "fileTypes": sorted(
                    {file_extension(f.filename).lstrip(".") or "unknown" for f in extracted}
                ),
                "totalFileSize": sum(int(f.metadata.get("size") or 0) for f in extracted),
                "extractionStatus": extraction_status(extracted),
            }
        )
        return result
