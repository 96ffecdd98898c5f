"""
Image grading strategy.

Images are sent to the judge as content parts. The judge's feedback is
then reconciled with its score: a final score stated in the feedback
that disagrees with the returned points by more than one point replaces
them, and the feedback always ends up stating the final score.
"""

import base64
import logging
import re
from pathlib import Path

from gradeflow.config import Settings, get_settings
from gradeflow.judgment.service import JudgmentService
from gradeflow.localization import LocalizationService
from gradeflow.models import (
    Feedback,
    GradingContext,
    GradingResult,
    ImageEvaluation,
    ImageReference,
    Question,
    QuestionResponseInput,
    ScoringType,
)
from gradeflow.strategies.judged import JudgedStrategy

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_FORMATS = ("jpg", "jpeg", "png", "gif", "bmp", "webp", "tiff")

MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "webp": "image/webp",
    "tiff": "image/tiff",
}

# Only final-score phrasings; per-criterion scores are ignored
FINAL_SCORE_PATTERNS = (
    re.compile(r"(?:total\s*score|final\s*score|overall\s*score):\s*(\d+)", re.IGNORECASE),
    re.compile(r"(?:awarded|final\s*grade):\s*(\d+)\s*(?:points?|pts?)?$", re.IGNORECASE),
    re.compile(r"^(?:score|total):\s*(\d+)\s*(?:/\s*\d+)?", re.IGNORECASE | re.MULTILINE),
    re.compile(
        r"(\d+)\s*(?:points?|pts?)\s*(?:out\s*of|/)\s*\d+\s*(?:total|maximum)?$", re.IGNORECASE
    ),
)

SCORE_MENTION = re.compile(r"(?:total|final|score|awarded).*?(\d+).*?(?:points?|/)", re.IGNORECASE)

POSITIVE_WORDS = ("excellent", "great", "good", "well done", "perfect", "outstanding", "impressive")
IMPROVEMENT_WORDS = ("improve", "missing", "lacks", "needs", "consider", "should", "could")

_DATA_URL_PREFIX = re.compile(r"^data:image/[a-z]+;base64,")


def extract_points_from_feedback(feedback: str) -> list[int]:
    points: list[int] = []
    for pattern in FINAL_SCORE_PATTERNS:
        points.extend(int(match.group(1)) for match in pattern.finditer(feedback))
    return points


def decoded_size(data: str) -> int:
    """Approximate byte size of base64 image data."""
    return len(_DATA_URL_PREFIX.sub("", data)) * 3 // 4


def _format_points(value: float) -> str:
    return f"{value:g}"


def enhance_feedback(feedback: str, awarded: float, max_points: float) -> str:
    """Make sure the feedback states the score and its tone fits it."""
    enhanced = feedback
    if not SCORE_MENTION.search(feedback):
        enhanced += f"\n\nFinal Score: {_format_points(awarded)}/{_format_points(max_points)} points"

    ratio = awarded / max_points if max_points else 0.0
    if "%" not in enhanced and "percent" not in enhanced:
        enhanced += f" ({round(ratio * 100)}%)"

    lowered = feedback.lower()
    if ratio >= 0.9 and not any(word in lowered for word in POSITIVE_WORDS):
        enhanced = "Excellent work! " + enhanced
    elif ratio <= 0.5 and not any(word in lowered for word in IMPROVEMENT_WORDS):
        enhanced += " Consider reviewing the requirements and resubmitting with the missing elements."
    return enhanced


def reconcile_score(points: float, feedback: str, max_points: float) -> tuple[float, str]:
    """
    Reconcile the judge's points with any final score stated in its feedback.

    Returns:
        The points to award and the enhanced feedback. When the stated
        score replaces the judge's points, the feedback ends with a note
        saying so.
    """
    validated = min(max(points, 0.0), max_points)
    stated = extract_points_from_feedback(feedback)

    if stated:
        stated_total = float(sum(stated))
        if abs(stated_total - validated) > 1:
            logger.warning(
                "Feedback states %s points but the grade is %s", stated_total, validated
            )
            if 0 <= stated_total <= max_points:
                enhanced = enhance_feedback(feedback, stated_total, max_points)
                note = (
                    f"Score adjusted to {_format_points(stated_total)}/{_format_points(max_points)} "
                    "to match the feedback."
                )
                return stated_total, f"{enhanced}\n\n{note}"

    return validated, enhance_feedback(feedback, validated, max_points)


class ImageGradingStrategy(JudgedStrategy[list[ImageReference]]):
    """Scores image uploads with a multimodal judge."""

    def __init__(
        self,
        judgment: JudgmentService,
        localization: LocalizationService | None = None,
        settings: Settings | None = None,
    ):
        super().__init__(judgment, localization)
        self._settings = settings or get_settings()

    async def validate(self, question: Question, response: QuestionResponseInput) -> bool:
        images = response.learner_image_response or []
        if not images:
            raise self.validation_error("expectedImageResponse", response)

        max_bytes = self._settings.max_image_size_mb * 1024 * 1024
        for image in images:
            filename = image.filename or "unknown"
            has_direct = bool(image.inline_data or image.image_url)
            has_stored = bool(image.storage_key and image.storage_bucket)
            if not image.filename or not (has_direct or has_stored):
                raise self.validation_error("invalidImageResponse", response, filename=filename)
            if image.extension not in SUPPORTED_IMAGE_FORMATS:
                raise self.validation_error(
                    "unsupportedImageFormat", response, format=image.extension or filename
                )
            if image.inline_data and decoded_size(image.inline_data) > max_bytes:
                raise self.validation_error(
                    "imageTooLarge",
                    response,
                    filename=filename,
                    max=f"{self._settings.max_image_size_mb:g}",
                )
        return True

    async def extract(self, response: QuestionResponseInput) -> list[ImageReference]:
        images = []
        for image in response.learner_image_response or []:
            if not image.mime_type:
                image = image.model_copy(
                    update={"mime_type": MIME_TYPES.get(image.extension, "image/jpeg")}
                )
            images.append(image)
        return images

    async def grade(
        self, question: Question, learner_response: list[ImageReference], context: GradingContext
    ) -> GradingResult:
        model = ImageEvaluation(
            **self.evaluation_fields(question, context),
            images=learner_response,
            image_payloads=[p for p in (self._payload(i) for i in learner_response) if p],
            learner_text_response=None,
        )
        judgment = await self._judgment.grade_image_based(
            model, context.assignment_id, context.language
        )

        points, feedback = reconcile_score(judgment.points, judgment.feedback, question.total_points)
        result = self.result_from_judgment(judgment)
        result.total_points = points
        result.feedback = [Feedback(feedback=feedback)]

        scoring_type = question.scoring.type if question.scoring else ScoringType.CRITERIA_BASED
        result.metadata.update(
            {
                "imageCount": len(learner_response),
                "primaryImageFilename": learner_response[0].filename,
                "imageFormats": [image.extension or "unknown" for image in learner_response],
                "totalImageSize": sum(
                    decoded_size(i.inline_data) if i.inline_data else (i.size or 0)
                    for i in learner_response
                ),
                "hasTextualResponse": False,
                "maxPossiblePoints": question.total_points,
                "scoringType": scoring_type.value,
            }
        )
        return result

    def _payload(self, image: ImageReference) -> str | None:
        """A data URL or http(s) URL the judge can load."""
        if image.inline_data:
            if image.inline_data.startswith("data:"):
                return image.inline_data
            return f"data:{image.mime_type};base64,{image.inline_data}"

        if image.image_url:
            return image.image_url

        bucket, key = image.storage_bucket, image.storage_key
        if not (bucket and key):
            return None
        if self._settings.file_storage_base_url:
            return f"{self._settings.file_storage_base_url}/{bucket}/{key}"

        path = Path(self._settings.file_storage_root) / bucket / key
        try:
            encoded = base64.b64encode(path.read_bytes()).decode("ascii")
        except OSError as e:
            logger.warning("Stored image %s could not be read: %s", path, e)
            return None
        return f"data:{image.mime_type};base64,{encoded}"
