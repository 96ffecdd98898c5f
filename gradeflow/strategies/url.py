"""
URL grading strategy.

The content behind the URL is fetched before judging. When nothing can
be fetched the answer scores zero with an explanatory message instead of
failing, and the audit trail records it as a failed fetch.
"""

import json
import logging
from urllib.parse import urlparse

from gradeflow.judgment.service import JudgmentService
from gradeflow.localization import LocalizationService
from gradeflow.models import (
    Feedback,
    GradingContext,
    GradingResult,
    Question,
    QuestionResponseInput,
    UrlEvaluation,
)
from gradeflow.strategies.judged import JudgedStrategy
from gradeflow.url_fetcher import UrlContentFetcher

logger = logging.getLogger(__name__)


def is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return bool(parsed.scheme and parsed.netloc)


def summarize_content(content: str, limit: int = 150) -> str:
    if not content:
        return "No content available"
    preview = content[:limit].strip()
    return f"{preview}..." if len(content) > limit else preview


class UrlGradingStrategy(JudgedStrategy[str]):
    """Fetches the submitted URL and scores its content."""

    def __init__(
        self,
        judgment: JudgmentService,
        fetcher: UrlContentFetcher,
        localization: LocalizationService | None = None,
    ):
        super().__init__(judgment, localization)
        self._fetcher = fetcher

    async def validate(self, question: Question, response: QuestionResponseInput) -> bool:
        url = (response.learner_url_response or "").strip()
        if not url:
            raise self.validation_error("expectedUrlResponse", response)
        if not is_valid_url(url):
            raise self.validation_error("invalidUrl", response, url=url)
        return True

    async def extract(self, response: QuestionResponseInput) -> str:
        return (response.learner_url_response or "").strip()

    async def grade(
        self, question: Question, learner_response: str, context: GradingContext
    ) -> GradingResult:
        fetched = await self._fetcher.fetch(learner_response)

        if not fetched.is_functional:
            logger.info("URL %s could not be fetched for question %s", learner_response, question.id)
            return GradingResult(
                total_points=0,
                feedback=[
                    Feedback(
                        feedback=self.localize(
                            "unableToFetchUrl", context.language, url=learner_response
                        )
                    )
                ],
                metadata={"error": "url_fetch_failed", "url": learner_response, "status": "error"},
            )

        model = UrlEvaluation(
            **self.evaluation_fields(question, context),
            url=learner_response,
            is_functional=True,
            url_content=json.dumps(fetched.body, ensure_ascii=False),
        )
        judgment = await self._judgment.grade_url_based(
            model, context.assignment_id, context.language
        )

        result = self.result_from_judgment(judgment)
        result.metadata.update(
            {
                "url": learner_response,
                "contentSummary": summarize_content(fetched.body),
                "contentLength": len(fetched.body),
                "isGithubRepo": "github.com" in learner_response,
                "gradingRationale": judgment.rationale or "URL content evaluated",
            }
        )
        return result

    def audit_strategy_name(self, result: GradingResult) -> str:
        outcome = "Failed" if result.metadata.get("error") == "url_fetch_failed" else "Success"
        return f"{self.name}-{outcome}"
