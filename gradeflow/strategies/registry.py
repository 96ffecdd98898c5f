"""
Strategy registry.

Maps a question type, optionally narrowed by response type, to the
strategy that grades it. Unregistered combinations raise
`NoStrategyError` rather than falling back to a default.
"""

from gradeflow.config import Settings, get_settings
from gradeflow.extractors.service import ContentExtractionService
from gradeflow.judgment.service import JudgmentService
from gradeflow.localization import LocalizationService
from gradeflow.models import Question, QuestionType, ResponseType
from gradeflow.strategies.base import GradingStrategy, NoStrategyError
from gradeflow.strategies.choice import ChoiceGradingStrategy
from gradeflow.strategies.file import FileGradingStrategy
from gradeflow.strategies.image import ImageGradingStrategy
from gradeflow.strategies.presentation import PresentationGradingStrategy
from gradeflow.strategies.text import TextGradingStrategy
from gradeflow.strategies.true_false import TrueFalseGradingStrategy
from gradeflow.strategies.url import UrlGradingStrategy
from gradeflow.url_fetcher import UrlContentFetcher

RegistryKey = tuple[QuestionType, ResponseType | None]


class StrategyRegistry:
    """Lookup table from (question type, response type) to strategy."""

    def __init__(self) -> None:
        self._strategies: dict[RegistryKey, GradingStrategy] = {}

    def register(
        self,
        question_type: QuestionType,
        strategy: GradingStrategy,
        response_types: list[ResponseType] | None = None,
    ) -> None:
        """
        Register a strategy.

        Without `response_types` the strategy is the fallback for every
        response type of the question type.
        """
        if response_types is None:
            self._strategies[(question_type, None)] = strategy
            return
        for response_type in response_types:
            self._strategies[(question_type, response_type)] = strategy

    def resolve(
        self, question_type: QuestionType, response_type: ResponseType | None = None
    ) -> GradingStrategy:
        strategy = self._strategies.get((question_type, response_type))
        if strategy is None:
            strategy = self._strategies.get((question_type, None))
        if strategy is None:
            label = f"{question_type.value}/{response_type.value if response_type else '-'}"
            raise NoStrategyError(f"No grading strategy registered for {label}")
        return strategy

    def for_question(self, question: Question) -> GradingStrategy:
        return self.resolve(question.type, question.response_type)

    def __contains__(self, key: RegistryKey) -> bool:
        return key in self._strategies


def build_default_registry(
    judgment: JudgmentService,
    localization: LocalizationService | None = None,
    fetcher: UrlContentFetcher | None = None,
    extraction: ContentExtractionService | None = None,
    settings: Settings | None = None,
) -> StrategyRegistry:
    """
    Create a registry with every built-in strategy.

    UPLOAD questions route to the presentation strategy for recordings
    and presentations, to the image strategy for images, and to the file
    strategy otherwise. LINK_FILE questions are routed by the
    orchestrator and have no entry here.
    """
    settings = settings or get_settings()
    localization = localization or LocalizationService()
    fetcher = fetcher or UrlContentFetcher(settings)
    extraction = extraction or ContentExtractionService(settings)

    choice = ChoiceGradingStrategy(localization)
    file_strategy = FileGradingStrategy(judgment, extraction, localization)

    registry = StrategyRegistry()
    registry.register(QuestionType.TEXT, TextGradingStrategy(judgment, localization))
    registry.register(QuestionType.URL, UrlGradingStrategy(judgment, fetcher, localization))
    registry.register(QuestionType.TRUE_FALSE, TrueFalseGradingStrategy(localization))
    registry.register(QuestionType.SINGLE_CORRECT, choice)
    registry.register(QuestionType.MULTIPLE_CORRECT, choice)
    registry.register(QuestionType.UPLOAD, file_strategy)
    registry.register(
        QuestionType.UPLOAD,
        PresentationGradingStrategy(judgment, localization),
        [ResponseType.LIVE_RECORDING, ResponseType.PRESENTATION],
    )
    registry.register(
        QuestionType.UPLOAD,
        ImageGradingStrategy(judgment, localization, settings),
        [ResponseType.IMAGES],
    )
    return registry
