"""
Grading Strategies Module.

One strategy per response modality, resolved through `StrategyRegistry`.
"""

from gradeflow.strategies.base import (
    GradingError,
    GradingStrategy,
    NoStrategyError,
    ResponseExtractionError,
    ResponseValidationError,
    StrategyError,
)
from gradeflow.strategies.choice import ChoiceGradingStrategy
from gradeflow.strategies.file import FileGradingStrategy
from gradeflow.strategies.image import ImageGradingStrategy
from gradeflow.strategies.presentation import PresentationGradingStrategy
from gradeflow.strategies.registry import StrategyRegistry, build_default_registry
from gradeflow.strategies.text import TextGradingStrategy
from gradeflow.strategies.true_false import TrueFalseGradingStrategy
from gradeflow.strategies.url import UrlGradingStrategy

__all__ = [
    "ChoiceGradingStrategy",
    "FileGradingStrategy",
    "GradingError",
    "GradingStrategy",
    "ImageGradingStrategy",
    "NoStrategyError",
    "PresentationGradingStrategy",
    "ResponseExtractionError",
    "ResponseValidationError",
    "StrategyError",
    "StrategyRegistry",
    "TextGradingStrategy",
    "TrueFalseGradingStrategy",
    "UrlGradingStrategy",
    "build_default_registry",
]
