"""
Judgment Module.

LLM-backed scoring of free-form answers.
"""

from gradeflow.judgment.llm_client import LLMClient, LLMError
from gradeflow.judgment.parser import JudgmentParseError, JudgmentParser
from gradeflow.judgment.prompt_builder import PromptBuilder
from gradeflow.judgment.service import JudgmentService

__all__ = [
    "JudgmentParseError",
    "JudgmentParser",
    "JudgmentService",
    "LLMClient",
    "LLMError",
    "PromptBuilder",
]
