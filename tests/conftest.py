"""
Pytest configuration and fixtures.

Provides common test fixtures for all test modules.
"""

import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import AsyncMock

import pytest

from gradeflow.audit import GradingAuditService
from gradeflow.config import Settings
from gradeflow.consistency import GradingConsistencyService
from gradeflow.extractors.service import ContentExtractionService
from gradeflow.judgment.service import JudgmentService
from gradeflow.localization import LocalizationService
from gradeflow.models import (
    Choice,
    GradingContext,
    JudgmentResult,
    Question,
    QuestionType,
    Rubric,
    RubricCriterion,
    Scoring,
    ScoringType,
)
from gradeflow.orchestrator import ResponseOrchestrator
from gradeflow.store import InMemoryDataStore
from gradeflow.strategies import build_default_registry
from gradeflow.url_fetcher import FetchResult, UrlContentFetcher


# ==============================================================================
# Directory Fixtures
# ==============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """Create test settings with short stream timings."""
    return Settings(
        judge_api_key="test-api-key-for-testing",
        judge_base_url="https://test.api.local/",
        judge_model="test-model",
        judge_max_retries=0,
        heartbeat_interval_seconds=0.05,
        heartbeat_idle_seconds=0.1,
        poll_min_delay_seconds=0.01,
        poll_max_delay_seconds=0.05,
        max_consecutive_poll_errors=3,
        finalize_grace_seconds=0.0,
        channel_cleanup_delay_seconds=0.01,
        job_update_retry_base_seconds=0.0,
        file_storage_root=temp_dir / "storage",
        database_url="sqlite+aiosqlite:///:memory:",
    )


@pytest.fixture
def localization() -> LocalizationService:
    """Localization service with the built-in catalogue."""
    return LocalizationService()


# ==============================================================================
# Question Fixtures
# ==============================================================================


@pytest.fixture
def single_choice_question() -> Question:
    """Single-correct question where 'Option A' is worth 10 points."""
    return Question(
        id=1,
        question="Which option is correct?",
        type=QuestionType.SINGLE_CORRECT,
        total_points=10,
        choices=[
            Choice(choice="Option A", is_correct=True, points=10),
            Choice(choice="Option B", is_correct=False, points=0),
            Choice(choice="Option C", is_correct=False, points=0),
        ],
    )


@pytest.fixture
def multiple_choice_question() -> Question:
    """Multiple-correct question scored with loss per mistake."""
    return Question(
        id=2,
        question="Select the prime numbers.",
        type=QuestionType.MULTIPLE_CORRECT,
        total_points=5,
        choices=[
            Choice(choice="Seven", is_correct=True, points=5),
            Choice(choice="Nine", is_correct=False, points=3),
        ],
        scoring=Scoring(type=ScoringType.LOSS_PER_MISTAKE),
    )


@pytest.fixture
def true_false_question() -> Question:
    """True/false question whose statement is true."""
    return Question(
        id=3,
        question="The earth orbits the sun.",
        type=QuestionType.TRUE_FALSE,
        total_points=4,
        choices=[Choice(choice="True", is_correct=True, points=4)],
    )


@pytest.fixture
def text_question() -> Question:
    """Free-text question with a two-rubric scoring scheme."""
    return Question(
        id=4,
        question="Explain photosynthesis.",
        type=QuestionType.TEXT,
        total_points=10,
        scoring=Scoring(
            type=ScoringType.CRITERIA_BASED,
            rubrics=[
                Rubric(
                    rubric_question="Accuracy",
                    criteria=[
                        RubricCriterion(points=0, description="Wrong"),
                        RubricCriterion(points=3, description="Partly right"),
                        RubricCriterion(points=6, description="Right"),
                    ],
                ),
                Rubric(
                    rubric_question="Clarity",
                    criteria=[
                        RubricCriterion(points=0, description="Unclear"),
                        RubricCriterion(points=4, description="Clear"),
                    ],
                ),
            ],
        ),
    )


@pytest.fixture
def grading_context() -> GradingContext:
    """Learner grading context for assignment 100."""
    return GradingContext(
        assignment_id=100,
        assignment_instructions="Answer every question.",
        language="en",
        metadata={"attemptId": 7},
    )


# ==============================================================================
# Mock Fixtures
# ==============================================================================


@pytest.fixture
def judgment_result() -> JudgmentResult:
    """A typical judgment for a mostly correct answer."""
    return JudgmentResult(
        points=7,
        feedback="Good explanation, but the light reactions are missing.",
        rationale="Covers the main idea.",
    )


@pytest.fixture
def mock_judgment(judgment_result: JudgmentResult) -> AsyncMock:
    """Judgment service double returning `judgment_result` for every modality."""
    judgment = AsyncMock(spec=JudgmentService)
    judgment.grade_text_based.return_value = judgment_result
    judgment.grade_url_based.return_value = judgment_result
    judgment.grade_file_based.return_value = judgment_result
    judgment.grade_image_based.return_value = judgment_result
    judgment.grade_presentation_based.return_value = judgment_result
    judgment.health_check.return_value = True
    return judgment


@pytest.fixture
def mock_fetcher() -> AsyncMock:
    """URL fetcher double returning a small functional page."""
    fetcher = AsyncMock(spec=UrlContentFetcher)
    fetcher.fetch.return_value = FetchResult(body="Project README with setup steps", is_functional=True)
    return fetcher


# ==============================================================================
# Engine Fixtures
# ==============================================================================


@pytest.fixture
def store() -> InMemoryDataStore:
    """Empty in-memory data store."""
    return InMemoryDataStore()


@pytest.fixture
def audit(store: InMemoryDataStore, test_settings: Settings) -> GradingAuditService:
    """Audit service over the in-memory store."""
    return GradingAuditService(store, test_settings)


@pytest.fixture
def consistency(store: InMemoryDataStore, test_settings: Settings) -> GradingConsistencyService:
    """Consistency service over the in-memory store."""
    return GradingConsistencyService(store, test_settings)


@pytest.fixture
def orchestrator(
    store: InMemoryDataStore,
    audit: GradingAuditService,
    consistency: GradingConsistencyService,
    localization: LocalizationService,
    mock_judgment: AsyncMock,
    mock_fetcher: AsyncMock,
    test_settings: Settings,
) -> ResponseOrchestrator:
    """Orchestrator wired with the default registry and mocked collaborators."""
    registry = build_default_registry(
        mock_judgment,
        localization,
        fetcher=mock_fetcher,
        extraction=ContentExtractionService(test_settings),
        settings=test_settings,
    )
    return ResponseOrchestrator(
        store,
        registry,
        audit,
        consistency,
        localization,
        test_settings,
        fetcher=mock_fetcher,
    )
