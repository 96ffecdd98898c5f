"""
Tests for whole-attempt grading.
"""

import pytest

from gradeflow.attempt import AttemptGrader, AttemptSubmission, calculate_grade
from gradeflow.models import Feedback, GradingResult, Question, QuestionResponseInput, UserRole
from gradeflow.orchestrator import ResponseOrchestrator, SubmissionError
from gradeflow.store import InMemoryDataStore


@pytest.fixture
def grader(store: InMemoryDataStore, orchestrator: ResponseOrchestrator) -> AttemptGrader:
    """Attempt grader over the shared orchestrator."""
    return AttemptGrader(store, orchestrator)


@pytest.fixture
def seeded_store(
    store: InMemoryDataStore,
    single_choice_question: Question,
    true_false_question: Question,
) -> InMemoryDataStore:
    """Store with a 10-point choice and a 4-point true/false question."""
    store.add_assignment(100, "Answer every question.")
    store.add_question(single_choice_question)
    store.add_question(true_false_question)
    return store


class TestCalculateGrade:
    """Tests for calculate_grade."""

    def test_fraction_of_possible(self) -> None:
        """Test the grade is earned over possible points."""
        results = [GradingResult(total_points=10), GradingResult(total_points=4)]

        assert calculate_grade(results, 20) == (0.7, 14)

    def test_empty_results(self) -> None:
        """Test no results grade to zero."""
        assert calculate_grade([], 20) == (0.0, 0.0)

    def test_zero_possible_points(self) -> None:
        """Test zero possible points does not divide by zero."""
        assert calculate_grade([GradingResult(total_points=0)], 0) == (0.0, 0)


class TestLearnerAttempt:
    """Tests for learner attempts."""

    @pytest.mark.asyncio
    async def test_attempt_graded_and_saved(
        self, grader: AttemptGrader, seeded_store: InMemoryDataStore
    ) -> None:
        """Test the attempt grade is computed and stored."""
        submission = AttemptSubmission(
            assignment_id=100,
            attempt_id=7,
            responses=[
                QuestionResponseInput(id=1, learner_choices=["Option A"]),
                QuestionResponseInput(id=3, learner_answer_choice=False),
            ],
        )

        result = await grader.grade(submission)

        assert result.total_points_earned == 10
        assert result.total_possible_points == 14
        assert result.grade == pytest.approx(10 / 14)
        assert seeded_store.attempt_grades[7] == pytest.approx(10 / 14)
        assert [f.question_id for f in result.feedbacks_for_questions] == [1, 3]
        assert all(f.response_id is not None for f in result.feedbacks_for_questions)

    @pytest.mark.asyncio
    async def test_progress_reported_in_order(
        self, grader: AttemptGrader, seeded_store: InMemoryDataStore
    ) -> None:
        """Test progress percentages are reported in increasing order."""
        reported: list[tuple[str, int | None]] = []

        async def progress(message: str, percentage: int | None) -> None:
            reported.append((message, percentage))

        submission = AttemptSubmission(
            assignment_id=100,
            attempt_id=7,
            responses=[QuestionResponseInput(id=1, learner_choices=["Option A"])],
        )

        await grader.grade(submission, progress)

        assert [p for _, p in reported] == [5, 10, 20, 70, 90]

    @pytest.mark.asyncio
    async def test_hidden_question_score(
        self,
        grader: AttemptGrader,
        seeded_store: InMemoryDataStore,
        single_choice_question: Question,
    ) -> None:
        """Test questions hiding their score report -1 but still count."""
        seeded_store.add_question(single_choice_question.model_copy(update={"show_question_score": False}))
        submission = AttemptSubmission(
            assignment_id=100,
            attempt_id=7,
            responses=[QuestionResponseInput(id=1, learner_choices=["Option A"])],
        )

        result = await grader.grade(submission)

        assert result.feedbacks_for_questions[0].total_points == -1
        assert result.total_points_earned == 10

    @pytest.mark.asyncio
    async def test_failure_propagates(self, grader: AttemptGrader, seeded_store: InMemoryDataStore) -> None:
        """Test a failed question fails the whole attempt and nothing is graded."""
        submission = AttemptSubmission(
            assignment_id=100,
            attempt_id=7,
            responses=[QuestionResponseInput(id=77, learner_choices=["Option A"])],
        )

        with pytest.raises(SubmissionError):
            await grader.grade(submission)

        assert 7 not in seeded_store.attempt_grades

    @pytest.mark.asyncio
    async def test_missing_attempt_id(self, grader: AttemptGrader) -> None:
        """Test learner attempts need an attempt id."""
        with pytest.raises(ValueError):
            await grader.grade(AttemptSubmission(assignment_id=100))


class TestAuthorPreview:
    """Tests for author previews."""

    @pytest.mark.asyncio
    async def test_preview_uses_author_questions(
        self,
        grader: AttemptGrader,
        store: InMemoryDataStore,
        single_choice_question: Question,
    ) -> None:
        """Test previews grade supplied questions and save nothing."""
        reported: list[int | None] = []

        async def progress(message: str, percentage: int | None) -> None:
            reported.append(percentage)

        submission = AttemptSubmission(
            assignment_id=100,
            role=UserRole.AUTHOR,
            responses=[QuestionResponseInput(id=1, learner_choices=["Option B"])],
            author_questions=[single_choice_question],
        )

        result = await grader.grade(submission, progress)

        assert result.attempt_id is None
        assert result.total_points_earned == 0
        assert result.total_possible_points == 10
        assert reported == [10, 30, 70]
        assert store.attempt_grades == {}
        assert store.responses == []

    def test_submission_parses_camel_case(self) -> None:
        """Test submissions accept the camelCase wire format."""
        submission = AttemptSubmission.model_validate(
            {
                "assignmentId": 100,
                "role": "author",
                "responses": [{"id": 1, "learnerChoices": ["Option A"]}],
                "authorQuestions": [
                    {"id": 1, "question": "Q", "type": "SINGLE_CORRECT", "totalPoints": 5}
                ],
            }
        )

        assert submission.role == UserRole.AUTHOR
        assert submission.responses[0].learner_choices == ["Option A"]
        assert submission.author_questions[0].total_points == 5

    def test_feedback_serialized_with_aliases(self) -> None:
        """Test results serialize in camelCase."""
        result = GradingResult(total_points=1, feedback=[Feedback(feedback="ok")])

        dumped = result.model_dump(by_alias=True)

        assert "totalPoints" in dumped
