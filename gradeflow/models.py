"""
Pydantic models for Gradeflow.

These models define the schemas for:
- Questions, choices and scoring rubrics
- Modality-specific learner responses
- Grading contexts and results
- Consistency cache records and audit entries
- Grading jobs and status stream events

Wire-facing models accept both snake_case and camelCase field names.
"""

from datetime import datetime, timezone
from enum import Enum
from hashlib import sha256
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base for models exchanged with callers as JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ==============================================================================
# Enumerations
# ==============================================================================


class QuestionType(str, Enum):
    """Question types understood by the strategy registry."""

    TEXT = "TEXT"
    SINGLE_CORRECT = "SINGLE_CORRECT"
    MULTIPLE_CORRECT = "MULTIPLE_CORRECT"
    TRUE_FALSE = "TRUE_FALSE"
    URL = "URL"
    UPLOAD = "UPLOAD"
    LINK_FILE = "LINK_FILE"


class ResponseType(str, Enum):
    """Secondary discriminator describing what an upload contains."""

    CODE = "CODE"
    ESSAY = "ESSAY"
    REPORT = "REPORT"
    PRESENTATION = "PRESENTATION"
    IMAGES = "IMAGES"
    VIDEO = "VIDEO"
    AUDIO = "AUDIO"
    REPO = "REPO"
    SPREADSHEET = "SPREADSHEET"
    LIVE_RECORDING = "LIVE_RECORDING"
    OTHER = "OTHER"


class ScoringType(str, Enum):
    """How a question's points are computed."""

    CRITERIA_BASED = "CRITERIA_BASED"
    LOSS_PER_MISTAKE = "LOSS_PER_MISTAKE"
    AI_GRADED = "AI_GRADED"


class UserRole(str, Enum):
    """Caller role for a submission."""

    LEARNER = "learner"
    AUTHOR = "author"


class JobStatus(str, Enum):
    """Grading job state machine."""

    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class EventType(str, Enum):
    """Status stream event types."""

    UPDATE = "update"
    HEARTBEAT = "heartbeat"
    ERROR = "error"
    FINALIZE = "finalize"


# ==============================================================================
# Question Models
# ==============================================================================


class Choice(WireModel):
    """
    A selectable option of a choice question.

    `feedback` may contain `${learnerChoice}`, `${correctChoice}` or
    `${points}` placeholders.
    """

    choice: str
    is_correct: bool = False
    points: float = 0.0
    feedback: str | None = None


class RubricCriterion(WireModel):
    """One valid point level of a rubric."""

    id: int | None = None
    points: float
    description: str = ""


class Rubric(WireModel):
    """A named rubric with its closed set of valid point levels."""

    rubric_question: str = ""
    criteria: list[RubricCriterion] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def max_points(self) -> float:
        """Highest point level of this rubric."""
        return max((c.points for c in self.criteria), default=0.0)


class Scoring(WireModel):
    """Scoring configuration attached to a question."""

    type: ScoringType = ScoringType.CRITERIA_BASED
    rubrics: list[Rubric] = Field(default_factory=list)
    show_rubrics_to_learner: bool = False


class Question(WireModel):
    """
    A gradable assignment question.

    `grading_context_question_ids` lists earlier questions whose answers
    are handed to the judgment service as context.
    """

    id: int
    question: str
    type: QuestionType
    response_type: ResponseType | None = None
    total_points: float = Field(default=0.0, ge=0)
    choices: list[Choice] = Field(default_factory=list)
    scoring: Scoring | None = None
    answer: str | None = None
    assignment_id: int | None = None
    grading_context_question_ids: list[int] = Field(default_factory=list)
    max_words: int | None = None
    max_characters: int | None = None
    show_question_score: bool = True

    @property
    def scoring_type(self) -> ScoringType | None:
        return self.scoring.type if self.scoring else None


class AssignmentDetails(WireModel):
    """Author-supplied assignment details for preview grading."""

    instructions: str = ""


# ==============================================================================
# Learner Response Models
# ==============================================================================


class FileReference(WireModel):
    """A learner file held in object storage or on GitHub."""

    filename: str | None = None
    key: str | None = None
    bucket: str | None = None
    github_url: str | None = None
    mime_type: str | None = None
    size: int | None = None
    content: str | None = None

    @property
    def is_stored(self) -> bool:
        return bool(self.key and self.bucket and self.filename)

    @property
    def is_linked(self) -> bool:
        return bool(self.github_url and self.filename)


class ImageReference(WireModel):
    """A learner image, either inline base64 data, a URL, or a stored object."""

    filename: str | None = None
    image_data: str | None = None
    content: str | None = None
    image_key: str | None = None
    key: str | None = None
    image_bucket: str | None = None
    bucket: str | None = None
    image_url: str | None = None
    mime_type: str | None = None
    size: int | None = None

    @property
    def inline_data(self) -> str | None:
        data = self.image_data or self.content
        # "InCos" marks content that lives in object storage only
        if not data or data == "InCos":
            return None
        return data

    @property
    def storage_key(self) -> str | None:
        return self.image_key or self.key

    @property
    def storage_bucket(self) -> str | None:
        return self.image_bucket or self.bucket

    @property
    def extension(self) -> str:
        if not self.filename or "." not in self.filename:
            return ""
        return self.filename.rsplit(".", 1)[-1].lower()


class PresentationResponse(WireModel):
    """Analysed recording or presentation handed in by a learner."""

    transcript: str | None = None
    speech_report: str | None = None
    content_report: str | None = None
    body_language_score: float | None = None
    body_language_explanation: str | None = None
    slides: list[Any] = Field(default_factory=list)
    video_url: str | None = None


class QuestionResponseInput(WireModel):
    """
    Raw learner input for one question.

    Only the field matching the question's modality is expected to be set.
    """

    id: int = Field(..., description="Id of the question being answered")
    learner_text_response: str | None = None
    learner_choices: list[Any] | None = None
    learner_answer_choice: bool | str | None = None
    learner_url_response: str | None = None
    learner_file_response: list[FileReference] | None = None
    learner_image_response: list[ImageReference] | None = None
    learner_presentation_response: PresentationResponse | None = None
    language: str = "en"

    def is_empty(self) -> bool:
        """True when no modality field carries an answer."""
        return (
            not self.learner_file_response
            and not self.learner_image_response
            and not (self.learner_url_response or "").strip()
            and not (self.learner_text_response or "").strip()
            and not self.learner_choices
            and self.learner_answer_choice is None
            and self.learner_presentation_response is None
        )

    def comparable_text(self) -> str:
        """Plain-text form of the answer used for consistency comparisons."""
        if self.learner_text_response:
            return self.learner_text_response
        if self.learner_url_response:
            return self.learner_url_response
        if self.learner_choices:
            return ", ".join(str(c) for c in self.learner_choices)
        if self.learner_answer_choice is not None:
            return str(self.learner_answer_choice).lower()
        return ""


# ==============================================================================
# Grading Models
# ==============================================================================


class QuestionAnswerContext(WireModel):
    """A previously answered question supplied as grading context."""

    question_id: int
    question: str
    answer: str = ""
    question_type: QuestionType | None = None


class GradingContext(WireModel):
    """Read-only bundle handed to a strategy for one question response."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    assignment_id: int
    assignment_instructions: str = ""
    question_answer_context: list[QuestionAnswerContext] = Field(default_factory=list)
    language: str = "en"
    user_role: UserRole = UserRole.LEARNER
    metadata: dict[str, Any] = Field(default_factory=dict)


class Feedback(WireModel):
    """A feedback entry; `choice` is set for choice-based questions."""

    choice: str | None = None
    feedback: str


class RubricScore(WireModel):
    """Points awarded for one rubric by the judgment service."""

    rubric_question: str | None = None
    points_awarded: float = 0.0
    max_points: float | None = None
    justification: str | None = None


class GradingResult(WireModel):
    """
    Outcome of grading one question response.

    Strategies clamp `total_points` into `[0, question.total_points]`
    before returning.
    """

    total_points: float = 0.0
    feedback: list[Feedback] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    question_id: int | None = None
    question: str | None = None
    response_id: int | None = None

    def clamped(self, max_points: float) -> "GradingResult":
        """Return a copy with total points clamped to `[0, max_points]`."""
        bounded = max(0.0, min(float(self.total_points), float(max_points)))
        if bounded == self.total_points:
            return self
        return self.model_copy(update={"total_points": bounded})

    def feedback_text(self) -> str:
        return "\n".join(f.feedback for f in self.feedback)


# ==============================================================================
# Consistency Models
# ==============================================================================


class GradingRecord(BaseModel):
    """In-memory consistency cache entry."""

    model_config = ConfigDict(frozen=True)

    question_id: int
    response_hash: str
    points: float
    max_points: float
    feedback: str
    rubric_scores: list[RubricScore] | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class ConsistencyCheck(WireModel):
    """Outcome of comparing a response to previously graded ones."""

    similar: bool = False
    previous_grade: float | None = None
    previous_feedback: str | None = None
    deviation_percentage: float | None = None
    should_adjust: bool = False
    source: str | None = None


class RubricValidationResult(WireModel):
    """Rubric score validation outcome with snapped corrections."""

    valid: bool
    issues: list[str] = Field(default_factory=list)
    corrections: list[RubricScore] = Field(default_factory=list)


# ==============================================================================
# Audit Models
# ==============================================================================


class GradingAuditEntry(BaseModel):
    """
    Append-only record of one grading decision.

    Payloads are stored as JSON-compatible dicts so any store can
    persist them verbatim.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    question_id: int
    assignment_id: int | None = None
    request_payload: dict[str, Any] = Field(default_factory=dict)
    response_payload: dict[str, Any] = Field(default_factory=dict)
    strategy_name: str
    metadata: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def total_points(self) -> float:
        try:
            return float(self.response_payload.get("totalPoints") or 0)
        except (TypeError, ValueError):
            return 0.0

    @property
    def max_points(self) -> float | None:
        value = self.response_payload.get("maxPoints")
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    @staticmethod
    def compute_hash(content: str) -> str:
        """Compute SHA-256 hash of content."""
        return sha256(content.encode("utf-8")).hexdigest()


class GradingIssue(BaseModel):
    """A suspicious scoring pattern found in audit history."""

    type: str
    description: str
    severity: str


class QuestionResponseRecord(BaseModel):
    """A persisted, graded learner response."""

    id: int | None = None
    attempt_id: int
    question_id: int
    learner_response: Any = None
    points: float = 0.0
    feedback: list[dict[str, Any]] = Field(default_factory=list)
    metadata: dict[str, Any] | None = None
    graded_at: datetime = Field(default_factory=utcnow)


# ==============================================================================
# Job Models
# ==============================================================================


class GradingJob(BaseModel):
    """Persisted whole-attempt grading run."""

    id: int | None = None
    attempt_id: int | None = None
    assignment_id: int
    user_id: str
    status: JobStatus = JobStatus.PENDING
    progress: str = "Job created"
    percentage: int = Field(default=0, ge=0, le=100)
    result: Any = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def done(self) -> bool:
        return self.status.is_terminal


class JobEventData(WireModel):
    """Payload of a status stream event."""

    timestamp: datetime = Field(default_factory=utcnow)
    status: JobStatus | None = None
    progress: str = ""
    percentage: int | None = None
    result: Any = None
    done: bool = False

    @model_validator(mode="after")
    def derive_done(self) -> "JobEventData":
        """With a known status, `done` is true exactly when it is terminal."""
        if self.status is not None:
            object.__setattr__(self, "done", self.status.is_terminal)
        return self


class JobStatusEvent(WireModel):
    """A typed event delivered on a job's status stream."""

    type: EventType
    data: JobEventData

    @classmethod
    def from_job(cls, job: GradingJob, event_type: EventType | None = None) -> "JobStatusEvent":
        if event_type is None:
            event_type = EventType.FINALIZE if job.status.is_terminal else EventType.UPDATE
        return cls(
            type=event_type,
            data=JobEventData(
                status=job.status,
                progress=job.progress,
                percentage=job.percentage,
                result=job.result,
            ),
        )


# ==============================================================================
# Content and Judgment Models
# ==============================================================================


class ExtractedContent(BaseModel):
    """
    Normalized text pulled out of one learner file.

    `metadata["extraction_status"]` is one of success, partial or failed.
    """

    filename: str
    content: str
    extracted_text_summary: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_empty(self) -> bool:
        """Check if extracted content is empty or whitespace-only."""
        return len(self.content.strip()) == 0


class EvaluationBase(BaseModel):
    """Fields shared by every judgment request."""

    question: str
    question_answer_context: list[QuestionAnswerContext] = Field(default_factory=list)
    assignment_instructions: str = ""
    total_points: float
    scoring_type: str = ""
    scoring: Scoring | None = None
    response_type: str = "OTHER"


class TextEvaluation(EvaluationBase):
    learner_response: str


class UrlEvaluation(EvaluationBase):
    url: str
    is_functional: bool
    url_content: str


class FileEvaluation(EvaluationBase):
    files: list[ExtractedContent]


class ImageEvaluation(EvaluationBase):
    images: list[ImageReference]
    image_payloads: list[str] = Field(
        default_factory=list,
        description="Data URLs or http(s) URLs of the images, in order",
    )
    learner_text_response: str | None = None


class PresentationEvaluation(EvaluationBase):
    presentation: PresentationResponse


class JudgmentResult(BaseModel):
    """Score and feedback returned by the judgment service."""

    points: float
    feedback: str
    rationale: str | None = None
    rubric_scores: list[RubricScore] = Field(default_factory=list)

    @field_validator("points", mode="before")
    @classmethod
    def coerce_points(cls, v: Any) -> float:
        """Accept numeric strings from loosely formatted judge output."""
        return float(v)
