"""
Data store interface.

The grading engine only talks to persistence through these operations,
so any backend (in-memory, SQL) can be swapped in.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel

from gradeflow.models import (
    GradingAuditEntry,
    GradingJob,
    Question,
    QuestionResponseRecord,
)


class StoreError(Exception):
    """Raised when a persistence operation fails."""

    def __init__(self, message: str, cause: Exception | None = None):
        self.cause = cause
        super().__init__(message)


class AuditFilter(BaseModel):
    """Filter applied to audit queries."""

    question_id: int | None = None
    since: datetime | None = None
    until: datetime | None = None

    def matches(self, entry: GradingAuditEntry) -> bool:
        if self.question_id is not None and entry.question_id != self.question_id:
            return False
        if self.since is not None and entry.timestamp < self.since:
            return False
        if self.until is not None and entry.timestamp > self.until:
            return False
        return True


AuditGroupField = Literal["strategy_name", "question_id", "day"]


class DataStore(ABC):
    """Persistence operations used by the grading engine."""

    # --------------------------------------------------------------------------
    # Jobs
    # --------------------------------------------------------------------------

    @abstractmethod
    async def create_job(self, job: GradingJob) -> GradingJob:
        """Insert a job and return it with its assigned id."""

    @abstractmethod
    async def update_job(self, job_id: int, fields: dict[str, Any]) -> GradingJob:
        """
        Update a job in place.

        Raises:
            StoreError: If the job does not exist or the write fails.
        """

    @abstractmethod
    async def find_job(self, job_id: int) -> GradingJob | None: ...

    # --------------------------------------------------------------------------
    # Audit
    # --------------------------------------------------------------------------

    @abstractmethod
    async def create_audit_record(self, entry: GradingAuditEntry) -> GradingAuditEntry: ...

    @abstractmethod
    async def find_recent_audit_records(
        self, question_id: int, since: datetime | None, limit: int
    ) -> list[GradingAuditEntry]:
        """Audit rows for a question, newest first."""

    @abstractmethod
    async def find_audit_records(
        self, audit_filter: AuditFilter, limit: int | None = None
    ) -> list[GradingAuditEntry]:
        """Audit rows matching a filter, newest first."""

    @abstractmethod
    async def count_records(self, audit_filter: AuditFilter) -> int: ...

    @abstractmethod
    async def group_by_count(
        self, field: AuditGroupField, audit_filter: AuditFilter
    ) -> dict[str, int]:
        """Count audit rows grouped by a field; `day` groups by ISO date."""

    # --------------------------------------------------------------------------
    # Questions and responses
    # --------------------------------------------------------------------------

    @abstractmethod
    async def find_question(self, question_id: int) -> Question | None: ...

    @abstractmethod
    async def find_question_variant(
        self, attempt_id: int, question_id: int
    ) -> Question | None:
        """The variant of a question served to one attempt, if any."""

    @abstractmethod
    async def find_assignment_instructions(self, assignment_id: int) -> str | None:
        """Instructions of an assignment, or None when it does not exist."""

    @abstractmethod
    async def save_question_response(
        self, record: QuestionResponseRecord
    ) -> QuestionResponseRecord: ...

    @abstractmethod
    async def find_latest_responses(
        self, attempt_id: int, question_ids: list[int]
    ) -> dict[int, QuestionResponseRecord]:
        """Most recent saved response per question within an attempt."""

    @abstractmethod
    async def save_attempt_grade(self, attempt_id: int, grade: float) -> None: ...

    async def close(self) -> None:
        """Release backend resources."""
