"""In-process data store used by tests, previews and the CLI."""

import itertools
from collections import Counter
from datetime import datetime
from typing import Any

from gradeflow.models import (
    GradingAuditEntry,
    GradingJob,
    Question,
    QuestionResponseRecord,
    utcnow,
)
from gradeflow.store.base import AuditFilter, AuditGroupField, DataStore, StoreError


class InMemoryDataStore(DataStore):
    """
    Dictionary-backed implementation of `DataStore`.

    Questions, variants and assignments are seeded with the `add_*` helpers.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.jobs: dict[int, GradingJob] = {}
        self.audits: list[GradingAuditEntry] = []
        self.questions: dict[int, Question] = {}
        self.variants: dict[tuple[int, int], Question] = {}
        self.assignments: dict[int, str] = {}
        self.responses: list[QuestionResponseRecord] = []
        self.attempt_grades: dict[int, float] = {}

    # Seeding helpers

    def add_question(self, question: Question) -> None:
        self.questions[question.id] = question

    def add_variant(self, attempt_id: int, question_id: int, variant: Question) -> None:
        self.variants[(attempt_id, question_id)] = variant

    def add_assignment(self, assignment_id: int, instructions: str = "") -> None:
        self.assignments[assignment_id] = instructions

    # Jobs

    async def create_job(self, job: GradingJob) -> GradingJob:
        stored = job.model_copy(update={"id": next(self._ids)})
        self.jobs[stored.id] = stored  # type: ignore[index]
        return stored

    async def update_job(self, job_id: int, fields: dict[str, Any]) -> GradingJob:
        job = self.jobs.get(job_id)
        if job is None:
            raise StoreError(f"Job {job_id} not found")
        updated = job.model_copy(update={**fields, "updated_at": utcnow()})
        self.jobs[job_id] = updated
        return updated

    async def find_job(self, job_id: int) -> GradingJob | None:
        return self.jobs.get(job_id)

    # Audit

    async def create_audit_record(self, entry: GradingAuditEntry) -> GradingAuditEntry:
        stored = entry.model_copy(update={"id": next(self._ids)})
        self.audits.append(stored)
        return stored

    async def find_recent_audit_records(
        self, question_id: int, since: datetime | None, limit: int
    ) -> list[GradingAuditEntry]:
        return await self.find_audit_records(
            AuditFilter(question_id=question_id, since=since), limit
        )

    async def find_audit_records(
        self, audit_filter: AuditFilter, limit: int | None = None
    ) -> list[GradingAuditEntry]:
        rows = sorted(
            (e for e in self.audits if audit_filter.matches(e)),
            key=lambda e: (e.timestamp, e.id or 0),
            reverse=True,
        )
        return rows[:limit] if limit is not None else rows

    async def count_records(self, audit_filter: AuditFilter) -> int:
        return sum(1 for e in self.audits if audit_filter.matches(e))

    async def group_by_count(
        self, field: AuditGroupField, audit_filter: AuditFilter
    ) -> dict[str, int]:
        counts: Counter[str] = Counter()
        for entry in self.audits:
            if not audit_filter.matches(entry):
                continue
            if field == "day":
                counts[entry.timestamp.date().isoformat()] += 1
            else:
                counts[str(getattr(entry, field))] += 1
        return dict(counts)

    # Questions and responses

    async def find_question(self, question_id: int) -> Question | None:
        return self.questions.get(question_id)

    async def find_question_variant(
        self, attempt_id: int, question_id: int
    ) -> Question | None:
        return self.variants.get((attempt_id, question_id))

    async def find_assignment_instructions(self, assignment_id: int) -> str | None:
        return self.assignments.get(assignment_id)

    async def save_question_response(
        self, record: QuestionResponseRecord
    ) -> QuestionResponseRecord:
        stored = record.model_copy(update={"id": next(self._ids)})
        self.responses.append(stored)
        return stored

    async def find_latest_responses(
        self, attempt_id: int, question_ids: list[int]
    ) -> dict[int, QuestionResponseRecord]:
        latest: dict[int, QuestionResponseRecord] = {}
        for record in self.responses:
            if record.attempt_id == attempt_id and record.question_id in question_ids:
                latest[record.question_id] = record
        return latest

    async def save_attempt_grade(self, attempt_id: int, grade: float) -> None:
        self.attempt_grades[attempt_id] = grade
