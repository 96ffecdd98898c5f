"""
SQLAlchemy-backed data store.

Uses the async engine with `async_sessionmaker(expire_on_commit=False)`;
every operation runs in its own session that commits on success and
rolls back on error.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    func,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from gradeflow.models import (
    GradingAuditEntry,
    GradingJob,
    JobStatus,
    Question,
    QuestionResponseRecord,
    utcnow,
)
from gradeflow.store.base import AuditFilter, AuditGroupField, DataStore, StoreError

logger = logging.getLogger(__name__)

Base = declarative_base()


# ==============================================================================
# Tables
# ==============================================================================


class GradingJobRow(Base):
    __tablename__ = "grading_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    attempt_id = Column(Integer, nullable=True, index=True)
    assignment_id = Column(Integer, nullable=False, index=True)
    user_id = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value)
    progress = Column(String(255), nullable=False, default="Job created")
    percentage = Column(Integer, nullable=False, default=0)
    result = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class GradingAuditRow(Base):
    __tablename__ = "grading_audits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    question_id = Column(Integer, nullable=False)
    assignment_id = Column(Integer, nullable=True)
    request_payload = Column(JSON, nullable=False)
    response_payload = Column(JSON, nullable=False)
    strategy_name = Column(String(100), nullable=False, index=True)
    metadata_ = Column("metadata", JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("idx_audit_question_time", "question_id", "timestamp"),)


class QuestionRow(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True)
    assignment_id = Column(Integer, nullable=True, index=True)
    payload = Column(JSON, nullable=False)


class QuestionVariantRow(Base):
    __tablename__ = "question_variants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    attempt_id = Column(Integer, nullable=False)
    question_id = Column(Integer, nullable=False)
    payload = Column(JSON, nullable=False)

    __table_args__ = (Index("idx_variant_attempt_question", "attempt_id", "question_id"),)


class AssignmentRow(Base):
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True)
    instructions = Column(Text, nullable=False, default="")


class QuestionResponseRow(Base):
    __tablename__ = "question_responses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    attempt_id = Column(Integer, nullable=False)
    question_id = Column(Integer, nullable=False)
    learner_response = Column(JSON, nullable=True)
    points = Column(Float, nullable=False, default=0.0)
    feedback = Column(JSON, nullable=False)
    metadata_ = Column("metadata", JSON, nullable=True)
    graded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("idx_response_attempt_question", "attempt_id", "question_id"),)


class AttemptGradeRow(Base):
    __tablename__ = "attempt_grades"

    attempt_id = Column(Integer, primary_key=True)
    grade = Column(Float, nullable=False)
    graded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# ==============================================================================
# Store
# ==============================================================================


class SqlDataStore(DataStore):
    """`DataStore` over any async SQLAlchemy database."""

    def __init__(self, database_url: str | None = None, engine: AsyncEngine | None = None):
        if engine is None:
            if database_url is None:
                raise ValueError("Either database_url or engine is required")
            engine = create_async_engine(database_url, future=True)
        self._engine = engine
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def create_tables(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Yield a session that commits on success and rolls back on error.

        Raises:
            StoreError: Wrapping any SQLAlchemy failure.
        """
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreError(f"Database operation failed: {e}", cause=e) from e
            except Exception:
                await session.rollback()
                raise

    # --------------------------------------------------------------------------
    # Seeding
    # --------------------------------------------------------------------------

    async def add_question(self, question: Question) -> None:
        async with self.session() as session:
            await session.merge(
                QuestionRow(
                    id=question.id,
                    assignment_id=question.assignment_id,
                    payload=question.model_dump(mode="json"),
                )
            )

    async def add_variant(self, attempt_id: int, question_id: int, variant: Question) -> None:
        async with self.session() as session:
            session.add(
                QuestionVariantRow(
                    attempt_id=attempt_id,
                    question_id=question_id,
                    payload=variant.model_dump(mode="json"),
                )
            )

    async def add_assignment(self, assignment_id: int, instructions: str = "") -> None:
        async with self.session() as session:
            await session.merge(AssignmentRow(id=assignment_id, instructions=instructions))

    # --------------------------------------------------------------------------
    # Jobs
    # --------------------------------------------------------------------------

    @staticmethod
    def _job_from_row(row: GradingJobRow) -> GradingJob:
        return GradingJob(
            id=row.id,
            attempt_id=row.attempt_id,
            assignment_id=row.assignment_id,
            user_id=row.user_id,
            status=JobStatus(row.status),
            progress=row.progress,
            percentage=row.percentage,
            result=row.result,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    async def create_job(self, job: GradingJob) -> GradingJob:
        async with self.session() as session:
            row = GradingJobRow(
                attempt_id=job.attempt_id,
                assignment_id=job.assignment_id,
                user_id=job.user_id,
                status=job.status.value,
                progress=job.progress,
                percentage=job.percentage,
                result=job.result,
                created_at=job.created_at,
                updated_at=job.updated_at,
            )
            session.add(row)
            await session.flush()
            return self._job_from_row(row)

    async def update_job(self, job_id: int, fields: dict[str, Any]) -> GradingJob:
        async with self.session() as session:
            row = await session.get(GradingJobRow, job_id)
            if row is None:
                raise StoreError(f"Job {job_id} not found")
            for name, value in fields.items():
                if isinstance(value, JobStatus):
                    value = value.value
                setattr(row, name, value)
            row.updated_at = utcnow()
            await session.flush()
            return self._job_from_row(row)

    async def find_job(self, job_id: int) -> GradingJob | None:
        async with self.session() as session:
            row = await session.get(GradingJobRow, job_id)
            return self._job_from_row(row) if row is not None else None

    # --------------------------------------------------------------------------
    # Audit
    # --------------------------------------------------------------------------

    @staticmethod
    def _audit_from_row(row: GradingAuditRow) -> GradingAuditEntry:
        return GradingAuditEntry(
            id=row.id,
            question_id=row.question_id,
            assignment_id=row.assignment_id,
            request_payload=row.request_payload or {},
            response_payload=row.response_payload or {},
            strategy_name=row.strategy_name,
            metadata=row.metadata_,
            timestamp=_aware(row.timestamp),
        )

    @staticmethod
    def _apply_filter(statement: Any, audit_filter: AuditFilter) -> Any:
        if audit_filter.question_id is not None:
            statement = statement.where(GradingAuditRow.question_id == audit_filter.question_id)
        if audit_filter.since is not None:
            statement = statement.where(GradingAuditRow.timestamp >= audit_filter.since)
        if audit_filter.until is not None:
            statement = statement.where(GradingAuditRow.timestamp <= audit_filter.until)
        return statement

    async def create_audit_record(self, entry: GradingAuditEntry) -> GradingAuditEntry:
        async with self.session() as session:
            row = GradingAuditRow(
                question_id=entry.question_id,
                assignment_id=entry.assignment_id,
                request_payload=entry.request_payload,
                response_payload=entry.response_payload,
                strategy_name=entry.strategy_name,
                metadata_=entry.metadata,
                timestamp=entry.timestamp,
            )
            session.add(row)
            await session.flush()
            return self._audit_from_row(row)

    async def find_recent_audit_records(
        self, question_id: int, since: datetime | None, limit: int
    ) -> list[GradingAuditEntry]:
        return await self.find_audit_records(
            AuditFilter(question_id=question_id, since=since), limit
        )

    async def find_audit_records(
        self, audit_filter: AuditFilter, limit: int | None = None
    ) -> list[GradingAuditEntry]:
        statement = self._apply_filter(select(GradingAuditRow), audit_filter).order_by(
            GradingAuditRow.timestamp.desc(), GradingAuditRow.id.desc()
        )
        if limit is not None:
            statement = statement.limit(limit)
        async with self.session() as session:
            rows = (await session.execute(statement)).scalars().all()
            return [self._audit_from_row(row) for row in rows]

    async def count_records(self, audit_filter: AuditFilter) -> int:
        statement = self._apply_filter(select(func.count(GradingAuditRow.id)), audit_filter)
        async with self.session() as session:
            return int((await session.execute(statement)).scalar_one())

    async def group_by_count(
        self, field: AuditGroupField, audit_filter: AuditFilter
    ) -> dict[str, int]:
        if field == "day":
            column = func.date(GradingAuditRow.timestamp)
        elif field == "question_id":
            column = GradingAuditRow.question_id
        else:
            column = GradingAuditRow.strategy_name
        statement = self._apply_filter(
            select(column, func.count(GradingAuditRow.id)), audit_filter
        ).group_by(column)
        async with self.session() as session:
            rows = (await session.execute(statement)).all()
            return {str(key): int(count) for key, count in rows}

    # --------------------------------------------------------------------------
    # Questions and responses
    # --------------------------------------------------------------------------

    async def find_question(self, question_id: int) -> Question | None:
        async with self.session() as session:
            row = await session.get(QuestionRow, question_id)
            return Question.model_validate(row.payload) if row is not None else None

    async def find_question_variant(
        self, attempt_id: int, question_id: int
    ) -> Question | None:
        statement = (
            select(QuestionVariantRow)
            .where(
                QuestionVariantRow.attempt_id == attempt_id,
                QuestionVariantRow.question_id == question_id,
            )
            .order_by(QuestionVariantRow.id.desc())
            .limit(1)
        )
        async with self.session() as session:
            row = (await session.execute(statement)).scalars().first()
            return Question.model_validate(row.payload) if row is not None else None

    async def find_assignment_instructions(self, assignment_id: int) -> str | None:
        async with self.session() as session:
            row = await session.get(AssignmentRow, assignment_id)
            return row.instructions if row is not None else None

    async def save_question_response(
        self, record: QuestionResponseRecord
    ) -> QuestionResponseRecord:
        async with self.session() as session:
            row = QuestionResponseRow(
                attempt_id=record.attempt_id,
                question_id=record.question_id,
                learner_response=record.learner_response,
                points=record.points,
                feedback=record.feedback,
                metadata_=record.metadata,
                graded_at=record.graded_at,
            )
            session.add(row)
            await session.flush()
            return record.model_copy(update={"id": row.id})

    async def find_latest_responses(
        self, attempt_id: int, question_ids: list[int]
    ) -> dict[int, QuestionResponseRecord]:
        if not question_ids:
            return {}
        statement = (
            select(QuestionResponseRow)
            .where(
                QuestionResponseRow.attempt_id == attempt_id,
                QuestionResponseRow.question_id.in_(question_ids),
            )
            .order_by(QuestionResponseRow.id.desc())
        )
        latest: dict[int, QuestionResponseRecord] = {}
        async with self.session() as session:
            for row in (await session.execute(statement)).scalars():
                if row.question_id in latest:
                    continue
                latest[row.question_id] = QuestionResponseRecord(
                    id=row.id,
                    attempt_id=row.attempt_id,
                    question_id=row.question_id,
                    learner_response=row.learner_response,
                    points=row.points,
                    feedback=row.feedback or [],
                    metadata=row.metadata_,
                    graded_at=_aware(row.graded_at),
                )
        return latest

    async def save_attempt_grade(self, attempt_id: int, grade: float) -> None:
        async with self.session() as session:
            await session.merge(AttemptGradeRow(attempt_id=attempt_id, grade=grade, graded_at=utcnow()))
