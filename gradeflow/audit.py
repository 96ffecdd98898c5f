"""
Grading audit trail.

Every graded response is written to the audit store for quality control.
Recording never raises, so a broken audit path cannot fail a grade. The
read side aggregates the trail into statistics and flags suspicious
scoring patterns.
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from gradeflow.config import Settings, get_settings
from gradeflow.models import GradingAuditEntry, GradingIssue, utcnow
from gradeflow.store.base import AuditFilter, DataStore

logger = logging.getLogger(__name__)


class GradingAuditService:
    """Writes and analyses grading audit records."""

    def __init__(self, store: DataStore, settings: Settings | None = None):
        self._store = store
        self._settings = settings or get_settings()

    async def record_grading(
        self,
        question_id: int,
        request_payload: dict[str, Any],
        response_payload: dict[str, Any],
        strategy_name: str,
        assignment_id: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> GradingAuditEntry | None:
        """
        Persist one audit row.

        Returns:
            The stored entry, or None when the write failed.
        """
        context = {
            "question_id": question_id,
            "assignment_id": assignment_id,
            "strategy": strategy_name,
        }
        try:
            entry = await self._store.create_audit_record(
                GradingAuditEntry(
                    question_id=question_id,
                    assignment_id=assignment_id,
                    request_payload=request_payload,
                    response_payload=response_payload,
                    strategy_name=strategy_name,
                    metadata=metadata or None,
                )
            )
        except Exception:
            logger.exception(
                "Failed to record grading audit, continuing", extra={"context": context}
            )
            return None

        logger.info("Recorded grading audit", extra={"context": context})
        return entry

    async def get_grading_history_for_question(
        self, question_id: int, limit: int = 10
    ) -> list[GradingAuditEntry]:
        return await self._store.find_recent_audit_records(question_id, None, limit)

    async def get_grading_statistics(self, question_id: int) -> dict[str, Any]:
        """Average awarded points and how often each score was given."""
        entries = await self._store.find_audit_records(AuditFilter(question_id=question_id))
        if not entries:
            return {"questionId": question_id, "totalAttempts": 0, "averageScore": 0, "distribution": {}}

        scores = [entry.total_points for entry in entries]
        distribution: dict[str, int] = {}
        for score in scores:
            label = f"{score:g}"
            distribution[label] = distribution.get(label, 0) + 1

        return {
            "questionId": question_id,
            "totalAttempts": len(entries),
            "averageScore": sum(scores) / len(scores),
            "distribution": distribution,
        }

    async def identify_grading_issues(self, question_id: int) -> list[GradingIssue]:
        """
        Flag unusual score patterns over the most recent gradings.

        Needs at least `audit_issue_min_samples` rows. Too many zero scores
        is a high severity issue; too many maximum scores is medium.
        """
        entries = await self._store.find_recent_audit_records(
            question_id, None, self._settings.audit_statistics_window
        )
        if len(entries) < self._settings.audit_issue_min_samples:
            return []

        issues: list[GradingIssue] = []
        scores = [entry.total_points for entry in entries]
        total = len(scores)

        zero_count = sum(1 for score in scores if score == 0)
        if zero_count / total > self._settings.excessive_zero_ratio:
            issues.append(
                GradingIssue(
                    type="excessive_zeros",
                    description=f"{zero_count} out of {total} responses scored 0 points",
                    severity="high",
                )
            )

        max_points = await self._max_points(question_id, entries)
        if max_points is not None:
            max_count = sum(1 for score in scores if score == max_points)
            if max_count / total > self._settings.excessive_max_ratio:
                issues.append(
                    GradingIssue(
                        type="excessive_max_scores",
                        description=f"{max_count} out of {total} responses scored maximum points",
                        severity="medium",
                    )
                )

        return issues

    async def _max_points(
        self, question_id: int, entries: list[GradingAuditEntry]
    ) -> float | None:
        for entry in entries:
            if entry.max_points is not None:
                return entry.max_points
        question = await self._store.find_question(question_id)
        return question.total_points if question else None

    async def get_grading_usage_statistics(
        self, since: datetime | None = None, until: datetime | None = None
    ) -> dict[str, Any]:
        """Usage of the grading pipeline over an optional time range."""
        window = AuditFilter(since=since, until=until)
        try:
            total = await self._store.count_records(window)

            strategies = await self._store.group_by_count("strategy_name", window)
            strategies_by_count = [
                {"strategy": name, "count": count}
                for name, count in sorted(strategies.items(), key=lambda item: item[1], reverse=True)
            ]

            recent_start = utcnow() - timedelta(days=self._settings.usage_lookback_days)
            recent = AuditFilter(since=max(since, recent_start) if since else recent_start, until=until)
            by_day = await self._store.group_by_count("day", recent)
            gradings_by_day = [{"date": day, "count": count} for day, count in sorted(by_day.items())]

            questions = await self._store.group_by_count("question_id", window)
            most_active = [
                {"questionId": int(question_id), "count": count}
                for question_id, count in sorted(
                    questions.items(), key=lambda item: item[1], reverse=True
                )[:10]
            ]

            entries = await self._store.find_audit_records(window)
        except Exception:
            logger.exception(
                "Failed to generate grading usage statistics",
                extra={"context": {"since": str(since), "until": str(until)}},
            )
            raise

        average_points = (
            round(sum(entry.total_points for entry in entries) / len(entries), 2) if entries else 0
        )
        failures = sum(1 for entry in entries if self._is_failure(entry))
        error_rate = round(failures / len(entries), 4) if entries else 0

        logger.info(
            "Generated grading usage statistics",
            extra={"context": {"total": total, "strategies": len(strategies_by_count)}},
        )
        return {
            "totalGradings": total,
            "strategiesByCount": strategies_by_count,
            "gradingsByDay": gradings_by_day,
            "averagePointsAwarded": average_points,
            "mostActiveQuestions": most_active,
            "errorRate": error_rate,
        }

    @staticmethod
    def _is_failure(entry: GradingAuditEntry) -> bool:
        if entry.strategy_name.endswith("-Failed"):
            return True
        metadata = entry.response_payload.get("metadata")
        return isinstance(metadata, dict) and bool(metadata.get("error"))

    async def log_usage_summary(self) -> None:
        """Log a one-line summary of grading activity. Never raises."""
        try:
            stats = await self.get_grading_usage_statistics()
        except Exception:
            logger.exception("Failed to log grading usage summary")
            return

        logger.info(
            "Grading usage summary",
            extra={
                "context": {
                    "total": stats["totalGradings"],
                    "top_strategies": stats["strategiesByCount"][:3],
                    "most_active_questions": stats["mostActiveQuestions"][:3],
                    "recent_activity": bool(stats["gradingsByDay"]),
                }
            },
        )
        if stats["totalGradings"] == 0:
            logger.warning("No grading audit records found; strategies may not be recording")
