"""
Grading consistency engine.

Detects when an answer matches one graded before so the caller can
compare scores. Recent gradings are held in a bounded in-process cache
keyed by question; older ones are looked up in the audit store.
"""

import asyncio
import json
import logging
import math
import re
import secrets
from datetime import timedelta
from hashlib import sha256
from typing import Any

from gradeflow.config import Settings, get_settings
from gradeflow.locks import KeyedLock
from gradeflow.models import (
    ConsistencyCheck,
    GradingRecord,
    QuestionType,
    RubricScore,
    RubricValidationResult,
    Scoring,
    utcnow,
)
from gradeflow.rubric.validator import RubricScoreValidator
from gradeflow.store.base import DataStore

logger = logging.getLogger(__name__)

MAX_NORMALIZED_LENGTH = 1000

FILLER_WORDS = ("the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for")
_FILLER = re.compile(r"\b(?:" + "|".join(FILLER_WORDS) + r")\b")
_PUNCTUATION = re.compile(r"[!\"',.:;?]")
_WHITESPACE = re.compile(r"\s+")
_CHOICE_PREFIX = re.compile(r"\b(option|choice|answer)\s*", re.IGNORECASE)
_TRUE_WORDS = re.compile(r"\b(true|yes|correct|right)\b", re.IGNORECASE)
_FALSE_WORDS = re.compile(r"\b(false|no|incorrect|wrong)\b", re.IGNORECASE)

EXACT_MATCH_TYPES = (
    QuestionType.SINGLE_CORRECT,
    QuestionType.MULTIPLE_CORRECT,
    QuestionType.TRUE_FALSE,
)


# ==============================================================================
# Normalization and Similarity
# ==============================================================================


def normalize_response(response: str | None, question_type: QuestionType) -> str:
    """Reduce a response to the form used for hashing and comparison."""
    if not response or not isinstance(response, str):
        return ""

    normalized = response.lower().strip()[:MAX_NORMALIZED_LENGTH]
    normalized = _WHITESPACE.sub(" ", normalized)
    normalized = _PUNCTUATION.sub("", normalized)

    if question_type == QuestionType.TEXT:
        normalized = _FILLER.sub("", normalized)
        normalized = _WHITESPACE.sub(" ", normalized).strip()
    elif question_type in (QuestionType.SINGLE_CORRECT, QuestionType.MULTIPLE_CORRECT):
        normalized = _CHOICE_PREFIX.sub("", normalized)
    elif question_type == QuestionType.TRUE_FALSE:
        if _TRUE_WORDS.search(normalized):
            normalized = "true"
        elif _FALSE_WORDS.search(normalized):
            normalized = "false"

    return normalized


def edit_distance(first: str, second: str) -> int:
    """Levenshtein distance with unit costs."""
    previous = list(range(len(second) + 1))
    for i, a in enumerate(first, start=1):
        current = [i] + [0] * len(second)
        for j, b in enumerate(second, start=1):
            if a == b:
                current[j] = previous[j - 1]
            else:
                current[j] = 1 + min(previous[j], current[j - 1], previous[j - 1])
        previous = current
    return previous[-1]


def jaccard_similarity(first: str, second: str) -> float:
    tokens_a = set(first.split(" "))
    tokens_b = set(second.split(" "))
    union = tokens_a | tokens_b
    return len(tokens_a & tokens_b) / len(union) if union else 0.0


def calculate_similarity(first: str, second: str, jaccard_threshold: int = 500) -> float:
    """
    Similarity in [0, 1].

    Strings longer than `jaccard_threshold` use token Jaccard similarity;
    shorter ones use `(len(longer) - distance) / len(longer)`.
    """
    if not first or not second:
        return 0.0
    if first == second:
        return 1.0

    longer, shorter = (first, second) if len(first) > len(second) else (second, first)
    if len(longer) > jaccard_threshold:
        return jaccard_similarity(first, second)

    return (len(longer) - edit_distance(longer, shorter)) / len(longer)


# ==============================================================================
# Consistency Service
# ==============================================================================


class GradingConsistencyService:
    """
    Tracks gradings of similar answers per question.

    The cache holds at most `cache_max_records_per_question` records per
    question. When it grows past `cache_max_keys` questions a sweep drops
    expired records, then evicts keys in sorted order until under the cap.
    Call `start()` to run the sweep periodically and `shutdown()` to stop it.
    """

    def __init__(
        self,
        store: DataStore,
        settings: Settings | None = None,
        rubric_validator: RubricScoreValidator | None = None,
    ):
        self._store = store
        self._settings = settings or get_settings()
        self._rubric_validator = rubric_validator or RubricScoreValidator()
        self._cache: dict[str, list[GradingRecord]] = {}
        self._locks = KeyedLock()
        self._sweeper: asyncio.Task[None] | None = None

    # --------------------------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic cache sweep on the running loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_periodically())

    async def shutdown(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

    async def _sweep_periodically(self) -> None:
        while True:
            await asyncio.sleep(self._settings.cache_sweep_interval_seconds)
            self.cleanup_cache()

    # --------------------------------------------------------------------------
    # Hashing and lookup
    # --------------------------------------------------------------------------

    def generate_response_hash(
        self, response: str, question_id: int, question_type: QuestionType
    ) -> str:
        """Truncated SHA-256 of the question id and normalized response."""
        try:
            normalized = normalize_response(response, question_type)
            return sha256(f"{question_id}:{normalized}".encode("utf-8")).hexdigest()[:32]
        except Exception:
            logger.exception("Could not hash response for question %s", question_id)
            return secrets.token_hex(16)

    def is_similar_response(
        self, first: str, second: str, question_type: QuestionType
    ) -> bool:
        if not first or not second:
            return False

        normalized_a = normalize_response(first, question_type)
        normalized_b = normalize_response(second, question_type)

        if question_type in EXACT_MATCH_TYPES:
            return normalized_a == normalized_b

        similarity = calculate_similarity(
            normalized_a, normalized_b, self._settings.jaccard_length_threshold
        )
        return similarity > self._settings.similarity_threshold

    async def check_consistency(
        self,
        question_id: int,
        response_hash: str,
        current_response: str,
        question_type: QuestionType,
    ) -> ConsistencyCheck:
        """
        Look for an earlier grading of an equivalent answer.

        Checks the cache for an identical hash first, then recent audit
        rows for a similar answer. Never raises.
        """
        try:
            for record in self._cache.get(self._cache_key(question_id), []):
                if record.response_hash == response_hash:
                    return ConsistencyCheck(
                        similar=True,
                        previous_grade=record.points,
                        previous_feedback=record.feedback,
                        deviation_percentage=0.0,
                        source="cache",
                    )

            since = utcnow() - timedelta(days=self._settings.consistency_lookback_days)
            entries = await self._store.find_recent_audit_records(
                question_id, since, self._settings.consistency_lookup_limit
            )

            for entry in entries:
                previous = (
                    entry.request_payload.get("learnerTextResponse")
                    or entry.request_payload.get("learnerResponse")
                    or ""
                )
                if not isinstance(previous, str):
                    continue
                if self.is_similar_response(current_response, previous, question_type):
                    return ConsistencyCheck(
                        similar=True,
                        previous_grade=entry.total_points,
                        previous_feedback=json.dumps(
                            entry.response_payload.get("feedback") or "", ensure_ascii=False
                        ),
                        source="audit",
                    )
        except Exception:
            logger.exception("Consistency check failed for question %s", question_id)

        return ConsistencyCheck(similar=False)

    def evaluate_deviation(
        self, check: ConsistencyCheck, points: float, max_points: float
    ) -> ConsistencyCheck:
        """Fill in how far the new score is from the previous grade."""
        if not check.similar or check.previous_grade is None:
            return check

        deviation = abs(points - check.previous_grade) / (max_points or 1) * 100
        return check.model_copy(
            update={
                "deviation_percentage": round(deviation, 2),
                "should_adjust": deviation > self._settings.deviation_threshold_percent,
            }
        )

    # --------------------------------------------------------------------------
    # Recording
    # --------------------------------------------------------------------------

    async def record_grading(
        self,
        question_id: int,
        response_hash: str,
        points: float,
        max_points: float,
        feedback: str,
        rubric_scores: list[RubricScore] | None = None,
    ) -> None:
        """Add a grading to the cache. Never raises."""
        try:
            record = GradingRecord(
                question_id=question_id,
                response_hash=response_hash,
                points=points,
                max_points=max_points,
                feedback=feedback,
                rubric_scores=rubric_scores,
            )
            key = self._cache_key(question_id)
            async with self._locks.hold(key):
                records = self._cache.setdefault(key, [])
                records.append(record)
                if len(records) > self._settings.cache_max_records_per_question:
                    del records[0]
                if len(self._cache) > self._settings.cache_max_keys:
                    self.cleanup_cache()
        except Exception:
            logger.exception("Could not record grading for question %s", question_id)

    def cleanup_cache(self) -> None:
        """Drop expired records, then evict keys in sorted order down to the cap."""
        cutoff = utcnow() - timedelta(hours=self._settings.cache_record_ttl_hours)

        for key in list(self._cache):
            fresh = [r for r in self._cache[key] if r.timestamp > cutoff]
            if fresh:
                self._cache[key] = fresh
            else:
                del self._cache[key]

        overflow = len(self._cache) - self._settings.cache_max_keys
        if overflow > 0:
            for key in sorted(self._cache)[:overflow]:
                del self._cache[key]

        logger.debug("Cache cleanup completed, %d questions cached", len(self._cache))

    def cached_records(self, question_id: int) -> list[GradingRecord]:
        return list(self._cache.get(self._cache_key(question_id), []))

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    @staticmethod
    def _cache_key(question_id: int) -> str:
        return f"q_{question_id}"

    # --------------------------------------------------------------------------
    # Rubrics and statistics
    # --------------------------------------------------------------------------

    def validate_rubric_scores(
        self, rubric_scores: list[RubricScore] | None, scoring: Scoring | None
    ) -> RubricValidationResult:
        return self._rubric_validator.validate_rubric_scores(rubric_scores, scoring)

    @staticmethod
    def normalize_score(points: float, max_points: float) -> dict[str, float]:
        safe_max = max_points if max_points > 0 else 1
        return {
            "percentage": round(points / safe_max * 100, 2),
            "points": points,
            "maxPoints": safe_max,
        }

    async def get_grading_statistics(self, question_id: int) -> dict[str, Any]:
        """Score percentage distribution over the most recent audit rows."""
        empty = {"averageScore": 0, "standardDeviation": 0, "distribution": {}, "totalGradings": 0}
        try:
            entries = await self._store.find_recent_audit_records(
                question_id, None, self._settings.audit_statistics_window
            )
        except Exception:
            logger.exception("Could not load grading statistics for question %s", question_id)
            return empty

        scores: list[int] = []
        distribution: dict[str, int] = {}
        for entry in entries:
            percentage = round(entry.total_points / (entry.max_points or 1) * 100)
            scores.append(percentage)
            low = percentage // 10 * 10
            bucket = f"{low}-{low + 9}%"
            distribution[bucket] = distribution.get(bucket, 0) + 1

        if not scores:
            return empty

        average = sum(scores) / len(scores)
        variance = sum((s - average) ** 2 for s in scores) / len(scores)
        return {
            "averageScore": round(average, 2),
            "standardDeviation": round(math.sqrt(variance), 2),
            "distribution": distribution,
            "totalGradings": len(scores),
        }
