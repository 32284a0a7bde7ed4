"""
Exercise Service - caller-facing API of the exercise engine.

Owns the two process-wide caches (full collection, search results) and
wires the store, search engine, recommendation scorer and analytics over
the same snapshot.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any, Optional

from cql_clinic.config import Settings, get_settings
from cql_clinic.exercises.analytics import summarize_exercises
from cql_clinic.exercises.cache import TTLCache
from cql_clinic.exercises.dependencies import validate_exercise_dependencies
from cql_clinic.exercises.models import (
    DependencyReport,
    Exercise,
    ExerciseAnalytics,
    Recommendation,
    RecommendationOptions,
    SearchCriteria,
)
from cql_clinic.exercises.recommendations import RecommendationScorer, coerce_progress
from cql_clinic.exercises.search import ExerciseSearch, get_filter_options
from cql_clinic.exercises.sources import ExerciseSource, create_source
from cql_clinic.exercises.store import ExerciseStore
from cql_clinic.exercises.validator import BatchValidationResult, validate_exercise_batch


class ExerciseService:
    """Exercise loading, caching, search, recommendation and analytics."""

    def __init__(
        self,
        source: Optional[ExerciseSource] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], float]] = None,
        scorer: Optional[RecommendationScorer] = None,
    ):
        """
        Initialize the service.

        Args:
            source: Raw exercise source (defaults to the configured one)
            settings: Settings instance (defaults to get_settings())
            clock: Monotonic clock for cache expiry, injectable for tests
            scorer: Recommendation scorer with custom extension points
        """
        self.settings = settings or get_settings()
        ttl = self.settings.get_cache_config()["ttl_seconds"]
        self.exercise_cache = TTLCache("exercises", ttl, clock)
        self.search_cache = TTLCache("search", ttl, clock)

        self.store = ExerciseStore(source or create_source(self.settings), self.exercise_cache)
        self.search = ExerciseSearch(self.store, self.search_cache)
        self.scorer = scorer or RecommendationScorer(default_limit=self.settings.recommendation_limit)

    async def load_exercises(self) -> tuple[Exercise, ...]:
        return await self.store.load()

    async def get_exercise(self, exercise_id: str) -> Exercise:
        return await self.store.get(exercise_id)

    async def search_exercises(
        self, criteria: SearchCriteria | Mapping[str, Any] | None = None
    ) -> list[Exercise]:
        if isinstance(criteria, Mapping):
            criteria = SearchCriteria.from_dict(dict(criteria))
        return await self.search.search(criteria)

    async def get_recommendations(
        self,
        user_progress: Any,
        options: RecommendationOptions | Mapping[str, Any] | None = None,
    ) -> list[Recommendation]:
        """
        Recommend next exercises for a learner.

        Raises:
            InvalidInputError: When user_progress is missing or malformed
            LoadError: When the collection cannot be loaded
        """
        progress = coerce_progress(user_progress)
        exercises = await self.store.load()
        return self.scorer.recommend(exercises, progress, options)

    async def get_exercise_analytics(self, now: Optional[datetime] = None) -> ExerciseAnalytics:
        exercises = await self.store.load()
        return summarize_exercises(
            exercises,
            now=now,
            recent_days=self.settings.recent_days,
            default_estimated_time=self.settings.default_estimated_time,
        )

    async def get_filter_options(self) -> dict[str, Any]:
        return get_filter_options(await self.store.load())

    def validate_exercise_dependencies(self, exercises: Iterable[Exercise]) -> DependencyReport:
        return validate_exercise_dependencies(exercises)

    async def check_dependencies(self) -> DependencyReport:
        """Validate the prerequisite graph of the loaded collection."""
        return validate_exercise_dependencies(await self.store.load())

    def clear_cache(self) -> None:
        """Drop every cached snapshot; the next call reloads from the source."""
        self.store.invalidate()

    async def validate_collection(self) -> tuple[BatchValidationResult, DependencyReport]:
        """
        Fetch the raw records once and report schema, quality and graph problems.

        The cache is bypassed so invalid records are visible too.

        Raises:
            LoadError: When the source cannot be reached or parsed
        """
        records = await self.store.source.fetch()
        batch = validate_exercise_batch(records)
        exercises = [item.validation.exercise for item in batch.results if item.valid]
        return batch, validate_exercise_dependencies(exercises)

    async def close(self) -> None:
        """Release the source's HTTP client, if it has one."""
        close = getattr(self.store.source, "close", None)
        if close is not None:
            await close()
