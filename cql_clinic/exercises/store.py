"""
Exercise Store - validated, TTL-cached snapshot of the exercise collection.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from cql_clinic.exercises.cache import TTLCache
from cql_clinic.exercises.dependencies import validate_exercise_dependencies
from cql_clinic.exercises.errors import LoadError, NotFoundError
from cql_clinic.exercises.models import Exercise
from cql_clinic.exercises.sources import ExerciseSource
from cql_clinic.exercises.validator import perform_quality_checks, validate_exercise_data

ALL_EXERCISES_KEY = "all-exercises"


class ExerciseStore:
    """
    Loads exercises from a source once per cache window.

    Invalid records are logged and dropped; they never fail the load.
    """

    def __init__(self, source: ExerciseSource, cache: TTLCache):
        self.source = source
        self._cache = cache
        self._derived_caches: list[TTLCache] = []

    def register_derived_cache(self, cache: TTLCache) -> None:
        """Track a cache built from this store's snapshot so invalidate() drops it too."""
        if cache is not self._cache and cache not in self._derived_caches:
            self._derived_caches.append(cache)

    async def load(self) -> tuple[Exercise, ...]:
        """
        Return the full validated collection.

        Raises:
            LoadError: When the source cannot be reached or parsed
        """
        return await self._cache.get_or_load(ALL_EXERCISES_KEY, self._load_from_source)

    async def get(self, exercise_id: str) -> Exercise:
        """
        Return one exercise.

        Raises:
            NotFoundError: When the id is not in the loaded collection
        """
        cache_key = f"exercise-{exercise_id}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        for exercise in await self.load():
            if exercise.id == exercise_id:
                self._cache.set(cache_key, exercise)
                return exercise
        raise NotFoundError(exercise_id)

    def invalidate(self) -> None:
        """Drop the collection snapshot and every cache derived from it."""
        self._cache.clear()
        for cache in self._derived_caches:
            cache.clear()

    async def _load_from_source(self) -> tuple[Exercise, ...]:
        try:
            records = await self.source.fetch()
        except LoadError:
            raise
        except Exception as e:
            logger.error(f"Failed to load exercises: {e}")
            raise LoadError(f"Failed to load exercises: {e}") from e

        exercises = self._validate_records(records)
        logger.info(f"Loaded {len(exercises)} valid exercises")

        report = validate_exercise_dependencies(exercises)
        for problem in report.errors:
            logger.warning(problem)
        return tuple(exercises)

    def _validate_records(self, records: list[dict[str, Any]]) -> list[Exercise]:
        valid: list[Exercise] = []
        seen: set[str] = set()

        for index, raw in enumerate(records):
            result = validate_exercise_data(raw)
            if not result.success:
                record_id = raw.get("id", f"#{index}") if isinstance(raw, dict) else f"#{index}"
                logger.warning(f"Invalid exercise {record_id}: {result.errors}")
                continue

            exercise = result.exercise
            if exercise.id in seen:
                logger.warning(f"Invalid exercise {exercise.id}: duplicate id, keeping first occurrence")
                continue
            seen.add(exercise.id)

            quality = perform_quality_checks(exercise)
            if quality.warnings:
                logger.debug(
                    f"Exercise {exercise.id} quality {quality.quality_score}: {quality.warnings}"
                )
            valid.append(exercise)

        return valid
