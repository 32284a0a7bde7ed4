"""
Exercise search: conjunctive filtering, stable sorting, pagination.

The filtering and sorting helpers are pure; ExerciseSearch adds the
per-criteria result cache on top.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timezone
from typing import Any, Optional

from loguru import logger

from cql_clinic.exercises.cache import TTLCache
from cql_clinic.exercises.models import (
    DEFAULT_QUALITY_SCORE,
    DIFFICULTY_LEVELS,
    Exercise,
    SearchCriteria,
)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

TIME_RANGES = [
    {"label": "< 10 min", "min": 0, "max": 9},
    {"label": "10-20 min", "min": 10, "max": 20},
    {"label": "21-30 min", "min": 21, "max": 30},
    {"label": "31-45 min", "min": 31, "max": 45},
    {"label": "> 45 min", "min": 46, "max": 999},
]

SORT_KEYS: dict[str, Callable[[Exercise], Any]] = {
    "title": lambda exercise: exercise.title.lower(),
    "difficulty": lambda exercise: DIFFICULTY_LEVELS.get(exercise.difficulty.value, 0),
    "estimatedTime": lambda exercise: exercise.estimated_time or 0,
    "created": lambda exercise: exercise.created_at or EPOCH,
    "modified": lambda exercise: exercise.modified_at or EPOCH,
    "quality": lambda exercise: (
        DEFAULT_QUALITY_SCORE
        if exercise.metadata.quality_score is None
        else exercise.metadata.quality_score
    ),
}
SORT_KEYS["estimated_time"] = SORT_KEYS["estimatedTime"]


def _matches_query(exercise: Exercise, query: str) -> bool:
    needle = query.lower()
    return (
        needle in exercise.title.lower()
        or needle in exercise.description.lower()
        or needle in exercise.content.instructions.lower()
        or any(needle in concept.lower() for concept in exercise.concepts)
        or any(needle in tag.lower() for tag in exercise.tags)
    )


def matches(exercise: Exercise, criteria: SearchCriteria) -> bool:
    """True when the exercise satisfies every criterion that is set."""
    if criteria.query and not _matches_query(exercise, criteria.query):
        return False
    if criteria.difficulty and exercise.difficulty.value != criteria.difficulty:
        return False
    if criteria.type and exercise.type.value != criteria.type:
        return False
    if criteria.concepts and not any(c in exercise.concepts for c in criteria.concepts):
        return False
    if criteria.tags and not any(t in exercise.tags for t in criteria.tags):
        return False
    if criteria.estimated_time_min is not None and exercise.estimated_time < criteria.estimated_time_min:
        return False
    if criteria.estimated_time_max is not None and exercise.estimated_time > criteria.estimated_time_max:
        return False
    return True


def _raw_field(sort_by: str) -> Callable[[Exercise], Any]:
    def key(exercise: Exercise) -> Any:
        value = getattr(exercise, sort_by, None)
        # None sorts first; non-scalar values compare as text
        return (value is not None, value if isinstance(value, (int, float, str)) else str(value))
    return key


def sort_exercises(
    exercises: Sequence[Exercise],
    sort_by: str,
    sort_order: str = "asc",
) -> list[Exercise]:
    """
    Stable sort by a named key.

    Ties keep input order in both directions, so pagination is deterministic.
    """
    key = SORT_KEYS.get(sort_by) or _raw_field(sort_by)
    # sorted() keeps equal keys in input order even with reverse=True
    return sorted(exercises, key=key, reverse=sort_order == "desc")


def paginate(exercises: list[Exercise], limit: Optional[int], offset: int = 0) -> list[Exercise]:
    """Slice [offset, offset + limit); no limit returns everything from offset."""
    if not limit and not offset:
        return exercises
    start = max(offset or 0, 0)
    if not limit:
        return exercises[start:]
    return exercises[start:start + limit]


def filter_exercises(exercises: Iterable[Exercise], criteria: SearchCriteria) -> list[Exercise]:
    """Apply filters, sorting and pagination to a collection."""
    results = [exercise for exercise in exercises if matches(exercise, criteria)]
    if criteria.sort_by:
        results = sort_exercises(results, criteria.sort_by, criteria.sort_order)
    return paginate(results, criteria.limit, criteria.offset)


def get_filter_options(exercises: Iterable[Exercise]) -> dict[str, Any]:
    """Distinct filter values present in the collection."""
    exercises = list(exercises)
    return {
        "difficulties": sorted({exercise.difficulty.value for exercise in exercises}),
        "types": sorted({exercise.type.value for exercise in exercises}),
        "concepts": sorted({c for exercise in exercises for c in exercise.concepts}),
        "tags": sorted({t for exercise in exercises for t in exercise.tags}),
        "time_ranges": [dict(r) for r in TIME_RANGES],
    }


class ExerciseSearch:
    """Search over the store's snapshot with a per-criteria result cache."""

    def __init__(self, store, cache: TTLCache):
        self._store = store
        self._cache = cache
        store.register_derived_cache(cache)

    async def search(self, criteria: SearchCriteria | dict | None = None) -> list[Exercise]:
        """
        Search exercises.

        Raises:
            LoadError: When the collection cannot be loaded
        """
        if criteria is None:
            criteria = SearchCriteria()
        elif isinstance(criteria, dict):
            criteria = SearchCriteria.from_dict(criteria)

        async def run() -> list[Exercise]:
            exercises = await self._store.load()
            results = filter_exercises(exercises, criteria)
            logger.debug(f"Search matched {len(results)} of {len(exercises)} exercises")
            return results

        results = await self._cache.get_or_load(criteria.cache_key(), run)
        return list(results)
