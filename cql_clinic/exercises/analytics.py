"""Collection-level distribution summary for reporting."""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Optional

from cql_clinic.exercises.models import Exercise, ExerciseAnalytics

DEFAULT_ESTIMATED_TIME = 15
RECENT_DAYS = 7


def quality_tier(score: int) -> str:
    if score >= 85:
        return "high"
    if score >= 70:
        return "medium"
    return "low"


def summarize_exercises(
    exercises: Iterable[Exercise],
    now: Optional[datetime] = None,
    recent_days: int = RECENT_DAYS,
    default_estimated_time: int = DEFAULT_ESTIMATED_TIME,
) -> ExerciseAnalytics:
    """Single pass over the collection; an empty collection averages to 0."""
    now = now or datetime.now(timezone.utc)
    recent_cutoff = now - timedelta(days=recent_days)

    by_difficulty: Counter[str] = Counter()
    by_type: Counter[str] = Counter()
    by_concept: Counter[str] = Counter()
    quality: Counter[str] = Counter({"high": 0, "medium": 0, "low": 0})
    total = 0
    total_time = 0
    recently_added = 0

    for exercise in exercises:
        total += 1
        by_difficulty[exercise.difficulty.value] += 1
        by_type[exercise.type.value] += 1
        by_concept.update(exercise.concepts)
        quality[quality_tier(exercise.quality_score)] += 1
        total_time += exercise.estimated_time or default_estimated_time

        created = exercise.created_at
        if created is not None and created > recent_cutoff:
            recently_added += 1

    return ExerciseAnalytics(
        total=total,
        by_difficulty=dict(by_difficulty),
        by_type=dict(by_type),
        by_concept=dict(by_concept),
        quality_distribution=dict(quality),
        average_estimated_time=math.floor(total_time / total + 0.5) if total else 0,
        total_concepts=len(by_concept),
        recently_added=recently_added,
    )
