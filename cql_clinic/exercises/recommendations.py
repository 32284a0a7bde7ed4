"""
Exercise Recommendation Scorer.

Ranks the exercises a learner is allowed to attempt next by a weighted sum:

    difficulty match  x 40
    concept overlap   x 30
    engagement        x 20
    content quality   x 10

The total is deliberately left unclamped.
"""

from __future__ import annotations

import math
from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Callable, Optional

from loguru import logger
from pydantic import ValidationError

from cql_clinic.exercises.errors import InvalidInputError
from cql_clinic.exercises.models import (
    DIFFICULTY_LEVELS,
    Exercise,
    ExerciseType,
    Recommendation,
    RecommendationOptions,
    UserProgress,
)

DIFFICULTY_WEIGHT = 40
CONCEPT_WEIGHT = 30
ENGAGEMENT_WEIGHT = 20
QUALITY_WEIGHT = 10

DEFAULT_LIMIT = 5
NEUTRAL_ENGAGEMENT = 0.5

# |exercise level - learner level| -> match value
DIFFICULTY_MATCH = {0: 1.0, 1: 0.7, 2: 0.4}
POOR_MATCH = 0.1

StrugglingConceptsProvider = Callable[[UserProgress], Collection[str]]
EngagementProvider = Callable[[Exercise, UserProgress], float]


def no_struggling_concepts(progress: UserProgress) -> Collection[str]:
    """Default provider: no struggle signal available."""
    return ()


def neutral_engagement(exercise: Exercise, progress: UserProgress) -> float:
    """Default provider: every exercise is equally engaging."""
    return NEUTRAL_ENGAGEMENT


@dataclass(frozen=True)
class ScoreBreakdown:
    difficulty_match: float
    concept_score: float
    engagement: float
    quality: float

    @property
    def total(self) -> float:
        return (
            self.difficulty_match * DIFFICULTY_WEIGHT
            + self.concept_score * CONCEPT_WEIGHT
            + self.engagement * ENGAGEMENT_WEIGHT
            + self.quality * QUALITY_WEIGHT
        )


@dataclass(frozen=True)
class ReasonRule:
    """Display message chosen when ``applies`` holds; first match wins."""
    applies: Callable[[Exercise, ScoreBreakdown], bool]
    template: str

    def render(self, exercise: Exercise) -> str:
        return self.template.format(concepts=", ".join(exercise.concepts[:2]))


REASON_RULES: tuple[ReasonRule, ...] = (
    ReasonRule(
        lambda exercise, breakdown: breakdown.difficulty_match >= 0.8,
        "Perfect difficulty match for your current level",
    ),
    ReasonRule(
        lambda exercise, breakdown: breakdown.concept_score >= 0.6,
        "Reinforces concepts you're learning: {concepts}",
    ),
    ReasonRule(
        lambda exercise, breakdown: exercise.type is ExerciseType.CHALLENGE,
        "Challenge exercise to test your skills",
    ),
    ReasonRule(
        lambda exercise, breakdown: True,
        "Next step in your CQL learning journey",
    ),
)


def coerce_progress(user_progress: Any) -> UserProgress:
    """
    Accept a UserProgress or its camelCase mapping form.

    Raises:
        InvalidInputError: When progress is missing or malformed
    """
    if isinstance(user_progress, UserProgress):
        return user_progress
    if user_progress is None:
        raise InvalidInputError("User progress is required")
    if not isinstance(user_progress, Mapping):
        raise InvalidInputError(
            f"User progress must be a mapping, got {type(user_progress).__name__}"
        )
    try:
        return UserProgress.model_validate(dict(user_progress))
    except ValidationError as e:
        raise InvalidInputError(f"Malformed user progress: {e}") from e


def estimate_user_level(progress: UserProgress) -> str:
    """Coarse learner level from the number of completed exercises."""
    completed = len(progress.completed_ids)
    if completed < 5:
        return "beginner"
    if completed < 15:
        return "intermediate"
    return "advanced"


def difficulty_match(exercise_difficulty: str, user_level: str) -> float:
    exercise_level = DIFFICULTY_LEVELS.get(exercise_difficulty, 1)
    current_level = DIFFICULTY_LEVELS.get(user_level, 1)
    return DIFFICULTY_MATCH.get(abs(exercise_level - current_level), POOR_MATCH)


def is_eligible(exercise: Exercise, completed_ids: set[str], include_completed: bool = False) -> bool:
    """Prerequisites all completed, and not already completed unless asked."""
    if exercise.id in completed_ids and not include_completed:
        return False
    return all(prereq_id in completed_ids for prereq_id in exercise.prerequisites)


class RecommendationScorer:
    """
    Scores eligible exercises for one learner.

    ``struggling_concepts`` and ``engagement`` are extension points; the
    defaults contribute an empty set and a neutral 0.5.
    """

    def __init__(
        self,
        struggling_concepts: Optional[StrugglingConceptsProvider] = None,
        engagement: Optional[EngagementProvider] = None,
        default_limit: int = DEFAULT_LIMIT,
    ):
        self._struggling_concepts = struggling_concepts or no_struggling_concepts
        self._engagement = engagement or neutral_engagement
        self.default_limit = default_limit

    def recommend(
        self,
        exercises: Iterable[Exercise],
        user_progress: Any,
        options: RecommendationOptions | Mapping[str, Any] | None = None,
    ) -> list[Recommendation]:
        """
        Rank eligible exercises, best first.

        Raises:
            InvalidInputError: When user_progress is missing or malformed
        """
        progress = coerce_progress(user_progress)
        options = _coerce_options(options)
        completed_ids = progress.completed_ids

        user_level = estimate_user_level(progress)
        struggling = set(self._struggling_concepts(progress))

        recommendations = []
        for exercise in exercises:
            if not is_eligible(exercise, completed_ids, options.include_completed):
                continue
            breakdown = self.score(exercise, progress, user_level, struggling)
            recommendations.append(Recommendation(
                exercise=exercise,
                score=breakdown.total,
                reason=self.reason(exercise, breakdown),
            ))

        recommendations.sort(key=lambda rec: rec.score, reverse=True)
        limit = options.limit if options.limit and options.limit > 0 else self.default_limit
        return recommendations[:limit]

    def score(
        self,
        exercise: Exercise,
        progress: UserProgress,
        user_level: str,
        struggling: set[str],
    ) -> ScoreBreakdown:
        overlap = [concept for concept in exercise.concepts if concept in struggling]
        return ScoreBreakdown(
            difficulty_match=difficulty_match(exercise.difficulty.value, user_level),
            concept_score=len(overlap) / max(len(exercise.concepts), 1),
            engagement=self._engagement_for(exercise, progress),
            quality=exercise.quality_score / 100,
        )

    @staticmethod
    def reason(exercise: Exercise, breakdown: ScoreBreakdown) -> str:
        for rule in REASON_RULES:
            if rule.applies(exercise, breakdown):
                return rule.render(exercise)
        return ""

    def _engagement_for(self, exercise: Exercise, progress: UserProgress) -> float:
        value = self._engagement(exercise, progress)
        if not isinstance(value, (int, float)) or not math.isfinite(value) or not 0.0 <= value <= 1.0:
            logger.warning(
                f"Engagement provider returned {value!r} for {exercise.id}; using neutral score"
            )
            return NEUTRAL_ENGAGEMENT
        return float(value)


def _coerce_options(options: RecommendationOptions | Mapping[str, Any] | None) -> RecommendationOptions:
    if options is None:
        return RecommendationOptions()
    if isinstance(options, RecommendationOptions):
        return options
    return RecommendationOptions(
        limit=options.get("limit"),
        include_completed=bool(options.get("include_completed", options.get("includeCompleted", False))),
    )
