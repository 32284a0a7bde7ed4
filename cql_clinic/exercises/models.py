"""
Exercise Engine Data Models.

Exercise records are validated with Pydantic on load (the wire format is the
camelCase JSON used by exercise authors); everything derived from the loaded
collection is a plain dataclass recomputed per request.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_QUALITY_SCORE = 70


# =============================================================================
# Enums
# =============================================================================


class Difficulty(str, Enum):
    """Ordered difficulty scale (1-4)."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"

    @property
    def level(self) -> int:
        return DIFFICULTY_LEVELS[self.value]


DIFFICULTY_LEVELS: dict[str, int] = {
    "beginner": 1,
    "intermediate": 2,
    "advanced": 3,
    "expert": 4,
}


class ExerciseType(str, Enum):
    """Kind of learning activity an exercise represents."""
    TUTORIAL = "tutorial"
    PRACTICE = "practice"
    CHALLENGE = "challenge"
    DEBUG = "debug"
    ASSESSMENT = "assessment"
    BUILD = "build"


# =============================================================================
# Exercise Record (validated on load)
# =============================================================================


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class Hint(_Record):
    """One progressive hint; authors may write plain strings."""

    level: int = 1
    text: str


class Resource(_Record):
    """External reading linked from an exercise."""

    title: str
    url: str
    type: Optional[str] = None


class ExerciseContent(_Record):
    """Instructional content; opaque to the engine except for hint count."""

    instructions: str = Field(..., min_length=1)
    background: Optional[str] = None
    hints: tuple[Hint, ...] = ()
    resources: tuple[Resource, ...] = ()

    @field_validator("hints", mode="before")
    @classmethod
    def _coerce_hints(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return [
                {"level": index + 1, "text": item} if isinstance(item, str) else item
                for index, item in enumerate(value)
            ]
        return value


class ExerciseFile(_Record):
    """Editor file with starter template and reference solution."""

    name: str
    template: str = ""
    solution: str = ""
    readonly: bool = False
    language: str = "cql"


class ExerciseMetadata(_Record):
    """Authoring metadata."""

    quality_score: Optional[int] = Field(default=None, ge=0, le=100, alias="qualityScore")
    created: Optional[datetime] = None
    modified: Optional[datetime] = None
    source: Optional[str] = None
    review_status: Optional[str] = Field(default=None, alias="reviewStatus")


class Exercise(_Record):
    """A single learning unit. Immutable once loaded."""

    id: str = Field(..., min_length=1)
    version: str = "1.0.0"
    title: str = Field(..., min_length=1)
    description: str
    difficulty: Difficulty
    estimated_time: int = Field(..., gt=0, alias="estimatedTime")
    prerequisites: tuple[str, ...] = ()
    concepts: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    type: ExerciseType
    content: ExerciseContent
    files: tuple[ExerciseFile, ...] = ()
    validation: Optional[dict[str, Any]] = None
    feedback: Optional[dict[str, Any]] = None
    metadata: ExerciseMetadata = Field(default_factory=ExerciseMetadata)

    @property
    def difficulty_level(self) -> int:
        return self.difficulty.level

    @property
    def quality_score(self) -> int:
        """Quality score, falling back to the default when absent."""
        if self.metadata.quality_score is None:
            return DEFAULT_QUALITY_SCORE
        return self.metadata.quality_score

    @property
    def hint_count(self) -> int:
        return len(self.content.hints)

    @property
    def created_at(self) -> Optional[datetime]:
        return _as_utc(self.metadata.created)

    @property
    def modified_at(self) -> Optional[datetime]:
        return _as_utc(self.metadata.modified)

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the authoring (camelCase) format."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# Learner Progress (caller supplied)
# =============================================================================


class ExerciseProgress(BaseModel):
    """Progress on one exercise."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    completed: bool = False
    score: Optional[float] = None
    attempts: Optional[int] = Field(default=None, ge=0)


class UserProgress(BaseModel):
    """A learner's progress across exercises."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    exercise_progress: dict[str, ExerciseProgress] = Field(
        default_factory=dict, alias="exerciseProgress"
    )

    @property
    def completed_ids(self) -> set[str]:
        return {
            exercise_id
            for exercise_id, progress in self.exercise_progress.items()
            if progress.completed
        }


# =============================================================================
# Search Criteria
# =============================================================================

def _as_tuple(values: Any) -> tuple[str, ...]:
    # A bare string is one value, not a sequence of characters
    if values is None:
        return ()
    if isinstance(values, str):
        return (values,)
    return tuple(values)


_CRITERIA_ALIASES = {
    "estimatedTimeMin": "estimated_time_min",
    "estimatedTimeMax": "estimated_time_max",
    "sortBy": "sort_by",
    "sortOrder": "sort_order",
}


@dataclass(frozen=True)
class SearchCriteria:
    """
    Conjunctive exercise query.

    Every field left at its default imposes no constraint.
    """
    query: str = ""
    difficulty: Optional[str] = None
    type: Optional[str] = None
    concepts: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    estimated_time_min: Optional[int] = None
    estimated_time_max: Optional[int] = None
    sort_by: Optional[str] = None
    sort_order: str = "asc"
    limit: Optional[int] = None
    offset: int = 0

    def __post_init__(self) -> None:
        # Enum members are stored by value so cache keys stay stable
        if isinstance(self.difficulty, Enum):
            object.__setattr__(self, "difficulty", self.difficulty.value)
        if isinstance(self.type, Enum):
            object.__setattr__(self, "type", self.type.value)
        object.__setattr__(self, "concepts", _as_tuple(self.concepts))
        object.__setattr__(self, "tags", _as_tuple(self.tags))
        object.__setattr__(self, "offset", self.offset or 0)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> SearchCriteria:
        """Build criteria from a camelCase or snake_case mapping."""
        known = set(cls.__dataclass_fields__)
        values: dict[str, Any] = {}
        for key, value in raw.items():
            name = _CRITERIA_ALIASES.get(key, key)
            if name in known and value is not None:
                values[name] = value
        return cls(**values)

    @property
    def descending(self) -> bool:
        return self.sort_order == "desc"

    @property
    def has_active_filters(self) -> bool:
        return bool(
            self.query
            or self.difficulty
            or self.type
            or self.concepts
            or self.tags
            or self.estimated_time_min is not None
            or self.estimated_time_max is not None
        )

    @property
    def current_page(self) -> int:
        if not self.limit:
            return 1
        return self.offset // self.limit + 1

    def page(self, number: int) -> SearchCriteria:
        """Return a copy positioned on the given 1-based page."""
        if not self.limit or number < 1:
            return self
        return replace(self, offset=(number - 1) * self.limit)

    def cache_key(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)


# =============================================================================
# Derived Results
# =============================================================================


@dataclass
class RecommendationOptions:
    """Options for a recommendation request."""
    limit: Optional[int] = None
    include_completed: bool = False


@dataclass
class Recommendation:
    """A scored exercise suggestion. Not persisted."""
    exercise: Exercise
    score: float
    reason: str


@dataclass
class DependencyReport:
    """Result of prerequisite graph validation."""
    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    dependency_graph: dict[str, list[str]] = field(default_factory=dict)
    cycles: list[str] = field(default_factory=list)


@dataclass
class ExerciseAnalytics:
    """Distribution summary of the loaded collection."""
    total: int = 0
    by_difficulty: dict[str, int] = field(default_factory=dict)
    by_type: dict[str, int] = field(default_factory=dict)
    by_concept: dict[str, int] = field(default_factory=dict)
    quality_distribution: dict[str, int] = field(
        default_factory=lambda: {"high": 0, "medium": 0, "low": 0}
    )
    average_estimated_time: int = 0
    total_concepts: int = 0
    recently_added: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
