"""
Exercise Engine.

Components:
- ExerciseStore: TTL-cached, validated snapshot of the exercise collection
- Dependency validation: prerequisite graph, missing references, cycles
- ExerciseSearch: conjunctive filters, stable sort, pagination
- RecommendationScorer: eligibility filter plus weighted ranking
- Analytics: distribution summary of the collection
- ExerciseService: caller-facing facade over all of the above
"""
from cql_clinic.exercises.analytics import summarize_exercises
from cql_clinic.exercises.cache import TTLCache
from cql_clinic.exercises.dependencies import (
    detect_circular_dependencies,
    validate_exercise_dependencies,
)
from cql_clinic.exercises.errors import (
    ExerciseServiceError,
    ExerciseValidationError,
    InvalidInputError,
    LoadError,
    NotFoundError,
)
from cql_clinic.exercises.models import (
    DependencyReport,
    Difficulty,
    Exercise,
    ExerciseAnalytics,
    ExerciseProgress,
    ExerciseType,
    Recommendation,
    RecommendationOptions,
    SearchCriteria,
    UserProgress,
)
from cql_clinic.exercises.recommendations import RecommendationScorer
from cql_clinic.exercises.search import ExerciseSearch, filter_exercises, sort_exercises
from cql_clinic.exercises.service import ExerciseService
from cql_clinic.exercises.sources import (
    BundledExerciseSource,
    DirectoryExerciseSource,
    HttpExerciseSource,
    StaticExerciseSource,
    create_source,
)
from cql_clinic.exercises.store import ExerciseStore
from cql_clinic.exercises.validator import (
    perform_quality_checks,
    validate_exercise_batch,
    validate_exercise_data,
)

__all__ = [
    # Main facade
    "ExerciseService",
    # Components
    "ExerciseStore",
    "ExerciseSearch",
    "RecommendationScorer",
    "TTLCache",
    "validate_exercise_dependencies",
    "detect_circular_dependencies",
    "filter_exercises",
    "sort_exercises",
    "summarize_exercises",
    "validate_exercise_data",
    "perform_quality_checks",
    "validate_exercise_batch",
    # Sources
    "BundledExerciseSource",
    "DirectoryExerciseSource",
    "HttpExerciseSource",
    "StaticExerciseSource",
    "create_source",
    # Data models
    "Exercise",
    "ExerciseProgress",
    "UserProgress",
    "SearchCriteria",
    "Recommendation",
    "RecommendationOptions",
    "DependencyReport",
    "ExerciseAnalytics",
    # Enums
    "Difficulty",
    "ExerciseType",
    # Errors
    "ExerciseServiceError",
    "LoadError",
    "ExerciseValidationError",
    "NotFoundError",
    "InvalidInputError",
]
