"""Exception types raised by the exercise engine."""

from __future__ import annotations


class ExerciseServiceError(Exception):
    """Base class for exercise engine failures."""
    pass


class LoadError(ExerciseServiceError):
    """Raised when the exercise source is unreachable or returns unparseable data."""
    pass


class ExerciseValidationError(ExerciseServiceError):
    """Raised when a single exercise record fails schema validation."""

    def __init__(self, exercise_id: str, errors: list[str]):
        self.exercise_id = exercise_id
        self.errors = errors
        super().__init__(f"Invalid exercise {exercise_id}: {'; '.join(errors)}")


class NotFoundError(ExerciseServiceError, KeyError):
    """Raised when an exercise id is absent from the loaded collection."""

    def __init__(self, exercise_id: str):
        self.exercise_id = exercise_id
        super().__init__(f"Exercise not found: {exercise_id}")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]


class InvalidInputError(ExerciseServiceError, ValueError):
    """Raised when caller-supplied input (e.g. user progress) is malformed."""
    pass
