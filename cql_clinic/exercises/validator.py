"""
Exercise Validator - schema validation plus editorial quality checks.

Schema failures make a record unusable; quality checks only produce a
score, warnings and suggestions for authors.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError

from cql_clinic.exercises.errors import ExerciseValidationError
from cql_clinic.exercises.models import Exercise

HIGH_QUALITY_THRESHOLD = 85
LOW_QUALITY_THRESHOLD = 70


@dataclass
class ValidationResult:
    """Outcome of validating one raw record against the exercise schema."""
    success: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    exercise: Optional[Exercise] = None


@dataclass
class QualityReport:
    """Editorial assessment of one exercise."""
    quality_score: int
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    recommendations: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class BatchValidationItem:
    index: int
    id: str
    validation: ValidationResult
    quality: QualityReport

    @property
    def valid(self) -> bool:
        return self.validation.success


@dataclass
class BatchValidationResult:
    results: list[BatchValidationItem]
    summary: dict[str, Any]
    recommendations: list[dict[str, Any]]


def _format_errors(error: ValidationError) -> list[str]:
    messages = []
    for item in error.errors():
        path = ".".join(str(part) for part in item["loc"]) or "<root>"
        messages.append(f"{path}: {item['msg']}")
    return messages


def validate_exercise_data(raw: Mapping[str, Any], strict: bool = False) -> ValidationResult:
    """
    Validate a raw exercise record.

    Args:
        raw: Record in authoring (camelCase) format
        strict: Raise ExerciseValidationError instead of returning a failed result

    Returns:
        ValidationResult carrying the parsed Exercise on success
    """
    if not isinstance(raw, Mapping):
        errors = [f"<root>: expected an object, got {type(raw).__name__}"]
        if strict:
            raise ExerciseValidationError("<unknown>", errors)
        return ValidationResult(success=False, errors=errors)

    try:
        exercise = Exercise.model_validate(dict(raw))
    except ValidationError as e:
        errors = _format_errors(e)
        if strict:
            raise ExerciseValidationError(str(raw.get("id", "<unknown>")), errors) from e
        return ValidationResult(success=False, errors=errors)

    return ValidationResult(success=True, exercise=exercise)


def perform_quality_checks(exercise: Exercise | Mapping[str, Any]) -> QualityReport:
    """
    Score an exercise's content quality (0-100).

    Accepts a parsed Exercise or a raw record, so invalid records can still
    be assessed during batch validation.
    """
    data = exercise.to_dict() if isinstance(exercise, Exercise) else dict(exercise)
    warnings: list[str] = []
    suggestions: list[str] = []
    score = 100

    content = data.get("content")
    if not isinstance(content, Mapping):
        content = {}
    instructions = content.get("instructions")
    if isinstance(instructions, str) and instructions:
        if len(instructions) < 100:
            warnings.append("Instructions are very short - consider adding more detail")
            score -= 10
        if "```" not in instructions and "<pre>" not in instructions:
            suggestions.append("Consider adding code examples to the instructions")
            score -= 5
        if "![" not in instructions and "<img" not in instructions:
            suggestions.append("Consider adding diagrams or images to enhance learning")
            score -= 3

    hints = content.get("hints")
    if isinstance(hints, (list, tuple)):
        if len(hints) == 0:
            suggestions.append("Consider adding progressive hints to help struggling learners")
            score -= 10
        elif len(hints) < 3:
            suggestions.append("Consider adding more hint levels for better progressive disclosure")
            score -= 5

    validation = data.get("validation")
    if isinstance(validation, Mapping):
        if not any(validation.get(key) for key in ("testCases", "patterns", "customValidator")):
            warnings.append("Exercise has weak validation - consider adding test cases or patterns")
            score -= 15
        if validation.get("strategy") == "exact-match":
            suggestions.append("Consider using pattern-match or semantic-match for more flexible validation")
            score -= 5

    files = data.get("files")
    if isinstance(files, (list, tuple)) and files:
        # Malformed entries count as files with no name and no solution
        entries = [f if isinstance(f, Mapping) else {} for f in files]
        if not any(str(f.get("name", "")).endswith(".cql") for f in entries):
            warnings.append("Exercise has no CQL files - this may not be appropriate for CQL learning")
            score -= 20
        if not any(f.get("solution") for f in entries):
            suggestions.append("Consider providing reference solutions for comparison and validation")
            score -= 8

    if data.get("difficulty") in ("intermediate", "advanced") and not data.get("prerequisites"):
        suggestions.append("Consider adding prerequisites for intermediate/advanced exercises")
        score -= 5

    concepts = data.get("concepts")
    if isinstance(concepts, (list, tuple)) and len(concepts) == 1:
        suggestions.append("Consider whether this exercise teaches additional concepts")
        score -= 3

    feedback = data.get("feedback")
    if isinstance(feedback, Mapping) and feedback.get("commonErrors") == []:
        suggestions.append("Consider adding common error patterns and explanations")
        score -= 10

    return QualityReport(
        quality_score=max(0, score),
        warnings=warnings,
        suggestions=suggestions,
        recommendations=_quality_recommendations(data.get("difficulty"), score),
    )


def _quality_recommendations(difficulty: Any, score: int) -> list[dict[str, Any]]:
    recommendations: list[dict[str, Any]] = []

    if score < LOW_QUALITY_THRESHOLD:
        recommendations.append({
            "priority": "high",
            "type": "quality",
            "message": "This exercise needs significant improvement before publication",
            "actions": [
                "Review and expand instructions",
                "Add comprehensive validation",
                "Include progressive hints",
                "Test with actual learners",
            ],
        })
    elif score < HIGH_QUALITY_THRESHOLD:
        recommendations.append({
            "priority": "medium",
            "type": "enhancement",
            "message": "This exercise is good but could be enhanced",
            "actions": [
                "Add more detailed feedback",
                "Consider additional test cases",
                "Enhance visual presentation",
            ],
        })

    if difficulty == "beginner":
        recommendations.append({
            "priority": "medium",
            "type": "pedagogy",
            "message": "For beginner exercises, ensure extra support",
            "actions": [
                "Provide detailed step-by-step instructions",
                "Include plenty of examples",
                "Add extensive hints and explanations",
                "Test with complete beginners",
            ],
        })

    return recommendations


def validate_exercise_batch(records: list[Mapping[str, Any]]) -> BatchValidationResult:
    """Validate and quality-check many records, with a summary."""
    results = []
    for index, raw in enumerate(records):
        validation = validate_exercise_data(raw)
        if not isinstance(raw, Mapping):
            raw = {}
        quality = perform_quality_checks(validation.exercise or raw)
        results.append(BatchValidationItem(
            index=index,
            id=str(raw.get("id") or f"exercise-{index}"),
            validation=validation,
            quality=quality,
        ))

    total = len(results)
    summary = {
        "total": total,
        "valid": sum(1 for r in results if r.valid),
        "invalid": sum(1 for r in results if not r.valid),
        "average_quality": (
            sum(r.quality.quality_score for r in results) / total if total else 0.0
        ),
        "high_quality": sum(1 for r in results if r.quality.quality_score >= HIGH_QUALITY_THRESHOLD),
        "needs_improvement": sum(1 for r in results if r.quality.quality_score < LOW_QUALITY_THRESHOLD),
    }

    return BatchValidationResult(
        results=results,
        summary=summary,
        recommendations=_batch_recommendations(summary),
    )


def _batch_recommendations(summary: dict[str, Any]) -> list[dict[str, Any]]:
    recommendations = []

    if summary["invalid"] > 0:
        recommendations.append({
            "priority": "critical",
            "type": "validation",
            "message": f"{summary['invalid']} exercises have schema validation errors",
            "action": "Fix validation errors before proceeding",
        })

    if summary["needs_improvement"] > summary["total"] * 0.3:
        recommendations.append({
            "priority": "high",
            "type": "quality",
            "message": "Many exercises need quality improvements",
            "action": "Conduct comprehensive review of exercise content and validation",
        })

    if summary["total"] and summary["average_quality"] < 75:
        recommendations.append({
            "priority": "medium",
            "type": "enhancement",
            "message": "Overall exercise quality could be improved",
            "action": "Focus on adding better feedback, hints, and validation",
        })

    return recommendations
