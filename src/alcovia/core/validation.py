"""
Input validation functions for Alcovia.

All validation functions follow the pattern:
1. Accept raw input (string, int, etc.)
2. Normalize/clean the input
3. Validate against business rules
4. Return cleaned value or raise ValidationError

Values are never clamped into range; out-of-range input is rejected
before any state is touched.
"""

import re

from alcovia.core.exceptions import InterventionError


class ValidationError(InterventionError):
    """Raised when input fails validation."""

    category = "validation"


QUIZ_SCORE_MIN = 0
QUIZ_SCORE_MAX = 10

STUDENT_ID_MAX_LENGTH = 100
TASK_TEXT_MAX_LENGTH = 2000
CONTACT_MAX_LENGTH = 255

_STUDENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.:@-]+$")


# ============================================================================
# Identity
# ============================================================================


def validate_student_id(student_id: str | None) -> str:
    """
    Validate an external student identifier.

    Args:
        student_id: Raw identifier

    Returns:
        Identifier with surrounding whitespace removed

    Raises:
        ValidationError: If empty, too long, or containing unsupported characters
    """
    if student_id is None:
        raise ValidationError("student_id is required")

    cleaned = student_id.strip()
    if not cleaned:
        raise ValidationError("student_id cannot be empty")

    if len(cleaned) > STUDENT_ID_MAX_LENGTH:
        raise ValidationError(f"student_id too long (max {STUDENT_ID_MAX_LENGTH} characters)")

    if not _STUDENT_ID_PATTERN.match(cleaned):
        raise ValidationError(
            "student_id may only contain letters, digits and the characters _ . : @ -"
        )

    return cleaned


# ============================================================================
# Check-in figures
# ============================================================================


def _require_int(value: object, field: str) -> int:
    # bool is an int subclass; True is not a score
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    return value


def validate_quiz_score(quiz_score: object) -> int:
    """Quiz score must be an integer in [0, 10]."""
    score = _require_int(quiz_score, "quiz_score")
    if score < QUIZ_SCORE_MIN or score > QUIZ_SCORE_MAX:
        raise ValidationError(
            f"quiz_score must be between {QUIZ_SCORE_MIN} and {QUIZ_SCORE_MAX} (got {score})"
        )
    return score


def validate_focus_minutes(focus_minutes: object) -> int:
    """Focus duration must be a non-negative integer number of minutes."""
    minutes = _require_int(focus_minutes, "focus_minutes")
    if minutes < 0:
        raise ValidationError(f"focus_minutes must be non-negative (got {minutes})")
    return minutes


def validate_distraction_count(distraction_count: object) -> int:
    """Distraction count must be a non-negative integer."""
    count = _require_int(distraction_count, "distraction_count")
    if count < 0:
        raise ValidationError(f"distraction_count must be non-negative (got {count})")
    return count


def validate_check_in(
    quiz_score: object, focus_minutes: object, distraction_count: object
) -> tuple[int, int, int]:
    """
    Validate a full check-in submission.

    Returns:
        (quiz_score, focus_minutes, distraction_count)

    Raises:
        ValidationError: On the first field that fails
    """
    return (
        validate_quiz_score(quiz_score),
        validate_focus_minutes(focus_minutes),
        validate_distraction_count(distraction_count),
    )


# ============================================================================
# Mentor assignment
# ============================================================================


def validate_task_text(task_text: str | None) -> str:
    """Remedial task text: required, trimmed, bounded."""
    if task_text is None or not task_text.strip():
        raise ValidationError("remedial_task cannot be empty")

    cleaned = task_text.strip()
    if len(cleaned) > TASK_TEXT_MAX_LENGTH:
        raise ValidationError(f"remedial_task too long (max {TASK_TEXT_MAX_LENGTH} characters)")

    return cleaned


def validate_mentor_contact(contact: str | None) -> str:
    """
    Mentor contact as sent by the dispatch workflow.

    Usually an email address, but any non-empty handle up to 255 characters
    is accepted since the workflow decides how mentors are reached.
    """
    if contact is None or not contact.strip():
        raise ValidationError("mentor_contact cannot be empty")

    cleaned = contact.strip()
    if len(cleaned) > CONTACT_MAX_LENGTH:
        raise ValidationError(f"mentor_contact too long (max {CONTACT_MAX_LENGTH} characters)")

    if re.search(r"\s", cleaned):
        raise ValidationError("mentor_contact cannot contain whitespace")

    return cleaned
