"""
Daily check-in gate.

Pass requires all three: quiz score above 7, more than an hour of focus,
and fewer than three distractions. Comparisons are strict.
"""

from __future__ import annotations

QUIZ_SCORE_THRESHOLD = 7
FOCUS_MINUTES_THRESHOLD = 60
MAX_DISTRACTIONS = 3


def evaluate_check_in(quiz_score: int, focus_minutes: int, distraction_count: int) -> bool:
    """Return the pass/fail verdict for already-validated check-in figures."""
    return (
        quiz_score > QUIZ_SCORE_THRESHOLD
        and focus_minutes > FOCUS_MINUTES_THRESHOLD
        and distraction_count < MAX_DISTRACTIONS
    )
