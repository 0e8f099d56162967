"""
Intervention state machine.

Gate evaluation, per-student serialization, the controller that owns every
status transition, and ticket expiry.
"""

from .gate import evaluate_check_in
from .state_machine import InterventionController

__all__ = ["evaluate_check_in", "InterventionController"]
