"""
Escalation to the external mentor dispatch workflow.

Exports:
    EscalationGateway: Outbound webhook client
"""

from .gateway import EscalationError, EscalationGateway, EscalationRequest, EscalationResult

__all__ = ["EscalationGateway", "EscalationError", "EscalationRequest", "EscalationResult"]
