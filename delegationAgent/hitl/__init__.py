"""Human-in-the-Loop (HITL) module.

Provides approval rules and the interrupt protocol.
"""

from .approval_checker import ApprovalChecker, ApprovalDecision
from .interrupts import HumanResponse, Interrupt, InterruptManager, InterruptStatus

__all__ = [
    "ApprovalChecker",
    "ApprovalDecision",
    "HumanResponse",
    "Interrupt",
    "InterruptManager",
    "InterruptStatus",
]
