"""Delegation routing and coordination."""

from .coordinator import DelegationCoordinator, DelegationScope, RoutingDecision
from .heuristics import IntentClassifier, IntentScore
from .mentions import first_known_mention, parse_mentions

__all__ = [
    "DelegationCoordinator",
    "DelegationScope",
    "RoutingDecision",
    "IntentClassifier",
    "IntentScore",
    "first_known_mention",
    "parse_mentions",
]
