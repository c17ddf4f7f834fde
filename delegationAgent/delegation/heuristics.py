"""Lightweight delegation intent scoring.

Weighted keyword matching per agent, normalized into 0..1. Cheap enough to run
before every routing decision; only a very confident score (default ≥ 0.95)
skips the routing model.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from delegationAgent.agents.schema import AgentConfig, KeywordRule

LOGGER = logging.getLogger(__name__)

SHORT_TEXT_CHARS = 15
SHORT_TEXT_FACTOR = 0.85
STRUCTURED_TEXT_CHARS = 120
STRUCTURED_TEXT_FACTOR = 1.05
MIN_KEYWORD_DENOMINATOR = 4


@dataclass(frozen=True)
class IntentScore:
    target: Optional[str]
    score: float
    scores: Dict[str, float] = field(default_factory=dict)
    reasons: List[str] = field(default_factory=list)


def normalize_score(hits: float, total_keywords: int) -> float:
    if hits <= 0:
        return 0.0
    return min(1.0, hits / max(MIN_KEYWORD_DENOMINATOR, total_keywords))


def structural_adjustment(raw_score: float, text: str) -> float:
    """Short requests are less certain; long multi-line ones slightly more."""
    if len(text) < SHORT_TEXT_CHARS:
        return raw_score * SHORT_TEXT_FACTOR
    if "\n" in text and len(text) > STRUCTURED_TEXT_CHARS:
        return raw_score * STRUCTURED_TEXT_FACTOR
    return raw_score


def matches_keyword(text: str, rule: KeywordRule) -> bool:
    if rule.whole_word:
        return re.search(rf"\b{re.escape(rule.keyword)}\b", text, re.IGNORECASE) is not None
    return rule.keyword in text


class IntentClassifier:
    """Scores a request against every candidate agent's keywords."""

    def __init__(self, noise_threshold: float = 0.05, description_terms: int = 5):
        self.noise_threshold = noise_threshold
        self.description_terms = description_terms

    def keywords_for(self, agent: AgentConfig) -> Tuple[KeywordRule, ...]:
        """Configured keywords, or ones derived from name, tags and description."""
        if agent.keywords:
            return agent.keywords

        derived: List[str] = [agent.name.lower()]
        derived.extend(tag.lower() for tag in agent.tags)
        if agent.description:
            words = [
                word for word in agent.description.lower().split()
                if len(word) > 4 and word.isalpha()
            ]
            derived.extend(words[: self.description_terms])

        seen = set()
        rules = []
        for keyword in derived:
            if keyword and keyword not in seen:
                seen.add(keyword)
                rules.append(KeywordRule(keyword=keyword))
        return tuple(rules)

    def score(self, text: str, agents: Sequence[AgentConfig]) -> IntentScore:
        """Score ``text`` against ``agents`` and pick the best target.

        Returns:
            IntentScore with target None when nothing scores above the noise floor
        """
        lowered = text.lower()
        scores: Dict[str, float] = {}
        reasons: List[str] = []

        for agent in agents:
            keywords = self.keywords_for(agent)
            if not keywords:
                continue
            hits = 0.0
            matched = []
            for rule in keywords:
                if matches_keyword(lowered, rule):
                    hits += rule.weight
                    matched.append(rule.keyword)
            score = min(1.0, structural_adjustment(normalize_score(hits, len(keywords)), text))
            scores[agent.id] = score
            if matched:
                reasons.append(f"{agent.id}: {', '.join(matched)}")

        target: Optional[str] = None
        best = 0.0
        for agent_id, agent_score in scores.items():
            if agent_score > best:
                best = agent_score
                target = agent_id

        if best < self.noise_threshold:
            target, best = None, 0.0

        LOGGER.debug(f"Intent scores: {scores} → {target} ({best:.2f})")
        return IntentScore(target=target, score=best, scores=scores, reasons=reasons)
