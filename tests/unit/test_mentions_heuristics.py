"""Tests for @mention parsing and the keyword intent classifier."""

import pytest

from delegationAgent.agents import AgentConfig, KeywordRule
from delegationAgent.delegation import IntentClassifier, first_known_mention, parse_mentions
from delegationAgent.delegation.heuristics import normalize_score, structural_adjustment


class TestMentions:
    @pytest.mark.parametrize(
        "text, mentions, cleaned",
        [
            ("@researcher compare the two vendors", ["researcher"], "compare the two vendors"),
            ("@engineer @researcher check the API", ["engineer", "researcher"], "check the API"),
            ("mail bob@example.com", [], "mail bob@example.com"),
            ("no mentions here", [], "no mentions here"),
        ],
    )
    def test_parse_mentions(self, text, mentions, cleaned):
        assert parse_mentions(text) == (mentions, cleaned)

    def test_first_known_mention_is_case_insensitive(self):
        assert first_known_mention("@ghost then @Researcher", ["researcher", "engineer"]) == "researcher"

    def test_first_known_mention_none(self):
        assert first_known_mention("@ghost please", ["researcher"]) is None


ENGINEER = AgentConfig(
    id="engineer",
    keywords=(
        KeywordRule("debug", 2.0),
        KeywordRule("stack trace", 3.0),
        KeywordRule("api", 2.0, whole_word=True),
        KeywordRule("failing test", 3.0),
    ),
)
SCHEDULER = AgentConfig(
    id="scheduler",
    keywords=(KeywordRule("calendar"), KeywordRule("meeting"), KeywordRule("reminder")),
)


class TestIntentClassifier:
    def test_confident_match(self):
        score = IntentClassifier().score("Please debug this stack trace from the failing test", [ENGINEER, SCHEDULER])

        assert score.target == "engineer"
        assert score.score == pytest.approx(1.0)
        assert any("stack trace" in reason for reason in score.reasons)

    def test_weak_match_scores_low(self):
        score = IntentClassifier().score("Can you set up a meeting for next week?", [ENGINEER, SCHEDULER])

        assert score.target == "scheduler"
        assert score.score == pytest.approx(0.25)

    def test_whole_word_keyword(self):
        classifier = IntentClassifier()
        assert classifier.score("the rapid response team needs help", [ENGINEER]).target is None
        assert classifier.score("the public api returns errors", [ENGINEER]).target == "engineer"

    def test_no_match(self):
        score = IntentClassifier().score("tell me a joke about penguins", [ENGINEER, SCHEDULER])
        assert score.target is None
        assert score.score == 0.0

    def test_keywords_derived_from_description(self):
        agent = AgentConfig(id="writer", name="Writer", description="Drafts polished marketing copy", tags=("copy",))
        keywords = [rule.keyword for rule in IntentClassifier().keywords_for(agent)]
        assert keywords[:2] == ["writer", "copy"]
        assert "drafts" in keywords and "polished" in keywords

    def test_normalization_and_structure(self):
        assert normalize_score(0, 3) == 0.0
        assert normalize_score(2, 2) == pytest.approx(0.5)
        assert structural_adjustment(1.0, "short") == pytest.approx(0.85)
        long_text = "line one\n" + "x" * 130
        assert structural_adjustment(0.5, long_text) == pytest.approx(0.525)
