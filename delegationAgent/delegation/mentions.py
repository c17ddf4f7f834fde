"""Parser for @mention syntax in user input."""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Tuple

MENTION_PATTERN = r"(?<![\w.])@([\w\-]+)"


def parse_mentions(text: str) -> Tuple[List[str], str]:
    """Parse @mentions from user input and return cleaned text.

    Examples:
        "@researcher compare the two vendors" -> (["researcher"], "compare the two vendors")
        "@engineer @researcher check the API" -> (["engineer", "researcher"], "check the API")
        "mail bob@example.com" -> ([], "mail bob@example.com")

    Args:
        text: User input text

    Returns:
        Tuple of (mentioned_names, cleaned_text)
    """
    mentions = re.findall(MENTION_PATTERN, text)

    cleaned_text = re.sub(MENTION_PATTERN, "", text).strip()
    cleaned_text = re.sub(r"[ \t]+", " ", cleaned_text)

    return mentions, cleaned_text


def first_known_mention(text: str, known_ids: Iterable[str]) -> Optional[str]:
    """First mentioned name that is a known agent id (case-insensitive)."""
    by_lower = {agent_id.lower(): agent_id for agent_id in known_ids}
    mentions, _ = parse_mentions(text)
    for mention in mentions:
        agent_id = by_lower.get(mention.lower())
        if agent_id:
            return agent_id
    return None
