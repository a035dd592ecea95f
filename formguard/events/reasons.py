"""Parsing of the enforcement service's block reason text.

Scored blocks carry a reason of the form:

    "Risk score 95 >= 70. Triggers: JA4 ip_clustering detected, Email pattern suspicious"

Trigger descriptions may contain commas of their own, so the list is split only
on a comma followed by an uppercase letter (the start of the next trigger).

IMPORT RULES:
  - `import re2` ONLY (google-re2, linear-time matching on upstream text).
    RE2 has no lookahead, so trigger boundaries are located with finditer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional

import re2

TriggerCategory = Literal["email", "fingerprint", "network", "velocity", "bot", "duplicate", "other"]

_SCORE_RE = re2.compile(r"Risk score (\d+(?:\.\d+)?) >= (\d+)")
_TRIGGERS_RE = re2.compile(r"Triggers: (.+)$")
# Group 1 is the first letter of the next trigger.
_TRIGGER_BOUNDARY_RE = re2.compile(r",\s*([A-Z])")

# First match wins.
_TRIGGER_CATEGORIES: tuple[tuple[TriggerCategory, tuple[str, ...]], ...] = (
    ("email", ("email",)),
    ("fingerprint", ("ja4", "session")),
    ("network", ("ip", "proxy")),
    ("velocity", ("velocity", "rapid", "frequency")),
    ("bot", ("bot", "global")),
    ("duplicate", ("duplicate",)),
)


@dataclass(frozen=True)
class ParsedReason:
    full_text: str
    risk_score: Optional[float] = None
    threshold: Optional[int] = None
    triggers: list[str] = field(default_factory=list)

    @property
    def is_scored(self) -> bool:
        return self.risk_score is not None


def split_triggers(text: str) -> list[str]:
    """Split a trigger list on commas that precede an uppercase letter."""
    parts: list[str] = []
    begin = 0
    for boundary in _TRIGGER_BOUNDARY_RE.finditer(text):
        parts.append(text[begin:boundary.start()])
        begin = boundary.start(1)
    parts.append(text[begin:])
    return [part.strip() for part in parts if part.strip()]


def parse_block_reason(text: Optional[str]) -> ParsedReason:
    """Extract score, threshold and triggers. Missing parts are None / empty."""
    text = text or ""
    score_match = _SCORE_RE.search(text)
    triggers_match = _TRIGGERS_RE.search(text)

    triggers: list[str] = []
    if triggers_match:
        triggers = split_triggers(triggers_match.group(1))

    return ParsedReason(
        full_text=text,
        risk_score=float(score_match.group(1)) if score_match else None,
        threshold=int(score_match.group(2)) if score_match else None,
        triggers=triggers,
    )


def trigger_category(trigger: str) -> TriggerCategory:
    lower = trigger.lower()
    for category, needles in _TRIGGER_CATEGORIES:
        if any(needle in lower for needle in needles):
            return category
    return "other"
