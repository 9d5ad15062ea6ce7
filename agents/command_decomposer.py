"""Command Decomposer - compound and conditional command plans

Decides whether a message is a multi-step command plan:
- "run tests on JUDO and if they pass deploy it"  -> conditional 2-step plan
- "deploy JUDO but first run tests"               -> ["run tests", "deploy JUDO"]
- "build lusotown; restart lusotown"              -> 2 steps

Every part must start with a command verb, so ordinary prose with "and"
or "then" in it is left alone (returns None).
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from agents.multi_intent_parser import carry_references


@dataclass
class DecomposedPlan:
    steps: List[str] = field(default_factory=list)
    is_conditional: bool = False
    condition: Optional[str] = None
    original: str = ""


CONDITIONAL_PATTERNS = (
    re.compile(
        r"^(.+?)\s+(?:and\s+)?if\s+(?:they|it|that|tests?)\s+pass(?:es)?\s*(?:,?\s*then\s+)?,?\s*(.+)$",
        re.IGNORECASE,
    ),
    re.compile(
        r"^(.+?)\s+(?:and\s+)?if\s+(?:it's|its|that's|that\s+is)\s+(?:ok|okay|good|successful|fine)"
        r"\s*(?:,?\s*then\s+)?,?\s*(.+)$",
        re.IGNORECASE,
    ),
    re.compile(r"^if\s+(.+?)\s+(?:passes?|succeeds?|works?)\s*(?:,?\s*then\s+)?,?\s*(.+)$", re.IGNORECASE),
)

# (pattern, reverse) from most to least specific; the bare "and" split comes last
SPLIT_PATTERNS = (
    (re.compile(r"\s+but\s+first\s+", re.IGNORECASE), True),
    (re.compile(r",\s+then\s+", re.IGNORECASE), False),
    (re.compile(r"\s+and\s+then\s+", re.IGNORECASE), False),
    (re.compile(r"\s+(?:and\s+)?after\s+that,?\s+", re.IGNORECASE), False),
    (re.compile(r"\s+followed\s+by\s+", re.IGNORECASE), False),
    (re.compile(r"\s+and\s+also\s+", re.IGNORECASE), False),
    (re.compile(r"\s+then\s+", re.IGNORECASE), False),
    (re.compile(r"\.\s+(?=\S)"), False),
    (re.compile(r";\s+"), False),
    (re.compile(r"\s+and\s+", re.IGNORECASE), False),
)

COMMAND_VERBS = frozenset((
    "deploy", "restart", "build", "install", "run", "test", "check",
    "logs", "status", "vercel", "exec", "create", "delete", "push",
))


def looks_like_command(text: str) -> bool:
    words = text.strip().split()
    return bool(words) and words[0].lower() in COMMAND_VERBS


class CommandDecomposer:
    """Turns compound command messages into ordered step plans."""

    def __init__(self, min_words: int = 5, known_entities: Optional[Sequence[str]] = None):
        if known_entities is None:
            from core.project_registry import ProjectRegistry
            known_entities = ProjectRegistry.get().known_entities()
        self.min_words = min_words
        self.known_entities = list(known_entities)

    def decompose(self, message: Optional[str]) -> Optional[DecomposedPlan]:
        if not message or not isinstance(message, str):
            return None

        trimmed = message.strip()
        if len(trimmed.split()) < self.min_words:
            return None

        for pattern in CONDITIONAL_PATTERNS:
            match = pattern.match(trimmed)
            if not match:
                continue
            steps = [match.group(1).strip(), match.group(2).strip()]
            if all(looks_like_command(step) for step in steps):
                return self._plan(steps, trimmed, conditional=True)

        for pattern, reverse in SPLIT_PATTERNS:
            parts = [p.strip().rstrip(".") for p in pattern.split(trimmed)]
            parts = [p for p in parts if p]
            if len(parts) < 2 or not all(looks_like_command(p) for p in parts):
                continue
            if reverse:
                parts = parts[1:] + parts[:1]
            return self._plan(parts, trimmed, conditional=False)

        return None

    def _plan(self, steps: List[str], original: str, conditional: bool) -> DecomposedPlan:
        steps = carry_references(steps, self.known_entities)
        plan = DecomposedPlan(
            steps=steps,
            is_conditional=conditional,
            condition="success" if conditional else None,
            original=original,
        )
        logging.info(f"CommandDecomposer: {len(steps)} steps (conditional={conditional}): {steps}")
        return plan

    def format_plan(self, plan: DecomposedPlan) -> str:
        lines = ["I'll do this in order:"]
        for index, step in enumerate(plan.steps):
            prefix = f"If step {index} succeeds -> " if plan.is_conditional and index > 0 else ""
            lines.append(f"{index + 1}. {prefix}{step}")
        lines.append("")
        lines.append('Reply "yes" to proceed or "no" to cancel.')
        return "\n".join(lines)
