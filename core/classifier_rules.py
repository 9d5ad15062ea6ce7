"""Classifier Rules - pure scoring functions over the routing vocabulary

RESPONSIBILITY:
- Score projects, intents and companies mentioned in a message
- Compute specificity, weighted confidence, ambiguity questions and risk

INVARIANTS:
- Every function here is pure: same inputs, same outputs, no I/O
- Weighted confidence is the fixed-weight sum of all four factors
  (a missing factor counts as 0, weights are never renormalised)

DOES NOT:
- Call models (IntentClassifier owns the AI fallback)
- Remember anything (history and corrections live in memory/)
"""

import re
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional, Tuple, Sequence

from core.project_registry import ProjectRegistry


RISK_ORDER = ("low", "medium", "high")

RECEIPT_KEYWORDS = ("receipt", "expense", "paid", "bought", "invoice", "bill")

ENVIRONMENT_PATTERN = re.compile(
    r"\b(?:on|to|in|into|against)\s+(prod|production|live|master|main|staging|dev)\b", re.IGNORECASE
)


@dataclass
class ConfidenceFactors:
    keyword_match: float = 0.0
    context_match: float = 0.0
    history_match: float = 0.0
    specificity: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class Intent:
    """Classifier output for one command."""
    intent: Optional[str] = None
    action: Optional[str] = None
    project: Optional[str] = None
    target: Optional[str] = None
    company: Optional[str] = None
    confidence: float = 0.0
    confidence_factors: ConfidenceFactors = field(default_factory=ConfidenceFactors)
    alternatives: List[Dict[str, Any]] = field(default_factory=list)
    ambiguous: bool = False
    clarifying_questions: List[str] = field(default_factory=list)
    risk: str = "low"
    requires_confirmation: bool = False
    summary: str = ""
    tasks: List[Dict[str, Any]] = field(default_factory=list)
    steps: List[Dict[str, Any]] = field(default_factory=list)
    reason: Optional[str] = None
    source: str = "pattern"
    penalty: float = 0.0

    @property
    def action_type(self) -> Optional[str]:
        return self.action or self.intent

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["action_type"] = self.action_type
        return data


def weighted_confidence(factors: ConfidenceFactors, weights: Dict[str, float]) -> float:
    total = sum(getattr(factors, name) * weight for name, weight in weights.items())
    return max(0.0, min(total, 1.0))


def contains_phrase(text: str, phrase: str) -> bool:
    """Case-insensitive whole-word phrase match."""
    return re.search(rf"(?<![\w-]){re.escape(phrase.lower())}(?![\w-])", text.lower()) is not None


def levenshtein(a: str, b: str) -> int:
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (char_a != char_b),
            ))
        previous = current
    return previous[-1]


def fuzzy_match(a: str, b: str, max_distance: int) -> bool:
    if abs(len(a) - len(b)) > max_distance:
        return False
    return a == b or levenshtein(a, b) <= max_distance


def score_projects(message: str, registry: ProjectRegistry) -> List[Tuple[str, float]]:
    """(project_id, strength) for every mentioned project, strongest first.

    A keyword scores len(keyword) / 15 (longer keyword, stronger evidence);
    naming the project id outright scores 0.95.
    """
    matches = []
    for project_id, project in registry.projects.items():
        strength = 0.0
        for keyword in project.get("keywords") or []:
            if contains_phrase(message, keyword):
                strength = max(strength, min(len(keyword) / 15, 1.0))
        if contains_phrase(message, project_id):
            strength = max(strength, 0.95)
        if strength > 0:
            matches.append((project_id, strength))
    return sorted(matches, key=lambda m: m[1], reverse=True)


def score_intents(message: str, registry: ProjectRegistry) -> List[Tuple[str, float]]:
    """(intent_id, strength) where strength is the longest matching pattern length / 20."""
    matches = []
    for intent_id, intent in registry.intents.items():
        strength = 0.0
        for pattern in intent.get("patterns") or []:
            if contains_phrase(message, pattern):
                strength = max(strength, min(len(pattern) / 20, 1.0))
        if strength > 0:
            matches.append((intent_id, strength))
    return sorted(matches, key=lambda m: m[1], reverse=True)


def detect_company(message: str, registry: ProjectRegistry) -> Optional[str]:
    """Company code by exact keyword, else by fuzzy match on names (<=2 edits) and keywords (<=1 edit)."""
    for code, company in registry.companies.items():
        for keyword in company.get("keywords") or []:
            if contains_phrase(message, keyword):
                return code

    words = [w for w in re.split(r"\s+", message.lower()) if len(w) >= 3]
    for word in words:
        for code, company in registry.companies.items():
            name = (company.get("name") or "").lower()
            if name and fuzzy_match(word, name, 2):
                return code
            for keyword in company.get("keywords") or []:
                if len(keyword) >= 3 and fuzzy_match(word, keyword.lower(), 1):
                    return code
    return None


def detect_environment(message: str) -> Optional[str]:
    match = ENVIRONMENT_PATTERN.search(message)
    return match.group(1).lower() if match else None


def find_vague_phrase(message: str, vague_phrases: Sequence[str]) -> Optional[str]:
    lower = message.lower()
    return next((phrase for phrase in vague_phrases if phrase in lower), None)


def calculate_specificity(message: str, result: Intent, vague_phrases: Sequence[str]) -> float:
    score = 0.5

    if len(message) < 10:
        score -= 0.2
    if len(message) > 30:
        score += 0.1

    if result.intent and result.project:
        score += 0.2
    if result.company:
        score += 0.1

    word_count = len(message.split())
    if word_count == 1:
        score -= 0.2
    if word_count >= 3:
        score += 0.1

    if find_vague_phrase(message, vague_phrases):
        score -= 0.3

    return max(0.0, min(1.0, score))


def ambiguity_questions(
    result: Intent,
    message: str,
    thresholds: Dict[str, float],
    vague_phrases: Sequence[str],
) -> Tuple[bool, List[str]]:
    """Decide ambiguity and the questions to ask. Existing questions are kept first."""
    ambiguous = result.ambiguous
    questions = list(result.clarifying_questions)

    if result.confidence < thresholds["ambiguity"]:
        ambiguous = True
        if not result.project:
            questions.append("Which project did you mean?")
        if not result.intent or result.intent == "unknown":
            questions.append("What action would you like me to take?")
        if result.alternatives:
            alternatives = ", ".join(a["action_type"] for a in result.alternatives)
            questions.append(f"Did you want to: {result.intent or 'unknown'}, or {alternatives}?")

    if result.confidence < thresholds["clarification"]:
        ambiguous = True
        if not questions:
            questions.append("I'm not sure what you want me to do. Can you be more specific?")

    strong = [a for a in result.alternatives if a.get("confidence", 0) > thresholds["strong_alternative"]]
    if strong and result.confidence < 0.7:
        ambiguous = True
        questions.append(f"Did you mean {result.intent} or {strong[0]['action_type']}?")

    if find_vague_phrase(message, vague_phrases):
        ambiguous = True
        questions.append("Can you be more specific about what you'd like me to do?")

    return ambiguous, list(dict.fromkeys(questions))


def assess_risk(result: Intent, risk_levels: Dict[str, List[str]], escalation_pattern: str, escalation_levels: int = 1) -> Tuple[str, bool]:
    """Risk from the action table, escalated for production-like targets.

    Returns:
        (risk, requires_confirmation)
    """
    action = (result.action or result.intent or "").lower()
    risk = "low"
    for level in ("high", "medium"):
        if any(keyword in action for keyword in risk_levels.get(level, [])):
            risk = level
            break

    targets = [t for t in (result.project, result.target) if t]
    if any(re.search(escalation_pattern, t, re.IGNORECASE) for t in targets):
        index = min(RISK_ORDER.index(risk) + escalation_levels, len(RISK_ORDER) - 1)
        risk = RISK_ORDER[index]

    return risk, risk != "low"
