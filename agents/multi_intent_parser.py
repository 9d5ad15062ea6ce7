"""Multi-Intent Parser - splits one message into ordered sub-commands

RESPONSIBILITY:
- Split on connector phrases ("and then", "but first", ", then", ...)
- Protect noun phrases ("pros and cons"), questions, greetings and quoted text
- Carry entity references across segments ("... JUDO and then deploy it")
- Reorder reverse connectors ("deploy X but first run tests")

DOES NOT:
- Classify segments (IntentClassifier's job)
- Decide execution (ActionController's job)
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Sequence


@dataclass(frozen=True)
class Connector:
    label: str
    pattern: Pattern
    sequential: bool
    reverse: bool = False
    requires_both_verbs: bool = False


@dataclass
class Segment:
    text: str
    connector: Optional[str] = None
    sequential: bool = False
    reverse: bool = False


@dataclass
class ParsedCommand:
    text: str
    order: int
    connector: Optional[str]
    is_sequential: bool


@dataclass
class ParseResult:
    is_multi_intent: bool
    original_message: str
    intents: List[ParsedCommand] = field(default_factory=list)


# Most specific connectors first
CONNECTORS = (
    Connector("but first", re.compile(r"\s+but\s+first\s+", re.IGNORECASE), sequential=True, reverse=True),
    Connector("and then", re.compile(r"\s+and\s+then\s+", re.IGNORECASE), sequential=True),
    Connector("and also", re.compile(r"\s+and\s+also\s+", re.IGNORECASE), sequential=False),
    Connector("after that", re.compile(r"\s+(?:and\s+)?after\s+that\s+", re.IGNORECASE), sequential=True),
    Connector(", then", re.compile(r",\s*then\s+", re.IGNORECASE), sequential=True),
    Connector(".", re.compile(r"\.\s+"), sequential=True),
    Connector("then", re.compile(r"\s+then\s+", re.IGNORECASE), sequential=True),
    Connector("and", re.compile(r"\s+and\s+", re.IGNORECASE), sequential=False, requires_both_verbs=True),
    Connector("also", re.compile(r",?\s+also\s+", re.IGNORECASE), sequential=False, requires_both_verbs=True),
)

COMMAND_VERBS = frozenset((
    "run", "deploy", "check", "show", "list", "create", "add", "remove",
    "delete", "update", "fix", "build", "test", "start", "stop", "restart",
    "install", "push", "pull", "merge", "review", "generate", "send",
    "get", "set", "enable", "disable", "configure", "backup", "restore",
    "monitor", "schedule", "cancel", "undo", "redo", "search", "find",
    "open", "close", "status", "help", "remind", "notify", "analyze",
    "compare", "export", "import", "reset", "verify", "validate",
    "publish", "browse", "screenshot", "research", "summarize",
))

# "and" inside these is part of a noun phrase, not a connector
AND_NOUN_PHRASES = (
    "pros and cons", "back and forth", "up and running", "search and replace",
    "find and replace", "copy and paste", "cut and paste", "drag and drop",
    "trial and error", "rise and fall", "come and go", "more and more",
    "less and less", "again and again", "now and then", "here and there",
    "bread and butter", "black and white", "dos and donts", "bits and pieces",
    "null and void", "safe and sound", "sick and tired", "front and back",
    "frontend and backend", "left and right", "read and write",
    "input and output", "start and end", "begin and end", "name and email",
    "username and password", "questions and answers", "terms and conditions",
)

GREETING_PATTERNS = (
    re.compile(r"^(hi|hello|hey|howdy|greetings|good\s+(morning|afternoon|evening))\b", re.IGNORECASE),
    re.compile(r"^(what'?s?\s+up|sup|yo)\b", re.IGNORECASE),
)

CARRIED_PRONOUNS = re.compile(r"\b(?:it|its|them|their|that)\b", re.IGNORECASE)
CAPITALISED_WORD = re.compile(r"\b([A-Z][A-Za-z0-9-]+)\b")
QUESTION = re.compile(r"\?\s*$")


def contains_verb(text: str) -> bool:
    return any(word in COMMAND_VERBS for word in text.lower().split())


def extract_entity(text: str, known_entities: Sequence[str]) -> Optional[str]:
    """First known entity in text (canonical casing), else the first capitalised non-verb word."""
    for entity in known_entities:
        if re.search(rf"(?<![\w-]){re.escape(entity)}(?![\w-])", text, re.IGNORECASE):
            return entity
    for match in CAPITALISED_WORD.finditer(text):
        word = match.group(1)
        if word.lower() not in COMMAND_VERBS and not CARRIED_PRONOUNS.fullmatch(word):
            return word
    return None


def carry_references(texts: List[str], known_entities: Sequence[str]) -> List[str]:
    """Replace pronouns in later segments with the last entity named before them."""
    resolved = []
    last_entity = None
    for index, text in enumerate(texts):
        if index > 0 and last_entity:
            entity = last_entity
            text = CARRIED_PRONOUNS.sub(lambda _: entity, text)
        found = extract_entity(text, known_entities)
        if found:
            last_entity = found
        resolved.append(text)
    return resolved


class MultiIntentParser:
    """Connector-table splitter for compound messages."""

    def __init__(self, known_entities: Optional[Sequence[str]] = None):
        if known_entities is None:
            from core.project_registry import ProjectRegistry
            known_entities = ProjectRegistry.get().known_entities()
        self.known_entities = list(known_entities)

    def is_multi_intent(self, message: Optional[str]) -> bool:
        """Quick check without building segments."""
        if not message or not isinstance(message, str):
            return False
        trimmed = message.strip()
        if self._never_split(trimmed):
            return False

        for connector in CONNECTORS:
            if not connector.pattern.search(trimmed):
                continue
            if not connector.requires_both_verbs:
                return True
            parts = connector.pattern.split(trimmed)
            if contains_verb(parts[0]) and contains_verb(parts[-1]):
                return True
        return False

    def parse(self, message: Optional[str]) -> ParseResult:
        if not message or not isinstance(message, str):
            return self._single(message or "")

        trimmed = message.strip()
        if len(trimmed) < 3 or self._never_split(trimmed):
            return self._single(trimmed)

        lower = trimmed.lower()
        protected_and = any(phrase in lower for phrase in AND_NOUN_PHRASES)

        segments = [Segment(text=trimmed)]
        for connector in CONNECTORS:
            if protected_and and connector.label == "and":
                continue
            segments = self._split_segments(segments, connector)

        segments = [s for s in segments if len(s.text.split()) >= 2 or contains_verb(s.text)]
        if len(segments) <= 1:
            return self._single(trimmed)

        first = re.match(r"^first\s+", segments[0].text, re.IGNORECASE)
        if first:
            segments[0].text = segments[0].text[first.end():].strip()
            for segment in segments[1:]:
                segment.sequential = True

        for segment, text in zip(segments, carry_references([s.text for s in segments], self.known_entities)):
            segment.text = text

        ordered = self._build_order(segments)
        any_sequential = any(s.sequential for s in ordered)
        intents = [
            ParsedCommand(
                text=segment.text.strip().rstrip("."),
                order=index,
                connector=segment.connector,
                is_sequential=any_sequential if index == 0 else segment.sequential,
            )
            for index, segment in enumerate(ordered)
        ]

        logging.info(f"MultiIntentParser: split into {len(intents)} intents: {[i.text for i in intents]}")
        return ParseResult(is_multi_intent=True, original_message=message, intents=intents)

    def _never_split(self, text: str) -> bool:
        return bool(QUESTION.search(text)) or any(p.search(text) for p in GREETING_PATTERNS)

    def _single(self, text: str) -> ParseResult:
        return ParseResult(
            is_multi_intent=False,
            original_message=text,
            intents=[ParsedCommand(text=text.strip() or text, order=0, connector=None, is_sequential=False)],
        )

    def _split_segments(self, segments: List[Segment], connector: Connector) -> List[Segment]:
        result = []
        for segment in segments:
            if self._has_unbalanced_quotes(segment.text):
                result.append(segment)
                continue

            parts = [p.strip() for p in connector.pattern.split(segment.text)]
            parts = [p for p in parts if p]
            if len(parts) < 2:
                result.append(segment)
                continue

            if connector.requires_both_verbs and not all(contains_verb(p) for p in parts):
                result.append(segment)
                continue

            result.append(Segment(parts[0], segment.connector, segment.sequential, segment.reverse))
            for part in parts[1:]:
                result.append(Segment(part, connector.label, connector.sequential, connector.reverse))
        return result

    def _has_unbalanced_quotes(self, text: str) -> bool:
        # apostrophes inside words ("it's") are not quotes
        single_quotes = len(re.findall(r"(?<!\w)'|'(?!\w)", text))
        return text.count('"') % 2 != 0 or single_quotes % 2 != 0

    def _build_order(self, segments: List[Segment]) -> List[Segment]:
        """A reverse segment swaps in front of its predecessor; both become sequential."""
        ordered: List[Segment] = []
        for segment in segments:
            if segment.reverse and ordered:
                previous = ordered.pop()
                ordered.append(Segment(segment.text, segment.connector, sequential=True, reverse=False))
                ordered.append(Segment(previous.text, previous.connector, sequential=True, reverse=previous.reverse))
            else:
                ordered.append(segment)
        return ordered
