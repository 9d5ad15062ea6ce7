"""Context Resolver - short-lived conversation memory and pronoun rewriting

RESPONSIBILITY:
- Track the last repo / company / action / entity mentioned per conversation
- Rewrite pronouns and repeat phrases ("deploy it", "again", "the other one")
  into explicit references before classification
- Expire idle conversations (TTL) and cap how many are tracked (LRU)

INVARIANTS:
- State older than the TTL is never used for resolution
- resolve_pronouns is a no-op when no state exists
- Resolving twice without new mentions gives the same text

DOES NOT:
- Persist anything (state is process-local and short-lived)
- Classify intents
"""

import copy
import logging
import re
import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from core.project_registry import ProjectRegistry
from core.router_config import RouterConfig
from core.sweeper import PeriodicSweeper


@dataclass
class Mention:
    type: str
    value: str
    timestamp: float


@dataclass
class ConversationState:
    conversation_id: str
    last_repo: Optional[str] = None
    last_company: Optional[str] = None
    last_action: Optional[str] = None
    last_entity: Optional[str] = None
    mentions: deque = field(default_factory=deque)
    created_at: float = 0.0
    updated_at: float = 0.0

    def recent(self, *types: str) -> List[str]:
        """Mention values of the given types, newest first."""
        return [m.value for m in reversed(self.mentions) if m.type in types]


class ContextResolver:
    """Per-conversation reference tracker."""

    MENTION_TYPES = ("repo", "company", "action", "entity")

    # Rules that stop each other: once one rewrites the text the next is skipped
    SHORT_CIRCUIT_RULES = ("repeat", "other")

    ACTION_VERBS = (
        "deploy", "test", "build", "run", "check", "fix", "review", "show", "list",
        "create", "delete", "update", "restart", "push", "pull", "merge", "revert",
        "rollback", "install",
    )

    ENTITY_PATTERN = re.compile(
        r"\b(?:check|fix|update|review|test|build|create|show|deploy)\s+(?:the\s+)?"
        r"([a-z][a-z0-9\s-]{2,30}?)(?:\s*$|\s+(?:on|for|in|to|from|with|and)\b)",
        re.IGNORECASE,
    )

    REPEAT_ALONE = re.compile(r"^(?:again|same(?:\s+thing)?)[.!]?$", re.IGNORECASE)
    REPEAT_FOR = re.compile(r"\b(?:do\s+the\s+)?same\s+for\s+(.+?)[.!]?$", re.IGNORECASE)
    OTHER = re.compile(r"\bthe\s+other(?:\s+one)?\b", re.IGNORECASE)
    THERE = re.compile(r"(?:\bin\s+)?\bthere\b(?!\s+(?:is|are|was|were)\b)", re.IGNORECASE)
    THAT_REPO = re.compile(r"\b(?:that|this)\s+(?:repo|project|repository)\b", re.IGNORECASE)
    PLURAL = re.compile(r"\b(?:their|them|those|they)\b", re.IGNORECASE)

    _SINGULAR_VERBS = "deploy|test|build|run|check|fix|review|restart|push|pull|merge|revert|install"
    _PREPOSITIONS = "on|to|for|with|in|from|about|against"
    VERB_IT = re.compile(rf"\b({_SINGULAR_VERBS})\s+it\b", re.IGNORECASE)
    PREP_IT = re.compile(rf"\b({_PREPOSITIONS})\s+it\b", re.IGNORECASE)
    LEADING_IT = re.compile(r"^it\b", re.IGNORECASE)
    TRAILING_DEMONSTRATIVE = re.compile(
        rf"\b({_SINGULAR_VERBS}|{_PREPOSITIONS})\s+(?:this|that)(?=\s*[.!?]?\s*$)", re.IGNORECASE
    )

    def __init__(
        self,
        registry: Optional[ProjectRegistry] = None,
        config: Optional[RouterConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        registry = registry or ProjectRegistry.get()
        settings = (config or RouterConfig.get()).section("conversation")

        self.ttl = float(settings["ttl_seconds"])
        self.max_threads = int(settings["max_threads"])
        self.max_mentions = int(settings["max_mentions"])
        self.known_repos: Dict[str, str] = registry.repo_aliases
        self.known_companies: Dict[str, str] = registry.company_aliases
        self._clock = clock

        self._rules = {
            "repeat": self._resolve_repeat,
            "other": self._resolve_other,
            "locational": self._resolve_locational,
            "plural": self._resolve_plural,
            "singular": self._resolve_singular,
        }
        self.priority: List[str] = list(settings["pronoun_priority"])
        unknown = [name for name in self.priority if name not in self._rules]
        if unknown:
            raise ValueError(f"Unknown pronoun rules in pronoun_priority: {unknown}")

        self._states: "OrderedDict[str, ConversationState]" = OrderedDict()
        self._lock = threading.RLock()
        self._sweeper = PeriodicSweeper(
            "conversations", float(settings["sweep_interval_seconds"]), self.sweep_expired
        )

        logging.info(f"ContextResolver initialized (ttl={self.ttl}s, max_threads={self.max_threads})")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self):
        self._sweeper.start()

    def close(self):
        self._sweeper.stop()
        with self._lock:
            self._states.clear()

    # =========================================================================
    # Recording
    # =========================================================================

    def record_mention(self, conversation_id: str, mention_type: str, value: Optional[str]):
        if not conversation_id or not mention_type or not value:
            return
        if mention_type not in self.MENTION_TYPES:
            logging.warning(f"ContextResolver: unknown mention type '{mention_type}' ignored")
            return
        if mention_type == "action":
            value = value.lower()

        now = self._clock()
        with self._lock:
            state = self._get_or_create(conversation_id, now)
            setattr(state, f"last_{mention_type}", value)
            state.mentions.append(Mention(mention_type, value, now))
            state.updated_at = now

    def detect_and_record(self, conversation_id: str, text: str) -> List[Dict[str, str]]:
        """Scan text for repos, companies, the primary action and an entity, and record them.

        Returns:
            [{"type": "repo", "value": "JUDO"}, ...] in order of appearance
        """
        if not conversation_id or not text:
            return []

        found = []
        found += self._find_aliases(text, self.known_repos, "repo")
        found += self._find_aliases(text, self.known_companies, "company")

        verb_hits = []
        for verb in self.ACTION_VERBS:
            match = re.search(rf"\b{verb}\b", text, re.IGNORECASE)
            if match:
                verb_hits.append((match.start(), verb))
        if verb_hits:
            # primary action is the first verb the user said
            found.append((*min(verb_hits), "action"))

        entity_match = self.ENTITY_PATTERN.search(text)
        if entity_match:
            entity = entity_match.group(1).strip()
            # a phrase naming a known repo or company is already tracked as that mention
            names_known = self._find_aliases(entity, self.known_repos, "repo") or self._find_aliases(
                entity, self.known_companies, "company"
            )
            if not names_known:
                found.append((entity_match.start(1), entity, "entity"))

        found.sort(key=lambda hit: hit[0])
        detected = []
        for _, value, mention_type in found:
            self.record_mention(conversation_id, mention_type, value)
            detected.append({"type": mention_type, "value": value})

        if detected:
            logging.debug(f"ContextResolver[{conversation_id}] detected {detected}")
        return detected

    def _find_aliases(self, text: str, aliases: Dict[str, str], mention_type: str) -> List[tuple]:
        """Whole-word alias matches, longest alias first so 'gq-cars-driver-app' beats 'gq-cars'."""
        working = text.lower()
        hits = []
        seen = set()
        for alias in sorted(aliases, key=len, reverse=True):
            for match in re.finditer(rf"(?<![\w-]){re.escape(alias)}(?![\w-])", working):
                canonical = aliases[alias]
                if canonical not in seen:
                    hits.append((match.start(), canonical, mention_type))
                    seen.add(canonical)
                working = working[:match.start()] + " " * len(alias) + working[match.end():]
        return hits

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve_pronouns(self, conversation_id: str, text: str) -> str:
        if not conversation_id or not text:
            return text

        state = self._live_state(conversation_id)
        if state is None:
            return text

        resolved = text
        short_circuited = False
        for rule_name in self.priority:
            if rule_name in self.SHORT_CIRCUIT_RULES and short_circuited:
                continue
            rewritten = self._rules[rule_name](resolved, state)
            if rewritten != resolved and rule_name in self.SHORT_CIRCUIT_RULES:
                short_circuited = True
            resolved = rewritten

        if resolved != text:
            logging.info(f"ContextResolver[{conversation_id}]: \"{text}\" -> \"{resolved}\"")
        return resolved

    def _resolve_repeat(self, text: str, state: ConversationState) -> str:
        stripped = text.strip()
        if not state.last_action:
            return text

        if self.REPEAT_ALONE.match(stripped):
            target = state.last_repo or state.last_entity
            return f"{state.last_action} {target}" if target else text

        match = self.REPEAT_FOR.search(stripped)
        if match:
            return f"{state.last_action} {match.group(1).strip()}"
        return text

    def _resolve_other(self, text: str, state: ConversationState) -> str:
        if not self.OTHER.search(text):
            return text
        repos = list(dict.fromkeys(state.recent("repo")))
        if len(repos) < 2:
            return text
        return self.OTHER.sub(lambda _: repos[1], text)

    def _resolve_locational(self, text: str, state: ConversationState) -> str:
        if not state.last_repo:
            return text
        repo = state.last_repo
        text = self.THAT_REPO.sub(lambda _: repo, text)
        return self.THERE.sub(lambda _: f"in {repo}", text)

    def _resolve_plural(self, text: str, state: ConversationState) -> str:
        if not state.last_company:
            return text
        company = state.last_company
        return self.PLURAL.sub(lambda _: company, text)

    def _resolve_singular(self, text: str, state: ConversationState) -> str:
        recent = state.recent("repo", "entity")
        replacement = recent[0] if recent else (state.last_repo or state.last_entity)
        if not replacement:
            return text

        text = self.VERB_IT.sub(lambda m: f"{m.group(1)} {replacement}", text)
        text = self.PREP_IT.sub(lambda m: f"{m.group(1)} {replacement}", text)
        if len(text) > 2:
            text = self.LEADING_IT.sub(lambda _: replacement, text)
        return self.TRAILING_DEMONSTRATIVE.sub(lambda m: f"{m.group(1)} {replacement}", text)

    # =========================================================================
    # State access
    # =========================================================================

    def get_state(self, conversation_id: str) -> Optional[ConversationState]:
        """A copy of the live state, or None if absent or expired."""
        state = self._live_state(conversation_id)
        return copy.deepcopy(state) if state else None

    def clear(self, conversation_id: str):
        with self._lock:
            self._states.pop(conversation_id, None)

    def sweep_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [cid for cid, state in self._states.items() if now - state.updated_at > self.ttl]
            for cid in expired:
                del self._states[cid]
        if expired:
            logging.debug(f"ContextResolver: swept {len(expired)} expired conversations")
        return len(expired)

    def get_stats(self) -> Dict[str, float]:
        now = self._clock()
        with self._lock:
            oldest = min((s.updated_at for s in self._states.values()), default=now)
            return {
                "active_conversations": len(self._states),
                "max_conversations": self.max_threads,
                "ttl_seconds": self.ttl,
                "oldest_age_seconds": now - oldest,
            }

    def _live_state(self, conversation_id: str) -> Optional[ConversationState]:
        with self._lock:
            state = self._states.get(conversation_id)
            if state is None:
                return None
            if self._clock() - state.updated_at > self.ttl:
                del self._states[conversation_id]
                return None
            self._states.move_to_end(conversation_id)
            return state

    def _get_or_create(self, conversation_id: str, now: float) -> ConversationState:
        state = self._states.get(conversation_id)
        if state is not None:
            self._states.move_to_end(conversation_id)
            return state

        while len(self._states) >= self.max_threads:
            evicted, _ = self._states.popitem(last=False)
            logging.debug(f"ContextResolver: evicted least recently used conversation {evicted}")

        state = ConversationState(
            conversation_id=conversation_id,
            mentions=deque(maxlen=self.max_mentions),
            created_at=now,
            updated_at=now,
        )
        self._states[conversation_id] = state
        return state
