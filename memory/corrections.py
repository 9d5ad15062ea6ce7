"""Correction Memory - user corrections and the patterns learned from them

A correction is recorded when the user rejects a classification
("no, I meant LusoTown"). Corrections aggregate into learned patterns keyed
by "intent:project"; repeated corrections of the same classification make
the classifier less confident about it next time.

Storage:
- JsonCorrectionStore: ~/.command_router/corrections.json
- InMemoryCorrectionStore: session-only learning
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple, Callable


class CorrectionStore(ABC):
    """Persistence port for corrections and learned patterns."""

    @abstractmethod
    def load(self) -> Tuple[List[Dict[str, Any]], Dict[str, Dict[str, Any]]]:
        """Return (corrections, patterns)."""

    @abstractmethod
    def save(self, corrections: List[Dict[str, Any]], patterns: Dict[str, Dict[str, Any]]) -> None:
        ...


class InMemoryCorrectionStore(CorrectionStore):
    def __init__(self):
        self._corrections: List[Dict[str, Any]] = []
        self._patterns: Dict[str, Dict[str, Any]] = {}

    def load(self):
        return list(self._corrections), dict(self._patterns)

    def save(self, corrections, patterns):
        self._corrections = list(corrections)
        self._patterns = dict(patterns)


class JsonCorrectionStore(CorrectionStore):
    """JSON file store. Accepts the legacy format (a bare list of corrections)."""

    def __init__(self, storage_path: Optional[Path] = None):
        if storage_path is None:
            storage_path = Path.home() / ".command_router" / "corrections.json"
        self.storage_path = Path(storage_path)
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)

    def load(self):
        if not self.storage_path.exists():
            return [], {}
        try:
            with open(self.storage_path, "r", encoding="utf-8") as f:
                content = f.read().strip()
            if not content:
                return [], {}
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logging.warning(f"Invalid JSON in correction memory, starting fresh: {e}")
            return [], {}
        except Exception as e:
            logging.error(f"Error loading correction memory: {e}")
            return [], {}

        if isinstance(data, list):
            return data, {}
        return data.get("corrections", []), data.get("patterns", {})

    def save(self, corrections, patterns):
        try:
            with open(self.storage_path, "w", encoding="utf-8") as f:
                json.dump({"corrections": corrections, "patterns": patterns}, f, indent=2)
        except Exception as e:
            logging.error(f"Error saving correction memory: {e}")


def pattern_key(intent: Optional[str], project: Optional[str]) -> str:
    return f"{intent or 'unknown'}:{project or 'unknown'}"


class CorrectionLedger:
    """Bounded correction history plus learned patterns, persisted through a CorrectionStore."""

    def __init__(
        self,
        store: Optional[CorrectionStore] = None,
        max_corrections: int = 500,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.max_corrections = max_corrections
        self._clock = clock
        self.corrections: List[Dict[str, Any]] = []
        self.patterns: Dict[str, Dict[str, Any]] = {}

        if store is not None:
            self.corrections, self.patterns = store.load()
            self.corrections = self.corrections[-max_corrections:]

        logging.info(
            f"CorrectionLedger initialized: {len(self.corrections)} corrections, {len(self.patterns)} learned patterns"
        )

    def record(self, original: Dict[str, Any], corrected: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
        """Record that `original` (intent/project/confidence) was corrected to `corrected`."""
        now = self._clock()
        correction = {
            "original": {
                "intent": original.get("intent"),
                "project": original.get("project"),
                "confidence": original.get("confidence"),
            },
            "corrected": dict(corrected),
            "user_id": user_id or "unknown",
            "timestamp": now,
        }
        self.corrections.append(correction)
        if len(self.corrections) > self.max_corrections:
            self.corrections = self.corrections[-self.max_corrections:]

        key = pattern_key(original.get("intent"), original.get("project"))
        previous = self.patterns.get(key, {})
        count = previous.get("count", 0) + 1
        self.patterns[key] = {
            "corrected_text": corrected.get("correction_text") or previous.get("corrected_text"),
            "count": count,
            "last_used": now,
        }

        if self.store is not None:
            self.store.save(self.corrections, self.patterns)

        logging.info(f"CorrectionLedger: recorded correction {key} ({count}x)")
        return correction

    def learned_pattern(self, intent: Optional[str], project: Optional[str]) -> Optional[Dict[str, Any]]:
        return self.patterns.get(pattern_key(intent, project))

    def correction_rate(self, intent: Optional[str], project: Optional[str]) -> float:
        """Share of all corrections whose original classification shared this intent or project."""
        if not self.corrections:
            return 0.0
        relevant = [
            c for c in self.corrections
            if (intent and c["original"].get("intent") == intent)
            or (project and c["original"].get("project") == project)
        ]
        return len(relevant) / len(self.corrections)

    def stats(self) -> Dict[str, Any]:
        by_intent: Dict[str, int] = {}
        by_project: Dict[str, int] = {}
        for c in self.corrections:
            intent = c["original"].get("intent")
            project = c["original"].get("project")
            if intent:
                by_intent[intent] = by_intent.get(intent, 0) + 1
            if project:
                by_project[project] = by_project.get(project, 0) + 1
        return {
            "total_corrections": len(self.corrections),
            "learned_patterns": len(self.patterns),
            "by_intent": by_intent,
            "by_project": by_project,
            "recent_corrections": self.corrections[-10:],
        }
