"""User History - recent accepted classifications per user

Feeds the history_match confidence factor: users who mostly work on one
project get a boost when they mention it again.

INVARIANTS:
- At most max_users users tracked (least recently active evicted)
- At most max_actions entries per user
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Any, List, Optional, Callable


class UserFactsStore(ABC):
    """Optional persistence port for per-user history."""

    @abstractmethod
    def load(self) -> Dict[str, List[Dict[str, Any]]]:
        ...

    @abstractmethod
    def save(self, history: Dict[str, List[Dict[str, Any]]]) -> None:
        ...


class JsonUserFactsStore(UserFactsStore):
    def __init__(self, storage_path: Optional[Path] = None):
        if storage_path is None:
            storage_path = Path.home() / ".command_router" / "user_history.json"
        self.storage_path = Path(storage_path)
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)

    def load(self):
        if not self.storage_path.exists():
            return {}
        try:
            with open(self.storage_path, "r", encoding="utf-8") as f:
                return json.load(f) or {}
        except Exception as e:
            logging.warning(f"Could not load user history, starting empty: {e}")
            return {}

    def save(self, history):
        try:
            with open(self.storage_path, "w", encoding="utf-8") as f:
                json.dump(history, f, indent=2)
        except Exception as e:
            logging.error(f"Error saving user history: {e}")


class UserHistory:
    """Bounded LRU of per-user action history."""

    def __init__(
        self,
        max_users: int = 1000,
        max_actions: int = 100,
        store: Optional[UserFactsStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.max_users = max_users
        self.max_actions = max_actions
        self.store = store
        self._clock = clock
        self._users: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()

        if store is not None:
            for user_id, actions in list(store.load().items())[-max_users:]:
                self._users[user_id] = actions[-max_actions:]

    def track(self, user_id: str, intent: Optional[str], project: Optional[str], company: Optional[str] = None):
        if not user_id:
            return
        if user_id not in self._users and len(self._users) >= self.max_users:
            evicted, _ = self._users.popitem(last=False)
            logging.debug(f"UserHistory: evicted least recently active user {evicted}")

        actions = self._users.setdefault(user_id, [])
        self._users.move_to_end(user_id)
        actions.append({
            "intent": intent,
            "project": project,
            "company": company,
            "timestamp": self._clock(),
        })
        if len(actions) > self.max_actions:
            del actions[:-self.max_actions]

        if self.store is not None:
            self.store.save(dict(self._users))

    def recent(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        return list(self._users.get(user_id, [])[-limit:])

    def history_match(self, user_id: Optional[str], intent: Optional[str], project: Optional[str], window: int = 20) -> float:
        """project frequency * 0.3 + intent frequency * 0.2 over the last `window` actions, capped at 1."""
        recent = self.recent(user_id, window) if user_id else []
        if not recent:
            return 0.0

        boost = 0.0
        if project:
            boost += sum(1 for a in recent if a.get("project") == project) / len(recent) * 0.3
        if intent:
            boost += sum(1 for a in recent if a.get("intent") == intent) / len(recent) * 0.2
        return min(boost, 1.0)

    def clear(self, user_id: str):
        self._users.pop(user_id, None)

    def __len__(self):
        return len(self._users)
