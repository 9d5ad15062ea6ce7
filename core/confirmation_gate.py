"""Confirmation Gate - which action types need a "yes" first, and who owes one

RESPONSIBILITY:
- Decide per action type whether confirmation is required
- Hold at most one pending confirmation per user, time-boxed by a TTL
- Recognise yes/no replies

INVARIANTS:
- An expired entry is never returned (lazy expiry on read + periodic sweep)
- A new set_pending for a user overwrites the previous entry

DOES NOT:
- Execute anything (the router hands confirmed actions to ActionController)
"""

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Callable

from core.router_config import RouterConfig
from core.sweeper import PeriodicSweeper


@dataclass
class PendingConfirmation:
    user_id: str
    action: str
    params: Dict[str, Any] = field(default_factory=dict)
    context: Dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0
    message: str = ""


class ConfirmationGate:
    """Per-user pending confirmations with a TTL."""

    REQUIRES_CONFIRMATION = frozenset((
        "deploy", "deploy-project", "git pull", "pm2 restart", "pm2 stop", "pm2 start",
        "npm install", "npm run dev", "npm start",
        "create-page", "create-feature", "create-component", "create-repo", "create-branch",
        "file-taxes", "submit-filing", "submit-accounts", "pay-invoice", "approve-payment",
        "delete", "delete-file", "delete-branch", "delete-task", "remove",
        "send-email", "publish", "post",
        "change-settings", "update-config",
        "generate-image", "generate-logo",
    ))

    NO_CONFIRMATION = frozenset((
        "check-status", "project-status", "git status", "pm2 status", "pm2 logs", "health-check",
        "list", "view", "read", "show", "get",
        "process-receipt", "log-receipt", "scan-receipt",
        "check-deadlines", "list-deadlines", "check-reminders",
        "npm test", "npm run test", "npm run lint", "npm run build", "npm ci",
        "git log", "git branch", "ls", "pwd", "uptime",
    ))

    DESTRUCTIVE = re.compile(r"delete|remove|destroy|drop|purge|wipe", re.IGNORECASE)
    RISKY_PREFIXES = ("deploy", "create", "delete", "remove", "send", "publish", "submit", "file", "pay")

    YES = re.compile(
        r"^(yes|y|yeah|yep|yup|confirm|confirmed|ok|okay|sure|go|do it|proceed|approve|\U0001F44D)$",
        re.IGNORECASE,
    )
    NO = re.compile(
        r"^(no|n|nah|nope|cancel|stop|abort|don't|dont|nevermind|never mind|\U0001F44E)$",
        re.IGNORECASE,
    )

    MESSAGE_TEMPLATES = {
        "deploy": "Deploy {target_or_project}?\nThis will update the live server.",
        "deploy-project": "Deploy {target_or_project}?\nThis will update the live server.",
        "git pull": "Git pull for {target_or_project}?\nThis will fetch and merge remote changes.",
        "pm2 restart": "Restart {target_or_app}?\nThis may cause brief downtime.",
        "pm2 stop": "Stop {target_or_app}?\nThe service will be unavailable until started.",
        "create-page": "Create new page \"{page_name}\"?\nThis will add files to the project.",
        "create-feature": "Create new feature \"{feature_name}\"?\nThis will scaffold new files.",
        "create-repo": "Create new repository \"{target}\"?\nThis will create a new GitHub repo.",
        "file-taxes": "File taxes for {company}?\nThis is a formal submission.",
        "submit-filing": "Submit filing for {company}?\nThis cannot be undone.",
        "delete": "Delete {target}?\nThis action cannot be undone.",
        "delete-file": "Delete file \"{filename}\"?\nThis action cannot be undone.",
        "delete-branch": "Delete branch \"{branch}\"?\nThis action cannot be undone.",
        "send-email": "Send email to {recipient}?\nThis will be sent immediately.",
        "publish": "Publish {target_or_content}?\nIt will become publicly visible.",
    }

    def __init__(self, config: Optional[RouterConfig] = None, clock: Callable[[], float] = time.time):
        settings = (config or RouterConfig.get()).section("confirmation")
        self.ttl = float(settings["ttl_seconds"])
        self._clock = clock
        self._pending: Dict[str, PendingConfirmation] = {}
        self._lock = threading.RLock()
        self._sweeper = PeriodicSweeper(
            "confirmations", float(settings["sweep_interval_seconds"]), self.sweep_expired
        )
        logging.info(f"ConfirmationGate initialized (ttl={self.ttl}s)")

    def start(self):
        self._sweeper.start()

    def close(self):
        self._sweeper.stop()

    # =========================================================================
    # Policy
    # =========================================================================

    def requires_confirmation(self, action_type: Optional[str]) -> bool:
        action = (action_type or "").lower().strip()

        if action in self.NO_CONFIRMATION:
            return False
        if action in self.REQUIRES_CONFIRMATION:
            return True
        if self.DESTRUCTIVE.search(action):
            return True
        return action.startswith(self.RISKY_PREFIXES)

    def is_confirmation(self, text: Optional[str]) -> Optional[str]:
        normalized = (text or "").strip()
        if self.YES.match(normalized):
            return "yes"
        if self.NO.match(normalized):
            return "no"
        return None

    # =========================================================================
    # Pending entries
    # =========================================================================

    def set_pending(
        self,
        user_id: str,
        action: str,
        params: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
        message: Optional[str] = None,
    ) -> PendingConfirmation:
        params = params or {}
        pending = PendingConfirmation(
            user_id=user_id,
            action=action,
            params=params,
            context=context or {},
            created_at=self._clock(),
            message=message or self.format_confirmation_request(action, params),
        )
        with self._lock:
            self._pending[user_id] = pending
        logging.info(f"ConfirmationGate: pending set for {user_id}: {action}")
        return pending

    def get_pending(self, user_id: str) -> Optional[PendingConfirmation]:
        with self._lock:
            pending = self._pending.get(user_id)
            if pending is None:
                return None
            if self._expired(pending):
                del self._pending[user_id]
                logging.info(f"ConfirmationGate: pending expired for {user_id}: {pending.action}")
                return None
            return pending

    def confirm(self, user_id: str) -> Optional[PendingConfirmation]:
        with self._lock:
            pending = self.get_pending(user_id)
            if pending is None:
                logging.info(f"ConfirmationGate: nothing to confirm for {user_id}")
                return None
            del self._pending[user_id]
        logging.info(f"ConfirmationGate: confirmed for {user_id}: {pending.action}")
        return pending

    def cancel(self, user_id: str) -> bool:
        with self._lock:
            pending = self.get_pending(user_id)
            if pending is None:
                return False
            del self._pending[user_id]
        logging.info(f"ConfirmationGate: cancelled for {user_id}: {pending.action}")
        return True

    def has_pending(self, user_id: str) -> bool:
        return self.get_pending(user_id) is not None

    def time_remaining(self, user_id: str) -> Optional[float]:
        """Seconds left before the user's confirmation expires, None if there is none."""
        with self._lock:
            pending = self._pending.get(user_id)
        if pending is None:
            return None
        return max(0.0, self.ttl - (self._clock() - pending.created_at))

    def get_all_pending(self) -> Dict[str, Dict[str, Any]]:
        now = self._clock()
        with self._lock:
            entries = list(self._pending.items())
        return {
            user_id: {
                "action": p.action,
                "params": p.params,
                "created_at": p.created_at,
                "minutes_remaining": round((self.ttl - (now - p.created_at)) / 60),
            }
            for user_id, p in entries
            if not self._expired(p, now)
        }

    def sweep_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [user_id for user_id, p in self._pending.items() if self._expired(p, now)]
            for user_id in expired:
                del self._pending[user_id]
        if expired:
            logging.info(f"ConfirmationGate: expired {len(expired)} pending confirmations")
        return len(expired)

    def clear_all(self) -> int:
        with self._lock:
            count = len(self._pending)
            self._pending.clear()
        logging.info(f"ConfirmationGate: cleared {count} pending confirmations")
        return count

    def _expired(self, pending: PendingConfirmation, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        return now - pending.created_at > self.ttl

    # =========================================================================
    # Formatting
    # =========================================================================

    def format_confirmation_request(self, action: str, params: Optional[Dict[str, Any]] = None) -> str:
        params = params or {}
        target = params.get("target") or params.get("repo") or params.get("project") or params.get("name") or ""
        template = self.MESSAGE_TEMPLATES.get((action or "").lower())

        if template:
            body = template.format(
                target=target,
                target_or_project=target or "this project",
                target_or_app=target or "the application",
                target_or_content=target or "this content",
                page_name=params.get("page_name") or target,
                feature_name=params.get("feature_name") or target,
                company=params.get("company") or target,
                filename=params.get("filename") or target,
                branch=params.get("branch") or target,
                recipient=params.get("recipient") or target,
            )
        elif target:
            body = f"Confirm {action} for {target}?"
        else:
            body = f"Confirm {action}?"

        minutes = max(1, round(self.ttl / 60))
        return f"APPROVAL NEEDED\n\n{body}\n\nReply \"yes\" to proceed or \"no\" to cancel\nExpires in {minutes} minutes"
