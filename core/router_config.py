"""Router Configuration - Single Authority for thresholds, TTLs and policies

Mirrors the SettingsConfig pattern: YAML deep-merged over class DEFAULTS.

RESPONSIBILITY:
- Load config/router.yaml
- Provide get() singleton for the running process
- Allow explicit instances (overrides) for tests and embedding

DOES NOT:
- Hold domain vocabulary (ProjectRegistry's job)
- Make routing decisions
"""

import copy
import logging
from pathlib import Path
from typing import Dict, Any, Optional


class RouterConfig:
    """Configuration authority for the command router.

    Usage:
        config = RouterConfig.get()
        ttl = config.value("conversation", "ttl_seconds")
    """

    _instance: Optional["RouterConfig"] = None

    DEFAULTS: Dict[str, Any] = {
        "classifier": {
            "weights": {
                "keyword_match": 0.4,
                "context_match": 0.25,
                "history_match": 0.15,
                "specificity": 0.2,
            },
            "thresholds": {
                "ambiguity": 0.5,
                "clarification": 0.3,
                "high_confidence": 0.8,
                "ai_accept": 0.5,
                "track": 0.7,
                "strong_alternative": 0.4,
            },
            "ai_timeout_seconds": 5.0,
            "max_users": 1000,
            "max_actions_per_user": 100,
            "history_window": 20,
            "max_corrections": 500,
            "correction_rate_threshold": 0.2,
            "learned_pattern": {
                "min_count": 2,
                "penalty_step": 0.1,
                "penalty_cap": 0.4,
            },
            "vague_phrases": [
                "do the thing",
                "do that",
                "do it",
                "the usual",
                "you know",
                "same as before",
            ],
            "risk_levels": {
                "high": ["delete", "deploy", "file-taxes", "submit-filing", "pay", "publish"],
                "medium": ["create-page", "create-feature", "create-task", "code-task", "restart"],
                "low": ["check-status", "process-receipt", "check-deadlines", "list", "view", "get"],
            },
            "escalation": {
                "pattern": r"\b(prod|production|live|master|main)\b",
                "levels": 1,
            },
        },
        "conversation": {
            "ttl_seconds": 1800,
            "max_threads": 500,
            "max_mentions": 5,
            "sweep_interval_seconds": 300,
            "pronoun_priority": ["repeat", "other", "locational", "plural", "singular"],
        },
        "decomposer": {
            "min_words": 5,
        },
        "actions": {
            "thresholds": {
                "auto_execute": 0.95,
                "confirm": 0.7,
                "clarify": 0.5,
                "reject": 0.3,
            },
            "max_history": 50,
        },
        "confirmation": {
            "ttl_seconds": 300,
            "sweep_interval_seconds": 60,
        },
    }

    def __init__(self, config_path: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None):
        if config_path is None:
            config_path = Path(__file__).parent.parent / "config" / "router.yaml"
        self.config_path = Path(config_path)
        self._overrides = overrides or {}
        self._config: Dict[str, Any] = {}
        self._load()

    @classmethod
    def get(cls) -> "RouterConfig":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def _load(self) -> None:
        raw_config: Dict[str, Any] = {}

        if self.config_path.exists():
            try:
                import yaml
                with open(self.config_path, encoding="utf-8") as f:
                    raw_config = yaml.safe_load(f) or {}
                    logging.info(f"Loaded router config from {self.config_path}")
            except Exception as e:
                logging.warning(f"Failed to load {self.config_path.name}: {e}, using defaults")
        else:
            logging.info(f"No router.yaml found at {self.config_path}, using defaults")

        merged = self._deep_merge(copy.deepcopy(self.DEFAULTS), raw_config)
        self._config = self._deep_merge(merged, self._overrides)

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def section(self, name: str) -> Dict[str, Any]:
        return self._config.get(name, {})

    def value(self, section: str, key: str, default: Any = None) -> Any:
        return self.section(section).get(key, default)

    def reload(self) -> None:
        """Force reload configuration (for testing)."""
        self._load()
