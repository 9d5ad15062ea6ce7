"""Model Manager - single routing authority for language-model roles

The router uses models in exactly two places:
- "classifier": AI fallback for intent classification and task extraction
- "planner": alternative approaches when the user asks to change an action

Configuration comes from config/models/{runtime_mode}.yaml.
"""

import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional

import yaml

from .providers.base import BaseLLMProvider
from .providers.gemini import GeminiProvider
from .providers.openrouter import OpenRouterProvider
from .providers.ollama import OllamaProvider
from .providers.hybrid import HybridProvider


class ModelManager:
    """Role -> provider routing with per-process instance caching."""

    REQUIRED_ROLES = ("classifier", "planner")

    def __init__(self, config_path: Optional[Path] = None, runtime_mode: Optional[str] = None):
        if runtime_mode is None:
            from core.runtime import get_runtime_mode
            runtime_mode = get_runtime_mode()
        self.runtime_mode = runtime_mode

        if config_path is None:
            config_path = Path(__file__).parent.parent / "config" / "models" / f"{self.runtime_mode}.yaml"

        self.config_path = Path(config_path)
        self.config = self._load_config()
        self._validate_config()
        self._providers: Dict[str, BaseLLMProvider] = {}

        logging.info(f"ModelManager initialized - Runtime: {self.runtime_mode}, Config: {self.config_path}")

    def _load_config(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Model config not found: {self.config_path}\n"
                f"Runtime mode '{self.runtime_mode}' requires config/models/{self.runtime_mode}.yaml"
            )
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
        except Exception as e:
            raise RuntimeError(f"Error loading config from {self.config_path}: {e}")

        if not config:
            raise ValueError(f"Empty configuration file: {self.config_path}")
        return config

    def _validate_config(self):
        missing = [role for role in self.REQUIRED_ROLES if role not in self.config]
        if missing:
            raise ValueError(
                f"Missing required roles in {self.config_path}: {', '.join(missing)}"
            )

        for role, role_config in self.config.items():
            if not isinstance(role_config, dict):
                continue
            if "primary" in role_config:
                if self.runtime_mode != "hybrid":
                    raise ValueError(
                        f"Hybrid config (primary/fallback) for role '{role}' is only valid in hybrid mode"
                    )
                for part in ("primary", "fallback"):
                    if part not in role_config:
                        continue
                    entry = role_config[part] or {}
                    if not entry.get("provider") or not entry.get("model"):
                        raise ValueError(f"Hybrid role '{role}' {part} needs provider and model")

    def _get_provider(self, provider_name: str, config: Dict[str, Any]) -> BaseLLMProvider:
        cache_key = f"{provider_name}:{config.get('model', 'default')}"
        if cache_key in self._providers:
            return self._providers[cache_key]

        api_key = os.getenv(f"{provider_name.upper()}_API_KEY")

        if provider_name == "gemini":
            provider = GeminiProvider(api_key=api_key, model=config.get("model", "gemini-2.5-flash"))
        elif provider_name == "openrouter":
            provider = OpenRouterProvider(api_key=api_key, model=config.get("model"))
        elif provider_name == "ollama":
            provider = OllamaProvider(
                model=config.get("model"),
                base_url=config.get("base_url", "http://localhost:11434"),
            )
        else:
            raise ValueError(f"Unknown provider: {provider_name}")

        self._providers[cache_key] = provider
        return provider

    def _get_provider_for_role(self, role: str, role_config: Dict[str, Any]) -> BaseLLMProvider:
        if "primary" in role_config:
            primary_config = role_config["primary"]
            primary = self._get_provider(primary_config["provider"], primary_config)
            fallback_config = role_config.get("fallback")
            if not fallback_config:
                return primary
            fallback = self._get_provider(fallback_config["provider"], fallback_config)
            return HybridProvider(primary=primary, fallback=fallback, role=role)

        return self._get_provider(role_config.get("provider", "ollama"), role_config)

    def get(self, role: str) -> BaseLLMProvider:
        """Return the provider instance for role, creating it on first access.

        Raises:
            ValueError: role missing from the config
            ProviderUnavailableError: provider cannot be constructed (e.g. no API key)
        """
        cache_key = f"role:{role}"
        if cache_key in self._providers:
            return self._providers[cache_key]

        config = self.config.get(role)
        if not config:
            available = [k for k, v in self.config.items() if isinstance(v, dict)]
            raise ValueError(f"No configuration for role '{role}' in {self.config_path}. Available roles: {available}")

        provider = self._get_provider_for_role(role, config)
        self._providers[cache_key] = provider
        logging.info(f"ModelManager: created instance for role '{role}'")
        return provider


_model_manager: Optional[ModelManager] = None


def get_model_manager() -> ModelManager:
    """Get global ModelManager instance"""
    global _model_manager
    if _model_manager is None:
        _model_manager = ModelManager()
    return _model_manager
