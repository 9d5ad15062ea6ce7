"""Hybrid Provider - primary model with a fallback on infrastructure failures

INVARIANT: Fallback occurs ONLY on ProviderUnavailableError.
Malformed output (ValueError) from the primary propagates; the classifier
then uses its deterministic tier instead of asking a second model.
"""

import logging
from typing import Dict, Any, Optional

from .base import BaseLLMProvider
from ..exceptions import ProviderUnavailableError


class HybridProvider(BaseLLMProvider):
    """Tries the primary provider, then the fallback when the primary is unreachable."""

    def __init__(self, primary: BaseLLMProvider, fallback: BaseLLMProvider, role: str):
        super().__init__(api_key=None, model=f"{primary.model}->{fallback.model}")
        self.primary = primary
        self.fallback = fallback
        self.role = role

    def generate(self, prompt: str, schema: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            return self.primary.generate(prompt, schema)
        except ProviderUnavailableError as e:
            logging.warning(
                f"[HYBRID][{self.role}] Primary {self.primary.model} unavailable: {e} "
                f"-> falling back to {self.fallback.model}"
            )
            return self.fallback.generate(prompt, schema)
