"""OpenRouter provider implementation"""

from typing import Dict, Any, Optional

from .base import BaseLLMProvider
from ..exceptions import ProviderUnavailableError


class OpenRouterProvider(BaseLLMProvider):
    """OpenRouter chat-completions provider"""

    API_URL = "https://openrouter.ai/api/v1/chat/completions"

    def __init__(self, api_key: Optional[str] = None, model: str = "mistralai/mistral-7b-instruct", **kwargs):
        super().__init__(api_key, model=model, **kwargs)

        if not self.api_key:
            raise ProviderUnavailableError(
                provider="openrouter",
                message="OpenRouter API key is required. Set OPENROUTER_API_KEY"
            )

    def generate(self, prompt: str, schema: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self._build_system_prompt("You route chat commands.", schema)},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.1 if schema else 0.3,
            "max_tokens": 1024,
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        data = self._post(self.API_URL, payload, headers, label="openrouter")

        choices = data.get("choices") or []
        if not choices:
            raise ValueError("No choices in OpenRouter response")
        return self._parse_response(choices[0]["message"]["content"], schema)
