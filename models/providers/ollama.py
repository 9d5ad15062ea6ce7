"""Ollama (local) provider implementation"""

from typing import Dict, Any, Optional

from .base import BaseLLMProvider


class OllamaProvider(BaseLLMProvider):
    """Local Ollama /api/generate provider. No API key required."""

    def __init__(self, model: str = "llama3.2", base_url: str = "http://localhost:11434", **kwargs):
        super().__init__(api_key=None, model=model, **kwargs)
        self.base_url = base_url.rstrip("/")

    def generate(self, prompt: str, schema: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = {
            "model": self.model,
            "prompt": self._build_system_prompt(prompt, schema),
            "stream": False,
            "format": "json",
            "options": {"temperature": 0.1 if schema else 0.3},
        }
        data = self._post(f"{self.base_url}/api/generate", payload, {"Content-Type": "application/json"}, label="ollama")

        raw_text = data.get("response")
        if not raw_text:
            raise ValueError("Empty response from Ollama")
        return self._parse_response(raw_text, schema)
