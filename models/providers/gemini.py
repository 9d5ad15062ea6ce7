"""Google Gemini provider implementation"""

from typing import Dict, Any, Optional

from .base import BaseLLMProvider
from ..exceptions import ProviderUnavailableError


class GeminiProvider(BaseLLMProvider):
    """Google Gemini generateContent provider"""

    def __init__(self, api_key: Optional[str] = None, model: str = "gemini-2.5-flash", **kwargs):
        super().__init__(api_key, model=model, **kwargs)
        self.api_url = f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

        if not self.api_key:
            raise ProviderUnavailableError(
                provider="gemini",
                message="Gemini API key is required. Set GEMINI_API_KEY"
            )

    def generate(self, prompt: str, schema: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = {
            "contents": [{"parts": [{"text": self._build_system_prompt(prompt, schema)}]}],
            "generationConfig": {
                "temperature": 0.1 if schema else 0.3,
                "maxOutputTokens": 1024,
                "responseMimeType": "application/json",
            },
        }
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.api_key}

        data = self._post(self.api_url, payload, headers, label="gemini")

        candidates = data.get("candidates") or []
        if not candidates:
            raise ValueError("No candidates in Gemini response")
        raw_text = candidates[0]["content"]["parts"][0]["text"]
        return self._parse_response(raw_text, schema)
