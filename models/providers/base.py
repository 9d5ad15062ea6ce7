"""Base provider contract for structured-JSON language model calls.

RESPONSIBILITY:
- Define generate(prompt, schema) -> dict
- Turn raw model text into a JSON object and validate it against a schema
- Map HTTP transport failures onto ProviderUnavailableError

DOES NOT:
- Decide which model serves which role (ModelManager's job)
- Retry or fall back (HybridProvider's job)
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

import jsonschema
import requests

from ..exceptions import ProviderUnavailableError


class BaseLLMProvider(ABC):
    """Abstract provider returning parsed JSON objects."""

    REQUEST_TIMEOUT = 30

    def __init__(self, api_key: Optional[str] = None, **kwargs):
        self.api_key = api_key
        self.model = kwargs.get("model", "unknown")
        self.options = kwargs

    @abstractmethod
    def generate(self, prompt: str, schema: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run the prompt and return a JSON object (validated when schema given)."""

    def _build_system_prompt(self, prompt: str, schema: Optional[Dict[str, Any]]) -> str:
        if not schema:
            return prompt
        return (
            f"{prompt}\n\n"
            "Respond ONLY with a single JSON object, no markdown, no commentary.\n"
            f"The object must satisfy this JSON schema:\n{json.dumps(schema, indent=2)}"
        )

    def _parse_response(self, raw_text: str, schema: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Extract the JSON object from raw_text and validate it.

        Raises:
            ValueError: no JSON object found, or schema validation failed
        """
        text = raw_text.strip()
        fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
        if fenced:
            text = fenced.group(1).strip()

        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            raise ValueError(f"No JSON object in model output: {raw_text[:200]!r}")

        try:
            data = json.loads(text[start:end + 1])
        except json.JSONDecodeError as e:
            raise ValueError(f"Model output is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ValueError("Model output must be a JSON object")

        if schema:
            try:
                jsonschema.validate(data, schema)
            except jsonschema.ValidationError as e:
                raise ValueError(f"Model output failed schema validation: {e.message}") from e

        return data

    def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str], label: str) -> Dict[str, Any]:
        """POST payload and return the decoded JSON body.

        Connection errors, timeouts and 5xx responses become ProviderUnavailableError.
        Other HTTP errors become RuntimeError.
        """
        provider = f"{label}:{self.model}"
        try:
            response = requests.post(url, headers=headers, json=payload, timeout=self.REQUEST_TIMEOUT)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.ConnectionError as e:
            raise ProviderUnavailableError(provider=provider, message=f"Cannot connect: {e}")
        except requests.exceptions.Timeout as e:
            raise ProviderUnavailableError(provider=provider, message=f"Request timed out: {e}")
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else 0
            if status >= 500:
                raise ProviderUnavailableError(provider=provider, message=f"Service error: {e}")
            logging.error(f"{label} API error: {e}")
            raise RuntimeError(f"{label} API call failed: {e}")
