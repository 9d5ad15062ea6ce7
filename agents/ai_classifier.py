"""AI Classifier - language-model fallback for intent classification

NO routing decisions. NO retries. One prompt in, one validated JSON object out.
Any failure (unreachable provider, malformed JSON, schema violation) raises;
IntentClassifier treats that as "no AI answer" and keeps its pattern result.
"""

import logging
from typing import Dict, Any, Optional

from models.model_manager import get_model_manager
from models.providers.base import BaseLLMProvider


class AIClassifier:
    """Schema-constrained classification and task extraction."""

    CLASSIFICATION_SCHEMA = {
        "type": "object",
        "properties": {
            "intent": {"type": ["string", "null"]},
            "project": {"type": ["string", "null"]},
            "company": {"type": ["string", "null"]},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
            "confidenceFactors": {
                "type": "object",
                "properties": {
                    "keywordMatch": {"type": "number", "minimum": 0, "maximum": 1},
                    "contextMatch": {"type": "number", "minimum": 0, "maximum": 1},
                    "historyMatch": {"type": "number", "minimum": 0, "maximum": 1},
                    "specificity": {"type": "number", "minimum": 0, "maximum": 1},
                },
            },
            "alternatives": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "actionType": {"type": "string"},
                        "project": {"type": ["string", "null"]},
                        "confidence": {"type": "number"},
                        "reason": {"type": "string"},
                    },
                    "required": ["actionType"],
                },
            },
            "tasks": {"type": "array"},
            "summary": {"type": "string"},
            "ambiguous": {"type": "boolean"},
            "clarifyingQuestions": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["intent", "confidence"],
    }

    TASKS_SCHEMA = {
        "type": "object",
        "properties": {
            "summary": {"type": "string"},
            "tasks": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "task": {"type": "string"},
                        "project": {"type": ["string", "null"]},
                        "priority": {"enum": ["high", "medium", "low"]},
                        "type": {"type": "string"},
                    },
                    "required": ["task"],
                },
            },
        },
        "required": ["tasks"],
    }

    def __init__(self, model: Optional[BaseLLMProvider] = None, role: str = "classifier"):
        self._model = model
        self.role = role
        logging.info(f"AIClassifier initialized (role={role})")

    @property
    def model(self) -> BaseLLMProvider:
        # Resolved lazily so a router without model config still starts
        if self._model is None:
            self._model = get_model_manager().get(self.role)
        return self._model

    def classify(self, prompt: str) -> Dict[str, Any]:
        """Classify a fully built prompt.

        Raises:
            ProviderUnavailableError: provider unreachable
            ValueError: malformed or schema-invalid output
        """
        result = self.model.generate(prompt, schema=self.CLASSIFICATION_SCHEMA)
        result["confidence"] = float(result["confidence"])
        logging.info(f"AIClassifier: intent={result.get('intent')} confidence={result['confidence']:.2f}")
        return result

    def extract_tasks(self, prompt: str) -> Dict[str, Any]:
        return self.model.generate(prompt, schema=self.TASKS_SCHEMA)
