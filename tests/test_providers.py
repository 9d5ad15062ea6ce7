import pytest
import requests
from unittest.mock import MagicMock

from models.exceptions import ProviderUnavailableError
from models.model_manager import ModelManager
from models.providers.gemini import GeminiProvider
from models.providers.hybrid import HybridProvider
from models.providers.ollama import OllamaProvider


SCHEMA = {
    "type": "object",
    "properties": {"intent": {"type": "string"}, "confidence": {"type": "number"}},
    "required": ["intent", "confidence"],
}


def fake_response(body, status=200):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = body
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status} error", response=response)
    return response


class TestParseResponse:

    def test_fenced_json(self):
        provider = OllamaProvider()
        raw = 'Here you go:\n```json\n{"intent": "deploy", "confidence": 0.8}\n```'
        assert provider._parse_response(raw, SCHEMA) == {"intent": "deploy", "confidence": 0.8}

    def test_json_with_surrounding_prose(self):
        provider = OllamaProvider()
        assert provider._parse_response('Sure. {"intent": "list", "confidence": 1} Done.', SCHEMA)["intent"] == "list"

    @pytest.mark.parametrize("raw", [
        "no json here",
        '{"intent": "deploy", "confidence": }',
        '{"intent": "deploy"}',
        '{"intent": 3, "confidence": 0.5}',
    ])
    def test_malformed_output_raises_value_error(self, raw):
        with pytest.raises(ValueError):
            OllamaProvider()._parse_response(raw, SCHEMA)


class TestOllama:

    def test_generate_posts_and_parses(self, monkeypatch):
        post = MagicMock(return_value=fake_response({"response": '{"intent": "deploy", "confidence": 0.7}'}))
        monkeypatch.setattr(requests, "post", post)

        result = OllamaProvider(model="llama3.2", base_url="http://ollama:11434/").generate("classify", SCHEMA)

        assert result == {"intent": "deploy", "confidence": 0.7}
        assert post.call_args[0][0] == "http://ollama:11434/api/generate"
        assert post.call_args[1]["json"]["format"] == "json"

    def test_connection_error_is_unavailable(self, monkeypatch):
        monkeypatch.setattr(requests, "post", MagicMock(side_effect=requests.exceptions.ConnectionError("refused")))
        with pytest.raises(ProviderUnavailableError) as info:
            OllamaProvider().generate("classify", SCHEMA)
        assert "ollama" in str(info.value)

    def test_server_error_is_unavailable(self, monkeypatch):
        monkeypatch.setattr(requests, "post", MagicMock(return_value=fake_response({}, status=503)))
        with pytest.raises(ProviderUnavailableError):
            OllamaProvider().generate("classify", SCHEMA)

    def test_client_error_is_runtime_error(self, monkeypatch):
        monkeypatch.setattr(requests, "post", MagicMock(return_value=fake_response({}, status=400)))
        with pytest.raises(RuntimeError) as info:
            OllamaProvider().generate("classify", SCHEMA)
        assert not isinstance(info.value, ProviderUnavailableError)


def test_gemini_requires_an_api_key():
    with pytest.raises(ProviderUnavailableError):
        GeminiProvider(api_key=None)


def test_gemini_reads_the_first_candidate(monkeypatch):
    body = {"candidates": [{"content": {"parts": [{"text": '{"intent": "list", "confidence": 0.9}'}]}}]}
    monkeypatch.setattr(requests, "post", MagicMock(return_value=fake_response(body)))
    assert GeminiProvider(api_key="key").generate("classify", SCHEMA)["intent"] == "list"


class TestHybrid:

    def test_falls_back_only_when_primary_is_unavailable(self):
        primary, fallback = MagicMock(model="local"), MagicMock(model="cloud")
        primary.generate.side_effect = ProviderUnavailableError("ollama", "down")
        fallback.generate.return_value = {"intent": "deploy"}

        assert HybridProvider(primary, fallback, role="classifier").generate("p", SCHEMA) == {"intent": "deploy"}

    def test_malformed_output_does_not_fall_back(self):
        primary, fallback = MagicMock(model="local"), MagicMock(model="cloud")
        primary.generate.side_effect = ValueError("bad json")

        with pytest.raises(ValueError):
            HybridProvider(primary, fallback, role="classifier").generate("p", SCHEMA)
        fallback.generate.assert_not_called()


class TestModelManager:

    def test_local_mode_serves_ollama_for_both_roles(self):
        manager = ModelManager(runtime_mode="local")
        assert isinstance(manager.get("classifier"), OllamaProvider)
        assert manager.get("planner") is manager.get("planner")

    def test_hybrid_mode_wraps_primary_and_fallback(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "key")
        monkeypatch.setenv("OPENROUTER_API_KEY", "key")
        manager = ModelManager(runtime_mode="hybrid")
        assert isinstance(manager.get("classifier"), HybridProvider)

    def test_missing_role_is_rejected(self, tmp_path):
        path = tmp_path / "local.yaml"
        path.write_text("classifier:\n  provider: ollama\n  model: llama3.2\n")
        with pytest.raises(ValueError):
            ModelManager(config_path=path, runtime_mode="local")

    def test_hybrid_config_outside_hybrid_mode_is_rejected(self, tmp_path):
        path = tmp_path / "local.yaml"
        path.write_text(
            "classifier:\n  primary: {provider: ollama, model: llama3.2}\n"
            "planner:\n  provider: ollama\n  model: llama3.2\n"
        )
        with pytest.raises(ValueError):
            ModelManager(config_path=path, runtime_mode="local")

    def test_runtime_mode_from_environment(self, monkeypatch):
        from core.runtime import get_runtime_mode
        monkeypatch.setenv("COMMAND_ROUTER_MODE", "Hosted")
        assert get_runtime_mode() == "hosted"
        monkeypatch.setenv("COMMAND_ROUTER_MODE", "cloud")
        with pytest.raises(ValueError):
            get_runtime_mode()
