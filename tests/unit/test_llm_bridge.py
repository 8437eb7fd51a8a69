import json

import httpx
import pytest

from app.utils.config import Settings
from app.utils.errors import MalformedInputError, PermanentError, TransientError
from app.utils.llm import (
    LLMBridge,
    LLMConfigError,
    LLMProviderError,
    LLMRateLimitError,
    LLMRequestError,
    LLMTimeoutError,
    estimate_tokens,
)


def openrouter_settings(**overrides):
    return Settings(_env_file=None, llm_provider="openrouter", openrouter_api_key="sk-or-v1-test", **overrides)


def ollama_settings():
    return Settings(_env_file=None, llm_provider="ollama")


def bridge_with(handler, settings=None):
    return LLMBridge(settings or openrouter_settings(), transport=httpx.MockTransport(handler))


def test_missing_api_key_is_a_config_error():
    with pytest.raises(LLMConfigError, match="OPENROUTER_API_KEY is required"):
        LLMBridge(Settings(_env_file=None, llm_provider="openrouter", openrouter_api_key=None))


def test_unknown_provider_is_a_config_error():
    with pytest.raises(LLMConfigError):
        LLMBridge(Settings(_env_file=None, llm_provider="carrier-pigeon"))


def test_openrouter_completion():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "choices": [{"message": {"content": "[]"}}],
            "usage": {"prompt_tokens": 12, "completion_tokens": 3},
        })

    response = bridge_with(handler).generate("Analyze this", system="Be brief")

    assert seen["url"] == "https://openrouter.ai/api/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-or-v1-test"
    assert [message["role"] for message in seen["body"]["messages"]] == ["system", "user"]
    assert response.text == "[]"
    assert (response.usage.input, response.usage.output) == (12, 3)
    assert response.provider == "openrouter"


def test_ollama_completion_and_embedding():
    def handler(request):
        if request.url.path == "/api/chat":
            return httpx.Response(200, json={"message": {"content": "ok"}, "prompt_eval_count": 5, "eval_count": 1})
        return httpx.Response(200, json={"embedding": [0.5] * 768})

    bridge = bridge_with(handler, ollama_settings())

    assert bridge.generate("hi").text == "ok"
    assert len(bridge.embed("hi")) == 768
    assert bridge.get_embedding_dimension() == 768


def test_embeddings_are_cached():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2, 0.3]}]})

    bridge = bridge_with(handler)

    assert bridge.embed("same text") == [0.1, 0.2, 0.3]
    assert bridge.embed("same text") == [0.1, 0.2, 0.3]
    assert len(calls) == 1
    assert bridge.get_embedding_dimension() == 1536


@pytest.mark.parametrize(
    "status, error, family",
    [
        (429, LLMRateLimitError, TransientError),
        (503, LLMProviderError, TransientError),
        (400, LLMRequestError, MalformedInputError),
    ],
)
def test_http_errors_map_to_taxonomy(status, error, family):
    bridge = bridge_with(lambda request: httpx.Response(status, text="nope"))

    with pytest.raises(error) as excinfo:
        bridge.generate("hello")
    assert isinstance(excinfo.value, family)


def test_timeouts_are_transient():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(LLMTimeoutError) as excinfo:
        bridge_with(handler).generate("hello")
    assert isinstance(excinfo.value, TransientError)


def test_connection_errors_are_provider_errors():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(LLMProviderError):
        bridge_with(handler).embed("hello")


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
