import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest

from promptrag.config import Settings
from promptrag.services.llm import (
    PERPLEXITY_BASE_URL,
    LLMClient,
    LLMConfigurationError,
    LLMServiceError,
    normalize_model_id,
)


def test_normalize_model_id():
    assert normalize_model_id("openai/gpt-4o") == "gpt-4o"
    assert normalize_model_id(" gpt-4o-mini ") == "gpt-4o-mini"
    assert normalize_model_id(None) is None


async def test_openai_completion_maps_usage():
    create = AsyncMock(return_value=SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content="hi"))],
        usage=SimpleNamespace(prompt_tokens=3, completion_tokens=2, total_tokens=5),
        model="gpt-4o-mini-2024",
    ))
    openai_client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    client = LLMClient(Settings(LLM_PROVIDER="openai"), openai_client=openai_client)

    out = await client.complete("sys", "user", max_tokens=50, temperature=0.3)
    assert (out.text, out.prompt_tokens, out.completion_tokens, out.total_tokens) == ("hi", 3, 2, 5)
    assert out.model == "gpt-4o-mini-2024"
    kwargs = create.await_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["messages"][0] == {"role": "system", "content": "sys"}


async def test_openai_failure_is_wrapped_once():
    create = AsyncMock(side_effect=RuntimeError("boom"))
    openai_client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    client = LLMClient(Settings(LLM_PROVIDER="openai"), openai_client=openai_client)
    with pytest.raises(LLMServiceError, match="boom"):
        await client.complete("s", "u", model="openai/gpt-4o")
    assert create.await_count == 1


async def test_openai_without_key_is_configuration_error():
    client = LLMClient(Settings(LLM_PROVIDER="openai", OPENAI_API_KEY=""))
    with pytest.raises(LLMConfigurationError):
        await client.complete("s", "u")


async def test_perplexity_completion():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["model"] == "sonar"
        assert body["max_tokens"] == 10
        return httpx.Response(200, json={
            "model": "sonar",
            "choices": [{"message": {"content": "answer"}}],
            "usage": {"prompt_tokens": 4, "completion_tokens": 1, "total_tokens": 5},
        })

    http = httpx.AsyncClient(base_url=PERPLEXITY_BASE_URL, transport=httpx.MockTransport(handler))
    client = LLMClient(Settings(LLM_PROVIDER="perplexity", PERPLEXITY_API_KEY="k"), http_client=http)
    out = await client.complete("s", "u", max_tokens=10)
    assert out.text == "answer" and out.total_tokens == 5
    await http.aclose()


async def test_perplexity_http_error():
    http = httpx.AsyncClient(base_url=PERPLEXITY_BASE_URL,
                             transport=httpx.MockTransport(lambda r: httpx.Response(429, json={"error": "slow down"})))
    client = LLMClient(Settings(LLM_PROVIDER="perplexity", PERPLEXITY_API_KEY="k"), http_client=http)
    with pytest.raises(LLMServiceError, match="429"):
        await client.complete("s", "u")
    await http.aclose()


async def test_perplexity_without_key():
    client = LLMClient(Settings(LLM_PROVIDER="perplexity", PERPLEXITY_API_KEY=""))
    with pytest.raises(LLMConfigurationError):
        await client.complete("s", "u")


async def test_perplexity_empty_choices_is_service_error():
    http = httpx.AsyncClient(
        base_url=PERPLEXITY_BASE_URL,
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"model": "sonar", "choices": []})),
    )
    client = LLMClient(Settings(LLM_PROVIDER="perplexity", PERPLEXITY_API_KEY="k"), http_client=http)
    with pytest.raises(LLMServiceError, match="no choices"):
        await client.complete("s", "u")
    await http.aclose()


async def test_openai_empty_choices_is_service_error():
    create = AsyncMock(return_value=SimpleNamespace(choices=[], usage=None, model="gpt-4o-mini"))
    openai_client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    client = LLMClient(Settings(LLM_PROVIDER="openai"), openai_client=openai_client)
    with pytest.raises(LLMServiceError, match="no choices"):
        await client.complete("s", "u")
