from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx
from openai import AsyncOpenAI

from ..config import Settings
from ..errors import PromptRagError
from ..utils.logger import get_logger

logger = get_logger(__name__)

PERPLEXITY_BASE_URL = "https://api.perplexity.ai"


class LLMConfigurationError(PromptRagError):
    """LLM is misconfigured (missing API key etc.)"""
    pass


class LLMServiceError(PromptRagError):
    """The LLM provider call failed"""
    pass


@dataclass
class Completion:
    text: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    model: str


def normalize_model_id(model: Optional[str]) -> Optional[str]:
    # "openai/gpt-4o-mini" -> "gpt-4o-mini"
    if not model:
        return None
    model = model.strip()
    return model.split("/", 1)[1] if model.startswith("openai/") else model


class LLMClient:
    """Chat completion against the configured provider. No retries."""

    def __init__(self, settings: Settings, *, http_client: httpx.AsyncClient | None = None, openai_client: AsyncOpenAI | None = None):
        self.provider = (settings.LLM_PROVIDER or "openai").lower()
        self.settings = settings
        self._http = http_client
        self._openai = openai_client

    @property
    def default_model(self) -> str:
        if self.provider == "perplexity":
            return self.settings.PERPLEXITY_MODEL
        return self.settings.OPENAI_MODEL

    async def _pplx_chat(self, messages: List[Dict[str, str]], model: str, max_tokens: int, temperature: float) -> Completion:
        if not self.settings.PERPLEXITY_API_KEY:
            raise LLMConfigurationError(
                "PERPLEXITY_API_KEY is not set. Please configure PERPLEXITY_API_KEY in environment variables."
            )
        headers = {
            "Authorization": f"Bearer {self.settings.PERPLEXITY_API_KEY}",
            "Content-Type": "application/json",
        }
        payload = {"model": model, "messages": messages, "temperature": temperature, "max_tokens": max_tokens}

        client = self._http or httpx.AsyncClient(base_url=PERPLEXITY_BASE_URL, timeout=httpx.Timeout(60.0))
        try:
            resp = await client.post("/chat/completions", json=payload, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            try:
                detail = resp.json()
            except ValueError:
                detail = {"text": resp.text}
            raise LLMServiceError(f"Perplexity API error {resp.status_code} (model {model}): {detail}") from e
        except httpx.HTTPError as e:
            raise LLMServiceError(f"Perplexity API request failed (model {model}): {e}") from e
        finally:
            if self._http is None:
                await client.aclose()

        data = resp.json()
        choices = data.get("choices") or []
        if not choices:
            raise LLMServiceError(f"Perplexity API returned no choices (model {model})")
        content = (choices[0].get("message") or {}).get("content", "") or ""
        usage = data.get("usage") or {}
        return Completion(
            text=content,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
            model=data.get("model") or model,
        )

    async def _openai_chat(self, messages: List[Dict[str, str]], model: str, max_tokens: int, temperature: float) -> Completion:
        if self._openai is None:
            if not self.settings.OPENAI_API_KEY:
                raise LLMConfigurationError(
                    "OPENAI_API_KEY is not set. Please configure OPENAI_API_KEY in environment variables."
                )
            self._openai = AsyncOpenAI(api_key=self.settings.OPENAI_API_KEY)
        try:
            chat = await self._openai.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except Exception as e:
            raise LLMServiceError(f"OpenAI API error (model {model}): {e}") from e

        if not chat.choices:
            raise LLMServiceError(f"OpenAI API returned no choices (model {model})")
        usage = chat.usage
        return Completion(
            text=chat.choices[0].message.content or "",
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            total_tokens=usage.total_tokens if usage else 0,
            model=chat.model or model,
        )

    async def complete(
        self,
        system: str,
        user: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        model: Optional[str] = None,
    ) -> Completion:
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        model_id = normalize_model_id(model) or self.default_model
        logger.info(
            "Generating LLM response: provider=%s model=%s max_tokens=%d temperature=%.2f",
            self.provider, model_id, max_tokens, temperature,
        )
        if self.provider == "perplexity":
            result = await self._pplx_chat(messages, model_id, max_tokens, temperature)
        else:
            result = await self._openai_chat(messages, model_id, max_tokens, temperature)
        logger.info("LLM response generated: model=%s tokens=%d", result.model, result.total_tokens)
        return result
