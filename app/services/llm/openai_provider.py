from typing import List, Optional

import httpx

from app.logging_config import get_logger
from app.services.errors import LLMRequestError
from app.services.llm.base import LLMProvider, LLMResponse

logger = get_logger("llm.openai")

DEFAULT_TIMEOUT_SECONDS = 8.0


class OpenAIProvider(LLMProvider):
    """OpenAI-compatible chat completions (OpenRouter by default)."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "openrouter/auto",
        base_url: str = "https://openrouter.ai/api/v1/chat/completions",
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = base_url

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = 500,
        timeout_seconds: Optional[float] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        model = model or self.default_model

        timeout = timeout_seconds if timeout_seconds is not None else DEFAULT_TIMEOUT_SECONDS
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        logger.debug(f"LLM request: model={model}, messages_count={len(messages)}")

        with httpx.Client(timeout=timeout) as client:
            response = client.post(
                self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )

        logger.debug(f"LLM response status: {response.status_code}")

        if response.status_code != 200:
            logger.error(f"LLM error: {response.text[:500]}")
            raise LLMRequestError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError:
            logger.error(f"LLM returned a non-JSON body: {response.text[:500]}")
            raise LLMRequestError(response.status_code, f"invalid response body: {response.text}")
        if not isinstance(data, dict):
            raise LLMRequestError(response.status_code, "invalid response body: expected a JSON object")

        content = ""
        choices = data.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message") or {}
            if not isinstance(message, dict):
                raise LLMRequestError(response.status_code, "invalid response body: message is not an object")
            content = message.get("content") or ""
        if not isinstance(content, str):
            raise LLMRequestError(response.status_code, "invalid response body: content is not text")
        logger.debug(f"LLM content: {content[:100] if content else 'EMPTY'}")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
        )
