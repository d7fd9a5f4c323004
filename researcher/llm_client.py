"""OpenRouter completion client via the OpenAI-compatible SDK."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from researcher.config import Settings, require_credentials, settings
from researcher.errors import CompletionUnavailable
from researcher.services import logger as log_service


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class Completion:
    text: str
    usage: Usage


def _from_openai_response(response: Any) -> Completion:
    choices = getattr(response, "choices", None) or []
    text = ""
    if choices:
        message = getattr(choices[0], "message", None)
        text = getattr(message, "content", None) or ""

    usage = getattr(response, "usage", None)
    return Completion(
        text=text,
        usage=Usage(
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        ),
    )


def get_client(config: Settings | None = None) -> Any:
    """Get an OpenRouter client via the OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    config = config or settings
    base_url = config.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    return AsyncOpenAI(
        api_key=config.openrouter_api_key,
        base_url=base_url,
    )


def get_model(config: Settings | None = None) -> str:
    """Get the active OpenRouter model id."""
    config = config or settings
    if config.openrouter_model:
        return config.openrouter_model
    return config.default_model


_client: Any | None = None


def client() -> Any:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client


class OpenRouterCompletionGateway:
    """CompletionGateway that sends one system+user chat completion per call."""

    def __init__(
        self,
        model: str | None = None,
        config: Settings | None = None,
        openai_client: Any | None = None,
    ):
        self.config = config or settings
        require_credentials(self.config)
        self.model = model or get_model(self.config)
        self.client = openai_client

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_output_tokens: int,
        temperature: float,
        *,
        caller: str = "orchestrator",
    ) -> str:
        from openai import OpenAIError

        active_client = self.client or client()
        t0 = time.monotonic()
        try:
            response = await active_client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=max_output_tokens,
                temperature=temperature,
            )
        except OpenAIError as e:
            log_service.log_llm_call(
                model=self.model,
                caller=caller,
                max_output_tokens=max_output_tokens,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(e),
            )
            raise CompletionUnavailable(f"Failed to generate completion: {e}") from e

        completion = _from_openai_response(response)
        log_service.log_llm_call(
            model=self.model,
            caller=caller,
            input_tokens=completion.usage.input_tokens,
            output_tokens=completion.usage.output_tokens,
            max_output_tokens=max_output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        return completion.text
