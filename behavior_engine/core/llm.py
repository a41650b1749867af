"""LLM client utilities: Anthropic chat completion, tool_use, JSON parsing."""

import asyncio
import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel

from behavior_engine.core.config import get_settings
from behavior_engine.core.errors import MalformedOutputError, ProviderError
from behavior_engine.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

# Retry settings
_INITIAL_DELAY = 0.5


def _strip_llm_fences(raw_output: str) -> str:
    """Strip markdown code fences from LLM output.

    Handles: ```json ... ```, ``` ... ```, leading/trailing whitespace.
    """
    cleaned = raw_output.strip()

    # Extract JSON from markdown code fences
    fence_match = re.search(r"```(?:json)?\s*\n?(.*?)```", cleaned, re.DOTALL)
    if fence_match:
        return fence_match.group(1).strip()

    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_llm_json(raw_output: str, model: type[T]) -> T:
    """
    Parse LLM output as JSON and validate against a Pydantic model.

    Raises:
        json.JSONDecodeError: If JSON parsing fails after cleanup
        pydantic.ValidationError: If parsed JSON doesn't match schema
    """
    cleaned = _strip_llm_fences(raw_output)
    parsed = json.loads(cleaned)
    return model.model_validate(parsed)


def parse_llm_json_dict(raw_output: str) -> dict:
    """
    Parse LLM output as JSON, returning a raw dict.

    Raises:
        json.JSONDecodeError: If JSON parsing fails after cleanup
        MalformedOutputError: If the JSON is not an object
    """
    cleaned = _strip_llm_fences(raw_output)
    parsed = json.loads(cleaned)
    if not isinstance(parsed, dict):
        raise MalformedOutputError(f"Expected JSON object, got {type(parsed).__name__}")
    return parsed


def parse_yes_no(raw_output: str) -> bool:
    """Strict yes/no parse. Anything but a leading 'yes' is a no."""
    answer = raw_output.strip().strip(".!\"'").lower()
    if answer in ("yes", "no"):
        return answer == "yes"
    first = answer.split()[0] if answer.split() else ""
    return first.strip(".,!") == "yes"


class LLMClient:
    """Single-turn chat completion over the Anthropic Messages API.

    Low temperature and short outputs keep latency and variance bounded.
    Transient errors are retried with exponential backoff; everything else
    surfaces as ProviderError.
    """

    def __init__(self, model: str | None = None, max_retries: int = 1, client: Any | None = None):
        self.model = model or get_settings().ARBITRATION_MODEL
        self.max_retries = max_retries
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            from anthropic import AsyncAnthropic

            settings = get_settings()
            self._client = AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
        return self._client

    async def _create(self, **kwargs: Any) -> Any:
        from anthropic import (
            APIConnectionError,
            APIError,
            APITimeoutError,
            InternalServerError,
            RateLimitError,
        )

        client = self._get_client()
        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                return await client.messages.create(model=self.model, **kwargs)
            except (APIConnectionError, APITimeoutError, InternalServerError, RateLimitError) as e:
                last_error = e
                if attempt < self.max_retries:
                    delay = _INITIAL_DELAY * (2 ** attempt)
                    logger.warning(
                        f"LLM attempt {attempt + 1}/{self.max_retries + 1} failed "
                        f"({type(e).__name__}), retrying in {delay}s"
                    )
                    await asyncio.sleep(delay)
            except APIError as e:
                raise ProviderError(f"LLM call failed: {e}") from e

        raise ProviderError(f"LLM call failed after retries: {last_error}") from last_error

    async def complete_text(
        self,
        system: str,
        user: str,
        max_tokens: int = 200,
        temperature: float = 0.0,
    ) -> str:
        """Return the model's free-text answer."""
        response = await self._create(
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": user}],
            temperature=temperature,
        )
        for block in response.content:
            if getattr(block, "type", None) == "text":
                return block.text
        raise MalformedOutputError("No text block in LLM response")

    async def complete_tool(
        self,
        system: str,
        user: str,
        tool: dict[str, Any],
        max_tokens: int = 300,
        temperature: float = 0.0,
    ) -> dict[str, Any]:
        """Force a tool_use call and return its input (structured output).

        Falls back to parsing a JSON text block when the model answers in text.
        """
        response = await self._create(
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": user}],
            temperature=temperature,
            tools=[tool],
            tool_choice={"type": "tool", "name": tool["name"]},
        )

        for block in response.content:
            if getattr(block, "type", None) == "tool_use" and block.name == tool["name"]:
                if not isinstance(block.input, dict):
                    raise MalformedOutputError("tool_use input is not an object")
                return block.input

        logger.warning("No tool_use block in LLM response, falling back to text")
        for block in response.content:
            if getattr(block, "type", None) == "text":
                try:
                    return parse_llm_json_dict(block.text)
                except json.JSONDecodeError as e:
                    raise MalformedOutputError(f"Unparseable LLM output: {e}") from e
        raise MalformedOutputError("Empty LLM response")
