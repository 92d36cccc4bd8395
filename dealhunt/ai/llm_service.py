"""LLM service for OpenAI-compatible chat completion endpoints."""

import json
import logging
import re
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from dealhunt.config import settings

logger = logging.getLogger(__name__)

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class LLMService:
    """
    Service for LLM interactions over an OpenAI-compatible API.

    Features:
    - Lazy client creation (no key = service unavailable)
    - Structured JSON output with fence stripping
    - Per-call timeout
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.llm_api_key
        self.base_url = base_url or settings.llm_base_url
        self.model = model or settings.llm_model
        self._client: Optional[AsyncOpenAI] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _get_client(self) -> AsyncOpenAI:
        """Get or create the OpenAI client."""
        if self._client is None:
            if not self.api_key:
                raise ValueError("LLM API key not configured")
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def call_llm(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Call the LLM with a prompt and return the text response.

        Args:
            prompt: User prompt
            system_prompt: System prompt/instructions
            temperature: Temperature (defaults to settings.llm_temperature)
            max_tokens: Completion limit (defaults to settings.llm_max_tokens)
            timeout: Request timeout in seconds (defaults to settings.heal_timeout_seconds)

        Returns:
            LLM response text
        """
        temperature = temperature if temperature is not None else settings.llm_temperature

        try:
            client = await self._get_client()

            messages = []
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
            messages.append({"role": "user", "content": prompt})

            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens or settings.llm_max_tokens,
                timeout=timeout or settings.heal_timeout_seconds,
            )

            result = response.choices[0].message.content
            return result or ""

        except Exception as e:
            logger.error(f"LLM API call failed: {e}")
            raise

    async def call_llm_structured(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Call the LLM and parse a JSON object out of its response.

        Raises:
            ValueError: If the response holds no parseable JSON object
        """
        response_text = await self.call_llm(
            prompt=prompt,
            system_prompt=system_prompt,
            temperature=temperature,
            timeout=timeout,
        )
        return parse_json_object(response_text)

    async def close(self):
        """Close the underlying client."""
        if self._client:
            await self._client.close()
            self._client = None


def parse_json_object(response_text: str) -> Dict[str, Any]:
    """
    Extract a JSON object from an LLM response.

    Handles ```json fences and leading/trailing prose around the object.

    Raises:
        ValueError: If no JSON object can be parsed
    """
    text = (response_text or "").strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    try:
        result = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_OBJECT_RE.search(text)
        if not match:
            raise ValueError(f"No JSON object in LLM response: {text[:200]!r}")
        try:
            result = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON response from LLM: {e}") from e

    if not isinstance(result, dict):
        raise ValueError(f"Expected a JSON object from LLM, got {type(result).__name__}")
    return result
