"""Selector inference: ask an LLM for replacement CSS selectors.

The outcome of every request is one of three variants, and the client never
raises to its caller:

- ``Repaired``: a validated, ranked list of 2-3 selectors
- ``Unavailable``: the service could not be reached, timed out or is not configured
- ``Malformed``: the service answered, but not with the expected shape
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Union

from pydantic import BaseModel, ValidationError, field_validator

from dealhunt.ai.llm_service import LLMService
from dealhunt.ai.prompts import SELECTOR_SYSTEM_PROMPT, SelectorInferencePrompt
from dealhunt.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Repaired:
    selectors: tuple[str, ...]
    explanation: str = ""


@dataclass(frozen=True)
class Unavailable:
    reason: str


@dataclass(frozen=True)
class Malformed:
    reason: str


HealOutcome = Union[Repaired, Unavailable, Malformed]


class SelectorSuggestion(BaseModel):
    """Expected response shape from the inference service."""

    primary: str
    fallback1: Optional[str] = None
    fallback2: Optional[str] = None
    explanation: str = ""

    @field_validator("primary")
    @classmethod
    def primary_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("primary selector is blank")
        return value.strip()

    @field_validator("fallback1", "fallback2")
    @classmethod
    def strip_fallback(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None

    def ranked(self) -> tuple[str, ...]:
        ordered: list[str] = []
        for selector in (self.primary, self.fallback1, self.fallback2):
            if selector and selector not in ordered:
                ordered.append(selector)
        return tuple(ordered)


def interpret_response(payload: object) -> HealOutcome:
    """Validate a decoded response payload into a HealOutcome."""
    if not isinstance(payload, dict) or not payload:
        return Malformed("empty or non-object response")

    try:
        suggestion = SelectorSuggestion.model_validate(payload)
    except ValidationError as e:
        return Malformed(f"unexpected response shape: {e.error_count()} validation errors")

    selectors = suggestion.ranked()
    if len(selectors) < 2:
        return Malformed(f"expected at least 2 distinct selectors, got {len(selectors)}")

    return Repaired(selectors=selectors, explanation=suggestion.explanation)


class SelectorInferenceService(Protocol):
    """Anything that can turn (source, field, snippet) into a HealOutcome."""

    async def infer(self, source: str, field_name: str, html_snippet: str) -> HealOutcome:
        ...


class LLMSelectorInference:
    """Selector inference backed by an OpenAI-compatible chat endpoint."""

    def __init__(
        self,
        llm: Optional[LLMService] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.llm = llm or LLMService()
        self.timeout_seconds = timeout_seconds or settings.heal_timeout_seconds

    async def infer(self, source: str, field_name: str, html_snippet: str) -> HealOutcome:
        if not self.llm.is_configured:
            return Unavailable("selector inference not configured")

        prompt = SelectorInferencePrompt(
            source=source,
            field=field_name,
            html_snippet=html_snippet,
        ).to_prompt()

        try:
            payload = await asyncio.wait_for(
                self.llm.call_llm_structured(
                    prompt=prompt,
                    system_prompt=SELECTOR_SYSTEM_PROMPT,
                    timeout=self.timeout_seconds,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return Unavailable(f"timed out after {self.timeout_seconds:.0f}s")
        except ValueError as e:
            return Malformed(str(e))
        except Exception as e:
            return Unavailable(f"{type(e).__name__}: {e}")

        outcome = interpret_response(payload)
        if isinstance(outcome, Repaired):
            logger.info(
                f"Selector inference for {source}.{field_name}: "
                f"{list(outcome.selectors)} ({outcome.explanation[:120]})"
            )
        return outcome

    async def close(self):
        await self.llm.close()
