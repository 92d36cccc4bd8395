"""Rate-limited selector self-repair."""

import asyncio
import logging
import time
from typing import Callable, Optional

from selectolax.parser import Node

from dealhunt import metrics
from dealhunt.ai.selector_inference import (
    HealOutcome,
    Malformed,
    Repaired,
    SelectorInferenceService,
    Unavailable,
)
from dealhunt.config import settings
from dealhunt.ingest import markup
from dealhunt.ingest.pattern_store import PatternStore

logger = logging.getLogger(__name__)


class Healer:
    """
    Repairs a field's selector list when every known selector misses.

    At most one attempt per (source, field) per cooldown window; attempts
    inside the window are skipped without counting as failures. Cooldowns
    live in memory only, so a restart simply re-enables healing.
    """

    def __init__(
        self,
        store: PatternStore,
        inference: SelectorInferenceService,
        cooldown_seconds: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        snippet_max_chars: Optional[int] = None,
        snippet_min_chars: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.inference = inference
        self.cooldown_seconds = (
            cooldown_seconds if cooldown_seconds is not None else settings.heal_cooldown_seconds
        )
        self.timeout_seconds = timeout_seconds or settings.heal_timeout_seconds
        self.snippet_max_chars = snippet_max_chars or settings.heal_snippet_max_chars
        self.snippet_min_chars = (
            snippet_min_chars if snippet_min_chars is not None else settings.heal_snippet_min_chars
        )
        self._clock = clock
        self._last_attempt: dict[tuple[str, str], float] = {}

    def cooldown_active(self, source: str, field_name: str) -> bool:
        last = self._last_attempt.get((source, field_name))
        return last is not None and self._clock() - last < self.cooldown_seconds

    def _claim_attempt(self, source: str, field_name: str) -> bool:
        """Stamp the attempt time if the cooldown has elapsed."""
        if self.cooldown_active(source, field_name):
            return False
        self._last_attempt[(source, field_name)] = self._clock()
        return True

    async def attempt(
        self,
        source: str,
        field_name: str,
        element: Node,
        base_selectors: list[str],
    ) -> Optional[HealOutcome]:
        """
        Try to repair selectors for one field using the failed element's markup.

        Args:
            source: Source name
            field_name: Field that missed
            element: The card element the extraction ran against
            base_selectors: The list that just failed (kept behind the new candidates)

        Returns:
            None if skipped by the cooldown, otherwise the HealOutcome. Only a
            Repaired outcome touches the pattern store.
        """
        if not self._claim_attempt(source, field_name):
            logger.debug(f"Heal cooldown active for {source}.{field_name}, skipping")
            return None

        snippet = markup.outer_html(element)
        if len(snippet) < self.snippet_min_chars:
            outcome: HealOutcome = Unavailable(
                f"markup snippet too small ({len(snippet)} chars)"
            )
        else:
            logger.warning(f"Healing {field_name} selector for {source}")
            outcome = await self._infer(source, field_name, snippet[: self.snippet_max_chars])

        if isinstance(outcome, Repaired):
            pattern = await self.store.apply_heal(
                source,
                field_name,
                list(outcome.selectors),
                base_selectors=base_selectors,
            )
            metrics.record_heal_attempt(source, field_name, "repaired")
            logger.info(
                f"Repaired {source}.{field_name}: now {pattern.selectors} "
                f"(confidence {pattern.confidence})"
            )
        elif isinstance(outcome, Malformed):
            metrics.record_heal_attempt(source, field_name, "malformed")
            logger.warning(f"Heal for {source}.{field_name} returned malformed result: {outcome.reason}")
        else:
            metrics.record_heal_attempt(source, field_name, "unavailable")
            logger.warning(f"Heal for {source}.{field_name} unavailable: {outcome.reason}")

        return outcome

    async def _infer(self, source: str, field_name: str, snippet: str) -> HealOutcome:
        try:
            return await asyncio.wait_for(
                self.inference.infer(source, field_name, snippet),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return Unavailable(f"timed out after {self.timeout_seconds:.0f}s")
        except Exception as e:
            return Unavailable(f"{type(e).__name__}: {e}")
