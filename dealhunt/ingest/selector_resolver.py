"""Resolve a field value from a card element using learned selectors."""

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Optional

from selectolax.parser import Node

from dealhunt import metrics
from dealhunt.ai.selector_inference import Repaired
from dealhunt.ingest import markup
from dealhunt.ingest.healer import Healer
from dealhunt.ingest.pattern_store import PatternStore

logger = logging.getLogger(__name__)

# Receives every element the selector matched inside the card
ExtractFn = Callable[[list[Node]], Any]


def is_usable(value: Any) -> bool:
    """True unless the value is None, empty, or a failed numeric parse (NaN)."""
    if value is None:
        return False
    if isinstance(value, (str, list, tuple, dict)) and len(value) == 0:
        return False
    if isinstance(value, float) and math.isnan(value):
        return False
    if isinstance(value, Decimal) and value.is_nan():
        return False
    return True


class SelectorResolver:
    """
    Tries a field's selectors in priority order against one card element.

    Only a success of the top-ranked selector reinforces confidence; a
    lower-ranked fallback success leaves the store untouched. When every
    selector misses, the healer (if any) gets one shot subject to its
    cooldown before the caller's fallback value is returned.
    """

    def __init__(self, store: PatternStore, healer: Optional[Healer] = None):
        self.store = store
        self.healer = healer

    def selectors_for(
        self,
        source: str,
        field_name: str,
        default_selectors: Optional[list[str]] = None,
    ) -> list[str]:
        """Learned selectors for the field, else the source's built-in defaults."""
        return self.store.get_selectors(source, field_name) or list(default_selectors or [])

    @staticmethod
    def try_selectors(
        element: Node,
        selectors: list[str],
        extract_fn: ExtractFn,
    ) -> tuple[Any, Optional[int]]:
        """Return (value, index of winning selector) or (None, None)."""
        for index, selector in enumerate(selectors):
            try:
                matches = markup.find(element, selector)
                if not matches:
                    continue
                value = extract_fn(matches)
            except Exception as e:
                logger.debug(f"Selector {selector!r} failed: {e}")
                continue
            if is_usable(value):
                return value, index
        return None, None

    async def resolve(
        self,
        source: str,
        field_name: str,
        element: Node,
        extract_fn: ExtractFn,
        fallback: Any = None,
        default_selectors: Optional[list[str]] = None,
    ) -> Any:
        selectors = self.selectors_for(source, field_name, default_selectors)

        value, index = self.try_selectors(element, selectors, extract_fn)
        if index is not None:
            if index == 0:
                await self.store.record_outcome(
                    source, field_name, selectors[0], worked=True, expected_index=0
                )
            return value

        metrics.record_extraction_miss(source, field_name)
        logger.debug(f"All {len(selectors)} selectors missed for {source}.{field_name}")

        if self.healer is None:
            return fallback

        outcome = await self.healer.attempt(source, field_name, element, selectors)
        if not isinstance(outcome, Repaired):
            return fallback

        repaired = self.store.get_selectors(source, field_name)
        value, index = self.try_selectors(element, repaired, extract_fn)
        if index is not None:
            logger.info(f"Healed {source}.{field_name} extracted a value with {repaired[index]!r}")
            return value

        if repaired:
            await self.store.record_outcome(
                source, field_name, repaired[0], worked=False, expected_index=0
            )
        return fallback


@dataclass
class CardContext:
    """A resolver bound to one source and one card element."""

    resolver: SelectorResolver
    source: str
    element: Node
    default_selectors: dict[str, list[str]] = field(default_factory=dict)

    async def extract(
        self,
        field_name: str,
        extract_fn: ExtractFn,
        fallback: Any = None,
    ) -> Any:
        return await self.resolver.resolve(
            self.source,
            field_name,
            self.element,
            extract_fn,
            fallback=fallback,
            default_selectors=self.default_selectors.get(field_name),
        )

    def attr(self, name: str) -> Optional[str]:
        return markup.attr(self.element, name)

    def text(self) -> str:
        return markup.text(self.element)
