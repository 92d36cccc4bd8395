"""Durable registry of learned CSS selectors per (source, field)."""

import asyncio
import json
import logging
import os
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from dealhunt.config import settings

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 50


class PatternStoreError(RuntimeError):
    """Raised when the pattern document cannot be read or written."""

    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Ignoring unparseable pattern timestamp: {value!r}")
        return None


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def dedupe_selectors(selectors: list[str], limit: int) -> list[str]:
    """Drop blanks and duplicates (first occurrence wins), then truncate."""
    seen: set[str] = set()
    result: list[str] = []
    for selector in selectors:
        if not isinstance(selector, str):
            continue
        selector = selector.strip()
        if not selector or selector in seen:
            continue
        seen.add(selector)
        result.append(selector)
    return result[:limit]


@dataclass
class FieldPattern:
    """Ordered selector list for one field of one source."""

    selectors: list[str] = field(default_factory=list)
    confidence: int = DEFAULT_CONFIDENCE
    last_healed: Optional[datetime] = None
    last_worked: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "selectors": list(self.selectors),
            "confidence": self.confidence,
            "last_healed": _format_timestamp(self.last_healed),
            "last_worked": _format_timestamp(self.last_worked),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FieldPattern":
        selectors = data.get("selectors") or []
        if not isinstance(selectors, list):
            selectors = []
        try:
            confidence = int(data.get("confidence", DEFAULT_CONFIDENCE))
        except (TypeError, ValueError):
            confidence = DEFAULT_CONFIDENCE
        return cls(
            selectors=[s for s in selectors if isinstance(s, str)],
            confidence=max(0, min(100, confidence)),
            last_healed=_parse_timestamp(data.get("last_healed")),
            last_worked=_parse_timestamp(data.get("last_worked")),
        )


Registry = dict[str, dict[str, FieldPattern]]


class PatternStore:
    """
    JSON-file backed selector registry.

    The document maps source name -> field name -> FieldPattern. All
    read-modify-write cycles for one (source, field) run under that key's
    lock; whole-document writes are serialized by a separate save lock.
    Heals are written immediately, outcome tallies on ``flush()``.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        max_selectors: Optional[int] = None,
    ):
        self.path = Path(path or settings.selector_patterns_path)
        self.max_selectors = max_selectors or settings.max_selectors_per_field
        self._patterns: Registry = {}
        self._key_locks: dict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)
        self._save_lock = asyncio.Lock()
        self._dirty = False

    # ------------------------------------------------------------------
    # Document I/O
    # ------------------------------------------------------------------

    def load(self) -> Registry:
        """
        Load the pattern document from disk, replacing the in-memory registry.

        A missing file yields an empty registry.

        Raises:
            PatternStoreError: If the file cannot be read or is not a valid document
        """
        if not self.path.exists():
            logger.info(f"No selector pattern file at {self.path}, starting empty")
            self._patterns = {}
            return self._patterns

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PatternStoreError(f"Failed to load selector patterns from {self.path}: {e}") from e

        self._patterns = self.from_document(document)
        logger.info(
            f"Loaded selector patterns for {len(self._patterns)} sources from {self.path}"
        )
        return self._patterns

    def save(self, registry: Optional[Registry] = None) -> None:
        """
        Write the registry to disk atomically (temp file + rename).

        Raises:
            PatternStoreError: If the file cannot be written
        """
        if registry is not None:
            self._patterns = registry
        self._write_document(self.to_document(self._patterns))
        self._dirty = False

    def _write_document(self, document: dict[str, Any]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PatternStoreError(f"Failed to save selector patterns to {self.path}: {e}") from e

    @staticmethod
    def to_document(registry: Registry) -> dict[str, Any]:
        return {
            source: {name: pattern.to_dict() for name, pattern in fields.items()}
            for source, fields in registry.items()
        }

    @staticmethod
    def from_document(document: Any) -> Registry:
        if not isinstance(document, dict):
            raise PatternStoreError("Selector pattern document must be a JSON object")

        registry: Registry = {}
        for source, fields in document.items():
            if not isinstance(fields, dict):
                logger.warning(f"Skipping malformed pattern entry for source {source!r}")
                continue
            registry[source] = {
                name: FieldPattern.from_dict(data)
                for name, data in fields.items()
                if isinstance(data, dict)
            }
        return registry

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_pattern(self, source: str, field_name: str) -> Optional[FieldPattern]:
        return self._patterns.get(source, {}).get(field_name)

    def get_selectors(self, source: str, field_name: str) -> list[str]:
        """Return a copy of the ordered selector list (possibly empty)."""
        pattern = self.get_pattern(source, field_name)
        return list(pattern.selectors) if pattern else []

    def snapshot(self) -> dict[str, Any]:
        """Return the current registry as a plain document."""
        return self.to_document(self._patterns)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def record_outcome(
        self,
        source: str,
        field_name: str,
        selector: str,
        worked: bool,
        expected_index: Optional[int] = None,
    ) -> None:
        """
        Adjust confidence after an extraction outcome.

        On success: confidence +5 (max 100) and the selector moves to the front.
        On failure: confidence -10 (min 0). Unknown keys are ignored.

        The change is held in memory until ``flush()``.

        Args:
            expected_index: Position the caller saw the selector at. If the
                list has been reordered since (e.g. by a heal), the outcome
                is dropped.
        """
        async with self._key_locks[(source, field_name)]:
            pattern = self.get_pattern(source, field_name)
            if pattern is None:
                return

            if expected_index is not None:
                selectors = pattern.selectors
                if expected_index >= len(selectors) or selectors[expected_index] != selector:
                    logger.debug(
                        f"Dropping stale outcome for {source}.{field_name}: "
                        f"{selector!r} no longer at position {expected_index}"
                    )
                    return

            if worked:
                pattern.confidence = min(100, pattern.confidence + 5)
                pattern.last_worked = _utcnow()
                if selector in pattern.selectors and pattern.selectors[0] != selector:
                    pattern.selectors.remove(selector)
                    pattern.selectors.insert(0, selector)
            else:
                pattern.confidence = max(0, pattern.confidence - 10)

            self._dirty = True

    async def apply_heal(
        self,
        source: str,
        field_name: str,
        new_selectors: list[str],
        base_selectors: Optional[list[str]] = None,
        confidence: Optional[int] = None,
    ) -> FieldPattern:
        """
        Prepend freshly inferred selectors to a field's list and persist.

        Args:
            source: Source name
            field_name: Field name
            new_selectors: Ranked selectors from the inference service
            base_selectors: List to extend when the store has no entry yet
                (usually the source's built-in defaults)
            confidence: Confidence to set (defaults to settings.heal_confidence_baseline)

        Returns:
            The updated FieldPattern
        """
        if confidence is None:
            confidence = settings.heal_confidence_baseline

        async with self._key_locks[(source, field_name)]:
            fields = self._patterns.setdefault(source, {})
            pattern = fields.get(field_name)
            if pattern is None:
                pattern = FieldPattern(selectors=list(base_selectors or []))
                fields[field_name] = pattern

            pattern.selectors = dedupe_selectors(
                list(new_selectors) + pattern.selectors, self.max_selectors
            )
            pattern.confidence = max(0, min(100, confidence))
            pattern.last_healed = _utcnow()

            await self._persist()
            return pattern

    @property
    def dirty(self) -> bool:
        """True when in-memory changes have not been written yet."""
        return self._dirty

    async def flush(self) -> bool:
        """Write pending outcome changes. Returns False when there was nothing to write."""
        if not self._dirty:
            return False
        await self._persist()
        return True

    async def _persist(self) -> None:
        async with self._save_lock:
            document = self.to_document(self._patterns)
            self._dirty = False
            try:
                await asyncio.to_thread(self._write_document, document)
            except PatternStoreError as e:
                # In-memory registry stays authoritative for this run
                self._dirty = True
                logger.error(str(e))
