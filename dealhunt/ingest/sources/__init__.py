"""Source adapter registry."""

from __future__ import annotations

from dealhunt.ingest.sources.base import SourceAdapter
from dealhunt.ingest.sources.amazon import AmazonSource
from dealhunt.ingest.sources.flipkart import FlipkartSource


_SOURCES = {
    "amazon": AmazonSource(),
    "flipkart": FlipkartSource(),
}


def get_source(name: str) -> SourceAdapter:
    """Return the adapter registered under ``name``."""
    adapter = _SOURCES.get((name or "").lower())
    if adapter is None:
        raise ValueError(f"Unknown source: {name!r} (available: {', '.join(sorted(_SOURCES))})")
    return adapter


def list_sources() -> list[str]:
    return list(_SOURCES)


__all__ = [
    "SourceAdapter",
    "get_source",
    "list_sources",
]
