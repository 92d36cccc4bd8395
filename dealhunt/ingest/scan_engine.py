"""Multi-page scan driver for one source."""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from dealhunt.config import settings
from dealhunt.ingest.base import ProductRecord
from dealhunt.ingest.page_scanner import PageScanner
from dealhunt.ingest.sources.base import SourceAdapter

logger = logging.getLogger(__name__)


class SourceScrapeError(RuntimeError):
    """Raised when a whole source run produced zero records."""

    def __init__(self, source: str, pages_scanned: int):
        super().__init__(f"{source}: no records after {pages_scanned} page(s)")
        self.source = source
        self.pages_scanned = pages_scanned


@dataclass
class SourceScanResult:
    """Result of scanning one source."""

    source: str
    records: List[ProductRecord] = field(default_factory=list)
    pages_scanned: int = 0
    stop_reason: str = ""
    duration_seconds: float = 0.0


class ScanEngine:
    """
    Paginates one source strictly sequentially with a randomized pause
    between pages.

    Stops when the target count is reached, the page ceiling is hit, too
    many consecutive pages come back empty, or the caller sets ``stop_event``
    (checked only between pages).
    """

    def __init__(
        self,
        page_scanner: PageScanner,
        max_pages: Optional[int] = None,
        max_consecutive_empty: Optional[int] = None,
        min_delay_seconds: Optional[float] = None,
        max_delay_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.page_scanner = page_scanner
        self.max_pages = max_pages or settings.max_pages_per_source
        self.max_consecutive_empty = max_consecutive_empty or settings.max_consecutive_empty_pages
        self.min_delay_seconds = (
            min_delay_seconds if min_delay_seconds is not None else settings.min_page_delay_seconds
        )
        self.max_delay_seconds = (
            max_delay_seconds if max_delay_seconds is not None else settings.max_page_delay_seconds
        )
        self._sleep = sleep

    async def scan_source(
        self,
        adapter: SourceAdapter,
        target: int,
        query: Optional[str] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> SourceScanResult:
        """
        Scan pages until a stop condition holds.

        Args:
            adapter: Source adapter
            target: Number of unique records wanted
            query: Search query (defaults to the adapter's search term)
            stop_event: Set by the caller to abort between pages

        Returns:
            SourceScanResult with at most ``target`` unique records

        Raises:
            SourceScrapeError: If pages were scanned but none yielded a record
        """
        query = query or adapter.search_term
        start = time.monotonic()
        result = SourceScanResult(source=adapter.name)
        seen: set[str] = set()
        empty_pages = 0
        page = 1

        logger.info(f"Scanning {adapter.display_name} for {query!r} (target: {target})")

        while True:
            if stop_event is not None and stop_event.is_set():
                result.stop_reason = "stopped"
                break

            page_records = await self.page_scanner.scan_page(adapter, query, page)
            result.pages_scanned += 1

            if not page_records:
                empty_pages += 1
            else:
                empty_pages = 0
                for record in page_records:
                    if record.product_id not in seen:
                        seen.add(record.product_id)
                        result.records.append(record)

            if len(result.records) >= target:
                del result.records[target:]
                result.stop_reason = "target_reached"
                break
            if page >= self.max_pages:
                result.stop_reason = "page_limit"
                break
            if empty_pages >= self.max_consecutive_empty:
                result.stop_reason = "empty_pages"
                break

            page += 1
            delay = random.uniform(self.min_delay_seconds, self.max_delay_seconds)
            logger.debug(f"Waiting {delay:.1f}s before {adapter.name} page {page}")
            await self._sleep(delay)

        result.duration_seconds = time.monotonic() - start
        logger.info(
            f"Finished {adapter.name}: {len(result.records)} records from "
            f"{result.pages_scanned} page(s) ({result.stop_reason})"
        )

        if not result.records and result.pages_scanned:
            logger.error(f"No records scraped from {adapter.name}")
            raise SourceScrapeError(adapter.name, result.pages_scanned)
        return result
