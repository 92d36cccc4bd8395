"""Single result-page scanning: fetch, classify, extract, validate."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from selectolax.parser import HTMLParser, Node

from dealhunt import metrics
from dealhunt.ai.attribute_extractor import TitleAttributeExtractor, title_attribute_extractor
from dealhunt.config import settings
from dealhunt.ingest import markup
from dealhunt.ingest.base import CandidateRecord, ProductRecord
from dealhunt.ingest.http_client import (
    BlockedPageError,
    Fetcher,
    TransportError,
    classify_status,
)
from dealhunt.ingest.selector_resolver import SelectorResolver
from dealhunt.ingest.sources.base import SourceAdapter
from dealhunt.normalize.processor import ProductNormalizer, product_normalizer

logger = logging.getLogger(__name__)


class PageScanner:
    """
    Scans one search-result page for one source.

    Blocked pages and transport failures are retried with linear backoff
    (attempt number x unit delay). Once the attempt ceiling is reached the
    page yields an empty result; nothing raised while fetching ever escapes
    ``scan_page``.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        resolver: SelectorResolver,
        normalizer: Optional[ProductNormalizer] = None,
        extractor: Optional[TitleAttributeExtractor] = None,
        max_attempts: Optional[int] = None,
        retry_unit_seconds: Optional[float] = None,
        max_parallel_elements: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.resolver = resolver
        self.normalizer = normalizer or product_normalizer
        self.extractor = extractor or title_attribute_extractor
        self.max_attempts = max_attempts or settings.page_max_attempts
        self.retry_unit_seconds = (
            retry_unit_seconds if retry_unit_seconds is not None else settings.page_retry_unit_seconds
        )
        self.max_parallel_elements = max_parallel_elements or settings.max_parallel_elements
        self._sleep = sleep

    async def scan_page(self, adapter: SourceAdapter, query: str, page: int) -> list[ProductRecord]:
        """
        Scan one page of results.

        Args:
            adapter: Source adapter
            query: Search query
            page: 1-based page number

        Returns:
            Validated records, unique by product_id (empty if the page was
            given up on or had no usable cards)
        """
        url = adapter.build_search_url(query, page)
        document = await self._fetch_document(adapter, url, page)
        if document is None:
            return []

        cards = adapter.find_cards(document)
        if not cards:
            logger.info(f"No result cards on {adapter.name} page {page}")
            return []

        semaphore = asyncio.Semaphore(self.max_parallel_elements)
        results = await asyncio.gather(
            *(self._process_card(adapter, card, semaphore) for card in cards)
        )
        await self.resolver.store.flush()

        records: list[ProductRecord] = []
        seen: set[str] = set()
        for record in results:
            if record is None or record.product_id in seen:
                continue
            seen.add(record.product_id)
            records.append(record)

        metrics.record_extracted(adapter.name, len(records))
        self._log_page_quality(adapter.name, page, len(cards), records)
        return records

    async def _fetch_document(
        self,
        adapter: SourceAdapter,
        url: str,
        page: int,
    ) -> Optional[HTMLParser]:
        for attempt in range(1, self.max_attempts + 1):
            start = time.monotonic()
            try:
                response = await self.fetcher.fetch(url, headers={"Referer": adapter.base_url})
                classify_status(response)
                reason = adapter.block_reason(response.body)
                if reason:
                    raise BlockedPageError(reason)
            except BlockedPageError as e:
                metrics.record_page(adapter.name, "blocked", time.monotonic() - start)
                logger.warning(
                    f"Blocked on {adapter.name} page {page}: {e} "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
            except TransportError as e:
                metrics.record_page(adapter.name, "error", time.monotonic() - start)
                logger.warning(
                    f"Fetch failed for {adapter.name} page {page}: {e} "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
            except Exception as e:
                metrics.record_page(adapter.name, "error", time.monotonic() - start)
                logger.warning(
                    f"Unexpected fetch error for {adapter.name} page {page}: "
                    f"{type(e).__name__}: {e} (attempt {attempt}/{self.max_attempts})"
                )
            else:
                metrics.record_page(adapter.name, "ok", time.monotonic() - start)
                return markup.parse(response.body)

            if attempt < self.max_attempts:
                wait_time = attempt * self.retry_unit_seconds
                logger.debug(f"Retrying {adapter.name} page {page} in {wait_time:.1f}s...")
                await self._sleep(wait_time)

        metrics.record_page(adapter.name, "given_up")
        logger.error(f"Giving up on {adapter.name} page {page} after {self.max_attempts} attempts")
        return None

    async def _process_card(
        self,
        adapter: SourceAdapter,
        card: Node,
        semaphore: asyncio.Semaphore,
    ) -> Optional[ProductRecord]:
        async with semaphore:
            try:
                candidate = await adapter.extract_candidate(adapter.card_context(self.resolver, card))
            except Exception as e:
                logger.debug(f"Failed to parse {adapter.name} card: {type(e).__name__}: {e}")
                return None

        if candidate is None:
            return None

        candidate.specifications = self._augment_specifications(candidate)
        return self.normalizer.validate(candidate)

    def _augment_specifications(self, candidate: CandidateRecord) -> dict:
        """Title-derived attributes, overridden by anything the card itself provided."""
        specifications = dict(self.extractor.extract(candidate.title))
        if isinstance(candidate.specifications, dict):
            specifications.update(candidate.specifications)
        return specifications

    @staticmethod
    def _log_page_quality(source: str, page: int, card_count: int, records: list[ProductRecord]):
        if not records:
            logger.info(f"{source} page {page}: 0/{card_count} cards passed validation")
            return
        rated = sum(1 for r in records if r.rating is not None)
        reviewed = sum(1 for r in records if r.review_count > 0)
        with_specs = sum(1 for r in records if len(r.specifications) >= 3)
        avg_quality = sum(r.quality_score for r in records) / len(records)
        logger.info(
            f"{source} page {page}: {len(records)}/{card_count} records "
            f"(rated {rated}, reviewed {reviewed}, 3+ specs {with_specs}, "
            f"avg quality {avg_quality:.0f})"
        )
