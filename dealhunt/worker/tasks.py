"""Ingestion run: scan sources, persist accepted records, log a summary."""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dealhunt.ai.selector_inference import LLMSelectorInference, SelectorInferenceService
from dealhunt.config import settings
from dealhunt.db.models import ScrapeLog
from dealhunt.ingest.healer import Healer
from dealhunt.ingest.http_client import Fetcher, HttpFetcher
from dealhunt.ingest.page_scanner import PageScanner
from dealhunt.ingest.pattern_store import PatternStore, PatternStoreError
from dealhunt.ingest.scan_engine import ScanEngine, SourceScrapeError
from dealhunt.ingest.selector_resolver import SelectorResolver
from dealhunt.ingest.sources import get_source, list_sources
from dealhunt.logging_config import get_logger
from dealhunt.storage.reconciler import PersistenceError, Reconciler

logger = logging.getLogger(__name__)


@dataclass
class SourceRunStats:
    """Outcome of one source within an ingestion run."""

    source: str
    status: str = "success"
    scraped: int = 0
    new: int = 0
    updated: int = 0
    failed: int = 0
    with_rating: int = 0
    with_reviews: int = 0
    with_specs: int = 0
    avg_quality: float = 0.0
    pages_scanned: int = 0
    duration_seconds: float = 0.0
    error: Optional[str] = None


class IngestionRunner:
    """
    Runs one pipeline per source, concurrently.

    All pipelines share one PatternStore, one Healer (so heal cooldowns are
    per run, not per source task) and one session factory.
    """

    def __init__(
        self,
        store: PatternStore,
        session_factory: async_sessionmaker[AsyncSession],
        fetcher: Optional[Fetcher] = None,
        inference: Optional[SelectorInferenceService] = None,
        scan_engine: Optional[ScanEngine] = None,
        source_delay_seconds: Optional[float] = None,
    ):
        self.store = store
        self.session_factory = session_factory
        self.reconciler = Reconciler(session_factory)
        self._owned_fetcher = fetcher is None
        self.fetcher = fetcher or HttpFetcher()
        self._owned_inference = inference is None and settings.heal_enabled
        if inference is None and settings.heal_enabled:
            inference = LLMSelectorInference()
        healer = Healer(store, inference) if inference is not None else None
        self.resolver = SelectorResolver(store, healer)
        self.scan_engine = scan_engine or ScanEngine(PageScanner(self.fetcher, self.resolver))
        self.inference = inference
        self.source_delay_seconds = (
            source_delay_seconds if source_delay_seconds is not None else settings.source_delay_seconds
        )

    async def close(self):
        if self._owned_fetcher:
            await self.fetcher.close()
        if self._owned_inference and self.inference is not None:
            await self.inference.close()

    async def run(
        self,
        sources: Sequence[str],
        max_products: Optional[int] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> dict[str, SourceRunStats]:
        """
        Ingest every named source.

        Args:
            sources: Source names (see dealhunt.ingest.sources)
            max_products: Target record count per source
            stop_event: Aborts pagination between pages when set

        Returns:
            Mapping of source name to its run stats
        """
        target = max_products or settings.products_per_source
        adapters = [get_source(name) for name in sources]

        results = await asyncio.gather(
            *(
                self._run_source(adapter, target, stop_event, index * self.source_delay_seconds)
                for index, adapter in enumerate(adapters)
            ),
            return_exceptions=True,
        )

        run_stats: dict[str, SourceRunStats] = {}
        for adapter, result in zip(adapters, results):
            if isinstance(result, SourceRunStats):
                run_stats[adapter.name] = result
            elif isinstance(result, Exception):
                logger.error(
                    f"Source run for {adapter.name} crashed: {type(result).__name__}: {result}",
                    exc_info=result,
                )
                run_stats[adapter.name] = SourceRunStats(
                    source=adapter.name,
                    status="failed",
                    error=f"{type(result).__name__}: {result}",
                )
            else:
                raise result

        await self.store.flush()
        return run_stats

    async def _run_source(
        self,
        adapter,
        target: int,
        stop_event: Optional[asyncio.Event],
        start_delay: float,
    ) -> SourceRunStats:
        log = get_logger(__name__, source=adapter.name)
        if start_delay:
            await asyncio.sleep(start_delay)

        started_at = datetime.utcnow()
        start = time.monotonic()
        stats = SourceRunStats(source=adapter.name)

        try:
            scan = await self.scan_engine.scan_source(adapter, target, stop_event=stop_event)
        except SourceScrapeError as e:
            stats.status = "failed"
            stats.error = str(e)
            stats.pages_scanned = e.pages_scanned
            stats.duration_seconds = time.monotonic() - start
            log.error(f"Source run failed: {e}")
            await self._write_scrape_log(stats, started_at)
            return stats

        stats.pages_scanned = scan.pages_scanned
        errors: list[str] = []
        quality_total = 0
        for record in scan.records:
            try:
                result = await self.reconciler.upsert(record)
            except PersistenceError as e:
                stats.failed += 1
                errors.append(str(e))
                log.error(f"Failed to save {record.product_id}: {e}")
                continue

            stats.scraped += 1
            if result.is_new:
                stats.new += 1
            else:
                stats.updated += 1
            if record.rating is not None:
                stats.with_rating += 1
            if record.review_count > 0:
                stats.with_reviews += 1
            if len(record.specifications) >= 3:
                stats.with_specs += 1
            quality_total += record.quality_score

        if stats.scraped:
            stats.avg_quality = round(quality_total / stats.scraped, 1)
        if stats.failed:
            stats.status = "partial" if stats.scraped else "failed"
            stats.error = "; ".join(errors[:10])
        stats.duration_seconds = time.monotonic() - start

        log.info(
            f"Saved {stats.scraped} records ({stats.new} new, {stats.updated} updated, "
            f"{stats.failed} failed); rated {stats.with_rating}, reviewed {stats.with_reviews}, "
            f"3+ specs {stats.with_specs}, avg quality {stats.avg_quality}, "
            f"{stats.duration_seconds:.1f}s"
        )
        await self._write_scrape_log(stats, started_at)
        return stats

    async def _write_scrape_log(self, stats: SourceRunStats, started_at: datetime):
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(
                        ScrapeLog(
                            source=stats.source,
                            status=stats.status,
                            products_scraped=stats.scraped,
                            products_new=stats.new,
                            products_updated=stats.updated,
                            errors=stats.error,
                            started_at=started_at,
                            completed_at=datetime.utcnow(),
                            duration_seconds=round(stats.duration_seconds, 2),
                        )
                    )
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to write scrape log for {stats.source}: {e}")


async def run_ingestion(
    sources: Optional[Sequence[str]] = None,
    max_products: Optional[int] = None,
    stop_event: Optional[asyncio.Event] = None,
    store: Optional[PatternStore] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> dict[str, SourceRunStats]:
    """Run ingestion for the given sources (all registered sources by default)."""
    if store is None:
        store = PatternStore()
        store.load()
    if session_factory is None:
        from dealhunt.db.session import AsyncSessionLocal

        session_factory = AsyncSessionLocal

    runner = IngestionRunner(store, session_factory)
    try:
        return await runner.run(sources or list_sources(), max_products, stop_event)
    finally:
        await runner.close()


async def main(sources: Optional[Sequence[str]] = None, max_products: Optional[int] = None):
    """Entry point: configure logging, ensure tables exist, run all sources."""
    from dealhunt.db.session import init_db
    from dealhunt.logging_config import setup_logging

    setup_logging(settings.log_dir)
    await init_db()

    try:
        store = PatternStore()
        store.load()
    except PatternStoreError as e:
        logger.error(f"Selector pattern file unusable, starting empty: {e}")
        store = PatternStore()

    results = await run_ingestion(sources, max_products, store=store)

    failed = [name for name, stats in results.items() if stats.status == "failed"]
    total = sum(stats.scraped for stats in results.values())
    logger.info(f"Ingestion complete: {total} records across {len(results)} source(s)")
    if failed:
        logger.error(f"Sources with no records: {', '.join(failed)}")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Ingest product listings from search results")
    parser.add_argument(
        "sources",
        nargs="*",
        help=f"Sources to scan (default: all of {', '.join(list_sources())})",
    )
    parser.add_argument(
        "--max-products",
        type=int,
        default=None,
        help="Target records per source (default: settings.products_per_source)",
    )

    args = parser.parse_args()

    asyncio.run(main(args.sources or None, args.max_products))
