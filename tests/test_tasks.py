"""Tests for the ingestion runner."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from dealhunt.ai.selector_inference import Unavailable
from dealhunt.db.models import Product, ScrapeLog
from dealhunt.ingest.base import ProductRecord
from dealhunt.ingest.scan_engine import SourceScanResult, SourceScrapeError
from dealhunt.storage.reconciler import PersistenceError
from dealhunt.worker.tasks import IngestionRunner


def make_record(source: str, product_id: str, **overrides) -> ProductRecord:
    values = dict(
        source=source,
        product_id=product_id,
        title=f"Redmi Note 13 5G {product_id} (8GB RAM, 256GB)",
        current_price=Decimal("17999"),
        original_price=Decimal("21999"),
        discount_percent=18,
        rating=4.1,
        review_count=120,
        specifications={"ram": "8GB", "storage": "256GB", "connectivity": "5G"},
        quality_score=90,
    )
    values.update(overrides)
    return ProductRecord(**values)


class FakeScanEngine:
    """Returns canned records per source, or raises SourceScrapeError."""

    def __init__(self, records_by_source):
        self.records_by_source = records_by_source
        self.targets = {}

    async def scan_source(self, adapter, target, query=None, stop_event=None):
        self.targets[adapter.name] = target
        records = self.records_by_source.get(adapter.name, [])
        if not records:
            raise SourceScrapeError(adapter.name, 2)
        return SourceScanResult(source=adapter.name, records=records, pages_scanned=1)


class UnusedFetcher:
    async def fetch(self, url, headers=None):
        raise AssertionError("fetch should not be called")


class NoInference:
    async def infer(self, source, field_name, html_snippet):
        return Unavailable("disabled in tests")


def make_runner(pattern_store, session_factory, scan_engine):
    return IngestionRunner(
        pattern_store,
        session_factory,
        fetcher=UnusedFetcher(),
        inference=NoInference(),
        scan_engine=scan_engine,
        source_delay_seconds=0,
    )


async def scrape_logs(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(ScrapeLog).order_by(ScrapeLog.source))
        return result.scalars().all()


@pytest.mark.asyncio
async def test_run_persists_records_and_logs(pattern_store, session_factory):
    engine = FakeScanEngine(
        {
            "amazon": [
                make_record("amazon", "B0AAAAAAA1"),
                make_record("amazon", "B0AAAAAAA2", rating=None, review_count=0, specifications={}),
            ],
            "flipkart": [make_record("flipkart", "MOBAAAAAAAAAAAA1")],
        }
    )
    runner = make_runner(pattern_store, session_factory, engine)

    results = await runner.run(["amazon", "flipkart"], max_products=50)

    assert engine.targets == {"amazon": 50, "flipkart": 50}
    amazon = results["amazon"]
    assert amazon.status == "success"
    assert (amazon.scraped, amazon.new, amazon.updated, amazon.failed) == (2, 2, 0, 0)
    assert amazon.with_rating == 1
    assert amazon.with_reviews == 1
    assert amazon.with_specs == 1
    assert amazon.avg_quality == 90.0
    assert results["flipkart"].scraped == 1

    async with session_factory() as session:
        products = (await session.execute(select(Product))).scalars().all()
    assert len(products) == 3

    logs = await scrape_logs(session_factory)
    assert [(log.source, log.status, log.products_new) for log in logs] == [
        ("amazon", "success", 2),
        ("flipkart", "success", 1),
    ]
    assert all(log.completed_at is not None for log in logs)


@pytest.mark.asyncio
async def test_rerun_counts_updates(pattern_store, session_factory):
    engine = FakeScanEngine({"amazon": [make_record("amazon", "B0AAAAAAA1")]})
    runner = make_runner(pattern_store, session_factory, engine)

    await runner.run(["amazon"])
    results = await runner.run(["amazon"])

    assert (results["amazon"].new, results["amazon"].updated) == (0, 1)


@pytest.mark.asyncio
async def test_failed_source_does_not_stop_others(pattern_store, session_factory):
    engine = FakeScanEngine({"flipkart": [make_record("flipkart", "MOBAAAAAAAAAAAA1")]})
    runner = make_runner(pattern_store, session_factory, engine)

    results = await runner.run(["amazon", "flipkart"])

    assert results["amazon"].status == "failed"
    assert results["amazon"].pages_scanned == 2
    assert "no records" in results["amazon"].error
    assert results["flipkart"].status == "success"

    logs = await scrape_logs(session_factory)
    assert [(log.source, log.status) for log in logs] == [
        ("amazon", "failed"),
        ("flipkart", "success"),
    ]


@pytest.mark.asyncio
async def test_persistence_failure_marks_partial(pattern_store, session_factory):
    engine = FakeScanEngine(
        {"amazon": [make_record("amazon", "B0AAAAAAA1"), make_record("amazon", "B0BROKEN01")]}
    )
    runner = make_runner(pattern_store, session_factory, engine)
    upsert = runner.reconciler.upsert

    async def flaky_upsert(record):
        if record.product_id == "B0BROKEN01":
            raise PersistenceError(record.source, record.product_id, "value too long")
        return await upsert(record)

    runner.reconciler.upsert = flaky_upsert

    results = await runner.run(["amazon"])

    stats = results["amazon"]
    assert stats.status == "partial"
    assert (stats.scraped, stats.failed) == (1, 1)
    assert "B0BROKEN01" in stats.error


def refused_session_factory():
    raise ConnectionRefusedError("db down")


@pytest.mark.asyncio
async def test_database_unreachable_fails_records_not_run(pattern_store):
    engine = FakeScanEngine(
        {
            "amazon": [make_record("amazon", "B0AAAAAAA1")],
            "flipkart": [make_record("flipkart", "MOBAAAAAAAAAAAA1")],
        }
    )
    runner = make_runner(pattern_store, refused_session_factory, engine)

    results = await runner.run(["amazon", "flipkart"])

    for source in ("amazon", "flipkart"):
        stats = results[source]
        assert stats.status == "failed"
        assert (stats.scraped, stats.failed) == (0, 1)
        assert "ConnectionRefusedError" in stats.error


class CrashingScanEngine(FakeScanEngine):
    async def scan_source(self, adapter, target, query=None, stop_event=None):
        if adapter.name == "amazon":
            raise RuntimeError("parser exploded")
        return await super().scan_source(adapter, target, query, stop_event)


@pytest.mark.asyncio
async def test_unexpected_source_error_isolated(pattern_store, session_factory):
    engine = CrashingScanEngine({"flipkart": [make_record("flipkart", "MOBAAAAAAAAAAAA1")]})
    runner = make_runner(pattern_store, session_factory, engine)

    results = await runner.run(["amazon", "flipkart"])

    assert results["amazon"].status == "failed"
    assert results["amazon"].error == "RuntimeError: parser exploded"
    assert results["flipkart"].status == "success"
    assert results["flipkart"].new == 1
