"""Tests for single-page scanning."""

import pytest

from dealhunt.ingest.base import FetchResponse
from dealhunt.ingest.http_client import TransportError
from dealhunt.ingest.page_scanner import PageScanner
from dealhunt.ingest.pattern_store import PatternStore
from dealhunt.ingest.selector_resolver import SelectorResolver
from dealhunt.ingest.sources import get_source
from dealhunt.normalize.processor import ProductNormalizer


class FakeFetcher:
    """Replays queued responses; exceptions in the queue are raised."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.urls = []

    async def fetch(self, url, headers=None):
        self.urls.append(url)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class SleepRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def ok(body):
    return FetchResponse(status=200, body=body)


def make_scanner(fetcher, store, sleep=None, **kwargs):
    return PageScanner(
        fetcher,
        SelectorResolver(store),
        normalizer=ProductNormalizer(quality_gate=30),
        max_attempts=3,
        retry_unit_seconds=5.0,
        sleep=sleep or SleepRecorder(),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_scan_page_extracts_and_validates(amazon_page, pattern_store):
    fetcher = FakeFetcher(ok(amazon_page))
    scanner = make_scanner(fetcher, pattern_store)

    records = await scanner.scan_page(get_source("amazon"), "smartphones", 1)

    assert [r.product_id for r in records] == ["B0CQYJ5HPK", "B0SPARSE01"]
    assert fetcher.urls == ["https://www.amazon.in/s?k=smartphones&page=1"]

    record = records[0]
    assert record.specifications["ram"] == "8GB"
    assert record.specifications["storage"] == "128GB"
    assert record.specifications["battery"] == "6000mAh"
    assert record.quality_score == 100


@pytest.mark.asyncio
async def test_scan_page_dedupes_within_page(pattern_store, make_page, amazon_full_card):
    page = make_page(amazon_full_card, amazon_full_card)
    scanner = make_scanner(FakeFetcher(ok(page)), pattern_store)

    records = await scanner.scan_page(get_source("amazon"), "smartphones", 1)

    assert len(records) == 1


@pytest.mark.asyncio
async def test_blocked_page_retried_with_linear_backoff(amazon_page, pattern_store):
    blocked = ok("<html>" + ("x" * 20000) + "Enter the characters you see below</html>")
    sleep = SleepRecorder()
    fetcher = FakeFetcher(blocked, FetchResponse(status=503, body=""), ok(amazon_page))
    scanner = make_scanner(fetcher, pattern_store, sleep=sleep)

    records = await scanner.scan_page(get_source("amazon"), "smartphones", 3)

    assert len(records) == 2
    assert sleep.calls == [5.0, 10.0]
    assert len(fetcher.urls) == 3


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(pattern_store):
    sleep = SleepRecorder()
    fetcher = FakeFetcher(
        TransportError("ConnectTimeout"),
        ok("<html>tiny</html>"),
        FetchResponse(status=500, body="oops"),
    )
    scanner = make_scanner(fetcher, pattern_store, sleep=sleep)

    records = await scanner.scan_page(get_source("amazon"), "smartphones", 1)

    assert records == []
    assert len(fetcher.urls) == 3
    assert sleep.calls == [5.0, 10.0]


@pytest.mark.asyncio
async def test_unexpected_fetch_error_never_escapes(pattern_store):
    fetcher = FakeFetcher(RuntimeError("boom"), RuntimeError("boom"), RuntimeError("boom"))
    scanner = make_scanner(fetcher, pattern_store)

    assert await scanner.scan_page(get_source("amazon"), "smartphones", 1) == []


@pytest.mark.asyncio
async def test_no_cards_is_empty_page(pattern_store, make_page):
    page = make_page("<div class='no-results'>No results for your search</div>")
    scanner = make_scanner(FakeFetcher(ok(page)), pattern_store)

    assert await scanner.scan_page(get_source("amazon"), "smartphones", 9) == []


@pytest.mark.asyncio
async def test_card_failure_does_not_abort_page(amazon_page, pattern_store, monkeypatch):
    adapter = get_source("amazon")
    original = type(adapter).extract_candidate

    async def flaky(self, ctx):
        if ctx.attr("data-asin") == "B0SPARSE01":
            raise AttributeError("layout changed")
        return await original(self, ctx)

    monkeypatch.setattr(type(adapter), "extract_candidate", flaky)
    scanner = make_scanner(FakeFetcher(ok(amazon_page)), pattern_store)

    records = await scanner.scan_page(adapter, "smartphones", 1)

    assert [r.product_id for r in records] == ["B0CQYJ5HPK"]


@pytest.mark.asyncio
async def test_card_specifications_override_title_attributes(amazon_page, pattern_store, monkeypatch):
    adapter = get_source("amazon")
    original = type(adapter).extract_candidate

    async def with_specs(self, ctx):
        candidate = await original(self, ctx)
        if candidate is not None:
            candidate.specifications = {"storage": "256GB", "os": "Android 14"}
        return candidate

    monkeypatch.setattr(type(adapter), "extract_candidate", with_specs)
    scanner = make_scanner(FakeFetcher(ok(amazon_page)), pattern_store)

    records = await scanner.scan_page(adapter, "smartphones", 1)

    specs = records[0].specifications
    assert specs["storage"] == "256GB"
    assert specs["os"] == "Android 14"
    assert specs["ram"] == "8GB"


@pytest.mark.asyncio
async def test_low_quality_cards_dropped(pattern_store, make_page, amazon_full_card):
    bare_card = (
        '<div data-component-type="s-search-result" data-asin="B0BARE0001">'
        '<h2><span>Phone</span></h2>'
        '<span class="a-price"><span class="a-price-whole">4,999</span></span>'
        "</div>"
    )
    page = make_page(amazon_full_card, bare_card)
    scanner = make_scanner(FakeFetcher(ok(page)), pattern_store)

    records = await scanner.scan_page(get_source("amazon"), "smartphones", 1)

    assert [r.product_id for r in records] == ["B0CQYJ5HPK"]


@pytest.mark.asyncio
async def test_selector_outcomes_written_after_page(amazon_page, pattern_store):
    await pattern_store.apply_heal("amazon", "title", ["h2 span"])
    scanner = make_scanner(FakeFetcher(ok(amazon_page)), pattern_store)

    await scanner.scan_page(get_source("amazon"), "smartphones", 1)

    assert not pattern_store.dirty
    reloaded = PatternStore(pattern_store.path).load()
    assert reloaded["amazon"]["title"].confidence > 80
    assert reloaded["amazon"]["title"].last_worked is not None
