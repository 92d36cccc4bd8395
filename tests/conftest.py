"""Shared fixtures: sample result pages, a throwaway pattern store and catalog."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from dealhunt.db.models import Base
from dealhunt.ingest.pattern_store import PatternStore

PADDING = "<div class='footer-links'>" + ("Shop by category. " * 6000) + "</div>"

AMAZON_FULL_CARD = """
<div data-component-type="s-search-result" data-asin="B0CQYJ5HPK" class="s-result-item">
  <div class="s-card">
    <img class="s-image" src="https://m.media-amazon.com/images/I/71abcXYZ._AC_UY218_.jpg" alt="">
    <h2 class="a-size-mini">
      <a class="a-link-normal" href="/Samsung-Galaxy-Storage-Battery/dp/B0CQYJ5HPK/ref=sr_1_1?keywords=smartphones">
        <span class="a-size-medium a-text-normal">Samsung Galaxy M34 5G (Prism Silver, 8GB RAM, 128GB Storage) 6000mAh Battery</span>
      </a>
    </h2>
    <div class="a-row">
      <span aria-label="4.2 out of 5 stars">
        <i class="a-icon a-icon-star-small a-star-small-4"><span class="a-icon-alt">4.2 out of 5 stars</span></i>
      </span>
      <span aria-label="2,847 ratings">
        <a href="/product-reviews/B0CQYJ5HPK#customerReviews"><span class="a-size-base s-underline-text">2,847</span></a>
      </span>
    </div>
    <a class="a-link-normal" href="/dp/B0CQYJ5HPK">
      <span class="a-price" data-a-size="xl">
        <span class="a-offscreen">₹16,999</span>
        <span aria-hidden="true"><span class="a-price-symbol">₹</span><span class="a-price-whole">16,999</span></span>
      </span>
      <span class="a-price a-text-price" data-a-strike="true">
        <span class="a-offscreen">₹24,999</span><span aria-hidden="true">₹24,999</span>
      </span>
    </a>
  </div>
</div>
"""

AMAZON_SPARSE_CARD = """
<div data-component-type="s-search-result" data-asin="B0SPARSE01" class="s-result-item">
  <h2><span>Redmi 13C 5G</span></h2>
  <span class="a-price"><span class="a-price-whole">9,999</span></span>
  <span class="a-badge-text">(20% off)</span>
</div>
"""

AMAZON_SPONSORED_CARD = """
<div data-component-type="s-search-result" data-asin="" class="s-result-item AdHolder">
  <h2><a href="/sspa/click"><span>Sponsored placement</span></a></h2>
</div>
"""

FLIPKART_CARD = """
<div data-id="MOBGTAGPTB3VS24W">
  <div class="tUxRFH">
    <a class="CGtC98" href="/samsung-galaxy-m34/p/itm123?pid=MOBGTAGPTB3VS24W&amp;lid=LSTMOB123&amp;marketplace=FLIPKART">
      <div class="_4WELSP"><img class="DByuf4" src="https://rukminim2.flixcart.com/image/312/312/xif0q/mobile/phone.jpeg?q=70"></div>
      <div class="KzDlHZ">Samsung Galaxy M34 5G (Midnight Blue, 128 GB)</div>
      <span class="Y1HWO0"><div class="XQDdHH">4.3</div></span>
      <span class="Wphh3N"><span>1,23,456 Ratings&nbsp;&amp;&nbsp;8,912 Reviews</span></span>
      <div class="Nx9bqj _4b5DiR">₹16,499</div>
      <div class="yRaY8j ZYYwLA">₹24,499</div>
      <div class="UkUFwK"><span>32% off</span></div>
    </a>
  </div>
</div>
"""


def build_page(*cards: str) -> str:
    return "<html><body><div class='s-main-slot'>" + "".join(cards) + "</div>" + PADDING + "</body></html>"


@pytest.fixture
def amazon_page():
    return build_page(AMAZON_FULL_CARD, AMAZON_SPARSE_CARD, AMAZON_SPONSORED_CARD)


@pytest.fixture
def flipkart_page():
    return build_page(FLIPKART_CARD)


@pytest.fixture
def pattern_store(tmp_path):
    store = PatternStore(tmp_path / "selector_patterns.json")
    store.load()
    return store


@pytest.fixture
def make_page():
    return build_page


@pytest.fixture
def amazon_full_card():
    return AMAZON_FULL_CARD


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Throwaway sqlite catalog with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()
