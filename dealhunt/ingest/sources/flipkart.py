"""Flipkart search-result adapter."""

import logging
import re
from typing import Optional
from urllib.parse import quote

from selectolax.parser import Node

from dealhunt.ingest import markup
from dealhunt.ingest.base import CandidateRecord
from dealhunt.ingest.selector_resolver import CardContext
from dealhunt.ingest.sources.base import BLOCK_PATTERNS, SourceAdapter

logger = logging.getLogger(__name__)

_IMAGE_SIZE_RE = re.compile(r"/\d+/\d+/")
CAPTCHA_BODY_LIMIT = 100000


class FlipkartSource(SourceAdapter):
    """Flipkart mobile search results."""

    name = "flipkart"
    display_name = "Flipkart"
    base_url = "https://www.flipkart.com"
    search_term = "smartphones"
    category = "Smartphones"
    subcategory = "Mobile Phones"
    card_selector = "[data-id]"
    min_body_size = 50000
    block_patterns = BLOCK_PATTERNS + [
        ("are you a human", "Human verification required"),
    ]

    # Flipkart rotates its obfuscated class names; learned selectors take over
    default_selectors = {
        "title": [
            'a[href*="/p/"][title]',
            "a.wjcEIp",
            "div.KzDlHZ",
            'a[href*="/p/"]',
        ],
        "current_price": [
            "div.hZ3P6w.DeU9vF",
            "div.hZ3P6w.KTtanE",
            "div.hZ3P6w",
            "div.Nx9bqj",
        ],
        "original_price": [
            "div.kRYCnD",
            "div.yRaY8j",
        ],
        "rating": [
            "div.XQDdHH",
            "span.Y1HWO0 div",
        ],
        "review_count": [
            "span.Wphh3N",
        ],
        "image": [
            "img.DByuf4",
            "img",
        ],
        "product_url": [
            'a[href*="/p/"]',
        ],
    }

    def build_search_url(self, query: str, page: int) -> str:
        return f"{self.base_url}/search?q={quote(query)}&page={page}"

    def block_reason(self, body: str) -> Optional[str]:
        reason = super().block_reason(body)
        if reason:
            return reason
        # Captcha interstitials are small; real result pages mention it in scripts
        if len(body) < CAPTCHA_BODY_LIMIT and "captcha" in body.lower():
            return "Captcha required"
        return None

    @staticmethod
    def _title_from_nodes(nodes: list[Node]) -> str:
        node = nodes[0]
        title = markup.attr(node, "title") or markup.text(node)
        return title.replace("Add to Compare", "").strip()

    def _product_url_from_nodes(self, nodes: list[Node]) -> Optional[str]:
        href = markup.attr(nodes[0], "href")
        if not href:
            return None
        # Keep ?pid= but drop tracking parameters
        url = self.absolute_url(href, keep_query=True)
        return url.split("&lid=")[0]

    @staticmethod
    def _image_from_nodes(nodes: list[Node]) -> Optional[str]:
        src = markup.attr(nodes[0], "src")
        if not src:
            return None
        return _IMAGE_SIZE_RE.sub("/416/416/", src)

    async def extract_candidate(self, ctx: CardContext) -> Optional[CandidateRecord]:
        product_id = ctx.attr("data-id")
        if not product_id:
            return None

        title = await ctx.extract("title", self._title_from_nodes)
        if not title:
            logger.debug(f"No title for flipkart card {product_id}")
            return None

        current_price = await ctx.extract(
            "current_price", lambda nodes: self.parse_price(markup.text(nodes[0]))
        )
        original_price = await ctx.extract(
            "original_price", lambda nodes: self.parse_price(markup.text(nodes[0]))
        )
        rating = await ctx.extract(
            "rating", lambda nodes: self.parse_rating(markup.text(nodes[0]))
        )
        review_count = await ctx.extract(
            "review_count",
            lambda nodes: self.parse_review_count(markup.text(nodes[0])),
            fallback=0,
        )
        image_url = await ctx.extract("image", self._image_from_nodes)
        product_url = await ctx.extract(
            "product_url",
            self._product_url_from_nodes,
            fallback=f"{self.base_url}/product?pid={product_id}",
        )

        discount = self.discount_from_prices(current_price, original_price)
        original_price, discount = self.apply_discount_badge(
            ctx.text(), current_price, original_price, discount
        )

        return CandidateRecord(
            source=self.name,
            product_id=product_id,
            title=title,
            brand=self.derive_brand(title),
            category=self.category,
            subcategory=self.subcategory,
            image_url=image_url,
            product_url=product_url,
            current_price=current_price,
            original_price=original_price,
            discount_percent=discount,
            rating=rating,
            review_count=review_count,
        )
