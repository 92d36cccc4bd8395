"""Amazon India search-result adapter."""

import logging
import re
from decimal import Decimal
from typing import Optional
from urllib.parse import quote_plus

from selectolax.parser import Node

from dealhunt.ingest import markup
from dealhunt.ingest.base import CandidateRecord
from dealhunt.ingest.selector_resolver import CardContext
from dealhunt.ingest.sources.base import SourceAdapter

logger = logging.getLogger(__name__)

# "..._AC_UY218_.jpg" -> "....jpg" (full-size image)
_IMAGE_SIZE_RE = re.compile(r"\._[A-Z]{2}[A-Z0-9_,]*_\.")


class AmazonSource(SourceAdapter):
    """Amazon.in smartphone search results."""

    name = "amazon"
    display_name = "Amazon India"
    base_url = "https://www.amazon.in"
    search_term = "smartphones"
    category = "Smartphones"
    subcategory = "Mobile Phones"
    card_selector = '[data-component-type="s-search-result"]'
    min_body_size = 10000

    # Ordered by priority - most common/reliable first
    default_selectors = {
        "title": [
            "h2 a span",
            "h2 span",
            ".a-text-normal",
        ],
        "current_price": [
            ".a-price .a-price-whole",
            ".a-price .a-offscreen",
        ],
        "original_price": [
            '.a-price[data-a-strike="true"] .a-offscreen',
            ".a-text-price .a-offscreen",
            ".a-text-price span",
        ],
        "rating": [
            "i.a-icon-star-small .a-icon-alt",
            ".a-icon-alt",
            '[aria-label*="out of 5 stars"]',
        ],
        "review_count": [
            '[aria-label*="ratings"]',
            'a[href*="customerReviews"] span',
            ".s-underline-text",
        ],
        "image": [
            "img.s-image",
            "img",
        ],
        "product_url": [
            "h2 a",
            'a[href*="/dp/"]',
        ],
    }

    def build_search_url(self, query: str, page: int) -> str:
        return f"{self.base_url}/s?k={quote_plus(query)}&page={page}"

    @classmethod
    def _price_from_node(cls, node: Node) -> Optional[Decimal]:
        """Whole-part nodes carry the paise in a sibling '.a-price-fraction'."""
        price = cls.parse_price(markup.text(node))
        if price is None or price != price.to_integral_value():
            return price
        parent = node.parent
        fraction = markup.text(markup.find_first(parent, ".a-price-fraction")) if parent else ""
        if fraction.isdigit():
            price += Decimal(fraction) / (10 ** len(fraction))
        return price

    def _rating_from_nodes(self, nodes: list[Node]) -> Optional[float]:
        node = nodes[0]
        return self.parse_rating(markup.text(node) or markup.attr(node, "aria-label"))

    def _reviews_from_nodes(self, nodes: list[Node]) -> Optional[int]:
        node = nodes[0]
        return self.parse_review_count(markup.attr(node, "aria-label") or markup.text(node))

    @staticmethod
    def _image_from_nodes(nodes: list[Node]) -> Optional[str]:
        src = markup.attr(nodes[0], "src")
        if not src or src.startswith("data:"):
            return None
        return _IMAGE_SIZE_RE.sub(".", src)

    async def extract_candidate(self, ctx: CardContext) -> Optional[CandidateRecord]:
        asin = ctx.attr("data-asin")
        if not asin:
            return None

        title = await ctx.extract("title", lambda nodes: markup.text(nodes[0]))
        if not title:
            logger.debug(f"No title for amazon card {asin}")
            return None

        current_price = await ctx.extract(
            "current_price", lambda nodes: self._price_from_node(nodes[0])
        )
        original_price = await ctx.extract(
            "original_price", lambda nodes: self.parse_price(markup.text(nodes[0]))
        )
        rating = await ctx.extract("rating", self._rating_from_nodes)
        review_count = await ctx.extract("review_count", self._reviews_from_nodes, fallback=0)
        image_url = await ctx.extract("image", self._image_from_nodes)
        product_url = await ctx.extract(
            "product_url",
            lambda nodes: self.absolute_url(markup.attr(nodes[0], "href")),
            fallback=f"{self.base_url}/dp/{asin}",
        )

        discount = self.discount_from_prices(current_price, original_price)
        original_price, discount = self.apply_discount_badge(
            ctx.text(), current_price, original_price, discount
        )

        return CandidateRecord(
            source=self.name,
            product_id=asin,
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
