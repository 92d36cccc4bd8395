"""Source adapter base class and shared value parsers."""

from __future__ import annotations

import logging
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

from selectolax.parser import HTMLParser, Node

from dealhunt.ingest import markup
from dealhunt.ingest.base import CandidateRecord
from dealhunt.ingest.selector_resolver import CardContext

logger = logging.getLogger(__name__)

# Common bot/blocked page indicators (lowercase match)
BLOCK_PATTERNS = [
    ("enter the characters you see below", "Captcha required"),
    ("/errors/validatecaptcha", "Captcha required"),
    ("robot check", "Robot check"),
    ("verify you are a human", "Human verification required"),
    ("access denied", "Access denied"),
    ("unusual traffic", "Unusual traffic detected"),
    ("pardon our interruption", "Bot protection"),
    ("request has been blocked", "Request blocked"),
]

MAX_PRICE = Decimal("10000000")

_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
_BADGE_RE = re.compile(r"(\d+)\s*%\s*off", re.IGNORECASE)
_BRAND_RE = re.compile(r"^([A-Za-z0-9]+)")


class SourceAdapter:
    """
    Per-source capability: where results live, how to tell a real page
    from a block page, and how to turn one result card into a candidate.
    """

    name: str = "generic"
    display_name: str = "Generic"
    base_url: str = ""
    search_term: str = ""
    category: Optional[str] = None
    subcategory: Optional[str] = None
    card_selector: str = ""
    min_body_size: int = 10000
    block_patterns: list[tuple[str, str]] = BLOCK_PATTERNS
    default_selectors: dict[str, list[str]] = {}

    def build_search_url(self, query: str, page: int) -> str:
        raise NotImplementedError

    def block_reason(self, body: str) -> Optional[str]:
        """Return why ``body`` looks like an anti-automation page, or None."""
        if not body:
            return "Empty response"
        if len(body) < self.min_body_size:
            return f"Body too small ({len(body)} < {self.min_body_size} chars)"
        haystack = body.lower()
        for needle, reason in self.block_patterns:
            if needle in haystack:
                return reason
        return None

    def is_blocked(self, body: str) -> bool:
        return self.block_reason(body) is not None

    def find_cards(self, document: HTMLParser) -> list[Node]:
        return markup.find(document, self.card_selector)

    async def extract_candidate(self, ctx: CardContext) -> Optional[CandidateRecord]:
        raise NotImplementedError

    def card_context(self, resolver, card: Node) -> CardContext:
        return CardContext(
            resolver=resolver,
            source=self.name,
            element=card,
            default_selectors=self.default_selectors,
        )

    # ------------------------------------------------------------------
    # Value parsers
    # ------------------------------------------------------------------

    @staticmethod
    def parse_price(price_text: Optional[str]) -> Optional[Decimal]:
        """Parse a price like '₹54,999' or '$1,299.00'; None outside (0, 10M)."""
        if not price_text:
            return None

        cleaned = re.sub(r"[^\d.,]", " ", price_text).replace(",", "")
        match = _NUMBER_RE.search(cleaned)
        if not match:
            return None
        try:
            price = Decimal(match.group())
        except InvalidOperation as exc:
            logger.debug("Failed to parse price: %s", price_text, exc_info=exc)
            return None
        if not Decimal("0") < price < MAX_PRICE:
            return None
        return price

    @staticmethod
    def parse_rating(text: Optional[str]) -> Optional[float]:
        """Parse '4.5 out of 5 stars' (or a bare '4.5'); None outside [0, 5]."""
        if not text:
            return None
        match = re.search(r"(\d+(?:\.\d+)?)\s*out of", text, re.IGNORECASE)
        if not match:
            match = _NUMBER_RE.search(text)
        if not match:
            return None
        rating = float(match.group(1) if match.groups() else match.group())
        return rating if 0 <= rating <= 5 else None

    @staticmethod
    def parse_review_count(text: Optional[str]) -> Optional[int]:
        """Parse '2,847 ratings', '2.8K', '1.2M' or a bare count."""
        if not text:
            return None
        match = re.search(r"([\d,]+)\s*ratings?", text, re.IGNORECASE)
        if match:
            return int(match.group(1).replace(",", ""))
        match = re.search(r"(\d+(?:\.\d+)?)\s*K\b", text, re.IGNORECASE)
        if match:
            return round(float(match.group(1)) * 1000)
        match = re.search(r"(\d+(?:\.\d+)?)\s*M\b", text, re.IGNORECASE)
        if match:
            return round(float(match.group(1)) * 1000000)
        match = re.search(r"\d[\d,]*", text)
        if match:
            return int(match.group().replace(",", ""))
        return None

    def absolute_url(self, href: Optional[str], keep_query: bool = False) -> Optional[str]:
        """Join a relative href to the source base URL, dropping the query string."""
        if not href:
            return None
        url = urljoin(self.base_url, href)
        if keep_query:
            return url
        parts = urlsplit(url)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))

    @staticmethod
    def discount_from_prices(current: Optional[Decimal], original: Optional[Decimal]) -> int:
        if not current or not original or original <= current:
            return 0
        return int(((original - current) / original * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @staticmethod
    def apply_discount_badge(
        card_text: str,
        current: Optional[Decimal],
        original: Optional[Decimal],
        discount: int,
    ) -> tuple[Optional[Decimal], int]:
        """
        Use an 'NN% off' badge when the prices imply no discount.

        Returns the (possibly back-computed) original price and discount.
        """
        if discount or not current:
            return original, discount
        match = _BADGE_RE.search(card_text or "")
        if not match:
            return original, discount
        badge = int(match.group(1))
        if not 0 < badge < 100:
            return original, discount
        back_computed = (current / (1 - Decimal(badge) / 100)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return back_computed, badge

    @staticmethod
    def derive_brand(title: str) -> str:
        """First alphanumeric token of the title, else 'Unknown'."""
        first = title.split(" ")[0] if title else ""
        if first and first.isalnum():
            return first
        match = _BRAND_RE.match(title or "")
        return match.group(1) if match else "Unknown"
