"""Core record types shared by the extraction pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional


@dataclass
class CandidateRecord:
    """Raw values extracted from one result card, before validation.

    Any field may be missing or malformed; the normalizer decides what survives.
    """

    source: str
    product_id: str
    title: str
    brand: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    image_url: Optional[str] = None
    product_url: Optional[str] = None
    current_price: Any = None
    original_price: Any = None
    discount_percent: Any = None
    is_available: bool = True
    rating: Any = None
    review_count: Any = None
    specifications: Any = None


@dataclass
class ProductRecord:
    """A normalized record that passed the quality gate."""

    source: str
    product_id: str
    title: str
    current_price: Decimal
    original_price: Decimal
    discount_percent: int
    quality_score: int
    brand: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    image_url: Optional[str] = None
    product_url: Optional[str] = None
    is_available: bool = True
    rating: Optional[float] = None
    review_count: int = 0
    specifications: dict[str, Any] = field(default_factory=dict)


@dataclass
class FetchResponse:
    """What the page scanner needs from a fetch: status and body only."""

    status: int
    body: str
    url: str = ""
    fetched_at: datetime = None

    def __post_init__(self):
        if self.fetched_at is None:
            self.fetched_at = datetime.utcnow()
