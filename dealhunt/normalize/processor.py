"""Normalize candidate records and gate them on a quality score."""

import logging
import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from dealhunt import metrics
from dealhunt.config import settings
from dealhunt.ingest.base import CandidateRecord, ProductRecord

logger = logging.getLogger(__name__)

# Quality penalties; several may fire for the same underlying gap
PENALTY_NO_RATING = 15
PENALTY_NO_REVIEWS = 10
PENALTY_NO_SPECS = 20
PENALTY_FEW_SPECS = 10
PENALTY_NO_DISCOUNT = 5
PENALTY_NO_IMAGE = 10
PENALTY_SHORT_TITLE = 10

MIN_SPECS = 3
MIN_TITLE_LENGTH = 20


class ValidationRejection(Exception):
    """Raised when a candidate record cannot enter the catalog."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason


def _to_decimal(value: Any) -> Optional[Decimal]:
    """Coerce a raw number-ish value, returning None for anything non-finite."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).replace(",", "").strip())
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) or math.isinf(number) else number


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_quality_score(
    rating: Optional[float],
    review_count: int,
    specifications: dict,
    discount_percent: int,
    image_url: Optional[str],
    title: str,
) -> int:
    """Start at 100 and subtract every applicable penalty, floored at 0."""
    score = 100
    if rating is None:
        score -= PENALTY_NO_RATING
    if review_count == 0:
        score -= PENALTY_NO_REVIEWS
    if not specifications:
        score -= PENALTY_NO_SPECS
    if len(specifications) < MIN_SPECS:
        score -= PENALTY_FEW_SPECS
    if discount_percent == 0:
        score -= PENALTY_NO_DISCOUNT
    if not image_url:
        score -= PENALTY_NO_IMAGE
    if len(title or "") < MIN_TITLE_LENGTH:
        score -= PENALTY_SHORT_TITLE
    return max(0, score)


class ProductNormalizer:
    """Normalize and validate candidate records."""

    def __init__(
        self,
        quality_gate: Optional[int] = None,
        max_discount_percent: Optional[int] = None,
        max_review_count: Optional[int] = None,
    ):
        self.quality_gate = quality_gate if quality_gate is not None else settings.quality_gate
        self.max_discount_percent = max_discount_percent or settings.max_discount_percent
        self.max_review_count = max_review_count or settings.max_review_count

    def normalize(self, candidate: CandidateRecord) -> ProductRecord:
        """
        Normalize a candidate record.

        Args:
            candidate: Raw extracted values

        Returns:
            ProductRecord carrying its quality score

        Raises:
            ValidationRejection: If the price is unusable or the quality score
                falls below the gate
        """
        # Prices
        current_price = _to_decimal(candidate.current_price)
        if current_price is None or current_price <= 0:
            raise ValidationRejection(
                "invalid_price",
                f"Invalid current price {candidate.current_price!r} for {candidate.product_id}",
            )

        original_price = _to_decimal(candidate.original_price)
        if original_price is None or original_price < 0:
            original_price = current_price

        discount = _to_decimal(candidate.discount_percent)
        if original_price < current_price:
            # Source reported the pair inverted
            original_price, current_price = current_price, original_price
            discount = Decimal(_round_half_up((original_price - current_price) / original_price * 100))

        # Discount
        discount_percent = 0 if discount is None else _round_half_up(discount)
        discount_percent = max(0, min(self.max_discount_percent, discount_percent))

        # Rating
        rating = _to_float(candidate.rating)
        if rating is not None and not 0 <= rating <= 5:
            rating = None

        # Review count
        review_count = _to_decimal(candidate.review_count)
        if review_count is None or review_count < 0:
            review_count = 0
        review_count = min(int(review_count), self.max_review_count)

        # Specifications
        specifications = candidate.specifications
        if not isinstance(specifications, dict):
            specifications = {}

        quality_score = calculate_quality_score(
            rating=rating,
            review_count=review_count,
            specifications=specifications,
            discount_percent=discount_percent,
            image_url=candidate.image_url,
            title=candidate.title,
        )
        if quality_score < self.quality_gate:
            raise ValidationRejection(
                "low_quality",
                f"Quality score {quality_score} below gate {self.quality_gate} "
                f"for {candidate.product_id}",
            )

        return ProductRecord(
            source=candidate.source,
            product_id=candidate.product_id,
            title=candidate.title,
            brand=candidate.brand,
            category=candidate.category,
            subcategory=candidate.subcategory,
            image_url=candidate.image_url or None,
            product_url=candidate.product_url or None,
            current_price=current_price,
            original_price=original_price,
            discount_percent=discount_percent,
            is_available=bool(candidate.is_available),
            rating=rating,
            review_count=review_count,
            specifications=dict(specifications),
            quality_score=quality_score,
        )

    def validate(self, candidate: CandidateRecord) -> Optional[ProductRecord]:
        """Normalize a candidate, returning None (and logging) on rejection."""
        try:
            return self.normalize(candidate)
        except ValidationRejection as e:
            metrics.record_rejected(candidate.source, e.reason)
            logger.debug(f"Rejected {candidate.source}/{candidate.product_id}: {e}")
            return None


# Global normalizer instance
product_normalizer = ProductNormalizer()
