"""Merge validated records into the product catalog."""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dealhunt import metrics
from dealhunt.db.models import PriceHistory, Product
from dealhunt.ingest.base import ProductRecord

logger = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """Raised when a single record could not be written."""

    def __init__(self, source: str, product_id: str, message: str):
        super().__init__(f"{source}/{product_id}: {message}")
        self.source = source
        self.product_id = product_id


@dataclass(frozen=True)
class UpsertResult:
    id: int
    is_new: bool


@dataclass(frozen=True)
class PriceSnapshot:
    """Price and availability state at one observation."""

    price: Decimal
    original_price: Optional[Decimal]
    discount_percent: int
    is_available: bool
    recorded_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: ProductRecord) -> "PriceSnapshot":
        return cls(
            price=record.current_price,
            original_price=record.original_price,
            discount_percent=record.discount_percent,
            is_available=record.is_available,
        )


def _rating_to_decimal(rating: Optional[float]) -> Optional[Decimal]:
    if rating is None:
        return None
    return Decimal(str(round(rating, 1)))


def merge_into(product: Product, record: ProductRecord, now: datetime) -> None:
    """
    Apply an incoming record to a stored product.

    Identity, price and availability always follow the incoming record.
    Enrichment fields and rating only overwrite when the incoming value is
    present, review count never decreases and specifications are only
    replaced by a non-empty mapping.
    """
    product.title = record.title
    product.brand = record.brand
    product.category = record.category
    product.current_price = record.current_price
    product.original_price = record.original_price
    product.discount_percent = record.discount_percent
    product.is_available = record.is_available
    product.quality_score = record.quality_score

    if record.subcategory is not None:
        product.subcategory = record.subcategory
    if record.image_url is not None:
        product.image_url = record.image_url
    if record.product_url is not None:
        product.product_url = record.product_url

    if record.rating is not None:
        product.rating = _rating_to_decimal(record.rating)
    product.review_count = max(product.review_count or 0, record.review_count)
    if record.specifications:
        product.specifications = dict(record.specifications)

    product.scrape_count = (product.scrape_count or 0) + 1
    product.last_updated = now


def new_product(record: ProductRecord, now: datetime) -> Product:
    return Product(
        source=record.source,
        product_id=record.product_id,
        title=record.title,
        brand=record.brand,
        category=record.category,
        subcategory=record.subcategory,
        image_url=record.image_url,
        product_url=record.product_url,
        current_price=record.current_price,
        original_price=record.original_price,
        discount_percent=record.discount_percent,
        is_available=record.is_available,
        rating=_rating_to_decimal(record.rating),
        review_count=record.review_count,
        specifications=dict(record.specifications),
        quality_score=record.quality_score,
        scrape_count=1,
        first_seen=now,
        last_updated=now,
    )


class Reconciler:
    """
    Insert-or-update of validated records with an append-only price history.

    Each upsert runs in its own session and transaction: the product row and
    its price snapshot commit together or not at all. Upserts for the same
    (source, product_id) are serialized in-process; a cross-process insert
    race surfaces as IntegrityError and is retried once as an update.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._locks: defaultdict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    async def upsert(self, record: ProductRecord) -> UpsertResult:
        """
        Merge one record into the catalog.

        Args:
            record: Validated product record

        Returns:
            UpsertResult with the catalog id and whether the row was created

        Raises:
            PersistenceError: If the write failed
        """
        key = (record.source, record.product_id)
        async with self._locks[key]:
            for attempt in (1, 2):
                try:
                    result = await self._upsert_once(record)
                except IntegrityError as e:
                    if attempt == 1:
                        logger.warning(
                            f"Insert race for {record.source}/{record.product_id}, retrying as update"
                        )
                        continue
                    metrics.record_persistence_error(record.source)
                    raise PersistenceError(record.source, record.product_id, str(e.orig)) from e
                except (SQLAlchemyError, OSError) as e:
                    # Driver-level connection failures arrive unwrapped
                    metrics.record_persistence_error(record.source)
                    raise PersistenceError(
                        record.source, record.product_id, f"{type(e).__name__}: {e}"
                    ) from e

                metrics.record_upsert(record.source, result.is_new)
                return result

    async def _upsert_once(self, record: ProductRecord) -> UpsertResult:
        now = datetime.utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                stmt = (
                    select(Product)
                    .where(
                        Product.source == record.source,
                        Product.product_id == record.product_id,
                    )
                    .with_for_update()
                )
                product = (await session.execute(stmt)).scalar_one_or_none()

                is_new = product is None
                if is_new:
                    product = new_product(record, now)
                    session.add(product)
                    await session.flush()
                else:
                    merge_into(product, record, now)

                self._add_snapshot(session, product.id, PriceSnapshot.from_record(record), now)
                product_id = product.id

        logger.debug(
            f"{'Inserted' if is_new else 'Updated'} {record.source}/{record.product_id} (id {product_id})"
        )
        return UpsertResult(id=product_id, is_new=is_new)

    async def append_price_history(self, product_id: int, snapshot: PriceSnapshot) -> None:
        """Append one snapshot for an existing catalog row."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    self._add_snapshot(session, product_id, snapshot, datetime.utcnow())
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError("catalog", str(product_id), str(e)) from e

    @staticmethod
    def _add_snapshot(
        session: AsyncSession,
        product_id: int,
        snapshot: PriceSnapshot,
        now: datetime,
    ) -> None:
        session.add(
            PriceHistory(
                product_id=product_id,
                price=snapshot.price,
                original_price=snapshot.original_price,
                discount_percent=snapshot.discount_percent,
                is_available=snapshot.is_available,
                recorded_at=snapshot.recorded_at or now,
            )
        )
