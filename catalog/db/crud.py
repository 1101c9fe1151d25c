from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import selectinload, sessionmaker

from catalog.db.models import Product, ProductVariant
from catalog.db.session import SessionLocal, get_session
from catalog.scraper.types import ScrapedProduct

log = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class SaveOutcome:
    product_id: int
    created: bool
    variants: int
    images: int


def _variant_rows(product: ScrapedProduct) -> list[ProductVariant]:
    return [
        ProductVariant(
            position=pos,
            name=v.name,
            sku=v.sku or None,
            price=v.price,
            currency=v.currency,
            available=v.available,
            url=v.url or None,
            images=list(v.images),
            options=dict(v.options),
            source_id=v.source_id or None,
        )
        for pos, v in enumerate(product.variants)
    ]


class ProductRepository:
    """Product persistence: upsert by (source_type, source_id, reseller_id).

    The variant set of a product is replaced in the same transaction as the
    product row, so readers never see a partial set.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._factory = session_factory or SessionLocal

    def save(self, product: ScrapedProduct, reseller_id: str) -> SaveOutcome:
        if not product.source_id:
            raise ValueError("product has no source_id")
        if not product.variants:
            raise ValueError(f"product {product.source_id} has no variants")

        now = _now()
        with get_session(self._factory) as session:
            try:
                row = session.execute(
                    select(Product).where(
                        Product.source_type == product.source_type,
                        Product.source_id == product.source_id,
                        Product.reseller_id == reseller_id,
                    )
                ).scalar_one_or_none()

                created = row is None
                if created:
                    row = Product(
                        source_type=product.source_type,
                        source_id=product.source_id,
                        reseller_id=reseller_id,
                        created_at=now,
                    )
                    session.add(row)

                row.name = product.name
                row.handle = product.handle or None
                row.description = product.description or None
                row.url = product.url or None
                row.brand = product.brand or None
                row.category = product.category or None
                row.images = list(product.images)
                row.tags = sorted(product.tags)
                row.extra = dict(product.metadata)
                row.updated_at = now
                session.flush()  # ensure row.id

                if not created:
                    session.execute(delete(ProductVariant).where(ProductVariant.product_id == row.id))
                    session.expire(row, ["variants"])
                for variant in _variant_rows(product):
                    variant.product_id = row.id
                    session.add(variant)

                session.commit()
            except Exception:
                session.rollback()
                raise

            log.debug(
                "product-save source=%s:%s reseller=%s created=%s variants=%d",
                product.source_type, product.source_id, reseller_id, created, len(product.variants),
            )
            return SaveOutcome(
                product_id=row.id,
                created=created,
                variants=len(product.variants),
                images=len(product.images),
            )

    def get_product(
        self, source_type: str, source_id: str, reseller_id: str
    ) -> Optional[Product]:
        with get_session(self._factory) as session:
            return session.execute(
                select(Product)
                .options(selectinload(Product.variants))
                .where(
                    Product.source_type == source_type,
                    Product.source_id == source_id,
                    Product.reseller_id == reseller_id,
                )
            ).scalar_one_or_none()

    def list_products(self, reseller_id: Optional[str] = None, limit: int = 100) -> Sequence[Product]:
        with get_session(self._factory) as session:
            stmt = select(Product).options(selectinload(Product.variants)).order_by(Product.id.desc())
            if reseller_id:
                stmt = stmt.where(Product.reseller_id == reseller_id)
            return session.execute(stmt.limit(limit)).scalars().all()


__all__ = ["ProductRepository", "SaveOutcome"]
