from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# --- SQLAlchemy base ---------------------------------------------------------

class Base(DeclarativeBase):
    """Declarative base for all models."""
    pass


# --- Enums -------------------------------------------------------------------

JOB_STATUSES = ("pending", "running", "completed", "failed", "cancelled")
TERMINAL_STATUSES = ("completed", "failed", "cancelled")


# --- Models ------------------------------------------------------------------

class JobRecord(Base):
    """Durable row behind a queued job. Only `DatabaseQueue` writes here."""

    __tablename__ = "jobs"
    __table_args__ = (
        # Claim query: pending rows ordered by scheduled_at
        Index("ix_jobs_status_scheduled_at", "status", "scheduled_at"),
        Index("ix_jobs_status_updated_at", "status", "updated_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=2)

    payload: Mapped[Optional[dict]] = mapped_column(JSON)
    result: Mapped[Optional[dict]] = mapped_column(JSON)
    error: Mapped[Optional[str]] = mapped_column(Text)

    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)

    scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<JobRecord id={self.id} type={self.type} status={self.status} attempts={self.attempts}>"


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        # Logical identity across re-scrapes
        UniqueConstraint("source_type", "source_id", "reseller_id", name="uq_product_source_reseller"),
        Index("ix_products_reseller_id", "reseller_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    source_type: Mapped[str] = mapped_column(String(40), nullable=False)
    source_id: Mapped[str] = mapped_column(String(120), nullable=False)
    reseller_id: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(400), nullable=False)
    handle: Mapped[Optional[str]] = mapped_column(String(200), index=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    url: Mapped[Optional[str]] = mapped_column(String(600))
    brand: Mapped[Optional[str]] = mapped_column(String(120), index=True)
    category: Mapped[Optional[str]] = mapped_column(String(120), index=True)

    images: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    tags: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    extra: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    variants: Mapped[list["ProductVariant"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductVariant.position",
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Product id={self.id} source={self.source_type}:{self.source_id} name={self.name!r}>"


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    product: Mapped["Product"] = relationship(back_populates="variants")

    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(120))
    price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="INR", nullable=False)
    available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    url: Mapped[Optional[str]] = mapped_column(String(600))
    images: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    options: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    source_id: Mapped[Optional[str]] = mapped_column(String(120))

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<ProductVariant id={self.id} product_id={self.product_id} name={self.name!r}>"


__all__ = [
    "Base",
    "JobRecord",
    "Product",
    "ProductVariant",
    "JOB_STATUSES",
    "TERMINAL_STATUSES",
]
