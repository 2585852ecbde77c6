"""
CatalogItem model - a marketplace product synced for one tenant.
"""

from datetime import datetime

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index, Boolean, Text, JSON
from sqlalchemy.orm import relationship

from .base import Base, new_id


class CatalogItem(Base):
    """
    Product from the marketplace.

    Stores product data synced from the marketplace API with:
    - Multi-tenant isolation via tenant_id
    - Display fields used by the AI prompt builder
    - Reconciliation bookkeeping (outdated flag, last sync error)
    """

    __tablename__ = "catalog_items"

    id = Column(String(36), primary_key=True, default=new_id)

    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Marketplace identifiers
    upstream_id = Column(String(255), nullable=False)
    upstream_owner_id = Column(String(255), nullable=False)

    # Product details
    title = Column(String(500), nullable=False)
    description = Column(Text)
    price = Column(Integer)  # cents
    currency = Column(String(16))
    product_type = Column(String(32), nullable=False, default="other")
    access_type = Column(String(32), nullable=False, default="one_time")
    billing_period = Column(String(16))

    is_active = Column(Boolean, default=True, nullable=False)
    is_visible = Column(Boolean, default=True, nullable=False)

    category = Column(String(255))
    tags = Column(JSON, default=list)
    image_url = Column(String(1000))
    features = Column(JSON, default=list)
    benefits = Column(JSON, default=list)
    target_audience = Column(String(500))

    # Local-only setting, never overwritten by sync
    include_in_ai = Column(Boolean, default=True, nullable=False)

    # Reconciliation
    outdated = Column(Boolean, default=False, nullable=False)
    sync_error = Column(Text)
    last_synced_at = Column(DateTime, default=datetime.utcnow)

    raw_data = Column(JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = relationship("Tenant", back_populates="catalog_items")
    pricing_plans = relationship("PricingPlan", back_populates="catalog_item")

    __table_args__ = (
        Index("idx_catalog_items_tenant_upstream", "tenant_id", "upstream_id", unique=True),
        Index("idx_catalog_items_tenant_outdated", "tenant_id", "outdated"),
    )

    def __repr__(self):
        return (
            f"<CatalogItem(id={self.id}, tenant={self.tenant_id}, "
            f"upstream_id={self.upstream_id}, outdated={self.outdated})>"
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for downstream consumers."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "upstream_id": self.upstream_id,
            "title": self.title,
            "description": self.description,
            "price": self.price,
            "currency": self.currency,
            "product_type": self.product_type,
            "access_type": self.access_type,
            "billing_period": self.billing_period,
            "is_active": self.is_active,
            "is_visible": self.is_visible,
            "category": self.category,
            "tags": self.tags or [],
            "image_url": self.image_url,
            "features": self.features or [],
            "benefits": self.benefits or [],
            "target_audience": self.target_audience,
            "include_in_ai": self.include_in_ai,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
        }
