"""
PricingPlan model - a marketplace pricing plan synced for one tenant.
"""

from datetime import datetime

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index, Boolean, Text, JSON
from sqlalchemy.orm import relationship

from .base import Base, new_id


class PricingPlan(Base):
    """
    Pricing plan from the marketplace.

    ``catalog_item_id`` is NULL when the parent product is unknown locally;
    consumers treat that as "unlinked", not as an error.
    """

    __tablename__ = "pricing_plans"

    id = Column(String(36), primary_key=True, default=new_id)

    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    catalog_item_id = Column(
        String(36),
        ForeignKey("catalog_items.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Marketplace identifiers
    upstream_id = Column(String(255), nullable=False)
    upstream_product_id = Column(String(255), nullable=False, default="")
    upstream_owner_id = Column(String(255), nullable=False)

    title = Column(String(500), nullable=False)
    description = Column(Text)

    # Pricing (cents)
    initial_price = Column(Integer)
    renewal_price = Column(Integer)
    currency = Column(String(16), nullable=False, default="usd")
    billing_period = Column(Integer)  # days
    plan_type = Column(String(16), nullable=False, default="renewal")
    trial_period_days = Column(Integer)
    expiration_days = Column(Integer)

    visibility = Column(String(32), nullable=False, default="visible")
    is_visible = Column(Boolean, default=True, nullable=False)
    stock = Column(Integer)
    unlimited_stock = Column(Boolean)
    member_count = Column(Integer)
    purchase_url = Column(String(1000))

    # Reconciliation
    outdated = Column(Boolean, default=False, nullable=False)
    sync_error = Column(Text)
    last_synced_at = Column(DateTime, default=datetime.utcnow)

    raw_data = Column(JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = relationship("Tenant", back_populates="pricing_plans")
    catalog_item = relationship("CatalogItem", back_populates="pricing_plans")

    __table_args__ = (
        Index("idx_pricing_plans_tenant_upstream", "tenant_id", "upstream_id", unique=True),
        Index("idx_pricing_plans_tenant_outdated", "tenant_id", "outdated"),
    )

    def __repr__(self):
        return (
            f"<PricingPlan(id={self.id}, tenant={self.tenant_id}, "
            f"upstream_id={self.upstream_id}, catalog_item={self.catalog_item_id})>"
        )
