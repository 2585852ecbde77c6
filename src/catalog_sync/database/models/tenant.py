"""
Tenant model - a local account mapped to one marketplace company.
"""

from datetime import datetime

from sqlalchemy import Column, String, Boolean, DateTime, Text
from sqlalchemy.orm import relationship

from .base import Base, new_id


class Tenant(Base):
    """
    Local customer account.

    ``upstream_id`` is the marketplace company id. It is expected to be
    unique across tenants, but the schema deliberately does not enforce it:
    duplicates are detected before every sync and block syncing instead.
    """

    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=new_id)

    name = Column(String(255), nullable=False)
    upstream_id = Column(String(255), nullable=True, index=True)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Fernet-encrypted tenant marketplace key; the app-level key is used when empty
    api_credential = Column(Text, nullable=True)

    last_sync_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    catalog_items = relationship(
        "CatalogItem", back_populates="tenant", cascade="all, delete-orphan"
    )
    pricing_plans = relationship(
        "PricingPlan", back_populates="tenant", cascade="all, delete-orphan"
    )
    sync_logs = relationship(
        "SyncLog", back_populates="tenant", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Tenant(id={self.id}, name='{self.name}', upstream_id='{self.upstream_id}')>"
