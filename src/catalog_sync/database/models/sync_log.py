"""
SyncLog model - history of sync runs.
"""

from datetime import datetime

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index, Text
from sqlalchemy.orm import relationship

from .base import Base, new_id


class SyncLog(Base):
    """Log entry for each sync run."""

    __tablename__ = "sync_logs"

    id = Column(String(36), primary_key=True, default=new_id)

    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)

    # in_progress, completed, failed, rejected
    status = Column(String(50), nullable=False)
    trigger = Column(String(20), nullable=False, default="scheduled")
    synced_count = Column(Integer, default=0)
    deleted_count = Column(Integer, default=0)
    error_count = Column(Integer, default=0)
    duration_ms = Column(Integer, nullable=True)

    message = Column(Text, nullable=True)

    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    tenant = relationship("Tenant", back_populates="sync_logs")

    __table_args__ = (
        Index("ix_sync_logs_tenant_started", "tenant_id", "started_at"),
        Index("ix_sync_logs_status", "status"),
    )

    def __repr__(self):
        return f"<SyncLog(id={self.id}, tenant_id={self.tenant_id}, status='{self.status}', synced={self.synced_count})>"
