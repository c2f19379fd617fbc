from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, func
from bookingflow.database import Base


class Tenant(Base):
    """Tenant configuration. Written by the site builder, read-only here."""
    __tablename__ = "tenants"

    id = Column(String(64), primary_key=True)
    owner_uid = Column(String(128), index=True)
    display_name = Column(String(255), nullable=True)
    timezone = Column(String(64), default="Asia/Jerusalem")

    # off | daily | weekly | monthly | quarterly
    expired_cleanup_mode = Column(String(16), default="daily")

    # Retention policy for cancelled / no-show records
    retention_enabled = Column(Boolean, default=False)
    retention_weekday = Column(Integer, default=0)  # 0 = Sunday
    retention_hour = Column(Integer, default=3)
    retention_minute = Column(Integer, default=0)
    retention_timezone = Column(String(64), nullable=True)
    retention_scope = Column(String(16), default="all")  # all | older_than_days
    retention_older_than_days = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=func.now())


class CleanupState(Base):
    """Per-tenant last-run markers for the archival and retention jobs"""
    __tablename__ = "cleanup_state"

    tenant_id = Column(String(64), ForeignKey("tenants.id"), primary_key=True)
    last_expired_cleanup_run_at = Column(DateTime(timezone=True), nullable=True)
    last_retention_run_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())
