from sqlalchemy import Column, String, DateTime, ForeignKey
from bookingflow.database import Base


class ArchivedBooking(Base):
    """Compact snapshot of an expired booking, one slot per client + service type"""
    __tablename__ = "archived_bookings"

    tenant_id = Column(String(64), ForeignKey("tenants.id"), primary_key=True)
    archive_id = Column(String(255), primary_key=True)
    client_key = Column(String(128), index=True)
    source_booking_id = Column(String(64))

    date = Column(String(10))
    service_name = Column(String(255), default="")
    service_type = Column(String(128), nullable=True)
    service_type_id = Column(String(128), nullable=True)
    worker_id = Column(String(64), nullable=True)
    worker_name = Column(String(255), nullable=True)
    customer_name = Column(String(255), default="")
    customer_phone = Column(String(32), default="")
    client_id = Column(String(64), nullable=True)

    status_at_archive = Column(String(32))
    archived_reason = Column(String(64), default="auto")
    archived_at = Column(DateTime(timezone=True))
