from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, ForeignKey, Index, func
from bookingflow.database import Base


class BusinessStatus:
    BOOKED = "booked"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    EXPIRED = "expired"


class ConfirmationStatus:
    BOOKED = "booked"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


# Terminal business statuses, legacy spellings included
CANCELLED_STATUSES = ("cancelled", "canceled", "cancelled_by_salon", "no_show")
TERMINAL_STATUSES = CANCELLED_STATUSES + ("expired",)


class Booking(Base):
    """One appointment in a tenant's booking collection"""
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_tenant_date", "tenant_id", "date"),
        Index("ix_bookings_confirmation_start", "confirmation_status", "start_at"),
    )

    id = Column(String(64), primary_key=True)
    tenant_id = Column(String(64), ForeignKey("tenants.id"), index=True, nullable=False)

    # Customer; customer_phone_e164 is canonical, the other two are legacy inputs
    client_id = Column(String(64), nullable=True, index=True)
    customer_name = Column(String(255), nullable=True)
    customer_phone_e164 = Column(String(20), nullable=True, index=True)
    customer_phone = Column(String(32), nullable=True)
    phone = Column(String(32), nullable=True)

    # Schedule
    start_at = Column(DateTime(timezone=True), index=True)
    duration_minutes = Column(Integer, default=60)
    date = Column(String(10), nullable=True)  # tenant-local YYYY-MM-DD

    # Service snapshot
    service_name = Column(String(255), nullable=True)
    service_type = Column(String(128), nullable=True)
    service_type_id = Column(String(128), nullable=True)
    worker_id = Column(String(64), nullable=True)
    worker_name = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(String(32), default=BusinessStatus.BOOKED)
    confirmation_status = Column(String(32), default=ConfirmationStatus.BOOKED)

    # Grouping; visit_group_id and booking_group_id are historical synonyms
    visit_group_id = Column(String(64), nullable=True, index=True)
    booking_group_id = Column(String(64), nullable=True, index=True)
    parent_booking_id = Column(String(64), nullable=True, index=True)

    is_archived = Column(Boolean, default=False)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    archived_reason = Column(String(64), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)

    # Idempotency markers for the reminder run
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    confirmation_requested_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=func.now())
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    @property
    def booking_ref(self) -> str:
        return f"tenants/{self.tenant_id}/bookings/{self.id}"
