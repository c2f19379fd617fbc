from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, func
from bookingflow.database import Base


class MessageLog(Base):
    """Append-only audit record of every inbound and outbound message"""
    __tablename__ = "message_logs"

    id = Column(Integer, primary_key=True, index=True)
    direction = Column(String(16))  # "inbound" or "outbound"
    status = Column(String(16))  # sent / failed / received / ambiguous / duplicate
    from_address = Column(String(64))
    to_address = Column(String(64))
    body = Column(Text)
    tenant_id = Column(String(64), nullable=True, index=True)
    booking_id = Column(String(64), nullable=True)
    booking_ref = Column(String(255), nullable=True)
    booking_refs = Column(JSON, nullable=True)
    provider_message_id = Column(String(64), nullable=True, index=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=func.now())
