from bookingflow.models.tenant import Tenant, CleanupState
from bookingflow.models.booking import Booking, BusinessStatus, ConfirmationStatus
from bookingflow.models.archive import ArchivedBooking
from bookingflow.models.message_log import MessageLog

__all__ = [
    "Tenant",
    "CleanupState",
    "Booking",
    "BusinessStatus",
    "ConfirmationStatus",
    "ArchivedBooking",
    "MessageLog",
]
