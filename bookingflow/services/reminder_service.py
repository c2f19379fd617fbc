"""
Reminder Scheduler
Finds bookings entering the 24h reminder window, sends one reminder per visit
and flips the whole visit to awaiting_confirmation.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookingflow.config import settings, require_messaging_config
from bookingflow.errors import BookingFlowError
from bookingflow.logging_config import get_logger
from bookingflow.models import Booking, ConfirmationStatus, Tenant
from bookingflow.services import booking_fields
from bookingflow.services.confirmation import mark_group_awaiting_confirmation
from bookingflow.services.group_resolver import resolve_group
from bookingflow.services.messages import build_reminder_message, ensure_utc, format_local_time
from bookingflow.services.sms_service import MessagingGateway

logger = get_logger("reminders")

# Guard conditions, checked in this order
GUARD_REMINDER_SENT = "reminder_already_sent"
GUARD_CONFIRMATION_REQUESTED = "confirmation_already_requested"
GUARD_NO_PHONE = "no_phone"
GUARD_GROUP_NOTIFIED = "group_already_notified"


@dataclass(frozen=True)
class ReminderWindow:
    now: datetime
    start: datetime
    end: datetime


@dataclass(frozen=True)
class ReminderCandidate:
    booking_id: str
    tenant_id: str
    booking_ref: str
    start_at: datetime | None
    phone: str
    reminder_sent_at: datetime | None = None
    confirmation_requested_at: datetime | None = None

    @classmethod
    def from_booking(cls, booking: Booking) -> "ReminderCandidate":
        return cls(
            booking_id=booking.id,
            tenant_id=booking.tenant_id,
            booking_ref=booking.booking_ref,
            start_at=ensure_utc(booking.start_at) if booking.start_at else None,
            phone=booking_fields.booking_phone_e164(booking, settings.default_country),
            reminder_sent_at=booking.reminder_sent_at,
            confirmation_requested_at=booking.confirmation_requested_at,
        )


@dataclass
class ReminderDetail:
    booking_ref: str
    start_at: str
    phone: str
    result: str


@dataclass
class ReminderRunReport:
    sent: int = 0
    skipped: int = 0
    errors: int = 0
    booking_count: int = 0
    server_now: str = ""
    window_start: str = ""
    window_end: str = ""
    details: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def get_reminder_window(now: datetime = None, lead_hours: int = None, tolerance_minutes: int = None) -> ReminderWindow:
    """Window [now + lead - tolerance, now + lead + tolerance), in UTC"""
    now = ensure_utc(now or datetime.now(timezone.utc))
    if lead_hours is None:
        lead_hours = settings.reminder_lead_hours
    if tolerance_minutes is None:
        tolerance_minutes = settings.reminder_window_tolerance_minutes
    lead = timedelta(hours=lead_hours)
    tolerance = timedelta(minutes=tolerance_minutes)
    return ReminderWindow(now=now, start=now + lead - tolerance, end=now + lead + tolerance)


def reminder_guard(candidate: ReminderCandidate, notified_ids: set) -> str | None:
    """Name of the first guard that blocks a reminder, else None"""
    if candidate.reminder_sent_at is not None:
        return GUARD_REMINDER_SENT
    if candidate.confirmation_requested_at is not None:
        return GUARD_CONFIRMATION_REQUESTED
    if not candidate.phone:
        return GUARD_NO_PHONE
    if candidate.booking_id in notified_ids:
        return GUARD_GROUP_NOTIFIED
    return None


def find_reminder_candidates(db: Session, window: ReminderWindow) -> list:
    bookings = (
        db.query(Booking)
        .filter(
            Booking.start_at >= window.start,
            Booking.start_at < window.end,
            Booking.confirmation_status == ConfirmationStatus.BOOKED,
            Booking.is_archived.isnot(True),
        )
        .order_by(Booking.start_at, Booking.id)
        .all()
    )
    # Snapshot before any commit expires the loaded rows
    return [ReminderCandidate.from_booking(b) for b in bookings]


def _send_reminder(db: Session, gateway: MessagingGateway, candidate: ReminderCandidate, tenants: dict, now: datetime):
    group = resolve_group(db, candidate.tenant_id, candidate.booking_id)

    if candidate.tenant_id not in tenants:
        tenants[candidate.tenant_id] = db.query(Tenant).filter(Tenant.id == candidate.tenant_id).first()
    tenant = tenants[candidate.tenant_id]
    tz_name = tenant.timezone if tenant and tenant.timezone else settings.default_timezone
    body = build_reminder_message(
        tenant.display_name if tenant else None,
        format_local_time(candidate.start_at, tz_name),
    )

    gateway.send(candidate.phone, body, tenant_id=candidate.tenant_id, booking_id=candidate.booking_id)
    mark_group_awaiting_confirmation(db, candidate.tenant_id, group, now, phone=candidate.phone)
    return group


def run_reminders(db: Session, gateway: MessagingGateway, now: datetime = None) -> ReminderRunReport:
    """
    Send 24h reminders across all tenants.

    Args:
        db: Database session
        gateway: Messaging gateway used for every send
        now: Override for the current time

    Returns:
        ReminderRunReport with counts and per-booking details
    """
    require_messaging_config(gateway.config)
    window = get_reminder_window(now)
    report = ReminderRunReport(
        server_now=window.now.isoformat(),
        window_start=window.start.isoformat(),
        window_end=window.end.isoformat(),
    )
    logger.info(
        "Reminder run started",
        extra={"context": {"window_start": report.window_start, "window_end": report.window_end}},
    )

    candidates = find_reminder_candidates(db, window)
    report.booking_count = len(candidates)
    tenants = {}
    notified_ids = set()

    for candidate in candidates:
        start_iso = candidate.start_at.isoformat() if candidate.start_at else "unknown"
        guard = reminder_guard(candidate, notified_ids)
        if guard:
            report.skipped += 1
            report.details.append(
                ReminderDetail(candidate.booking_ref, start_iso, candidate.phone or "(no phone)", f"skipped: {guard}")
            )
            continue

        try:
            group = _send_reminder(db, gateway, candidate, tenants, window.now)
        except (BookingFlowError, SQLAlchemyError) as e:
            db.rollback()
            message = e.message if isinstance(e, BookingFlowError) else str(e)
            report.errors += 1
            report.details.append(ReminderDetail(candidate.booking_ref, start_iso, candidate.phone, f"error: {message}"))
            logger.error(
                "Reminder failed for booking",
                extra={"context": {"booking_ref": candidate.booking_ref, "error": message}},
            )
            continue

        notified_ids.update(group.member_ids)
        report.sent += 1
        report.details.append(ReminderDetail(candidate.booking_ref, start_iso, candidate.phone, "sent"))

    logger.info(
        "Reminder run finished",
        extra={"context": {
            "bookings_in_window": report.booking_count,
            "sent": report.sent,
            "skipped": report.skipped,
            "errors": report.errors,
        }},
    )
    return report
