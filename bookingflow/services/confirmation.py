"""
Confirmation State Applier
Applies confirm / cancel / awaiting-confirmation to every member of a visit
in one transaction. Group membership is fully resolved before any write.
"""
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookingflow.errors import TransitionError
from bookingflow.logging_config import get_logger
from bookingflow.models import Booking, BusinessStatus, ConfirmationStatus
from bookingflow.services.group_resolver import BookingGroup, resolve_group

logger = get_logger("confirmation")

CUSTOMER_CANCELLED_REASON = "customer_cancelled"


@dataclass(frozen=True)
class GroupTransition:
    tenant_id: str
    root_id: str
    member_ids: list
    confirmation_status: str


def _apply(db: Session, tenant_id: str, group: BookingGroup, values: dict, status: str) -> GroupTransition:
    """Issue one UPDATE over all members and commit; rollback on failure"""
    try:
        db.execute(
            update(Booking)
            .where(Booking.tenant_id == tenant_id, Booking.id.in_(group.member_ids))
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "Group transition failed",
            extra={"context": {
                "tenant_id": tenant_id,
                "root_id": group.root_id,
                "members": len(group.member_ids),
                "status": status,
                "error": str(e),
            }},
        )
        raise TransitionError(f"Failed to set {status} for group {group.root_id}: {e}") from e

    logger.info(
        "Group status propagated",
        extra={"context": {
            "tenant_id": tenant_id,
            "root_id": group.root_id,
            "member_ids": group.member_ids,
            "status": status,
        }},
    )
    return GroupTransition(
        tenant_id=tenant_id,
        root_id=group.root_id,
        member_ids=list(group.member_ids),
        confirmation_status=status,
    )


def confirm_group(db: Session, tenant_id: str, booking_id: str, now: datetime = None) -> GroupTransition:
    """Confirm every booking in the visit. Re-applying is a no-op."""
    now = now or datetime.now(timezone.utc)
    group = resolve_group(db, tenant_id, booking_id)
    values = {
        "confirmation_status": ConfirmationStatus.CONFIRMED,
        "confirmed_at": func.coalesce(Booking.confirmed_at, now),
    }
    return _apply(db, tenant_id, group, values, ConfirmationStatus.CONFIRMED)


def cancel_group(db: Session, tenant_id: str, booking_id: str, now: datetime = None) -> GroupTransition:
    """Cancel and archive every booking in the visit, all-or-nothing."""
    now = now or datetime.now(timezone.utc)
    group = resolve_group(db, tenant_id, booking_id)
    values = {
        "confirmation_status": ConfirmationStatus.CANCELLED,
        "status": BusinessStatus.CANCELLED,
        "is_archived": True,
        "archived_at": func.coalesce(Booking.archived_at, now),
        "cancelled_at": func.coalesce(Booking.cancelled_at, now),
        "archived_reason": CUSTOMER_CANCELLED_REASON,
    }
    return _apply(db, tenant_id, group, values, ConfirmationStatus.CANCELLED)


def mark_group_awaiting_confirmation(
    db: Session, tenant_id: str, group: BookingGroup, now: datetime = None, phone: str = None
) -> GroupTransition:
    """
    Flip a visit to awaiting_confirmation and set both reminder markers.

    When the reminder went to a phone found only in a legacy column, that
    canonical phone is written to members lacking customer_phone_e164 so the
    reply lookup can find them.
    """
    now = now or datetime.now(timezone.utc)
    values = {
        "confirmation_status": ConfirmationStatus.AWAITING_CONFIRMATION,
        "reminder_sent_at": now,
        "confirmation_requested_at": now,
    }
    if phone:
        values["customer_phone_e164"] = func.coalesce(func.nullif(Booking.customer_phone_e164, ""), phone)
    return _apply(db, tenant_id, group, values, ConfirmationStatus.AWAITING_CONFIRMATION)
