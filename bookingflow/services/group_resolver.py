"""
Group Resolver
Computes the full set of bookings that form one visit (root + follow-ups).
Read-only; never mutates data.
"""
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from bookingflow.models import Booking
from bookingflow.services import booking_fields

# Cap to avoid accidental fan-out
MAX_GROUP_MEMBERS = 20


@dataclass(frozen=True)
class BookingGroup:
    root_id: str
    member_ids: list = field(default_factory=list)
    group_key: str | None = None

    def __contains__(self, booking_id) -> bool:
        return booking_id in self.member_ids


def _ordered(query):
    return query.order_by(Booking.start_at, Booking.id)


def _children_of(db: Session, tenant_id: str, root_id: str) -> list:
    return _ordered(
        db.query(Booking).filter(
            Booking.tenant_id == tenant_id,
            Booking.parent_booking_id == root_id,
        )
    ).limit(MAX_GROUP_MEMBERS).all()


def _finalize(requested_id: str, root_id: str, ids: set, group_key) -> BookingGroup:
    ids.add(requested_id)
    # Root first, then the rest sorted, so every entry point yields the same list
    others = sorted(i for i in ids if i != root_id)
    member_ids = ([root_id] if root_id in ids else []) + others
    if len(member_ids) > MAX_GROUP_MEMBERS:
        capped = member_ids[:MAX_GROUP_MEMBERS]
        if requested_id not in capped:
            # The requested booking always stays in its own group
            capped[-1] = requested_id
        member_ids = capped
    return BookingGroup(
        root_id=root_id,
        member_ids=member_ids,
        group_key=group_key,
    )


def resolve_group(db: Session, tenant_id: str, booking_id: str) -> BookingGroup:
    """
    Resolve the visit a booking belongs to.

    Args:
        db: Database session
        tenant_id: Tenant owning the booking
        booking_id: Any member of the group

    Returns:
        BookingGroup with the canonical root id and all member ids
    """
    booking = (
        db.query(Booking)
        .filter(Booking.tenant_id == tenant_id, Booking.id == booking_id)
        .first()
    )
    if booking is None:
        return BookingGroup(root_id=booking_id, member_ids=[booking_id])

    key = booking_fields.group_key(booking)
    if key:
        matches = _ordered(
            db.query(Booking).filter(
                Booking.tenant_id == tenant_id,
                booking_fields.group_key_filter(key),
            )
        ).limit(MAX_GROUP_MEMBERS + 1).all()

        roots = [b for b in matches if not booking_fields.is_follow_up(b)]
        if roots:
            root_id = roots[0].id
        elif matches:
            # Root fell outside the capped page; follow-ups still name it
            root_id = booking_fields.parent_id(matches[0]) or matches[0].id
        else:
            root_id = booking_id

        ids = {b.id for b in matches}
        ids.add(root_id)
        # Follow-ups created by admin tools may only carry the parent link
        ids.update(b.id for b in _children_of(db, tenant_id, root_id))
        return _finalize(booking_id, root_id, ids, key)

    root_id = booking_fields.parent_id(booking) or booking_id
    ids = {root_id}
    ids.update(b.id for b in _children_of(db, tenant_id, root_id))
    return _finalize(booking_id, root_id, ids, None)
