"""
Compatibility normalization for booking rows.

Bookings written over several schema revisions carry the same fact under
different columns (group key under visit_group_id or booking_group_id, phone
under customer_phone_e164, customer_phone or phone). Every "first present
field" rule lives here so the rest of the pipeline only sees canonical values.
"""
from sqlalchemy import or_

from bookingflow.models import Booking
from bookingflow.services.phone import normalize_e164


def _clean(value) -> str:
    return str(value).strip() if value is not None else ""


def _first_present(*values) -> str:
    for value in values:
        cleaned = _clean(value)
        if cleaned:
            return cleaned
    return ""


def group_key(booking: Booking) -> str | None:
    """Canonical group key: visit_group_id, then booking_group_id"""
    return _first_present(booking.visit_group_id, booking.booking_group_id) or None


def group_key_filter(key: str):
    """Query clause matching a group key under either historical column"""
    return or_(Booking.visit_group_id == key, Booking.booking_group_id == key)


def parent_id(booking: Booking) -> str | None:
    return _clean(booking.parent_booking_id) or None


def is_follow_up(booking: Booking) -> bool:
    return parent_id(booking) is not None


def raw_phone(booking: Booking) -> str:
    return _first_present(booking.customer_phone_e164, booking.customer_phone, booking.phone)


def booking_phone_e164(booking: Booking, default_country: str = "IL") -> str:
    """Canonical phone for a booking, "" when none is usable"""
    return normalize_e164(raw_phone(booking), default_country)


def client_id(booking: Booking) -> str | None:
    return _clean(booking.client_id) or None


def service_type_key(booking: Booking) -> str | None:
    """service_type_id preferred, else service_type"""
    return _first_present(booking.service_type_id, booking.service_type) or None


def status_at_archive(booking: Booking) -> str:
    return _clean(booking.status) or "booked"
