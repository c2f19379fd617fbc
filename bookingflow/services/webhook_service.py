"""
Inbound Webhook Handler
Authenticates the provider callback, classifies the reply and applies the
confirm / cancel transition to the single matching visit.
"""
import base64
import hashlib
import hmac
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from urllib.parse import parse_qs

from sqlalchemy.orm import Session
from twilio.request_validator import RequestValidator

from bookingflow.config import Settings, settings as default_settings
from bookingflow.errors import ConfigurationError, InvalidSignatureError, TransitionError
from bookingflow.logging_config import get_logger
from bookingflow.models import Booking, ConfirmationStatus, MessageLog, Tenant
from bookingflow.services.confirmation import cancel_group, confirm_group
from bookingflow.services.group_resolver import resolve_group
from bookingflow.services.intent import Intent, classify
from bookingflow.services.messages import (
    ALREADY_CANCELLED_REPLY,
    ALREADY_CONFIRMED_REPLY,
    build_cancelled_reply,
    build_confirmed_reply,
    ensure_utc,
    format_local_time,
)
from bookingflow.services.phone import E164_PATTERN, normalize_e164

logger = get_logger("webhook")

WEBHOOK_PATH = "/webhooks/twilio"
MAX_PENDING_MATCHES = 5


# ---------- Signature ----------

def compute_signature(secret: str, url: str, raw_body: str) -> str:
    """base64(HMAC-SHA1(secret, url + raw_body))"""
    digest = hmac.new(secret.encode("utf-8"), (url + raw_body).encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("utf-8")


def validate_signature(secret: str, signature: str, url: str, raw_body: str, params: dict = None) -> None:
    """
    Verify the X-Twilio-Signature header.

    Accepts a signature over url + raw body, or the provider's own scheme
    over url + sorted form parameters.

    Raises:
        ConfigurationError: no auth token configured
        InvalidSignatureError: header missing or not matching
    """
    if not (secret or "").strip():
        raise ConfigurationError("TWILIO_AUTH_TOKEN is missing", code="TWILIO_AUTH_TOKEN_MISSING")
    if not signature:
        raise InvalidSignatureError("Missing X-Twilio-Signature header")

    expected = compute_signature(secret, url, raw_body)
    if hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        return
    if params is not None and RequestValidator(secret).validate(url, params, signature):
        return
    raise InvalidSignatureError("Twilio signature mismatch")


def _header(headers, name: str) -> str:
    if headers is None:
        return ""
    value = headers.get(name)
    if value is None:
        value = headers.get(name.title())
    return (value or "").strip()


def get_webhook_url(path: str, headers, request_url: str, config: Settings = None) -> str:
    """URL the provider signed: explicit setting, base URL, proxy headers, then the request URL"""
    config = config or default_settings
    explicit = config.twilio_webhook_url.strip()
    if explicit:
        return explicit
    base = config.webhook_base_url.strip()
    if base:
        return base.rstrip("/") + path

    proto = _header(headers, "x-forwarded-proto") or "https"
    host = _header(headers, "x-forwarded-host") or _header(headers, "host")
    if host:
        return f"{proto}://{host}{path}"
    return request_url


def parse_form(raw_body: str) -> dict:
    """Form-encoded body to a flat dict, first value wins"""
    parsed = parse_qs(raw_body or "", keep_blank_values=True)
    return {k: (v[0] if v else "") for k, v in parsed.items()}


# ---------- Matching ----------

class MatchKind(str, Enum):
    RESOLVED_SINGLE = "resolved_single"
    RESOLVED_NONE = "resolved_none"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class PendingMatch:
    tenant_id: str
    booking_id: str
    root_id: str
    booking_ref: str
    start_at: datetime | None


@dataclass
class MatchResolution:
    kind: MatchKind
    matches: list = field(default_factory=list)
    candidate_refs: list = field(default_factory=list)


def _collapse_groups(db: Session, bookings: list) -> list:
    """One PendingMatch per distinct visit, earliest member first"""
    seen = set()
    matches = []
    for booking in bookings:
        group = resolve_group(db, booking.tenant_id, booking.id)
        key = (booking.tenant_id, group.root_id)
        if key in seen:
            continue
        seen.add(key)
        matches.append(
            PendingMatch(
                tenant_id=booking.tenant_id,
                booking_id=booking.id,
                root_id=group.root_id,
                booking_ref=booking.booking_ref,
                start_at=ensure_utc(booking.start_at) if booking.start_at else None,
            )
        )
    return matches


def find_pending_matches(db: Session, phone: str, now: datetime = None, grace_hours: int = None) -> MatchResolution:
    """
    Bookings for a phone that are awaiting a reply.

    A visit with several services counts as one match.
    """
    now = ensure_utc(now or datetime.now(timezone.utc))
    if grace_hours is None:
        grace_hours = default_settings.confirmation_grace_hours

    bookings = (
        db.query(Booking)
        .filter(
            Booking.customer_phone_e164 == phone,
            Booking.confirmation_status == ConfirmationStatus.AWAITING_CONFIRMATION,
            Booking.start_at > now - timedelta(hours=grace_hours),
            Booking.is_archived.isnot(True),
        )
        .order_by(Booking.start_at, Booking.id)
        .limit(MAX_PENDING_MATCHES)
        .all()
    )
    candidate_refs = [b.booking_ref for b in bookings]
    matches = _collapse_groups(db, bookings)

    if not matches:
        kind = MatchKind.RESOLVED_NONE
    elif len(matches) == 1:
        kind = MatchKind.RESOLVED_SINGLE
    else:
        kind = MatchKind.AMBIGUOUS
    return MatchResolution(kind=kind, matches=matches, candidate_refs=candidate_refs)


def find_terminal_match(db: Session, phone: str, confirmation_status: str, now: datetime = None) -> PendingMatch | None:
    """The single upcoming visit already in the given state, else None"""
    now = ensure_utc(now or datetime.now(timezone.utc))
    bookings = (
        db.query(Booking)
        .filter(
            Booking.customer_phone_e164 == phone,
            Booking.confirmation_status == confirmation_status,
            Booking.start_at > now,
        )
        .order_by(Booking.start_at, Booking.id)
        .limit(MAX_PENDING_MATCHES)
        .all()
    )
    matches = _collapse_groups(db, bookings)
    if len(matches) != 1:
        return None
    return matches[0]


# ---------- Handling ----------

class Outcome:
    DUPLICATE = "duplicate"
    INVALID_SENDER = "invalid_sender"
    UNRECOGNIZED = "unrecognized"
    NO_BOOKING = "no_booking"
    ALREADY_CONFIRMED = "already_confirmed"
    ALREADY_CANCELLED = "already_cancelled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    AMBIGUOUS = "ambiguous"
    FAILED = "failed"


@dataclass
class InboundResult:
    outcome: str
    reply: str | None = None
    intent: str = Intent.NONE.value
    tenant_id: str | None = None
    booking_ref: str | None = None
    member_ids: list = field(default_factory=list)
    candidate_refs: list = field(default_factory=list)


def _log_inbound(db: Session, form: dict, status: str, **fields) -> MessageLog:
    entry = MessageLog(
        direction="inbound",
        status=status,
        from_address=form.get("From", ""),
        to_address=form.get("To", ""),
        body=form.get("Body", ""),
        provider_message_id=form.get("MessageSid") or None,
        **fields,
    )
    db.add(entry)
    db.commit()
    return entry


def _is_duplicate(db: Session, message_sid: str) -> bool:
    if not message_sid:
        return False
    existing = (
        db.query(MessageLog.id)
        .filter(
            MessageLog.direction == "inbound",
            MessageLog.provider_message_id == message_sid,
            MessageLog.status != Outcome.DUPLICATE,
        )
        .first()
    )
    return existing is not None


def _tenant_display(db: Session, tenant_id: str) -> tuple:
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if tenant is None:
        return None, default_settings.default_timezone
    return tenant.display_name, tenant.timezone or default_settings.default_timezone


def _already_done(db: Session, phone: str, intent: Intent, now: datetime) -> InboundResult:
    if intent == Intent.YES:
        status, outcome, reply = ConfirmationStatus.CONFIRMED, Outcome.ALREADY_CONFIRMED, ALREADY_CONFIRMED_REPLY
    else:
        status, outcome, reply = ConfirmationStatus.CANCELLED, Outcome.ALREADY_CANCELLED, ALREADY_CANCELLED_REPLY

    match = find_terminal_match(db, phone, status, now)
    if match is None:
        return InboundResult(outcome=Outcome.NO_BOOKING, intent=intent.value)
    return InboundResult(
        outcome=outcome,
        reply=reply,
        intent=intent.value,
        tenant_id=match.tenant_id,
        booking_ref=match.booking_ref,
    )


def _apply_intent(db: Session, match: PendingMatch, intent: Intent, now: datetime) -> InboundResult:
    if intent == Intent.YES:
        transition = confirm_group(db, match.tenant_id, match.booking_id, now)
        business_name, tz_name = _tenant_display(db, match.tenant_id)
        reply = build_confirmed_reply(business_name, format_local_time(match.start_at, tz_name))
        outcome = Outcome.CONFIRMED
    else:
        transition = cancel_group(db, match.tenant_id, match.booking_id, now)
        reply = build_cancelled_reply()
        outcome = Outcome.CANCELLED

    return InboundResult(
        outcome=outcome,
        reply=reply,
        intent=intent.value,
        tenant_id=match.tenant_id,
        booking_ref=match.booking_ref,
        member_ids=transition.member_ids,
    )


def handle_inbound(db: Session, form: dict, now: datetime = None) -> InboundResult:
    """
    Process one authenticated inbound message.

    Args:
        db: Database session
        form: Parsed provider form (Body, From, To, MessageSid)
        now: Override for the current time

    Returns:
        InboundResult describing what happened and the optional reply text
    """
    now = ensure_utc(now or datetime.now(timezone.utc))
    message_sid = (form.get("MessageSid") or "").strip()
    body = (form.get("Body") or "").strip()
    phone = normalize_e164(form.get("From", ""), default_settings.default_country)

    if _is_duplicate(db, message_sid):
        _log_inbound(db, form, Outcome.DUPLICATE)
        logger.info("Duplicate inbound delivery", extra={"context": {"message_sid": message_sid}})
        return InboundResult(outcome=Outcome.DUPLICATE)

    _log_inbound(db, form, "received")

    if not E164_PATTERN.match(phone):
        logger.warning("Inbound sender not parseable", extra={"context": {"message_sid": message_sid}})
        return InboundResult(outcome=Outcome.INVALID_SENDER)

    intent = classify(body)
    logger.info(
        "Inbound message classified",
        extra={"context": {"message_sid": message_sid, "intent": intent.value}},
    )
    if intent == Intent.NONE:
        return InboundResult(outcome=Outcome.UNRECOGNIZED)

    resolution = find_pending_matches(db, phone, now)

    if resolution.kind == MatchKind.RESOLVED_NONE:
        result = _already_done(db, phone, intent, now)
        logger.info(
            "No pending booking for sender",
            extra={"context": {"message_sid": message_sid, "outcome": result.outcome}},
        )
        return result

    if resolution.kind == MatchKind.AMBIGUOUS:
        _log_inbound(db, form, Outcome.AMBIGUOUS, booking_refs=resolution.candidate_refs)
        logger.warning(
            "Ambiguous reply, no booking changed",
            extra={"context": {"message_sid": message_sid, "booking_refs": resolution.candidate_refs}},
        )
        return InboundResult(
            outcome=Outcome.AMBIGUOUS,
            intent=intent.value,
            candidate_refs=resolution.candidate_refs,
        )

    match = resolution.matches[0]
    try:
        result = _apply_intent(db, match, intent, now)
    except TransitionError as e:
        logger.error(
            "Reply could not be applied",
            extra={"context": {"message_sid": message_sid, "booking_ref": match.booking_ref, "error": e.message}},
        )
        return InboundResult(
            outcome=Outcome.FAILED,
            intent=intent.value,
            tenant_id=match.tenant_id,
            booking_ref=match.booking_ref,
        )

    logger.info(
        "Reply applied",
        extra={"context": {"message_sid": message_sid, "booking_ref": match.booking_ref, "outcome": result.outcome}},
    )
    return result
