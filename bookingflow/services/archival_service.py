"""
Expiry Archival Job
Moves past-dated bookings out of the live table. Roots become one compact
archive record per client + service type; follow-ups are deleted outright.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone

from sqlalchemy import and_, delete, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookingflow.config import settings
from bookingflow.errors import AuthorizationError, BookingFlowError, TenantNotFoundError, ValidationError
from bookingflow.logging_config import get_logger
from bookingflow.models import ArchivedBooking, Booking, CleanupState, Tenant
from bookingflow.services import booking_fields
from bookingflow.services.messages import ensure_utc, get_zone

logger = get_logger("archival")

BATCH_SIZE = 400
MAX_WRITES_PER_COMMIT = 500
ARCHIVED_REASON = "auto"

GUARD_ALREADY_ARCHIVED_TODAY = "already_archived_today"
QUARTER_START_MONTHS = (1, 4, 7, 10)


def today_in_timezone(tz_name: str, now: datetime = None) -> str:
    """Tenant-local calendar date as YYYY-MM-DD"""
    now = ensure_utc(now or datetime.now(timezone.utc))
    return now.astimezone(get_zone(tz_name)).strftime("%Y-%m-%d")


def should_run_today(mode: str, local_now: datetime, last_run_at: datetime = None) -> bool:
    """
    Decide whether the archival job runs for a tenant today.

    Args:
        mode: off | daily | weekly | monthly | quarterly
        local_now: Current time in the tenant's timezone
        last_run_at: Previous run, any timezone

    Returns:
        True when today is a run day and no run happened in the current period
    """
    today = local_now.date()
    last_day = None
    if last_run_at is not None:
        last_day = ensure_utc(last_run_at).astimezone(local_now.tzinfo or timezone.utc).date()

    if mode == "daily":
        return last_day != today
    if mode == "weekly":
        # isoweekday: Sunday == 7
        if local_now.isoweekday() != 7:
            return False
        return last_day is None or (today - last_day).days >= 7
    if mode == "monthly":
        if today.day != 1:
            return False
        return last_day is None or (last_day.year, last_day.month) != (today.year, today.month)
    if mode == "quarterly":
        if today.month not in QUARTER_START_MONTHS or today.day != 1:
            return False
        if last_day is None:
            return True
        return (last_day.year, (last_day.month - 1) // 3) != (today.year, (today.month - 1) // 3)
    return False


@dataclass(frozen=True)
class ArchiveIdentity:
    client_key: str
    archive_id: str
    deterministic: bool


def archive_identity(client_id, customer_phone, service_type_id, booking_id: str) -> ArchiveIdentity:
    """
    Archive record identity for a booking.

    Same client + same service type always map to the same id, so repeat
    visits replace one another. Without a service type the booking id is
    folded in and the id never collides.
    """
    client_key = (str(client_id).strip() if client_id else "") or (customer_phone or "").strip() or "unknown"
    service_key = str(service_type_id).strip() if service_type_id else ""
    if service_key:
        return ArchiveIdentity(client_key, f"{client_key}__{service_key}", True)
    return ArchiveIdentity(client_key, f"{client_key}__unknown__{booking_id}", False)


@dataclass
class ArchivalResult:
    scanned: int = 0
    archived: int = 0
    deleted_followups: int = 0
    errors: int = 0
    min_date: str | None = None
    max_date: str | None = None

    @property
    def deleted(self) -> int:
        return self.archived + self.deleted_followups

    def to_dict(self) -> dict:
        data = asdict(self)
        data["deleted"] = self.deleted
        return data


@dataclass
class TenantArchivalSummary:
    tenant_id: str
    ran: bool
    skip_reason: str | None = None
    before_date: str | None = None
    result: ArchivalResult = field(default_factory=ArchivalResult)


def _snapshot(booking: Booking) -> dict:
    """Plain values for one row; survives rollback and delete"""
    return {
        "id": booking.id,
        "date": booking.date or "",
        "is_archived": bool(booking.is_archived),
        "is_follow_up": booking_fields.is_follow_up(booking),
        "client_id": booking_fields.client_id(booking),
        "customer_phone": booking_fields.raw_phone(booking),
        "customer_name": booking.customer_name or "",
        "service_name": booking.service_name or "",
        "service_type": booking.service_type,
        "service_type_id": booking.service_type_id,
        "service_type_key": booking_fields.service_type_key(booking),
        "worker_id": booking.worker_id,
        "worker_name": booking.worker_name,
        "status_at_archive": booking_fields.status_at_archive(booking),
    }


def _load_page(db: Session, tenant_id: str, before_date: str, after: tuple = None) -> list:
    query = db.query(Booking).filter(
        Booking.tenant_id == tenant_id,
        Booking.date < before_date,
    )
    if after is not None:
        last_date, last_id = after
        query = query.filter(
            or_(Booking.date > last_date, and_(Booking.date == last_date, Booking.id > last_id))
        )
    page = query.order_by(Booking.date, Booking.id).limit(BATCH_SIZE).all()
    return [_snapshot(b) for b in page]


def _archive_record(tenant_id: str, row: dict, now: datetime) -> ArchivedBooking:
    identity = archive_identity(row["client_id"], row["customer_phone"], row["service_type_key"], row["id"])
    return ArchivedBooking(
        tenant_id=tenant_id,
        archive_id=identity.archive_id,
        client_key=identity.client_key,
        source_booking_id=row["id"],
        date=row["date"],
        service_name=row["service_name"],
        service_type=row["service_type"],
        service_type_id=row["service_type_id"],
        worker_id=row["worker_id"],
        worker_name=row["worker_name"],
        customer_name=row["customer_name"],
        customer_phone=row["customer_phone"],
        client_id=row["client_id"],
        status_at_archive=row["status_at_archive"],
        archived_reason=ARCHIVED_REASON,
        archived_at=now,
    )


class _WriteBatch:
    """Pending writes for one commit, bounded to MAX_WRITES_PER_COMMIT"""

    def __init__(self, db: Session, tenant_id: str, result: ArchivalResult):
        self.db = db
        self.tenant_id = tenant_id
        self.result = result
        self.writes = 0
        self.staged = {}
        self.pending_archived = 0
        self.pending_followups = 0

    def reserve(self, count: int) -> None:
        if self.writes + count > MAX_WRITES_PER_COMMIT:
            self.commit()

    def delete_booking(self, booking_id: str) -> None:
        self.db.execute(
            delete(Booking)
            .where(Booking.tenant_id == self.tenant_id, Booking.id == booking_id)
            .execution_options(synchronize_session=False)
        )
        self.writes += 1

    def upsert_archive(self, record: ArchivedBooking) -> None:
        # Same client + service type twice in one commit: latest write wins
        existing = self.staged.get(record.archive_id)
        if existing is None:
            self.staged[record.archive_id] = self.db.merge(record)
        else:
            for column in ArchivedBooking.__table__.columns:
                setattr(existing, column.key, getattr(record, column.key))
        self.writes += 1

    def commit(self) -> None:
        if self.writes == 0:
            return
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.result.errors += 1
            logger.error(
                "Archival commit failed",
                extra={"context": {"tenant_id": self.tenant_id, "writes": self.writes, "error": str(e)}},
            )
        else:
            # Rows only count once their commit holds
            self.result.archived += self.pending_archived
            self.result.deleted_followups += self.pending_followups
        self.writes = 0
        self.staged = {}
        self.pending_archived = 0
        self.pending_followups = 0


def archive_past_bookings(
    db: Session,
    tenant_id: str,
    before_date: str,
    dry_run: bool = False,
    now: datetime = None,
) -> ArchivalResult:
    """
    Archive every booking dated before `before_date` for one tenant.

    Args:
        db: Database session
        tenant_id: Tenant to process
        before_date: Exclusive YYYY-MM-DD cutoff
        dry_run: Count only, write nothing
        now: Timestamp stored on archive records

    Returns:
        ArchivalResult with counts and the date range seen
    """
    now = ensure_utc(now or datetime.now(timezone.utc))
    result = ArchivalResult()
    after = None

    while True:
        rows = _load_page(db, tenant_id, before_date, after)
        if not rows:
            break
        batch = _WriteBatch(db, tenant_id, result)

        for row in rows:
            result.scanned += 1
            if row["is_archived"]:
                continue

            date_str = row["date"]
            if date_str:
                if result.min_date is None or date_str < result.min_date:
                    result.min_date = date_str
                if result.max_date is None or date_str > result.max_date:
                    result.max_date = date_str

            if row["is_follow_up"]:
                if dry_run:
                    result.deleted_followups += 1
                else:
                    batch.reserve(1)
                    batch.delete_booking(row["id"])
                    batch.pending_followups += 1
                continue

            if dry_run:
                result.archived += 1
            else:
                # Upsert and delete stay in the same commit
                batch.reserve(2)
                batch.upsert_archive(_archive_record(tenant_id, row, now))
                batch.delete_booking(row["id"])
                batch.pending_archived += 1

        if not dry_run:
            batch.commit()

        if len(rows) < BATCH_SIZE:
            break
        after = (rows[-1]["date"], rows[-1]["id"])

    logger.info(
        "Past bookings archived",
        extra={"context": {"tenant_id": tenant_id, "before_date": before_date, "dry_run": dry_run, **result.to_dict()}},
    )
    return result


def _cleanup_state(db: Session, tenant_id: str) -> CleanupState:
    state = db.query(CleanupState).filter(CleanupState.tenant_id == tenant_id).first()
    if state is None:
        state = CleanupState(tenant_id=tenant_id)
        db.add(state)
    return state


def _set_archival_marker(db: Session, tenant_id: str, now: datetime) -> None:
    try:
        _cleanup_state(db, tenant_id).last_expired_cleanup_run_at = now
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "Could not store archival marker",
            extra={"context": {"tenant_id": tenant_id, "error": str(e)}},
        )


def run_expiry_archival(db: Session, now: datetime = None) -> list:
    """
    Scheduled archival across all tenants.

    Returns:
        List of TenantArchivalSummary, one per tenant
    """
    now = ensure_utc(now or datetime.now(timezone.utc))
    tenants = db.query(Tenant).order_by(Tenant.id).all()
    # Plain values; commits below expire the ORM rows
    plan = [(t.id, t.timezone or settings.default_timezone, t.expired_cleanup_mode or "daily") for t in tenants]
    logger.info("Expiry archival started", extra={"context": {"tenants": len(plan)}})

    summaries = []
    for tenant_id, tz_name, mode in plan:
        state = db.query(CleanupState).filter(CleanupState.tenant_id == tenant_id).first()
        last_run_at = state.last_expired_cleanup_run_at if state else None
        local_now = now.astimezone(get_zone(tz_name))

        if not should_run_today(mode, local_now, last_run_at):
            reason = "disabled" if mode == "off" else GUARD_ALREADY_ARCHIVED_TODAY
            summaries.append(TenantArchivalSummary(tenant_id=tenant_id, ran=False, skip_reason=reason))
            continue

        before_date = today_in_timezone(tz_name, now)
        summary = TenantArchivalSummary(tenant_id=tenant_id, ran=True, before_date=before_date)
        try:
            summary.result = archive_past_bookings(db, tenant_id, before_date, now=now)
        except (BookingFlowError, SQLAlchemyError) as e:
            db.rollback()
            summary.result.errors += 1
            logger.error(
                "Expiry archival failed for tenant",
                extra={"context": {"tenant_id": tenant_id, "error": str(e)}},
            )
        _set_archival_marker(db, tenant_id, now)
        summaries.append(summary)

    logger.info(
        "Expiry archival finished",
        extra={"context": {
            "tenants_run": sum(1 for s in summaries if s.ran),
            "archived": sum(s.result.archived for s in summaries),
            "deleted_followups": sum(s.result.deleted_followups for s in summaries),
            "errors": sum(s.result.errors for s in summaries),
        }},
    )
    return summaries


def _validate_date(value: str) -> str:
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except (TypeError, ValueError):
        raise ValidationError(f"before_date must be YYYY-MM-DD, got {value!r}", code="invalid_before_date") from None
    return value


def run_archival_for_tenant(
    db: Session,
    tenant_id: str,
    caller_uid: str,
    before_date: str = None,
    dry_run: bool = False,
    now: datetime = None,
) -> dict:
    """
    Administrative archival run for one tenant, owner only.

    Raises:
        TenantNotFoundError: unknown tenant
        AuthorizationError: caller does not own the tenant
        ValidationError: malformed before_date
    """
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if tenant is None:
        raise TenantNotFoundError(f"Tenant {tenant_id} not found")
    if not caller_uid or caller_uid != tenant.owner_uid:
        raise AuthorizationError(f"Caller is not the owner of tenant {tenant_id}")

    if before_date:
        before_date = _validate_date(before_date)
    else:
        before_date = today_in_timezone(tenant.timezone or settings.default_timezone, now)

    result = archive_past_bookings(db, tenant_id, before_date, dry_run=dry_run, now=now)
    logger.info(
        "Admin archival run",
        extra={"context": {"tenant_id": tenant_id, "caller_uid": caller_uid, "dry_run": dry_run}},
    )
    return {
        "tenant_id": tenant_id,
        "before_date": before_date,
        "dry_run": dry_run,
        "scanned": result.scanned,
        "archived": result.archived,
        "deleted_only": result.deleted_followups,
        "deleted": 0 if dry_run else result.deleted,
        "errors": result.errors,
        "min_date": result.min_date,
        "max_date": result.max_date,
    }
