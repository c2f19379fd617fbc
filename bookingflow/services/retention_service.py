"""
Retention Cleanup Job
Permanently deletes cancelled / no-show / expired records on each tenant's
weekly schedule.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookingflow.config import settings
from bookingflow.logging_config import get_logger
from bookingflow.models import ArchivedBooking, Booking, CleanupState, Tenant
from bookingflow.models.booking import CANCELLED_STATUSES, TERMINAL_STATUSES
from bookingflow.services.messages import ensure_utc, get_zone

logger = get_logger("retention")

BATCH_SIZE = 400
SCOPE_ALL = "all"
SCOPE_OLDER_THAN_DAYS = "older_than_days"
EXPIRED_STATUS = "expired"


@dataclass(frozen=True)
class RetentionPolicy:
    enabled: bool = False
    weekday: int = 0  # 0 = Sunday
    hour: int = 3
    minute: int = 0
    timezone: str = "Asia/Jerusalem"
    scope: str = SCOPE_ALL
    older_than_days: int | None = None

    @classmethod
    def from_tenant(cls, tenant: Tenant) -> "RetentionPolicy":
        return cls(
            enabled=bool(tenant.retention_enabled),
            weekday=tenant.retention_weekday if tenant.retention_weekday is not None else 0,
            hour=tenant.retention_hour if tenant.retention_hour is not None else 3,
            minute=tenant.retention_minute if tenant.retention_minute is not None else 0,
            timezone=tenant.retention_timezone or tenant.timezone or settings.default_timezone,
            scope=tenant.retention_scope or SCOPE_ALL,
            older_than_days=tenant.retention_older_than_days,
        )


@dataclass
class RetentionResult:
    deleted_bookings: int = 0
    deleted_archives: int = 0


@dataclass
class TenantRetentionSummary:
    tenant_id: str
    ran: bool
    skip_reason: str | None = None
    errors: int = 0
    result: RetentionResult = field(default_factory=RetentionResult)


def is_retention_due(
    policy: RetentionPolicy,
    now: datetime,
    last_run_at: datetime = None,
    tolerance_minutes: int = 5,
    min_interval_hours: int = 23,
) -> bool:
    """Scheduled weekday and time in tenant-local time, and not run in the last 23 hours"""
    if not policy.enabled:
        return False
    now = ensure_utc(now)
    local_now = now.astimezone(get_zone(policy.timezone))

    if local_now.isoweekday() % 7 != policy.weekday:
        return False
    current = local_now.hour * 60 + local_now.minute
    target = policy.hour * 60 + policy.minute
    if abs(current - target) > tolerance_minutes:
        return False

    if last_run_at is None:
        return True
    return now - ensure_utc(last_run_at) >= timedelta(hours=min_interval_hours)


def _delete_in_batches(db: Session, model, id_column, conditions) -> int:
    """Delete matching rows BATCH_SIZE at a time, one commit per batch"""
    deleted = 0
    while True:
        ids = [row[0] for row in db.query(id_column).filter(*conditions).limit(BATCH_SIZE).all()]
        if not ids:
            break
        try:
            db.execute(
                delete(model)
                .where(id_column.in_(ids), *conditions)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        deleted += len(ids)
        if len(ids) < BATCH_SIZE:
            break
    return deleted


def purge_terminal_bookings(
    db: Session,
    tenant_id: str,
    scope: str = SCOPE_ALL,
    older_than_days: int = None,
    now: datetime = None,
) -> RetentionResult:
    """
    Delete terminal bookings and archive records for one tenant.

    Args:
        db: Database session
        tenant_id: Tenant to purge
        scope: "all" or "older_than_days"
        older_than_days: Age threshold when scope is "older_than_days"
        now: Reference time for the age threshold

    Returns:
        RetentionResult with the number of deleted rows
    """
    now = ensure_utc(now or datetime.now(timezone.utc))
    result = RetentionResult()

    if scope == SCOPE_OLDER_THAN_DAYS and older_than_days is not None:
        cutoff = now - timedelta(days=older_than_days)
        result.deleted_bookings += _delete_in_batches(db, Booking, Booking.id, [
            Booking.tenant_id == tenant_id,
            Booking.status.in_(CANCELLED_STATUSES),
            Booking.cancelled_at < cutoff,
        ])
        # Legacy expired rows carry no cancel timestamp
        result.deleted_bookings += _delete_in_batches(db, Booking, Booking.id, [
            Booking.tenant_id == tenant_id,
            Booking.status == EXPIRED_STATUS,
            Booking.archived_at < cutoff,
        ])
        result.deleted_archives += _delete_in_batches(db, ArchivedBooking, ArchivedBooking.archive_id, [
            ArchivedBooking.tenant_id == tenant_id,
            ArchivedBooking.status_at_archive.in_(TERMINAL_STATUSES),
            ArchivedBooking.archived_at < cutoff,
        ])
    else:
        result.deleted_bookings += _delete_in_batches(db, Booking, Booking.id, [
            Booking.tenant_id == tenant_id,
            Booking.status.in_(TERMINAL_STATUSES),
        ])
        result.deleted_archives += _delete_in_batches(db, ArchivedBooking, ArchivedBooking.archive_id, [
            ArchivedBooking.tenant_id == tenant_id,
            ArchivedBooking.status_at_archive.in_(TERMINAL_STATUSES),
        ])

    logger.info(
        "Terminal bookings purged",
        extra={"context": {
            "tenant_id": tenant_id,
            "scope": scope,
            "older_than_days": older_than_days,
            "deleted_bookings": result.deleted_bookings,
            "deleted_archives": result.deleted_archives,
        }},
    )
    return result


def _set_retention_marker(db: Session, tenant_id: str, now: datetime) -> None:
    state = db.query(CleanupState).filter(CleanupState.tenant_id == tenant_id).first()
    if state is None:
        state = CleanupState(tenant_id=tenant_id)
        db.add(state)
    state.last_retention_run_at = now
    db.commit()


def run_retention_cleanup(db: Session, now: datetime = None) -> list:
    """
    Scheduled retention across every tenant with retention enabled.

    Returns:
        List of TenantRetentionSummary, one per enabled tenant
    """
    now = ensure_utc(now or datetime.now(timezone.utc))
    tenants = db.query(Tenant).filter(Tenant.retention_enabled.is_(True)).order_by(Tenant.id).all()
    plan = [(t.id, RetentionPolicy.from_tenant(t)) for t in tenants]
    logger.info("Retention cleanup started", extra={"context": {"tenants": len(plan)}})

    summaries = []
    for tenant_id, policy in plan:
        state = db.query(CleanupState).filter(CleanupState.tenant_id == tenant_id).first()
        last_run_at = state.last_retention_run_at if state else None

        if not is_retention_due(policy, now, last_run_at):
            summaries.append(TenantRetentionSummary(tenant_id=tenant_id, ran=False, skip_reason="not_due"))
            continue

        summary = TenantRetentionSummary(tenant_id=tenant_id, ran=True)
        try:
            summary.result = purge_terminal_bookings(db, tenant_id, policy.scope, policy.older_than_days, now)
            _set_retention_marker(db, tenant_id, now)
        except SQLAlchemyError as e:
            db.rollback()
            summary.errors += 1
            logger.error(
                "Retention cleanup failed for tenant",
                extra={"context": {"tenant_id": tenant_id, "error": str(e)}},
            )
        summaries.append(summary)

    logger.info(
        "Retention cleanup finished",
        extra={"context": {
            "tenants_run": sum(1 for s in summaries if s.ran),
            "deleted_bookings": sum(s.result.deleted_bookings for s in summaries),
            "deleted_archives": sum(s.result.deleted_archives for s in summaries),
            "errors": sum(s.errors for s in summaries),
        }},
    )
    return summaries
