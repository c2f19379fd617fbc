"""
APScheduler Service
Runs the reminder, expiry archival and retention jobs in the background.
Each job calls the same routine as its /cron endpoint.
"""
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from bookingflow.config import Settings, settings as default_settings
from bookingflow.database import SessionLocal
from bookingflow.errors import BookingFlowError
from bookingflow.logging_config import get_logger
from bookingflow.services.archival_service import run_expiry_archival
from bookingflow.services.reminder_service import run_reminders
from bookingflow.services.retention_service import run_retention_cleanup
from bookingflow.services.sms_service import MessagingGateway

logger = get_logger("scheduler")


class SchedulerService:
    """Service to manage background scheduler tasks"""

    def __init__(self, config: Settings = None, session_factory=SessionLocal):
        self.config = config or default_settings
        self.session_factory = session_factory
        self.scheduler = BackgroundScheduler(timezone="UTC")
        self._setup_jobs()

    def _setup_jobs(self):
        """Setup all background jobs"""
        self.scheduler.add_job(
            self._send_booking_reminders,
            IntervalTrigger(minutes=self.config.reminder_interval_minutes),
            id="booking_reminders",
            name="Send 24h booking reminders",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.add_job(
            self._archive_expired_bookings,
            CronTrigger(hour=self.config.archival_cron_hour, minute=0, timezone=self.config.default_timezone),
            id="expiry_archival",
            name="Archive past bookings",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.add_job(
            self._purge_terminal_bookings,
            IntervalTrigger(minutes=self.config.retention_interval_minutes),
            id="retention_cleanup",
            name="Delete cancelled and expired records",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def _run_job(self, name: str, job):
        db = self.session_factory()
        try:
            job(db)
        except (BookingFlowError, SQLAlchemyError) as e:
            db.rollback()
            logger.error("Scheduled job failed", extra={"context": {"job": name, "error": str(e)}})
        finally:
            db.close()

    def _send_booking_reminders(self):
        self._run_job(
            "booking_reminders",
            lambda db: run_reminders(db, MessagingGateway(db, config=self.config)),
        )

    def _archive_expired_bookings(self):
        self._run_job("expiry_archival", run_expiry_archival)

    def _purge_terminal_bookings(self):
        self._run_job("retention_cleanup", run_retention_cleanup)

    def start(self):
        """Start the scheduler"""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started", extra={"context": {"jobs": [j.id for j in self.scheduler.get_jobs()]}})

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler stopped")


# Global scheduler instance
_scheduler_service = None


def get_scheduler() -> SchedulerService:
    """Get or create scheduler instance"""
    global _scheduler_service
    if _scheduler_service is None:
        _scheduler_service = SchedulerService()
    return _scheduler_service


def start_scheduler():
    """Start the background scheduler"""
    scheduler = get_scheduler()
    scheduler.start()


def stop_scheduler():
    """Stop the background scheduler"""
    scheduler = get_scheduler()
    scheduler.stop()
