"""
Unit tests for the 24h reminder run
"""
from datetime import timedelta

import pytest
from twilio.base.exceptions import TwilioRestException

from bookingflow.errors import ConfigurationError
from bookingflow.models import ConfirmationStatus, MessageLog
from bookingflow.services.reminder_service import (
    GUARD_CONFIRMATION_REQUESTED,
    GUARD_NO_PHONE,
    GUARD_REMINDER_SENT,
    ReminderCandidate,
    get_reminder_window,
    reminder_guard,
    run_reminders,
)
from bookingflow.services.sms_service import MessagingGateway
from bookingflow.services.webhook_service import Outcome, handle_inbound


def _candidate(**overrides):
    data = {
        "booking_id": "b1",
        "tenant_id": "salon-1",
        "booking_ref": "tenants/salon-1/bookings/b1",
        "start_at": None,
        "phone": "+972501234567",
    }
    data.update(overrides)
    return ReminderCandidate(**data)


class TestReminderWindow:
    """Test window arithmetic"""

    def test_window_is_centered_on_lead_time(self, now):
        """Test default window is 24h ahead, plus or minus 60 minutes"""
        window = get_reminder_window(now)

        assert window.start == now + timedelta(hours=23)
        assert window.end == now + timedelta(hours=25)

    def test_custom_lead_and_tolerance(self, now):
        """Test explicit lead and tolerance"""
        window = get_reminder_window(now, lead_hours=2, tolerance_minutes=10)

        assert window.end - window.start == timedelta(minutes=20)


class TestReminderGuard:
    """Test guard order"""

    def test_markers_checked_first(self, now):
        """Test the reminder marker wins over everything else"""
        candidate = _candidate(reminder_sent_at=now, confirmation_requested_at=now, phone="")
        assert reminder_guard(candidate, set()) == GUARD_REMINDER_SENT

    def test_confirmation_marker(self, now):
        """Test the confirmation-requested marker blocks a send"""
        assert reminder_guard(_candidate(confirmation_requested_at=now), set()) == GUARD_CONFIRMATION_REQUESTED

    def test_no_phone(self):
        """Test bookings without a phone are skipped"""
        assert reminder_guard(_candidate(phone=""), set()) == GUARD_NO_PHONE

    def test_clear(self):
        """Test a clean candidate passes"""
        assert reminder_guard(_candidate(), set()) is None


class TestRunReminders:
    """Test the reminder job"""

    def test_sends_one_reminder_and_flips_state(self, test_db_session, make_booking, gateway, twilio_client, reload, now):
        """Test a booking in the window gets one reminder and awaits confirmation"""
        make_booking(id="b1")

        report = run_reminders(test_db_session, gateway, now)

        assert report.sent == 1
        assert report.errors == 0
        twilio_client.messages.create.assert_called_once()
        kwargs = twilio_client.messages.create.call_args.kwargs
        assert kwargs["to"] == "whatsapp:+972501234567"
        assert kwargs["from_"] == "whatsapp:+15550001111"
        assert "12:00" in kwargs["body"]
        assert "Salon Dana" in kwargs["body"]

        booking = reload("b1")
        assert booking.confirmation_status == ConfirmationStatus.AWAITING_CONFIRMATION
        assert booking.reminder_sent_at is not None
        assert booking.confirmation_requested_at is not None

    def test_second_run_never_resends(self, test_db_session, make_booking, gateway, twilio_client, now):
        """Test running twice over the same window sends once"""
        make_booking(id="b1")

        run_reminders(test_db_session, gateway, now)
        second = run_reminders(test_db_session, gateway, now + timedelta(minutes=5))

        assert second.sent == 0
        assert twilio_client.messages.create.call_count == 1

    def test_marker_set_blocks_send(self, test_db_session, make_booking, gateway, twilio_client, now):
        """Test a booking with the confirmation marker already set is skipped"""
        make_booking(id="b1", confirmation_requested_at=now - timedelta(hours=1))

        report = run_reminders(test_db_session, gateway, now)

        assert report.sent == 0
        assert report.skipped == 1
        twilio_client.messages.create.assert_not_called()

    def test_visit_gets_one_message(self, test_db_session, make_booking, gateway, twilio_client, reload, now):
        """Test a root and its follow-up share one reminder"""
        make_booking(id="A", visit_group_id="g1")
        make_booking(id="B", visit_group_id="g1", parent_booking_id="A", start_at=now + timedelta(hours=24, minutes=30))

        report = run_reminders(test_db_session, gateway, now)

        assert report.sent == 1
        assert report.skipped == 1
        assert twilio_client.messages.create.call_count == 1
        assert reload("B").confirmation_status == ConfirmationStatus.AWAITING_CONFIRMATION

    def test_outside_window_ignored(self, test_db_session, make_booking, gateway, twilio_client, now):
        """Test bookings outside the window are not considered"""
        make_booking(id="early", start_at=now + timedelta(hours=3))
        make_booking(id="late", start_at=now + timedelta(hours=30))

        report = run_reminders(test_db_session, gateway, now)

        assert report.booking_count == 0
        twilio_client.messages.create.assert_not_called()

    def test_missing_phone_skipped(self, test_db_session, make_booking, gateway, twilio_client, now):
        """Test bookings without any phone field are skipped"""
        make_booking(id="b1", customer_phone_e164=None)

        report = run_reminders(test_db_session, gateway, now)

        assert report.skipped == 1
        assert report.details[0].result == f"skipped: {GUARD_NO_PHONE}"
        twilio_client.messages.create.assert_not_called()

    def test_legacy_phone_field_used(self, test_db_session, make_booking, gateway, twilio_client, now):
        """Test the legacy phone column is normalized and used"""
        make_booking(id="b1", customer_phone_e164=None, phone="050-123-4567")

        run_reminders(test_db_session, gateway, now)

        assert twilio_client.messages.create.call_args.kwargs["to"] == "whatsapp:+972501234567"

    def test_send_failure_does_not_stop_run(self, test_db_session, make_booking, gateway, twilio_client, reload, now):
        """Test a provider error is counted and the next booking still goes out"""
        make_booking(id="b1", customer_phone_e164="+972501111111")
        make_booking(id="b2", customer_phone_e164="+972502222222")
        twilio_client.messages.create.side_effect = [
            TwilioRestException(400, "/Messages", msg="invalid number", code=21211),
            type("Message", (), {"sid": "SM0002"})(),
        ]

        report = run_reminders(test_db_session, gateway, now)

        assert report.errors == 1
        assert report.sent == 1
        assert reload("b1").confirmation_status == ConfirmationStatus.BOOKED
        assert reload("b2").confirmation_status == ConfirmationStatus.AWAITING_CONFIRMATION
        statuses = sorted(m.status for m in test_db_session.query(MessageLog).all())
        assert statuses == ["failed", "sent"]

    def test_missing_credentials_fail_fast(self, test_db_session, make_booking, twilio_client, test_settings, now):
        """Test the run refuses to start without messaging credentials"""
        make_booking(id="b1")
        config = test_settings.model_copy(update={"twilio_from_number": ""})
        gateway = MessagingGateway(test_db_session, client=twilio_client, config=config)

        with pytest.raises(ConfigurationError) as exc:
            run_reminders(test_db_session, gateway, now)

        assert exc.value.code == "TWILIO_FROM_NUMBER_MISSING"
        twilio_client.messages.create.assert_not_called()

    def test_legacy_phone_reply_confirms(self, test_db_session, make_booking, gateway, twilio_client, reload, now):
        """Test a booking with only a legacy phone column can be confirmed by reply"""
        make_booking(id="b1", customer_phone_e164=None, phone="050-123-4567")

        report = run_reminders(test_db_session, gateway, now)

        assert report.sent == 1
        assert twilio_client.messages.create.call_args.kwargs["to"] == "whatsapp:+972501234567"
        assert reload("b1").customer_phone_e164 == "+972501234567"

        result = handle_inbound(
            test_db_session,
            {"Body": "כן", "From": "whatsapp:+972501234567", "MessageSid": "SM900"},
            now + timedelta(hours=1),
        )

        assert result.outcome == Outcome.CONFIRMED
        assert reload("b1").confirmation_status == ConfirmationStatus.CONFIRMED

    def test_existing_canonical_phone_kept(self, test_db_session, make_booking, gateway, reload, now):
        """Test marking a visit never overwrites a member's own canonical phone"""
        make_booking(id="A", visit_group_id="g1", customer_phone_e164=None, phone="0501234567")
        make_booking(id="B", visit_group_id="g1", parent_booking_id="A", customer_phone_e164="+972529999999")

        run_reminders(test_db_session, gateway, now)

        assert reload("A").customer_phone_e164 == "+972501234567"
        assert reload("B").customer_phone_e164 == "+972529999999"
