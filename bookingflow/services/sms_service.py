"""
Messaging Gateway using Twilio
Sends one outbound message per call and records every attempt in the audit log.
"""
from dataclasses import dataclass

from sqlalchemy.orm import Session
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from bookingflow.config import Settings, require_messaging_config, settings as default_settings
from bookingflow.errors import InvalidPhoneError, MessageSendError
from bookingflow.logging_config import get_logger
from bookingflow.models import MessageLog
from bookingflow.services.phone import WHATSAPP_PREFIX, to_channel_address

logger = get_logger("messaging")


@dataclass(frozen=True)
class SendResult:
    provider_message_id: str
    to_address: str


class MessagingGateway:
    """Service to send WhatsApp / SMS messages through Twilio"""

    def __init__(self, db: Session, client: Client = None, config: Settings = None):
        self.db = db
        self.config = config or default_settings
        self.channel = self.config.messaging_channel
        self.client = client

    def _get_client(self) -> Client:
        """Build the Twilio client lazily; every request is bounded by a timeout"""
        if self.client is None:
            require_messaging_config(self.config)
            http_client = TwilioHttpClient(timeout=self.config.messaging_timeout_seconds)
            self.client = Client(
                self.config.twilio_account_sid,
                self.config.twilio_auth_token,
                http_client=http_client,
            )
        return self.client

    @property
    def from_address(self) -> str:
        sender = self.config.twilio_from_number.strip()
        if self.channel == "whatsapp" and not sender.startswith(WHATSAPP_PREFIX):
            return WHATSAPP_PREFIX + sender
        return sender

    def send(
        self,
        to_phone: str,
        body: str,
        tenant_id: str = None,
        booking_id: str = None,
    ) -> SendResult:
        """
        Send one message and audit the attempt.

        Args:
            to_phone: Recipient phone, canonical E.164
            body: Message text
            tenant_id: Tenant the message belongs to
            booking_id: Booking the message is about

        Returns:
            SendResult with the provider message id

        Raises:
            InvalidPhoneError: recipient is not a usable phone; the rejection is audited first
            MessageSendError: provider rejected or timed out; the failure is audited first
        """
        client = self._get_client()
        booking_ref = f"tenants/{tenant_id}/bookings/{booking_id}" if tenant_id and booking_id else None
        try:
            to_address = to_channel_address(to_phone, self.channel, self.config.default_country)
        except InvalidPhoneError as e:
            self._audit(to_phone or "", body, tenant_id, booking_id, booking_ref, None, "failed", str(e))
            logger.warning(
                "Outbound message rejected",
                extra={"context": {"booking_ref": booking_ref, "error": str(e)}},
            )
            raise

        try:
            message = client.messages.create(
                body=body,
                from_=self.from_address,
                to=to_address,
            )
        except (TwilioRestException, TwilioException, OSError) as e:
            provider_code = getattr(e, "code", None)
            self._audit(to_address, body, tenant_id, booking_id, booking_ref, None, "failed", str(e))
            logger.error(
                "Outbound message failed",
                extra={"context": {"booking_ref": booking_ref, "error": str(e), "code": provider_code}},
            )
            raise MessageSendError(f"Error sending message: {e}", provider_code=provider_code) from e

        self._audit(to_address, body, tenant_id, booking_id, booking_ref, message.sid, "sent", None)
        logger.info(
            "Outbound message sent",
            extra={"context": {"booking_ref": booking_ref, "sid": message.sid, "to": to_address[:-4] + "****"}},
        )
        return SendResult(provider_message_id=message.sid, to_address=to_address)

    def _audit(self, to_address, body, tenant_id, booking_id, booking_ref, sid, status, error):
        self.db.add(
            MessageLog(
                direction="outbound",
                status=status,
                from_address=self.from_address,
                to_address=to_address,
                body=body,
                tenant_id=tenant_id,
                booking_id=booking_id,
                booking_ref=booking_ref,
                provider_message_id=sid,
                error=error,
            )
        )
        self.db.commit()
