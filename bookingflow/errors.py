"""
Error taxonomy for the reminder / confirmation / archival pipeline.
"""


class BookingFlowError(Exception):
    """Base class for all pipeline errors"""

    code = "booking_flow_error"

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ConfigurationError(BookingFlowError):
    """Missing credentials or shared secret. Fatal, nothing is attempted."""

    code = "configuration_error"


class ValidationError(BookingFlowError):
    """A single request or record was rejected; no mutation happened."""

    code = "validation_error"


class InvalidSignatureError(ValidationError):
    code = "invalid_signature"


class InvalidPhoneError(ValidationError):
    code = "invalid_phone"


class AuthorizationError(BookingFlowError):
    """Caller is not allowed to act on the tenant."""

    code = "forbidden"


class TenantNotFoundError(BookingFlowError):
    code = "tenant_not_found"


class MessageSendError(BookingFlowError):
    """Outbound message was not accepted by the provider."""

    code = "send_failed"

    def __init__(self, message: str, provider_code=None):
        super().__init__(message)
        self.provider_code = provider_code


class TransitionError(BookingFlowError):
    """A group state transition failed and was rolled back."""

    code = "transition_failed"
